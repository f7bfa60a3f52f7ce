"""
Shared test fixtures for the SCHL portal backend tests.
"""
import os
import sys
import secrets
import tempfile
import pytest

# ── Python path setup ──────────────────────────────────────────────────────────
_BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _BACKEND_DIR not in sys.path:
    sys.path.insert(0, _BACKEND_DIR)

# Must be set before api.dependencies creates the limiter
os.environ.setdefault('SCHL_RATE_LIMIT', 'false')
os.environ.setdefault('SCHL_LOG_FILE', os.path.join(tempfile.gettempdir(), 'schl-api-test.log'))

from schllib.permissions import KNOWN_PERMISSIONS  # noqa: E402

ALL_PERMS = sorted(KNOWN_PERMISSIONS)


# ── Session helpers ────────────────────────────────────────────────────────────

def inject_token(perms, user_id: int = 900, name: str = 'tester', real_name: str = 'Test User') -> str:
    """Put a session with the given permissions into _sessions and return its token."""
    from api.dependencies import _sessions
    tok = secrets.token_hex(16)
    _sessions[tok] = {
        'id': user_id,
        'name': name,
        'real_name': real_name,
        'role': 'Tester',
        'permissions': list(perms),
        'employee_id': None,
        'comment': '',
        'expires_at': None,
    }
    return tok


@pytest.fixture(autouse=True)
def _clean_sessions():
    """Every test starts without sessions or lockout state."""
    from api.dependencies import _sessions, _failed_logins
    _sessions.clear()
    _failed_logins.clear()
    yield
    _sessions.clear()
    _failed_logins.clear()


# ── App and data directory ─────────────────────────────────────────────────────

@pytest.fixture
def data_dir(tmp_path, monkeypatch):
    """Function-scoped: fresh, empty data directory patched into api.main."""
    import api.main as main_module
    path = str(tmp_path / 'data')
    monkeypatch.setattr(main_module, 'DATA_DIR', path)
    return path


@pytest.fixture
def db(data_dir):
    """Storage handle on the test data directory, for seeding and assertions."""
    from schllib.database import PortalDatabase
    return PortalDatabase(data_dir)


@pytest.fixture
def app(data_dir):
    """Return the FastAPI app pointed at the test data directory."""
    from api.main import app as _app
    from api.dependencies import limiter
    limiter.enabled = False
    return _app


@pytest.fixture
def client(app):
    """Function-scoped TestClient; server errors come back as 500 responses."""
    from starlette.testclient import TestClient
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c


@pytest.fixture
def token_for():
    """Factory: token_for('perm:a', 'perm:b', user_id=.., name=..) → session token."""
    def _make(*perms, **kwargs):
        return inject_token(perms, **kwargs)
    return _make


@pytest.fixture
def admin_token():
    """Token holding every known permission."""
    return inject_token(ALL_PERMS, user_id=1, name='admin', real_name='Administrator')


@pytest.fixture
def admin_headers(admin_token):
    return {'X-Auth-Token': admin_token}
