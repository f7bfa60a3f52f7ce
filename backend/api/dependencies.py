"""
Shared dependencies for the SCHL portal API.
Logging, rate limiting, sessions and permission checks used by all routers.
"""
import os
import logging
import logging.handlers
import time as _time
import traceback

from fastapi import HTTPException, Header, Depends, Query, Request
from typing import Optional
from schllib.database import PortalDatabase
from schllib.filters import paginate
from schllib.permissions import KNOWN_PERMISSIONS, has_any_perm
from slowapi import Limiter
from slowapi.util import get_remote_address

# ── Structured JSON Logging setup ───────────────────────────────
import json as _json
from datetime import datetime as _dt, timezone as _tz

class _JsonFormatter(logging.Formatter):
    """Emit log records as single-line JSON objects."""
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": _dt.fromtimestamp(record.created, tz=_tz.utc).strftime('%Y-%m-%dT%H:%M:%S.') + f"{int(record.msecs):03d}Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return _json.dumps(entry, ensure_ascii=False)

_log_file = os.environ.get('SCHL_LOG_FILE', '/tmp/schl-api.log')
_handler = logging.handlers.RotatingFileHandler(
    _log_file, maxBytes=10 * 1024 * 1024, backupCount=3
)
_handler.setFormatter(_JsonFormatter())

_logger = logging.getLogger('schlapi')
# Log level configurable via ENV
_log_level_str = os.environ.get('SCHL_LOG_LEVEL', 'INFO').upper()
_log_level = getattr(logging, _log_level_str, logging.INFO)
_logger.setLevel(_log_level)
_logger.addHandler(_handler)
_stderr_handler = logging.StreamHandler()
_stderr_handler.setFormatter(_JsonFormatter())
_logger.addHandler(_stderr_handler)

# Keep reference to log file path for health endpoint
SCHL_LOG_FILE = _log_file

# ── Rate Limiter ─────────────────────────────────────────────────
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["200/minute"],
    enabled=os.environ.get('SCHL_RATE_LIMIT', 'true').lower() not in ('0', 'false', 'no'),
)

# ── Session store ────────────────────────────────────────────────
# NOTE: In-process dict, not safe for multi-worker deployments.
_sessions: dict[str, dict] = {}

# Token lifetime
_TOKEN_EXPIRE_HOURS = float(os.environ.get('TOKEN_EXPIRE_HOURS', '8'))

# Max concurrent sessions per user (prevents session flooding)
_MAX_SESSIONS_PER_USER = int(os.environ.get('MAX_SESSIONS_PER_USER', '10'))

# Brute-force tracking
_failed_logins: dict[str, list] = {}
_LOCKOUT_WINDOW = 15 * 60
_LOCKOUT_MAX = 5

# Dev-mode token
_DEV_TOKEN = "__dev_mode__"
_DEV_USER = {
    "id": 0,
    "name": "developer",
    "real_name": "Developer",
    "role": "Super Admin",
    "permissions": sorted(KNOWN_PERMISSIONS),
}


def _is_token_valid(token: str) -> bool:
    """Return True if the token exists and has not expired."""
    session = _sessions.get(token)
    if not session:
        return False
    expires_at = session.get('expires_at')
    if expires_at is not None and _time.time() > expires_at:
        del _sessions[token]
        return False
    return True


def get_current_user(
    request: Request,
    x_auth_token: Optional[str] = Header(None),
) -> Optional[dict]:
    """Return user dict for the given token, or None.

    Reads from X-Auth-Token header first; falls back to ?token= query param
    for SSE connections where EventSource cannot set custom headers.
    """
    token = x_auth_token or request.query_params.get('token')
    if token and _is_token_valid(token):
        return _sessions[token]
    return None


def require_auth(user: Optional[dict] = Depends(get_current_user)) -> dict:
    """Dependency: requires any authenticated user."""
    if user is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user


def require_perm(*perms: str, detail: Optional[str] = None):
    """Factory: returns a dependency that requires at least one of *perms*."""
    def _dep(user: Optional[dict] = Depends(get_current_user)) -> dict:
        if user is None:
            raise HTTPException(status_code=401, detail="Not authenticated")
        if not has_any_perm(perms, user.get('permissions')):
            raise HTTPException(
                status_code=403,
                detail=detail or f"Missing permission: {' or '.join(perms)}",
            )
        return user
    return _dep


def get_db() -> PortalDatabase:
    """Get a database handle using the current DATA_DIR from main module."""
    import api.main as _main
    return PortalDatabase(_main.DATA_DIR)


def raise_for_value_error(e: ValueError, context: str, not_found: str,
                          not_found_status: int = 400, duplicate_status: int = 400,
                          duplicate: Optional[str] = None) -> HTTPException:
    """Translate a storage-layer ValueError into the matching HTTPException."""
    msg = str(e)
    if msg.startswith('NOT_FOUND:'):
        return HTTPException(status_code=not_found_status, detail=not_found)
    if msg.startswith('DUPLICATE:'):
        return HTTPException(
            status_code=duplicate_status,
            detail=duplicate or PortalDatabase.describe_error(e),
        )
    if msg.startswith('INVALID:') or ':' not in msg:
        return HTTPException(status_code=400, detail=PortalDatabase.describe_error(e))
    return _sanitize_500(e, context)


def invalidate_sessions_for_user(user_id: int) -> int:
    """Remove all active sessions for a given user ID. Returns count removed."""
    to_remove = [tok for tok, s in _sessions.items() if s.get('id') == user_id]
    for tok in to_remove:
        del _sessions[tok]
    return len(to_remove)


def purge_expired_sessions() -> int:
    """Remove all expired sessions from the in-memory store. Returns count removed."""
    now = _time.time()
    to_remove = [
        tok for tok, s in list(_sessions.items())
        if s.get('expires_at') is not None and now > s['expires_at']
    ]
    for tok in to_remove:
        _sessions.pop(tok, None)
    return len(to_remove)


def purge_stale_failed_logins() -> int:
    """Remove username entries whose timestamps have all expired. Returns count removed."""
    now = _time.time()
    stale = [
        uname for uname, timestamps in list(_failed_logins.items())
        if not any(now - t < _LOCKOUT_WINDOW for t in timestamps)
    ]
    for uname in stale:
        _failed_logins.pop(uname, None)
    return len(stale)


def _sanitize_500(e: Exception, context: str = '') -> HTTPException:
    """Log full exception, return sanitized 500."""
    _logger.error(
        "500 error context=%s type=%s msg=%s trace=%s",
        context, type(e).__name__, str(e),
        traceback.format_exc().splitlines()[-1],
    )
    return HTTPException(
        status_code=500,
        detail="Internal server error. Please try again.",
    )


class PageParams:
    """Dependency: the page/itemsPerPage/paginated query triple of search endpoints."""

    def __init__(
        self,
        page: int = Query(1, ge=1, description="1-based page number"),
        itemsPerPage: int = Query(30, ge=1, le=100, description="Page size (max 100)"),
        paginated: bool = Query(False, description="Return {pagination, items} instead of a list"),
    ):
        self.page = page
        self.items_per_page = itemsPerPage
        self.paginated = paginated

    def apply(self, items: list):
        if not self.paginated:
            return items
        return paginate(items, self.page, self.items_per_page)
