"""FastAPI application for the SCHL business portal."""
import os
import sys
import time as _startup_time_module
from contextlib import asynccontextmanager
from dotenv import load_dotenv

_APP_START_TIME = _startup_time_module.time()

# Load .env file if present
load_dotenv(os.path.join(os.path.dirname(__file__), '..', '.env'))

# Add parent dir to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fastapi import FastAPI, Request  # noqa: E402
from fastapi.middleware.cors import CORSMiddleware  # noqa: E402
from fastapi.responses import JSONResponse  # noqa: E402
from fastapi.exceptions import RequestValidationError  # noqa: E402
from slowapi import _rate_limit_exceeded_handler  # noqa: E402
from slowapi.errors import RateLimitExceeded  # noqa: E402

# ── Import shared dependencies ──────────────────────────────────
# Re-exported so tests can do `from api.main import _sessions`
from .dependencies import (  # noqa: E402
    _sessions,
    _DEV_TOKEN,
    _DEV_USER,
    _is_token_valid,
    get_db,
    _logger,
    limiter,
    purge_expired_sessions,
    purge_stale_failed_logins,
)

# ── Dev-mode session ────────────────────────────────────────────
# Only active when SCHL_DEV_MODE=true (never in production!)
if os.environ.get('SCHL_DEV_MODE', '').lower() in ('1', 'true', 'yes'):
    _sessions[_DEV_TOKEN] = {**_DEV_USER, 'expires_at': None}
    _logger.warning("DEV MODE ACTIVE: dev token enabled (SCHL_DEV_MODE=true). Do not use in production!")

# ── Config ──────────────────────────────────────────────────────
DATA_DIR = os.environ.get(
    'SCHL_DATA_DIR',
    os.path.join(os.path.dirname(__file__), '..', 'data')
)
DATA_DIR = os.path.normpath(DATA_DIR)

# CORS origins from env
_raw_origins = os.environ.get('ALLOWED_ORIGINS', '')
ALLOWED_ORIGINS = (
    [o.strip() for o in _raw_origins.split(',') if o.strip()]
    or ['http://localhost:3000', 'http://localhost:8000']
)

_OPENAPI_TAGS = [
    {"name": "Health", "description": "System health and version info"},
    {"name": "Auth", "description": "Authentication: login and logout"},
    {"name": "Users", "description": "Portal user management"},
    {"name": "Clients", "description": "Client records"},
    {"name": "Orders", "description": "Production orders and work lists"},
    {"name": "Export", "description": "CSV/XLSX export endpoints"},
    {"name": "Shift Plans", "description": "Shift templates, overrides and resolution"},
    {"name": "Tickets", "description": "Issue tracker and work log"},
    {"name": "Departments", "description": "Departments and weekend days"},
    {"name": "Attendance Flags", "description": "Attendance day codes"},
    {"name": "Holidays", "description": "Public holidays"},
    {"name": "Leaves", "description": "Leave applications and approval"},
    {"name": "Approvals", "description": "Approval-gated changes"},
    {"name": "Employees", "description": "Employee records"},
    {"name": "Changelog", "description": "Activity log"},
    {"name": "Events", "description": "Server-Sent Events stream"},
]


async def _periodic_cleanup():
    """Background task: purge expired sessions and stale failed-login entries every 5 minutes."""
    import asyncio
    while True:
        await asyncio.sleep(300)
        try:
            sess = purge_expired_sessions()
            logins = purge_stale_failed_logins()
            if sess or logins:
                _logger.debug("Periodic cleanup: removed %d expired sessions, %d stale lockout entries", sess, logins)
        except Exception as _exc:  # pragma: no cover
            _logger.warning("Periodic cleanup error: %s", _exc)


@asynccontextmanager
async def lifespan(app: FastAPI):
    import asyncio
    # Bootstrap admin account from env (only when the user does not exist yet)
    admin_name = os.environ.get('SCHL_ADMIN_USER')
    admin_password = os.environ.get('SCHL_ADMIN_PASSWORD')
    if admin_name and admin_password:
        try:
            created = get_db().ensure_admin_user(admin_name, admin_password)
            if created:
                _logger.info("Startup: created admin user %s", admin_name)
        except Exception as _exc:
            _logger.warning("Startup admin bootstrap failed: %s", _exc)
    cleanup_task = asyncio.create_task(_periodic_cleanup())
    yield
    cleanup_task.cancel()
    _logger.info("SCHL API shutting down, cleaning up resources")


app = FastAPI(
    lifespan=lifespan,
    title="SCHL Portal API",
    description=(
        "REST API of the SCHL business portal: clients, orders, shift plans, tickets, "
        "departments, attendance flags and approvals.\n\n"
        "## Authentication\n"
        "Most endpoints require an `x-auth-token` header obtained from `POST /v1/auth/login`.\n\n"
        "## Permissions\n"
        "Every user carries a list of `area:action` permissions (e.g. `admin:create_client`). "
        "Each endpoint lists the permission it needs; a missing permission answers 403.\n"
    ),
    version="1.0.0",
    openapi_tags=_OPENAPI_TAGS,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=["Content-Type", "x-auth-token", "Authorization"],
)


@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    """Add security headers to all responses."""
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
    response.headers["Cross-Origin-Opener-Policy"] = "same-origin"
    response.headers["Cross-Origin-Resource-Policy"] = "same-origin"
    # Only send HSTS if running in production (check env)
    if os.environ.get('SCHL_HSTS', '').lower() in ('1', 'true', 'yes'):
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return response


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Flatten Pydantic validation errors into one readable message."""
    _TYPE_MSGS = {
        "missing": "Field required",
        "int_parsing": "Must be a whole number",
        "float_parsing": "Must be a number",
        "bool_parsing": "Must be true or false",
        "string_too_short": "Input too short",
        "string_too_long": "Input too long",
        "string_pattern_mismatch": "Invalid format",
        "literal_error": "Not an allowed value",
        "value_error": "Invalid value",
        "type_error": "Wrong data type",
    }
    errors = []
    for e in exc.errors():
        field = ".".join(str(loc) for loc in e.get("loc", []) if loc not in ("body", "query", "path"))
        etype = e.get("type", "")
        msg = _TYPE_MSGS.get(etype, e.get("msg", "Invalid value"))
        if field:
            errors.append(f"{field}: {msg}")
        else:
            errors.append(msg)
    detail = "; ".join(errors) if errors else "Invalid input"
    return JSONResponse(status_code=422, content={"detail": detail})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch unhandled exceptions, log with details, return sanitized 500."""
    import traceback
    _logger.error(
        "Unhandled exception: %s %s | %s | %s",
        request.method, request.url.path,
        type(exc).__name__,
        traceback.format_exc().splitlines()[-1],
    )
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error. Please try again."},
    )


# ── Public paths (no auth required) ────────────────────────────
_PUBLIC_PATHS = {'/v1/auth/login', '/v1/auth/logout', '/v1/health', '/v1/version', '/'}


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    """Log every request as structured JSON with timing info and request-ID."""
    import time as _t
    import uuid as _uuid
    import json as _json_mod
    from datetime import datetime as _dt2, timezone as _tz2
    # Short unique request ID for correlating log entries
    req_id = _uuid.uuid4().hex[:8]
    start = _t.time()
    response = await call_next(request)
    duration_ms = round((_t.time() - start) * 1000)
    token = request.headers.get('x-auth-token') or request.query_params.get('token')
    user = _sessions.get(token, {}).get('name', '-') if token else '-'
    now = _dt2.now(_tz2.utc)
    ts = now.strftime('%Y-%m-%dT%H:%M:%S.') + f"{now.microsecond // 1000:03d}Z"
    entry = {
        "timestamp": ts,
        "req_id": req_id,
        "method": request.method,
        "path": request.url.path,
        "status": response.status_code,
        "duration_ms": duration_ms,
        "user": user,
    }
    _logger.info(_json_mod.dumps(entry, ensure_ascii=False))
    response.headers["X-Request-ID"] = req_id
    return response


@app.middleware("http")
async def auth_middleware(request: Request, call_next):
    """Require authentication for all /v1/* endpoints except public ones."""
    path = request.url.path
    method = request.method
    client_ip = request.client.host if request.client else 'unknown'

    if path in _PUBLIC_PATHS or not path.startswith('/v1/') or method == 'OPTIONS':
        return await call_next(request)
    # SSE endpoint also accepts token as query param (EventSource doesn't support headers)
    token = request.headers.get('x-auth-token') or request.query_params.get('token')
    if not token or not _is_token_valid(token):
        _logger.warning("AUTH 401 | ip=%s method=%s path=%s", client_ip, method, path)
        return JSONResponse(
            status_code=401,
            content={"detail": "Not authenticated"}
        )
    response = await call_next(request)
    if method in ('POST', 'PUT', 'PATCH', 'DELETE') and response.status_code < 400:
        user_info = _sessions.get(token, {})
        _logger.info(
            "WRITE | user=%s method=%s path=%s status=%d",
            user_info.get('name', '?'), method, path, response.status_code
        )
    if response.status_code == 403:
        user_info = _sessions.get(token, {})
        _logger.warning(
            "AUTH 403 | ip=%s method=%s path=%s user=%s",
            client_ip, method, path, user_info.get('name', '?')
        )
    return response


# ── Changelog Middleware ────────────────────────────────────────
from starlette.middleware.base import BaseHTTPMiddleware  # noqa: E402
from starlette.requests import Request as StarletteRequest  # noqa: E402


class ChangelogMiddleware(BaseHTTPMiddleware):
    """Automatically log CREATE/UPDATE/DELETE actions from the API."""

    _ENTITY_MAP = {
        'client': 'client',
        'order': 'order',
        'shift-plan': 'shift_plan',
        'ticket': 'ticket',
        'departments': 'department',
        'attendance-flags': 'attendance_flag',
        'holidays': 'holiday',
        'leaves': 'leave',
        'approval': 'approval',
        'employee': 'employee',
        'user': 'user',
    }

    # POST endpoints that change an existing record
    _UPDATE_ACTIONS = {
        'finish-order', 'redo-order', 'single-response', 'bulk-response',
        'change-password', 'add-commit',
    }

    @staticmethod
    def _is_read(parts: list) -> bool:
        """POST endpoints that only read (search and export)."""
        return any(p.startswith(('search', 'export')) or p == 'search' for p in parts)

    async def dispatch(self, request: StarletteRequest, call_next):
        response = await call_next(request)
        method = request.method
        if method not in ('POST', 'PUT', 'PATCH', 'DELETE'):
            return response
        if response.status_code >= 300:
            return response
        path = request.url.path
        parts = [p for p in path.strip('/').split('/') if p]
        if len(parts) < 2 or parts[0] != 'v1' or parts[1] in ('auth', 'changelog', 'events'):
            return response
        if self._is_read(parts):
            return response
        entity = self._ENTITY_MAP.get(parts[1], parts[1].replace('-', '_'))
        entity_id = 0
        for segment in reversed(parts[2:]):
            if segment.isdigit():
                entity_id = int(segment)
                break
        action_map = {'POST': 'CREATE', 'PUT': 'UPDATE', 'PATCH': 'UPDATE', 'DELETE': 'DELETE'}
        action = action_map.get(method, method)
        if method == 'POST' and any(p in self._UPDATE_ACTIONS for p in parts):
            action = 'UPDATE'
        token = request.headers.get('x-auth-token') or request.query_params.get('token')
        user = _sessions.get(token, {}).get('name', 'api') if token else 'api'
        try:
            get_db().log_action(
                user=user,
                action=action,
                entity=entity,
                entity_id=entity_id,
                details=f"{method} {path}",
            )
        except OSError as exc:
            _logger.warning("Changelog write failed for %s %s: %s", method, path, exc)
        return response


app.add_middleware(ChangelogMiddleware)


# ── Include routers ─────────────────────────────────────────────
from .routers import (  # noqa: E402
    auth, clients, orders, reports, shift_plans, tickets, departments,
    attendance_flags, holidays, leaves, approvals, employees, misc, events,
)

app.include_router(auth.router)
app.include_router(clients.router)
app.include_router(orders.router)
app.include_router(reports.router)
app.include_router(shift_plans.router)
app.include_router(tickets.router)
app.include_router(departments.router)
app.include_router(attendance_flags.router)
app.include_router(holidays.router)
app.include_router(leaves.router)
app.include_router(approvals.router)
app.include_router(employees.router)
app.include_router(misc.router)
app.include_router(events.router)


# ── Routes ──────────────────────────────────────────────────────

_API_VERSION = "1.0.0"


@app.get(
    "/v1/health",
    tags=["Health"],
    summary="Health check",
    description=(
        "Returns service status, API version, uptime in seconds and storage state. "
        "This endpoint is public (no authentication required)."
    ),
)
def health():
    """Health check endpoint; public, minimal info only."""
    import time as _t
    storage_status = "ok"
    try:
        get_db().get_stats()
    except Exception:
        storage_status = "error"

    return {
        "status": "ok",
        "version": _API_VERSION,
        "uptime_seconds": round(_t.time() - _APP_START_TIME, 1),
        "storage": {"status": storage_status},
        "sse_clients": events.subscriber_count(),
    }


@app.get(
    "/v1/version",
    tags=["Health"],
    summary="API version",
    description="Returns the current API version string.",
)
def version():
    """Return current API version; public, no auth required."""
    return {"version": _API_VERSION, "service": "SCHL Portal API"}


@app.get("/", include_in_schema=False)
def root():
    return {"service": "SCHL Portal API", "version": _API_VERSION, "backend": "json"}


@app.get("/v1/stats", tags=["Health"], summary="Record counts per collection")
def get_stats():
    return get_db().get_stats()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("api.main:app", host="0.0.0.0", port=8000, reload=True)
