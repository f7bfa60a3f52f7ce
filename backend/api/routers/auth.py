"""Auth and user management router."""
import time as _time
import secrets
from fastapi import APIRouter, HTTPException, Header, Depends, Request
from pydantic import BaseModel, Field
from typing import Optional
from schllib.filters import build_or_regex, filter_documents
from schllib.permissions import has_perm
from ..dependencies import (
    get_db, require_auth, require_perm, _sanitize_500, _logger, _sessions, _failed_logins,
    _LOCKOUT_WINDOW, _LOCKOUT_MAX, _TOKEN_EXPIRE_HOURS, _MAX_SESSIONS_PER_USER, limiter,
    invalidate_sessions_for_user, PageParams,
)

router = APIRouter()


# ── User Management (CRUD) ───────────────────────────────────

class UserCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=64)
    password: str = Field(..., min_length=1)
    real_name: Optional[str] = ''
    role: Optional[str] = 'Employee'
    permissions: list[str] = []
    employee_id: Optional[int] = None
    comment: Optional[str] = ''


class UserUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=64)
    real_name: Optional[str] = None
    role: Optional[str] = None
    permissions: Optional[list[str]] = None
    employee_id: Optional[int] = None
    comment: Optional[str] = None


class UserSearch(BaseModel):
    generalSearchString: Optional[str] = None
    role: Optional[str] = None


class LoginBody(BaseModel):
    username: str
    password: str


class ChangePasswordBody(BaseModel):
    new_password: str = Field(..., min_length=1)


@router.post("/v1/user/search-users", tags=["Users"], summary="Search users",
             description="List portal users, optionally filtered by name or role. Requires admin:edit_user.")
def search_users(
    body: UserSearch,
    pages: PageParams = Depends(),
    _user: dict = Depends(require_perm('admin:create_user', 'admin:edit_user')),
):
    users = get_db().get_users()
    query = {'role': body.role} if body.role else {}
    users = filter_documents(users, query, build_or_regex(body.generalSearchString, ['name', 'real_name']))
    return pages.apply(users)


@router.get("/v1/user/get-user/{user_id}", tags=["Users"], summary="Get user")
def get_user(user_id: int, _user: dict = Depends(require_perm('admin:create_user', 'admin:edit_user'))):
    user = get_db().get_user(user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user


def _check_grantable(admin: dict, permissions: Optional[list[str]]) -> None:
    """A user manager can only hand out permissions they hold themselves."""
    missing = [p for p in permissions or [] if not has_perm(p, admin.get('permissions'))]
    if missing:
        raise HTTPException(
            status_code=403,
            detail=f"You can't grant permissions you don't have: {', '.join(missing)}",
        )


@router.post("/v1/user/create-user", tags=["Users"], summary="Create user",
             description="Create a portal user. Requires admin:create_user.")
def create_user(body: UserCreate, _admin: dict = Depends(require_perm('admin:create_user'))):
    if not body.name.strip() or not body.password.strip():
        raise HTTPException(status_code=400, detail="Username and password must not be empty")
    _check_grantable(_admin, body.permissions)
    try:
        result = get_db().create_user(body.model_dump())
        _logger.warning(
            "AUDIT USER_CREATE | admin=%s new_user=%s permissions=%d",
            _admin.get('name'), body.name, len(result.get('permissions', []))
        )
        return {"ok": True, "record": result}
    except ValueError as e:
        if str(e).startswith('DUPLICATE:USERNAME:'):
            raise HTTPException(status_code=409, detail=f"Username '{body.name}' already exists")
        raise _sanitize_500(e, 'create_user')
    except Exception as e:
        raise _sanitize_500(e, 'create_user')


@router.put("/v1/user/update-user/{user_id}", tags=["Users"], summary="Update user",
            description="Update a portal user. Requires admin:edit_user.")
def update_user(user_id: int, body: UserUpdate, _admin: dict = Depends(require_perm('admin:edit_user'))):
    data = {k: v for k, v in body.model_dump().items() if v is not None}
    if not data:
        raise HTTPException(status_code=400, detail="No update fields provided")
    _check_grantable(_admin, data.get('permissions'))
    try:
        result = get_db().update_user(user_id, data)
        if 'permissions' in data:
            # Running sessions carry the old permission set
            invalidate_sessions_for_user(user_id)
        _logger.warning(
            "AUDIT USER_UPDATE | admin=%s target_id=%d fields=%s",
            _admin.get('name'), user_id, list(data.keys())
        )
        return {"ok": True, "record": result}
    except ValueError as e:
        if str(e).startswith('DUPLICATE:USERNAME:'):
            raise HTTPException(status_code=409, detail=f"Username '{data.get('name')}' already exists")
        raise HTTPException(status_code=404, detail=f"User ID {user_id} not found")
    except Exception as e:
        raise _sanitize_500(e, f'update_user/{user_id}')


@router.delete("/v1/user/delete-user/{user_id}", tags=["Users"], summary="Delete user",
               description="Delete a portal user and revoke their sessions. Requires admin:edit_user.")
def delete_user(user_id: int, _admin: dict = Depends(require_perm('admin:edit_user'))):
    if user_id == _admin.get('id'):
        raise HTTPException(status_code=400, detail="You can't delete your own account")
    try:
        count = get_db().delete_user(user_id)
        if count == 0:
            raise HTTPException(status_code=404, detail=f"User ID {user_id} not found")
        removed = invalidate_sessions_for_user(user_id)
        _logger.warning(
            "AUDIT USER_DELETE | admin=%s target_id=%d sessions_revoked=%d",
            _admin.get('name'), user_id, removed
        )
        return {"ok": True, "deleted": count}
    except HTTPException:
        raise
    except Exception as e:
        raise _sanitize_500(e, f'delete_user/{user_id}')


@router.post("/v1/user/change-password/{user_id}", tags=["Users"], summary="Change user password",
             description=(
                 "Set a new password. Users with settings:change_password may change their own; "
                 "admin:edit_user may change anyone's. All sessions of the user are revoked."
             ))
def change_user_password(user_id: int, body: ChangePasswordBody, _user: dict = Depends(require_auth)):
    perms = _user.get('permissions')
    own = user_id == _user.get('id') and has_perm('settings:change_password', perms)
    if not own and not has_perm('admin:edit_user', perms):
        raise HTTPException(status_code=403, detail="You don't have permission to change this password")
    if not body.new_password.strip():
        raise HTTPException(status_code=400, detail="Password must not be empty")
    try:
        ok = get_db().change_password(user_id, body.new_password)
        if not ok:
            raise HTTPException(status_code=404, detail="User not found")
        # Invalidate all existing sessions for this user (token rotation on pw change)
        removed = invalidate_sessions_for_user(user_id)
        _logger.warning(
            "AUDIT PASSWORD_CHANGE | by=%s target_id=%d sessions_revoked=%d",
            _user.get('name'), user_id, removed
        )
        return {"ok": True, "sessions_revoked": removed}
    except HTTPException:
        raise
    except Exception as e:
        raise _sanitize_500(e, f'change_password/{user_id}')


# ── Auth ─────────────────────────────────────────────────────

def _drop_oldest_sessions(user_id: int) -> None:
    """Keep at most _MAX_SESSIONS_PER_USER - 1 sessions before adding a new one."""
    own = sorted(
        ((tok, s) for tok, s in _sessions.items() if s.get('id') == user_id),
        key=lambda item: item[1].get('expires_at') or 0,
    )
    while len(own) >= _MAX_SESSIONS_PER_USER:
        tok, _ = own.pop(0)
        _sessions.pop(tok, None)


@router.post("/v1/auth/login", tags=["Auth"], summary="Login",
             description="Authenticate with username and password. Returns a session token valid for 8 hours (configurable via TOKEN_EXPIRE_HOURS).")
@limiter.limit("5/minute")
def login(request: Request, body: LoginBody):
    """Verify username+password and open a session."""
    client_ip = request.client.host if request.client else 'unknown'
    now = _time.time()
    username = body.username

    # ── Brute-force check ──────────────────────────────────────
    # Purge old entries (>15min) then check lockout
    timestamps = _failed_logins.get(username, [])
    timestamps = [t for t in timestamps if now - t < _LOCKOUT_WINDOW]
    _failed_logins[username] = timestamps
    if len(timestamps) >= _LOCKOUT_MAX:
        _logger.warning(
            "AUTH LOCKOUT | ip=%s username=%s attempts=%d", client_ip, username, len(timestamps)
        )
        raise HTTPException(
            status_code=429,
            detail="Too many failed attempts. Please wait 15 minutes."
        )

    user = get_db().verify_user_password(username, body.password)
    if user is None:
        _failed_logins[username] = timestamps + [now]
        _logger.warning(
            "AUTH LOGIN_FAIL | ip=%s username=%s", client_ip, username
        )
        raise HTTPException(status_code=401, detail="Invalid username or password")

    # Successful login: clear failed attempts
    _failed_logins.pop(username, None)
    _logger.info("AUTH LOGIN_OK | ip=%s username=%s", client_ip, username)

    _drop_oldest_sessions(user['id'])
    token = secrets.token_hex(32)
    expires_at = now + _TOKEN_EXPIRE_HOURS * 3600
    _sessions[token] = {**user, 'expires_at': expires_at}
    return {
        "ok": True,
        "token": token,
        "user": user,
        "expires_at": expires_at,
    }


@router.post("/v1/auth/logout", tags=["Auth"], summary="Logout", description="Invalidate the current session token.")
def logout(x_auth_token: Optional[str] = Header(None)):
    """Invalidate the session token."""
    if x_auth_token and x_auth_token in _sessions:
        del _sessions[x_auth_token]
    return {"ok": True}


@router.get("/v1/auth/me", tags=["Auth"], summary="Current user",
            description="Return the user bound to the session token.")
def me(user: dict = Depends(require_auth)):
    return {k: v for k, v in user.items() if k != 'expires_at'}
