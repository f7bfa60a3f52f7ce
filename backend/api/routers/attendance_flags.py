"""Attendance flag router: the codes attached to attendance days (present, absent, leave ...)."""
from fastapi import APIRouter, HTTPException, Depends
from pydantic import BaseModel, Field
from typing import Literal, Optional
from schllib.constants import FLAG_TYPES
from ..dependencies import get_db, require_auth, require_perm, _sanitize_500, raise_for_value_error
from .events import broadcast

router = APIRouter(prefix="/v1/attendance-flags", tags=["Attendance Flags"])

_super_admin = require_perm('settings:the_super_admin', detail="Permission denied")

_COLOR_PATTERN = r'^#[0-9A-Fa-f]{6}$'


class FlagCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=5)
    name: str = Field(..., min_length=1)
    color: str = Field('#6B7280', pattern=_COLOR_PATTERN)
    description: Optional[str] = ''
    ignore_attendance_hours: bool = False
    is_payable: bool = True
    deduction_percent: float = Field(0, ge=0, le=100)
    type: Literal[FLAG_TYPES] = 'custom'


class FlagUpdate(BaseModel):
    code: Optional[str] = Field(None, min_length=1, max_length=5)
    name: Optional[str] = Field(None, min_length=1)
    color: Optional[str] = Field(None, pattern=_COLOR_PATTERN)
    description: Optional[str] = None
    ignore_attendance_hours: Optional[bool] = None
    is_payable: Optional[bool] = None
    deduction_percent: Optional[float] = Field(None, ge=0, le=100)


def _duplicate_detail(code: Optional[str]) -> str:
    return f"Flag with code {(code or '').strip().upper()} already exists"


@router.get("", summary="List attendance flags", description="All flags sorted by code.")
def list_flags(_user: dict = Depends(require_auth)):
    return get_db().get_attendance_flags()


@router.post("/seed", summary="Seed default flags",
             description="Create the default flags (P, A, L, H, W, E, D) that do not exist yet.")
def seed_flags(_user: dict = Depends(_super_admin)):
    try:
        created = get_db().seed_attendance_flags()
    except Exception as e:
        raise _sanitize_500(e, 'seed_attendance_flags')
    if created:
        broadcast("attendance_flag_changed", {"action": "seed", "count": created})
    return {"ok": True, "message": f"Seeded {created} flags"}


@router.get("/{flag_id}", summary="Get attendance flag")
def get_flag(flag_id: int, _user: dict = Depends(require_auth)):
    flag = get_db().get_attendance_flag(flag_id)
    if flag is None:
        raise HTTPException(status_code=404, detail="Flag not found")
    return flag


@router.post("", summary="Create attendance flag")
def create_flag(body: FlagCreate, _user: dict = Depends(_super_admin)):
    try:
        result = get_db().create_attendance_flag(body.model_dump())
    except ValueError as e:
        raise raise_for_value_error(
            e, 'create_attendance_flag', not_found="Flag not found",
            duplicate=_duplicate_detail(body.code),
        )
    except Exception as e:
        raise _sanitize_500(e, 'create_attendance_flag')
    broadcast("attendance_flag_changed", {"action": "create", "id": result['id']})
    return {"ok": True, "record": result}


@router.put("/{flag_id}", summary="Update attendance flag")
def update_flag(flag_id: int, body: FlagUpdate, _user: dict = Depends(_super_admin)):
    data = {k: v for k, v in body.model_dump().items() if v is not None}
    if not data:
        raise HTTPException(status_code=400, detail="No update fields provided")
    try:
        result = get_db().update_attendance_flag(flag_id, data)
    except ValueError as e:
        raise raise_for_value_error(
            e, f'update_attendance_flag/{flag_id}', not_found="Flag not found",
            not_found_status=404, duplicate=_duplicate_detail(body.code),
        )
    except Exception as e:
        raise _sanitize_500(e, f'update_attendance_flag/{flag_id}')
    broadcast("attendance_flag_changed", {"action": "update", "id": flag_id})
    return {"ok": True, "record": result}


@router.delete("/{flag_id}", summary="Delete attendance flag",
               description="Delete a custom flag. System flags cannot be deleted.")
def delete_flag(flag_id: int, _user: dict = Depends(_super_admin)):
    try:
        removed = get_db().delete_attendance_flag(flag_id)
    except ValueError as e:
        raise raise_for_value_error(e, f'delete_attendance_flag/{flag_id}', not_found="Flag not found",
                                    not_found_status=404)
    if removed is None:
        raise HTTPException(status_code=404, detail="Flag not found")
    broadcast("attendance_flag_changed", {"action": "delete", "id": flag_id})
    return {"ok": True, "message": "Flag deleted successfully"}
