"""Leave router: leave applications and their approval workflow."""
import math
from fastapi import APIRouter, HTTPException, Depends
from pydantic import BaseModel, Field
from typing import Literal, Optional
from schllib.dates import parse_date
from schllib.permissions import SUPER_ADMIN, has_any_perm
from ..dependencies import (
    get_db, require_auth, require_perm, _sanitize_500, _logger, raise_for_value_error, PageParams,
)
from ..types import SearchResult
from .events import broadcast

router = APIRouter(prefix="/v1/leaves", tags=["Leaves"])

_MANAGE_PERMS = ('admin:create_employee', SUPER_ADMIN)

_can_manage = require_perm(*_MANAGE_PERMS, detail="You don't have permission to manage leaves")
_can_view = require_perm(
    'admin:create_employee', 'admin:view_page', 'admin:view_shift_plan',
    detail="You don't have permission to view leaves",
)

_DATE_PATTERN = r'^\d{4}-\d{2}-\d{2}$'


class LeaveCreate(BaseModel):
    employeeId: int
    leaveType: Optional[str] = Field(None, max_length=50)
    isPaid: bool
    status: Literal['pending', 'approved'] = 'pending'
    startDate: str = Field(..., pattern=_DATE_PATTERN)
    endDate: str = Field(..., pattern=_DATE_PATTERN)
    reason: str = Field(..., min_length=1)


class LeaveUpdate(BaseModel):
    employeeId: Optional[int] = None
    leaveType: Optional[str] = Field(None, max_length=50)
    isPaid: Optional[bool] = None
    status: Optional[Literal['pending', 'approved', 'rejected']] = None
    startDate: Optional[str] = Field(None, pattern=_DATE_PATTERN)
    endDate: Optional[str] = Field(None, pattern=_DATE_PATTERN)
    reason: Optional[str] = Field(None, min_length=1)


class LeaveStatus(BaseModel):
    status: Literal['approved', 'rejected']


class LeaveSearch(BaseModel):
    employeeId: Optional[int] = None
    fromDate: Optional[str] = Field(None, pattern=_DATE_PATTERN)
    toDate: Optional[str] = Field(None, pattern=_DATE_PATTERN)
    isPaid: Optional[bool] = None
    leaveType: Optional[str] = None
    status: Optional[str] = None


def _check_dates(*values: Optional[str]) -> None:
    for value in values:
        if value:
            try:
                parse_date(value)
            except ValueError:
                raise HTTPException(status_code=400, detail=f"Invalid date: {value}")


def _to_record(body: BaseModel) -> dict:
    data = body.model_dump()
    record = {
        'employee': data['employeeId'],
        'leave_type': data['leaveType'],
        'is_paid': data['isPaid'],
        'status': data['status'],
        'start_date': data['startDate'],
        'end_date': data['endDate'],
        'reason': data['reason'],
    }
    return {k: v for k, v in record.items() if v is not None}


def _raise_for(e: ValueError, context: str) -> HTTPException:
    return raise_for_value_error(e, context, not_found="Leave request not found", not_found_status=404)


@router.post("/search", summary="Search leaves",
             description=(
                 "Leaves touching the date range, filtered by employee, paid flag, type and status, "
                 "newest first. Always answers `{pagination, items}`; the page is applied only with "
                 "`paginated=true`."
             ))
def search_leaves(body: LeaveSearch, pages: PageParams = Depends(), _user: dict = Depends(_can_view)) -> SearchResult:
    _check_dates(body.fromDate, body.toDate)
    try:
        rows = get_db().search_leaves(
            body.employeeId, body.fromDate, body.toDate, body.isPaid, body.leaveType, body.status,
        )
    except Exception as e:
        raise _sanitize_500(e, 'search_leaves')
    if pages.paginated:
        return pages.apply(rows)
    return {'pagination': {'count': len(rows), 'pageCount': math.ceil(len(rows) / pages.items_per_page)}, 'items': rows}


@router.post("", summary="Apply for leave",
             description="File a leave for an employee. Filing it as already approved needs leave management rights.")
def apply_leave(body: LeaveCreate, _user: dict = Depends(require_auth)):
    _check_dates(body.startDate, body.endDate)
    if body.endDate < body.startDate:
        raise HTTPException(status_code=400, detail="End date cannot be before start date")
    if body.status == 'approved' and not has_any_perm(_MANAGE_PERMS, _user.get('permissions')):
        raise HTTPException(status_code=403, detail="You don't have permission to manage leaves")
    try:
        result = get_db().apply_leave(_to_record(body))
    except ValueError as e:
        raise raise_for_value_error(e, 'apply_leave', not_found="Employee not found")
    except Exception as e:
        raise _sanitize_500(e, 'apply_leave')
    broadcast("leave_changed", {"action": "create", "id": result['id']})
    return result


@router.patch("/{leave_id}/status", summary="Approve or reject a leave")
def update_leave_status(leave_id: int, body: LeaveStatus, _user: dict = Depends(_can_manage)):
    try:
        result = get_db().set_leave_status(leave_id, body.status, _user.get('id'))
    except ValueError as e:
        raise _raise_for(e, f'update_leave_status/{leave_id}')
    except Exception as e:
        raise _sanitize_500(e, f'update_leave_status/{leave_id}')
    _logger.info("LEAVE_%s | reviewer=%s leave_id=%d", body.status.upper(), _user.get('name'), leave_id)
    broadcast("leave_changed", {"action": body.status, "id": leave_id})
    return result


@router.patch("/{leave_id}", summary="Edit a pending leave")
def update_leave(leave_id: int, body: LeaveUpdate, _user: dict = Depends(_can_manage)):
    _check_dates(body.startDate, body.endDate)
    data = _to_record(body)
    if not data:
        raise HTTPException(status_code=400, detail="No update fields provided")
    try:
        result = get_db().update_leave(leave_id, data)
    except ValueError as e:
        raise _raise_for(e, f'update_leave/{leave_id}')
    except Exception as e:
        raise _sanitize_500(e, f'update_leave/{leave_id}')
    broadcast("leave_changed", {"action": "update", "id": leave_id})
    return result


@router.delete("/{leave_id}", summary="Delete leave")
def delete_leave(leave_id: int, _user: dict = Depends(_can_manage)):
    removed = get_db().delete_leave(leave_id)
    if removed is None:
        raise HTTPException(status_code=404, detail="Leave request not found")
    _logger.warning("AUDIT LEAVE_DELETE | user=%s leave_id=%d", _user.get('name'), leave_id)
    broadcast("leave_changed", {"action": "delete", "id": leave_id})
    return {"success": True}
