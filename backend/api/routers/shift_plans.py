"""Shift plan router: date-ranged shift templates, per-day overrides and shift resolution."""
import math
from datetime import timedelta
from fastapi import APIRouter, HTTPException, Query, Depends
from pydantic import BaseModel, Field
from typing import Literal, Optional
from schllib.dates import parse_date
from schllib.shifts import SHIFT_TYPES, OVERRIDE_TYPES, crosses_midnight, shift_times_for, validate_shift_times
from ..dependencies import (
    get_db, require_perm, _sanitize_500, _logger, raise_for_value_error, PageParams,
)
from ..types import ShiftOverrideRecord, ShiftTemplateRecord, SearchResult
from .events import broadcast

router = APIRouter()

ShiftType = Literal[SHIFT_TYPES]
OverrideType = Literal[OVERRIDE_TYPES]

_DATE_PATTERN = r'^\d{4}-\d{2}-\d{2}$'
_TIME_PATTERN = r'^\d{2}:\d{2}$'

# Longest range /resolved answers in one call
_MAX_RESOLVE_DAYS = 62

_can_create = require_perm('admin:create_shift_plan', detail="You don't have permission to create shift plans")
_can_edit = require_perm('admin:edit_shift_plan', detail="You don't have permission to update shift plans")
_can_view = require_perm('admin:view_shift_plan', detail="You don't have permission to view shift plans")


class BulkShiftPlanCreate(BaseModel):
    employeeIds: list[int] = Field(..., min_length=1)
    fromDate: str = Field(..., pattern=_DATE_PATTERN)
    toDate: str = Field(..., pattern=_DATE_PATTERN)
    shiftType: ShiftType
    shiftStart: Optional[str] = Field(None, pattern=_TIME_PATTERN)
    shiftEnd: Optional[str] = Field(None, pattern=_TIME_PATTERN)
    changeReason: Optional[str] = None


class ShiftOverrideCreate(BaseModel):
    employeeId: int
    shiftDate: str = Field(..., pattern=_DATE_PATTERN)
    overrideType: OverrideType
    shiftType: Optional[ShiftType] = None
    shiftStart: Optional[str] = Field(None, pattern=_TIME_PATTERN)
    shiftEnd: Optional[str] = Field(None, pattern=_TIME_PATTERN)
    changeReason: Optional[str] = None


class ShiftTemplateUpdate(BaseModel):
    shiftType: Optional[ShiftType] = None
    shiftStart: Optional[str] = Field(None, pattern=_TIME_PATTERN)
    shiftEnd: Optional[str] = Field(None, pattern=_TIME_PATTERN)
    fromDate: Optional[str] = Field(None, pattern=_DATE_PATTERN)
    toDate: Optional[str] = Field(None, pattern=_DATE_PATTERN)
    active: Optional[bool] = None
    changeReason: Optional[str] = None


class ShiftPlanSearch(BaseModel):
    employeeId: Optional[int] = None
    fromDate: Optional[str] = Field(None, pattern=_DATE_PATTERN)
    toDate: Optional[str] = Field(None, pattern=_DATE_PATTERN)
    shiftType: Optional[ShiftType] = None
    active: Optional[Literal['true', 'false']] = None


def _check_dates(*values: Optional[str]) -> None:
    for value in values:
        if value is None:
            continue
        try:
            parse_date(value)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid date: {value}")


# ── Overrides ────────────────────────────────────────────────
@router.post("/v1/shift-plan/overrides/search", tags=["Shift Plans"], summary="Search shift overrides",
             description=(
                 "Per-day overrides filtered by employee and `shift_date` range, newest first. "
                 "Always answers `{pagination, items}`; the page is applied only with `paginated=true`."
             ))
def search_overrides(body: ShiftPlanSearch, pages: PageParams = Depends(), _user: dict = Depends(_can_view)):
    _check_dates(body.fromDate, body.toDate)
    rows = get_db().search_shift_overrides(body.employeeId, body.fromDate, body.toDate)
    if pages.paginated:
        return pages.apply(rows)
    return {'pagination': {'count': len(rows), 'pageCount': math.ceil(len(rows) / pages.items_per_page)}, 'items': rows}


@router.delete("/v1/shift-plan/overrides/{override_id}", tags=["Shift Plans"], summary="Delete shift override")
def delete_override(override_id: int, _user: dict = Depends(require_perm(
    'admin:edit_shift_plan', detail="You don't have permission to delete shift overrides",
))):
    removed = get_db().delete_shift_override(override_id)
    if removed is None:
        raise HTTPException(status_code=404, detail="Override not found")
    broadcast("shift_plan_changed", {"action": "delete_override", "id": override_id})
    return {"ok": True, "message": "Override deleted successfully"}


@router.post("/v1/shift-plan/create", tags=["Shift Plans"], summary="Create shift override",
             description=(
                 "Set the override of one employee on one day, replacing any earlier override "
                 "for that day. `replace` needs shiftType, shiftStart and shiftEnd; `cancel` leaves "
                 "the employee without a shift and `off_day` marks the day as off."
             ))
def create_override(body: ShiftOverrideCreate, _user: dict = Depends(_can_create)) -> ShiftOverrideRecord:
    _check_dates(body.shiftDate)
    if body.overrideType == 'replace' and not (body.shiftType and body.shiftStart and body.shiftEnd):
        raise HTTPException(
            status_code=400,
            detail="Replace overrides require shiftType, shiftStart, and shiftEnd",
        )
    crosses = False
    if body.shiftStart and body.shiftEnd:
        crosses = crosses_midnight(body.shiftStart, body.shiftEnd)
        try:
            validate_shift_times(body.shiftStart, body.shiftEnd, crosses)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
    try:
        record = get_db().upsert_shift_override(body.employeeId, body.shiftDate, {
            'override_type': body.overrideType,
            'shift_type': body.shiftType,
            'shift_start': body.shiftStart,
            'shift_end': body.shiftEnd,
            'crosses_midnight': crosses,
            'updated_by': _user.get('id'),
            'change_reason': body.changeReason,
        })
    except Exception as e:
        raise _sanitize_500(e, 'create_override')
    broadcast("shift_plan_changed", {"action": "override", "employee": body.employeeId, "date": body.shiftDate})
    return record


# ── Templates ────────────────────────────────────────────────
@router.post("/v1/shift-plan/create-bulk", tags=["Shift Plans"], summary="Create shift templates",
             description=(
                 "Create one active template per employee for a date range. Standard shift types "
                 "use fixed times (morning 07-15, evening 15-23, night 23-07); custom shifts need "
                 "shiftStart and shiftEnd. Nothing is created when any employee already has an "
                 "overlapping active template."
             ))
def create_bulk(body: BulkShiftPlanCreate, _user: dict = Depends(_can_create)):
    _check_dates(body.fromDate, body.toDate)
    if body.toDate < body.fromDate:
        raise HTTPException(status_code=400, detail="To date must be after from date")
    try:
        start, end, crosses = shift_times_for(body.shiftType, body.shiftStart, body.shiftEnd)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    try:
        created = get_db().create_shift_templates(
            body.employeeIds, body.fromDate, body.toDate, body.shiftType,
            start, end, crosses, _user.get('id'), body.changeReason,
        )
    except ValueError as e:
        raise raise_for_value_error(e, 'create_bulk', not_found="Shift template not found")
    except Exception as e:
        raise _sanitize_500(e, 'create_bulk')
    _logger.info(
        "SHIFT_TEMPLATES_CREATED | user=%s employees=%d range=%s..%s type=%s",
        _user.get('name'), len(created), body.fromDate, body.toDate, body.shiftType,
    )
    broadcast("shift_plan_changed", {"action": "create", "count": len(created)})
    return {
        "created": created,
        "total": len(created),
        "message": f"Created {len(created)} shift template(s)",
    }


@router.post("/v1/shift-plan/search", tags=["Shift Plans"], summary="Search shift templates",
             description="Templates overlapping the date range, sorted by `effective_from`.")
def search_templates(body: ShiftPlanSearch, pages: PageParams = Depends(), _user: dict = Depends(_can_view)) -> SearchResult:
    _check_dates(body.fromDate, body.toDate)
    try:
        rows = get_db().search_shift_templates(
            body.employeeId, body.fromDate, body.toDate, body.shiftType, body.active,
        )
    except Exception as e:
        raise _sanitize_500(e, 'search_shift_templates')
    return pages.apply(rows)


@router.get("/v1/shift-plan/by-employee/{employee_id}", tags=["Shift Plans"], summary="Templates of an employee")
def templates_by_employee(
    employee_id: int,
    fromDate: Optional[str] = Query(None, pattern=_DATE_PATTERN),
    toDate: Optional[str] = Query(None, pattern=_DATE_PATTERN),
    _user: dict = Depends(_can_view),
):
    return get_db().search_shift_templates(employee_id, fromDate, toDate)


@router.get("/v1/shift-plan/resolve/{employee_id}", tags=["Shift Plans"], summary="Resolve shift for a day",
            description=(
                "Effective shift of an employee on `date`: the day's override wins over the "
                "template. An `off_day` override is reported with its `override_type`; answers "
                "null when the day is cancelled or has no template."
            ))
def resolve_shift(
    employee_id: int,
    date: str = Query(..., pattern=_DATE_PATTERN),
    _user: dict = Depends(_can_view),
):
    _check_dates(date)
    return get_db().resolve_shift(employee_id, date)


@router.get("/v1/shift-plan/resolved/{employee_id}", tags=["Shift Plans"], summary="Resolve shifts for a range",
            description=f"One entry per day with the resolved shift and the weekend, holiday and leave flags (max {_MAX_RESOLVE_DAYS} days).")
def resolve_shift_range(
    employee_id: int,
    fromDate: str = Query(..., pattern=_DATE_PATTERN),
    toDate: str = Query(..., pattern=_DATE_PATTERN),
    _user: dict = Depends(_can_view),
):
    _check_dates(fromDate, toDate)
    if toDate < fromDate:
        raise HTTPException(status_code=400, detail="To date must be after from date")
    if parse_date(toDate) - parse_date(fromDate) >= timedelta(days=_MAX_RESOLVE_DAYS):
        raise HTTPException(status_code=400, detail=f"Date range must not exceed {_MAX_RESOLVE_DAYS} days")
    return get_db().resolve_shift_range(employee_id, fromDate, toDate)


@router.get("/v1/shift-plan/{template_id}", tags=["Shift Plans"], summary="Get shift template")
def get_template(template_id: int, _user: dict = Depends(_can_view)) -> ShiftTemplateRecord:
    template = get_db().get_shift_template(template_id)
    if template is None:
        raise HTTPException(status_code=404, detail="Shift template not found")
    return template


@router.put("/v1/shift-plan/{template_id}", tags=["Shift Plans"], summary="Update shift template",
            description=(
                "Change times, range or the active flag of a template. `crosses_midnight` is "
                "recomputed; an active template may not overlap another active template of the "
                "same employee."
            ))
def update_template(template_id: int, body: ShiftTemplateUpdate, _user: dict = Depends(_can_edit)) -> ShiftTemplateRecord:
    _check_dates(body.fromDate, body.toDate)
    data = {
        'shift_type': body.shiftType,
        'shift_start': body.shiftStart,
        'shift_end': body.shiftEnd,
        'effective_from': body.fromDate,
        'effective_to': body.toDate,
        'active': body.active,
        'change_reason': body.changeReason,
    }
    try:
        updated = get_db().update_shift_template(template_id, data, _user.get('id'))
    except ValueError as e:
        raise raise_for_value_error(
            e, f'update_shift_template/{template_id}',
            not_found="Shift template not found", not_found_status=404,
        )
    except Exception as e:
        raise _sanitize_500(e, f'update_shift_template/{template_id}')
    broadcast("shift_plan_changed", {"action": "update", "id": template_id})
    return updated
