"""Holiday router: public holidays (single days or ranges) tied to an attendance flag."""
from fastapi import APIRouter, HTTPException, Query, Depends
from pydantic import BaseModel, Field
from typing import Optional
from schllib.dates import parse_date
from ..dependencies import get_db, require_auth, require_perm, _sanitize_500, _logger, raise_for_value_error
from .events import broadcast

router = APIRouter(prefix="/v1/holidays", tags=["Holidays"])

_can_manage = require_perm('settings:the_super_admin', detail="You don't have permission to manage holidays")

_DATE_PATTERN = r'^\d{4}-\d{2}-\d{2}$'


class HolidayCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    dateFrom: str = Field(..., pattern=_DATE_PATTERN)
    dateTo: Optional[str] = Field(None, pattern=_DATE_PATTERN)
    flagId: Optional[int] = None
    comment: Optional[str] = Field('', max_length=500)


class HolidayUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    dateFrom: Optional[str] = Field(None, pattern=_DATE_PATTERN)
    dateTo: Optional[str] = Field(None, pattern=_DATE_PATTERN)
    flagId: Optional[int] = None
    comment: Optional[str] = Field(None, max_length=500)


def _to_record(body: BaseModel) -> dict:
    """API field names to stored ones, dropping unset values."""
    data = body.model_dump()
    for value in (data['dateFrom'], data['dateTo']):
        if value:
            try:
                parse_date(value)
            except ValueError:
                raise HTTPException(status_code=400, detail=f"Invalid date: {value}")
    if data['flagId'] is not None and get_db().get_attendance_flag(data['flagId']) is None:
        raise HTTPException(status_code=400, detail="Attendance flag not found")
    record = {
        'name': data['name'].strip() if data['name'] else data['name'],
        'date_from': data['dateFrom'],
        'date_to': data['dateTo'],
        'flag': data['flagId'],
        'comment': data['comment'],
    }
    return {k: v for k, v in record.items() if v is not None}


def _raise_for(e: ValueError, context: str) -> HTTPException:
    return raise_for_value_error(
        e, context, not_found="Holiday not found", not_found_status=404,
        duplicate="A holiday already exists on this date",
    )


@router.get("", summary="List holidays", description="Holidays sorted by start date, optionally only those of `year`.")
def list_holidays(
    year: Optional[int] = Query(None, ge=1970, le=9999),
    _user: dict = Depends(require_auth),
):
    return get_db().get_holidays(year)


@router.post("", summary="Create holiday",
             description="A holiday without `dateTo` covers one day. The flag defaults to the `H` attendance flag.")
def create_holiday(body: HolidayCreate, _user: dict = Depends(_can_manage)):
    try:
        result = get_db().create_holiday(_to_record(body))
    except ValueError as e:
        raise _raise_for(e, 'create_holiday')
    except Exception as e:
        raise _sanitize_500(e, 'create_holiday')
    broadcast("holiday_changed", {"action": "create", "id": result['id']})
    return {"ok": True, "record": result}


@router.put("/{holiday_id}", summary="Update holiday")
def update_holiday(holiday_id: int, body: HolidayUpdate, _user: dict = Depends(_can_manage)):
    data = _to_record(body)
    if not data:
        raise HTTPException(status_code=400, detail="No update fields provided")
    try:
        result = get_db().update_holiday(holiday_id, data)
    except ValueError as e:
        raise _raise_for(e, f'update_holiday/{holiday_id}')
    except Exception as e:
        raise _sanitize_500(e, f'update_holiday/{holiday_id}')
    broadcast("holiday_changed", {"action": "update", "id": holiday_id})
    return {"ok": True, "record": result}


@router.delete("/{holiday_id}", summary="Delete holiday")
def delete_holiday(holiday_id: int, _user: dict = Depends(_can_manage)):
    removed = get_db().delete_holiday(holiday_id)
    if removed is None:
        raise HTTPException(status_code=404, detail="Holiday not found")
    _logger.warning("AUDIT HOLIDAY_DELETE | user=%s name=%s", _user.get('name'), removed.get('name'))
    broadcast("holiday_changed", {"action": "delete", "id": holiday_id})
    return {"ok": True, "record": removed}
