"""Department router: departments and their weekend days."""
from fastapi import APIRouter, HTTPException, Depends
from pydantic import BaseModel, Field
from typing import Optional
from ..dependencies import get_db, require_auth, require_perm, _sanitize_500, _logger, raise_for_value_error
from .events import broadcast

router = APIRouter(prefix="/v1/departments", tags=["Departments"])

_can_manage = require_perm('settings:the_super_admin', detail="You don't have permission to manage departments")

# 0 = Sunday ... 6 = Saturday
WeekendDays = list[int]


class DepartmentCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    weekend_days: WeekendDays = Field(..., min_length=1)
    description: Optional[str] = ''


class DepartmentUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    weekend_days: Optional[WeekendDays] = None
    description: Optional[str] = None


def _check_weekend_days(days: Optional[list]) -> Optional[list]:
    if days is None:
        return None
    if any(d < 0 or d > 6 for d in days):
        raise HTTPException(status_code=400, detail="Weekend days must be between 0 (Sunday) and 6 (Saturday)")
    return sorted(set(days))


@router.post("", summary="Create department")
def create_department(body: DepartmentCreate, _user: dict = Depends(_can_manage)):
    data = body.model_dump()
    data['weekend_days'] = _check_weekend_days(data['weekend_days'])
    try:
        result = get_db().create_department(data)
    except ValueError as e:
        raise raise_for_value_error(
            e, 'create_department', not_found="Department not found",
            duplicate="Department already exists",
        )
    except Exception as e:
        raise _sanitize_500(e, 'create_department')
    broadcast("department_changed", {"action": "create", "id": result['id']})
    return {"ok": True, "record": result}


@router.get("", summary="List departments", description="All departments sorted by name.")
def list_departments(_user: dict = Depends(require_auth)):
    return get_db().get_departments()


@router.get("/{dept_id}", summary="Get department")
def get_department(dept_id: int, _user: dict = Depends(require_auth)):
    dept = get_db().get_department(dept_id)
    if dept is None:
        raise HTTPException(status_code=404, detail="Department not found")
    return dept


@router.put("/{dept_id}", summary="Update department")
def update_department(dept_id: int, body: DepartmentUpdate, _user: dict = Depends(_can_manage)):
    data = {k: v for k, v in body.model_dump().items() if v is not None}
    if 'weekend_days' in data:
        data['weekend_days'] = _check_weekend_days(data['weekend_days'])
    if 'name' in data:
        data['name'] = data['name'].strip()
    if not data:
        raise HTTPException(status_code=400, detail="No update fields provided")
    try:
        result = get_db().update_department(dept_id, data)
    except ValueError as e:
        raise raise_for_value_error(
            e, f'update_department/{dept_id}', not_found="Department not found",
            not_found_status=404, duplicate="Department name already taken",
        )
    except Exception as e:
        raise _sanitize_500(e, f'update_department/{dept_id}')
    broadcast("department_changed", {"action": "update", "id": dept_id})
    return {"ok": True, "record": result}


@router.delete("/{dept_id}", summary="Delete department")
def delete_department(dept_id: int, _user: dict = Depends(_can_manage)):
    removed = get_db().delete_department(dept_id)
    if removed is None:
        raise HTTPException(status_code=404, detail="Department not found")
    _logger.warning("AUDIT DEPARTMENT_DELETE | user=%s name=%s", _user.get('name'), removed.get('name'))
    broadcast("department_changed", {"action": "delete", "id": dept_id})
    return {"ok": True, "record": removed}
