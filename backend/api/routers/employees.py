"""Employees router: staff records referenced by users, shift plans and departments."""
from fastapi import APIRouter, HTTPException, Depends
from pydantic import BaseModel, Field
from typing import Literal, Optional
from schllib.constants import EMPLOYEE_STATUSES
from schllib.dates import parse_date
from ..dependencies import (
    get_db, require_perm, _sanitize_500, raise_for_value_error, PageParams,
)
from ..types import SearchResult
from .events import broadcast

router = APIRouter()

EmployeeStatus = Literal[EMPLOYEE_STATUSES]

_can_write = require_perm('admin:create_employee', detail="You don't have permission to create employees")
_can_view = require_perm(
    'admin:create_employee', 'admin:view_page', 'admin:view_shift_plan',
    detail="You don't have permission to view employees",
)


class EmployeeCreate(BaseModel):
    e_id: str = Field(..., min_length=1)
    real_name: str = Field(..., min_length=1)
    department: Optional[str] = ''
    designation: Optional[str] = ''
    joining_date: Optional[str] = ''
    status: EmployeeStatus = 'Active'
    email: Optional[str] = ''
    phone: Optional[str] = ''
    note: Optional[str] = ''


class EmployeeUpdate(BaseModel):
    e_id: Optional[str] = Field(None, min_length=1)
    real_name: Optional[str] = Field(None, min_length=1)
    department: Optional[str] = None
    designation: Optional[str] = None
    joining_date: Optional[str] = None
    status: Optional[EmployeeStatus] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    note: Optional[str] = None


class EmployeeSearch(BaseModel):
    generalSearchString: Optional[str] = None
    department: Optional[str] = None
    status: Optional[EmployeeStatus] = None


def _check_joining_date(data: dict) -> None:
    if data.get('joining_date'):
        try:
            parse_date(data['joining_date'])
        except ValueError:
            raise HTTPException(status_code=400, detail="Field 'joining_date' must be YYYY-MM-DD")


def _clean(data: dict) -> dict:
    cleaned = {k: v.strip() if isinstance(v, str) else v for k, v in data.items()}
    if cleaned.get('email'):
        cleaned['email'] = cleaned['email'].lower()
    return cleaned


@router.post("/v1/employee/create-employee", tags=["Employees"], summary="Create employee",
             description="Create an employee record. The employee id (`e_id`) must be unique. Requires admin:create_employee.")
def create_employee(body: EmployeeCreate, _user: dict = Depends(_can_write)):
    data = _clean(body.model_dump())
    _check_joining_date(data)
    try:
        result = get_db().create_employee(data)
    except ValueError as e:
        raise raise_for_value_error(
            e, 'create_employee', not_found="Employee not found",
            duplicate="Employee with the provided ID already exists", duplicate_status=409,
        )
    except Exception as e:
        raise _sanitize_500(e, 'create_employee')
    broadcast("employee_changed", {"action": "create", "id": result['id']})
    return {"ok": True, "record": result}


@router.put("/v1/employee/update-employee/{emp_id}", tags=["Employees"], summary="Update employee")
def update_employee(emp_id: int, body: EmployeeUpdate, _user: dict = Depends(_can_write)):
    data = _clean({k: v for k, v in body.model_dump().items() if v is not None})
    if not data:
        raise HTTPException(status_code=400, detail="No update fields provided")
    _check_joining_date(data)
    try:
        result = get_db().update_employee(emp_id, data)
    except ValueError as e:
        raise raise_for_value_error(
            e, f'update_employee/{emp_id}', not_found="Employee not found", not_found_status=404,
            duplicate="Employee with the provided ID already exists", duplicate_status=409,
        )
    except Exception as e:
        raise _sanitize_500(e, f'update_employee/{emp_id}')
    broadcast("employee_changed", {"action": "update", "id": emp_id})
    return {"ok": True, "record": result}


@router.post("/v1/employee/search-employees", tags=["Employees"], summary="Search employees")
def search_employees(body: EmployeeSearch, pages: PageParams = Depends(),
                     _user: dict = Depends(_can_view)) -> SearchResult:
    rows = get_db().search_employees(body.generalSearchString, body.department, body.status)
    return pages.apply(rows)


@router.get("/v1/employee/get-employee/{param}", tags=["Employees"], summary="Get employee",
            description="Look up an employee by numeric id or, for anything else, by employee id (`e_id`).")
def get_employee(param: str, _user: dict = Depends(_can_view)):
    db = get_db()
    param = param.strip()
    employee = db.get_employee(int(param)) if param.isdigit() else db.get_employee_by_eid(param)
    if employee is None and param.isdigit():
        employee = db.get_employee_by_eid(param)
    if employee is None:
        raise HTTPException(status_code=404, detail="Employee not found")
    return employee
