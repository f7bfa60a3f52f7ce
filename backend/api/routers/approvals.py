"""Approval router: change requests that a reviewer approves (and applies) or rejects."""
from fastapi import APIRouter, HTTPException, Query, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError
from typing import Any, Optional
from schllib.changes import changes_to_patch, get_object_changes
from schllib.constants import APPROVAL_MODELS, APPROVAL_ACTIONS
from schllib.permissions import has_any_perm
from ..dependencies import (
    get_db, require_auth, require_perm, _sanitize_500, _logger, invalidate_sessions_for_user, PageParams,
)
from ..types import ApprovalRecord, SearchResult
from .auth import UserCreate, UserUpdate
from .clients import ClientCreate, ClientUpdate
from .employees import EmployeeCreate, EmployeeUpdate
from .events import broadcast
from .orders import OrderCreate, OrderUpdate

router = APIRouter()

_can_review = require_perm('admin:check_approvals', detail="You don't have permission to approve requests")


class UserPatch(UserUpdate):
    # Approved user updates may also reset the password
    password: Optional[str] = Field(None, min_length=1)


# (create model, update model) checked when a request is filed
_PAYLOAD_MODELS: dict[str, tuple[type[BaseModel], type[BaseModel]]] = {
    'User': (UserCreate, UserPatch),
    'Employee': (EmployeeCreate, EmployeeUpdate),
    'Order': (OrderCreate, OrderUpdate),
    'Client': (ClientCreate, ClientUpdate),
}


class ApprovalCreate(BaseModel):
    target_model: str
    action: str
    object_id: Optional[int] = None
    changes: Optional[list[dict]] = None
    new_data: Optional[dict[str, Any]] = None
    deleted_data: Optional[dict[str, Any]] = None


class SingleResponse(BaseModel):
    objectId: Optional[int] = None
    response: Optional[str] = None
    reviewedBy: Optional[int] = None


class BulkResponse(BaseModel):
    objectIds: Optional[list[int]] = None
    response: Optional[str] = None
    reviewedBy: Optional[int] = None


class ApprovalSearch(BaseModel):
    reqBy: Optional[str] = None
    reqType: Optional[str] = None
    approvedCheck: bool = False
    rejectedCheck: bool = False
    waitingCheck: bool = False
    fromDate: Optional[str] = None
    toDate: Optional[str] = None


def _validate_request(body: ApprovalCreate) -> None:
    if body.target_model not in APPROVAL_MODELS:
        raise HTTPException(status_code=400, detail="Invalid target_model")
    if body.action not in APPROVAL_ACTIONS:
        raise HTTPException(status_code=400, detail="Invalid action")
    if body.action == 'create':
        if not body.new_data:
            raise HTTPException(status_code=400, detail="new_data is required")
    elif body.action == 'update':
        if not body.object_id:
            raise HTTPException(status_code=400, detail="object_id is required")
        if not body.changes and not body.new_data:
            raise HTTPException(status_code=400, detail="changes array is required")
    else:
        if not body.object_id:
            raise HTTPException(status_code=400, detail="object_id is required")
        if not body.deleted_data:
            raise HTTPException(status_code=400, detail="deleted_data is required")


def _changes_from_new_data(body: ApprovalCreate) -> list[dict]:
    """Diff the stored record against the submitted fields of an update request."""
    db = get_db()
    lookup = {
        'User': db.get_user, 'Employee': db.get_employee,
        'Order': db.get_order, 'Client': db.get_client,
    }[body.target_model]
    current = lookup(body.object_id)
    if current is None:
        raise HTTPException(status_code=400, detail=f"{body.target_model} not found")
    old = {field: current.get(field) for field in body.new_data}
    changes = get_object_changes(old, body.new_data)
    if not changes:
        raise HTTPException(status_code=400, detail="No changes detected")
    return changes


def _describe_validation(e: ValidationError) -> str:
    return '; '.join(
        f"{'.'.join(str(part) for part in err['loc']) or 'body'}: {err['msg']}" for err in e.errors()
    )


def _check_payload(body: ApprovalCreate) -> None:
    """Validate the record a create or update request would write, as the direct endpoints do."""
    create_model, update_model = _PAYLOAD_MODELS[body.target_model]
    if body.action == 'create':
        try:
            body.new_data = create_model(**body.new_data).model_dump()
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=f"Invalid new_data: {_describe_validation(e)}")
    elif body.action == 'update':
        patch = changes_to_patch(body.changes)
        unknown = sorted(set(patch) - set(update_model.model_fields))
        if unknown:
            raise HTTPException(status_code=400, detail=f"Unknown field(s): {', '.join(unknown)}")
        try:
            update_model(**patch)
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=f"Invalid changes: {_describe_validation(e)}")


def _revoke_user_sessions(approvals: list[dict], reviewer: dict) -> None:
    """Drop the sessions of users deleted, or whose rights or password changed, by approved requests."""
    for approval in approvals:
        if approval.get('target_model') != 'User':
            continue
        if approval.get('action') == 'update':
            touched = changes_to_patch(approval.get('changes') or [])
            if not touched.keys() & {'permissions', 'password'}:
                continue
        elif approval.get('action') != 'delete':
            continue
        removed = invalidate_sessions_for_user(approval.get('object_id'))
        _logger.warning(
            "AUDIT USER_%s | reviewer=%s target_id=%s sessions_revoked=%d",
            approval['action'].upper(), reviewer.get('name'), approval.get('object_id'), removed,
        )


@router.post("/v1/approval/new-request", tags=["Approvals"], summary="File an approval request",
             description=(
                 "Request a create, update or delete of a User, Employee, Order or Client. "
                 "Creates need `new_data`, updates need `object_id` and either `changes` or the new "
                 "field values in `new_data` (diffed against the stored record), deletes need "
                 "`object_id` and `deleted_data`."
             ))
def new_request(body: ApprovalCreate, _user: dict = Depends(require_auth)) -> ApprovalRecord:
    _validate_request(body)
    if body.action == 'update' and not body.changes:
        body.changes = _changes_from_new_data(body)
        body.new_data = None
    _check_payload(body)
    if body.target_model == 'Order' and body.action == 'delete' and not has_any_perm(
        ('browse:delete_task', 'browse:delete_task_approval'), _user.get('permissions'),
    ):
        raise HTTPException(status_code=403, detail="You don't have permission to request task deletion")
    data = body.model_dump()
    data['req_by'] = _user.get('id')
    try:
        created = get_db().create_approval(data)
    except Exception as e:
        raise _sanitize_500(e, 'new_request')
    broadcast("approval_changed", {"action": "create", "id": created['id']})
    return created


def _respond(ids: list[int], response: str, reviewer: dict, reviewed_by: Optional[int]) -> JSONResponse:
    """Approve or reject every id; answer 207 when only some of them went through."""
    db = get_db()
    reviewer_id = reviewed_by if reviewed_by is not None else reviewer.get('id')
    try:
        if response == 'approve':
            successful, errors = db.approve_requests(ids, reviewer_id, reviewer.get('permissions') or [])
        else:
            successful, errors = db.reject_requests(ids, reviewer_id)
    except Exception as e:
        raise _sanitize_500(e, f'{response}_requests')
    _logger.info(
        "APPROVAL_%s | reviewer=%s ok=%d failed=%d",
        response.upper(), reviewer.get('name'), len(successful), len(errors),
    )
    if not successful:
        raise HTTPException(status_code=400, detail='; '.join(errors))
    if response == 'approve':
        _revoke_user_sessions(successful, reviewer)
    broadcast("approval_changed", {"action": response, "ids": [a['id'] for a in successful]})
    status_code = 207 if errors else 200
    return JSONResponse(
        status_code=status_code,
        content={"successful": successful, "errors": errors, "statusCode": status_code},
    )


@router.post("/v1/approval/single-response", tags=["Approvals"], summary="Answer one request")
def single_response(body: SingleResponse, _user: dict = Depends(_can_review)):
    if body.response not in ('approve', 'reject'):
        raise HTTPException(status_code=400, detail="Invalid response type")
    if body.objectId is None:
        raise HTTPException(status_code=400, detail="No approval ID provided")
    return _respond([body.objectId], body.response, _user, body.reviewedBy)


@router.post("/v1/approval/bulk-response", tags=["Approvals"], summary="Answer several requests",
             description=(
                 "Approve or reject several requests. Each one is processed on its own: the answer "
                 "lists the successful ones and the errors, with status 207 when some failed and "
                 "400 when none went through."
             ))
def bulk_response(body: BulkResponse, _user: dict = Depends(_can_review)):
    if not body.objectIds or not body.response:
        raise HTTPException(status_code=400, detail="Invalid body data")
    if body.response not in ('approve', 'reject'):
        raise HTTPException(status_code=400, detail="Invalid response type")
    return _respond(body.objectIds, body.response, _user, body.reviewedBy)


@router.post("/v1/approval/search-approvals", tags=["Approvals"], summary="Search approval requests",
             description=(
                 "Filter by requester name, request type (e.g. `Order delete`), status checkboxes "
                 "and creation date. Paginated results list pending requests first."
             ))
def search_approvals(
    body: ApprovalSearch,
    pages: PageParams = Depends(),
    filtered: bool = Query(False, description="Reject the call when no filter is set"),
    _user: dict = Depends(require_perm('admin:view_page', detail="You don't have permission to view approvals")),
) -> SearchResult:
    statuses = [
        status for status, checked in (
            ('approved', body.approvedCheck),
            ('rejected', body.rejectedCheck),
            ('pending', body.waitingCheck),
        ) if checked
    ]
    if filtered and not (body.reqBy or body.reqType or statuses or body.fromDate or body.toDate):
        raise HTTPException(status_code=400, detail="No filter applied")
    try:
        rows = get_db().search_approvals(
            req_by=body.reqBy,
            req_type=body.reqType,
            statuses=statuses,
            date_from=body.fromDate,
            date_to=body.toDate,
            pending_first=pages.paginated,
        )
    except Exception as e:
        raise _sanitize_500(e, 'search_approvals')
    return pages.apply(rows)
