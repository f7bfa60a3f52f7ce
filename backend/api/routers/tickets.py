"""Ticket router: issue tracker records and their commit-style work log."""
from fastapi import APIRouter, HTTPException, Query, Depends
from pydantic import BaseModel, BeforeValidator, Field
from typing import Annotated, Literal, Optional
from schllib.constants import TICKET_TYPES, TICKET_STATUSES, TICKET_PRIORITIES
from schllib.permissions import has_perm
from ..dependencies import (
    get_db, require_perm, _sanitize_500, _logger, raise_for_value_error, PageParams,
)
from ..types import TicketList, TicketRecord, SearchResult
from .events import broadcast

router = APIRouter()

_TICKET_PERMS = ('ticket:create_ticket', 'ticket:review_works', 'ticket:submit_daily_work')
_REVIEWER = 'ticket:review_works'

_any_ticket_perm = require_perm(*_TICKET_PERMS, detail="You don't have permission to view tickets")


def _lower(value):
    return value.strip().lower() if isinstance(value, str) else value


TicketType = Annotated[Literal[TICKET_TYPES], BeforeValidator(_lower)]
TicketStatus = Annotated[Literal[TICKET_STATUSES], BeforeValidator(_lower)]
TicketPriority = Annotated[Literal[TICKET_PRIORITIES], BeforeValidator(_lower)]


class Assignee(BaseModel):
    name: str
    db_id: int
    e_id: Optional[str] = None


class TicketCreate(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = ''
    type: TicketType
    status: TicketStatus = 'backlog'
    priority: TicketPriority = 'medium'
    tags: list[str] = []
    assignees: list[Assignee] = []
    deadline: Optional[str] = None


class TicketUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    type: Optional[TicketType] = None
    status: Optional[TicketStatus] = None
    priority: Optional[TicketPriority] = None
    tags: Optional[list[str]] = None
    assignees: Optional[list[Assignee]] = None
    deadline: Optional[str] = None


class TicketSearch(BaseModel):
    ticketNumber: Optional[str] = None
    title: Optional[str] = None
    type: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    fromDate: Optional[str] = None
    toDate: Optional[str] = None
    deadlineStatus: Optional[Literal['overdue', 'not-overdue']] = None
    createdBy: Optional[int] = None
    assignee: Optional[int] = None
    excludeClosed: bool = False


class CommitCreate(BaseModel):
    sha: Optional[str] = ''
    message: str = Field(..., min_length=1)
    description: Optional[str] = ''
    type: Optional[TicketType] = None
    status: Optional[TicketStatus] = None
    priority: Optional[TicketPriority] = None


class CommitUpdate(BaseModel):
    sha: Optional[str] = None
    message: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None


class CommitSearch(BaseModel):
    message: Optional[str] = None
    ticketNumber: Optional[str] = None
    createdBy: Optional[int] = None
    fromDate: Optional[str] = None
    toDate: Optional[str] = None


def _is_owner_or_reviewer(record: dict, user: dict) -> bool:
    return record.get('created_by') == user.get('id') or has_perm(_REVIEWER, user.get('permissions'))


def _visible_ticket(ticket: Optional[dict], user: dict) -> dict:
    if ticket is None:
        raise HTTPException(status_code=404, detail="Ticket not found")
    if not _is_owner_or_reviewer(ticket, user):
        raise HTTPException(status_code=403, detail="You don't have permission to view this ticket")
    return ticket


# ── Tickets ──────────────────────────────────────────────────
@router.post("/v1/ticket/create-ticket", tags=["Tickets"], summary="Create ticket",
             description="Open a ticket numbered `SCHL-T<YYYYMM>-<seq>`. Requires ticket:create_ticket.")
def create_ticket(body: TicketCreate, _user: dict = Depends(require_perm(
    'ticket:create_ticket', detail="You don't have permission to create tickets",
))) -> TicketRecord:
    data = body.model_dump()
    data['title'] = data['title'].strip()
    data['created_by'] = _user.get('id')
    data['assigned_by'] = _user.get('id') if data['assignees'] else None
    try:
        ticket = get_db().create_ticket(data)
    except Exception as e:
        raise _sanitize_500(e, 'create_ticket')
    broadcast("ticket_changed", {"action": "create", "id": ticket['id']})
    return ticket


@router.get("/v1/ticket/get-ticket/{ticket_id}", tags=["Tickets"], summary="Get ticket by id")
def get_ticket(ticket_id: int, _user: dict = Depends(_any_ticket_perm)) -> TicketRecord:
    return _visible_ticket(get_db().get_ticket(ticket_id), _user)


@router.get("/v1/ticket/get-ticket", tags=["Tickets"], summary="Get ticket by number")
def get_ticket_by_number(
    ticketNo: str = Query(..., min_length=1, description="Ticket number, e.g. SCHL-T202501-0001"),
    _user: dict = Depends(_any_ticket_perm),
) -> TicketRecord:
    return _visible_ticket(get_db().get_ticket_by_number(ticketNo.strip()), _user)


@router.post("/v1/ticket/search-tickets", tags=["Tickets"], summary="Search tickets",
             description=(
                 "Filter tickets. Users without ticket:review_works, and anyone passing "
                 "`myTickets=true`, only see their own tickets. Open tickets come first, by "
                 "priority, then newest."
             ))
def search_tickets(
    body: TicketSearch,
    pages: PageParams = Depends(),
    myTickets: bool = Query(False, description="Only tickets created by the caller"),
    _user: dict = Depends(_any_ticket_perm),
) -> SearchResult:
    created_by = body.createdBy
    if myTickets or not has_perm(_REVIEWER, _user.get('permissions')):
        created_by = _user.get('id')
    try:
        rows = get_db().search_tickets(
            ticket_number=body.ticketNumber,
            title=body.title,
            ticket_type=body.type,
            status=body.status,
            priority=body.priority,
            date_from=body.fromDate,
            date_to=body.toDate,
            deadline_status=body.deadlineStatus,
            created_by=created_by,
            assignee=body.assignee,
            exclude_closed=body.excludeClosed,
        )
    except Exception as e:
        raise _sanitize_500(e, 'search_tickets')
    return pages.apply(rows)


@router.get("/v1/ticket/work-log-tickets", tags=["Tickets"], summary="Open tickets assigned to me")
def work_log_tickets(_user: dict = Depends(_any_ticket_perm)) -> TicketList:
    return get_db().get_work_log_tickets(_user.get('id'))


@router.put("/v1/ticket/update-ticket/{ticket_id}", tags=["Tickets"], summary="Update ticket")
def update_ticket(ticket_id: int, body: TicketUpdate, _user: dict = Depends(_any_ticket_perm)):
    db = get_db()
    existing = db.get_ticket(ticket_id)
    if existing is None:
        raise HTTPException(status_code=404, detail="Ticket not found")
    if not _is_owner_or_reviewer(existing, _user):
        raise HTTPException(status_code=403, detail="You don't have permission to update this ticket")
    data = body.model_dump(exclude_unset=True)
    data = {k: v for k, v in data.items() if v is not None or k == 'deadline'}
    if not data:
        raise HTTPException(status_code=400, detail="No update fields provided")
    if 'assignees' in data:
        data['assigned_by'] = _user.get('id') if data['assignees'] else None
    try:
        db.update_ticket(ticket_id, data)
    except ValueError as e:
        raise raise_for_value_error(
            e, f'update_ticket/{ticket_id}', not_found="Ticket not found", not_found_status=404,
        )
    except Exception as e:
        raise _sanitize_500(e, f'update_ticket/{ticket_id}')
    broadcast("ticket_changed", {"action": "update", "id": ticket_id})
    return {"ok": True, "message": "Updated the ticket successfully"}


@router.delete("/v1/ticket/delete-ticket/{ticket_id}", tags=["Tickets"], summary="Delete ticket",
               description="Delete a ticket together with its work log. Owner or ticket:review_works only.")
def delete_ticket(ticket_id: int, _user: dict = Depends(_any_ticket_perm)):
    db = get_db()
    existing = db.get_ticket(ticket_id)
    if existing is None:
        raise HTTPException(status_code=404, detail="Ticket not found")
    if not _is_owner_or_reviewer(existing, _user):
        raise HTTPException(status_code=403, detail="You don't have permission to delete this ticket")
    db.delete_ticket(ticket_id)
    _logger.warning(
        "AUDIT TICKET_DELETE | user=%s ticket=%s", _user.get('name'), existing.get('ticket_number'),
    )
    broadcast("ticket_changed", {"action": "delete", "id": ticket_id})
    return {"ok": True, "message": "Deleted the ticket successfully"}


# ── Work log ─────────────────────────────────────────────────
@router.post("/v1/ticket/add-commit/{ticket_id}", tags=["Tickets"], summary="Add work log entry",
             description=(
                 "Record a commit-style work entry on a ticket. Optional type, status and "
                 "priority are applied to the ticket in the same call."
             ))
def add_commit(ticket_id: int, body: CommitCreate, _user: dict = Depends(_any_ticket_perm)):
    db = get_db()
    ticket = db.get_ticket(ticket_id)
    if ticket is None:
        raise HTTPException(status_code=404, detail="Ticket not found")
    assigned = any(a.get('db_id') == _user.get('id') for a in ticket.get('assignees') or [])
    if not assigned and not _is_owner_or_reviewer(ticket, _user):
        raise HTTPException(status_code=403, detail="You don't have permission to update this ticket")
    try:
        commit = db.create_commit_log({
            'ticket_id': ticket_id,
            'ticket_number': ticket.get('ticket_number'),
            'sha': (body.sha or '').strip(),
            'message': body.message.strip(),
            'description': (body.description or '').strip(),
            'created_by': _user.get('id'),
        })
        ticket_patch = {k: getattr(body, k) for k in ('type', 'status', 'priority') if getattr(body, k)}
        if ticket_patch:
            db.update_ticket(ticket_id, ticket_patch)
    except Exception as e:
        raise _sanitize_500(e, f'add_commit/{ticket_id}')
    broadcast("ticket_changed", {"action": "commit", "id": ticket_id})
    return {"ok": True, "record": commit}


@router.post("/v1/ticket/search-commit-logs", tags=["Tickets"], summary="Search work log",
             description="Filter work log entries by message, ticket number, author and date; newest first.")
def search_commit_logs(body: CommitSearch, pages: PageParams = Depends(),
                       _user: dict = Depends(_any_ticket_perm)) -> SearchResult:
    try:
        rows = get_db().search_commit_logs(
            body.message, body.ticketNumber, body.createdBy, body.fromDate, body.toDate,
        )
    except Exception as e:
        raise _sanitize_500(e, 'search_commit_logs')
    return pages.apply(rows)


def _own_commit(commit_id: int, user: dict, action: str) -> dict:
    commit = get_db().get_commit_log(commit_id)
    if commit is None:
        raise HTTPException(status_code=404, detail="Commit not found")
    if not _is_owner_or_reviewer(commit, user):
        raise HTTPException(status_code=403, detail=f"You don't have permission to {action} this commit")
    return commit


@router.put("/v1/ticket/update-commit/{commit_id}", tags=["Tickets"], summary="Update work log entry")
def update_commit(commit_id: int, body: CommitUpdate, _user: dict = Depends(_any_ticket_perm)):
    _own_commit(commit_id, _user, 'update')
    data = {k: v.strip() for k, v in body.model_dump().items() if v is not None}
    if not data:
        raise HTTPException(status_code=400, detail="No update fields provided")
    try:
        commit = get_db().update_commit_log(commit_id, data)
    except ValueError as e:
        raise raise_for_value_error(
            e, f'update_commit/{commit_id}', not_found="Commit not found", not_found_status=404,
        )
    broadcast("ticket_changed", {"action": "commit", "id": commit.get('ticket_id')})
    return {"ok": True, "record": commit}


@router.delete("/v1/ticket/delete-commit/{commit_id}", tags=["Tickets"], summary="Delete work log entry")
def delete_commit(commit_id: int, _user: dict = Depends(_any_ticket_perm)):
    commit = _own_commit(commit_id, _user, 'delete')
    get_db().delete_commit_log(commit_id)
    broadcast("ticket_changed", {"action": "commit", "id": commit.get('ticket_id')})
    return {"ok": True, "message": "Deleted the commit successfully"}
