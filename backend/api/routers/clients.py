"""Client router: search, create, update, lookup and delete client records."""
from fastapi import APIRouter, HTTPException, Depends
from pydantic import BaseModel, Field
from typing import Literal, Optional
from schllib.constants import CURRENCIES
from ..dependencies import (
    get_db, require_perm, _sanitize_500, _logger, raise_for_value_error, PageParams,
)
from ..types import ClientList, SearchResult
from .events import broadcast

router = APIRouter()

Currency = Literal[CURRENCIES]

_EMAIL_PATTERN = r'^[^@\s]+@[^@\s]+\.[^@\s]+$'


class ClientCreate(BaseModel):
    client_code: str = Field(..., min_length=1)
    client_name: str = Field(..., min_length=1)
    marketer: str = Field(..., min_length=1)
    contact_person: str = Field(..., min_length=1)
    contact_number: str = Field(..., min_length=1)
    email: str = Field(..., pattern=_EMAIL_PATTERN)
    designation: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    prices: Optional[str] = ''
    currency: Currency = '$'
    vat_number: Optional[str] = ''
    tax_id: Optional[str] = ''
    category: Optional[str] = ''
    last_invoice_number: Optional[str] = None


class ClientUpdate(BaseModel):
    client_code: Optional[str] = Field(None, min_length=1)
    client_name: Optional[str] = Field(None, min_length=1)
    marketer: Optional[str] = None
    contact_person: Optional[str] = None
    contact_number: Optional[str] = None
    email: Optional[str] = Field(None, pattern=_EMAIL_PATTERN)
    designation: Optional[str] = None
    country: Optional[str] = None
    address: Optional[str] = None
    prices: Optional[str] = None
    currency: Optional[Currency] = None
    vat_number: Optional[str] = None
    tax_id: Optional[str] = None
    category: Optional[str] = None
    last_invoice_number: Optional[str] = None


class ClientSearch(BaseModel):
    countryName: Optional[str] = None
    clientCode: Optional[str] = None
    contactPerson: Optional[str] = None
    marketerName: Optional[str] = None
    category: Optional[str] = None
    generalSearchString: Optional[str] = None
    orderFrequency: Optional[Literal['consistent', 'regular', 'irregular']] = None


def _clean(data: dict) -> dict:
    """Trim strings and lower-case the email address."""
    cleaned = {k: v.strip() if isinstance(v, str) else v for k, v in data.items()}
    if cleaned.get('email'):
        cleaned['email'] = cleaned['email'].lower()
    return cleaned


def search_client_rows(body: ClientSearch) -> ClientList:
    """Run a client search; shared with the export endpoint."""
    return get_db().search_clients(
        country=body.countryName,
        client_code=body.clientCode,
        contact_person=body.contactPerson,
        marketer=body.marketerName,
        category=body.category,
        general_search=body.generalSearchString,
        order_frequency=body.orderFrequency,
    )


@router.post("/v1/client/search-clients", tags=["Clients"], summary="Search clients",
             description=(
                 "Filter clients by country, code, contact, marketer, category or a general "
                 "search string. Each client carries `last_order_date`; `orderFrequency` keeps "
                 "only consistent (≤14 days), regular (15-29) or irregular (≥30 days or never) clients."
             ))
def search_clients(body: ClientSearch, pages: PageParams = Depends()) -> SearchResult:
    try:
        rows = search_client_rows(body)
    except Exception as e:
        raise _sanitize_500(e, 'search_clients')
    return pages.apply(rows)


@router.post("/v1/client/create-client", tags=["Clients"], summary="Create client",
             description="Create a client. The client code must be unique. Requires admin:create_client.")
def create_client(body: ClientCreate, _user: dict = Depends(require_perm(
    'admin:create_client', detail="You don't have permission to create clients",
))):
    data = _clean(body.model_dump())
    data['updated_by'] = _user.get('real_name') or _user.get('name')
    try:
        result = get_db().create_client(data)
    except ValueError as e:
        raise raise_for_value_error(
            e, 'create_client', not_found="Client not found",
            duplicate="Client with the same code already exists",
        )
    except Exception as e:
        raise _sanitize_500(e, 'create_client')
    broadcast("client_changed", {"action": "create", "id": result['id']})
    return {"ok": True, "record": result}


@router.put("/v1/client/update-client/{client_id}", tags=["Clients"], summary="Update client",
            description="Patch a client. Only the fields that are sent are changed. Requires admin:create_client.")
def update_client(client_id: int, body: ClientUpdate, _user: dict = Depends(require_perm(
    'admin:create_client', 'admin:manage_client', detail="You don't have permission to update clients",
))):
    data = _clean({k: v for k, v in body.model_dump().items() if v is not None})
    if not data:
        raise HTTPException(status_code=400, detail="No update fields provided")
    data['updated_by'] = _user.get('real_name') or _user.get('name')
    try:
        result = get_db().update_client(client_id, data)
    except ValueError as e:
        raise raise_for_value_error(
            e, f'update_client/{client_id}', not_found="Client not found",
            duplicate="Client with the same code already exists", duplicate_status=409,
        )
    except Exception as e:
        raise _sanitize_500(e, f'update_client/{client_id}')
    broadcast("client_changed", {"action": "update", "id": client_id})
    return {"ok": True, "record": result}


@router.get("/v1/client/get-client/{param}", tags=["Clients"], summary="Get client",
            description="Look up a client by numeric id or, for anything else, by client code (case-insensitive).")
def get_client(param: str, _user: dict = Depends(require_perm(
    'admin:manage_client', detail="You don't have permission to view client details",
))):
    db = get_db()
    param = param.strip()
    client = db.get_client(int(param)) if param.isdigit() else db.get_client_by_code(param)
    if client is None:
        raise HTTPException(status_code=400, detail="Client not found")
    return client


@router.delete("/v1/client/delete-client/{client_id}", tags=["Clients"], summary="Delete client",
               description=(
                   "Delete a client immediately. Requires admin:manage_client; everybody else files "
                   "a `Client delete` request through `/v1/approval/new-request`."
               ))
def delete_client(client_id: int, _user: dict = Depends(require_perm(
    'admin:manage_client', detail="You don't have permission to delete clients",
))):
    removed = get_db().delete_client(client_id)
    if removed is None:
        raise HTTPException(status_code=400, detail="Client not found")
    _logger.warning(
        "AUDIT CLIENT_DELETE | user=%s client_id=%d code=%s",
        _user.get('name'), client_id, removed.get('client_code')
    )
    broadcast("client_changed", {"action": "delete", "id": client_id})
    return {"ok": True, "message": "Deleted the client successfully"}
