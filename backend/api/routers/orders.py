"""Order router: production jobs, their status changes and the work lists."""
from fastapi import APIRouter, HTTPException, Depends, Query
from pydantic import BaseModel, Field
from typing import Literal, Optional
from schllib.constants import ORDER_TYPES, ORDER_STATUSES, ORDER_PRIORITIES
from ..dependencies import (
    get_db, require_perm, _sanitize_500, _logger, raise_for_value_error, PageParams,
)
from ..types import OrderList, OrderRecord, SearchResult
from .events import broadcast

router = APIRouter()

OrderType = Literal[ORDER_TYPES]
OrderStatus = Literal[ORDER_STATUSES]
OrderPriority = Literal[ORDER_PRIORITIES]

_DATE_PATTERN = r'^\d{4}-\d{2}-\d{2}$'
_OPTIONAL_DATE_PATTERN = r'^(\d{4}-\d{2}-\d{2})?$'
_BD_TIME_PATTERN = r'^(([01]\d|2[0-3]):[0-5]\d)?$'


class OrderCreate(BaseModel):
    client_code: str = Field(..., min_length=1)
    client_name: str = Field(..., min_length=1)
    folder: Optional[str] = ''
    rate: Optional[float] = None
    quantity: int = Field(0, ge=0)
    download_date: str = Field(..., pattern=_DATE_PATTERN)
    delivery_date: Optional[str] = Field('', pattern=_OPTIONAL_DATE_PATTERN)
    delivery_bd_time: Optional[str] = Field('', pattern=_BD_TIME_PATTERN)
    task: str = Field(..., min_length=1)
    et: int = Field(0, ge=0)
    production: int = Field(0, ge=0)
    qc1: int = Field(0, ge=0)
    qc2: int = Field(0, ge=0)
    comment: Optional[str] = ''
    type: OrderType = 'general'
    status: OrderStatus = 'running'
    folder_path: Optional[str] = ''
    priority: OrderPriority = 'medium'
    progress: list[dict] = []


class OrderUpdate(BaseModel):
    client_code: Optional[str] = Field(None, min_length=1)
    client_name: Optional[str] = Field(None, min_length=1)
    folder: Optional[str] = None
    rate: Optional[float] = None
    quantity: Optional[int] = Field(None, ge=0)
    download_date: Optional[str] = Field(None, pattern=_DATE_PATTERN)
    delivery_date: Optional[str] = Field(None, pattern=_OPTIONAL_DATE_PATTERN)
    delivery_bd_time: Optional[str] = Field(None, pattern=_BD_TIME_PATTERN)
    task: Optional[str] = Field(None, min_length=1)
    et: Optional[int] = Field(None, ge=0)
    production: Optional[int] = Field(None, ge=0)
    qc1: Optional[int] = Field(None, ge=0)
    qc2: Optional[int] = Field(None, ge=0)
    comment: Optional[str] = None
    type: Optional[OrderType] = None
    status: Optional[OrderStatus] = None
    folder_path: Optional[str] = None
    priority: Optional[OrderPriority] = None
    progress: Optional[list[dict]] = None


class OrderSearch(BaseModel):
    clientCode: Optional[str] = None
    task: Optional[str] = None
    folder: Optional[str] = None
    type: Optional[str] = None
    status: Optional[str] = None
    fromDate: Optional[str] = None
    toDate: Optional[str] = None
    generalSearchString: Optional[str] = None
    invoice: bool = False


def search_order_rows(body: OrderSearch, by_status: bool = False) -> list:
    """Run an order search; shared with the export endpoint."""
    return get_db().search_orders(
        client_code=body.clientCode,
        task=body.task,
        folder=body.folder,
        order_type=body.type,
        status=body.status,
        date_from=body.fromDate,
        date_to=body.toDate,
        general_search=body.generalSearchString,
        exact_client=body.invoice,
        by_status=by_status,
    )


@router.post("/v1/order/search-orders", tags=["Orders"], summary="Search orders",
             description=(
                 "Filter orders by client, task (`A+B` matches orders containing both), folder, "
                 "type, status and download date range. Paginated results put paused and open "
                 "test jobs first, finished work last."
             ))
def search_orders(body: OrderSearch, pages: PageParams = Depends(), _user: dict = Depends(require_perm(
    'task:running_tasks', 'task:qc_waitlist', 'task:test_and_correction_tasks',
    detail="You don't have permission to view orders",
))) -> SearchResult:
    try:
        rows = search_order_rows(body, by_status=pages.paginated)
    except Exception as e:
        raise _sanitize_500(e, 'search_orders')
    return pages.apply(rows)


@router.get("/v1/order/client-orders/{code}", tags=["Orders"], summary="Orders of a client")
def client_orders(code: str, _user: dict = Depends(require_perm(
    'browse:view_page', 'task:view_page', detail="You don't have permission to view orders",
))) -> OrderList:
    code = code.strip()
    if not code:
        raise HTTPException(status_code=400, detail="Client code is required")
    rows = get_db().get_client_orders(code)
    if not rows:
        raise HTTPException(status_code=400, detail="No orders found")
    return rows


@router.post("/v1/order/create-order", tags=["Orders"], summary="Create order",
             description="Create a production order. Requires admin:create_task.")
def create_order(body: OrderCreate, _user: dict = Depends(require_perm(
    'admin:create_task', detail="You don't have permission to create task",
))):
    data = body.model_dump()
    data['client_code'] = data['client_code'].strip()
    data['updated_by'] = _user.get('real_name') or _user.get('name')
    try:
        result = get_db().create_order(data)
    except Exception as e:
        raise _sanitize_500(e, 'create_order')
    broadcast("order_changed", {"action": "create", "id": result['id']})
    return {"ok": True, "record": result}


@router.put("/v1/order/update-order/{order_id}", tags=["Orders"], summary="Update order")
def update_order(order_id: int, body: OrderUpdate, _user: dict = Depends(require_perm(
    'browse:edit_task', detail="You don't have permission to edit task",
))):
    data = {k: v for k, v in body.model_dump().items() if v is not None}
    if not data:
        raise HTTPException(status_code=400, detail="No update fields provided")
    data['updated_by'] = _user.get('real_name') or _user.get('name')
    try:
        result = get_db().update_order(order_id, data)
    except ValueError as e:
        raise raise_for_value_error(e, f'update_order/{order_id}', not_found="Order not found")
    except Exception as e:
        raise _sanitize_500(e, f'update_order/{order_id}')
    broadcast("order_changed", {"action": "update", "id": order_id})
    return {"ok": True, "record": result}


def _set_status(order_id: int, status: str, user: dict) -> dict:
    try:
        get_db().update_order(order_id, {
            'status': status,
            'updated_by': user.get('real_name') or user.get('name'),
        })
    except ValueError as e:
        raise raise_for_value_error(e, f'set_status/{order_id}', not_found="Order not found")
    broadcast("order_changed", {"action": "update", "id": order_id, "status": status})
    return {"ok": True, "message": "Changed the status of the order successfully"}


@router.post("/v1/order/finish-order/{order_id}", tags=["Orders"], summary="Finish order")
def finish_order(order_id: int, _user: dict = Depends(require_perm(
    'browse:edit_task', detail="You don't have permission to finish task",
))):
    return _set_status(order_id, 'finished', _user)


@router.post("/v1/order/redo-order/{order_id}", tags=["Orders"], summary="Send order back for correction")
def redo_order(order_id: int, _user: dict = Depends(require_perm(
    'browse:edit_task', detail="You don't have permission to redo task",
))):
    return _set_status(order_id, 'correction', _user)


@router.delete("/v1/order/delete-order/{order_id}", tags=["Orders"], summary="Delete order",
               description=(
                   "Delete an order immediately. Requires browse:delete_task; holders of "
                   "browse:delete_task_approval file an `Order delete` approval request instead."
               ))
def delete_order(order_id: int, _user: dict = Depends(require_perm(
    'browse:delete_task', detail="You don't have permission to delete task",
))):
    removed = get_db().delete_order(order_id)
    if removed is None:
        raise HTTPException(status_code=400, detail="Order not found")
    _logger.warning(
        "AUDIT ORDER_DELETE | user=%s order_id=%d client=%s folder=%s",
        _user.get('name'), order_id, removed.get('client_code'), removed.get('folder'),
    )
    broadcast("order_changed", {"action": "delete", "id": order_id})
    return {"ok": True, "message": "Deleted the order successfully"}


@router.get("/v1/order/unfinished-orders", tags=["Orders"], summary="Running tasks",
            description="Orders still in production, most urgent delivery first (`timeDifference` in minutes).")
def unfinished_orders(_user: dict = Depends(require_perm(
    'task:running_tasks', detail="You don't have permission to view running tasks",
))) -> OrderList:
    return get_db().get_unfinished_orders()


@router.get("/v1/order/qc-orders", tags=["Orders"], summary="QC waitlist",
            description="Orders whose production is complete and that wait for quality control.")
def qc_orders(_user: dict = Depends(require_perm(
    'task:qc_waitlist', detail="You don't have permission to view qc tasks",
))) -> OrderList:
    return get_db().get_qc_orders()


@router.get("/v1/order/rework-orders", tags=["Orders"], summary="Test and correction tasks")
def rework_orders(_user: dict = Depends(require_perm(
    'task:test_and_correction_tasks', detail="You don't have permission to view rework tasks",
))) -> OrderList:
    return get_db().get_rework_orders()


@router.get("/v1/order/orders-by-month", tags=["Orders"], summary="Monthly order totals per client",
            description="Order count and file total of the last 12 months for each client, paginated over clients.")
def orders_by_month(
    clientCode: Optional[str] = Query(None, description="Restrict to one client code"),
    page: int = Query(1, ge=1),
    itemsPerPage: int = Query(30, ge=1, le=100),
    _user: dict = Depends(require_perm(
        'browse:view_page', detail="You don't have permission to view orders",
    )),
) -> SearchResult:
    try:
        return get_db().get_orders_by_month(clientCode, page, itemsPerPage)
    except Exception as e:
        raise _sanitize_500(e, 'orders_by_month')


@router.get("/v1/order/orders-by-month/{code}", tags=["Orders"], summary="Monthly order totals of one client",
            description="Same as `orders-by-month` with the client code taken from the path.")
def client_orders_by_month(
    code: str,
    page: int = Query(1, ge=1),
    itemsPerPage: int = Query(30, ge=1, le=100),
    _user: dict = Depends(require_perm(
        'browse:view_page', detail="You don't have permission to view orders",
    )),
) -> SearchResult:
    try:
        return get_db().get_orders_by_month(code, page, itemsPerPage)
    except Exception as e:
        raise _sanitize_500(e, 'client_orders_by_month')


@router.get("/v1/order/get-order/{order_id}", tags=["Orders"], summary="Get order")
def get_order(order_id: int, _user: dict = Depends(require_perm(
    'browse:view_page', 'task:view_page', detail="You don't have permission to view orders",
))) -> OrderRecord:
    order = get_db().get_order(order_id)
    if order is None:
        raise HTTPException(status_code=400, detail="Order not found")
    return order
