"""Export router: order and client lists as CSV or XLSX downloads."""
import io
import csv
from fastapi import APIRouter, HTTPException, Query, Depends, Request
from fastapi.responses import Response as _Response
from schllib.dates import format_date, format_long_date, format_time, today_local
from ..dependencies import get_db, require_perm, _sanitize_500, limiter
from .clients import ClientSearch, search_client_rows
from .orders import OrderSearch, search_order_rows

router = APIRouter()

_EXPORT_FORMATS = ('csv', 'xlsx')


def _xlsx_response(content: bytes, filename: str) -> _Response:
    return _Response(
        content=content,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


def _csv_response(rows: list, filename: str) -> _Response:
    buf = io.StringIO()
    if rows:
        writer = csv.DictWriter(buf, fieldnames=rows[0].keys(), lineterminator='\r\n')
        writer.writeheader()
        writer.writerows(rows)
    content = buf.getvalue()
    return _Response(
        content=content,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


def _xlsx_table(rows: list, title: str, widths: list) -> bytes:
    """Render rows as a single sheet with a dark header and striped body."""
    try:
        import openpyxl
        from openpyxl.styles import Font, PatternFill, Alignment, Border, Side
        from openpyxl.utils import get_column_letter
    except ImportError:
        raise HTTPException(status_code=500, detail="openpyxl is not installed.")
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = title
    wb.properties.title = f"{title} ({format_long_date(today_local().isoformat())})"
    thin = Side(border_style="thin", color="CBD5E1")
    border = Border(left=thin, right=thin, top=thin, bottom=thin)
    if rows:
        headers = list(rows[0].keys())
        for c, h in enumerate(headers, start=1):
            cell = ws.cell(1, c, h)
            cell.font = Font(bold=True, color="FFFFFF", size=9)
            cell.fill = PatternFill(fill_type="solid", fgColor="1E293B")
            cell.alignment = Alignment(horizontal="left")
            cell.border = border
            width = widths[c - 1] if c <= len(widths) else 14
            ws.column_dimensions[get_column_letter(c)].width = width
        for r_idx, row in enumerate(rows, start=2):
            fill_color = "F8FAFC" if r_idx % 2 == 0 else "FFFFFF"
            for c, val in enumerate(row.values(), start=1):
                cell = ws.cell(r_idx, c, val)
                cell.font = Font(size=9)
                cell.fill = PatternFill(fill_type="solid", fgColor=fill_color)
                cell.border = border
        ws.freeze_panes = "A2"
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


def _check_format(format: str) -> str:
    fmt = (format or 'csv').lower()
    if fmt not in _EXPORT_FORMATS:
        raise HTTPException(status_code=400, detail="format must be csv or xlsx")
    return fmt


# ── Orders ───────────────────────────────────────────────────
def _order_rows(orders: list) -> list:
    rows = []
    for o in orders:
        rows.append({
            "Client Code": o.get('client_code', ''),
            "Client Name": o.get('client_name', ''),
            "Folder": o.get('folder', ''),
            "Task": o.get('task', ''),
            "Quantity": o.get('quantity', 0),
            "Rate": o.get('rate') if o.get('rate') is not None else '',
            "Download Date": format_date(o.get('download_date')),
            "Delivery Date": format_date(o.get('delivery_date')),
            "Delivery Time": format_time(o.get('delivery_bd_time')),
            "ET": o.get('et', 0),
            "Production": o.get('production', 0),
            "QC1": o.get('qc1', 0),
            "Type": o.get('type', ''),
            "Status": o.get('status', ''),
            "Priority": o.get('priority', ''),
            "Comment": o.get('comment', ''),
        })
    return rows


@router.post(
    "/v1/order/export-orders",
    tags=["Export"],
    summary="Export orders",
    description=(
        "Export the orders matching the search-orders filters.\n\n"
        "- `format`: `csv` (default) or `xlsx`\n\n"
        "Dates are written as DD-MM-YYYY and delivery times as hh:mm AM/PM.\n\n"
        "**Required permission:** browse:view_page"
    ),
    responses={
        200: {"description": "File download (CSV/XLSX)"},
        400: {"description": "Unknown format"},
        401: {"description": "Not authenticated"},
        429: {"description": "Rate limit exceeded"},
    },
)
@limiter.limit("10/minute")
def export_orders(
    request: Request,
    body: OrderSearch,
    format: str = Query("csv", description="csv or xlsx"),
    _cur_user: dict = Depends(require_perm(
        'browse:view_page', detail="You don't have permission to export orders",
    )),
):
    fmt = _check_format(format)
    try:
        rows = _order_rows(search_order_rows(body))
    except Exception as e:
        raise _sanitize_500(e, 'export_orders')
    stamp = today_local().isoformat()
    if fmt == "xlsx":
        content = _xlsx_table(rows, "Orders", [12, 22, 24, 28, 9, 8, 13, 13, 12, 6, 11, 6, 9, 12, 9, 30])
        return _xlsx_response(content, f"orders_{stamp}.xlsx")
    return _csv_response(rows, f"orders_{stamp}.csv")


# ── Clients ──────────────────────────────────────────────────
def _client_rows(clients: list) -> list:
    return [
        {
            "Client Code": c.get('client_code', ''),
            "Client Name": c.get('client_name', ''),
            "Marketer": c.get('marketer', ''),
            "Contact Person": c.get('contact_person', ''),
            "Contact Number": c.get('contact_number', ''),
            "Email": c.get('email', ''),
            "Country": c.get('country', ''),
            "Category": c.get('category', ''),
            "Currency": c.get('currency', ''),
            "Last Order": format_date(c.get('last_order_date')),
        }
        for c in clients
    ]


@router.post(
    "/v1/client/export-clients",
    tags=["Export"],
    summary="Export clients",
    description=(
        "Export the clients matching the search-clients filters as CSV or XLSX.\n\n"
        "**Required permission:** admin:manage_client"
    ),
    responses={
        200: {"description": "File download (CSV/XLSX)"},
        400: {"description": "Unknown format"},
        401: {"description": "Not authenticated"},
        429: {"description": "Rate limit exceeded"},
    },
)
@limiter.limit("10/minute")
def export_clients(
    request: Request,
    body: ClientSearch,
    format: str = Query("csv", description="csv or xlsx"),
    _cur_user: dict = Depends(require_perm(
        'admin:manage_client', detail="You don't have permission to export clients",
    )),
):
    fmt = _check_format(format)
    try:
        rows = _client_rows(search_client_rows(body))
    except Exception as e:
        raise _sanitize_500(e, 'export_clients')
    stamp = today_local().isoformat()
    if fmt == "xlsx":
        content = _xlsx_table(rows, "Clients", [12, 26, 18, 20, 16, 28, 14, 14, 9, 12])
        return _xlsx_response(content, f"clients_{stamp}.xlsx")
    return _csv_response(rows, f"clients_{stamp}.csv")
