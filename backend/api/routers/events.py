"""Server-Sent Events (SSE) router for live portal updates."""
import asyncio
import json
import logging
import threading
from typing import AsyncGenerator, Optional
from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

_logger = logging.getLogger('schlapi.events')

router = APIRouter(prefix="/v1/events", tags=["Events"])

EVENT_TYPES = (
    'client_changed', 'order_changed', 'shift_plan_changed', 'ticket_changed',
    'approval_changed', 'employee_changed', 'department_changed', 'attendance_flag_changed',
    'holiday_changed', 'leave_changed',
)

# ── In-memory subscriber registry ──────────────────────────────
# List of (loop, queue) tuples, one per SSE connection.
_lock = threading.Lock()
_subscribers: list[tuple[asyncio.AbstractEventLoop, asyncio.Queue]] = []


def subscriber_count() -> int:
    with _lock:
        return len(_subscribers)


def broadcast(event_type: str, data: Optional[dict] = None) -> None:
    """Push an event to every connected SSE client.

    Thread-safe: sync endpoints run in the threadpool and call this directly.
    """
    payload = {"type": event_type, "data": data or {}}
    with _lock:
        dead = []
        for loop, q in _subscribers:
            try:
                loop.call_soon_threadsafe(q.put_nowait, payload)
            except RuntimeError:
                # Event loop already closed
                dead.append((loop, q))
        for item in dead:
            try:
                _subscribers.remove(item)
            except ValueError:
                pass
        remaining = len(_subscribers)
    if remaining:
        _logger.debug("SSE broadcast: %s → %d clients", event_type, remaining)


async def _event_generator(request: Request, queue: asyncio.Queue) -> AsyncGenerator[str, None]:
    """Yield SSE-formatted strings from the queue until the client disconnects."""
    try:
        yield "event: connected\ndata: {}\n\n"
        while True:
            if await request.is_disconnected():
                break
            try:
                payload = await asyncio.wait_for(queue.get(), timeout=25.0)
                data_str = json.dumps(payload["data"], default=str)
                yield f"event: {payload['type']}\ndata: {data_str}\n\n"
            except asyncio.TimeoutError:
                # Keepalive comment every 25s
                yield ": keepalive\n\n"
    finally:
        loop = asyncio.get_running_loop()
        with _lock:
            try:
                _subscribers.remove((loop, queue))
            except ValueError:
                pass
        _logger.debug("SSE client disconnected. Remaining: %d", subscriber_count())


@router.get("", summary="SSE event stream", description=(
    "Connect to receive live change notifications.\n\n"
    "Events: `connected`, " + ", ".join(f"`{e}`" for e in EVENT_TYPES)
))
async def sse_stream(request: Request):
    """Stream change events to the connected client."""
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue(maxsize=50)
    with _lock:
        _subscribers.append((loop, queue))
    _logger.debug("SSE client connected. Total: %d", subscriber_count())

    return StreamingResponse(
        _event_generator(request, queue),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
            "Connection": "keep-alive",
        },
    )
