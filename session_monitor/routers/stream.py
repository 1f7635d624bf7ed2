"""Server-Sent Events stream of session log changes."""
from __future__ import annotations

import asyncio
import json
from typing import AsyncIterator, Awaitable, Callable

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from session_monitor import config
from session_monitor.broadcaster import EventBroadcaster
from session_monitor.models import ChangeEvent

stream_router = APIRouter(prefix="/api/stream", tags=["stream"])

KEEPALIVE_FRAME = ": keepalive\n\n"


def _format_sse(payload: dict) -> str:
    """Format one SSE frame: ``data: {json}\\n\\n``."""
    return f"data: {json.dumps(payload)}\n\n"


def _event_payload(event: ChangeEvent) -> dict:
    return {"type": event.kind.value, "path": event.affected_path}


async def change_stream(
    broadcaster: EventBroadcaster,
    is_disconnected: Callable[[], Awaitable[bool]],
    keepalive_seconds: float = config.STREAM_KEEPALIVE_SECONDS,
) -> AsyncIterator[str]:
    """Yield SSE frames until the client goes away or the broadcaster drops us.

    The subscription is opened lazily so a response that never starts
    streaming never registers a subscriber.
    """
    subscription = broadcaster.subscribe()
    try:
        yield _format_sse({"type": "connected"})
        while True:
            try:
                event = await asyncio.wait_for(subscription.__anext__(), timeout=keepalive_seconds)
            except asyncio.TimeoutError:
                if await is_disconnected():
                    break
                yield KEEPALIVE_FRAME
                continue
            except StopAsyncIteration:
                break
            yield _format_sse(_event_payload(event))
    finally:
        broadcaster.unsubscribe(subscription)


@stream_router.get("")
async def stream_changes(request: Request):
    broadcaster: EventBroadcaster = request.app.state.broadcaster
    return StreamingResponse(
        change_stream(broadcaster, request.is_disconnected, max(1, config.STREAM_KEEPALIVE_SECONDS)),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
