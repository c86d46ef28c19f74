"""
Live Update Endpoints

Push the newest notifications or realtime updates of the current user
whenever they change.

Endpoints:
----------
- WS   /live/ws?token=&kind=&limit=       - WebSocket transport
- GET  /live/{kind}/stream?limit=         - Server-Sent Events transport

Both send the complete ordered window on every change (never a diff) and
close the underlying subscription when the client goes away.

SSE event types:
- `snapshot`:           {"type": "snapshot", "resource", "items": [...]}
- `subscription_error`: {"type": "subscription_error", "resource", "detail"}; the stream ends
"""

import asyncio
import json
import logging
from typing import Optional, Tuple

from fastapi import (
    APIRouter,
    Depends,
    HTTPException,
    Query,
    WebSocket,
    WebSocketDisconnect,
    status,
)
from sse_starlette.sse import EventSourceResponse

from classpulse.api.deps import get_current_session, get_publisher, get_session_ws, get_ws_manager
from classpulse.core.config import settings
from classpulse.core.security import Session
from classpulse.schemas.realtime import LiveSnapshot, ResourceKind
from classpulse.services.live_updates import LiveUpdatePublisher, SubscriptionSetupError
from classpulse.services.websocket_manager import ConnectionManager, MessageTypes

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/live", tags=["Live Updates"])

DEFAULT_WINDOW = 20


# ============================================================
# WEBSOCKET
# ============================================================

@router.websocket("/ws")
async def live_websocket(
    websocket: WebSocket,
    kind: ResourceKind = Query(ResourceKind.NOTIFICATIONS),
    limit: int = Query(DEFAULT_WINDOW),
    session: Optional[Session] = Depends(get_session_ws),
    manager: ConnectionManager = Depends(get_ws_manager),
):
    if session is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    try:
        await manager.connect(websocket, session, kind, limit)
    except SubscriptionSetupError:
        return

    try:
        # Client messages carry nothing; reading detects the disconnect
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug(f"WebSocket client {session.user_id} went away")
    finally:
        manager.disconnect(websocket)


# ============================================================
# SERVER-SENT EVENTS
# ============================================================

def _offer(queue: asyncio.Queue, item: Tuple[str, str]) -> None:
    """Put into a single-slot queue, replacing an event the client hasn't taken yet."""
    if queue.full():
        queue.get_nowait()
    queue.put_nowait(item)


@router.get(
    "/{kind}/stream",
    summary="Stream live snapshots (SSE)",
    responses={
        200: {
            "description": "SSE stream of snapshots",
            "content": {"text/event-stream": {}}
        }
    }
)
async def live_stream(
    kind: ResourceKind,
    limit: int = Query(DEFAULT_WINDOW, ge=1, le=settings.LIVE_SUBSCRIPTION_MAX_LIMIT),
    session: Session = Depends(get_current_session),
    publisher: LiveUpdatePublisher = Depends(get_publisher),
):
    queue: asyncio.Queue = asyncio.Queue(maxsize=1)

    def on_change(items):
        _offer(queue, (MessageTypes.SNAPSHOT, LiveSnapshot(resource=kind, items=items).model_dump_json()))

    def on_error(error: Exception):
        _offer(queue, (MessageTypes.SUBSCRIPTION_ERROR, json.dumps({
            "type": MessageTypes.SUBSCRIPTION_ERROR,
            "resource": kind.value,
            "detail": str(error),
        })))

    try:
        subscription = await publisher.subscribe(session, kind, limit, on_change, on_error)
    except SubscriptionSetupError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    async def event_generator():
        try:
            while True:
                event, data = await queue.get()
                yield {"event": event, "data": data}
                if event == MessageTypes.SUBSCRIPTION_ERROR:
                    break
        finally:
            subscription.unsubscribe()

    return EventSourceResponse(event_generator())
