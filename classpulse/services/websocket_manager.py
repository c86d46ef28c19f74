"""
WebSocket Manager

Manages WebSocket connections that carry live inbox and feed updates.

Each accepted connection owns exactly one live Subscription (see
live_updates.py). The subscription's snapshots are forwarded to the
socket as JSON messages; when the socket goes away the subscription is
closed, and when the subscription fails the socket is closed with 1011.

Message types (server -> client):
--------------------------------
- connected:           {"type": "connected", "user_id", "resource", "limit"}
- snapshot:            {"type": "snapshot", "resource", "items": [...]}
- subscription_error:  {"type": "subscription_error", "resource", "detail"}
"""

import json
import logging
from typing import Any, Callable, Dict, Optional, Set, Tuple

from fastapi import WebSocket, status

from classpulse.core.security import Session
from classpulse.schemas.realtime import LiveSnapshot, ResourceKind
from classpulse.services.live_updates import (
    LiveUpdatePublisher,
    Subscription,
    SubscriptionSetupError,
    get_live_update_publisher,
)

logger = logging.getLogger(__name__)


class MessageTypes:
    """WebSocket message type constants."""
    CONNECTED = "connected"
    SNAPSHOT = "snapshot"
    SUBSCRIPTION_ERROR = "subscription_error"


# ============================================================
# Connection Manager
# ============================================================

class ConnectionManager:
    """
    Tracks live WebSocket connections per user.

    Features:
    - Per-user connection tracking
    - One live subscription per connection, closed on disconnect
    - Subscription failures reported to the client before closing
    """

    def __init__(self, publisher_factory: Callable[[], LiveUpdatePublisher] = get_live_update_publisher):
        self._publisher_factory = publisher_factory

        # Map: user_id -> Set of WebSocket connections
        self._user_connections: Dict[str, Set[WebSocket]] = {}

        # Map: WebSocket -> (user_id, subscription) for cleanup
        self._connection_info: Dict[WebSocket, Tuple[str, Optional[Subscription]]] = {}

    # ============================================================
    # Connection Management
    # ============================================================

    async def connect(
        self,
        websocket: WebSocket,
        session: Session,
        kind: ResourceKind,
        limit: int,
    ) -> Subscription:
        """
        Accept a WebSocket and attach a live subscription to it.

        Raises:
            SubscriptionSetupError: The subscription could not be opened;
                the socket has already been told and closed.
        """
        await websocket.accept()

        user_id = session.user_id
        self._user_connections.setdefault(user_id, set()).add(websocket)
        self._connection_info[websocket] = (user_id, None)

        await self._send(websocket, {
            "type": MessageTypes.CONNECTED,
            "user_id": user_id,
            "resource": kind.value,
            "limit": limit,
        })

        async def on_change(items):
            snapshot = LiveSnapshot(resource=kind, items=items)
            await self._send(websocket, snapshot.model_dump(mode="json"))

        async def on_error(error: Exception):
            await self._send(websocket, {
                "type": MessageTypes.SUBSCRIPTION_ERROR,
                "resource": kind.value,
                "detail": str(error),
            })
            await self._close(websocket, status.WS_1011_INTERNAL_ERROR)

        try:
            subscription = await self._publisher_factory().subscribe(
                session, kind, limit, on_change, on_error
            )
        except SubscriptionSetupError as e:
            logger.warning(f"WebSocket subscription refused for user {user_id}: {e}")
            await on_error(e)
            self.disconnect(websocket)
            raise

        if websocket in self._connection_info:
            self._connection_info[websocket] = (user_id, subscription)
        else:
            subscription.unsubscribe()

        logger.info(
            f"WebSocket connected: user={user_id}, kind={kind.value}. "
            f"Total connections for user: {len(self._user_connections.get(user_id, ()))}"
        )
        return subscription

    def disconnect(self, websocket: WebSocket) -> None:
        """Remove a WebSocket from tracking and close its subscription."""
        info = self._connection_info.pop(websocket, None)
        if info is None:
            return

        user_id, subscription = info
        if subscription is not None:
            subscription.unsubscribe()

        connections = self._user_connections.get(user_id)
        if connections is not None:
            connections.discard(websocket)
            if not connections:
                del self._user_connections[user_id]

        logger.info(f"WebSocket disconnected: user={user_id}")

    def connection_count(self, user_id: Optional[str] = None) -> int:
        if user_id is not None:
            return len(self._user_connections.get(user_id, ()))
        return len(self._connection_info)

    # ============================================================
    # Sending
    # ============================================================

    async def _send(self, websocket: WebSocket, message: Dict[str, Any]) -> None:
        try:
            await websocket.send_text(json.dumps(message))
        except Exception as e:
            logger.warning(f"Failed to send to websocket: {e}")
            self.disconnect(websocket)

    async def _close(self, websocket: WebSocket, code: int) -> None:
        self.disconnect(websocket)
        try:
            await websocket.close(code=code)
        except Exception as e:
            logger.debug(f"WebSocket already closed: {e}")

    async def shutdown(self) -> None:
        """Close every connection and its subscription."""
        for websocket in list(self._connection_info.keys()):
            await self._close(websocket, status.WS_1001_GOING_AWAY)

        self._user_connections.clear()
        self._connection_info.clear()

        logger.info("WebSocket ConnectionManager shutdown complete")


# ============================================================
# Singleton Instance
# ============================================================

_connection_manager: Optional[ConnectionManager] = None


def get_connection_manager() -> ConnectionManager:
    """Get the singleton ConnectionManager instance."""
    global _connection_manager
    if _connection_manager is None:
        _connection_manager = ConnectionManager()
    return _connection_manager


async def shutdown_connection_manager() -> None:
    """Shutdown the connection manager on app shutdown."""
    global _connection_manager
    if _connection_manager is not None:
        await _connection_manager.shutdown()
        _connection_manager = None
