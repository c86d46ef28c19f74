"""
Live Update Publisher

Pushes the newest records of a user's notifications or realtime-update
feed to subscribed viewers, without polling.

How it works:
------------
1. subscribe() opens an observable query on the record store
   (user_id == viewer, newest first, top `limit`)
2. The store calls Subscription.on_snapshot() with the full ordered
   result whenever it changes
3. Each Subscription owns one dispatcher task. Snapshots are parked in a
   single slot (newer replaces older) and the task delivers the latest one
   to on_change, so a slow consumer never works through a stale backlog
4. unsubscribe() closes the subscription; the dispatcher checks the closed
   flag right before every on_change call, so a snapshot that was already
   parked is dropped

Threading:
---------
All callbacks run on the event loop thread. unsubscribe() must be called
from that thread too (it is synchronous and never awaits).
"""

import asyncio
import inspect
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, ValidationError

from classpulse.core.config import settings
from classpulse.core.security import Session
from classpulse.repositories.notification_repo import (
    NotificationRepository,
    RealtimeUpdateRepository,
)
from classpulse.schemas.notification import NotificationResponse
from classpulse.schemas.realtime import RealtimeUpdateResponse, ResourceKind
from classpulse.store import RecordStore, SnapshotListener, StoreError, StoreWatch, get_record_store

logger = logging.getLogger(__name__)

OnChange = Callable[[List[BaseModel]], Union[None, Awaitable[None]]]
OnError = Callable[[Exception], Union[None, Awaitable[None]]]


class LiveUpdateError(Exception):
    pass


class SubscriptionSetupError(LiveUpdateError):
    """The subscription could not be established; raised from subscribe()."""
    pass


_RESOURCES = {
    ResourceKind.NOTIFICATIONS: (NotificationRepository, NotificationResponse),
    ResourceKind.REALTIME_UPDATES: (RealtimeUpdateRepository, RealtimeUpdateResponse),
}


# ============================================================
# Subscription
# ============================================================

class Subscription(SnapshotListener):
    """
    A live view over one user's newest records of one kind.

    on_change receives the complete ordered window every time it changes.
    on_error receives the store error, once, if the subscription ends
    because the underlying watch failed.
    """

    def __init__(
        self,
        publisher: "LiveUpdatePublisher",
        user_id: str,
        kind: ResourceKind,
        limit: int,
        on_change: OnChange,
        on_error: Optional[OnError] = None,
    ):
        self.id = uuid.uuid4().hex
        self.user_id = user_id
        self.kind = kind
        self.limit = limit
        self._publisher = publisher
        self._on_change = on_change
        self._on_error = on_error
        self._model = _RESOURCES[kind][1]

        self._watch: Optional[StoreWatch] = None
        self._task: Optional[asyncio.Task] = None
        self._wakeup = asyncio.Event()
        self._pending: Optional[List[Dict[str, Any]]] = None
        self._error: Optional[Exception] = None
        self._last: Optional[List[BaseModel]] = None
        self._closed = False
        self.error: Optional[Exception] = None

    @property
    def active(self) -> bool:
        return not self._closed

    # ============================================================
    # Lifecycle
    # ============================================================

    def _start(self) -> None:
        self._task = asyncio.create_task(self._dispatch_loop(), name=f"live-sub-{self.id}")

    def _attach(self, watch: StoreWatch) -> None:
        self._watch = watch
        if self._closed:
            watch.cancel()

    def unsubscribe(self) -> None:
        """
        Stop receiving updates. Idempotent.

        Once this returns, on_change is never invoked again, even for a
        snapshot that arrived before the call and is still waiting.
        """
        if self._closed:
            return
        self._close()
        logger.info(f"Live subscription {self.id} closed (user={self.user_id}, kind={self.kind.value})")

    def _close(self) -> None:
        self._closed = True
        self._pending = None
        if self._watch is not None:
            self._watch.cancel()
        self._wakeup.set()
        self._publisher._forget(self)

    async def wait_closed(self) -> None:
        """Wait until the dispatcher task has finished."""
        if self._task is not None:
            await asyncio.shield(self._task)

    # ============================================================
    # SnapshotListener (called by the store on the loop thread)
    # ============================================================

    def on_snapshot(self, records: List[Dict[str, Any]]) -> None:
        if self._closed:
            return
        self._pending = records
        self._wakeup.set()

    def on_error(self, error: Exception) -> None:
        if self._closed:
            return
        self._error = error
        self._wakeup.set()

    # ============================================================
    # Dispatch
    # ============================================================

    async def _dispatch_loop(self) -> None:
        while True:
            await self._wakeup.wait()
            self._wakeup.clear()

            if self._closed:
                return

            if self._pending is not None:
                records, self._pending = self._pending, None
                items = self._parse(records)
                if items != self._last:
                    self._last = items
                    await self._invoke(self._on_change, items)

            if self._error is not None and not self._closed:
                error, self._error = self._error, None
                self.error = error
                self._close()
                logger.error(f"Live subscription {self.id} ended with error: {error}")
                if self._on_error is not None:
                    await self._call(self._on_error, error)
                return

    async def _invoke(self, callback: Callable, argument: Any) -> None:
        # Closed flag is checked with no await between it and the call
        if self._closed:
            return
        await self._call(callback, argument)

    async def _call(self, callback: Callable, argument: Any) -> None:
        try:
            result = callback(argument)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(f"Live subscription {self.id} callback failed")

    def _parse(self, records: List[Dict[str, Any]]) -> List[BaseModel]:
        items = []
        for record in records:
            try:
                items.append(self._model(**record))
            except ValidationError as e:
                logger.warning(f"Skipping malformed {self.kind.value} record {record.get('id')}: {e}")
        return items


# ============================================================
# Publisher
# ============================================================

class LiveUpdatePublisher:
    """Creates and tracks live subscriptions over the record store."""

    def __init__(self, store: RecordStore):
        self.store = store
        self._subscriptions: Dict[str, Subscription] = {}

    async def subscribe(
        self,
        session: Session,
        resource_kind: Union[ResourceKind, str],
        limit: int,
        on_change: OnChange,
        on_error: Optional[OnError] = None,
    ) -> Subscription:
        """
        Register a live view over the session user's newest `limit` records.

        Raises:
            SubscriptionSetupError: Invalid kind/limit or the store refused the watch
        """
        try:
            kind = ResourceKind(resource_kind)
        except ValueError:
            raise SubscriptionSetupError(f"Unknown resource kind: {resource_kind}")

        if limit < 1 or limit > settings.LIVE_SUBSCRIPTION_MAX_LIMIT:
            raise SubscriptionSetupError(
                f"limit must be between 1 and {settings.LIVE_SUBSCRIPTION_MAX_LIMIT}"
            )

        repo_cls = _RESOURCES[kind][0]
        query = repo_cls(self.store).window_query(session.user_id, limit)

        subscription = Subscription(self, session.user_id, kind, limit, on_change, on_error)
        subscription._start()

        try:
            watch = await self.store.subscribe(query, subscription)
        except StoreError as e:
            subscription._close()
            raise SubscriptionSetupError(f"Could not subscribe to {kind.value}: {e}") from e

        subscription._attach(watch)
        # The watch may already have failed and closed it while setting up
        if subscription.active:
            self._subscriptions[subscription.id] = subscription
        logger.info(
            f"Live subscription {subscription.id} opened "
            f"(user={session.user_id}, kind={kind.value}, limit={limit})"
        )
        return subscription

    def _forget(self, subscription: Subscription) -> None:
        self._subscriptions.pop(subscription.id, None)

    @property
    def active_count(self) -> int:
        return len(self._subscriptions)

    async def shutdown(self) -> None:
        """Close every open subscription."""
        for subscription in list(self._subscriptions.values()):
            subscription.unsubscribe()
        logger.info("Live update publisher shutdown complete")


# ============================================================
# Singleton Instance
# ============================================================

_publisher: Optional[LiveUpdatePublisher] = None


def get_live_update_publisher() -> LiveUpdatePublisher:
    """Get the singleton LiveUpdatePublisher bound to the configured store."""
    global _publisher
    if _publisher is None:
        _publisher = LiveUpdatePublisher(get_record_store())
    return _publisher


async def shutdown_live_update_publisher() -> None:
    global _publisher
    if _publisher is not None:
        await _publisher.shutdown()
        _publisher = None
