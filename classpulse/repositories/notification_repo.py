"""
Notification Repository

Data access layer for the notifications and realtime_updates collections.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from classpulse.repositories.base import BaseRepository
from classpulse.store import FieldFilter, OrderBy, RecordQuery, Write

# Inbox order: newest first, ties broken by id ascending
INBOX_ORDER = (OrderBy("created_at", descending=True), OrderBy("id"))
FEED_ORDER = (OrderBy("timestamp", descending=True), OrderBy("id"))


class NotificationRepository(BaseRepository):
    """Repository for user notifications."""
    collection = "notifications"

    def window_query(self, user_id: str, limit: Optional[int]) -> RecordQuery:
        return self.build_query(
            [FieldFilter("user_id", "==", user_id)],
            INBOX_ORDER,
            limit,
        )

    async def get_by_user(
        self,
        user_id: str,
        limit: int,
        start_after: Optional[Sequence[Any]] = None,
    ) -> List[Dict[str, Any]]:
        return await self.store.query(self.window_query(user_id, limit), start_after=start_after)

    async def get_unread(self, user_id: str) -> List[Dict[str, Any]]:
        return await self.find(
            FieldFilter("user_id", "==", user_id),
            FieldFilter("read", "==", False),
        )

    async def count_unread(self, user_id: str) -> int:
        return len(await self.get_unread(user_id))

    async def mark_read(self, notification_id: str, read_at: datetime) -> None:
        """Flip one notification to read, only if it is still unread."""
        await self.store.transactional_update([
            Write(
                self.collection,
                notification_id,
                patch={"read": True, "read_at": read_at},
                precondition={"read": False},
            )
        ])

    async def mark_many_read(self, notification_ids: Sequence[str], read_at: datetime) -> None:
        """All-or-nothing read transition for a set of notifications."""
        writes = [
            Write(self.collection, nid, patch={"read": True, "read_at": read_at})
            for nid in notification_ids
        ]
        await self.store.transactional_update(writes)

    async def get_expired(self, now: datetime) -> List[Dict[str, Any]]:
        return await self.find(FieldFilter("expires_at", "<", now))


class RealtimeUpdateRepository(BaseRepository):
    """Repository for the realtime-update feed."""
    collection = "realtime_updates"

    def window_query(self, user_id: str, limit: Optional[int]) -> RecordQuery:
        return self.build_query(
            [FieldFilter("user_id", "==", user_id)],
            FEED_ORDER,
            limit,
        )

    async def get_by_user(self, user_id: str, limit: int) -> List[Dict[str, Any]]:
        return await self.store.query(self.window_query(user_id, limit))

    async def get_older_than(self, cutoff: datetime) -> List[Dict[str, Any]]:
        return await self.find(FieldFilter("timestamp", "<", cutoff))
