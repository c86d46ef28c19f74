"""
Activity Tracker

Best-effort recorder of user actions into the append-only user_activity
collection. track() never raises: a failed write is logged and dropped,
and nothing retries it (at-most-once).
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from classpulse.repositories.activity_repo import ActivityRepository
from classpulse.store import RecordStore

logger = logging.getLogger(__name__)

MAX_ACTIVITY_LENGTH = 100


class ActivityTracker:

    def __init__(self, store: RecordStore, clock: Optional[Callable[[], datetime]] = None):
        self.activity_repo = ActivityRepository(store)
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def track(
        self,
        user_id: str,
        activity: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Append one activity record.

        Returns:
            True if the record was written, False if it was dropped
        """
        try:
            if not user_id or not activity or len(activity) > MAX_ACTIVITY_LENGTH:
                raise ValueError(f"invalid activity {activity!r} for user {user_id!r}")

            metadata = dict(metadata or {})
            await self.activity_repo.append({
                "user_id": user_id,
                "activity": activity,
                "metadata": metadata,
                "timestamp": self.clock(),
                "ip": metadata.get("ip"),
                "user_agent": metadata.get("user_agent"),
            })
            return True
        except Exception as e:
            logger.warning(f"Activity '{activity}' for user {user_id} dropped: {e}")
            return False
