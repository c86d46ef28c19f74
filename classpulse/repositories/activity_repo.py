"""
Activity Repository

Append-only access to the user_activity collection.
"""

from typing import Any, Dict

from classpulse.repositories.base import BaseRepository


class ActivityRepository(BaseRepository):
    """Repository for user activity records. Records are never updated."""
    collection = "user_activity"

    async def append(self, record: Dict[str, Any]) -> Dict[str, Any]:
        return await self.store.add(self.collection, record)
