"""
Base Repository

Base class for all repositories.
Provides common document operations over one RecordStore collection.
"""

from typing import Any, Dict, List, Optional, Sequence

from classpulse.store import (
    FieldFilter,
    OrderBy,
    RecordNotFoundError,
    RecordQuery,
    RecordStore,
    Write,
)

# Largest batch handed to one transactional_update() by bulk deletes
DELETE_CHUNK_SIZE = 400


class BaseRepository:
    """
    Base repository class with common document operations.

    All repositories should inherit from this class and set `collection`.
    """
    collection: str = ""

    def __init__(self, store: RecordStore):
        """
        Initialize repository.

        Args:
            store: Record store backend
        """
        self.store = store

    # -----------------------------
    # Get Element By id
    # -----------------------------
    async def get_by_id(self, record_id: str) -> Optional[Dict[str, Any]]:
        """Get a record by id, None if it doesn't exist."""
        try:
            return await self.store.get(self.collection, record_id)
        except RecordNotFoundError:
            return None

    # -----------------------------
    # Create
    # -----------------------------
    async def create(self, **fields) -> Dict[str, Any]:
        return await self.store.add(self.collection, fields)

    # -----------------------------
    # Delete
    # -----------------------------
    async def delete(self, record_id: str) -> None:
        """Delete a record. Raises RecordNotFoundError if it's absent."""
        await self.store.delete(self.collection, record_id)

    async def delete_many(self, record_ids: Sequence[str]) -> int:
        """
        Delete records in chunks.

        Each chunk is atomic; the whole call is not.
        """
        deleted = 0
        ids = list(record_ids)
        for i in range(0, len(ids), DELETE_CHUNK_SIZE):
            chunk = ids[i:i + DELETE_CHUNK_SIZE]
            await self.store.transactional_update(
                [Write(self.collection, rid, delete=True) for rid in chunk]
            )
            deleted += len(chunk)
        return deleted

    # -----------------------------
    # Query helpers
    # -----------------------------
    def build_query(
        self,
        filters: Sequence[FieldFilter] = (),
        order_by: Sequence[OrderBy] = (),
        limit: Optional[int] = None,
    ) -> RecordQuery:
        return RecordQuery(
            collection=self.collection,
            filters=tuple(filters),
            order_by=tuple(order_by),
            limit=limit,
        )

    async def find(
        self,
        *filters: FieldFilter,
        order_by: Sequence[OrderBy] = (),
        limit: Optional[int] = None,
        start_after: Optional[Sequence[Any]] = None,
    ) -> List[Dict[str, Any]]:
        query = self.build_query(filters, order_by, limit)
        return await self.store.query(query, start_after=start_after)

    async def find_in(self, field: str, values: Sequence[Any], *filters: FieldFilter) -> List[Dict[str, Any]]:
        """
        Records whose `field` is one of `values`.

        Firestore 'in' filter supports max 30 items per query,
        so larger value lists are split.
        """
        results: List[Dict[str, Any]] = []
        values = list(dict.fromkeys(values))
        for i in range(0, len(values), 30):
            chunk = values[i:i + 30]
            results.extend(await self.find(FieldFilter(field, "in", chunk), *filters))
        return results
