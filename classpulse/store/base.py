"""
Record Store Abstract Base Class

This module defines the interface every document store backend must
implement. Business logic (inbox, live updates, analytics) only talks to
this interface, so the hosted Firestore database and the in-memory store
used in development and tests are interchangeable.

Pattern: Strategy Pattern
-------------------------
- RecordStore is the abstract strategy
- FirestoreRecordStore and MemoryRecordStore are concrete strategies
- get_record_store() in the package selects one from configuration

Records:
--------
A record is a plain dict. Every record returned by a store carries its
document id under the "id" key; the id is never stored as a field.

Observable queries:
-------------------
subscribe() turns a RecordQuery into a live view. The store calls
listener.on_snapshot() with the full ordered result set whenever the
result changes, and listener.on_error() once if the watch dies. Both
callbacks are invoked on the event loop thread.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple


# ============================================================
# Exceptions
# ============================================================

class StoreError(Exception):
    """
    Base exception for record store operations.

    Calling code can catch every store failure generically:

        try:
            await store.get("notifications", notification_id)
        except StoreError as e:
            ...
    """
    pass


class RecordNotFoundError(StoreError):
    """Raised when a referenced document doesn't exist."""

    def __init__(self, collection: str, record_id: str):
        self.collection = collection
        self.record_id = record_id
        super().__init__(f"{collection}/{record_id} not found")


class TransientStoreError(StoreError):
    """
    Raised when the store is unreachable or timed out.

    The operation may succeed if retried. No retry is built in;
    the caller owns the retry policy.
    """
    pass


class TransactionAbortedError(TransientStoreError):
    """
    Raised when an atomic multi-document write could not be committed.

    Guarantees that none of the writes were applied.
    """
    pass


class InvalidQueryError(StoreError):
    """Raised when the store rejects a query (bad operator, missing index)."""
    pass


# ============================================================
# Query model
# ============================================================

FILTER_OPERATORS = ("==", "!=", "<", "<=", ">", ">=", "in", "array_contains")


@dataclass(frozen=True)
class FieldFilter:
    """A single field comparison, e.g. FieldFilter("user_id", "==", uid)."""
    field: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in FILTER_OPERATORS:
            raise InvalidQueryError(f"Unsupported filter operator: {self.op}")


@dataclass(frozen=True)
class OrderBy:
    field: str
    descending: bool = False


@dataclass(frozen=True)
class RecordQuery:
    """
    A query over one collection.

    Attributes:
        collection: Collection name (e.g. "notifications")
        filters: Conjunction of field filters
        order_by: Sort keys, applied left to right. The special field "id"
                  orders by document id.
        limit: Maximum number of records, None for all
    """
    collection: str
    filters: Tuple[FieldFilter, ...] = ()
    order_by: Tuple[OrderBy, ...] = ()
    limit: Optional[int] = None


@dataclass
class Write:
    """
    One document mutation inside transactional_update().

    Attributes:
        collection: Collection name
        record_id: Target document id (must exist)
        patch: Fields to set (merged into the document)
        delete: Remove the document instead of patching it
        precondition: Field values the document must currently hold;
                      a mismatch aborts the whole transaction
    """
    collection: str
    record_id: str
    patch: Dict[str, Any] = field(default_factory=dict)
    delete: bool = False
    precondition: Dict[str, Any] = field(default_factory=dict)


# ============================================================
# Subscriptions
# ============================================================

class SnapshotListener(ABC):
    """Receiver of observable-query results."""

    @abstractmethod
    def on_snapshot(self, records: List[Dict[str, Any]]) -> None:
        """Called with the full ordered result set."""
        pass

    @abstractmethod
    def on_error(self, error: Exception) -> None:
        """Called once when the watch terminates because of a store error."""
        pass


class StoreWatch(ABC):
    """Handle for an active observable query."""

    @abstractmethod
    def cancel(self) -> None:
        """
        Stop the watch. Safe to call more than once.

        After cancel() returns the listener receives nothing further.
        """
        pass


# ============================================================
# Backend interface
# ============================================================

class RecordStore(ABC):
    """
    Abstract base class for document store backends.

    All methods that touch the store are coroutines and may suspend the
    caller. Unreachable or timed-out stores raise TransientStoreError.
    """

    @abstractmethod
    async def get(self, collection: str, record_id: str) -> Dict[str, Any]:
        """
        Fetch one document.

        Raises:
            RecordNotFoundError: If the document doesn't exist
        """
        pass

    @abstractmethod
    async def query(
        self,
        query: RecordQuery,
        start_after: Optional[Sequence[Any]] = None,
    ) -> List[Dict[str, Any]]:
        """
        Run a query and return the matching records in order.

        Args:
            query: The query to run
            start_after: Cursor values, one per order_by field; only records
                         sorting strictly after these values are returned
        """
        pass

    @abstractmethod
    async def add(
        self,
        collection: str,
        data: Dict[str, Any],
        record_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Insert a document and return it with its id.

        A generated id is used when record_id is None.
        """
        pass

    @abstractmethod
    async def delete(self, collection: str, record_id: str) -> None:
        """
        Remove a document.

        Raises:
            RecordNotFoundError: If the document doesn't exist
        """
        pass

    @abstractmethod
    async def transactional_update(self, writes: Sequence[Write]) -> None:
        """
        Apply all writes atomically.

        Either every write is committed or none is. A missing document or a
        failed precondition aborts the transaction.

        Raises:
            RecordNotFoundError: A target document doesn't exist
            TransactionAbortedError: Precondition failed or commit failed
        """
        pass

    @abstractmethod
    async def subscribe(
        self,
        query: RecordQuery,
        listener: SnapshotListener,
    ) -> StoreWatch:
        """
        Start an observable query.

        The first snapshot is delivered once the watch is established.

        Raises:
            InvalidQueryError / TransientStoreError: If the watch can't be set up
        """
        pass

    async def ping(self) -> bool:
        """Health check. Default implementation assumes the store is up."""
        return True

    async def close(self) -> None:
        """Release connections. Optional for backends holding none."""
        return None
