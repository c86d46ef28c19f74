"""
In-Memory Record Store Backend

A process-local implementation of RecordStore.
Perfect for:
- Local development without Firebase credentials
- Unit and API tests

Behaves like Firestore where it matters to callers:
- Records missing an order_by field are left out of ordered queries
- Results tie-break on document id
- Watches fire only when the result set actually changes
- transactional_update() is all-or-nothing

Fault injection (tests):
- set_unavailable(True): every operation raises TransientStoreError
- fail_next_transaction(): the next transactional_update() aborts
- break_watches(error): every active watch ends with on_error(error)
"""

import asyncio
import copy
import functools
import logging
import uuid
from collections import defaultdict
from typing import Any, Dict, List, Optional, Sequence

from classpulse.store.base import (
    FieldFilter,
    OrderBy,
    RecordNotFoundError,
    RecordQuery,
    RecordStore,
    SnapshotListener,
    StoreWatch,
    TransactionAbortedError,
    TransientStoreError,
    Write,
)

logger = logging.getLogger(__name__)

_MISSING = object()


# ============================================================
# Query evaluation helpers
# ============================================================

def _field_value(record: Dict[str, Any], name: str) -> Any:
    """Resolve a (possibly dotted) field name against a record."""
    value: Any = record
    for part in name.split("."):
        if not isinstance(value, dict) or part not in value:
            return _MISSING
        value = value[part]
    return value


def _matches(record: Dict[str, Any], flt: FieldFilter) -> bool:
    value = _field_value(record, flt.field)
    if value is _MISSING:
        return False

    try:
        if flt.op == "==":
            return value == flt.value
        if flt.op == "!=":
            return value != flt.value
        if flt.op == "<":
            return value < flt.value
        if flt.op == "<=":
            return value <= flt.value
        if flt.op == ">":
            return value > flt.value
        if flt.op == ">=":
            return value >= flt.value
        if flt.op == "in":
            return value in flt.value
        if flt.op == "array_contains":
            return isinstance(value, list) and flt.value in value
    except TypeError:
        # Mixed types never compare equal in Firestore either
        return False
    return False


def _compare(left: Sequence[Any], right: Sequence[Any], order: Sequence[OrderBy]) -> int:
    for a, b, ob in zip(left, right, order):
        if a == b:
            continue
        result = -1 if a < b else 1
        return -result if ob.descending else result
    return 0


def _effective_order(query: RecordQuery) -> List[OrderBy]:
    order = list(query.order_by)
    if not any(ob.field == "id" for ob in order):
        order.append(OrderBy("id"))
    return order


def _sort_key(record: Dict[str, Any], order: Sequence[OrderBy]) -> List[Any]:
    return [_field_value(record, ob.field) for ob in order]


def evaluate(
    records: Sequence[Dict[str, Any]],
    query: RecordQuery,
    start_after: Optional[Sequence[Any]] = None,
) -> List[Dict[str, Any]]:
    """Apply filters, ordering, cursor and limit to a list of records."""
    order = _effective_order(query)

    selected = [
        r for r in records
        if all(_matches(r, f) for f in query.filters)
        and all(_field_value(r, ob.field) is not _MISSING for ob in order)
    ]

    keyed = [(_sort_key(r, order), r) for r in selected]
    keyed.sort(key=functools.cmp_to_key(lambda x, y: _compare(x[0], y[0], order)))

    if start_after is not None:
        cursor = list(start_after)
        keyed = [
            (k, r) for k, r in keyed
            if _compare(k[:len(cursor)], cursor, order) > 0
        ]

    result = [copy.deepcopy(r) for _, r in keyed]
    if query.limit is not None:
        result = result[:query.limit]
    return result


# ============================================================
# Watches
# ============================================================

class _MemoryWatch(StoreWatch):
    def __init__(self, store: "MemoryRecordStore", query: RecordQuery, listener: SnapshotListener):
        self._store = store
        self.query = query
        self.listener = listener
        self.last_snapshot: Optional[List[Dict[str, Any]]] = None
        self.active = True

    def refresh(self) -> None:
        if not self.active:
            return
        snapshot = evaluate(self._store.records(self.query.collection), self.query)
        if snapshot == self.last_snapshot:
            return
        self.last_snapshot = snapshot
        self.listener.on_snapshot(copy.deepcopy(snapshot))

    def fail(self, error: Exception) -> None:
        if not self.active:
            return
        self.active = False
        self._store._watches.discard(self)
        self.listener.on_error(error)

    def cancel(self) -> None:
        if not self.active:
            return
        self.active = False
        self._store._watches.discard(self)


# ============================================================
# Store
# ============================================================

class MemoryRecordStore(RecordStore):
    """
    Dict-backed record store.

    Mutations never await between validation and commit, so each
    operation is atomic with respect to the event loop.
    """

    def __init__(self):
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = defaultdict(dict)
        self._watches = set()
        self._unavailable = False
        self._fail_next_transaction = False

    # ============================================================
    # Fault injection
    # ============================================================

    def set_unavailable(self, unavailable: bool = True) -> None:
        self._unavailable = unavailable

    def fail_next_transaction(self) -> None:
        self._fail_next_transaction = True

    def break_watches(self, error: Optional[Exception] = None) -> None:
        error = error or TransientStoreError("watch stream closed")
        for watch in list(self._watches):
            watch.fail(error)

    # ============================================================
    # Internal helpers
    # ============================================================

    def records(self, collection: str) -> List[Dict[str, Any]]:
        """Raw records of a collection, ids included (no copy)."""
        return [
            dict(data, id=record_id)
            for record_id, data in self._collections[collection].items()
        ]

    async def _enter(self) -> None:
        # Every store call is a suspension point, as with a network store
        await asyncio.sleep(0)
        if self._unavailable:
            raise TransientStoreError("record store unavailable")

    def _notify(self, collections) -> None:
        for watch in list(self._watches):
            if watch.query.collection in collections:
                watch.refresh()

    # ============================================================
    # RecordStore interface
    # ============================================================

    async def get(self, collection: str, record_id: str) -> Dict[str, Any]:
        await self._enter()
        data = self._collections[collection].get(record_id)
        if data is None:
            raise RecordNotFoundError(collection, record_id)
        return dict(copy.deepcopy(data), id=record_id)

    async def query(
        self,
        query: RecordQuery,
        start_after: Optional[Sequence[Any]] = None,
    ) -> List[Dict[str, Any]]:
        await self._enter()
        return evaluate(self.records(query.collection), query, start_after)

    async def add(
        self,
        collection: str,
        data: Dict[str, Any],
        record_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        await self._enter()
        record_id = record_id or uuid.uuid4().hex
        stored = copy.deepcopy({k: v for k, v in data.items() if k != "id"})
        self._collections[collection][record_id] = stored
        self._notify({collection})
        return dict(copy.deepcopy(stored), id=record_id)

    async def delete(self, collection: str, record_id: str) -> None:
        await self._enter()
        if record_id not in self._collections[collection]:
            raise RecordNotFoundError(collection, record_id)
        del self._collections[collection][record_id]
        self._notify({collection})

    async def transactional_update(self, writes: Sequence[Write]) -> None:
        await self._enter()

        if self._fail_next_transaction:
            self._fail_next_transaction = False
            raise TransactionAbortedError("transaction aborted (injected failure)")

        # Validate everything before touching any document
        for w in writes:
            current = self._collections[w.collection].get(w.record_id)
            if current is None:
                raise RecordNotFoundError(w.collection, w.record_id)
            for name, expected in w.precondition.items():
                if current.get(name, None) != expected:
                    raise TransactionAbortedError(
                        f"precondition failed on {w.collection}/{w.record_id}: {name}"
                    )

        for w in writes:
            if w.delete:
                self._collections[w.collection].pop(w.record_id, None)
            else:
                self._collections[w.collection][w.record_id].update(copy.deepcopy(w.patch))

        self._notify({w.collection for w in writes})

    async def subscribe(
        self,
        query: RecordQuery,
        listener: SnapshotListener,
    ) -> StoreWatch:
        await self._enter()
        watch = _MemoryWatch(self, query, listener)
        self._watches.add(watch)
        watch.refresh()
        return watch

    async def ping(self) -> bool:
        return not self._unavailable
