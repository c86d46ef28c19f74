"""
Firestore Record Store Backend

Production implementation of RecordStore on Google Cloud Firestore,
accessed through the Firebase Admin SDK.

Two clients are used:
- The async client for reads, writes and transactions (never blocks the loop)
- The sync client for watches, because Query.on_snapshot() is only
  available there. Its callbacks run on SDK threads and are marshalled
  back onto the event loop with call_soon_threadsafe().

Error mapping:
-------------
google.api_core ServiceUnavailable / DeadlineExceeded / 500 / 429 -> TransientStoreError
google.api_core Aborted, exhausted transaction retries            -> TransactionAbortedError
google.api_core InvalidArgument / FailedPrecondition (index)      -> InvalidQueryError
Missing document (snapshot.exists is False)                       -> RecordNotFoundError

Limits:
-------
A Firestore transaction commits at most 500 writes. transactional_update()
refuses larger batches instead of silently splitting them, which would
break atomicity.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

import firebase_admin
from firebase_admin import credentials, firestore, firestore_async
from google.api_core import exceptions as gexc
from google.cloud.firestore_v1 import FieldFilter as FirestoreFieldFilter
from google.cloud.firestore_v1.async_transaction import async_transactional
from google.cloud.firestore_v1.base_query import BaseQuery
from google.cloud.firestore_v1.field_path import FieldPath

from classpulse.core.config import settings
from classpulse.store.base import (
    InvalidQueryError,
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

MAX_TRANSACTION_WRITES = 500

# Seconds between liveness checks of a watch stream
WATCH_CHECK_INTERVAL = 5.0

_TRANSIENT_ERRORS = (
    gexc.ServiceUnavailable,
    gexc.DeadlineExceeded,
    gexc.InternalServerError,
    gexc.TooManyRequests,
)

# Operator names that differ from the SDK spelling
_SDK_OPERATORS = {"array_contains": "array-contains"}


# ============================================================
# Firebase initialisation
# ============================================================

def ensure_firebase_app() -> firebase_admin.App:
    """Initialize the Firebase Admin SDK once and return the default app."""
    try:
        return firebase_admin.get_app()
    except ValueError:
        pass

    key_path = settings.FIREBASE_SERVICE_ACCOUNT_KEY_PATH
    if key_path:
        cred = credentials.Certificate(key_path)
    else:
        cred = credentials.ApplicationDefault()

    options = {}
    if settings.FIREBASE_PROJECT_ID:
        options["projectId"] = settings.FIREBASE_PROJECT_ID

    app = firebase_admin.initialize_app(cred, options or None)
    logger.info("Firebase Admin SDK initialized")
    return app


def _to_record(snapshot) -> Dict[str, Any]:
    data = snapshot.to_dict() or {}
    data["id"] = snapshot.id
    return data


# ============================================================
# Watch
# ============================================================

class _FirestoreWatch(StoreWatch):
    """
    Bridges an on_snapshot() watch to a SnapshotListener on the event loop.

    The SDK has no error callback: when the stream dies it just stops.
    A small monitor task notices the stopped stream and reports it.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop, listener: SnapshotListener):
        self._loop = loop
        self._listener = listener
        self._watch = None
        self._monitor: Optional[asyncio.Task] = None
        self.active = True

    def start(self, query) -> None:
        self._watch = query.on_snapshot(self._on_snapshot_thread)
        self._monitor = self._loop.create_task(self._monitor_loop())

    def _on_snapshot_thread(self, docs, changes, read_time) -> None:
        records = [_to_record(doc) for doc in docs]
        self._loop.call_soon_threadsafe(self._deliver, records)

    def _deliver(self, records: List[Dict[str, Any]]) -> None:
        if self.active:
            self._listener.on_snapshot(records)

    async def _monitor_loop(self) -> None:
        while self.active:
            await asyncio.sleep(WATCH_CHECK_INTERVAL)
            if self.active and not getattr(self._watch, "is_active", True):
                logger.error("Firestore watch stream stopped unexpectedly")
                self.active = False
                self._listener.on_error(TransientStoreError("watch stream closed"))

    def cancel(self) -> None:
        if not self.active:
            return
        self.active = False
        if self._monitor is not None:
            self._monitor.cancel()
        if self._watch is not None:
            try:
                self._watch.unsubscribe()
            except Exception as e:
                logger.warning(f"Error while closing Firestore watch: {e}")


# ============================================================
# Store
# ============================================================

class FirestoreRecordStore(RecordStore):
    """Firestore implementation of RecordStore."""

    def __init__(self):
        app = ensure_firebase_app()
        self._client = firestore_async.client(app)
        self._sync_client = firestore.client(app)

    # ============================================================
    # Helpers
    # ============================================================

    def _build_query(self, client, query: RecordQuery, start_after: Optional[Sequence[Any]] = None):
        collection = client.collection(query.collection)
        q = collection

        for flt in query.filters:
            q = q.where(filter=FirestoreFieldFilter(flt.field, _SDK_OPERATORS.get(flt.op, flt.op), flt.value))

        order = list(query.order_by)
        for ob in order:
            field_path = FieldPath.document_id() if ob.field == "id" else ob.field
            direction = BaseQuery.DESCENDING if ob.descending else BaseQuery.ASCENDING
            q = q.order_by(field_path, direction=direction)

        if start_after is not None:
            values = []
            for ob, value in zip(order, start_after):
                values.append(collection.document(value) if ob.field == "id" else value)
            q = q.start_after(values)

        if query.limit is not None:
            q = q.limit(query.limit)
        return q

    def _translate(self, error: Exception) -> Exception:
        if isinstance(error, _TRANSIENT_ERRORS):
            return TransientStoreError(str(error))
        if isinstance(error, gexc.Aborted):
            return TransactionAbortedError(str(error))
        if isinstance(error, (gexc.InvalidArgument, gexc.FailedPrecondition)):
            return InvalidQueryError(str(error))
        return error

    # ============================================================
    # RecordStore interface
    # ============================================================

    async def get(self, collection: str, record_id: str) -> Dict[str, Any]:
        try:
            snapshot = await self._client.collection(collection).document(record_id).get()
        except gexc.GoogleAPICallError as e:
            raise self._translate(e) from e
        if not snapshot.exists:
            raise RecordNotFoundError(collection, record_id)
        return _to_record(snapshot)

    async def query(
        self,
        query: RecordQuery,
        start_after: Optional[Sequence[Any]] = None,
    ) -> List[Dict[str, Any]]:
        q = self._build_query(self._client, query, start_after)
        try:
            return [_to_record(doc) async for doc in q.stream()]
        except gexc.GoogleAPICallError as e:
            raise self._translate(e) from e

    async def add(
        self,
        collection: str,
        data: Dict[str, Any],
        record_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        payload = {k: v for k, v in data.items() if k != "id"}
        ref = self._client.collection(collection)
        doc_ref = ref.document(record_id) if record_id else ref.document()
        try:
            await doc_ref.set(payload)
        except gexc.GoogleAPICallError as e:
            raise self._translate(e) from e
        return dict(payload, id=doc_ref.id)

    async def delete(self, collection: str, record_id: str) -> None:
        doc_ref = self._client.collection(collection).document(record_id)
        try:
            snapshot = await doc_ref.get()
            if not snapshot.exists:
                raise RecordNotFoundError(collection, record_id)
            await doc_ref.delete()
        except gexc.GoogleAPICallError as e:
            raise self._translate(e) from e

    async def transactional_update(self, writes: Sequence[Write]) -> None:
        if not writes:
            return
        if len(writes) > MAX_TRANSACTION_WRITES:
            raise TransactionAbortedError(
                f"{len(writes)} writes exceed the transaction limit of {MAX_TRANSACTION_WRITES}"
            )

        client = self._client

        @async_transactional
        async def _apply(transaction):
            refs = [client.collection(w.collection).document(w.record_id) for w in writes]

            # All reads must happen before the first write in a transaction
            snapshots = [await ref.get(transaction=transaction) for ref in refs]
            for w, snapshot in zip(writes, snapshots):
                if not snapshot.exists:
                    raise RecordNotFoundError(w.collection, w.record_id)
                current = snapshot.to_dict() or {}
                for name, expected in w.precondition.items():
                    if current.get(name) != expected:
                        raise TransactionAbortedError(
                            f"precondition failed on {w.collection}/{w.record_id}: {name}"
                        )

            for w, ref in zip(writes, refs):
                if w.delete:
                    transaction.delete(ref)
                else:
                    transaction.update(ref, w.patch)

        try:
            await _apply(client.transaction())
        except gexc.GoogleAPICallError as e:
            raise self._translate(e) from e
        except ValueError as e:
            # Raised by the SDK when retries of a contended transaction run out
            raise TransactionAbortedError(str(e)) from e

    async def subscribe(
        self,
        query: RecordQuery,
        listener: SnapshotListener,
    ) -> StoreWatch:
        q = self._build_query(self._sync_client, query)
        watch = _FirestoreWatch(asyncio.get_running_loop(), listener)
        try:
            watch.start(q)
        except gexc.GoogleAPICallError as e:
            raise self._translate(e) from e
        return watch

    async def ping(self) -> bool:
        try:
            async for _ in self._client.collection("users").limit(1).stream():
                break
            return True
        except gexc.GoogleAPICallError as e:
            logger.error(f"Firestore health check failed: {e}")
            return False

    async def close(self) -> None:
        try:
            self._client.close()
            self._sync_client.close()
        except Exception as e:
            logger.debug(f"Firestore client close: {e}")
