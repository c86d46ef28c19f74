"""
Unit tests for the Firestore record store.

The Firebase SDK clients are replaced with mocks; these tests cover the
translation layer (queries, cursors, transactions, error mapping and
watch marshalling), not Firestore itself.
"""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from google.api_core import exceptions as gexc
from google.cloud.firestore_v1.base_query import BaseQuery
from google.cloud.firestore_v1.field_path import FieldPath

from classpulse.store import (
    FieldFilter,
    InvalidQueryError,
    OrderBy,
    RecordNotFoundError,
    RecordQuery,
    SnapshotListener,
    TransactionAbortedError,
    TransientStoreError,
    Write,
)
from classpulse.store.firestore import MAX_TRANSACTION_WRITES, FirestoreRecordStore, _FirestoreWatch
from tests.helpers import settle, wait_until

pytestmark = pytest.mark.unit

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


# =============================================================================
# Fakes
# =============================================================================


def doc_snapshot(record_id, data=None, exists=True):
    snap = MagicMock()
    snap.id = record_id
    snap.exists = exists
    snap.to_dict.return_value = dict(data or {}) if exists else None
    return snap


async def stream_of(docs, error=None):
    for doc in docs:
        yield doc
    if error is not None:
        raise error


class Recorder(SnapshotListener):
    def __init__(self):
        self.snapshots = []
        self.errors = []

    def on_snapshot(self, records):
        self.snapshots.append(records)

    def on_error(self, error):
        self.errors.append(error)


@pytest.fixture
def fs():
    with patch("classpulse.store.firestore.ensure_firebase_app"), \
            patch("classpulse.store.firestore.firestore_async"), \
            patch("classpulse.store.firestore.firestore"):
        yield FirestoreRecordStore()


@pytest.fixture
def doc_ref(fs):
    """Every document() call on the async client returns this reference."""
    ref = fs._client.collection.return_value.document.return_value
    ref.get = AsyncMock()
    ref.set = AsyncMock()
    ref.delete = AsyncMock()
    return ref


@pytest.fixture
def no_retry_transactions():
    with patch("classpulse.store.firestore.async_transactional", lambda fn: fn):
        yield


# =============================================================================
# Query building
# =============================================================================


class TestBuildQuery:

    def test_filters_order_and_document_id_cursor(self, fs):
        client = MagicMock()
        query = RecordQuery(
            "notifications",
            (FieldFilter("user_id", "==", "u1"),),
            (OrderBy("created_at", descending=True), OrderBy("id", descending=True)),
            20,
        )

        built = fs._build_query(client, query, start_after=[T0, "n3"])

        collection = client.collection.return_value
        client.collection.assert_called_once_with("notifications")
        where_filter = collection.where.call_args.kwargs["filter"]
        assert (where_filter.field_path, where_filter.op_string, where_filter.value) == ("user_id", "==", "u1")

        first = collection.where.return_value
        second = first.order_by.return_value
        assert first.order_by.call_args.args == ("created_at",)
        assert second.order_by.call_args.args == (FieldPath.document_id(),)
        assert second.order_by.call_args.kwargs["direction"] == BaseQuery.DESCENDING

        ordered = second.order_by.return_value
        collection.document.assert_called_once_with("n3")
        ordered.start_after.assert_called_once_with([T0, collection.document.return_value])
        ordered.start_after.return_value.limit.assert_called_once_with(20)
        assert built is ordered.start_after.return_value.limit.return_value

    def test_array_contains_uses_sdk_operator(self, fs):
        client = MagicMock()

        fs._build_query(client, RecordQuery("courses", (FieldFilter("batches", "array_contains", "2026"),)))

        where_filter = client.collection.return_value.where.call_args.kwargs["filter"]
        assert where_filter.op_string == "array-contains"

    def test_no_limit_or_cursor(self, fs):
        client = MagicMock()

        built = fs._build_query(client, RecordQuery("users"))

        collection = client.collection.return_value
        assert built is collection
        collection.limit.assert_not_called()
        collection.start_after.assert_not_called()


# =============================================================================
# Error mapping
# =============================================================================


class TestTranslate:

    @pytest.mark.parametrize("error, expected", [
        (gexc.ServiceUnavailable("down"), TransientStoreError),
        (gexc.DeadlineExceeded("slow"), TransientStoreError),
        (gexc.InternalServerError("oops"), TransientStoreError),
        (gexc.TooManyRequests("quota"), TransientStoreError),
        (gexc.Aborted("contention"), TransactionAbortedError),
        (gexc.InvalidArgument("bad op"), InvalidQueryError),
        (gexc.FailedPrecondition("needs index"), InvalidQueryError),
    ])
    def test_mapping(self, fs, error, expected):
        assert type(fs._translate(error)) is expected

    def test_unmapped_error_passes_through(self, fs):
        error = gexc.PermissionDenied("rules")

        assert fs._translate(error) is error


# =============================================================================
# Reads & writes
# =============================================================================


class TestReadsAndWrites:

    @pytest.mark.asyncio
    async def test_get_returns_record_with_id(self, fs, doc_ref):
        doc_ref.get.return_value = doc_snapshot("n1", {"title": "Hi"})

        assert await fs.get("notifications", "n1") == {"title": "Hi", "id": "n1"}

    @pytest.mark.asyncio
    async def test_get_missing(self, fs, doc_ref):
        doc_ref.get.return_value = doc_snapshot("n1", exists=False)

        with pytest.raises(RecordNotFoundError):
            await fs.get("notifications", "n1")

    @pytest.mark.asyncio
    async def test_get_unavailable(self, fs, doc_ref):
        doc_ref.get.side_effect = gexc.ServiceUnavailable("down")

        with pytest.raises(TransientStoreError):
            await fs.get("notifications", "n1")

    @pytest.mark.asyncio
    async def test_query_streams_records(self, fs):
        built = MagicMock()
        built.stream.return_value = stream_of([doc_snapshot("a", {"n": 1}), doc_snapshot("b", {"n": 2})])

        with patch.object(fs, "_build_query", return_value=built):
            records = await fs.query(RecordQuery("users"))

        assert records == [{"n": 1, "id": "a"}, {"n": 2, "id": "b"}]

    @pytest.mark.asyncio
    async def test_query_error_mid_stream(self, fs):
        built = MagicMock()
        built.stream.return_value = stream_of([doc_snapshot("a")], error=gexc.DeadlineExceeded("slow"))

        with patch.object(fs, "_build_query", return_value=built):
            with pytest.raises(TransientStoreError):
                await fs.query(RecordQuery("users"))

    @pytest.mark.asyncio
    async def test_add_never_stores_id_field(self, fs, doc_ref):
        doc_ref.id = "generated"

        record = await fs.add("user_activity", {"id": "ignored", "activity": "course_viewed"})

        doc_ref.set.assert_awaited_once_with({"activity": "course_viewed"})
        assert record == {"activity": "course_viewed", "id": "generated"}

    @pytest.mark.asyncio
    async def test_delete_missing(self, fs, doc_ref):
        doc_ref.get.return_value = doc_snapshot("n1", exists=False)

        with pytest.raises(RecordNotFoundError):
            await fs.delete("notifications", "n1")
        doc_ref.delete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_ping(self, fs):
        users = fs._client.collection.return_value.limit.return_value
        users.stream.return_value = stream_of([doc_snapshot("u1")])
        assert await fs.ping() is True

        users.stream.return_value = stream_of([], error=gexc.ServiceUnavailable("down"))
        assert await fs.ping() is False


# =============================================================================
# Transactions
# =============================================================================


@pytest.mark.usefixtures("no_retry_transactions")
class TestTransactionalUpdate:

    @pytest.mark.asyncio
    async def test_applies_patches_and_deletes(self, fs, doc_ref):
        doc_ref.get.side_effect = [doc_snapshot("n1", {"read": False}), doc_snapshot("n2", {"read": False})]
        transaction = fs._client.transaction.return_value

        await fs.transactional_update([
            Write("notifications", "n1", patch={"read": True}, precondition={"read": False}),
            Write("notifications", "n2", delete=True),
        ])

        assert all(c.kwargs["transaction"] is transaction for c in doc_ref.get.await_args_list)
        transaction.update.assert_called_once_with(doc_ref, {"read": True})
        transaction.delete.assert_called_once_with(doc_ref)

    @pytest.mark.asyncio
    async def test_precondition_failure_writes_nothing(self, fs, doc_ref):
        doc_ref.get.side_effect = [doc_snapshot("n1", {"read": False}), doc_snapshot("n2", {"read": True})]
        transaction = fs._client.transaction.return_value

        with pytest.raises(TransactionAbortedError, match="n2"):
            await fs.transactional_update([
                Write("notifications", "n1", patch={"read": True}, precondition={"read": False}),
                Write("notifications", "n2", patch={"read": True}, precondition={"read": False}),
            ])

        transaction.update.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_document(self, fs, doc_ref):
        doc_ref.get.return_value = doc_snapshot("n1", exists=False)

        with pytest.raises(RecordNotFoundError):
            await fs.transactional_update([Write("notifications", "n1", patch={"read": True})])

    @pytest.mark.asyncio
    async def test_contention_is_aborted(self, fs, doc_ref):
        doc_ref.get.side_effect = gexc.Aborted("contention")

        with pytest.raises(TransactionAbortedError):
            await fs.transactional_update([Write("notifications", "n1", patch={"read": True})])

    @pytest.mark.asyncio
    async def test_exhausted_retries_are_aborted(self, fs, doc_ref):
        doc_ref.get.side_effect = ValueError("Failed to commit transaction in 5 attempts")

        with pytest.raises(TransactionAbortedError):
            await fs.transactional_update([Write("notifications", "n1", patch={"read": True})])

    @pytest.mark.asyncio
    async def test_refuses_more_than_limit(self, fs):
        writes = [Write("notifications", f"n{i}", patch={"read": True}) for i in range(MAX_TRANSACTION_WRITES + 1)]

        with pytest.raises(TransactionAbortedError, match="limit"):
            await fs.transactional_update(writes)

        fs._client.transaction.assert_not_called()

    @pytest.mark.asyncio
    async def test_empty_is_noop(self, fs):
        await fs.transactional_update([])

        fs._client.transaction.assert_not_called()


# =============================================================================
# Watches
# =============================================================================


class TestWatch:

    @pytest.mark.asyncio
    async def test_snapshot_marshalled_from_sdk_thread(self):
        listener = Recorder()
        query = MagicMock()
        watch = _FirestoreWatch(asyncio.get_running_loop(), listener)
        watch.start(query)
        callback = query.on_snapshot.call_args.args[0]

        await asyncio.to_thread(callback, [doc_snapshot("n1", {"title": "Hi"})], [], T0)
        await wait_until(lambda: listener.snapshots)

        assert listener.snapshots == [[{"title": "Hi", "id": "n1"}]]
        watch.cancel()

    @pytest.mark.asyncio
    async def test_nothing_delivered_after_cancel(self):
        listener = Recorder()
        query = MagicMock()
        watch = _FirestoreWatch(asyncio.get_running_loop(), listener)
        watch.start(query)
        callback = query.on_snapshot.call_args.args[0]

        watch.cancel()
        watch.cancel()
        await asyncio.to_thread(callback, [doc_snapshot("n1")], [], T0)
        await settle()

        assert listener.snapshots == []
        query.on_snapshot.return_value.unsubscribe.assert_called_once()

    @pytest.mark.asyncio
    async def test_stopped_stream_reported_once(self):
        listener = Recorder()
        query = MagicMock()
        query.on_snapshot.return_value.is_active = True

        with patch("classpulse.store.firestore.WATCH_CHECK_INTERVAL", 0.01):
            watch = _FirestoreWatch(asyncio.get_running_loop(), listener)
            watch.start(query)
            await settle()
            assert listener.errors == []

            query.on_snapshot.return_value.is_active = False
            await wait_until(lambda: listener.errors)
            await settle()

        assert len(listener.errors) == 1
        assert isinstance(listener.errors[0], TransientStoreError)
        assert not watch.active

    @pytest.mark.asyncio
    async def test_store_subscribe(self, fs):
        listener = Recorder()
        built = MagicMock()

        with patch.object(fs, "_build_query", return_value=built):
            watch = await fs.subscribe(RecordQuery("notifications"), listener)

        assert isinstance(watch, _FirestoreWatch)
        built.on_snapshot.assert_called_once()
        watch.cancel()

    @pytest.mark.asyncio
    async def test_store_subscribe_refused(self, fs):
        built = MagicMock()
        built.on_snapshot.side_effect = gexc.ServiceUnavailable("down")

        with patch.object(fs, "_build_query", return_value=built):
            with pytest.raises(TransientStoreError):
                await fs.subscribe(RecordQuery("notifications"), Recorder())
