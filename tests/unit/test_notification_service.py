"""Unit tests for the notification inbox service."""

from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from classpulse.schemas.notification import NotificationType
from classpulse.services.notification_service import (
    NotificationNotFoundError,
    NotificationService,
    NotificationValidationError,
    decode_cursor,
    encode_cursor,
)
from classpulse.store import TransactionAbortedError, TransientStoreError
from tests.helpers import seed

pytestmark = pytest.mark.unit


@pytest.fixture
def service(store, clock):
    return NotificationService(store, clock=clock, push_enabled=False)


async def create_many(service, user_id, count):
    created = []
    for i in range(count):
        created.append(await service.create(
            user_id=user_id,
            notification_type=NotificationType.COURSE_UPDATE,
            title=f"Update {i}",
            message=f"Course material {i} was updated",
        ))
    return created


class TestCreate:

    @pytest.mark.asyncio
    async def test_creates_unread_notification(self, service, student):
        notification = await service.create(
            user_id=student.user_id,
            notification_type="assignment_due",
            title="  Homework 3 due  ",
            message="Due tomorrow at noon",
            data={"assignment_id": "a3"},
        )

        assert notification.read is False
        assert notification.read_at is None
        assert notification.title == "Homework 3 due"
        assert notification.data == {"assignment_id": "a3"}
        assert await service.unread_count(student) == 1

    @pytest.mark.asyncio
    async def test_expiry_depends_on_type(self, service, student):
        graded = await service.create(student.user_id, NotificationType.ASSIGNMENT_GRADED, "Graded", "Your work was graded")
        update = await service.create(student.user_id, NotificationType.COURSE_UPDATE, "Update", "Course updated")

        assert graded.expires_at - graded.created_at == timedelta(days=30)
        assert update.expires_at - update.created_at == timedelta(days=7)

    @pytest.mark.parametrize("user_id,notification_type,title,message", [
        ("", "course_update", "Title", "Message"),
        ("u1", "not_a_type", "Title", "Message"),
        ("u1", "course_update", "   ", "Message"),
        ("u1", "course_update", "Title", ""),
        ("u1", "course_update", "x" * 201, "Message"),
    ])
    @pytest.mark.asyncio
    async def test_invalid_input_writes_nothing(self, service, store, user_id, notification_type, title, message):
        with pytest.raises(NotificationValidationError):
            await service.create(user_id, notification_type, title, message)

        assert store.records("notifications") == []

    @pytest.mark.asyncio
    async def test_push_sent_when_enabled(self, store, clock, student):
        await seed(store, "users", student.user_id, role="student", fcm_token="device-token-123")
        service = NotificationService(store, clock=clock, push_enabled=True)

        with patch(
            "classpulse.services.notification_service.send_push_notification",
            new=AsyncMock(return_value=True),
        ) as push:
            notification = await service.create(student.user_id, "grade_posted", "Grade posted", "Midterm grades are out")

        push.assert_awaited_once()
        assert push.await_args.kwargs["fcm_token"] == "device-token-123"
        assert push.await_args.kwargs["data"]["notification_id"] == notification.id

    @pytest.mark.asyncio
    async def test_push_failure_does_not_fail_create(self, store, clock, student):
        await seed(store, "users", student.user_id, role="student", fcm_token="device-token-123")
        service = NotificationService(store, clock=clock, push_enabled=True)

        with patch(
            "classpulse.services.notification_service.send_push_notification",
            new=AsyncMock(side_effect=RuntimeError("fcm down")),
        ):
            notification = await service.create(student.user_id, "grade_posted", "Grade posted", "Midterm grades are out")

        assert notification.id


class TestList:

    @pytest.mark.asyncio
    async def test_returns_newest_first(self, service, student):
        created = await create_many(service, student.user_id, 5)

        page = await service.list(student, limit=3)

        assert [n.id for n in page.notifications] == [c.id for c in reversed(created)][:3]
        assert page.next_cursor is not None

    @pytest.mark.asyncio
    async def test_only_own_notifications(self, service, student, other_student):
        await create_many(service, other_student.user_id, 2)

        page = await service.list(student, limit=10)

        assert page.notifications == []
        assert page.next_cursor is None

    @pytest.mark.asyncio
    async def test_cursor_walk_with_colliding_timestamps(self, store, frozen_clock, student):
        service = NotificationService(store, clock=frozen_clock, push_enabled=False)
        created = await create_many(service, student.user_id, 7)

        seen = []
        cursor = None
        while True:
            page = await service.list(student, limit=3, cursor=cursor)
            seen.extend(n.id for n in page.notifications)
            cursor = page.next_cursor
            if cursor is None:
                break

        assert len(seen) == 7
        assert sorted(seen) == sorted(c.id for c in created)
        # All created_at values collide, so the order is id ascending
        assert seen == sorted(seen)

    @pytest.mark.asyncio
    async def test_limit_bounds(self, service, student):
        with pytest.raises(NotificationValidationError):
            await service.list(student, limit=0)
        with pytest.raises(NotificationValidationError):
            await service.list(student, limit=1000)

    @pytest.mark.asyncio
    async def test_garbage_cursor_rejected(self, service, student):
        with pytest.raises(NotificationValidationError):
            await service.list(student, limit=3, cursor="not-a-cursor!!")

    def test_cursor_round_trip(self, clock):
        record = {"id": "abc", "created_at": clock()}

        assert decode_cursor(encode_cursor(record)) == (record["created_at"], "abc")


class TestReadState:

    @pytest.mark.asyncio
    async def test_mark_read_is_idempotent(self, service, student):
        [notification] = await create_many(service, student.user_id, 1)

        first = await service.mark_read(student, notification.id)
        second = await service.mark_read(student, notification.id)

        assert first.read is True
        assert first.read_at is not None
        assert second.read_at == first.read_at
        assert await service.unread_count(student) == 0

    @pytest.mark.asyncio
    async def test_mark_read_of_someone_elses_notification_is_not_found(self, service, student, other_student):
        [notification] = await create_many(service, other_student.user_id, 1)

        with pytest.raises(NotificationNotFoundError):
            await service.mark_read(student, notification.id)

    @pytest.mark.asyncio
    async def test_mark_read_unknown_id(self, service, student):
        with pytest.raises(NotificationNotFoundError):
            await service.mark_read(student, "does-not-exist")

    @pytest.mark.asyncio
    async def test_mark_read_store_down_propagates(self, service, store, student):
        [notification] = await create_many(service, student.user_id, 1)
        store.set_unavailable()

        with pytest.raises(TransientStoreError):
            await service.mark_read(student, notification.id)

    @pytest.mark.asyncio
    async def test_mark_all_read_clears_unread_count(self, service, student, other_student):
        await create_many(service, student.user_id, 4)
        await create_many(service, other_student.user_id, 2)

        updated = await service.mark_all_read(student)

        assert updated == 4
        assert await service.unread_count(student) == 0
        assert await service.unread_count(other_student) == 2

    @pytest.mark.asyncio
    async def test_failed_mark_all_read_changes_nothing(self, service, store, student):
        await create_many(service, student.user_id, 3)
        store.fail_next_transaction()

        with pytest.raises(TransactionAbortedError):
            await service.mark_all_read(student)

        assert await service.unread_count(student) == 3

    @pytest.mark.asyncio
    async def test_mark_all_read_with_empty_inbox(self, service, student):
        assert await service.mark_all_read(student) == 0


class TestDeleteAndPurge:

    @pytest.mark.asyncio
    async def test_delete_own_notification(self, service, student):
        [notification] = await create_many(service, student.user_id, 1)

        await service.delete(student, notification.id)

        assert (await service.list(student)).notifications == []

    @pytest.mark.asyncio
    async def test_delete_someone_elses_notification(self, service, student, other_student):
        [notification] = await create_many(service, other_student.user_id, 1)

        with pytest.raises(NotificationNotFoundError):
            await service.delete(student, notification.id)

    @pytest.mark.asyncio
    async def test_purge_removes_only_expired(self, service, clock, student):
        [notification] = await create_many(service, student.user_id, 1)

        assert await service.purge_expired(notification.created_at + timedelta(days=6)) == 0
        assert await service.purge_expired(notification.created_at + timedelta(days=8)) == 1
        assert await service.unread_count(student) == 0
