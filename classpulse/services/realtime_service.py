"""
Realtime Update Service

Writes system events (assignment posted, submission graded...) into the
addressed user's realtime-update feed. Notable events also land in the
user's inbox as a notification with a readable title and message.

Feed records are short-lived: anything older than the retention window
(REALTIME_UPDATE_RETENTION_DAYS, 7 days by default) is purged by the
worker's daily cron job together with expired notifications.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from classpulse.core.config import settings
from classpulse.core.security import Session
from classpulse.repositories.notification_repo import RealtimeUpdateRepository
from classpulse.schemas.notification import NotificationType
from classpulse.schemas.realtime import (
    PurgeResult,
    RealtimeUpdateResponse,
    RealtimeUpdateType,
)
from classpulse.services.notification_service import NotificationService
from classpulse.store import RecordStore

logger = logging.getLogger(__name__)


class RealtimeUpdateError(Exception):
    pass


# Events that also produce an inbox notification
NOTIFYING_UPDATES = {
    RealtimeUpdateType.ASSIGNMENT_CREATED: NotificationType.ASSIGNMENT_CREATED,
    RealtimeUpdateType.SUBMISSION_GRADED: NotificationType.ASSIGNMENT_GRADED,
    RealtimeUpdateType.GRADE_UPDATED: NotificationType.GRADE_UPDATED,
    RealtimeUpdateType.COURSE_ENROLLMENT: NotificationType.COURSE_ENROLLMENT,
    RealtimeUpdateType.COURSE_DROPPED: NotificationType.COURSE_DROPPED,
}

_TITLES = {
    RealtimeUpdateType.ASSIGNMENT_CREATED: "New Assignment Posted",
    RealtimeUpdateType.SUBMISSION_GRADED: "Assignment Graded",
    RealtimeUpdateType.GRADE_UPDATED: "Grade Updated",
    RealtimeUpdateType.COURSE_ENROLLMENT: "Course Enrollment",
    RealtimeUpdateType.COURSE_DROPPED: "Course Dropped",
}

_MESSAGES = {
    RealtimeUpdateType.ASSIGNMENT_CREATED: 'A new assignment "{title}" has been posted in {course_title}',
    RealtimeUpdateType.SUBMISSION_GRADED: 'Your submission for "{assignment_title}" has been graded',
    RealtimeUpdateType.GRADE_UPDATED: 'Your grade for "{assignment_title}" has been updated',
    RealtimeUpdateType.COURSE_ENROLLMENT: "You have been enrolled in {course_title}",
    RealtimeUpdateType.COURSE_DROPPED: "You have been dropped from {course_title}",
}


class _Placeholder(dict):
    """format_map() helper: unknown keys render as a neutral word."""

    def __missing__(self, key):
        return "your course" if "course" in key else "an assignment"


def notification_title(update_type: RealtimeUpdateType) -> str:
    return _TITLES.get(update_type, "System Notification")


def notification_message(update_type: RealtimeUpdateType, payload: Dict[str, Any]) -> str:
    template = _MESSAGES.get(update_type)
    if template is None:
        return "You have a new notification"
    return template.format_map(_Placeholder(payload))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RealtimeUpdateService:
    """Service for the realtime-update feed."""

    def __init__(
        self,
        store: RecordStore,
        clock: Callable[[], datetime] = _utcnow,
        notifications: Optional[NotificationService] = None,
    ):
        self.store = store
        self.clock = clock
        self.update_repo = RealtimeUpdateRepository(store)
        self.notifications = notifications or NotificationService(store, clock=clock)

    # ============================================================
    # PUBLISH
    # ============================================================

    async def publish(
        self,
        user_id: str,
        update_type: RealtimeUpdateType | str,
        payload: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> RealtimeUpdateResponse:
        if not user_id:
            raise RealtimeUpdateError("user_id is required")
        try:
            update_type = RealtimeUpdateType(update_type)
        except ValueError:
            raise RealtimeUpdateError(f"Unknown update type: {update_type}")

        payload = payload or {}

        # The derived notification is checked before the feed record is written
        notification_type = NOTIFYING_UPDATES.get(update_type)
        if notification_type is not None:
            title = notification_title(update_type)
            message = notification_message(update_type, payload)
            self.notifications.validate_create(user_id, notification_type, title, message)

        record = await self.update_repo.create(
            user_id=user_id,
            type=update_type.value,
            payload=payload,
            metadata=metadata or {},
            timestamp=self.clock(),
            read=False,
        )
        logger.info(f"Realtime update {record['id']} ({update_type.value}) for user {user_id}")

        if notification_type is not None:
            await self.notifications.create(
                user_id=user_id,
                notification_type=notification_type,
                title=title,
                message=message,
                data={**payload, "realtime_update_id": record["id"]},
            )

        return RealtimeUpdateResponse(**record)

    # ============================================================
    # LIST
    # ============================================================

    async def list_recent(self, session: Session, limit: int = 20):
        if limit < 1 or limit > settings.LIVE_SUBSCRIPTION_MAX_LIMIT:
            raise RealtimeUpdateError(
                f"limit must be between 1 and {settings.LIVE_SUBSCRIPTION_MAX_LIMIT}"
            )
        records = await self.update_repo.get_by_user(session.user_id, limit)
        return [RealtimeUpdateResponse(**r) for r in records]

    # ============================================================
    # PURGE
    # ============================================================

    async def purge_expired(self, now: Optional[datetime] = None) -> PurgeResult:
        """
        Remove feed records past retention and expired notifications.

        Returns:
            Number of records deleted per collection
        """
        now = now or self.clock()
        cutoff = now - timedelta(days=settings.REALTIME_UPDATE_RETENTION_DAYS)

        stale = await self.update_repo.get_older_than(cutoff)
        removed_updates = await self.update_repo.delete_many([u["id"] for u in stale]) if stale else 0
        removed_notifications = await self.notifications.purge_expired(now)

        logger.info(
            f"Purged {removed_updates} realtime updates (before {cutoff.isoformat()}) "
            f"and {removed_notifications} expired notifications"
        )
        return PurgeResult(
            realtime_updates=removed_updates,
            notifications=removed_notifications,
        )
