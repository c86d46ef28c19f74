"""
Notification Service

Owns the inbox lifecycle: create, read, delete, list.

Every write goes to the record store; live viewers pick the change up
through their store subscription (see live_updates.py), so creating a
notification fans out to the owner's open inbox views without any extra
call. Optionally a push is also sent via Firebase Cloud Messaging (FCM).
"""

import asyncio
import base64
import binascii
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from firebase_admin import messaging

from classpulse.core.config import settings
from classpulse.core.security import Session
from classpulse.repositories.notification_repo import NotificationRepository
from classpulse.repositories.coursework_repo import UserRepository
from classpulse.schemas.notification import (
    NotificationPage,
    NotificationResponse,
    NotificationType,
)
from classpulse.store import (
    RecordNotFoundError,
    RecordStore,
    TransactionAbortedError,
)
from classpulse.store.firestore import ensure_firebase_app

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 200
MAX_MESSAGE_LENGTH = 2000

# Days a notification stays in the inbox before the purge job removes it
EXPIRY_DAYS = {
    NotificationType.ASSIGNMENT_GRADED: 30,
    NotificationType.GRADE_POSTED: 30,
    NotificationType.GRADE_UPDATED: 30,
}
DEFAULT_EXPIRY_DAYS = 7


class NotificationServiceError(Exception):
    pass


class NotificationNotFoundError(NotificationServiceError):
    pass


class NotificationValidationError(NotificationServiceError):
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================
# CURSOR ENCODING
# ============================================================

def encode_cursor(record: Dict[str, Any]) -> str:
    raw = json.dumps({"c": record["created_at"].isoformat(), "i": record["id"]})
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii")


def decode_cursor(cursor: str) -> tuple:
    try:
        raw = json.loads(base64.urlsafe_b64decode(cursor.encode("ascii")))
        return datetime.fromisoformat(raw["c"]), str(raw["i"])
    except (binascii.Error, ValueError, KeyError, TypeError, UnicodeError):
        raise NotificationValidationError("Invalid cursor")


class NotificationService:
    """Service for per-user notification inboxes."""

    def __init__(
        self,
        store: RecordStore,
        clock: Callable[[], datetime] = _utcnow,
        push_enabled: Optional[bool] = None,
    ):
        self.store = store
        self.clock = clock
        self.notification_repo = NotificationRepository(store)
        self.user_repo = UserRepository(store)
        self.push_enabled = (
            settings.PUSH_NOTIFICATIONS_ENABLED if push_enabled is None else push_enabled
        )

    # ============================================================
    # CREATE
    # ============================================================

    async def create(
        self,
        user_id: str,
        notification_type: NotificationType | str,
        title: str,
        message: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> NotificationResponse:
        """
        Put a new unread notification into a user's inbox.

        Raises:
            NotificationValidationError: Malformed input (nothing is written)
        """
        notification_type = self.validate_create(user_id, notification_type, title, message)

        now = self.clock()
        expiry_days = EXPIRY_DAYS.get(notification_type, DEFAULT_EXPIRY_DAYS)

        record = await self.notification_repo.create(
            user_id=user_id,
            type=notification_type.value,
            title=title.strip(),
            message=message.strip(),
            data=data or {},
            created_at=now,
            read=False,
            read_at=None,
            expires_at=now + timedelta(days=expiry_days),
        )
        logger.info(f"Notification {record['id']} created for user {user_id} ({notification_type.value})")

        if self.push_enabled:
            await self._push(user_id, record)

        return NotificationResponse(**record)

    def validate_create(self, user_id, notification_type, title, message) -> NotificationType:
        """
        Check create() input without writing anything.

        Raises:
            NotificationValidationError: Malformed input
        """
        if not user_id or not str(user_id).strip():
            raise NotificationValidationError("user_id is required")
        try:
            notification_type = NotificationType(notification_type)
        except ValueError:
            raise NotificationValidationError(f"Unknown notification type: {notification_type}")
        if not title or not title.strip():
            raise NotificationValidationError("title must not be blank")
        if len(title) > MAX_TITLE_LENGTH:
            raise NotificationValidationError(f"title exceeds {MAX_TITLE_LENGTH} characters")
        if not message or not message.strip():
            raise NotificationValidationError("message must not be blank")
        if len(message) > MAX_MESSAGE_LENGTH:
            raise NotificationValidationError(f"message exceeds {MAX_MESSAGE_LENGTH} characters")
        return notification_type

    # ============================================================
    # READ STATE
    # ============================================================

    async def mark_read(self, session: Session, notification_id: str) -> NotificationResponse:
        """
        Mark one notification as read. Idempotent.

        An already-read notification is returned unchanged, including when
        a concurrent call flipped it first.
        """
        if not notification_id:
            raise NotificationValidationError("notification_id is required")

        record = await self._get_owned(session, notification_id)
        if record.get("read"):
            return NotificationResponse(**record)

        try:
            await self.notification_repo.mark_read(notification_id, self.clock())
        except RecordNotFoundError:
            raise NotificationNotFoundError("Notification not found")
        except TransactionAbortedError:
            current = await self._get_owned(session, notification_id)
            if current.get("read"):
                return NotificationResponse(**current)
            raise

        return NotificationResponse(**await self._get_owned(session, notification_id))

    async def mark_all_read(self, session: Session) -> int:
        """
        Mark every unread notification of the session user as read.

        Runs as a single transaction: on failure nothing is changed and the
        store error propagates. Notifications created while this runs may or
        may not be included.

        Returns:
            Number of notifications transitioned
        """
        unread = await self.notification_repo.get_unread(session.user_id)
        if not unread:
            return 0

        try:
            await self.notification_repo.mark_many_read([n["id"] for n in unread], self.clock())
        except RecordNotFoundError as e:
            # A notification was deleted between the query and the commit
            raise TransactionAbortedError(f"Inbox changed during mark-all-read: {e}") from e
        logger.info(f"Marked {len(unread)} notifications read for user {session.user_id}")
        return len(unread)

    # ============================================================
    # DELETE
    # ============================================================

    async def delete(self, session: Session, notification_id: str) -> None:
        await self._get_owned(session, notification_id)
        try:
            await self.notification_repo.delete(notification_id)
        except RecordNotFoundError:
            raise NotificationNotFoundError("Notification not found")

    # ============================================================
    # LIST
    # ============================================================

    async def list(
        self,
        session: Session,
        limit: int = 20,
        cursor: Optional[str] = None,
    ) -> NotificationPage:
        """
        One page of the inbox, newest first (ties by id ascending).

        Args:
            limit: Page size, 1..NOTIFICATION_PAGE_MAX
            cursor: next_cursor of the previous page
        """
        if limit < 1 or limit > settings.NOTIFICATION_PAGE_MAX:
            raise NotificationValidationError(
                f"limit must be between 1 and {settings.NOTIFICATION_PAGE_MAX}"
            )

        start_after = decode_cursor(cursor) if cursor else None

        # One extra record tells whether another page exists
        records = await self.notification_repo.get_by_user(
            session.user_id,
            limit + 1,
            start_after=start_after,
        )
        has_more = len(records) > limit
        records = records[:limit]

        return NotificationPage(
            notifications=[NotificationResponse(**r) for r in records],
            next_cursor=encode_cursor(records[-1]) if has_more else None,
        )

    async def unread_count(self, session: Session) -> int:
        return await self.notification_repo.count_unread(session.user_id)

    # ============================================================
    # MAINTENANCE
    # ============================================================

    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Delete notifications whose expires_at has passed."""
        expired = await self.notification_repo.get_expired(now or self.clock())
        if not expired:
            return 0
        return await self.notification_repo.delete_many([n["id"] for n in expired])

    # ============================================================
    # HELPERS
    # ============================================================

    async def _get_owned(self, session: Session, notification_id: str) -> Dict[str, Any]:
        record = await self.notification_repo.get_by_id(notification_id)
        if record is None or record.get("user_id") != session.user_id:
            raise NotificationNotFoundError("Notification not found")
        return record

    async def _push(self, user_id: str, record: Dict[str, Any]) -> None:
        """Best-effort FCM push; failures are logged and never raised."""
        try:
            profile = await self.user_repo.get_by_id(user_id)
            token = (profile or {}).get("fcm_token")
            if token:
                await send_push_notification(
                    fcm_token=token,
                    title=record["title"],
                    body=record["message"],
                    data={"type": record["type"], "notification_id": record["id"]},
                )
        except Exception as e:
            logger.warning(f"Push delivery skipped for user {user_id}: {e}")


async def send_push_notification(
    fcm_token: str,
    title: str,
    body: str,
    data: Optional[dict] = None,
) -> bool:
    """Send a push notification to a single device."""
    message = messaging.Message(
        notification=messaging.Notification(title=title, body=body),
        data={k: str(v) for k, v in (data or {}).items()},
        token=fcm_token,
    )
    try:
        ensure_firebase_app()
        # messaging.send() does blocking HTTP
        await asyncio.to_thread(messaging.send, message)
        logger.info("Push sent to token %s...", fcm_token[:20])
        return True
    except messaging.UnregisteredError:
        logger.warning("FCM token expired/unregistered: %s...", fcm_token[:20])
        return False
    except Exception as e:
        logger.error("Failed to send push: %s", e)
        return False
