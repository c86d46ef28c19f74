"""
Notification Endpoints

Endpoints:
----------
- GET    /notifications                  - List user notifications (cursor paged)
- GET    /notifications/unread-count     - Get unread count
- POST   /notifications                  - Create a notification (instructors)
- PUT    /notifications/{id}/read        - Mark one as read
- PUT    /notifications/read-all         - Mark all as read
- DELETE /notifications/{id}             - Delete one
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from classpulse.api.deps import get_current_session, get_staff_session, get_store
from classpulse.core.config import settings
from classpulse.core.security import Session
from classpulse.schemas.notification import (
    MarkAllReadResponse,
    NotificationCreate,
    NotificationPage,
    NotificationResponse,
    UnreadCountResponse,
)
from classpulse.services.notification_service import (
    NotificationNotFoundError,
    NotificationService,
    NotificationValidationError,
)
from classpulse.store import RecordStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["Notifications"])


def get_notification_service(store: RecordStore = Depends(get_store)) -> NotificationService:
    return NotificationService(store)


@router.get(
    "",
    response_model=NotificationPage,
    summary="List notifications for the current user",
    description="""
    Newest first. Pass `next_cursor` from the previous page as `cursor`
    to continue; it is null on the last page.
    """,
)
async def list_notifications(
    limit: int = Query(20, ge=1, le=settings.NOTIFICATION_PAGE_MAX),
    cursor: Optional[str] = Query(None),
    session: Session = Depends(get_current_session),
    service: NotificationService = Depends(get_notification_service),
):
    try:
        return await service.list(session, limit=limit, cursor=cursor)
    except NotificationValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))


@router.get(
    "/unread-count",
    response_model=UnreadCountResponse,
    summary="Get count of unread notifications",
)
async def unread_count(
    session: Session = Depends(get_current_session),
    service: NotificationService = Depends(get_notification_service),
):
    return UnreadCountResponse(unread_count=await service.unread_count(session))


@router.post(
    "",
    response_model=NotificationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Send a notification to a user",
)
async def create_notification(
    data: NotificationCreate,
    session: Session = Depends(get_staff_session),
    service: NotificationService = Depends(get_notification_service),
):
    try:
        notification = await service.create(
            user_id=data.user_id,
            notification_type=data.type,
            title=data.title,
            message=data.message,
            data=data.data,
        )
    except NotificationValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    logger.info(f"User {session.user_id} sent notification {notification.id} to {data.user_id}")
    return notification


@router.put(
    "/read-all",
    response_model=MarkAllReadResponse,
    summary="Mark all notifications as read",
)
async def mark_all_read(
    session: Session = Depends(get_current_session),
    service: NotificationService = Depends(get_notification_service),
):
    updated = await service.mark_all_read(session)
    return MarkAllReadResponse(message="All notifications marked as read.", updated=updated)


@router.put(
    "/{notification_id}/read",
    response_model=NotificationResponse,
    summary="Mark a notification as read",
)
async def mark_read(
    notification_id: str,
    session: Session = Depends(get_current_session),
    service: NotificationService = Depends(get_notification_service),
):
    try:
        return await service.mark_read(session, notification_id)
    except NotificationNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")


@router.delete(
    "/{notification_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a notification",
)
async def delete_notification(
    notification_id: str,
    session: Session = Depends(get_current_session),
    service: NotificationService = Depends(get_notification_service),
):
    try:
        await service.delete(session, notification_id)
    except NotificationNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
