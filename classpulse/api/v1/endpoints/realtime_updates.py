"""
Realtime Update Endpoints

Endpoints:
----------
- GET   /realtime-updates   - Newest feed entries of the current user
- POST  /realtime-updates   - Publish a system event to a user (instructors)
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from classpulse.api.deps import get_current_session, get_staff_session, get_store
from classpulse.core.config import settings
from classpulse.core.security import Session
from classpulse.schemas.realtime import (
    RealtimeUpdateCreate,
    RealtimeUpdateListResponse,
    RealtimeUpdateResponse,
)
from classpulse.services.notification_service import NotificationValidationError
from classpulse.services.realtime_service import RealtimeUpdateError, RealtimeUpdateService
from classpulse.store import RecordStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/realtime-updates", tags=["Realtime Updates"])


def get_realtime_service(store: RecordStore = Depends(get_store)) -> RealtimeUpdateService:
    return RealtimeUpdateService(store)


@router.get(
    "",
    response_model=RealtimeUpdateListResponse,
    summary="List recent realtime updates",
)
async def list_updates(
    limit: int = Query(20, ge=1, le=settings.LIVE_SUBSCRIPTION_MAX_LIMIT),
    session: Session = Depends(get_current_session),
    service: RealtimeUpdateService = Depends(get_realtime_service),
):
    try:
        updates = await service.list_recent(session, limit=limit)
    except RealtimeUpdateError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    return RealtimeUpdateListResponse(updates=updates)


@router.post(
    "",
    response_model=RealtimeUpdateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Publish a realtime update",
    description="""
    Appends an event to the user's feed. Assignment, grading and enrollment
    events also create an inbox notification.
    """,
)
async def publish_update(
    data: RealtimeUpdateCreate,
    session: Session = Depends(get_staff_session),
    service: RealtimeUpdateService = Depends(get_realtime_service),
):
    try:
        return await service.publish(
            user_id=data.user_id,
            update_type=data.type,
            payload=data.payload,
            metadata={"published_by": session.user_id, **data.metadata},
        )
    except (RealtimeUpdateError, NotificationValidationError) as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
