"""
Activity Endpoints

Endpoints:
----------
- POST  /activity   - Record a user action (best effort, always 202)
"""

from fastapi import APIRouter, Depends, Request, status

from classpulse.api.deps import get_current_session, get_store
from classpulse.core.security import Session
from classpulse.schemas.activity import ActivityAccepted, ActivityCreate
from classpulse.services.activity_tracker import ActivityTracker
from classpulse.store import RecordStore

router = APIRouter(prefix="/activity", tags=["Activity"])


def get_activity_tracker(store: RecordStore = Depends(get_store)) -> ActivityTracker:
    return ActivityTracker(store)


@router.post(
    "",
    response_model=ActivityAccepted,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Track a user action",
)
async def track_activity(
    data: ActivityCreate,
    request: Request,
    session: Session = Depends(get_current_session),
    tracker: ActivityTracker = Depends(get_activity_tracker),
):
    metadata = {
        **data.metadata,
        "ip": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }
    # Dropped writes are logged by the tracker; the client is never told
    await tracker.track(session.user_id, data.activity, metadata)
    return ActivityAccepted()
