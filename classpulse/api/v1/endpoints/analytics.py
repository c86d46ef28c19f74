"""
Analytics Endpoints

HTTP API for batch performance analytics (instructors only).

Endpoints:
----------
- GET   /analytics/batch/{batch_id}           - Batch snapshot
- POST  /analytics/batch/{batch_id}/refresh   - Recompute in the worker
- GET   /analytics/trends/{batch_id}?days=N   - Daily submission counts
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from classpulse.api.deps import get_staff_session, get_store
from classpulse.core.config import settings
from classpulse.core.security import Session
from classpulse.db.redis import get_arq_pool
from classpulse.schemas.analytics import (
    BatchAnalyticsSnapshot,
    RefreshJobResponse,
    TrendResponse,
)
from classpulse.services.analytics_service import AnalyticsService, AnalyticsValidationError
from classpulse.services.trend_service import DEFAULT_TREND_DAYS, TrendService
from classpulse.store import RecordStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/analytics", tags=["Analytics"])


# ============================================================
# HELPER
# ============================================================

def get_analytics_service(store: RecordStore = Depends(get_store)) -> AnalyticsService:
    return AnalyticsService(store)


def get_trend_service(store: RecordStore = Depends(get_store)) -> TrendService:
    return TrendService(store)


def refresh_job_id(batch_id: str) -> str:
    """One queued refresh per batch; arq drops duplicates with the same id."""
    return f"analytics-refresh:{batch_id}"


# ============================================================
# ENDPOINTS
# ============================================================

@router.get(
    "/batch/{batch_id}",
    response_model=BatchAnalyticsSnapshot,
    summary="Get performance analytics for a batch",
    description="""
    Per-student quiz average, assignment submission rate and performance
    score, with the top and bottom four performers and batch averages.
    """,
)
async def get_batch_analytics(
    batch_id: str,
    session: Session = Depends(get_staff_session),
    service: AnalyticsService = Depends(get_analytics_service),
):
    try:
        return await service.compute_batch_analytics(batch_id)
    except AnalyticsValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))


@router.post(
    "/batch/{batch_id}/refresh",
    response_model=RefreshJobResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Recompute batch analytics in the background",
)
async def refresh_batch_analytics(
    batch_id: str,
    session: Session = Depends(get_staff_session),
):
    if not settings.ANALYTICS_CACHE_TTL_SECONDS:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Analytics cache is disabled; snapshots are always computed fresh"
        )

    try:
        pool = await get_arq_pool()
        job = await pool.enqueue_job(
            "refresh_batch_analytics",
            batch_id,
            _job_id=refresh_job_id(batch_id),
        )
    except Exception as e:
        logger.error(f"Failed to enqueue analytics refresh for batch {batch_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Task queue unavailable"
        )

    if job is None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Refresh already queued")

    logger.info(f"Queued analytics refresh for batch {batch_id} (job: {job.job_id}) by {session.user_id}")
    return RefreshJobResponse(job_id=job.job_id, batch_id=batch_id)


@router.get(
    "/trends/{batch_id}",
    response_model=TrendResponse,
    summary="Get daily submission trend for a batch",
)
async def get_submission_trend(
    batch_id: str,
    days: int = Query(DEFAULT_TREND_DAYS, ge=1, le=settings.TREND_MAX_DAYS),
    session: Session = Depends(get_staff_session),
    service: TrendService = Depends(get_trend_service),
):
    try:
        return await service.compute_trend(batch_id, days)
    except AnalyticsValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
