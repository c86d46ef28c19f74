"""
Analytics & Maintenance Tasks

Background jobs run by the ARQ worker.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict

from classpulse.services.analytics_service import AnalyticsService, AnalyticsValidationError
from classpulse.services.realtime_service import RealtimeUpdateService
from classpulse.store import get_record_store

logger = logging.getLogger(__name__)


# ============================================================
# ANALYTICS REFRESH
# ============================================================

async def refresh_batch_analytics(ctx: Dict[str, Any], batch_id: str) -> Dict[str, Any]:
    """
    Recompute a batch snapshot and refresh the analytics cache.

    Store errors propagate so ARQ can retry the job.
    """
    job_id = ctx.get("job_id", "unknown")
    job_try = ctx.get("job_try", 1)
    logger.info(f"Refreshing analytics for batch {batch_id} (job: {job_id}, attempt: {job_try})")

    try:
        snapshot = await AnalyticsService(get_record_store()).refresh(batch_id)
    except AnalyticsValidationError as e:
        logger.error(f"Analytics refresh rejected for batch {batch_id!r}: {e}")
        return {"success": False, "error": str(e)}

    return {
        "success": True,
        "batch_id": batch_id,
        "total_students": snapshot.total_students,
        "generated_at": snapshot.generated_at.isoformat(),
    }


# ============================================================
# DAILY PURGE (cron)
# ============================================================

async def purge_expired_records(ctx: Dict[str, Any]) -> Dict[str, Any]:
    """Delete realtime updates past retention and expired notifications."""
    service = RealtimeUpdateService(get_record_store())
    result = await service.purge_expired(datetime.now(timezone.utc))
    return {"success": True, **result.model_dump()}
