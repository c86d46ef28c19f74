"""
ARQ Worker Configuration

This module configures the ARQ background worker.

Running the Worker:
------------------
    # From project root directory
    arq classpulse.worker.WorkerSettings

    # With verbose logging
    arq classpulse.worker.WorkerSettings --verbose

Jobs:
----
- refresh_batch_analytics: enqueued by POST /analytics/batch/{id}/refresh
- purge_expired_records:   cron, daily at PURGE_CRON_HOUR (UTC)
"""

import logging
from typing import Any, Dict

from arq import cron, func

from classpulse.core.config import settings
from classpulse.db.redis import get_arq_redis_settings
from classpulse.store import get_record_store, reset_record_store
from classpulse.tasks import purge_expired_records, refresh_batch_analytics

# ============================================================
# Logging Configuration
# ============================================================

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


# ============================================================
# Startup and Shutdown Hooks
# ============================================================

async def startup(ctx: Dict[str, Any]) -> None:
    """Connect the record store once so the first job doesn't pay for it."""
    logger.info("ARQ Worker starting up...")

    store = get_record_store()
    if await store.ping():
        logger.info(f"Record store ({settings.RECORD_STORE_BACKEND}) reachable")
    else:
        logger.warning(f"Record store ({settings.RECORD_STORE_BACKEND}) not reachable, jobs will retry")

    logger.info("ARQ Worker ready to process jobs")


async def shutdown(ctx: Dict[str, Any]) -> None:
    logger.info("ARQ Worker shutting down...")
    await get_record_store().close()
    reset_record_store()
    logger.info("ARQ Worker shutdown complete")


# ============================================================
# Worker Configuration Class
# ============================================================

class WorkerSettings:
    """
    ARQ Worker settings.

    This class is discovered by ARQ when you run:
        arq classpulse.worker.WorkerSettings
    """

    functions = [
        # No stored result: a finished refresh must not block the next one
        func(refresh_batch_analytics, keep_result=0),
    ]

    cron_jobs = [
        cron(purge_expired_records, hour={settings.PURGE_CRON_HOUR}, minute={0}, run_at_startup=False),
    ]

    redis_settings = get_arq_redis_settings()

    on_startup = startup
    on_shutdown = shutdown

    # ========================================
    # Job Settings
    # ========================================
    job_timeout = 300      # 5 minutes (large batches)
    keep_result = 3600     # 1 hour
    max_tries = 3          # Retry failed jobs up to 3 times

    # ========================================
    # Concurrency Settings
    # ========================================
    max_jobs = 5
    poll_delay = 0.5

    queue_name = "arq:queue"
    health_check_interval = 10
