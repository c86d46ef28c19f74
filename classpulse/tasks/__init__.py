"""
Background Tasks Module

This module contains all background task definitions for ARQ workers.

Task Organization:
-----------------
- analytics_tasks.py: batch analytics refresh, daily purge of expired records

How Tasks Work:
--------------
1. FastAPI app enqueues a job: await pool.enqueue_job('refresh_batch_analytics', batch_id)
2. Redis stores the job in a queue
3. ARQ worker polls Redis and picks up the job
4. Worker executes the task function
5. Result (or error) is stored back in Redis

Task functions receive a special `ctx` parameter:
- ctx['redis']: Redis connection for the worker
- ctx['job_id']: Unique ID of this job
- ctx['job_try']: Which retry attempt this is (1, 2, 3...)
"""

from classpulse.tasks.analytics_tasks import purge_expired_records, refresh_batch_analytics

# These names are used when enqueueing: enqueue_job('refresh_batch_analytics', ...)
__all__ = [
    "refresh_batch_analytics",
    "purge_expired_records",
]
