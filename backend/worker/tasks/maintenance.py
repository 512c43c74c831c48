"""Celery tasks for maintenance and cleanup.

Runs daily at 3 AM (configured in beat_schedule) and purges settled
rows from the job queue.
"""

import logging

from worker.celery_app import celery_app
from worker.tasks.workflow import run_with_engine

logger = logging.getLogger(__name__)


@celery_app.task(
    name="worker.tasks.maintenance.cleanup_old_jobs",
    queue="default",
)
def cleanup_old_jobs(days: int = None):
    """Delete completed and failed jobs older than the retention period."""
    logger.info("Running daily job cleanup")

    async def _cleanup(engine):
        return await engine.cleanup_old_jobs(days)

    try:
        deleted = run_with_engine(_cleanup)
    except Exception as exc:
        logger.error("Daily job cleanup failed: %s", exc, exc_info=True)
        return {"status": "error", "error": str(exc)}

    logger.info("Daily job cleanup completed: %d job(s) deleted", deleted)
    return {"status": "ok", "jobs_deleted": deleted}
