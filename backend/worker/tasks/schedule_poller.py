"""Celery task that fires scheduled workflows.

Runs every minute via Celery Beat. Each active ``scheduled`` workflow
whose cron expression matches the current minute (in the workflow's
timezone) gets one execution; repeated ticks within the same minute
are ignored.
"""

import logging

from worker.celery_app import celery_app
from worker.tasks.workflow import run_with_engine

logger = logging.getLogger(__name__)


@celery_app.task(
    name="worker.tasks.schedule_poller.poll_scheduled_workflows",
    bind=True,
    max_retries=2,
    default_retry_delay=15,
    queue="triggers",
)
def poll_scheduled_workflows(self):
    """Start every scheduled workflow due this minute."""

    async def _poll(engine):
        return await engine.evaluate_schedules()

    try:
        execution_ids = run_with_engine(_poll)
    except Exception as exc:
        logger.error(f"[schedule-poller] Polling failed: {exc}", exc_info=True)
        raise self.retry(exc=exc)

    if execution_ids:
        logger.info(f"[schedule-poller] Started {len(execution_ids)} scheduled execution(s)")
    return {"started": len(execution_ids), "execution_ids": execution_ids}
