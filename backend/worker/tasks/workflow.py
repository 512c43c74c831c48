"""Celery tasks for workflow execution.

The job queue lives in the database; these tasks only drive it. Beat
calls ``process_workflow_jobs`` every few seconds, and the API hands
incoming business events to ``ingest_event`` when it runs without an
in-process background task.
"""

import asyncio
import logging

from worker.celery_app import celery_app

logger = logging.getLogger(__name__)


def run_with_engine(coro_factory):
    """Run ``coro_factory(engine)`` on a fresh loop with a loop-local engine."""
    from db.worker_session import worker_session_factory
    from workflow.engine import build_automation_engine

    async def _main():
        async with worker_session_factory() as session_factory:
            engine = build_automation_engine(session_factory)
            try:
                return await coro_factory(engine)
            finally:
                await engine.aclose()

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(_main())
    finally:
        loop.close()


@celery_app.task(
    name="worker.tasks.workflow.process_workflow_jobs",
    queue="workflows",
)
def process_workflow_jobs():
    """Drain one batch of due step jobs."""

    async def _process(engine):
        summary = await engine.run_due_jobs()
        return summary.to_dict()

    result = run_with_engine(_process)
    if result["fetched"]:
        logger.info("Processed workflow jobs: %s", result)
    return result


@celery_app.task(
    name="worker.tasks.workflow.ingest_event",
    bind=True,
    max_retries=3,
    default_retry_delay=30,
    queue="workflows",
)
def ingest_event(self, event: dict):
    """Match a business event against active workflows.

    Args:
        event: ``{company_id, trigger_type, entity_type, entity_id, payload}``
    """

    async def _ingest(engine):
        return await engine.trigger(event)

    try:
        execution_ids = run_with_engine(_ingest)
    except Exception as exc:
        logger.error(
            "Event ingestion failed for %s/%s: %s",
            event.get("company_id"), event.get("trigger_type"), exc,
            exc_info=True,
        )
        raise self.retry(exc=exc)

    logger.info("Event %s started %d execution(s)", event.get("trigger_type"), len(execution_ids))
    return {"execution_ids": execution_ids}


@celery_app.task(
    name="worker.tasks.workflow.recover_stalled_executions",
    queue="workflows",
)
def recover_stalled_executions():
    """Release stuck jobs and re-enqueue executions that lost theirs."""

    async def _recover(engine):
        return await engine.recover_stalled()

    return run_with_engine(_recover)
