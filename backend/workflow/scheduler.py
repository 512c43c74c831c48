"""Execution scheduler and job runner.

The scheduler turns "run step N of execution E at time T" into a row
on the durable job queue. The runner drains due rows, hands each to
the step interpreter and settles the row: completed, deferred, retried
with backoff, or failed (which also fails the execution).
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

import structlog

from core.constants import JobType
from core.exceptions import StepActionError
from services.job_service import JobService
from workflow.retry_strategies import RetryStrategy

logger = structlog.get_logger(__name__)


class ExecutionScheduler:
    """Enqueues step jobs inside the caller's transaction."""

    def __init__(self, settings):
        self.settings = settings

    async def enqueue_step(
        self,
        session,
        execution,
        step_index: int,
        run_at: datetime,
    ):
        """Queue ``{execution_id, workflow_id, step_index}`` for ``run_at``."""
        payload = {
            "execution_id": execution.id,
            "workflow_id": execution.workflow_id,
            "step_index": step_index,
        }
        job = await JobService(session).enqueue(
            payload,
            run_at=run_at,
            company_id=execution.company_id,
            job_type=JobType.WORKFLOW_STEP.value,
            max_attempts=self.settings.JOB_MAX_ATTEMPTS,
        )
        logger.debug(
            "Step job enqueued",
            job_id=job.id,
            execution_id=execution.id,
            step_index=step_index,
            run_at=run_at.isoformat(),
        )
        return job


@dataclass
class RunSummary:
    """What one poll of the queue did."""

    fetched: int = 0
    outcomes: dict[str, int] = field(default_factory=dict)
    retried: int = 0
    failed: int = 0

    def count(self, outcome: str) -> None:
        self.outcomes[outcome] = self.outcomes.get(outcome, 0) + 1

    def to_dict(self) -> dict:
        return {
            "fetched": self.fetched,
            "outcomes": dict(self.outcomes),
            "retried": self.retried,
            "failed": self.failed,
        }


class JobRunner:
    """Polls the job queue and dispatches due jobs to the interpreter."""

    def __init__(self, session_factory, interpreter, settings, clock):
        self.session_factory = session_factory
        self.interpreter = interpreter
        self.settings = settings
        self.clock = clock

    def _strategy(self, max_attempts: int) -> RetryStrategy:
        return RetryStrategy.from_settings(self.settings, max_attempts=max_attempts)

    async def run_due(self, now: Optional[datetime] = None) -> RunSummary:
        """Process one batch of due jobs."""
        now = now or self.clock.now()
        async with self.session_factory() as session:
            async with session.begin():
                jobs = await JobService(session).fetch_due(now, limit=self.settings.JOB_BATCH_SIZE)

        summary = RunSummary(fetched=len(jobs))
        for job in jobs:
            await self.process(job, summary)
        if jobs:
            logger.info("Job batch processed", **summary.to_dict())
        return summary

    async def process(self, job, summary: Optional[RunSummary] = None) -> None:
        """Run one fetched job and settle its queue row."""
        summary = summary or RunSummary()
        log = logger.bind(job_id=job.id, attempt=job.attempts, **job.payload)

        try:
            outcome = await self.interpreter.run_job(job.payload)
        except StepActionError as e:
            await self._handle_failure(
                job,
                error=e.message,
                payload={**job.payload, "step_index": e.step_index},
                summary=summary,
            )
            return
        except Exception as e:
            log.exception("Job crashed")
            await self._handle_failure(job, error=f"{type(e).__name__}: {e}", payload=None, summary=summary)
            return

        summary.count(outcome.status)
        async with self.session_factory() as session:
            async with session.begin():
                jobs = JobService(session)
                if outcome.run_at is not None:
                    # Delivered early: put back without using up an attempt
                    await jobs.reschedule(job.id, outcome.run_at, refund_attempt=True)
                    log.debug("Job deferred", run_at=outcome.run_at.isoformat())
                else:
                    await jobs.complete(job.id, self.clock.now())
                    log.debug("Job completed", outcome=outcome.status)

    async def _handle_failure(self, job, error: str, payload: Optional[dict], summary: RunSummary) -> None:
        now = self.clock.now()
        strategy = self._strategy(job.max_attempts)
        execution_id = job.payload.get("execution_id")

        if strategy.should_retry(job.attempts):
            run_at = strategy.next_run_at(now, job.attempts)
            async with self.session_factory() as session:
                async with session.begin():
                    await JobService(session).reschedule(job.id, run_at, error=error, payload=payload)
            summary.retried += 1
            logger.warning(
                "Job failed, retry scheduled",
                job_id=job.id,
                execution_id=execution_id,
                attempt=job.attempts,
                max_attempts=job.max_attempts,
                run_at=run_at.isoformat(),
                error=error,
            )
            return

        async with self.session_factory() as session:
            async with session.begin():
                await JobService(session).fail(job.id, error, now)
        summary.failed += 1
        logger.error(
            "Job failed permanently",
            job_id=job.id,
            execution_id=execution_id,
            attempts=job.attempts,
            error=error,
        )
        if execution_id:
            await self.interpreter.fail_execution(
                execution_id,
                f"Failed after {job.attempts} attempts: {error}",
                step_index=(payload or job.payload).get("step_index"),
            )
