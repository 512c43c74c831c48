"""Durable job queue backed by the ``job_queue`` table.

Jobs are polled, not pushed: a worker fetches due ``pending`` rows,
marks them ``processing`` and later completes, reschedules or fails
them. On PostgreSQL the fetch uses ``FOR UPDATE SKIP LOCKED`` so
concurrent workers never pick up the same row.
"""

from datetime import datetime, timedelta
from typing import Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.constants import JobStatus, JobType
from db.models.job import JobQueueEntry
from services.base import BaseService

OPEN_STATUSES = (JobStatus.PENDING.value, JobStatus.PROCESSING.value)
FINISHED_STATUSES = (JobStatus.COMPLETED.value, JobStatus.FAILED.value)


class JobService(BaseService[JobQueueEntry]):
    """Service for enqueueing and draining queued jobs."""

    def __init__(self, db: AsyncSession):
        super().__init__(JobQueueEntry, db)

    async def enqueue(
        self,
        payload: dict,
        run_at: datetime,
        company_id: Optional[str] = None,
        job_type: str = JobType.WORKFLOW_STEP.value,
        max_attempts: int = 3,
    ) -> JobQueueEntry:
        """Add a job that becomes due at ``run_at``."""
        return await self.create({
            "type": job_type,
            "company_id": company_id,
            "execution_id": payload.get("execution_id"),
            "payload": dict(payload),
            "status": JobStatus.PENDING.value,
            "scheduled_at": run_at,
            "attempts": 0,
            "max_attempts": max_attempts,
        })

    async def fetch_due(self, now: datetime, limit: int = 10) -> list[JobQueueEntry]:
        """Lock and take up to ``limit`` due jobs, oldest first.

        Taken jobs are ``processing`` with ``attempts`` incremented.
        """
        result = await self.db.execute(
            select(JobQueueEntry)
            .where(
                JobQueueEntry.status == JobStatus.PENDING.value,
                JobQueueEntry.scheduled_at <= now,
            )
            .order_by(JobQueueEntry.scheduled_at)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        jobs = list(result.scalars().all())
        for job in jobs:
            job.status = JobStatus.PROCESSING.value
            job.attempts += 1
            job.started_at = now
        await self.db.flush()
        return jobs

    async def complete(self, job_id: str, now: datetime) -> None:
        job = await self.get_by_id(job_id)
        if job:
            job.status = JobStatus.COMPLETED.value
            job.completed_at = now
            await self.db.flush()

    async def reschedule(
        self,
        job_id: str,
        run_at: datetime,
        error: Optional[str] = None,
        payload: Optional[dict] = None,
        refund_attempt: bool = False,
    ) -> None:
        """Put a job back on the queue for ``run_at``.

        ``refund_attempt`` undoes the attempt counted by fetch_due, for
        deliveries that were merely early rather than failed.
        """
        job = await self.get_by_id(job_id)
        if not job:
            return
        job.status = JobStatus.PENDING.value
        job.scheduled_at = run_at
        job.started_at = None
        if error is not None:
            job.error = error
        if payload is not None:
            job.payload = dict(payload)
        if refund_attempt and job.attempts > 0:
            job.attempts -= 1
        await self.db.flush()

    async def fail(self, job_id: str, error: str, now: datetime) -> None:
        job = await self.get_by_id(job_id)
        if job:
            job.status = JobStatus.FAILED.value
            job.error = error
            job.completed_at = now
            await self.db.flush()

    async def has_open_job(self, execution_id: str) -> bool:
        """Whether a pending or processing job exists for the execution."""
        result = await self.db.execute(
            select(func.count())
            .select_from(JobQueueEntry)
            .where(
                JobQueueEntry.execution_id == execution_id,
                JobQueueEntry.status.in_(OPEN_STATUSES),
            )
        )
        return (result.scalar() or 0) > 0

    async def retarget_pending(self, execution_id: str, step_index: int) -> int:
        """Point the execution's pending jobs at ``step_index``."""
        result = await self.db.execute(
            select(JobQueueEntry).where(
                JobQueueEntry.execution_id == execution_id,
                JobQueueEntry.status == JobStatus.PENDING.value,
            )
        )
        jobs = result.scalars().all()
        for job in jobs:
            job.payload = {**job.payload, "step_index": step_index}
        await self.db.flush()
        return len(jobs)

    async def release_stuck(self, started_before: datetime) -> int:
        """Return ``processing`` jobs whose worker died to ``pending``."""
        result = await self.db.execute(
            select(JobQueueEntry).where(
                JobQueueEntry.status == JobStatus.PROCESSING.value,
                JobQueueEntry.started_at < started_before,
            )
        )
        jobs = result.scalars().all()
        for job in jobs:
            job.status = JobStatus.PENDING.value
            job.started_at = None
        await self.db.flush()
        return len(jobs)

    async def cleanup_old_jobs(self, now: datetime, days: int = 7) -> int:
        """Delete finished jobs older than ``days``."""
        result = await self.db.execute(
            delete(JobQueueEntry)
            .where(
                JobQueueEntry.status.in_(FINISHED_STATUSES),
                JobQueueEntry.completed_at < now - timedelta(days=days),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def get_job_stats(self, company_id: Optional[str] = None) -> dict:
        """Count queue rows by status."""
        query = select(JobQueueEntry.status, func.count()).group_by(JobQueueEntry.status)
        if company_id:
            query = query.where(JobQueueEntry.company_id == company_id)
        result = await self.db.execute(query)
        stats = {status.value: 0 for status in JobStatus}
        for status, count in result.all():
            stats[status] = count
        stats["total"] = sum(stats.values())
        return stats

    async def list_for_execution(self, execution_id: str) -> Sequence[JobQueueEntry]:
        result = await self.db.execute(
            select(JobQueueEntry)
            .where(JobQueueEntry.execution_id == execution_id)
            .order_by(JobQueueEntry.created_at)
        )
        return result.scalars().all()
