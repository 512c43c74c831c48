"""JobQueueEntry model: the durable, polled job queue."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column

from core.constants import JobStatus, JobType
from core.utils import utc_now
from db.base import BaseModel


class JobQueueEntry(BaseModel):
    """A unit of background work, delivered no earlier than ``scheduled_at``.

    Workers poll for ``pending`` rows that are due, flip them to
    ``processing`` (``FOR UPDATE SKIP LOCKED`` on PostgreSQL) and then
    complete, reschedule or fail them.

    Attributes:
        id: Unique identifier (UUID string)
        company_id: Tenant scope (for stats)
        execution_id: Copy of ``payload["execution_id"]`` for lookups
        type: Job type (see JobType)
        payload: Job arguments, e.g. ``{execution_id, workflow_id, step_index}``
        status: pending, processing, completed, failed
        scheduled_at: Earliest delivery time
        attempts: Deliveries so far
        max_attempts: Deliveries allowed before the job fails for good
        error: Last error message
        started_at / completed_at: Processing boundaries
    """

    __tablename__ = "job_queue"
    __table_args__ = (
        Index("job_queue_due_idx", "status", "scheduled_at"),
    )

    company_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    execution_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    type: Mapped[str] = mapped_column(default=JobType.WORKFLOW_STEP.value)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    status: Mapped[str] = mapped_column(default=JobStatus.PENDING.value)
    scheduled_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    attempts: Mapped[int] = mapped_column(default=0)
    max_attempts: Mapped[int] = mapped_column(default=3)
    error: Mapped[Optional[str]] = mapped_column(nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
