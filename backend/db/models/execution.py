"""WorkflowExecution model for the automation engine."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import ExecutionStatus, TriggerType
from core.utils import utc_now
from db.base import BaseModel


class WorkflowExecution(BaseModel):
    """One run of a Workflow against one entity.

    ``current_step_index`` holds the ``step_order`` of the step the
    execution will run next and doubles as the optimistic concurrency
    token: every state change is a compare-and-swap on it.

    Attributes:
        id: Unique identifier (UUID string)
        workflow_id: Foreign key to Workflow
        company_id: Tenant scope
        trigger_type: What started the run (``manual`` for manual runs)
        trigger_data: Snapshot of the triggering payload
        entity_type / entity_id: Record the workflow operates on
        status: running, waiting, completed, failed, cancelled
        current_step_index: Position of the next step to run
        current_step_id: Step id at that position; re-anchors the index when steps are renumbered
        next_resume_at: When a waiting execution becomes due
        claim_expires_at: Lease held by the job currently running a step
        execution_data: Outputs accumulated from action steps
        error: Last failure message
        started_at / completed_at: Run boundaries
    """

    __tablename__ = "workflow_executions"
    __table_args__ = (
        Index("workflow_executions_entity_idx", "entity_type", "entity_id"),
    )

    workflow_id: Mapped[str] = mapped_column(
        ForeignKey("workflows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    company_id: Mapped[str] = mapped_column(nullable=False, index=True)
    trigger_type: Mapped[str] = mapped_column(
        default=TriggerType.MANUAL.value, nullable=False
    )
    trigger_data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    entity_type: Mapped[Optional[str]] = mapped_column(nullable=True)
    entity_id: Mapped[Optional[str]] = mapped_column(nullable=True)

    status: Mapped[str] = mapped_column(
        default=ExecutionStatus.RUNNING.value, index=True
    )
    current_step_index: Mapped[int] = mapped_column(default=0)
    current_step_id: Mapped[Optional[str]] = mapped_column(nullable=True)
    next_resume_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True, index=True
    )
    claim_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    execution_data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(nullable=True)

    started_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Relationships
    workflow: Mapped["Workflow"] = relationship(
        "Workflow", back_populates="executions", lazy="noload"
    )
    logs: Mapped[list["WorkflowExecutionLog"]] = relationship(
        "WorkflowExecutionLog",
        back_populates="execution",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="noload",
    )
