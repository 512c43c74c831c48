"""WorkflowExecutionLog model for the automation engine."""

from typing import Optional

from sqlalchemy import JSON, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import LogStatus
from db.base import BaseModel


class WorkflowExecutionLog(BaseModel):
    """Append-only audit entry for an execution.

    Rows are inserted by the execution store and never updated.

    Attributes:
        id: Unique identifier (UUID string)
        execution_id: Foreign key to WorkflowExecution
        position: 1-based insertion order within the execution
        step_id: Step the entry is about (None for execution-level events)
        step_type / step_name: Snapshot of the step at the time of logging
        status: started, completed, failed, skipped, waiting, resumed, ...
        message: Human-readable summary
        input_data / output_data: What the step was given and returned
        error: Error text for failed entries
        created_at: Log timestamp
    """

    __tablename__ = "workflow_execution_logs"

    execution_id: Mapped[str] = mapped_column(
        ForeignKey("workflow_executions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position: Mapped[int] = mapped_column(nullable=False, default=1)
    step_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    step_type: Mapped[Optional[str]] = mapped_column(nullable=True)
    step_name: Mapped[Optional[str]] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(default=LogStatus.INFO.value)
    message: Mapped[Optional[str]] = mapped_column(nullable=True)
    input_data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    output_data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(nullable=True)

    # Relationships
    execution: Mapped["WorkflowExecution"] = relationship(
        "WorkflowExecution", back_populates="logs", lazy="noload"
    )
