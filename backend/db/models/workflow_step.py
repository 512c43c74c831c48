"""WorkflowStep model for the automation engine."""

from typing import Optional

from sqlalchemy import JSON, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import WaitUnit
from db.base import BaseModel


class WorkflowStep(BaseModel):
    """WorkflowStep model representing one node of a workflow's step graph.

    Attributes:
        id: Unique identifier (UUID string)
        workflow_id: Foreign key to Workflow
        step_order: Dense position defining the default linear sequence
        step_type: Type of step (see StepType)
        name: Display name
        config: Action configuration, shape depends on step_type
        wait_duration / wait_unit: Wait steps only
        condition_*: Condition steps only
        on_true_step_id / on_false_step_id: Branch targets of a condition step
        is_active: Disabled steps are passed through at runtime
    """

    __tablename__ = "workflow_steps"
    __table_args__ = (
        Index("workflow_steps_order_idx", "workflow_id", "step_order"),
    )

    workflow_id: Mapped[str] = mapped_column(
        ForeignKey("workflows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    step_order: Mapped[int] = mapped_column(nullable=False, default=0)
    step_type: Mapped[str] = mapped_column(nullable=False)
    name: Mapped[Optional[str]] = mapped_column(nullable=True)
    config: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    wait_duration: Mapped[Optional[int]] = mapped_column(nullable=True)
    wait_unit: Mapped[Optional[str]] = mapped_column(
        nullable=True, default=WaitUnit.MINUTES.value
    )

    condition_type: Mapped[Optional[str]] = mapped_column(nullable=True)
    condition_field: Mapped[Optional[str]] = mapped_column(nullable=True)
    condition_operator: Mapped[Optional[str]] = mapped_column(nullable=True)
    condition_value: Mapped[Optional[str]] = mapped_column(nullable=True)
    on_true_step_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("workflow_steps.id", ondelete="SET NULL"),
        nullable=True,
    )
    on_false_step_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("workflow_steps.id", ondelete="SET NULL"),
        nullable=True,
    )

    is_active: Mapped[bool] = mapped_column(default=True)

    # Relationships
    workflow: Mapped["Workflow"] = relationship(
        "Workflow", back_populates="steps", lazy="noload"
    )
