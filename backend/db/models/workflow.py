"""Workflow model for the automation engine."""

from typing import Optional

from sqlalchemy import JSON, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import TriggerType
from db.base import BaseModel


class Workflow(BaseModel):
    """Workflow model representing a named automation definition.

    Attributes:
        id: Unique identifier (UUID string)
        company_id: Tenant that owns the workflow
        name: Workflow name
        description: Workflow description
        trigger_type: What starts an execution (see TriggerType)
        trigger_config: Trigger-specific match rules (e.g. target stage)
        cron_expression: Cron schedule, only for ``scheduled`` workflows
        timezone: IANA timezone the cron expression is evaluated in
        is_active: Inactive workflows are never triggered
        is_template: Whether this row is a pre-built template
        extra_metadata: Free-form authoring metadata (``metadata`` column)
        created_by: User ID of the author
        created_at: Creation timestamp
        updated_at: Last update timestamp
    """

    __tablename__ = "workflows"
    __table_args__ = (
        Index("workflows_company_trigger_idx", "company_id", "trigger_type", "is_active"),
    )

    company_id: Mapped[str] = mapped_column(nullable=False, index=True)
    name: Mapped[str] = mapped_column(nullable=False)
    description: Mapped[Optional[str]] = mapped_column(nullable=True)
    trigger_type: Mapped[str] = mapped_column(
        default=TriggerType.MANUAL.value, nullable=False
    )
    trigger_config: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    cron_expression: Mapped[Optional[str]] = mapped_column(nullable=True)
    timezone: Mapped[str] = mapped_column(default="UTC")
    is_active: Mapped[bool] = mapped_column(default=True, index=True)
    is_template: Mapped[bool] = mapped_column(default=False)
    extra_metadata: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(nullable=True)

    # Relationships
    steps: Mapped[list["WorkflowStep"]] = relationship(
        "WorkflowStep",
        back_populates="workflow",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="WorkflowStep.step_order",
        lazy="noload",
    )
    executions: Mapped[list["WorkflowExecution"]] = relationship(
        "WorkflowExecution",
        back_populates="workflow",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="noload",
    )
