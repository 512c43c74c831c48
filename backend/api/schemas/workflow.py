"""Workflow, step and template schemas.

Step bodies are validated loosely here and strictly by the step
service, which knows the per-type rules.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class WorkflowStepCreate(BaseModel):
    """Request to add a step to a workflow."""

    step_type: str = Field(min_length=1, description="send_email, wait, condition, ...")
    name: Optional[str] = Field(default=None, description="Display name")
    config: Optional[Dict[str, Any]] = Field(default=None, description="Action configuration")
    wait_duration: Optional[int] = Field(default=None, description="Wait steps: how long")
    wait_unit: Optional[str] = Field(default=None, description="Wait steps: minutes, hours or days")
    condition_type: Optional[str] = Field(default=None, description="Condition shorthand")
    condition_field: Optional[str] = Field(default=None, description="Dotted field path")
    condition_operator: Optional[str] = Field(default=None, description="Comparison operator")
    condition_value: Optional[str] = Field(default=None, description="Value compared against")
    on_true_step_id: Optional[str] = Field(default=None, description="Branch taken when true")
    on_false_step_id: Optional[str] = Field(default=None, description="Branch taken when false")
    is_active: Optional[bool] = Field(default=None, description="Disabled steps are passed through")
    insert_after_step_id: Optional[str] = Field(
        default=None, description="Insert after this step instead of appending"
    )

    def to_definition(self) -> dict:
        return self.model_dump(exclude_none=True, exclude={"insert_after_step_id"})


class WorkflowStepUpdate(BaseModel):
    """Partial step update; unset fields keep their stored value."""

    step_type: Optional[str] = None
    name: Optional[str] = None
    config: Optional[Dict[str, Any]] = None
    wait_duration: Optional[int] = None
    wait_unit: Optional[str] = None
    condition_type: Optional[str] = None
    condition_field: Optional[str] = None
    condition_operator: Optional[str] = None
    condition_value: Optional[str] = None
    on_true_step_id: Optional[str] = None
    on_false_step_id: Optional[str] = None
    is_active: Optional[bool] = None


class WorkflowStepResponse(BaseModel):
    """Workflow step information response."""

    id: str
    workflow_id: str
    step_order: int
    step_type: str
    name: Optional[str] = None
    config: Optional[Dict[str, Any]] = None
    wait_duration: Optional[int] = None
    wait_unit: Optional[str] = None
    condition_type: Optional[str] = None
    condition_field: Optional[str] = None
    condition_operator: Optional[str] = None
    condition_value: Optional[str] = None
    on_true_step_id: Optional[str] = None
    on_false_step_id: Optional[str] = None
    is_active: bool = True

    class Config:
        from_attributes = True


class StepReorderRequest(BaseModel):
    """Every step id of the workflow, in the new order."""

    step_ids: List[str] = Field(description="Step ids in their new order")


class WorkflowCreate(BaseModel):
    """Request to create a workflow."""

    name: str = Field(min_length=1, description="Workflow name")
    description: Optional[str] = Field(default=None, description="Workflow description")
    trigger_type: str = Field(default="manual", description="What starts the workflow")
    trigger_config: Dict[str, Any] = Field(default={}, description="Payload values an event must carry")
    cron_expression: Optional[str] = Field(default=None, description="Scheduled workflows only")
    timezone: str = Field(default="UTC", description="IANA timezone for the cron expression")
    is_active: bool = Field(default=True, description="Only active workflows are triggered")
    metadata: Dict[str, Any] = Field(default={}, description="Free-form metadata")
    steps: List[WorkflowStepCreate] = Field(default=[], description="Steps, in order")


class WorkflowUpdate(BaseModel):
    """Request to update workflow fields (steps have their own endpoints)."""

    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    trigger_type: Optional[str] = None
    trigger_config: Optional[Dict[str, Any]] = None
    cron_expression: Optional[str] = None
    timezone: Optional[str] = None
    is_active: Optional[bool] = None
    metadata: Optional[Dict[str, Any]] = None

    def to_changes(self) -> dict:
        changes = self.model_dump(exclude_unset=True)
        if "metadata" in changes:
            changes["extra_metadata"] = changes.pop("metadata")
        return changes


class WorkflowResponse(BaseModel):
    """Workflow information response."""

    id: str = Field(description="Workflow ID")
    company_id: str
    name: str
    description: Optional[str] = None
    trigger_type: str
    trigger_config: Dict[str, Any] = {}
    cron_expression: Optional[str] = None
    timezone: str = "UTC"
    is_active: bool
    metadata: Dict[str, Any] = {}
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    steps: List[WorkflowStepResponse] = []


class WorkflowListResponse(BaseModel):
    """Paginated list of workflows (without steps)."""

    workflows: List[WorkflowResponse] = Field(description="List of workflows")
    total: int = Field(description="Total number of workflows")
    page: int = Field(description="Current page number")
    per_page: int = Field(description="Items per page")


class TemplateResponse(BaseModel):
    """Built-in workflow template summary."""

    index: int
    name: str
    description: str
    trigger_type: str
    step_count: int


class TemplateInstantiateRequest(BaseModel):
    """Request to create a workflow from a template."""

    template_index: int = Field(ge=0)
    name: Optional[str] = Field(default=None, min_length=1, description="Overrides the template name")


class ManualTriggerRequest(BaseModel):
    """Request to start a workflow by hand."""

    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    trigger_data: Dict[str, Any] = {}
