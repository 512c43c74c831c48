"""Execution, event and statistics schemas."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ExecutionResponse(BaseModel):
    """Execution run information response."""

    id: str = Field(description="Execution ID")
    workflow_id: str = Field(description="Workflow ID")
    company_id: str
    trigger_type: str = Field(description="What started the run")
    trigger_data: Optional[Dict[str, Any]] = None
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    status: str = Field(description="running, waiting, completed, failed or cancelled")
    current_step_index: int
    current_step_id: Optional[str] = None
    next_resume_at: Optional[datetime] = None
    execution_data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ExecutionLogResponse(BaseModel):
    """Execution log entry response."""

    id: str
    position: int
    step_id: Optional[str] = None
    step_type: Optional[str] = None
    step_name: Optional[str] = None
    status: str
    message: Optional[str] = None
    input_data: Optional[Dict[str, Any]] = None
    output_data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ExecutionDetailResponse(BaseModel):
    """An execution with its full log."""

    execution: ExecutionResponse
    logs: List[ExecutionLogResponse]


class ExecutionListResponse(BaseModel):
    """Recent executions of a workflow."""

    executions: List[ExecutionResponse]
    total: int


class StatsResponse(BaseModel):
    """Per-company workflow statistics."""

    total_workflows: int
    active_workflows: int
    total_executions: int
    executions_by_status: Dict[str, int]


class EventRequest(BaseModel):
    """A business event reported by the surrounding system."""

    trigger_type: str = Field(min_length=1, description="e.g. lead_stage_change")
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    payload: Dict[str, Any] = {}


class EventAcceptedResponse(BaseModel):
    """Events are processed in the background."""

    accepted: bool = True
    trigger_type: str
