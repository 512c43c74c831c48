"""Workflow endpoints: definitions, steps, templates, manual runs and stats."""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from api.schemas.common import PaginationParams
from api.schemas.execution import ExecutionListResponse, ExecutionResponse, StatsResponse
from api.schemas.workflow import (
    ManualTriggerRequest,
    StepReorderRequest,
    TemplateInstantiateRequest,
    TemplateResponse,
    WorkflowCreate,
    WorkflowListResponse,
    WorkflowResponse,
    WorkflowStepCreate,
    WorkflowStepResponse,
    WorkflowStepUpdate,
    WorkflowUpdate,
)
from app.dependencies import get_company_id, get_db, get_engine
from services.workflow_service import WorkflowService
from workflow.engine import AutomationEngine
from workflow.templates import list_templates

logger = logging.getLogger(__name__)

router = APIRouter(tags=["workflows"])


def _workflow_to_response(wf, with_steps: bool = True) -> WorkflowResponse:
    """Convert a Workflow ORM object to response schema."""
    return WorkflowResponse(
        id=wf.id,
        company_id=wf.company_id,
        name=wf.name,
        description=wf.description,
        trigger_type=wf.trigger_type,
        trigger_config=wf.trigger_config or {},
        cron_expression=wf.cron_expression,
        timezone=wf.timezone or "UTC",
        is_active=wf.is_active,
        metadata=wf.extra_metadata or {},
        created_by=wf.created_by,
        created_at=wf.created_at,
        updated_at=wf.updated_at,
        steps=[WorkflowStepResponse.model_validate(s) for s in wf.steps] if with_steps else [],
    )


# ─── Workflows ─────────────────────────────────────────────


@router.get("/", response_model=WorkflowListResponse)
async def list_workflows(
    pagination: PaginationParams = Depends(),
    is_active: Optional[bool] = Query(None, description="Filter by active flag"),
    trigger_type: Optional[str] = Query(None, description="Filter by trigger type"),
    company_id: str = Depends(get_company_id),
    db: AsyncSession = Depends(get_db),
) -> WorkflowListResponse:
    """
    List the company's workflows (paginated, newest first).
    """
    workflows, total = await WorkflowService(db).list_workflows(
        company_id,
        is_active=is_active,
        trigger_type=trigger_type,
        offset=pagination.offset,
        limit=pagination.per_page,
    )
    return WorkflowListResponse(
        workflows=[_workflow_to_response(wf, with_steps=False) for wf in workflows],
        total=total,
        page=pagination.page,
        per_page=pagination.per_page,
    )


@router.post("/", response_model=WorkflowResponse, status_code=status.HTTP_201_CREATED)
async def create_workflow(
    request: WorkflowCreate,
    company_id: str = Depends(get_company_id),
    db: AsyncSession = Depends(get_db),
) -> WorkflowResponse:
    """
    Create a workflow, optionally with its steps.
    """
    wf = await WorkflowService(db).create_workflow(
        company_id=company_id,
        name=request.name,
        description=request.description,
        trigger_type=request.trigger_type,
        trigger_config=request.trigger_config,
        cron_expression=request.cron_expression,
        timezone=request.timezone,
        is_active=request.is_active,
        extra_metadata=request.metadata,
        steps=[step.to_definition() for step in request.steps],
    )
    return _workflow_to_response(wf)


@router.get("/templates", response_model=list[TemplateResponse])
async def get_templates() -> list[TemplateResponse]:
    """
    List the built-in workflow templates.
    """
    return [TemplateResponse(**t) for t in list_templates()]


@router.post("/from-template", response_model=WorkflowResponse, status_code=status.HTTP_201_CREATED)
async def create_from_template(
    request: TemplateInstantiateRequest,
    company_id: str = Depends(get_company_id),
    db: AsyncSession = Depends(get_db),
) -> WorkflowResponse:
    """
    Create an inactive workflow from a built-in template.
    """
    wf = await WorkflowService(db).create_from_template(
        company_id, request.template_index, name=request.name
    )
    return _workflow_to_response(wf)


@router.get("/stats", response_model=StatsResponse)
async def get_stats(
    company_id: str = Depends(get_company_id),
    engine: AutomationEngine = Depends(get_engine),
) -> StatsResponse:
    """
    Workflow and execution counts for the company.
    """
    return StatsResponse(**await engine.get_stats(company_id))


@router.get("/{workflow_id}", response_model=WorkflowResponse)
async def get_workflow(
    workflow_id: str,
    company_id: str = Depends(get_company_id),
    db: AsyncSession = Depends(get_db),
) -> WorkflowResponse:
    """
    Get a workflow with its ordered steps.
    """
    wf = await WorkflowService(db).get_workflow(workflow_id, company_id)
    return _workflow_to_response(wf)


@router.patch("/{workflow_id}", response_model=WorkflowResponse)
async def update_workflow(
    workflow_id: str,
    request: WorkflowUpdate,
    company_id: str = Depends(get_company_id),
    db: AsyncSession = Depends(get_db),
) -> WorkflowResponse:
    """
    Update workflow fields. Steps have their own endpoints.
    """
    wf = await WorkflowService(db).update_workflow(workflow_id, company_id, request.to_changes())
    return _workflow_to_response(wf)


@router.post("/{workflow_id}/activate", response_model=WorkflowResponse)
async def activate_workflow(
    workflow_id: str,
    company_id: str = Depends(get_company_id),
    db: AsyncSession = Depends(get_db),
) -> WorkflowResponse:
    wf = await WorkflowService(db).set_active(workflow_id, company_id, True)
    return _workflow_to_response(wf)


@router.post("/{workflow_id}/deactivate", response_model=WorkflowResponse)
async def deactivate_workflow(
    workflow_id: str,
    company_id: str = Depends(get_company_id),
    db: AsyncSession = Depends(get_db),
) -> WorkflowResponse:
    wf = await WorkflowService(db).set_active(workflow_id, company_id, False)
    return _workflow_to_response(wf)


@router.delete("/{workflow_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_workflow(
    workflow_id: str,
    company_id: str = Depends(get_company_id),
    db: AsyncSession = Depends(get_db),
) -> None:
    """
    Delete a workflow together with its steps and execution history.
    """
    await WorkflowService(db).delete_workflow(workflow_id, company_id)


# ─── Steps ─────────────────────────────────────────────────


@router.post(
    "/{workflow_id}/steps",
    response_model=WorkflowStepResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_step(
    workflow_id: str,
    request: WorkflowStepCreate,
    company_id: str = Depends(get_company_id),
    db: AsyncSession = Depends(get_db),
) -> WorkflowStepResponse:
    """
    Append a step, or insert it after ``insert_after_step_id``.
    """
    step = await WorkflowService(db).steps.add_step(
        workflow_id,
        company_id,
        request.to_definition(),
        insert_after_step_id=request.insert_after_step_id,
    )
    return WorkflowStepResponse.model_validate(step)


@router.patch("/{workflow_id}/steps/{step_id}", response_model=WorkflowStepResponse)
async def update_step(
    workflow_id: str,
    step_id: str,
    request: WorkflowStepUpdate,
    company_id: str = Depends(get_company_id),
    db: AsyncSession = Depends(get_db),
) -> WorkflowStepResponse:
    step = await WorkflowService(db).steps.update_step(
        workflow_id, company_id, step_id, request.model_dump(exclude_unset=True)
    )
    return WorkflowStepResponse.model_validate(step)


@router.delete("/{workflow_id}/steps/{step_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_step(
    workflow_id: str,
    step_id: str,
    company_id: str = Depends(get_company_id),
    db: AsyncSession = Depends(get_db),
) -> None:
    await WorkflowService(db).steps.delete_step(workflow_id, company_id, step_id)


@router.put("/{workflow_id}/steps/order", response_model=list[WorkflowStepResponse])
async def reorder_steps(
    workflow_id: str,
    request: StepReorderRequest,
    company_id: str = Depends(get_company_id),
    db: AsyncSession = Depends(get_db),
) -> list[WorkflowStepResponse]:
    """
    Renumber every step of the workflow to follow ``step_ids``.
    """
    steps = await WorkflowService(db).steps.reorder_steps(workflow_id, company_id, request.step_ids)
    return [WorkflowStepResponse.model_validate(s) for s in steps]


# ─── Runs ──────────────────────────────────────────────────


@router.post(
    "/{workflow_id}/trigger",
    response_model=ExecutionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def trigger_workflow(
    workflow_id: str,
    request: ManualTriggerRequest,
    company_id: str = Depends(get_company_id),
    engine: AutomationEngine = Depends(get_engine),
) -> ExecutionResponse:
    """
    Start the workflow by hand. Its steps run in the background.
    """
    execution = await engine.trigger_manual(
        workflow_id,
        entity_type=request.entity_type,
        entity_id=request.entity_id,
        trigger_data=request.trigger_data,
        company_id=company_id,
    )
    logger.info(f"Manual run {execution.id} of workflow {workflow_id} started")
    return ExecutionResponse.model_validate(execution)


@router.get("/{workflow_id}/executions", response_model=ExecutionListResponse)
async def list_executions(
    workflow_id: str,
    exec_status: Optional[str] = Query(None, alias="status", description="Filter by execution status"),
    limit: int = Query(50, ge=1, le=200),
    company_id: str = Depends(get_company_id),
    engine: AutomationEngine = Depends(get_engine),
) -> ExecutionListResponse:
    """
    Recent executions of the workflow, newest first.
    """
    executions = await engine.list_executions(workflow_id, company_id, exec_status, limit)
    return ExecutionListResponse(
        executions=[ExecutionResponse.model_validate(e) for e in executions],
        total=len(executions),
    )
