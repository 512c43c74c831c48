"""Execution detail and cancellation endpoints."""

from fastapi import APIRouter, Depends
import logging

from api.schemas.common import SuccessResponse
from api.schemas.execution import (
    ExecutionDetailResponse,
    ExecutionLogResponse,
    ExecutionResponse,
)
from app.dependencies import get_company_id, get_engine
from workflow.engine import AutomationEngine

logger = logging.getLogger(__name__)

router = APIRouter(tags=["executions"])


@router.get("/{execution_id}", response_model=ExecutionDetailResponse)
async def get_execution(
    execution_id: str,
    company_id: str = Depends(get_company_id),
    engine: AutomationEngine = Depends(get_engine),
) -> ExecutionDetailResponse:
    """
    Get an execution and its log entries in the order they were written.
    """
    detail = await engine.get_execution_detail(execution_id, company_id)
    return ExecutionDetailResponse(
        execution=ExecutionResponse.model_validate(detail["execution"]),
        logs=[ExecutionLogResponse.model_validate(log) for log in detail["logs"]],
    )


@router.post("/{execution_id}/cancel", response_model=SuccessResponse)
async def cancel_execution(
    execution_id: str,
    company_id: str = Depends(get_company_id),
    engine: AutomationEngine = Depends(get_engine),
) -> SuccessResponse:
    """
    Cancel a running or waiting execution.

    Returns ``success: false`` if it had already finished.
    """
    return SuccessResponse(**await engine.cancel_execution(execution_id, company_id))
