"""Execution store: execution rows, their audit log and statistics.

Every state change of an execution is a conditional UPDATE
(compare-and-swap) on ``current_step_index`` and ``status``. A method
returns True only when exactly one row matched; False means another
job got there first and the caller must treat its job as stale.
"""

from datetime import datetime, timedelta
from typing import Any, Optional, Sequence

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.constants import ExecutionStatus, LogStatus
from core.exceptions import NotFoundError
from db.models.execution import WorkflowExecution
from db.models.execution_log import WorkflowExecutionLog
from db.models.workflow import Workflow
from services.base import BaseService

ACTIVE_STATUSES = (ExecutionStatus.RUNNING.value, ExecutionStatus.WAITING.value)


class ExecutionService(BaseService[WorkflowExecution]):
    """Service for execution state and history."""

    def __init__(self, db: AsyncSession):
        super().__init__(WorkflowExecution, db)

    async def _cas(self, *criteria, **values) -> bool:
        stmt = (
            update(WorkflowExecution)
            .where(*criteria)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    # ─── Create / read ─────────────────────────────────────

    async def create_execution(
        self,
        workflow: Workflow,
        trigger_type: str,
        trigger_data: Optional[dict],
        entity_type: Optional[str],
        entity_id: Optional[str],
        start_index: Optional[int],
        start_step_id: Optional[str],
        now: datetime,
    ) -> WorkflowExecution:
        """Create a running execution positioned at its first step.

        A workflow without steps yields an execution that is already
        completed.
        """
        empty = start_index is None
        return await self.create({
            "workflow_id": workflow.id,
            "company_id": workflow.company_id,
            "trigger_type": trigger_type,
            "trigger_data": trigger_data or {},
            "entity_type": entity_type,
            "entity_id": entity_id,
            "status": ExecutionStatus.COMPLETED.value if empty else ExecutionStatus.RUNNING.value,
            "current_step_index": 0 if empty else start_index,
            "current_step_id": start_step_id,
            "execution_data": {},
            "started_at": now,
            "completed_at": now if empty else None,
        })

    async def get_execution(self, execution_id: str) -> Optional[WorkflowExecution]:
        """Fresh read of an execution (bypasses the identity map)."""
        result = await self.db.execute(
            select(WorkflowExecution)
            .where(WorkflowExecution.id == execution_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    # ─── Compare-and-swap transitions ──────────────────────

    async def claim_step(
        self,
        execution_id: str,
        step_index: int,
        now: datetime,
        lease_seconds: int,
    ) -> bool:
        """Take the lease for running the step at ``step_index``.

        Succeeds only while the execution is running at that index and no
        unexpired lease is held.
        """
        return await self._cas(
            WorkflowExecution.id == execution_id,
            WorkflowExecution.current_step_index == step_index,
            WorkflowExecution.status == ExecutionStatus.RUNNING.value,
            or_(
                WorkflowExecution.claim_expires_at.is_(None),
                WorkflowExecution.claim_expires_at < now,
            ),
            claim_expires_at=now + timedelta(seconds=lease_seconds),
        )

    async def release_claim(self, execution_id: str, step_index: int) -> bool:
        """Drop the lease so a retry of the same step can claim it."""
        return await self._cas(
            WorkflowExecution.id == execution_id,
            WorkflowExecution.current_step_index == step_index,
            claim_expires_at=None,
        )

    async def advance(
        self,
        execution_id: str,
        from_index: int,
        to_index: int,
        to_step_id: Optional[str],
        execution_data: Optional[dict] = None,
    ) -> bool:
        """Move a running execution from ``from_index`` to ``to_index``."""
        values: dict[str, Any] = {
            "current_step_index": to_index,
            "current_step_id": to_step_id,
            "claim_expires_at": None,
        }
        if execution_data is not None:
            values["execution_data"] = execution_data
        return await self._cas(
            WorkflowExecution.id == execution_id,
            WorkflowExecution.current_step_index == from_index,
            WorkflowExecution.status == ExecutionStatus.RUNNING.value,
            **values,
        )

    async def complete(
        self,
        execution_id: str,
        from_index: int,
        now: datetime,
        execution_data: Optional[dict] = None,
    ) -> bool:
        """Finish a running execution whose next position is empty."""
        values: dict[str, Any] = {
            "status": ExecutionStatus.COMPLETED.value,
            "completed_at": now,
            "claim_expires_at": None,
        }
        if execution_data is not None:
            values["execution_data"] = execution_data
        return await self._cas(
            WorkflowExecution.id == execution_id,
            WorkflowExecution.current_step_index == from_index,
            WorkflowExecution.status == ExecutionStatus.RUNNING.value,
            **values,
        )

    async def pause_for_wait(self, execution_id: str, wait_index: int, resume_at: datetime) -> bool:
        """Park a running execution on its wait step until ``resume_at``."""
        return await self._cas(
            WorkflowExecution.id == execution_id,
            WorkflowExecution.current_step_index == wait_index,
            WorkflowExecution.status == ExecutionStatus.RUNNING.value,
            status=ExecutionStatus.WAITING.value,
            next_resume_at=resume_at,
            claim_expires_at=None,
        )

    async def resume(
        self,
        execution_id: str,
        wait_index: int,
        to_index: Optional[int],
        to_step_id: Optional[str],
        now: datetime,
    ) -> bool:
        """Wake a waiting execution and move it past its wait step.

        With no step after the wait, the execution completes instead.
        """
        if to_index is None:
            values: dict[str, Any] = {
                "status": ExecutionStatus.COMPLETED.value,
                "completed_at": now,
            }
        else:
            values = {
                "status": ExecutionStatus.RUNNING.value,
                "current_step_index": to_index,
                "current_step_id": to_step_id,
            }
        return await self._cas(
            WorkflowExecution.id == execution_id,
            WorkflowExecution.current_step_index == wait_index,
            WorkflowExecution.status == ExecutionStatus.WAITING.value,
            next_resume_at=None,
            **values,
        )

    async def fail(self, execution_id: str, error: str, now: datetime) -> bool:
        """Mark a non-terminal execution failed."""
        return await self._cas(
            WorkflowExecution.id == execution_id,
            WorkflowExecution.status.in_(ACTIVE_STATUSES),
            status=ExecutionStatus.FAILED.value,
            error=error,
            completed_at=now,
            claim_expires_at=None,
        )

    async def cancel(self, execution_id: str, now: datetime) -> bool:
        """Cancel a running or waiting execution."""
        return await self._cas(
            WorkflowExecution.id == execution_id,
            WorkflowExecution.status.in_(ACTIVE_STATUSES),
            status=ExecutionStatus.CANCELLED.value,
            completed_at=now,
            next_resume_at=None,
            claim_expires_at=None,
        )

    async def follow_renumbered_steps(self, workflow_id: str, orders: dict[str, int]) -> dict[str, int]:
        """Re-point running and waiting executions after steps were renumbered.

        ``orders`` maps each surviving step id to its new ``step_order``.
        An execution whose current step was deleted keeps its position,
        which the following step now occupies.

        Returns:
            ``{execution_id: new_index}`` for every execution that moved
        """
        result = await self.db.execute(
            select(WorkflowExecution).where(
                WorkflowExecution.workflow_id == workflow_id,
                WorkflowExecution.status.in_(ACTIVE_STATUSES),
            )
        )
        moved: dict[str, int] = {}
        for execution in result.scalars().all():
            new_index = orders.get(execution.current_step_id)
            if new_index is None or new_index == execution.current_step_index:
                continue
            execution.current_step_index = new_index
            moved[execution.id] = new_index
        await self.db.flush()
        return moved

    # ─── Audit log ─────────────────────────────────────────

    async def add_log(
        self,
        execution_id: str,
        status: str,
        message: Optional[str] = None,
        step=None,
        input_data: Optional[dict] = None,
        output_data: Optional[dict] = None,
        error: Optional[str] = None,
    ) -> WorkflowExecutionLog:
        """Append a log entry; ``step`` is a StepNode or WorkflowStep."""
        result = await self.db.execute(
            select(func.max(WorkflowExecutionLog.position)).where(
                WorkflowExecutionLog.execution_id == execution_id
            )
        )
        position = (result.scalar() or 0) + 1
        entry = WorkflowExecutionLog(
            execution_id=execution_id,
            position=position,
            step_id=getattr(step, "id", None),
            step_type=getattr(step, "step_type", None),
            step_name=getattr(step, "name", None),
            status=LogStatus(status).value,
            message=message,
            input_data=input_data,
            output_data=output_data,
            error=error,
        )
        self.db.add(entry)
        await self.db.flush()
        return entry

    async def get_logs(self, execution_id: str) -> Sequence[WorkflowExecutionLog]:
        result = await self.db.execute(
            select(WorkflowExecutionLog)
            .where(WorkflowExecutionLog.execution_id == execution_id)
            .order_by(WorkflowExecutionLog.position)
        )
        return result.scalars().all()

    # ─── Queries ───────────────────────────────────────────

    async def get_detail(self, execution_id: str, company_id: Optional[str] = None) -> dict:
        """Execution with its ordered log.

        Raises:
            NotFoundError: unknown execution (or not in the company)
        """
        execution = await self.get_execution(execution_id)
        if not execution or (company_id and execution.company_id != company_id):
            raise NotFoundError("Execution not found")
        return {"execution": execution, "logs": list(await self.get_logs(execution_id))}

    async def list_executions(
        self,
        workflow_id: str,
        company_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 50,
    ) -> Sequence[WorkflowExecution]:
        """Executions of a workflow, newest first."""
        query = select(WorkflowExecution).where(WorkflowExecution.workflow_id == workflow_id)
        if company_id:
            query = query.where(WorkflowExecution.company_id == company_id)
        if status:
            query = query.where(WorkflowExecution.status == status)
        query = query.order_by(WorkflowExecution.started_at.desc()).limit(limit)
        result = await self.db.execute(query)
        return result.scalars().all()

    async def get_stats(self, company_id: str) -> dict:
        """Workflow and execution counts for a company."""
        total_workflows = await self._count_workflows(company_id)
        active_workflows = await self._count_workflows(company_id, active_only=True)

        result = await self.db.execute(
            select(WorkflowExecution.status, func.count())
            .where(WorkflowExecution.company_id == company_id)
            .group_by(WorkflowExecution.status)
        )
        by_status = {status.value: 0 for status in ExecutionStatus}
        for status, count in result.all():
            by_status[status] = count

        return {
            "total_workflows": total_workflows,
            "active_workflows": active_workflows,
            "total_executions": sum(by_status.values()),
            "executions_by_status": by_status,
        }

    async def _count_workflows(self, company_id: str, active_only: bool = False) -> int:
        query = select(func.count()).select_from(Workflow).where(Workflow.company_id == company_id)
        if active_only:
            query = query.where(Workflow.is_active == True)  # noqa: E712
        result = await self.db.execute(query)
        return result.scalar() or 0

    async def has_started_since(self, workflow_id: str, trigger_type: str, since: datetime) -> bool:
        """Whether the workflow got an execution of ``trigger_type`` at or after ``since``."""
        result = await self.db.execute(
            select(func.count())
            .select_from(WorkflowExecution)
            .where(
                WorkflowExecution.workflow_id == workflow_id,
                WorkflowExecution.trigger_type == trigger_type,
                WorkflowExecution.started_at >= since,
            )
        )
        return (result.scalar() or 0) > 0

    async def find_stalled(self, updated_before: datetime, limit: int = 100) -> Sequence[WorkflowExecution]:
        """Running or waiting executions not touched since ``updated_before``."""
        result = await self.db.execute(
            select(WorkflowExecution)
            .where(
                WorkflowExecution.status.in_(ACTIVE_STATUSES),
                WorkflowExecution.updated_at < updated_before,
            )
            .order_by(WorkflowExecution.updated_at)
            .limit(limit)
        )
        return result.scalars().all()
