"""Step authoring service.

Keeps ``step_order`` dense and unique per workflow. Every mutation
locks the parent workflow row first so concurrent edits of the same
workflow are serialized; within the lock the steps are renumbered in
one transaction.

Renumbering also moves running and waiting executions (and their pending
jobs) to the new order of the step they are on, so edits only affect
steps an execution has not reached yet.
"""

import logging
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import NotFoundError, ValidationError
from db.models.workflow import Workflow
from db.models.workflow_step import WorkflowStep
from services.base import BaseService
from services.execution_service import ExecutionService
from services.job_service import JobService
from workflow.step_configs import (
    ConditionStep,
    definition_to_columns,
    merge_step_definition,
    parse_step_definition,
)

logger = logging.getLogger(__name__)


class StepService(BaseService[WorkflowStep]):
    """Service for adding, editing, removing and reordering steps."""

    def __init__(self, db: AsyncSession):
        super().__init__(WorkflowStep, db)

    async def _lock_workflow(self, workflow_id: str, company_id: str) -> Workflow:
        result = await self.db.execute(
            select(Workflow)
            .where(Workflow.id == workflow_id, Workflow.company_id == company_id)
            .with_for_update()
        )
        workflow = result.scalar_one_or_none()
        if not workflow:
            raise NotFoundError("Workflow not found")
        return workflow

    async def list_steps(self, workflow_id: str) -> list[WorkflowStep]:
        """Steps of a workflow ordered by ``step_order``."""
        result = await self.db.execute(
            select(WorkflowStep)
            .where(WorkflowStep.workflow_id == workflow_id)
            .order_by(WorkflowStep.step_order)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    @staticmethod
    def _find(steps: list[WorkflowStep], step_id: str) -> WorkflowStep:
        for step in steps:
            if step.id == step_id:
                return step
        raise NotFoundError("Step not found")

    @staticmethod
    def _check_branch_targets(definition, own_order: int, own_id: Optional[str], steps) -> None:
        """Branch targets must be later steps of the same workflow."""
        if not isinstance(definition, ConditionStep):
            return
        orders = {s.id: s.step_order for s in steps}
        for field in ("on_true_step_id", "on_false_step_id"):
            target = getattr(definition, field)
            if target is None:
                continue
            if target == own_id:
                raise ValidationError(f"{field} cannot point at the condition itself")
            if target not in orders:
                raise ValidationError(f"{field} must reference a step of the same workflow")
            if orders[target] <= own_order:
                raise ValidationError(f"{field} must reference a later step")

    async def _follow_renumbering(self, workflow_id: str, steps: list[WorkflowStep]) -> None:
        """Keep in-flight executions and their queued jobs on the same step."""
        orders = {s.id: s.step_order for s in steps}
        moved = await ExecutionService(self.db).follow_renumbered_steps(workflow_id, orders)
        jobs = JobService(self.db)
        for execution_id, step_index in moved.items():
            await jobs.retarget_pending(execution_id, step_index)
        if moved:
            logger.info(f"Re-pointed {len(moved)} in-flight execution(s) of workflow {workflow_id}")

    # ─── Add ───────────────────────────────────────────────

    async def add_step(
        self,
        workflow_id: str,
        company_id: str,
        data: dict[str, Any],
        insert_after_step_id: Optional[str] = None,
    ) -> WorkflowStep:
        """Append a step, or insert it right after another one.

        Inserting shifts every later step down by one.

        Raises:
            NotFoundError: workflow or anchor step not found
            ValidationError: invalid step definition
        """
        await self._lock_workflow(workflow_id, company_id)
        definition = parse_step_definition(data)
        steps = await self.list_steps(workflow_id)

        if insert_after_step_id:
            anchor = self._find(steps, insert_after_step_id)
            new_order = anchor.step_order + 1
            for step in steps:
                if step.step_order >= new_order:
                    step.step_order += 1
        else:
            new_order = max((s.step_order for s in steps), default=-1) + 1

        self._check_branch_targets(definition, new_order, None, steps)

        step = WorkflowStep(
            workflow_id=workflow_id,
            step_order=new_order,
            **definition_to_columns(definition),
        )
        self.db.add(step)
        await self.db.flush()
        if insert_after_step_id:
            await self._follow_renumbering(workflow_id, steps)
        logger.info(f"Step {step.id} ({step.step_type}) added to workflow {workflow_id} at {new_order}")
        return step

    # ─── Update ────────────────────────────────────────────

    async def update_step(
        self,
        workflow_id: str,
        company_id: str,
        step_id: str,
        changes: dict[str, Any],
    ) -> WorkflowStep:
        """Apply a partial update; the merged definition is re-validated."""
        await self._lock_workflow(workflow_id, company_id)
        steps = await self.list_steps(workflow_id)
        step = self._find(steps, step_id)

        definition = merge_step_definition(step, changes)
        self._check_branch_targets(definition, step.step_order, step.id, steps)

        for key, value in definition_to_columns(definition).items():
            setattr(step, key, value)
        await self.db.flush()
        return step

    # ─── Delete ────────────────────────────────────────────

    async def delete_step(self, workflow_id: str, company_id: str, step_id: str) -> None:
        """Delete a step, clear branches pointing at it and close the gap."""
        await self._lock_workflow(workflow_id, company_id)
        steps = await self.list_steps(workflow_id)
        doomed = self._find(steps, step_id)

        for step in steps:
            if step.on_true_step_id == step_id:
                step.on_true_step_id = None
            if step.on_false_step_id == step_id:
                step.on_false_step_id = None
        await self.db.flush()

        await self.db.delete(doomed)
        remaining = [s for s in steps if s.id != step_id]
        for position, step in enumerate(remaining):
            step.step_order = position
        await self.db.flush()
        await self._follow_renumbering(workflow_id, remaining)
        logger.info(f"Step {step_id} deleted from workflow {workflow_id}")

    # ─── Reorder ───────────────────────────────────────────

    async def reorder_steps(
        self,
        workflow_id: str,
        company_id: str,
        ordered_step_ids: list[str],
    ) -> list[WorkflowStep]:
        """Renumber all steps to follow ``ordered_step_ids``.

        Raises:
            ValidationError: the ids are not exactly the workflow's steps,
                or the new order would put a branch target before its
                condition. Orders are left unchanged.
        """
        await self._lock_workflow(workflow_id, company_id)
        steps = await self.list_steps(workflow_id)

        if len(ordered_step_ids) != len(set(ordered_step_ids)):
            raise ValidationError("Step ids must not repeat")
        existing = {s.id for s in steps}
        if set(ordered_step_ids) != existing:
            missing = existing - set(ordered_step_ids)
            extra = set(ordered_step_ids) - existing
            raise ValidationError(
                f"Step ids must match the workflow's steps exactly "
                f"(missing: {sorted(missing)}, unknown: {sorted(extra)})"
            )

        position = {step_id: i for i, step_id in enumerate(ordered_step_ids)}
        for step in steps:
            for target in (step.on_true_step_id, step.on_false_step_id):
                if target in position and position[target] <= position[step.id]:
                    raise ValidationError(
                        f"Step {step.id} would branch backwards to {target}"
                    )

        for step in steps:
            step.step_order = position[step.id]
        await self.db.flush()
        await self._follow_renumbering(workflow_id, steps)
        return sorted(steps, key=lambda s: s.step_order)
