"""Step interpreter: runs the steps of one execution for one job.

Each step goes through the same protocol:

1. claim ``(execution_id, step_index)`` with a compare-and-swap that
   also checks the execution is still ``running``;
2. perform the step outside any transaction (collaborator calls may be
   slow);
3. write the step's log entry and advance ``current_step_index`` with a
   second compare-and-swap, in one transaction.

A failed claim or advance means another job already moved the execution
(or it was cancelled): the job is a stale duplicate and stops quietly.
Fast steps run back to back in-process until the step budget is spent,
then the rest is handed to a fresh job.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import structlog

from core.constants import ACTION_STEP_TYPES, ExecutionStatus, LogStatus, WaitUnit
from core.exceptions import StepActionError
from integrations.collaborators import Collaborators
from services.execution_service import ExecutionService
from services.step_service import StepService
from tasks.registry import ActionRegistry, get_action_registry
from workflow.conditions import ConditionError, evaluate_condition, uses_trigger_data
from workflow.graph import StepGraph, StepNode

logger = structlog.get_logger(__name__)

WAIT_UNITS = {
    WaitUnit.MINUTES.value: timedelta(minutes=1),
    WaitUnit.HOURS.value: timedelta(hours=1),
    WaitUnit.DAYS.value: timedelta(days=1),
}


def wait_delta(duration: int, unit: Optional[str]) -> timedelta:
    """Length of a wait step."""
    return WAIT_UNITS[unit or WaitUnit.MINUTES.value] * duration


@dataclass
class JobOutcome:
    """How a job left its execution.

    ``status`` is one of completed, waiting, requeued, deferred, stale.
    ``run_at`` is set for deferred jobs that must be delivered again later.
    """

    status: str
    run_at: Optional[datetime] = None


STALE = JobOutcome("stale")


class StepInterpreter:
    """Executes workflow steps against the execution store."""

    def __init__(
        self,
        session_factory,
        collaborators: Collaborators,
        scheduler,
        settings,
        clock,
        registry: Optional[ActionRegistry] = None,
    ):
        self.session_factory = session_factory
        self.collaborators = collaborators
        self.scheduler = scheduler
        self.settings = settings
        self.clock = clock
        self.registry = registry or get_action_registry()

    # ─── Entry point ───────────────────────────────────────

    async def run_job(self, payload: dict) -> JobOutcome:
        """Handle one ``{execution_id, workflow_id, step_index}`` job."""
        execution_id = payload["execution_id"]
        step_index = int(payload["step_index"])
        log = logger.bind(execution_id=execution_id, step_index=step_index)

        async with self.session_factory() as session:
            execution = await ExecutionService(session).get_execution(execution_id)

        if execution is None:
            log.debug("Job for unknown execution discarded")
            return STALE
        if execution.current_step_index != step_index:
            log.debug("Stale job discarded", current_step_index=execution.current_step_index)
            return STALE
        if execution.status == ExecutionStatus.WAITING.value:
            return await self._resume(execution, step_index)
        if execution.status != ExecutionStatus.RUNNING.value:
            log.debug("Job for inactive execution discarded", status=execution.status)
            return STALE
        return await self._run_from(execution_id, step_index)

    async def _run_from(self, execution_id: str, step_index: int) -> JobOutcome:
        """Run steps in-process until the execution pauses, ends or the budget is spent."""
        budget = max(1, self.settings.WORKFLOW_STEP_BUDGET)
        index: Optional[int] = step_index
        try:
            for _ in range(budget):
                outcome, index = await self._run_step(execution_id, index)
                if outcome is not None:
                    return outcome
            return await self._requeue(execution_id, index)
        except StepActionError:
            raise
        except Exception as e:
            # Retry at the step that crashed
            logger.exception("Step crashed", execution_id=execution_id, step_index=index)
            raise StepActionError(f"{type(e).__name__}: {e}", execution_id, index) from e

    async def _requeue(self, execution_id: str, step_index: int) -> JobOutcome:
        now = self.clock.now()
        async with self.session_factory() as session:
            async with session.begin():
                execution = await ExecutionService(session).get_execution(execution_id)
                if (
                    execution is None
                    or execution.status != ExecutionStatus.RUNNING.value
                    or execution.current_step_index != step_index
                ):
                    return STALE
                await self.scheduler.enqueue_step(session, execution, step_index, run_at=now)
        logger.debug("Step budget spent, execution requeued", execution_id=execution_id, step_index=step_index)
        return JobOutcome("requeued")

    # ─── One step ──────────────────────────────────────────

    async def _run_step(self, execution_id: str, index: int) -> tuple[Optional[JobOutcome], Optional[int]]:
        """Run the step at ``index``.

        Returns ``(None, next_index)`` when the execution advanced and is
        still running, otherwise ``(outcome, None)``.
        """
        now = self.clock.now()
        log = logger.bind(execution_id=execution_id, step_index=index)

        async with self.session_factory() as session:
            async with session.begin():
                executions = ExecutionService(session)
                claimed = await executions.claim_step(
                    execution_id, index, now, self.settings.JOB_CLAIM_TIMEOUT_SECONDS
                )
                if not claimed:
                    log.debug("Step claim lost, duplicate job discarded")
                    return STALE, None
                execution = await executions.get_execution(execution_id)
                graph = StepGraph.from_steps(await StepService(session).list_steps(execution.workflow_id))
                node = graph.get(index)
                if node is not None and node.is_active and node.step_type in ACTION_STEP_TYPES:
                    await executions.add_log(
                        execution_id, LogStatus.STARTED, f"Step '{node.label}' started", step=node
                    )

        try:
            if node is None:
                # Position no longer exists (steps removed while running)
                return await self._advance(execution, index, None, graph, now)

            log = log.bind(step_id=node.id, step_type=node.step_type)
            if not node.is_active:
                return await self._advance(
                    execution, index, graph.next_index(index), graph, now,
                    step=node, status=LogStatus.SKIPPED, message=f"Step '{node.label}' is disabled, skipped",
                )
            if node.is_wait:
                return await self._start_wait(execution, node, now)
            if node.is_condition:
                return await self._run_condition(execution, node, graph, now)
            return await self._run_action(execution, node, graph)
        except StepActionError:
            raise
        except Exception:
            async with self.session_factory() as session:
                async with session.begin():
                    await ExecutionService(session).release_claim(execution_id, index)
            raise

    async def _advance(
        self,
        execution,
        index: int,
        next_index: Optional[int],
        graph: StepGraph,
        now: datetime,
        step: Optional[StepNode] = None,
        status: Optional[LogStatus] = None,
        message: Optional[str] = None,
        input_data: Optional[dict] = None,
        output_data: Optional[dict] = None,
        error: Optional[str] = None,
        execution_data: Optional[dict] = None,
    ) -> tuple[Optional[JobOutcome], Optional[int]]:
        """Log the finished step and move to ``next_index`` (or complete)."""
        next_node = graph.get(next_index)
        if next_node is None:
            next_index = None

        async with self.session_factory() as session:
            async with session.begin():
                executions = ExecutionService(session)
                if status is not None:
                    await executions.add_log(
                        execution.id, status, message, step=step,
                        input_data=input_data, output_data=output_data, error=error,
                    )
                if next_index is None:
                    moved = await executions.complete(execution.id, index, now, execution_data)
                    if moved:
                        await executions.add_log(execution.id, LogStatus.COMPLETED, "Execution completed")
                else:
                    moved = await executions.advance(
                        execution.id, index, next_index, next_node.id, execution_data
                    )

        if not moved:
            logger.debug("Advance lost, execution moved on elsewhere", execution_id=execution.id, step_index=index)
            return STALE, None
        if next_index is None:
            logger.info("Execution completed", execution_id=execution.id, workflow_id=execution.workflow_id)
            return JobOutcome("completed"), None
        return None, next_index

    async def _start_wait(self, execution, node: StepNode, now: datetime):
        resume_at = now + wait_delta(node.wait_duration or 0, node.wait_unit)
        async with self.session_factory() as session:
            async with session.begin():
                executions = ExecutionService(session)
                paused = await executions.pause_for_wait(execution.id, node.order, resume_at)
                if not paused:
                    logger.debug("Wait lost, execution moved on elsewhere", execution_id=execution.id)
                    return STALE, None
                await executions.add_log(
                    execution.id, LogStatus.WAITING,
                    f"Waiting {node.wait_duration} {node.wait_unit or WaitUnit.MINUTES.value}",
                    step=node,
                    output_data={"resume_at": resume_at.isoformat()},
                )
                await self.scheduler.enqueue_step(session, execution, node.order, run_at=resume_at)
        logger.info(
            "Execution waiting",
            execution_id=execution.id,
            step_id=node.id,
            resume_at=resume_at.isoformat(),
        )
        return JobOutcome("waiting"), None

    async def _resume(self, execution, wait_index: int) -> JobOutcome:
        """Wake an execution whose wait step has elapsed."""
        now = self.clock.now()
        if execution.next_resume_at is not None and execution.next_resume_at > now:
            logger.debug(
                "Resume job delivered early, deferred",
                execution_id=execution.id,
                resume_at=execution.next_resume_at.isoformat(),
            )
            return JobOutcome("deferred", run_at=execution.next_resume_at)

        async with self.session_factory() as session:
            async with session.begin():
                executions = ExecutionService(session)
                graph = StepGraph.from_steps(await StepService(session).list_steps(execution.workflow_id))
                wait_node = graph.get(wait_index)
                if wait_node is not None and wait_node.id != execution.current_step_id:
                    # The wait step was deleted; its successor now holds the position
                    wait_node = None
                    if graph.is_branch_target(wait_index):
                        next_index = graph.next_index(wait_index)
                    else:
                        next_index = wait_index
                else:
                    next_index = graph.next_index(wait_index)
                next_node = graph.get(next_index)
                resumed = await executions.resume(
                    execution.id,
                    wait_index,
                    next_index,
                    next_node.id if next_node else None,
                    now,
                )
                if not resumed:
                    logger.debug("Resume lost, execution moved on elsewhere", execution_id=execution.id)
                    return STALE
                await executions.add_log(
                    execution.id, LogStatus.RESUMED, "Wait elapsed, resuming", step=wait_node
                )
                if next_index is None:
                    await executions.add_log(execution.id, LogStatus.COMPLETED, "Execution completed")

        if next_index is None:
            logger.info("Execution completed", execution_id=execution.id, workflow_id=execution.workflow_id)
            return JobOutcome("completed")
        return await self._run_from(execution.id, next_index)

    async def _run_condition(self, execution, node: StepNode, graph: StepGraph, now: datetime):
        """Evaluate a condition; errors count as false."""
        error = None
        try:
            entity = None
            if execution.entity_type and execution.entity_id and not uses_trigger_data(node.condition_field):
                entity = await self.collaborators.fetch_entity(execution.entity_type, execution.entity_id)
                if entity is None:
                    raise ConditionError(f"{execution.entity_type} {execution.entity_id} not found")
            result = evaluate_condition(node, entity, execution.trigger_data, now)
        except Exception as e:
            error = str(e) or type(e).__name__
            result = False
            logger.warning(
                "Condition evaluation failed, taking false branch",
                execution_id=execution.id,
                step_id=node.id,
                error=error,
            )

        next_index = graph.branch_index(node, result)
        next_node = graph.get(next_index)
        return await self._advance(
            execution, node.order, next_index, graph, now,
            step=node,
            status=LogStatus.WARNING if error else LogStatus.COMPLETED,
            message=f"Condition '{node.label}' evaluated {'true' if result else 'false'}",
            input_data={
                "field": node.condition_field,
                "operator": node.condition_operator,
                "condition_type": node.condition_type,
                "value": node.condition_value,
            },
            output_data={"result": result, "next_step_id": next_node.id if next_node else None},
            error=error,
        )

    async def _run_action(self, execution, node: StepNode, graph: StepGraph):
        """Perform a side-effecting step through its collaborator."""
        context = {
            "company_id": execution.company_id,
            "execution_id": execution.id,
            "workflow_id": execution.workflow_id,
            "entity_type": execution.entity_type,
            "step_id": node.id,
        }
        action = self.registry.create_instance(node.step_type, self.collaborators)
        if action is None:
            result_error = f"No action registered for step type '{node.step_type}'"
            result = None
        else:
            result = await action.run(node.config, execution.entity_id, context)
            result_error = None if result.success else result.error

        if result_error is not None:
            async with self.session_factory() as session:
                async with session.begin():
                    executions = ExecutionService(session)
                    await executions.add_log(
                        execution.id, LogStatus.FAILED, f"Step '{node.label}' failed",
                        step=node, input_data=node.config, error=result_error,
                    )
                    await executions.release_claim(execution.id, node.order)
            logger.error(
                "Action step failed",
                execution_id=execution.id,
                step_id=node.id,
                step_type=node.step_type,
                error=result_error,
            )
            raise StepActionError(result_error, execution.id, node.order, node.id)

        execution_data = dict(execution.execution_data or {})
        if result.output:
            execution_data[node.id] = result.output
        return await self._advance(
            execution, node.order, graph.next_index(node.order), graph, self.clock.now(),
            step=node,
            status=LogStatus.COMPLETED,
            message=f"Step '{node.label}' completed",
            input_data=node.config,
            output_data={**result.output, "duration_ms": round(result.duration_ms, 2)},
            execution_data=execution_data,
        )

    # ─── Terminal transitions ──────────────────────────────

    async def fail_execution(self, execution_id: str, error: str, step_index: Optional[int] = None) -> bool:
        """Mark an execution failed once its job has run out of attempts."""
        now = self.clock.now()
        async with self.session_factory() as session:
            async with session.begin():
                executions = ExecutionService(session)
                failed = await executions.fail(execution_id, error, now)
                if failed:
                    await executions.add_log(
                        execution_id, LogStatus.FAILED, "Execution failed",
                        output_data={"step_index": step_index}, error=error,
                    )
        if failed:
            logger.error("Execution failed", execution_id=execution_id, step_index=step_index, error=error)
        return failed
