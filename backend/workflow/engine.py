"""Automation engine: the operations the surrounding system calls.

The engine wires the trigger evaluator, step interpreter, scheduler and
job runner around one session factory, one set of collaborators and one
clock:

- trigger(event): fire-and-forget event ingestion
- trigger_manual(...): synchronous execution creation
- cancel_execution / get_execution_detail / list_executions / get_stats
- run_due_jobs / evaluate_schedules / recover_stalled / cleanup_old_jobs:
  the background work driven by Celery beat
"""

from datetime import timedelta
from typing import Optional, Union

import structlog

from app.config import get_settings
from core.constants import ExecutionStatus, LogStatus
from core.exceptions import NotFoundError
from core.utils import SystemClock
from integrations.collaborators import Collaborators, HttpCollaborators
from services.execution_service import ExecutionService
from services.job_service import JobService
from tasks.registry import ActionRegistry
from triggers.base import TriggerEvent
from triggers.evaluator import TriggerEvaluator
from workflow.interpreter import StepInterpreter
from workflow.scheduler import ExecutionScheduler, JobRunner, RunSummary

logger = structlog.get_logger(__name__)


class AutomationEngine:
    """Facade over the workflow automation runtime."""

    def __init__(
        self,
        session_factory,
        collaborators: Collaborators,
        settings=None,
        clock=None,
        registry: Optional[ActionRegistry] = None,
    ):
        self.session_factory = session_factory
        self.collaborators = collaborators
        self.settings = settings or get_settings()
        self.clock = clock or SystemClock()

        self.scheduler = ExecutionScheduler(self.settings)
        self.interpreter = StepInterpreter(
            session_factory, collaborators, self.scheduler, self.settings, self.clock, registry
        )
        self.evaluator = TriggerEvaluator(session_factory, self.scheduler, self.clock)
        self.runner = JobRunner(session_factory, self.interpreter, self.settings, self.clock)

    # ─── Triggering ────────────────────────────────────────

    async def trigger(self, event: Union[TriggerEvent, dict]) -> list[str]:
        """Ingest a business event; returns the IDs of started executions."""
        if isinstance(event, dict):
            event = TriggerEvent.from_dict(event)
        return await self.evaluator.trigger(event)

    async def trigger_manual(
        self,
        workflow_id: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        trigger_data: Optional[dict] = None,
        company_id: Optional[str] = None,
    ):
        """Start a workflow by hand; returns the new execution."""
        return await self.evaluator.trigger_manual(
            workflow_id, entity_type, entity_id, trigger_data, company_id=company_id
        )

    async def evaluate_schedules(self, now=None) -> list[str]:
        return await self.evaluator.evaluate_schedules(now)

    # ─── Execution control and queries ─────────────────────

    async def cancel_execution(self, execution_id: str, company_id: Optional[str] = None) -> dict:
        """Cancel a running or waiting execution.

        Returns ``{"success": False}`` when the execution already ended.
        Queued jobs of a cancelled execution become no-ops.

        Raises:
            NotFoundError: unknown execution (or not in the company)
        """
        now = self.clock.now()
        async with self.session_factory() as session:
            async with session.begin():
                executions = ExecutionService(session)
                execution = await executions.get_execution(execution_id)
                if execution is None or (company_id and execution.company_id != company_id):
                    raise NotFoundError("Execution not found")
                cancelled = await executions.cancel(execution_id, now)
                if cancelled:
                    await executions.add_log(execution_id, LogStatus.CANCELLED, "Execution cancelled")

        if cancelled:
            logger.info("Execution cancelled", execution_id=execution_id)
        else:
            logger.info("Cancel ignored, execution already ended", execution_id=execution_id, status=execution.status)
        return {"success": cancelled}

    async def get_execution_detail(self, execution_id: str, company_id: Optional[str] = None) -> dict:
        """``{"execution", "logs"}`` with logs in insertion order."""
        async with self.session_factory() as session:
            return await ExecutionService(session).get_detail(execution_id, company_id)

    async def list_executions(
        self,
        workflow_id: str,
        company_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 50,
    ):
        async with self.session_factory() as session:
            return list(await ExecutionService(session).list_executions(workflow_id, company_id, status, limit))

    async def get_stats(self, company_id: str) -> dict:
        async with self.session_factory() as session:
            return await ExecutionService(session).get_stats(company_id)

    # ─── Background work ───────────────────────────────────

    async def process_job(self, payload: dict):
        """Run a single job payload directly (no queue bookkeeping)."""
        return await self.interpreter.run_job(payload)

    async def run_due_jobs(self, now=None) -> RunSummary:
        return await self.runner.run_due(now)

    async def recover_stalled(self, now=None) -> dict:
        """Re-enqueue executions that lost their job.

        Jobs stuck in ``processing`` past the claim timeout go back to
        ``pending``. Running or waiting executions untouched for
        ``STALLED_EXECUTION_MINUTES`` that have no open job get a new job
        at their current step (waiting ones at their resume time).
        """
        now = now or self.clock.now()
        requeued = 0
        async with self.session_factory() as session:
            async with session.begin():
                jobs = JobService(session)
                executions = ExecutionService(session)
                released = await jobs.release_stuck(
                    now - timedelta(seconds=self.settings.JOB_CLAIM_TIMEOUT_SECONDS)
                )
                stalled = await executions.find_stalled(
                    now - timedelta(minutes=self.settings.STALLED_EXECUTION_MINUTES)
                )
                for execution in stalled:
                    if await jobs.has_open_job(execution.id):
                        continue
                    run_at = now
                    if execution.status == ExecutionStatus.WAITING.value and execution.next_resume_at:
                        run_at = max(now, execution.next_resume_at)
                    await self.scheduler.enqueue_step(
                        session, execution, execution.current_step_index, run_at=run_at
                    )
                    await executions.add_log(
                        execution.id, LogStatus.INFO, "Re-enqueued after stalling",
                        output_data={"step_index": execution.current_step_index},
                    )
                    requeued += 1

        if released or requeued:
            logger.warning("Stalled work recovered", released_jobs=released, requeued_executions=requeued)
        return {"released_jobs": released, "requeued_executions": requeued}

    async def cleanup_old_jobs(self, days: Optional[int] = None) -> int:
        days = days if days is not None else self.settings.JOB_RETENTION_DAYS
        async with self.session_factory() as session:
            async with session.begin():
                deleted = await JobService(session).cleanup_old_jobs(self.clock.now(), days)
        logger.info("Old jobs cleaned up", deleted=deleted, retention_days=days)
        return deleted

    async def get_job_stats(self, company_id: Optional[str] = None) -> dict:
        async with self.session_factory() as session:
            return await JobService(session).get_job_stats(company_id)

    async def aclose(self) -> None:
        await self.collaborators.aclose()


def build_automation_engine(session_factory, collaborators: Optional[Collaborators] = None, settings=None, clock=None):
    """Create an engine; collaborators default to the HTTP implementation."""
    settings = settings or get_settings()
    return AutomationEngine(
        session_factory,
        collaborators or HttpCollaborators.from_settings(settings),
        settings=settings,
        clock=clock,
    )


# Singleton for the API process
_engine: Optional[AutomationEngine] = None


def get_automation_engine() -> AutomationEngine:
    """Get or create the API process's engine."""
    global _engine
    if _engine is None:
        from db.database import AsyncSessionLocal

        _engine = build_automation_engine(AsyncSessionLocal)
    return _engine
