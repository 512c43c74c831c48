"""Trigger evaluator: turns events, cron ticks and manual calls into executions.

Every path ends in the same place: an execution row in ``running`` at
its first step plus a queued job for that step, written in one
transaction. A workflow without steps gets an execution that is
completed on creation.
"""

from datetime import datetime
from typing import Optional

import structlog

from core.constants import EVENT_TRIGGER_TYPES, LogStatus, TriggerType
from core.exceptions import NotFoundError
from db.models.workflow import Workflow
from services.execution_service import ExecutionService
from services.step_service import StepService
from services.workflow_service import WorkflowService
from triggers.base import TriggerEvent
from triggers.handlers.event import EventTriggerHandler
from triggers.handlers.schedule import ScheduleTriggerHandler, minute_start
from workflow.graph import StepGraph

logger = structlog.get_logger(__name__)


class TriggerEvaluator:
    """Matches triggers against active workflows and starts executions."""

    def __init__(self, session_factory, scheduler, clock):
        self.session_factory = session_factory
        self.scheduler = scheduler
        self.clock = clock
        self.event_handler = EventTriggerHandler()
        self.schedule_handler = ScheduleTriggerHandler()

    async def trigger(self, event: TriggerEvent) -> list[str]:
        """Start every active workflow of the company that matches ``event``.

        Returns:
            IDs of the executions created (possibly none)
        """
        log = logger.bind(
            company_id=event.company_id,
            trigger_type=event.trigger_type,
            entity_id=event.entity_id,
        )
        if event.trigger_type not in EVENT_TRIGGER_TYPES:
            log.warning("Event ignored, not an event trigger type")
            return []

        started: list[str] = []
        async with self.session_factory() as session:
            async with session.begin():
                workflows = await WorkflowService(session).get_active_for_trigger(
                    event.company_id, event.trigger_type
                )
                for workflow in workflows:
                    result = self.event_handler.matches(workflow, event)
                    if not result.matched:
                        continue
                    execution = await self._start_execution(
                        session,
                        workflow,
                        trigger_type=event.trigger_type,
                        trigger_data=event.payload,
                        entity_type=event.entity_type,
                        entity_id=event.entity_id,
                    )
                    started.append(execution.id)

        if not started:
            log.info("No active workflow matched event", candidates=len(workflows))
        return started

    async def evaluate_schedules(self, now: Optional[datetime] = None) -> list[str]:
        """Start scheduled workflows whose cron expression matches this minute.

        A workflow fires at most once per minute even if ticks repeat.
        """
        now = now or self.clock.now()
        tick = minute_start(now)
        started: list[str] = []
        async with self.session_factory() as session:
            async with session.begin():
                executions = ExecutionService(session)
                for workflow in await WorkflowService(session).get_active_scheduled():
                    tick_event = TriggerEvent(
                        company_id=workflow.company_id,
                        trigger_type=TriggerType.SCHEDULED.value,
                        payload={"scheduled_at": tick.isoformat()},
                    )
                    if not self.schedule_handler.matches(workflow, tick_event).matched:
                        continue
                    if await executions.has_started_since(
                        workflow.id, TriggerType.SCHEDULED.value, tick
                    ):
                        logger.debug("Scheduled workflow already fired this minute", workflow_id=workflow.id)
                        continue
                    execution = await self._start_execution(
                        session,
                        workflow,
                        trigger_type=TriggerType.SCHEDULED.value,
                        trigger_data=tick_event.payload,
                        entity_type=None,
                        entity_id=None,
                        now=now,
                    )
                    started.append(execution.id)
        if started:
            logger.info("Scheduled workflows started", count=len(started), tick=tick.isoformat())
        return started

    async def trigger_manual(
        self,
        workflow_id: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        trigger_data: Optional[dict] = None,
        company_id: Optional[str] = None,
    ):
        """Start one execution of a workflow, bypassing trigger matching.

        Raises:
            NotFoundError: unknown workflow (in the company), or inactive
        """
        async with self.session_factory() as session:
            async with session.begin():
                workflow = await WorkflowService(session).get_by_id(workflow_id)
                if (
                    workflow is None
                    or (company_id and workflow.company_id != company_id)
                    or not workflow.is_active
                ):
                    logger.warning("Manual trigger rejected", workflow_id=workflow_id, company_id=company_id)
                    raise NotFoundError("Workflow not found or not active")
                execution = await self._start_execution(
                    session,
                    workflow,
                    trigger_type=TriggerType.MANUAL.value,
                    trigger_data=trigger_data,
                    entity_type=entity_type,
                    entity_id=entity_id,
                )
        return execution

    async def _start_execution(
        self,
        session,
        workflow: Workflow,
        trigger_type: str,
        trigger_data: Optional[dict],
        entity_type: Optional[str],
        entity_id: Optional[str],
        now: Optional[datetime] = None,
    ):
        now = now or self.clock.now()
        graph = StepGraph.from_steps(await StepService(session).list_steps(workflow.id))
        first_index = graph.first_index()
        first = graph.get(first_index)

        executions = ExecutionService(session)
        execution = await executions.create_execution(
            workflow,
            trigger_type=trigger_type,
            trigger_data=trigger_data,
            entity_type=entity_type,
            entity_id=entity_id,
            start_index=first_index,
            start_step_id=first.id if first else None,
            now=now,
        )
        await executions.add_log(
            execution.id,
            LogStatus.STARTED,
            f"Execution started by {trigger_type} trigger",
            input_data=trigger_data or {},
        )
        if first is None:
            await executions.add_log(execution.id, LogStatus.COMPLETED, "Workflow has no steps")
        else:
            await self.scheduler.enqueue_step(session, execution, first_index, run_at=now)

        logger.info(
            "Execution started",
            execution_id=execution.id,
            workflow_id=workflow.id,
            trigger_type=trigger_type,
            entity_id=entity_id,
        )
        return execution
