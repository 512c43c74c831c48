"""Workflow service: definition CRUD, activation and templates."""

import logging
from typing import Any, Optional, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from core.constants import EVENT_TRIGGER_TYPES, TriggerType
from core.exceptions import NotFoundError, ValidationError
from db.models.workflow import Workflow
from services.base import BaseService
from services.step_service import StepService
from triggers.handlers.event import EventTriggerHandler
from triggers.handlers.schedule import ScheduleTriggerHandler
from workflow.templates import WORKFLOW_TEMPLATES

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "name",
    "description",
    "trigger_type",
    "trigger_config",
    "cron_expression",
    "timezone",
    "is_active",
    "extra_metadata",
)


def validate_trigger(
    trigger_type: str,
    trigger_config: Optional[dict],
    cron_expression: Optional[str],
    timezone: Optional[str],
) -> None:
    """Check a workflow's trigger settings.

    Raises:
        ValidationError: unknown trigger type or timezone, a malformed
            trigger_config, or a scheduled workflow without a valid cron
            expression
    """
    try:
        ttype = TriggerType(trigger_type)
    except ValueError:
        raise ValidationError(f"Unknown trigger type: {trigger_type}")

    try:
        ZoneInfo(timezone or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError(f"Unknown timezone: {timezone}")

    if ttype == TriggerType.SCHEDULED:
        is_valid, error = ScheduleTriggerHandler().validate_config(
            {"cron_expression": cron_expression, "timezone": timezone}
        )
    elif ttype.value in EVENT_TRIGGER_TYPES:
        is_valid, error = EventTriggerHandler().validate_config(trigger_config or {})
    else:
        is_valid, error = True, None
    if not is_valid:
        raise ValidationError(error)


class WorkflowService(BaseService[Workflow]):
    """Service for workflow definitions."""

    def __init__(self, db: AsyncSession):
        super().__init__(Workflow, db)
        self.steps = StepService(db)

    async def get_workflow(
        self,
        workflow_id: str,
        company_id: str,
        with_steps: bool = True,
    ) -> Workflow:
        """Get a workflow of the company, optionally with ordered steps.

        Raises:
            NotFoundError: workflow does not exist in the company
        """
        query = select(Workflow).where(
            Workflow.id == workflow_id,
            Workflow.company_id == company_id,
        )
        if with_steps:
            query = query.options(selectinload(Workflow.steps)).execution_options(
                populate_existing=True
            )
        result = await self.db.execute(query)
        workflow = result.scalar_one_or_none()
        if not workflow:
            raise NotFoundError("Workflow not found")
        return workflow

    async def list_workflows(
        self,
        company_id: str,
        is_active: Optional[bool] = None,
        trigger_type: Optional[str] = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[Sequence[Workflow], int]:
        """List the company's workflows, newest first."""
        return await self.list(
            company_id=company_id,
            offset=offset,
            limit=limit,
            filters={"is_active": is_active, "trigger_type": trigger_type},
        )

    async def create_workflow(
        self,
        company_id: str,
        name: str,
        trigger_type: str = TriggerType.MANUAL.value,
        description: Optional[str] = None,
        trigger_config: Optional[dict] = None,
        cron_expression: Optional[str] = None,
        timezone: str = "UTC",
        is_active: bool = True,
        extra_metadata: Optional[dict] = None,
        created_by: Optional[str] = None,
        steps: Optional[list[dict]] = None,
    ) -> Workflow:
        """Create a workflow and, optionally, its steps in order."""
        if not name or not name.strip():
            raise ValidationError("Workflow name is required")
        validate_trigger(trigger_type, trigger_config, cron_expression, timezone)

        workflow = await self.create({
            "company_id": company_id,
            "name": name.strip(),
            "description": description,
            "trigger_type": trigger_type,
            "trigger_config": trigger_config or {},
            "cron_expression": cron_expression,
            "timezone": timezone or "UTC",
            "is_active": is_active,
            "extra_metadata": extra_metadata or {},
            "created_by": created_by,
        })
        for step_data in steps or []:
            await self.steps.add_step(workflow.id, company_id, step_data)

        logger.info(f"Workflow {workflow.id} created for company {company_id} ({trigger_type})")
        return await self.get_workflow(workflow.id, company_id)

    async def update_workflow(
        self,
        workflow_id: str,
        company_id: str,
        changes: dict[str, Any],
    ) -> Workflow:
        """Apply a partial update to workflow fields (not steps)."""
        workflow = await self.get_workflow(workflow_id, company_id, with_steps=False)
        data = {k: v for k, v in changes.items() if k in EDITABLE_FIELDS}
        if "name" in data and (not data["name"] or not data["name"].strip()):
            raise ValidationError("Workflow name is required")

        validate_trigger(
            data.get("trigger_type", workflow.trigger_type),
            data.get("trigger_config", workflow.trigger_config),
            data.get("cron_expression", workflow.cron_expression),
            data.get("timezone", workflow.timezone),
        )
        for key, value in data.items():
            setattr(workflow, key, value)
        await self.db.flush()
        return await self.get_workflow(workflow_id, company_id)

    async def set_active(self, workflow_id: str, company_id: str, is_active: bool) -> Workflow:
        """Activate or deactivate a workflow."""
        return await self.update_workflow(workflow_id, company_id, {"is_active": is_active})

    async def delete_workflow(self, workflow_id: str, company_id: str) -> None:
        """Delete a workflow; its steps and executions are removed with it."""
        if not await self.hard_delete(workflow_id, company_id):
            raise NotFoundError("Workflow not found")
        logger.info(f"Workflow {workflow_id} deleted")

    async def get_active_for_trigger(self, company_id: str, trigger_type: str) -> Sequence[Workflow]:
        """Active workflows of the company listening for ``trigger_type``."""
        result = await self.db.execute(
            select(Workflow).where(
                Workflow.company_id == company_id,
                Workflow.trigger_type == trigger_type,
                Workflow.is_active == True,  # noqa: E712
            )
        )
        return result.scalars().all()

    async def get_active_scheduled(self) -> Sequence[Workflow]:
        """Active scheduled workflows across all companies."""
        result = await self.db.execute(
            select(Workflow).where(
                Workflow.trigger_type == TriggerType.SCHEDULED.value,
                Workflow.is_active == True,  # noqa: E712
            )
        )
        return result.scalars().all()

    # ─── Templates ─────────────────────────────────────────

    async def create_from_template(
        self,
        company_id: str,
        template_index: int,
        name: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> Workflow:
        """Instantiate a built-in template as an inactive workflow.

        Raises:
            NotFoundError: no template at ``template_index``
        """
        if template_index < 0 or template_index >= len(WORKFLOW_TEMPLATES):
            raise NotFoundError("Template not found")
        template = WORKFLOW_TEMPLATES[template_index]

        workflow = await self.create_workflow(
            company_id=company_id,
            name=name or template["name"],
            description=template["description"],
            trigger_type=template["trigger_type"],
            is_active=False,
            extra_metadata={"template": template["name"]},
            created_by=created_by,
        )

        step_defs = [
            {k: v for k, v in step.items() if not k.endswith("_offset")}
            for step in template["steps"]
        ]
        created = [await self.steps.add_step(workflow.id, company_id, d) for d in step_defs]

        # Branch targets are given relative to the condition's position
        for position, step in enumerate(template["steps"]):
            links = {}
            for branch in ("on_true", "on_false"):
                offset = step.get(f"{branch}_offset")
                if offset is not None:
                    links[f"{branch}_step_id"] = created[position + offset].id
            if links:
                await self.steps.update_step(workflow.id, company_id, created[position].id, links)

        logger.info(f"Workflow {workflow.id} created from template '{template['name']}'")
        return await self.get_workflow(workflow.id, company_id)
