"""Schedule trigger handler.

Scheduled workflows carry a 5-field cron expression and an IANA
timezone. Celery beat ticks once a minute; on each tick a workflow is
due when its expression matches the tick's minute in the workflow's
timezone. Missed ticks are not caught up.
"""

import logging
from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter

from core.constants import TriggerType
from triggers.base import BaseTriggerHandler, TriggerEvent, TriggerResult

logger = logging.getLogger(__name__)


def minute_start(now: datetime) -> datetime:
    """Truncate a naive UTC time to its minute."""
    return now.replace(second=0, microsecond=0)


def local_minute(now: datetime, tz_name: Optional[str]) -> datetime:
    """The tick's minute as naive wall-clock time in ``tz_name``."""
    tz = ZoneInfo(tz_name or "UTC")
    aware = minute_start(now).replace(tzinfo=timezone.utc).astimezone(tz)
    return aware.replace(tzinfo=None)


class ScheduleTriggerHandler(BaseTriggerHandler):
    """Handler for cron-based scheduled workflows.

    Config (on the workflow):
        cron_expression: "0 9 * * MON"     # standard cron expression
        timezone: "Europe/Sofia"           # IANA timezone
    """

    trigger_types = frozenset({TriggerType.SCHEDULED.value})

    def is_due(self, workflow, now: datetime) -> bool:
        """Whether the workflow's cron expression matches ``now``'s minute."""
        if not workflow.cron_expression:
            return False
        try:
            return croniter.match(workflow.cron_expression, local_minute(now, workflow.timezone))
        except (ValueError, KeyError, ZoneInfoNotFoundError) as e:
            logger.warning(f"Workflow {workflow.id} has an unusable schedule: {e}")
            return False

    def matches(self, workflow, event: TriggerEvent) -> TriggerResult:
        now = datetime.fromisoformat(event.payload["scheduled_at"])
        matched = self.is_due(workflow, now)
        return TriggerResult(
            workflow_id=workflow.id,
            matched=matched,
            reason=None if matched else "cron expression does not match this minute",
        )

    def next_run(self, workflow, now: datetime) -> Optional[datetime]:
        """Next firing time after ``now`` as naive UTC."""
        if not workflow.cron_expression:
            return None
        tz = ZoneInfo(workflow.timezone or "UTC")
        start = now.replace(tzinfo=timezone.utc).astimezone(tz)
        nxt = croniter(workflow.cron_expression, start).get_next(datetime)
        return nxt.astimezone(timezone.utc).replace(tzinfo=None)

    def validate_config(self, config: dict) -> tuple[bool, Optional[str]]:
        """Validate ``{"cron_expression", "timezone"}``."""
        expr = config.get("cron_expression")
        if not expr:
            return False, "Missing required field: cron_expression"
        if not croniter.is_valid(expr):
            return False, f"Invalid cron expression: {expr}"
        try:
            ZoneInfo(config.get("timezone") or "UTC")
        except (ZoneInfoNotFoundError, ValueError):
            return False, f"Unknown timezone: {config.get('timezone')}"
        return True, None

