"""Business event trigger handler.

A workflow's ``trigger_config`` is a set of conditions on the event
payload. Every key must be present in the payload with the same value
(compared as text); a list value means "any of". Keys may be dotted
paths into nested payloads.

Example:
    trigger_config = {"new_stage": "qualified"}
    payload = {"old_stage": "new", "new_stage": "qualified"}  -> match
"""

import logging
from typing import Any, Optional

from core.constants import EVENT_TRIGGER_TYPES
from core.utils import get_path, has_path
from triggers.base import BaseTriggerHandler, TriggerEvent, TriggerResult

logger = logging.getLogger(__name__)


def _as_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def config_matches(config: Optional[dict], payload: dict) -> tuple[bool, Optional[str]]:
    """Check every trigger_config key against the payload."""
    for key, expected in (config or {}).items():
        if not has_path(payload, key):
            return False, f"payload has no '{key}'"
        actual = _as_text(get_path(payload, key))
        allowed = expected if isinstance(expected, list) else [expected]
        if actual not in {_as_text(v) for v in allowed}:
            return False, f"'{key}' is '{actual}', expected {allowed}"
    return True, None


class EventTriggerHandler(BaseTriggerHandler):
    """Handler for business-event triggers (lead stage change, RSVP, ...)."""

    trigger_types = EVENT_TRIGGER_TYPES

    def matches(self, workflow, event: TriggerEvent) -> TriggerResult:
        matched, reason = config_matches(workflow.trigger_config, event.payload or {})
        if not matched:
            logger.debug(f"Workflow {workflow.id} skipped for {event.trigger_type}: {reason}")
        return TriggerResult(workflow_id=workflow.id, matched=matched, reason=reason)

    def validate_config(self, config: dict) -> tuple[bool, Optional[str]]:
        if not isinstance(config, dict):
            return False, "trigger_config must be an object"
        for key, value in config.items():
            if isinstance(value, (dict,)):
                return False, f"'{key}' must be a scalar or a list of scalars"
        return True, None
