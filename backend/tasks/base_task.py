"""
Base action interface for workflow action steps.

Every side-effecting step type (send email, create task, webhook, etc.)
has an action class that inherits from BaseAction and implements
execute() by calling the matching collaborator.
"""

import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import structlog

from integrations.collaborators import Collaborators

logger = structlog.get_logger(__name__)


class ActionResult:
    """Standardized result of an action step."""

    def __init__(
        self,
        success: bool,
        output: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
        duration_ms: float = 0,
    ):
        self.success = success
        self.output = output or {}
        self.error = error
        self.duration_ms = duration_ms

    @classmethod
    def from_response(cls, response: Optional[dict]) -> "ActionResult":
        """Build a result from a collaborator's ``{success, error?, ...}`` dict."""
        response = dict(response or {})
        success = bool(response.pop("success", False))
        error = response.pop("error", None)
        if not success and not error:
            error = "Collaborator reported failure"
        output = {k: v for k, v in response.items() if v is not None}
        return cls(success=success, output=output, error=error)


class BaseAction(ABC):
    """
    Abstract base class for action step implementations.

    Subclasses must implement:
    - execute(config, entity_id, context) -> ActionResult
    - step_type (class property)
    - display_name (class property)
    """

    step_type: str = "base"
    display_name: str = "Base Action"

    def __init__(self, collaborators: Collaborators):
        self.collaborators = collaborators

    @abstractmethod
    async def execute(
        self,
        config: Dict[str, Any],
        entity_id: Optional[str],
        context: Dict[str, Any],
    ) -> ActionResult:
        """
        Perform the action.

        Args:
            config: Validated step configuration
            entity_id: Record the execution operates on
            context: Execution context (company_id, execution_id, ...)

        Returns:
            ActionResult with output or error
        """
        pass

    async def run(
        self,
        config: Dict[str, Any],
        entity_id: Optional[str],
        context: Optional[Dict[str, Any]] = None,
    ) -> ActionResult:
        """
        Run the action with timing and error handling.

        This is the entry point called by the step interpreter. Exceptions
        from the collaborator become a failed result.
        """
        start = time.monotonic()
        context = context or {}
        try:
            result = await self.execute(config, entity_id, context)
        except Exception as e:
            duration_ms = (time.monotonic() - start) * 1000
            logger.error(
                "Action failed",
                step_type=self.step_type,
                action=self.display_name,
                execution_id=context.get("execution_id"),
                error=str(e),
                duration_ms=round(duration_ms, 2),
            )
            return ActionResult(success=False, error=str(e) or type(e).__name__, duration_ms=duration_ms)

        result.duration_ms = (time.monotonic() - start) * 1000
        logger.info(
            "Action completed",
            step_type=self.step_type,
            action=self.display_name,
            execution_id=context.get("execution_id"),
            success=result.success,
            duration_ms=round(result.duration_ms, 2),
        )
        return result


class CollaboratorAction(BaseAction):
    """Action that forwards its config to a single collaborator method."""

    collaborator_method: str = ""

    async def execute(self, config, entity_id, context) -> ActionResult:
        method = getattr(self.collaborators, self.collaborator_method)
        return ActionResult.from_response(await method(config, entity_id, context))
