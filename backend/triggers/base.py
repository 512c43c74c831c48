"""Base trigger classes."""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from typing import Any, Optional


@dataclass
class TriggerEvent:
    """A business event reported by the surrounding system.

    This is the payload that the trigger evaluator matches against
    active workflows.
    """

    company_id: str
    trigger_type: str
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    payload: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "TriggerEvent":
        return cls(
            company_id=data["company_id"],
            trigger_type=data["trigger_type"],
            entity_type=data.get("entity_type"),
            entity_id=data.get("entity_id"),
            payload=dict(data.get("payload") or {}),
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class TriggerResult:
    """Outcome of matching one workflow against a trigger."""

    workflow_id: str
    matched: bool
    execution_id: Optional[str] = None
    reason: Optional[str] = None


class BaseTriggerHandler(ABC):
    """Abstract base class for trigger matching.

    Each family of trigger types (business events, cron schedule)
    implements this interface. The TriggerEvaluator asks the handler
    whether an active workflow should start.
    """

    trigger_types: frozenset[str] = frozenset()

    def handles(self, trigger_type: str) -> bool:
        return trigger_type in self.trigger_types

    @abstractmethod
    def matches(self, workflow, event: TriggerEvent) -> TriggerResult:
        """Decide whether ``workflow`` should start for ``event``.

        Args:
            workflow: Active Workflow with the event's trigger type
            event: Incoming event

        Returns:
            TriggerResult with matched and, if not, the reason
        """
        ...

    def validate_config(self, config: dict) -> tuple[bool, Optional[str]]:
        """Validate trigger configuration.

        Returns:
            Tuple of (is_valid, error_message)
        """
        return True, None
