"""
Action Registry: maps action step types to their implementations.

The step interpreter looks up the action class for a step's type and
instantiates it with the engine's collaborators.
"""

from typing import Dict, Optional, Type

from integrations.collaborators import Collaborators
from tasks.base_task import BaseAction
from tasks.implementations.messaging import MESSAGING_ACTION_TYPES
from tasks.implementations.records import RECORD_ACTION_TYPES
from tasks.implementations.webhook import WEBHOOK_ACTION_TYPES


class ActionRegistry:
    """Central registry for action step implementations."""

    def __init__(self):
        self._actions: Dict[str, Type[BaseAction]] = {}
        self._register_builtin_actions()

    def _register_builtin_actions(self):
        """Register all built-in action types."""
        for action_types in (MESSAGING_ACTION_TYPES, RECORD_ACTION_TYPES, WEBHOOK_ACTION_TYPES):
            for step_type, action_class in action_types.items():
                self.register(step_type, action_class)

    def register(self, step_type: str, action_class: Type[BaseAction]):
        """Register an action class for a step type."""
        self._actions[step_type] = action_class

    def get(self, step_type: str) -> Optional[Type[BaseAction]]:
        """Get an action class by step type."""
        return self._actions.get(step_type)

    def create_instance(self, step_type: str, collaborators: Collaborators) -> Optional[BaseAction]:
        """Create an action bound to ``collaborators``."""
        action_class = self.get(step_type)
        if action_class:
            return action_class(collaborators)
        return None

    @property
    def available_types(self) -> list:
        return list(self._actions.keys())


# Singleton
_registry: Optional[ActionRegistry] = None


def get_action_registry() -> ActionRegistry:
    """Get or create the singleton action registry."""
    global _registry
    if _registry is None:
        _registry = ActionRegistry()
    return _registry
