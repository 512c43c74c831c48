"""Indexed step graph of a workflow.

Steps are held in an arena keyed by ``step_order``; condition branch
targets are resolved from step ids to orders once, when the graph is
built. A position with no step, or a branch target that no longer
exists, resolves to ``None`` and the execution completes.

Default sequencing moves to the next greater ``step_order`` but skips
steps that are the branch target of some condition: those are entered
only through their branch, so the two arms of a condition never run
one after the other.
"""

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from core.constants import StepType


@dataclass(frozen=True)
class StepNode:
    """Immutable snapshot of one WorkflowStep."""

    id: str
    order: int
    step_type: str
    name: Optional[str] = None
    is_active: bool = True
    config: dict[str, Any] = field(default_factory=dict)
    wait_duration: Optional[int] = None
    wait_unit: Optional[str] = None
    condition_type: Optional[str] = None
    condition_field: Optional[str] = None
    condition_operator: Optional[str] = None
    condition_value: Optional[str] = None
    on_true_step_id: Optional[str] = None
    on_false_step_id: Optional[str] = None

    @classmethod
    def from_model(cls, step) -> "StepNode":
        return cls(
            id=step.id,
            order=step.step_order,
            step_type=step.step_type,
            name=step.name,
            is_active=step.is_active,
            config=dict(step.config or {}),
            wait_duration=step.wait_duration,
            wait_unit=step.wait_unit,
            condition_type=step.condition_type,
            condition_field=step.condition_field,
            condition_operator=step.condition_operator,
            condition_value=step.condition_value,
            on_true_step_id=step.on_true_step_id,
            on_false_step_id=step.on_false_step_id,
        )

    @property
    def label(self) -> str:
        return self.name or self.step_type

    @property
    def is_condition(self) -> bool:
        return self.step_type == StepType.CONDITION.value

    @property
    def is_wait(self) -> bool:
        return self.step_type == StepType.WAIT.value


class StepGraph:
    """Arena of steps with order-based navigation."""

    def __init__(self, nodes: Iterable[StepNode]):
        self._by_order: dict[int, StepNode] = {}
        self._order_by_id: dict[str, int] = {}
        for node in nodes:
            self._by_order[node.order] = node
            self._order_by_id[node.id] = node.order
        self._orders = sorted(self._by_order)
        self._branch_targets = frozenset(
            self._order_by_id[target]
            for node in self._by_order.values()
            if node.is_condition
            for target in (node.on_true_step_id, node.on_false_step_id)
            if target in self._order_by_id
        )

    @classmethod
    def from_steps(cls, steps) -> "StepGraph":
        """Build a graph from WorkflowStep rows."""
        return cls(StepNode.from_model(step) for step in steps)

    def __len__(self) -> int:
        return len(self._orders)

    def __bool__(self) -> bool:
        return bool(self._orders)

    def get(self, index: Optional[int]) -> Optional[StepNode]:
        """Return the step at ``index`` or None."""
        if index is None:
            return None
        return self._by_order.get(index)

    def first_index(self) -> Optional[int]:
        return self._orders[0] if self._orders else None

    def next_index(self, index: int) -> Optional[int]:
        """Next position in the default sequence after ``index``."""
        for order in self._orders:
            if order > index and order not in self._branch_targets:
                return order
        return None

    def index_of(self, step_id: Optional[str]) -> Optional[int]:
        if step_id is None:
            return None
        return self._order_by_id.get(step_id)

    def branch_index(self, node: StepNode, outcome: bool) -> Optional[int]:
        """Resolve a condition's branch for ``outcome`` to a position."""
        return self.index_of(node.on_true_step_id if outcome else node.on_false_step_id)

    def is_branch_target(self, index: int) -> bool:
        return index in self._branch_targets
