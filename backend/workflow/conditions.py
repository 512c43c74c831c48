"""Condition evaluation for branching steps.

A condition reads one field either from the live entity record or,
when the field is prefixed with ``trigger.`` / ``trigger_data.`` (or the
execution targets no entity), from the trigger payload snapshot.

Evaluation errors are raised as ConditionError; the interpreter treats
them as a false outcome.
"""

from datetime import date, datetime, timedelta
from typing import Any, Optional

from core.constants import ConditionOperator, ConditionType
from core.utils import as_naive_utc, get_path

TRIGGER_PREFIXES = ("trigger_data.", "trigger.")


class ConditionError(ValueError):
    """The condition could not be evaluated against the given data."""


def resolve_field(
    field: str,
    entity: Optional[dict],
    trigger_data: Optional[dict],
) -> Any:
    """Look up ``field`` in the entity or the trigger payload."""
    for prefix in TRIGGER_PREFIXES:
        if field.startswith(prefix):
            return get_path(trigger_data or {}, field[len(prefix):])
    if entity is None:
        return get_path(trigger_data or {}, field)
    return get_path(entity, field)


def uses_trigger_data(field: Optional[str]) -> bool:
    return bool(field) and field.startswith(TRIGGER_PREFIXES)


def _as_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value).strip()


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_datetime(value: Any) -> datetime:
    """Coerce a date, datetime or ISO-8601 string to naive UTC."""
    if isinstance(value, datetime):
        return as_naive_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str) and value.strip():
        try:
            return as_naive_utc(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))
        except ValueError:
            pass
    raise ConditionError(f"not a date: {value!r}")


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict, tuple, set)):
        return len(value) == 0
    return False


def _compare(actual: Any, expected: Any) -> int:
    """Three-way comparison: numbers first, then dates."""
    if actual is None:
        raise ConditionError("field has no value")
    a_num, e_num = _as_number(actual), _as_number(expected)
    if a_num is not None and e_num is not None:
        return (a_num > e_num) - (a_num < e_num)
    a_dt, e_dt = parse_datetime(actual), parse_datetime(expected)
    return (a_dt > e_dt) - (a_dt < e_dt)


def apply_operator(operator: str, actual: Any, expected: Optional[str]) -> bool:
    """Apply a ConditionOperator to an actual and an expected value."""
    op = ConditionOperator(operator)

    if op == ConditionOperator.IS_EMPTY:
        return _is_empty(actual)
    if op == ConditionOperator.IS_NOT_EMPTY:
        return not _is_empty(actual)

    if op in (ConditionOperator.EQUALS, ConditionOperator.NOT_EQUALS):
        matched = actual is not None and _as_text(actual) == _as_text(expected)
        return matched if op == ConditionOperator.EQUALS else not matched

    if op in (ConditionOperator.CONTAINS, ConditionOperator.NOT_CONTAINS):
        if actual is None:
            matched = False
        elif isinstance(actual, (list, tuple, set)):
            matched = any(_as_text(item) == _as_text(expected) for item in actual)
        else:
            matched = _as_text(expected).lower() in _as_text(actual).lower()
        return matched if op == ConditionOperator.CONTAINS else not matched

    if op == ConditionOperator.GREATER_THAN:
        return _compare(actual, expected) > 0
    return _compare(actual, expected) < 0


def evaluate_condition(
    node,
    entity: Optional[dict],
    trigger_data: Optional[dict],
    now: datetime,
) -> bool:
    """Evaluate a condition step.

    Args:
        node: StepNode of a condition step
        entity: Live entity record, or None when not available
        trigger_data: Trigger payload snapshot of the execution
        now: Naive UTC evaluation time

    Raises:
        ConditionError: the field value cannot be interpreted
    """
    if not node.condition_field:
        raise ConditionError("condition has no field")
    actual = resolve_field(node.condition_field, entity, trigger_data)

    if node.condition_type == ConditionType.DATE_PASSED.value:
        return parse_datetime(actual) <= now

    if node.condition_type == ConditionType.DAYS_BEFORE.value:
        try:
            days = int(node.condition_value)
        except (TypeError, ValueError):
            raise ConditionError(f"invalid day count: {node.condition_value!r}")
        remaining = parse_datetime(actual) - now
        return timedelta(0) <= remaining <= timedelta(days=days)

    if not node.condition_operator:
        raise ConditionError("condition has no operator")
    return apply_operator(node.condition_operator, actual, node.condition_value)
