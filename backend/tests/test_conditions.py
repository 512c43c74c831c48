"""Tests for condition evaluation."""

from datetime import datetime

import pytest

from workflow.conditions import (
    ConditionError,
    apply_operator,
    evaluate_condition,
    parse_datetime,
    resolve_field,
)
from workflow.graph import StepNode

NOW = datetime(2026, 6, 1, 9, 0, 0)


def _condition(**kwargs):
    return StepNode(id="c1", order=0, step_type="condition", **kwargs)


@pytest.mark.unit
class TestResolveField:
    def test_entity_field(self):
        assert resolve_field("rsvp_status", {"rsvp_status": "confirmed"}, {}) == "confirmed"

    def test_nested_entity_field(self):
        assert resolve_field("client.name", {"client": {"name": "Ana"}}, {}) == "Ana"

    def test_trigger_prefix_reads_payload(self):
        entity = {"new_stage": "entity"}
        payload = {"new_stage": "qualified"}
        assert resolve_field("trigger.new_stage", entity, payload) == "qualified"
        assert resolve_field("trigger_data.new_stage", entity, payload) == "qualified"

    def test_no_entity_falls_back_to_payload(self):
        assert resolve_field("amount", None, {"amount": 10}) == 10

    def test_missing_field(self):
        assert resolve_field("nope", {}, {}) is None


@pytest.mark.unit
class TestApplyOperator:
    def test_equals_compares_as_text(self):
        assert apply_operator("equals", 5, "5")
        assert apply_operator("equals", True, "true")
        assert not apply_operator("equals", None, "x")
        assert apply_operator("not_equals", "a", "b")

    def test_contains(self):
        assert apply_operator("contains", "Premium Package", "premium")
        assert apply_operator("contains", ["vip", "repeat"], "vip")
        assert not apply_operator("contains", None, "x")
        assert apply_operator("not_contains", "basic", "premium")

    def test_numeric_comparison(self):
        assert apply_operator("greater_than", "1500", "1000")
        assert apply_operator("less_than", 3, "10")
        assert not apply_operator("greater_than", 10, "10")

    def test_date_comparison(self):
        assert apply_operator("greater_than", "2026-07-01", "2026-06-01")

    def test_comparison_without_value_raises(self):
        with pytest.raises(ConditionError):
            apply_operator("greater_than", None, "1")

    def test_emptiness(self):
        assert apply_operator("is_empty", "  ", None)
        assert apply_operator("is_empty", [], None)
        assert apply_operator("is_not_empty", 0, None)


@pytest.mark.unit
class TestEvaluateCondition:
    def test_field_equals(self):
        node = _condition(condition_field="rsvp_status", condition_operator="equals", condition_value="confirmed")
        assert evaluate_condition(node, {"rsvp_status": "confirmed"}, {}, NOW)
        assert not evaluate_condition(node, {"rsvp_status": "declined"}, {}, NOW)

    def test_date_passed(self):
        node = _condition(condition_type="date_passed", condition_field="due_date")
        assert evaluate_condition(node, {"due_date": "2026-05-31"}, {}, NOW)
        assert evaluate_condition(node, {"due_date": "2026-06-01T09:00:00"}, {}, NOW)
        assert not evaluate_condition(node, {"due_date": "2026-06-02"}, {}, NOW)

    def test_days_before(self):
        node = _condition(condition_type="days_before", condition_field="event_date", condition_value="7")
        assert evaluate_condition(node, {"event_date": "2026-06-05T09:00:00"}, {}, NOW)
        assert evaluate_condition(node, {"event_date": "2026-06-08T09:00:00"}, {}, NOW)
        assert not evaluate_condition(node, {"event_date": "2026-06-20"}, {}, NOW)
        # Already past
        assert not evaluate_condition(node, {"event_date": "2026-05-30"}, {}, NOW)

    def test_timezone_aware_dates_normalized(self):
        node = _condition(condition_type="date_passed", condition_field="due_date")
        assert evaluate_condition(node, {"due_date": "2026-06-01T10:30:00+02:00"}, {}, NOW)

    def test_bad_date_raises(self):
        node = _condition(condition_type="date_passed", condition_field="due_date")
        with pytest.raises(ConditionError):
            evaluate_condition(node, {"due_date": "next tuesday"}, {}, NOW)

    def test_missing_field_raises(self):
        with pytest.raises(ConditionError):
            evaluate_condition(_condition(condition_operator="equals"), {}, {}, NOW)


@pytest.mark.unit
def test_parse_datetime_from_z_suffix():
    assert parse_datetime("2026-06-01T07:00:00Z") == datetime(2026, 6, 1, 7, 0, 0)
