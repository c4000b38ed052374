"""
Tests for workflow node helpers: conditions, templates, durations.
"""

import pytest

from slaflow.workflows.domain import (
    ConditionEvaluator, ExecutionContext, render_template, convert_to_minutes, config_value
)


class TestConditionEvaluator:
    """Tests for ConditionEvaluator.evaluate."""

    @pytest.mark.parametrize("left, operator, right, expected", [
        ("urgent", "equals", "urgent", True),
        ("urgent", "equals", "Urgent", False),
        ("10", "equals", 10, True),
        (10.0, "equals", "10", True),
        ("high", "not_equals", "low", True),
        (None, "equals", None, True),
        (None, "equals", "x", False),
        (15, "greater_than", "10", True),
        ("15", "less_than", 10, False),
        (10, "greater_or_equal", 10, True),
        (9.5, "less_or_equal", 10, True),
        ("abc", "greater_than", 1, False),
        (None, "less_than", 1, False),
        ("Printer is on fire", "contains", "FIRE", True),
        ("quiet", "contains", "fire", False),
        ("a", "matches", "a", False),
        ("a", None, "a", False),
    ])
    def test_operators(self, left, operator, right, expected):
        assert ConditionEvaluator.evaluate(left, operator, right) is expected

    def test_booleans_are_not_numbers(self):
        assert ConditionEvaluator.evaluate(True, "greater_than", 0) is False

    def test_context_lookup_falls_back_to_ticket(self):
        context = ExecutionContext(ticket={"channel": "email"})

        config = {"field": "channel", "operator": "equals", "value": "email"}

        assert ConditionEvaluator.evaluate_in_context(config, context) is True

    def test_context_value_wins_over_ticket(self):
        context = ExecutionContext(priority="high", ticket={"priority": "low"})

        config = {"field": "priority", "operator": "equals", "value": "high"}

        assert ConditionEvaluator.evaluate_in_context(config, context) is True

    def test_missing_field_config(self):
        context = ExecutionContext(priority="high")

        assert ConditionEvaluator.evaluate_in_context({"operator": "equals", "value": "high"}, context) is False


class TestRenderTemplate:
    """Tests for message template substitution."""

    def test_known_variables(self):
        context = ExecutionContext(conversation_id="T9", priority="high", time_remaining=12, status="open")

        rendered = render_template(
            "{{ticketId}} [{{priority}}] {{timeRemaining}}m {{status}}", context
        )

        assert rendered == "T9 [high] 12m open"

    def test_unset_and_unknown_variables(self):
        context = ExecutionContext(conversation_id="T9")

        assert render_template("{{priority}}|{{agentName}}", context) == "|{{agentName}}"

    def test_empty_template(self):
        assert render_template(None, ExecutionContext()) == ""


class TestDurations:
    """Tests for convert_to_minutes."""

    @pytest.mark.parametrize("value, unit, expected", [
        (30, "minutes", 30),
        ("4", "hours", 240),
        (2, "days", 2880),
        (45, None, 45),
        ("1.5", "hours", 60),
        ("soon", "hours", 0),
        (None, "days", 0),
    ])
    def test_convert(self, value, unit, expected):
        assert convert_to_minutes(value, unit) == expected


class TestConfigValue:
    """Tests for snake/camel case config access."""

    def test_snake_case_preferred(self):
        config = {"sla_policy_id": "a", "slaPolicyId": "b"}

        assert config_value(config, "sla_policy_id") == "a"

    def test_camel_case_accepted(self):
        assert config_value({"breachActions": ["send_email"]}, "breach_actions") == ["send_email"]

    def test_default(self):
        assert config_value({}, "threshold", 80) == 80


class TestExecutionContext:
    """Tests for the immutable context bag."""

    def test_with_updates_returns_new_context(self):
        context = ExecutionContext(priority="low")

        updated = context.with_updates({"priority": "high", "policy_id": "p"})

        assert context.priority == "low"
        assert updated.priority == "high"
        assert updated.policy_id == "p"

    def test_is_read_only(self):
        context = ExecutionContext(priority="low")

        with pytest.raises(TypeError):
            context["priority"] = "high"
