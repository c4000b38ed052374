"""
Workflow Value Objects
=======================

Stateless helpers used by node handlers: condition evaluation, message
templates, duration conversion and node config access.
"""

import re
from typing import Any, Mapping, Optional

from slaflow.workflows.domain.entities import ExecutionContext


class ConditionOperator(str):
    """Operators supported by condition_if nodes."""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_OR_EQUAL = "greater_or_equal"
    LESS_OR_EQUAL = "less_or_equal"
    CONTAINS = "contains"


def _to_float(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_text(value: Any) -> str:
    return "" if value is None else str(value)


class ConditionEvaluator:
    """
    Evaluates `left <operator> right` for condition nodes.

    - equals / not_equals compare the string forms, or numerically when
      both sides parse as numbers
    - numeric operators parse both sides as floats; unparsable -> False
    - contains is a case-insensitive substring test
    - unknown operators -> False
    """

    _NUMERIC = {
        ConditionOperator.GREATER_THAN: lambda a, b: a > b,
        ConditionOperator.LESS_THAN: lambda a, b: a < b,
        ConditionOperator.GREATER_OR_EQUAL: lambda a, b: a >= b,
        ConditionOperator.LESS_OR_EQUAL: lambda a, b: a <= b,
    }

    @classmethod
    def evaluate(cls, left: Any, operator: Optional[str], right: Any) -> bool:
        if operator in (ConditionOperator.EQUALS, ConditionOperator.NOT_EQUALS):
            equal = cls._loose_equals(left, right)
            return equal if operator == ConditionOperator.EQUALS else not equal

        if operator in cls._NUMERIC:
            a, b = _to_float(left), _to_float(right)
            if a is None or b is None:
                return False
            return cls._NUMERIC[operator](a, b)

        if operator == ConditionOperator.CONTAINS:
            return _as_text(right).lower() in _as_text(left).lower()

        return False

    @staticmethod
    def _loose_equals(left: Any, right: Any) -> bool:
        if left is None or right is None:
            return left is None and right is None
        a, b = _to_float(left), _to_float(right)
        if a is not None and b is not None:
            return a == b
        return str(left) == str(right)

    @classmethod
    def evaluate_in_context(cls, config: Mapping[str, Any], context: ExecutionContext) -> bool:
        field = config.get("field")
        left = context.lookup(field) if field else None
        return cls.evaluate(left, config.get("operator"), config.get("value"))


_TEMPLATE_VARIABLES = {
    "ticketId": "conversation_id",
    "priority": "priority",
    "timeRemaining": "time_remaining",
    "status": "status",
}
_TEMPLATE_PATTERN = re.compile(r"\{\{(\w+)\}\}")


def render_template(template: Optional[str], context: ExecutionContext) -> str:
    """
    Substitute {{ticketId}}, {{priority}}, {{timeRemaining}} and {{status}}.

    Unknown placeholders are left untouched; unset values render empty.
    """
    if not template:
        return ""

    def replace(match: "re.Match[str]") -> str:
        key = _TEMPLATE_VARIABLES.get(match.group(1))
        if key is None:
            return match.group(0)
        return _as_text(context.get(key))

    return _TEMPLATE_PATTERN.sub(replace, template)


_UNIT_MINUTES = {"minutes": 1, "hours": 60, "days": 60 * 24}


def convert_to_minutes(value: Any, unit: Optional[str]) -> int:
    """Duration value + unit (minutes/hours/days) in minutes; unparsable -> 0."""
    try:
        amount = int(float(value))
    except (TypeError, ValueError):
        amount = 0
    return amount * _UNIT_MINUTES.get(unit or "minutes", 1)


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def config_value(config: Mapping[str, Any], key: str, default: Any = None) -> Any:
    """
    Read a node config value by snake_case key.

    Graphs saved by the visual editor use camelCase keys
    (e.g. slaPolicyId); both spellings are accepted.
    """
    if key in config:
        return config[key]
    return config.get(_camel(key), default)
