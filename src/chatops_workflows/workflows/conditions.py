"""Payload path resolution and condition evaluation.

A condition that cannot be evaluated (missing path, non-numeric operand for a
numeric operator) evaluates to ``False``; nothing here raises on bad data.
"""

from __future__ import annotations

import json
import math
from collections.abc import Mapping, Sequence
from typing import Any

from .models import Condition, ConditionGroup, ConditionOperator


class _Missing:
    __slots__ = ()

    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()


def resolve_path(payload: Any, path: str) -> Any:
    """Walk ``payload`` along a dot-separated path.

    Numeric segments index into lists. A leading ``$.`` or ``.`` is ignored.

    Returns:
        The value found, or ``MISSING`` when any segment is absent.
    """
    cleaned = path.strip()
    if cleaned.startswith("$."):
        cleaned = cleaned[2:]
    elif cleaned.startswith("."):
        cleaned = cleaned[1:]
    parts = [part for part in cleaned.split(".") if part]
    if not parts:
        return MISSING

    current: Any = payload
    for part in parts:
        if isinstance(current, Mapping):
            if part not in current:
                return MISSING
            current = current[part]
        elif isinstance(current, Sequence) and not isinstance(current, (str, bytes)):
            if not part.isdigit() or int(part) >= len(current):
                return MISSING
            current = current[int(part)]
        else:
            return MISSING
    return current


def to_text(value: Any) -> str:
    """Coerce a payload value to the string form used by string operators."""
    if value is None or value is MISSING:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            return str(int(value))
        return repr(value)
    return json.dumps(value, separators=(",", ":"), default=str)


def to_number(value: Any) -> float | None:
    """Coerce a value to a float, or ``None`` when it is not numeric."""
    if isinstance(value, bool) or value is None or value is MISSING:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    else:
        return None
    if math.isnan(number):
        return None
    return number


def evaluate_condition(condition: Condition, payload: Mapping[str, Any]) -> bool:
    """Evaluate one condition against an event payload."""
    value = resolve_path(payload, condition.path)
    operator = condition.operator

    if operator == ConditionOperator.EXISTS:
        return value is not MISSING
    if operator == ConditionOperator.NOT_EXISTS:
        return value is MISSING
    if value is MISSING:
        return False

    if operator in (
        ConditionOperator.GT,
        ConditionOperator.GTE,
        ConditionOperator.LT,
        ConditionOperator.LTE,
    ):
        actual = to_number(value)
        expected = to_number(condition.value)
        if actual is None or expected is None:
            return False
        if operator == ConditionOperator.GT:
            return actual > expected
        if operator == ConditionOperator.GTE:
            return actual >= expected
        if operator == ConditionOperator.LT:
            return actual < expected
        return actual <= expected

    actual_text = to_text(value)
    expected_text = to_text(condition.value)
    if operator == ConditionOperator.EQUALS:
        return actual_text == expected_text
    if operator == ConditionOperator.CONTAINS:
        return expected_text in actual_text
    if operator == ConditionOperator.STARTS_WITH:
        return actual_text.startswith(expected_text)
    if operator == ConditionOperator.ENDS_WITH:
        return actual_text.endswith(expected_text)
    return False


def evaluate_group(group: ConditionGroup | None, payload: Mapping[str, Any]) -> bool:
    """Evaluate a condition group; an absent or empty group is vacuously true."""
    if group is None or not group.conditions:
        return True
    checks = (evaluate_condition(condition, payload) for condition in group.conditions)
    if group.op == "all":
        return all(checks)
    return any(checks)
