"""
Conditions - Field/operator/value predicates used by router and filter nodes.

String operators compare case-insensitively on the text form of both
sides; gt/gte/lt/lte coerce to numbers; regex compiles the compare
value and fails closed on an invalid pattern.
"""

from __future__ import annotations

import json
import math
import re
from typing import Any, Callable, Dict


def to_text(value: Any) -> str:
    """Text form of a value for string comparisons and templates."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"), default=str)
    return str(value)


def to_number(value: Any) -> float:
    """Numeric coercion; NaN when the value has no numeric reading."""
    if value is None:
        return math.nan
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return 0.0
        try:
            return float(stripped)
        except ValueError:
            return math.nan
    return math.nan


def is_empty(value: Any) -> bool:
    if not value:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False


def _equals(field: Any, compare: Any) -> bool:
    return field == compare or to_text(field) == to_text(compare)


def _regex(field: Any, compare: Any) -> bool:
    try:
        return re.search(to_text(compare), to_text(field)) is not None
    except re.error:
        return False


OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "equals": _equals,
    "notEquals": lambda f, c: not _equals(f, c),
    "contains": lambda f, c: to_text(c).lower() in to_text(f).lower(),
    "notContains": lambda f, c: to_text(c).lower() not in to_text(f).lower(),
    "startsWith": lambda f, c: to_text(f).lower().startswith(to_text(c).lower()),
    "endsWith": lambda f, c: to_text(f).lower().endswith(to_text(c).lower()),
    "gt": lambda f, c: to_number(f) > to_number(c),
    "gte": lambda f, c: to_number(f) >= to_number(c),
    "lt": lambda f, c: to_number(f) < to_number(c),
    "lte": lambda f, c: to_number(f) <= to_number(c),
    "exists": lambda f, c: f is not None,
    "notExists": lambda f, c: f is None,
    "isEmpty": lambda f, c: is_empty(f),
    "isNotEmpty": lambda f, c: not is_empty(f),
    "regex": _regex,
}


def evaluate_condition(field_value: Any, operator: str, compare_value: Any = None) -> bool:
    """
    Evaluate one condition.

    Args:
        field_value: Value read from the data being tested
        operator: One of OPERATORS
        compare_value: Right-hand side from the node config

    Returns:
        True if the condition holds; unknown operators never match
    """
    fn = OPERATORS.get(operator)
    if fn is None:
        return False
    return fn(field_value, compare_value)


__all__ = ["OPERATORS", "evaluate_condition", "is_empty", "to_number", "to_text"]
