"""
Evaluation of conditional-command predicates.

Variable conditions compare one entry of the variable map against an
expected value after normalizing both to the condition's value type. Script
conditions are delegated to a caller-supplied coroutine.
"""
from __future__ import annotations

import logging
import math
import operator as _op
from typing import Any, Awaitable, Callable, Mapping, Optional

from quickmacro.quickmacro_datatypes import Condition, ScriptCondition, VariableCondition

logger = logging.getLogger(__name__)

ScriptPredicate = Callable[[ScriptCondition], Awaitable[bool]]

_OPERATORS_REQUIRING_EXPECTED = frozenset({
    "equals", "notEquals",
    "lessThan", "lessThanOrEqual", "greaterThan", "greaterThanOrEqual",
    "contains", "notContains",
})

_BOOLEAN_TRUE_VALUES = frozenset({"true", "1", "yes", "on"})
_BOOLEAN_FALSE_VALUES = frozenset({"false", "0", "no", "off"})

_NUMERIC_COMPARATORS = {
    "lessThan": _op.lt,
    "lessThanOrEqual": _op.le,
    "greaterThan": _op.gt,
    "greaterThanOrEqual": _op.ge,
}

_OPERATOR_LABELS = {
    "equals": "equals",
    "notEquals": "does not equal",
    "lessThan": "is less than",
    "lessThanOrEqual": "is less than or equal to",
    "greaterThan": "is greater than",
    "greaterThanOrEqual": "is greater than or equal to",
    "contains": "contains",
    "notContains": "does not contain",
    "isTruthy": "is truthy",
    "isFalsy": "is falsy",
}


# ===================================================================
# Normalization helpers
# ===================================================================

def requires_expected_value(operator: str) -> bool:
    return operator in _OPERATORS_REQUIRING_EXPECTED


def default_value_type_for_operator(operator: str) -> str:
    if operator in _NUMERIC_COMPARATORS:
        return "number"
    if operator in ("equals", "notEquals", "contains", "notContains"):
        return "string"
    return "boolean"


def _to_number(value: Any) -> float:
    """Numeric coercion with NaN for anything that does not parse."""
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if value is None:
        return 0.0
    text = str(value).strip()
    if text == "":
        return 0.0
    try:
        return float(text)
    except ValueError:
        return math.nan


def _truthy(value: Any) -> bool:
    # Empty strings, zero, None and NaN are falsy
    if isinstance(value, float) and math.isnan(value):
        return False
    return bool(value)


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def normalize_expected_value(condition: VariableCondition) -> Any:
    if not requires_expected_value(condition.operator):
        return None
    if condition.expected_value is None:
        return None
    trimmed = condition.expected_value.strip()
    match condition.value_type:
        case "number":
            return _to_number(trimmed)
        case "boolean":
            lowered = trimmed.lower()
            if lowered in _BOOLEAN_TRUE_VALUES:
                return True
            if lowered in _BOOLEAN_FALSE_VALUES:
                return False
            return bool(trimmed)
        case _:
            return trimmed


def normalize_variable_value(value: Any, value_type: str) -> Any:
    match value_type:
        case "number":
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                return value
            return _to_number(value)
        case "boolean":
            if isinstance(value, bool):
                return value
            if isinstance(value, str):
                lowered = value.strip().lower()
                if lowered in _BOOLEAN_TRUE_VALUES:
                    return True
                if lowered in _BOOLEAN_FALSE_VALUES:
                    return False
            return _truthy(value)
        case _:
            return _as_text(value)


# ===================================================================
# Evaluation
# ===================================================================

async def evaluate_condition(condition: Condition,
                             variables: Mapping[str, Any],
                             evaluate_script_condition: Optional[ScriptPredicate] = None) -> bool:
    if isinstance(condition, ScriptCondition):
        if evaluate_script_condition is None:
            raise ValueError("script conditions need a script evaluator")
        return bool(await evaluate_script_condition(condition))
    return evaluate_variable_condition(condition, variables)


def evaluate_variable_condition(condition: VariableCondition, variables: Mapping[str, Any]) -> bool:
    variable_name = (condition.variable_name or "").strip()
    if not variable_name:
        logger.warning("Conditional command skipped: No variable name configured.")
        return False
    if variable_name not in variables:
        logger.warning("Conditional command skipped: Variable '%s' is not defined.", variable_name)
        return False

    raw_value = variables[variable_name]
    if condition.operator == "isTruthy":
        return _truthy(raw_value)
    if condition.operator == "isFalsy":
        return not _truthy(raw_value)

    if not requires_expected_value(condition.operator):
        return False

    expected = normalize_expected_value(condition)
    if expected is None:
        logger.warning("Conditional command: Operator '%s' requires a comparison value.", condition.operator)
        return False
    if condition.operator == "contains":
        return _evaluate_contains(raw_value, expected, condition)
    if condition.operator == "notContains":
        return not _evaluate_contains(raw_value, expected, condition)
    return _evaluate_comparable(raw_value, expected, condition)


def _evaluate_contains(raw_value: Any, expected: Any, condition: VariableCondition) -> bool:
    if raw_value is None:
        return False
    if isinstance(expected, str) and not expected:
        logger.warning("Conditional command: 'contains' operator requires a non-empty comparison value.")
        return False
    if isinstance(raw_value, (list, tuple, set)):
        return any(normalize_variable_value(item, condition.value_type) == expected for item in raw_value)
    if isinstance(raw_value, str):
        return _as_text(expected) in raw_value
    if isinstance(raw_value, (int, float)) and isinstance(expected, (int, float)):
        return raw_value == expected
    return _as_text(expected) in _as_text(raw_value)


def _evaluate_comparable(raw_value: Any, expected: Any, condition: VariableCondition) -> bool:
    value = normalize_variable_value(raw_value, condition.value_type)
    if condition.operator == "equals":
        return _strict_equal(value, expected)
    if condition.operator == "notEquals":
        return not _strict_equal(value, expected)
    comparator = _NUMERIC_COMPARATORS.get(condition.operator)
    if comparator is None:
        return False
    actual_n, expected_n = _to_number(value), _to_number(expected)
    if math.isnan(actual_n) or math.isnan(expected_n):
        logger.warning("Conditional command numeric comparison failed: non-numeric value encountered.")
        return False
    return comparator(actual_n, expected_n)


def _strict_equal(a: Any, b: Any) -> bool:
    # bool is an int subclass; True must not equal 1 here
    if isinstance(a, bool) != isinstance(b, bool):
        return False
    return a == b


# ===================================================================
# Summaries
# ===================================================================

def describe_variable_condition(condition: VariableCondition) -> str:
    variable_label = f"${condition.variable_name}" if condition.variable_name else "(missing variable)"
    operator_label = _OPERATOR_LABELS.get(condition.operator, condition.operator)
    expected_label = ""
    if requires_expected_value(condition.operator):
        raw = condition.expected_value or ""
        if not raw:
            expected_label = " (empty)"
        elif condition.value_type == "string":
            expected_label = f' "{raw}"'
        else:
            expected_label = f" {raw}"
    return f"{variable_label} {operator_label}{expected_label}".strip()


def describe_script_condition(condition: ScriptCondition) -> str:
    suffix = f"::{condition.export_name}" if condition.export_name else ""
    return f"script {condition.script_path}{suffix}"


def describe_condition(condition: Condition) -> str:
    if isinstance(condition, ScriptCondition):
        return describe_script_condition(condition)
    return describe_variable_condition(condition)
