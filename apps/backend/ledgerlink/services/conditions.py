"""Evaluation of a single rule condition against a transaction.

Each field type has one evaluation function over the closed operator set.
Anything that cannot be compared (missing field, wrong value type, malformed
regex, unparseable date) evaluates to False instead of raising.
"""

import re
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from ledgerlink.schemas.rules import ConditionField, ConditionOperator, RuleCondition
from ledgerlink.schemas.transaction import Transaction, to_utc_datetime


def evaluate_condition(transaction: Transaction, condition: RuleCondition) -> bool:
    """Return True when ``transaction`` satisfies ``condition``."""
    if condition.field == ConditionField.AMOUNT:
        if transaction.amount is None:
            return False
        return _evaluate_number(abs(transaction.amount), condition)

    if condition.field == ConditionField.DATE:
        if transaction.date is None:
            return False
        return _evaluate_date(transaction.date, condition)

    value = getattr(transaction, condition.field.value, None)
    if not isinstance(value, str):
        return False
    return _evaluate_text(value, condition)


def _evaluate_text(value: str, condition: RuleCondition) -> bool:
    operator = condition.operator
    expected = condition.value
    if not isinstance(expected, str):
        return False

    if operator == ConditionOperator.REGEX:
        flags = 0 if condition.case_sensitive else re.IGNORECASE
        try:
            return re.search(expected, value, flags) is not None
        except re.error:
            return False

    if not condition.case_sensitive:
        value = value.casefold()
        expected = expected.casefold()

    if operator == ConditionOperator.EQUALS:
        return value == expected
    if operator == ConditionOperator.CONTAINS:
        return expected in value
    if operator == ConditionOperator.STARTS_WITH:
        return value.startswith(expected)
    if operator == ConditionOperator.ENDS_WITH:
        return value.endswith(expected)
    # Ordering operators do not apply to text fields.
    return False


def _evaluate_number(amount: Decimal, condition: RuleCondition) -> bool:
    expected = _to_decimal(condition.value)
    if expected is None:
        return False

    operator = condition.operator
    if operator == ConditionOperator.EQUALS:
        return amount == expected
    if operator == ConditionOperator.GREATER_THAN:
        return amount > expected
    if operator == ConditionOperator.LESS_THAN:
        return amount < expected
    if operator == ConditionOperator.BETWEEN:
        upper = _to_decimal(condition.value_end)
        if upper is None:
            return False
        return expected <= amount <= upper
    return False


def _evaluate_date(value: datetime, condition: RuleCondition) -> bool:
    expected = _to_datetime(condition.value)
    if expected is None:
        return False

    value = to_utc_datetime(value)
    operator = condition.operator
    if operator == ConditionOperator.EQUALS:
        return value.date() == expected.date()
    if operator == ConditionOperator.GREATER_THAN:
        return value > expected
    if operator == ConditionOperator.LESS_THAN:
        return value < expected
    if operator == ConditionOperator.BETWEEN:
        upper = _to_datetime(condition.value_end)
        if upper is None:
            return False
        return expected <= value <= upper
    return False


def _to_decimal(raw: Any) -> Decimal | None:
    if raw is None or isinstance(raw, (bool, datetime)):
        return None
    try:
        result = raw if isinstance(raw, Decimal) else Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        return None
    if not result.is_finite():
        return None
    return result


def _to_datetime(raw: Any) -> datetime | None:
    if isinstance(raw, datetime):
        return to_utc_datetime(raw)
    if not isinstance(raw, str):
        return None
    try:
        parsed = datetime.fromisoformat(raw.strip())
    except ValueError:
        return None
    return to_utc_datetime(parsed)
