"""Tests for single-condition evaluation.

GIVEN: A transaction and one rule condition
WHEN: The condition is evaluated
THEN: Text, amount and date operators behave per field type and never raise
"""

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from ledgerlink.schemas import ConditionField, ConditionOperator, RuleCondition
from ledgerlink.services import evaluate_condition
from factories import TransactionFactory


def condition(field, operator, value, value_end=None, case_sensitive=False) -> RuleCondition:
    return RuleCondition(
        field=field,
        operator=operator,
        value=value,
        value_end=value_end,
        case_sensitive=case_sensitive,
    )


class TestTextConditions:
    @pytest.mark.parametrize(
        ("operator", "value", "expected"),
        [
            (ConditionOperator.CONTAINS, "starbucks", True),
            (ConditionOperator.EQUALS, "starbucks store #1234", True),
            (ConditionOperator.STARTS_WITH, "STARBUCKS", True),
            (ConditionOperator.ENDS_WITH, "#1234", True),
            (ConditionOperator.ENDS_WITH, "starbucks", False),
            (ConditionOperator.REGEX, r"store\s+#\d+", True),
        ],
    )
    def test_operators_are_case_insensitive_by_default(self, operator, value, expected):
        """GIVEN: A mixed-case description
        WHEN: Evaluating a text operator without case sensitivity
        THEN: Case is ignored"""
        txn = TransactionFactory.build(description="Starbucks Store #1234")
        assert evaluate_condition(txn, condition(ConditionField.DESCRIPTION, operator, value)) is expected

    def test_case_sensitive_contains(self):
        txn = TransactionFactory.build(description="Starbucks Store")
        cond = condition(ConditionField.DESCRIPTION, ConditionOperator.CONTAINS, "starbucks", case_sensitive=True)
        assert evaluate_condition(txn, cond) is False

    def test_case_sensitive_regex(self):
        txn = TransactionFactory.build(description="Starbucks Store")
        cond = condition(ConditionField.DESCRIPTION, ConditionOperator.REGEX, "^starbucks", case_sensitive=True)
        assert evaluate_condition(txn, cond) is False

    def test_malformed_regex_is_false(self):
        """GIVEN: An invalid pattern
        WHEN: Evaluating it
        THEN: The result is False and nothing is raised"""
        txn = TransactionFactory.build(description="anything")
        cond = condition(ConditionField.DESCRIPTION, ConditionOperator.REGEX, "([unclosed")
        assert evaluate_condition(txn, cond) is False

    def test_account_field(self):
        txn = TransactionFactory.build(account="Chase Checking")
        cond = condition(ConditionField.ACCOUNT, ConditionOperator.EQUALS, "chase checking")
        assert evaluate_condition(txn, cond) is True

    def test_ordering_operator_on_text_is_false(self):
        txn = TransactionFactory.build(description="Rent")
        cond = condition(ConditionField.DESCRIPTION, ConditionOperator.GREATER_THAN, "A")
        assert evaluate_condition(txn, cond) is False


class TestAmountConditions:
    @pytest.mark.parametrize(
        ("operator", "value", "value_end", "expected"),
        [
            (ConditionOperator.EQUALS, Decimal("42.50"), None, True),
            (ConditionOperator.GREATER_THAN, 40, None, True),
            (ConditionOperator.LESS_THAN, 40, None, False),
            (ConditionOperator.BETWEEN, 42.5, 50, True),
            (ConditionOperator.BETWEEN, 10, Decimal("42.50"), True),
            (ConditionOperator.BETWEEN, 43, 50, False),
        ],
    )
    def test_amount_compares_absolute_value(self, operator, value, value_end, expected):
        """GIVEN: An outflow of -42.50
        WHEN: Comparing amounts
        THEN: The absolute value is used and between is inclusive"""
        txn = TransactionFactory.build(amount=Decimal("-42.50"))
        cond = condition(ConditionField.AMOUNT, operator, value, value_end)
        assert evaluate_condition(txn, cond) is expected

    def test_numeric_string_value(self):
        txn = TransactionFactory.build(amount=Decimal("-100.00"))
        cond = condition(ConditionField.AMOUNT, ConditionOperator.GREATER_THAN, "99.99")
        assert evaluate_condition(txn, cond) is True

    def test_non_numeric_value_is_false(self):
        txn = TransactionFactory.build(amount=Decimal("-100.00"))
        cond = condition(ConditionField.AMOUNT, ConditionOperator.GREATER_THAN, "lots")
        assert evaluate_condition(txn, cond) is False

    def test_between_without_upper_bound_is_false(self):
        txn = TransactionFactory.build(amount=Decimal("5"))
        cond = condition(ConditionField.AMOUNT, ConditionOperator.BETWEEN, 1)
        assert evaluate_condition(txn, cond) is False

    def test_text_operator_on_amount_is_false(self):
        txn = TransactionFactory.build(amount=Decimal("5"))
        cond = condition(ConditionField.AMOUNT, ConditionOperator.CONTAINS, "5")
        assert evaluate_condition(txn, cond) is False


class TestDateConditions:
    def test_equals_compares_calendar_day(self):
        txn = TransactionFactory.build(date=datetime(2024, 3, 5, 18, 30, tzinfo=UTC))
        cond = condition(ConditionField.DATE, ConditionOperator.EQUALS, "2024-03-05")
        assert evaluate_condition(txn, cond) is True

    def test_between_is_inclusive(self):
        txn = TransactionFactory.build(date=datetime(2024, 3, 1, tzinfo=UTC))
        cond = condition(
            ConditionField.DATE,
            ConditionOperator.BETWEEN,
            datetime(2024, 3, 1, tzinfo=UTC),
            datetime(2024, 3, 31, tzinfo=UTC),
        )
        assert evaluate_condition(txn, cond) is True

    def test_greater_than_with_iso_string(self):
        txn = TransactionFactory.build(date=datetime(2024, 3, 10, tzinfo=UTC))
        cond = condition(ConditionField.DATE, ConditionOperator.GREATER_THAN, "2024-03-01T00:00:00+00:00")
        assert evaluate_condition(txn, cond) is True

    def test_unparseable_date_is_false(self):
        txn = TransactionFactory.build()
        cond = condition(ConditionField.DATE, ConditionOperator.LESS_THAN, "next tuesday")
        assert evaluate_condition(txn, cond) is False
