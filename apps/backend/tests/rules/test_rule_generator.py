"""Tests for promoting manual edits and AI verdicts into rules.

GIVEN: A rule engine and a transaction store
WHEN: A user edits a category or the AI returns a confident verdict
THEN: An account + description rule is created or updated and history is reclassified once
"""

from decimal import Decimal

import pytest

from ledgerlink.schemas import AIClassification
from ledgerlink.services import InMemoryTransactionStore, PersistenceError, RuleAutoGenerator, RuleEngine
from ledgerlink.services.rule_generator import (
    AUTO_RULE_PRIORITY,
    USER_RULE_PRIORITY,
    build_rule_name,
    is_account_description_rule,
)
from factories import CategoryRuleFactory, TransactionFactory, day


@pytest.fixture
def store() -> InMemoryTransactionStore:
    return InMemoryTransactionStore(
        [
            TransactionFactory.build(
                id="a", account="Amex", description="BLUE BOTTLE", date=day(0), amount=Decimal("-6.00")
            ),
            TransactionFactory.build(
                id="b", account="Amex", description="blue bottle", date=day(3), amount=Decimal("-7.25")
            ),
            TransactionFactory.build(
                id="c", account="Chase Checking", description="BLUE BOTTLE", date=day(1), amount=Decimal("-5.00")
            ),
            TransactionFactory.build(id="d", account="Amex", description="Rent", date=day(2)),
        ]
    )


@pytest.fixture
def generator(store) -> RuleAutoGenerator:
    return RuleAutoGenerator(RuleEngine(), store, min_ai_confidence=0.8)


class TestRuleNames:
    def test_long_description_is_truncated(self):
        name = build_rule_name("User", "Amex", "A" * 40)
        assert name == f"User: Amex - {'A' * 30}..."

    def test_short_description_is_kept(self):
        assert build_rule_name("Auto", "Amex", "Gym") == "Auto: Amex - Gym"


class TestCreateFromEdit:
    @pytest.mark.asyncio
    async def test_new_rule_reclassifies_matching_history(self, generator, store):
        """GIVEN: Two Amex records with the same description in different case
        WHEN: The user recategorizes one of them
        THEN: A priority-25 rule is created and both Amex records move in one write"""
        result = await generator.create_or_update_rule_from_edit("Amex", "Blue Bottle", "Food & Dining", "Coffee")

        assert result.is_new is True
        assert result.rule.priority == USER_RULE_PRIORITY
        assert result.reclassified_count == 2
        assert store.save_count == 1
        assert (await store.get_transaction("a")).category == "Food & Dining"
        assert (await store.get_transaction("b")).subcategory == "Coffee"
        assert (await store.get_transaction("c")).category == "Uncategorized"
        assert (await store.get_transaction("d")).category == "Uncategorized"

    @pytest.mark.asyncio
    async def test_reclassification_is_idempotent(self, generator, store):
        await generator.create_or_update_rule_from_edit("Amex", "Blue Bottle", "Food & Dining", "Coffee")
        second = await generator.create_or_update_rule_from_edit("Amex", "Blue Bottle", "Food & Dining", "Coffee")

        assert second.is_new is False
        assert second.reclassified_count == 0
        assert store.save_count == 1
        assert len(generator.engine.get_all_rules()) == 1

    @pytest.mark.asyncio
    async def test_existing_rule_action_is_replaced(self, generator):
        first = await generator.create_or_update_rule_from_edit("Amex", "Blue Bottle", "Food & Dining", "Coffee")
        second = await generator.create_or_update_rule_from_edit("Amex", "blue bottle", "Shopping")

        assert second.rule.id == first.rule.id
        assert second.rule.action.category_name == "Shopping"
        assert second.reclassified_count == 2

    @pytest.mark.asyncio
    async def test_apply_to_existing_false_leaves_history(self, generator, store):
        result = await generator.create_or_update_rule_from_edit(
            "Amex", "Blue Bottle", "Food & Dining", apply_to_existing=False
        )

        assert result.reclassified_count == 0
        assert store.save_count == 0

    @pytest.mark.asyncio
    async def test_write_failure_reports_zero(self, generator, store, monkeypatch):
        """GIVEN: A store whose save fails
        WHEN: Reclassifying history
        THEN: Zero is reported, the rule is kept and no record changes"""

        def failing_save():
            raise PersistenceError("disk full")

        monkeypatch.setattr(store, "_save", failing_save)

        result = await generator.create_or_update_rule_from_edit("Amex", "Blue Bottle", "Food & Dining")

        assert result.reclassified_count == 0
        assert generator.find_rule("Amex", "Blue Bottle") is not None
        assert (await store.get_transaction("a")).category == "Uncategorized"


class TestRuleLookup:
    def test_inactive_rule_is_not_reused(self, generator):
        rule = CategoryRuleFactory.build(is_active=False)
        assert is_account_description_rule(rule, "Amex", "Starbucks") is False

    @pytest.mark.asyncio
    async def test_lookup_is_case_insensitive(self, generator):
        await generator.create_or_update_rule_from_edit("Amex", "Blue Bottle", "Food & Dining")
        assert generator.find_rule("AMEX", "BLUE BOTTLE") is not None
        assert generator.find_rule("Amex", "Blue Bottle Cafe") is None


class TestAutoRuleFromAI:
    @pytest.mark.asyncio
    async def test_confident_verdict_creates_rule(self, generator):
        verdict = AIClassification(category="Transportation", subcategory="Rideshare", confidence=0.92)

        rule = await generator.create_auto_rule_from_ai("Amex", "UBER *TRIP", verdict)

        assert rule is not None
        assert rule.priority == AUTO_RULE_PRIORITY
        assert rule.name == "Auto: Amex - UBER *TRIP"
        assert rule.action.category_name == "Transportation"

    @pytest.mark.asyncio
    async def test_low_confidence_is_ignored(self, generator):
        verdict = AIClassification(category="Transportation", confidence=0.79)
        assert await generator.create_auto_rule_from_ai("Amex", "UBER *TRIP", verdict) is None
        assert generator.engine.get_all_rules() == []

    @pytest.mark.asyncio
    async def test_existing_rule_is_returned(self, generator):
        verdict = AIClassification(category="Transportation", confidence=0.95)
        first = await generator.create_auto_rule_from_ai("Amex", "UBER *TRIP", verdict)
        second = await generator.create_auto_rule_from_ai("amex", "uber *trip", verdict)

        assert second.id == first.id
        assert len(generator.engine.get_all_rules()) == 1
