"""Tests for the prioritized rule engine.

GIVEN: Rules with priorities and conditions
WHEN: Classifying transactions or managing rules
THEN: The lowest-priority active match wins and the order stays sorted
"""

from decimal import Decimal

import pytest

from ledgerlink.schemas import (
    CategoryRule,
    CategoryRuleCreate,
    ConditionField,
    ConditionOperator,
    RuleAction,
    RuleCondition,
)
from ledgerlink.services import RuleEngine, RuleNotFoundError
from ledgerlink.services.rules import rule_matches
from factories import CategoryRuleFactory, RuleConditionFactory, TransactionFactory


def contains(value: str) -> RuleCondition:
    return RuleConditionFactory.build(value=value)


class TestRuleMatching:
    def test_all_conditions_must_match(self):
        """GIVEN: A rule with a description and an amount condition
        WHEN: Only one condition holds
        THEN: The rule does not match"""
        rule = CategoryRuleFactory.build(
            conditions=[
                contains("uber"),
                RuleCondition(field=ConditionField.AMOUNT, operator=ConditionOperator.GREATER_THAN, value=50),
            ]
        )
        cheap = TransactionFactory.build(description="UBER TRIP", amount=Decimal("-12.00"))
        pricey = TransactionFactory.build(description="UBER TRIP", amount=Decimal("-75.00"))

        assert rule_matches(rule, cheap) is False
        assert rule_matches(rule, pricey) is True

    def test_rule_without_conditions_never_matches(self):
        rule = CategoryRuleFactory.build(conditions=[])
        assert rule_matches(rule, TransactionFactory.build()) is False


class TestEvaluationOrder:
    def test_lowest_priority_wins(self):
        generic = CategoryRuleFactory.build(priority=100, action=RuleAction(category_name="Shopping"))
        specific = CategoryRuleFactory.build(priority=10, action=RuleAction(category_name="Food & Dining"))
        engine = RuleEngine([generic, specific])

        result = engine.apply_rules(TransactionFactory.build(description="Starbucks #12"))

        assert result.matched is True
        assert result.rule.id == specific.id
        assert result.confidence == 1.0

    def test_equal_priorities_keep_insertion_order(self):
        first = CategoryRuleFactory.build(priority=50)
        second = CategoryRuleFactory.build(priority=50)
        engine = RuleEngine([first, second])

        assert [r.id for r in engine.get_all_rules()] == [first.id, second.id]
        assert engine.find_matching_rule(TransactionFactory.build(description="starbucks")).id == first.id

    def test_inactive_rules_are_skipped(self):
        inactive = CategoryRuleFactory.build(priority=1, is_active=False)
        active = CategoryRuleFactory.build(priority=2)
        engine = RuleEngine([inactive, active])

        assert engine.find_matching_rule(TransactionFactory.build(description="starbucks")).id == active.id
        assert engine.get_active_rules() == [active]

    def test_no_match(self):
        engine = RuleEngine([CategoryRuleFactory.build()])
        result = engine.apply_rules(TransactionFactory.build(description="Rent"))
        assert result.matched is False
        assert result.rule is None


class TestBatch:
    def test_partition_preserves_every_input(self):
        """GIVEN: A mixed batch
        WHEN: Applying rules to the batch
        THEN: Each record lands in exactly one list, in input order"""
        engine = RuleEngine([CategoryRuleFactory.build(name="Coffee")])
        batch = [
            TransactionFactory.build(description="Starbucks 1"),
            TransactionFactory.build(description="Rent"),
            TransactionFactory.build(description="STARBUCKS 2"),
            TransactionFactory.build(description="Gym"),
        ]

        result = engine.apply_rules_to_batch(batch)

        matched_ids = [m.transaction.id for m in result.matched]
        unmatched_ids = [t.id for t in result.unmatched]
        assert matched_ids == [batch[0].id, batch[2].id]
        assert unmatched_ids == [batch[1].id, batch[3].id]
        assert set(matched_ids) | set(unmatched_ids) == {t.id for t in batch}

    def test_matched_copies_carry_rule_provenance(self):
        engine = RuleEngine([CategoryRuleFactory.build(name="Coffee")])
        original = TransactionFactory.build(description="Starbucks", confidence=0.3, reasoning="guess")

        result = engine.apply_rules_to_batch([original])
        classified = result.matched[0].transaction

        assert classified.category == "Food & Dining"
        assert classified.subcategory == "Coffee"
        assert classified.confidence == 1.0
        assert classified.reasoning == "Matched rule: Coffee"
        assert classified.ai_metadata is None
        assert original.category == "Uncategorized"

    def test_empty_batch(self):
        result = RuleEngine().apply_rules_to_batch([])
        assert result.matched == []
        assert result.unmatched == []


class TestRuleManagement:
    @pytest.mark.asyncio
    async def test_create_rule_inserts_sorted(self):
        engine = RuleEngine([CategoryRuleFactory.build(priority=10), CategoryRuleFactory.build(priority=90)])

        created = await engine.create_rule(
            CategoryRuleCreate(
                name="Middle",
                priority=50,
                conditions=[contains("gym")],
                action=RuleAction(category_name="Health"),
            )
        )

        assert [r.priority for r in engine.get_all_rules()] == [10, 50, 90]
        assert engine.get_rule(created.id) == created

    @pytest.mark.asyncio
    async def test_priority_change_moves_rule(self):
        low = CategoryRuleFactory.build(priority=10)
        high = CategoryRuleFactory.build(priority=90)
        engine = RuleEngine([low, high])

        await engine.update_rule(high.id, {"priority": 5})

        assert [r.id for r in engine.get_all_rules()] == [high.id, low.id]

    @pytest.mark.asyncio
    async def test_update_without_priority_change_keeps_position(self):
        first = CategoryRuleFactory.build(priority=50)
        second = CategoryRuleFactory.build(priority=50)
        engine = RuleEngine([first, second])

        updated = await engine.update_rule(first.id, {"name": "Renamed"})

        assert [r.id for r in engine.get_all_rules()] == [first.id, second.id]
        assert updated.name == "Renamed"
        assert updated.created_date == first.created_date
        assert updated.last_modified_date >= first.last_modified_date

    @pytest.mark.asyncio
    async def test_toggle_and_delete(self):
        rule = CategoryRuleFactory.build()
        engine = RuleEngine([rule])

        toggled = await engine.toggle_rule(rule.id)
        assert toggled.is_active is False
        assert engine.get_stats().inactive == 1

        await engine.delete_rule(rule.id)
        assert engine.get_all_rules() == []

    @pytest.mark.asyncio
    async def test_unknown_rule_raises(self):
        engine = RuleEngine()
        with pytest.raises(RuleNotFoundError):
            await engine.update_rule("missing", {"name": "x"})
        with pytest.raises(RuleNotFoundError):
            await engine.delete_rule("missing")
        with pytest.raises(RuleNotFoundError):
            await engine.toggle_rule("missing")

    @pytest.mark.asyncio
    async def test_clear_all_rules(self):
        engine = RuleEngine([CategoryRuleFactory.build(), CategoryRuleFactory.build()])
        assert await engine.clear_all_rules() == 2
        assert engine.get_stats().total == 0

    @pytest.mark.asyncio
    async def test_description_contains_template(self):
        engine = RuleEngine()
        rule = await engine.create_description_contains_rule("Netflix", "netflix", "Entertainment", "Streaming")

        assert rule.priority == 100
        assert rule.conditions[0].operator == ConditionOperator.CONTAINS
        assert engine.find_matching_rule(TransactionFactory.build(description="NETFLIX.COM")) == rule

    @pytest.mark.asyncio
    async def test_repository_receives_mutations(self):
        """GIVEN: An engine backed by a repository
        WHEN: Adding, updating and deleting rules
        THEN: Each mutation is persisted"""

        class RecordingRepository:
            def __init__(self):
                self.saved: list[CategoryRule] = []
                self.deleted: list[str] = []

            async def list_rules(self):
                return []

            async def save_rule(self, rule):
                self.saved.append(rule)

            async def delete_rule(self, rule_id):
                self.deleted.append(rule_id)
                return True

            async def delete_all_rules(self):
                return 0

        repository = RecordingRepository()
        engine = RuleEngine(repository=repository)
        rule = await engine.add_rule(CategoryRuleFactory.build())
        await engine.update_rule(rule.id, {"priority": 1})
        await engine.delete_rule(rule.id)

        assert [r.priority for r in repository.saved] == [100, 1]
        assert repository.deleted == [rule.id]


class TestStarbucksScenario:
    @pytest.mark.asyncio
    async def test_contains_rule_classifies_coffee_purchase(self):
        """GIVEN: description contains "Starbucks" -> Food & Dining / Coffee Shops at priority 1
        WHEN: Applied to an uncategorized "Starbucks Coffee Shop" purchase
        THEN: The copy carries the rule's category with full confidence"""
        engine = RuleEngine()
        await engine.create_description_contains_rule(
            "Starbucks", "Starbucks", "Food & Dining", "Coffee Shops", priority=1
        )
        txn = TransactionFactory.build(description="Starbucks Coffee Shop", category="Uncategorized")

        classified = engine.apply_rules_to_batch([txn]).matched[0].transaction

        assert classified.category == "Food & Dining"
        assert classified.subcategory == "Coffee Shops"
        assert classified.confidence == 1.0
        assert classified.reasoning.startswith("Matched rule: ")
