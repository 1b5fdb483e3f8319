"""Prioritized, first-match-wins category rules."""

from bisect import bisect_right
from collections.abc import Iterable, Sequence
from typing import Any, Protocol

from ledgerlink.logger import get_logger, log_timing
from ledgerlink.schemas.rules import (
    BatchRuleResult,
    CategoryRule,
    CategoryRuleCreate,
    ConditionField,
    ConditionOperator,
    RuleAction,
    RuleCondition,
    RuleMatchedTransaction,
    RuleMatchResult,
    RuleStats,
)
from ledgerlink.schemas.transaction import Transaction, utc_now
from ledgerlink.services.conditions import evaluate_condition

logger = get_logger(__name__)

RULE_CONFIDENCE = 1.0
TEMPLATE_RULE_PRIORITY = 100


class RuleNotFoundError(Exception):
    """Raised when a rule id is unknown to the engine."""

    def __init__(self, rule_id: str):
        self.rule_id = rule_id
        super().__init__(f"Rule not found: {rule_id}")


class RuleRepository(Protocol):
    async def list_rules(self) -> list[CategoryRule]: ...

    async def save_rule(self, rule: CategoryRule) -> None: ...

    async def delete_rule(self, rule_id: str) -> bool: ...

    async def delete_all_rules(self) -> int: ...


def rule_matches(rule: CategoryRule, transaction: Transaction) -> bool:
    """AND over all conditions. A rule without conditions never matches."""
    if not rule.conditions:
        return False
    return all(evaluate_condition(transaction, condition) for condition in rule.conditions)


def rule_provenance(rule: CategoryRule) -> dict[str, Any]:
    """Fields written onto a transaction classified by ``rule``."""
    return {
        "category": rule.action.category_name,
        "subcategory": rule.action.subcategory_name,
        "confidence": RULE_CONFIDENCE,
        "reasoning": f"Matched rule: {rule.name}",
        "ai_metadata": None,
    }


class RuleEngine:
    """Holds rules sorted by ascending priority and evaluates them.

    The list is kept sorted when rules are inserted or re-prioritized, so
    evaluation is a single linear scan. Equal priorities keep insertion order.
    When a repository is given, every mutation is persisted before the
    in-memory list changes.
    """

    def __init__(
        self,
        rules: Iterable[CategoryRule] = (),
        repository: RuleRepository | None = None,
    ):
        self._rules: list[CategoryRule] = []
        self._repository = repository
        for rule in rules:
            self._insert(rule)

    async def load(self) -> int:
        """Replace the in-memory rules with the repository's."""
        if self._repository is None:
            return len(self._rules)
        self._rules = []
        for rule in await self._repository.list_rules():
            self._insert(rule)
        logger.debug("Rules loaded", count=len(self._rules))
        return len(self._rules)

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def find_matching_rule(self, transaction: Transaction) -> CategoryRule | None:
        for rule in self._rules:
            if rule.is_active and rule_matches(rule, transaction):
                return rule
        return None

    def apply_rules(self, transaction: Transaction) -> RuleMatchResult:
        rule = self.find_matching_rule(transaction)
        if rule is None:
            return RuleMatchResult(matched=False)
        return RuleMatchResult(matched=True, rule=rule, confidence=RULE_CONFIDENCE)

    def apply_rules_to_batch(self, transactions: Sequence[Transaction]) -> BatchRuleResult:
        """Split a batch into rule-classified copies and untouched leftovers.

        Every input lands in exactly one of the two lists, in input order.
        """
        result = BatchRuleResult()
        with log_timing("apply_rules_to_batch", logger=logger, level="debug", size=len(transactions)) as ctx:
            for transaction in transactions:
                rule = self.find_matching_rule(transaction)
                if rule is None:
                    result.unmatched.append(transaction)
                    continue
                classified = transaction.model_copy(update=rule_provenance(rule))
                result.matched.append(RuleMatchedTransaction(transaction=classified, rule=rule))
            ctx["matched"] = len(result.matched)
        return result

    # ------------------------------------------------------------------
    # Rule management
    # ------------------------------------------------------------------

    def get_all_rules(self) -> list[CategoryRule]:
        return list(self._rules)

    def get_active_rules(self) -> list[CategoryRule]:
        return [rule for rule in self._rules if rule.is_active]

    def get_rule(self, rule_id: str) -> CategoryRule | None:
        return next((rule for rule in self._rules if rule.id == rule_id), None)

    def get_stats(self) -> RuleStats:
        active = sum(1 for rule in self._rules if rule.is_active)
        return RuleStats(total=len(self._rules), active=active, inactive=len(self._rules) - active)

    async def add_rule(self, rule: CategoryRule) -> CategoryRule:
        if self._repository is not None:
            await self._repository.save_rule(rule)
        self._insert(rule)
        logger.info("Rule added", rule_id=rule.id, rule_name=rule.name, priority=rule.priority)
        return rule

    async def create_rule(self, data: CategoryRuleCreate) -> CategoryRule:
        return await self.add_rule(CategoryRule.model_validate(data.model_dump()))

    async def update_rule(self, rule_id: str, updates: dict[str, Any]) -> CategoryRule:
        current = self.get_rule(rule_id)
        if current is None:
            raise RuleNotFoundError(rule_id)

        updated = CategoryRule.model_validate(
            {
                **current.model_dump(),
                **updates,
                "id": current.id,
                "created_date": current.created_date,
                "last_modified_date": utc_now(),
            }
        )
        if self._repository is not None:
            await self._repository.save_rule(updated)

        index = self._rules.index(current)
        if updated.priority == current.priority:
            self._rules[index] = updated
        else:
            del self._rules[index]
            self._insert(updated)
        logger.info("Rule updated", rule_id=rule_id, fields=sorted(updates))
        return updated

    async def toggle_rule(self, rule_id: str) -> CategoryRule:
        current = self.get_rule(rule_id)
        if current is None:
            raise RuleNotFoundError(rule_id)
        return await self.update_rule(rule_id, {"is_active": not current.is_active})

    async def delete_rule(self, rule_id: str) -> None:
        current = self.get_rule(rule_id)
        if current is None:
            raise RuleNotFoundError(rule_id)
        if self._repository is not None:
            await self._repository.delete_rule(rule_id)
        self._rules.remove(current)
        logger.info("Rule deleted", rule_id=rule_id)

    async def clear_all_rules(self) -> int:
        count = len(self._rules)
        if self._repository is not None:
            await self._repository.delete_all_rules()
        self._rules = []
        logger.info("All rules cleared", count=count)
        return count

    async def create_description_contains_rule(
        self,
        name: str,
        description_pattern: str,
        category_name: str,
        subcategory_name: str | None = None,
        priority: int = TEMPLATE_RULE_PRIORITY,
    ) -> CategoryRule:
        """Template for the most common rule: description contains a keyword."""
        rule = CategoryRule(
            name=name,
            description=f'Transactions containing "{description_pattern}"',
            priority=priority,
            conditions=[
                RuleCondition(
                    field=ConditionField.DESCRIPTION,
                    operator=ConditionOperator.CONTAINS,
                    value=description_pattern,
                )
            ],
            action=RuleAction(category_name=category_name, subcategory_name=subcategory_name),
        )
        return await self.add_rule(rule)

    def _insert(self, rule: CategoryRule) -> None:
        index = bisect_right(self._rules, rule.priority, key=lambda r: r.priority)
        self._rules.insert(index, rule)
