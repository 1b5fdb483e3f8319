"""Promotion of manual edits and confident AI verdicts into rules."""

from ledgerlink.config import settings
from ledgerlink.logger import get_logger, log_exception
from ledgerlink.schemas.classification import AIClassification
from ledgerlink.schemas.rules import (
    CategoryRule,
    ConditionField,
    ConditionOperator,
    RuleAction,
    RuleCondition,
    RuleEditResult,
)
from ledgerlink.services.rules import RuleEngine, rule_matches, rule_provenance
from ledgerlink.services.transactions import (
    PersistenceError,
    TransactionNotFoundError,
    TransactionPatch,
    TransactionStore,
)

logger = get_logger(__name__)

USER_RULE_PRIORITY = 25
AUTO_RULE_PRIORITY = 50
NAME_PREVIEW_LENGTH = 30


def build_rule_name(prefix: str, account: str, description: str) -> str:
    preview = description[:NAME_PREVIEW_LENGTH]
    if len(description) > NAME_PREVIEW_LENGTH:
        preview += "..."
    return f"{prefix}: {account} - {preview}"


def account_description_conditions(account: str, description: str) -> list[RuleCondition]:
    return [
        RuleCondition(field=ConditionField.ACCOUNT, operator=ConditionOperator.EQUALS, value=account),
        RuleCondition(
            field=ConditionField.DESCRIPTION, operator=ConditionOperator.EQUALS, value=description
        ),
    ]


def is_account_description_rule(rule: CategoryRule, account: str, description: str) -> bool:
    """True when the rule's conditions are exactly {account equals, description equals}."""
    if not rule.is_active or len(rule.conditions) != 2:
        return False
    found = set()
    for condition in rule.conditions:
        if condition.operator != ConditionOperator.EQUALS or not isinstance(condition.value, str):
            return False
        found.add((condition.field, condition.value.casefold()))
    return found == {
        (ConditionField.ACCOUNT, account.casefold()),
        (ConditionField.DESCRIPTION, description.casefold()),
    }


class RuleAutoGenerator:
    """Creates or updates account+description rules and reclassifies history."""

    def __init__(
        self,
        engine: RuleEngine,
        store: TransactionStore,
        *,
        min_ai_confidence: float | None = None,
    ):
        self.engine = engine
        self.store = store
        self.min_ai_confidence = (
            settings.auto_rule_min_confidence if min_ai_confidence is None else min_ai_confidence
        )

    def find_rule(self, account: str, description: str) -> CategoryRule | None:
        return next(
            (
                rule
                for rule in self.engine.get_all_rules()
                if is_account_description_rule(rule, account, description)
            ),
            None,
        )

    async def create_or_update_rule_from_edit(
        self,
        account: str,
        description: str,
        category: str,
        subcategory: str | None = None,
        *,
        apply_to_existing: bool = True,
    ) -> RuleEditResult:
        """Turn a manual category edit into a rule.

        An equivalent active rule gets its action replaced; otherwise a new
        rule is created. With ``apply_to_existing`` every persisted
        transaction the rule matches is reclassified in one batch write.
        """
        action = RuleAction(category_name=category, subcategory_name=subcategory)
        existing = self.find_rule(account, description)

        if existing is not None:
            rule = await self.engine.update_rule(existing.id, {"action": action})
            is_new = False
        else:
            rule = await self.engine.add_rule(
                CategoryRule(
                    name=build_rule_name("User", account, description),
                    description=f"Created from a manual edit in {account}",
                    priority=USER_RULE_PRIORITY,
                    conditions=account_description_conditions(account, description),
                    action=action,
                )
            )
            is_new = True

        reclassified = await self.reclassify_existing(rule) if apply_to_existing else 0
        logger.info(
            "Rule saved from manual edit",
            rule_id=rule.id,
            is_new=is_new,
            reclassified_count=reclassified,
        )
        return RuleEditResult(rule=rule, is_new=is_new, reclassified_count=reclassified)

    async def reclassify_existing(self, rule: CategoryRule) -> int:
        """Apply ``rule`` to stored transactions whose category would change.

        Transactions are visited in (date, id) order. Unchanged ones are
        skipped so no history rows are written for them. A failed write is
        logged and reported as zero reclassifications.
        """
        transactions = await self.store.get_all_transactions()
        target = (rule.action.category_name, rule.action.subcategory_name)
        update = rule_provenance(rule)

        patches = [
            TransactionPatch(transaction.id, dict(update))
            for transaction in sorted(transactions, key=lambda t: (t.date, t.id))
            if rule_matches(rule, transaction)
            and (transaction.category, transaction.subcategory) != target
        ]
        if not patches:
            return 0

        try:
            return await self.store.batch_update_transactions(patches)
        except (PersistenceError, TransactionNotFoundError) as e:
            log_exception(
                logger,
                e,
                "Reclassification write failed",
                rule_id=rule.id,
                pending=len(patches),
            )
            return 0

    async def create_auto_rule_from_ai(
        self,
        account: str,
        description: str,
        classification: AIClassification,
    ) -> CategoryRule | None:
        """Create a rule from a confident AI verdict.

        Returns None below the confidence floor, and the existing rule when an
        equivalent one is already stored.
        """
        if classification.confidence < self.min_ai_confidence:
            return None

        existing = self.find_rule(account, description)
        if existing is not None:
            return existing

        rule = CategoryRule(
            name=build_rule_name("Auto", account, description),
            description=(
                f"Auto-generated from AI classification "
                f"({classification.confidence:.0%} confidence)"
            ),
            priority=AUTO_RULE_PRIORITY,
            conditions=account_description_conditions(account, description),
            action=RuleAction(
                category_name=classification.category,
                subcategory_name=classification.subcategory,
            ),
        )
        return await self.engine.add_rule(rule)
