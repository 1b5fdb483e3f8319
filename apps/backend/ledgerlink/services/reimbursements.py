"""Pairing of reimbursable expenses with the income that paid them back."""

from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Protocol

from ledgerlink.config import settings
from ledgerlink.logger import get_logger
from ledgerlink.models.transaction import TransactionType
from ledgerlink.schemas.matching import Match, MatchKind, MatchRequest, MatchResponse, MatchType
from ledgerlink.schemas.transaction import Transaction
from ledgerlink.services.pair_matching import (
    MatchingConfig,
    PairMatcher,
    fractional_days,
    opposite_signs,
    whole_day_difference,
    within_date_range,
)

logger = get_logger(__name__)

REIMBURSABLE_CATEGORIES = frozenset(
    {
        "Healthcare",
        "Transportation",
        "Food & Dining",
        "Entertainment",
        "Education",
        "Shopping",
    }
)

REIMBURSEMENT_KEYWORDS = [
    "reimbursement",
    "reimburse",
    "refund",
    "hsa",
    "fsa",
    "payroll",
    "expense",
    "flex spending",
    "flexible spending",
    "health savings",
]

REIMBURSEMENT_TAG = "reimbursement"
EXACT_CONFIDENCE_FLOOR = 0.95


@dataclass
class Conversion:
    converted_amount: Decimal
    rate: Decimal


class RateLookup(Protocol):
    """External currency conversion service."""

    async def convert(self, amount: Decimal, from_currency: str, to_currency: str) -> Conversion | None: ...


def is_reimbursable_expense(transaction: Transaction) -> bool:
    return (
        transaction.type == TransactionType.EXPENSE
        and not transaction.reimbursed
        and transaction.linked_id is None
        and transaction.category in REIMBURSABLE_CATEGORIES
    )


def is_potential_reimbursement(transaction: Transaction) -> bool:
    if transaction.type != TransactionType.INCOME or transaction.linked_id is not None:
        return False
    lowered = transaction.description.lower()
    return any(keyword in lowered for keyword in REIMBURSEMENT_KEYWORDS)


class ReimbursementMatcher(PairMatcher):
    """Links expenses in reimbursable categories with reimbursement income."""

    kind = MatchKind.REIMBURSEMENT
    note_label = "Matched Reimbursement"

    def __init__(
        self,
        config: MatchingConfig | None = None,
        rate_lookup: RateLookup | None = None,
    ):
        super().__init__(config)
        self.rate_lookup = rate_lookup

    @property
    def default_max_days(self) -> float:
        return self.config.reimbursement_max_days

    @property
    def default_tolerance(self) -> float:
        return self.config.reimbursement_tolerance

    def score_pairs(
        self,
        transactions: Sequence[Transaction],
        max_days: float,
        tolerance: float,
        conversions: Mapping[str, Conversion] | None = None,
    ) -> Iterator[Match]:
        expenses = [t for t in transactions if is_reimbursable_expense(t)]
        reimbursements = [t for t in transactions if is_potential_reimbursement(t)]
        conversions = conversions or {}

        for expense in expenses:
            for reimbursement in reimbursements:
                if not opposite_signs(expense.amount, reimbursement.amount):
                    continue
                if fractional_days(expense.date, reimbursement.date) > max_days:
                    continue
                scored = self._score_amounts(expense, reimbursement, tolerance, conversions.get(expense.id))
                if scored is None:
                    continue
                confidence, amount_difference, reason = scored
                days = whole_day_difference(expense.date, reimbursement.date)
                yield self.build_match(
                    expense,
                    reimbursement,
                    confidence=confidence,
                    match_type=(
                        MatchType.EXACT if confidence > EXACT_CONFIDENCE_FLOOR else MatchType.APPROXIMATE
                    ),
                    date_difference=days,
                    amount_difference=amount_difference,
                    reasoning=f"{reason}, {days} days apart",
                )

    def _score_amounts(
        self,
        expense: Transaction,
        reimbursement: Transaction,
        tolerance: float,
        conversion: Conversion | None,
    ) -> tuple[float, Decimal, str] | None:
        expense_amount = abs(expense.amount)
        reimbursement_amount = abs(reimbursement.amount)
        if expense_amount == 0:
            return None

        if expense_amount == reimbursement_amount:
            return self.config.max_confidence, Decimal("0"), "Exact amount match"

        difference = abs(expense_amount - reimbursement_amount)
        percentage = float(difference / expense_amount)
        if tolerance > 0 and percentage <= tolerance:
            confidence = max(1 - (percentage / tolerance) * 0.2, 0.7)
            return (
                min(confidence, self.config.max_confidence),
                difference,
                f"Amount within {percentage:.1%} tolerance",
            )

        if conversion is not None and conversion.converted_amount > 0:
            converted_difference = abs(conversion.converted_amount - reimbursement_amount)
            converted_percentage = float(converted_difference / conversion.converted_amount)
            if tolerance > 0 and converted_percentage <= tolerance:
                confidence = max(1 - (converted_percentage / tolerance) * 0.3, 0.6)
                return (
                    min(confidence, self.config.max_confidence),
                    converted_difference,
                    f"Currency converted match ({expense.currency} to "
                    f"{reimbursement.currency} at rate {conversion.rate})",
                )
        return None

    async def lookup_conversions(self, transactions: Sequence[Transaction]) -> dict[str, Conversion]:
        """Convert foreign-currency reimbursable expenses to the base currency.

        Lookup failures are logged and the expense is matched on raw amounts.
        """
        if self.rate_lookup is None:
            return {}
        conversions: dict[str, Conversion] = {}
        for expense in transactions:
            if not is_reimbursable_expense(expense) or expense.currency == settings.base_currency:
                continue
            try:
                conversion = await self.rate_lookup.convert(
                    abs(expense.amount), expense.currency, settings.base_currency
                )
            except Exception as e:  # noqa: BLE001 - the rate service is optional
                logger.warning(
                    "Currency conversion failed for reimbursement match",
                    transaction_id=expense.id,
                    currency=expense.currency,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue
            if conversion is not None:
                conversions[expense.id] = conversion
        return conversions

    async def find_matches_with_conversion(self, request: MatchRequest) -> MatchResponse:
        """Like ``find_matches`` but also tries converted amounts for foreign expenses."""
        transactions = within_date_range(request.transactions, request.start_date, request.end_date)
        conversions = await self.lookup_conversions(transactions)
        max_days = (
            self.default_max_days
            if request.max_days_difference is None
            else request.max_days_difference
        )
        tolerance = (
            self.default_tolerance
            if request.tolerance_percentage is None
            else request.tolerance_percentage
        )
        matches = self.select_matches(self.score_pairs(transactions, max_days, tolerance, conversions))
        return self.build_response(request.transactions, matches)

    def link_updates(
        self, source: Transaction, target: Transaction, match: Match
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        source_updates, target_updates = super().link_updates(source, target, match)
        source_updates["reimbursed"] = True
        if REIMBURSEMENT_TAG not in target.tags:
            target_updates["tags"] = [*target.tags, REIMBURSEMENT_TAG]
        return source_updates, target_updates

    def unlink_updates(self, transaction: Transaction) -> dict[str, Any]:
        updates = super().unlink_updates(transaction)
        if transaction.type == TransactionType.EXPENSE:
            updates["reimbursed"] = False
        if REIMBURSEMENT_TAG in transaction.tags:
            updates["tags"] = [tag for tag in transaction.tags if tag != REIMBURSEMENT_TAG]
        return updates

    @staticmethod
    def filter_non_reimbursed(transactions: Sequence[Transaction]) -> list[Transaction]:
        """Drop reimbursed expenses from spending views. Income is kept."""
        return [
            t for t in transactions if t.type == TransactionType.INCOME or not t.reimbursed
        ]
