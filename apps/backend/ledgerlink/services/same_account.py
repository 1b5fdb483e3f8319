"""Pairing of charges with their reversals inside one account."""

from collections.abc import Iterator, Sequence
from decimal import Decimal

from ledgerlink.models.transaction import TransactionType
from ledgerlink.schemas.matching import Match, MatchKind, MatchType
from ledgerlink.schemas.transaction import Transaction
from ledgerlink.services.pair_matching import (
    PairMatcher,
    absolute_amount_difference,
    fractional_days,
    opposite_signs,
    relative_amount_difference,
    whole_day_difference,
)

CANCELLATION_KEYWORDS = ("cancel", "reverse", "reversal", "refund", "correction", "adjustment")
WORD_OVERLAP_THRESHOLD = 0.6


def indicates_cancellation(first: str | None, second: str | None) -> bool:
    """True when either description mentions a reversal or both share most words."""
    first = (first or "").lower()
    second = (second or "").lower()
    combined = f"{first} {second}"
    if any(keyword in combined for keyword in CANCELLATION_KEYWORDS):
        return True

    words_first = {word for word in first.split() if len(word) > 2}
    words_second = {word for word in second.split() if len(word) > 2}
    if not words_first or not words_second:
        return False
    overlap = len(words_first & words_second) / max(len(words_first), len(words_second))
    return overlap >= WORD_OVERLAP_THRESHOLD


class SameAccountMatcher(PairMatcher):
    """Links a charge and its reversal in the same account."""

    kind = MatchKind.SAME_ACCOUNT
    note_label = "Matched Transaction"

    @property
    def default_max_days(self) -> float:
        return self.config.same_account_max_days

    @property
    def default_tolerance(self) -> float:
        return self.config.same_account_tolerance

    def score(self, days: float, amount_difference: Decimal, cancellation: bool) -> float:
        confidence = 0.5
        if days == 0:
            confidence += 0.3
        elif days <= 1:
            confidence += 0.1

        if amount_difference == 0:
            confidence += 0.15
        elif amount_difference <= Decimal("0.01"):
            confidence += 0.1
        else:
            confidence -= 0.1

        confidence += 0.2 if cancellation else -0.05
        return max(0.0, min(confidence, self.config.max_confidence))

    def score_pairs(
        self, transactions: Sequence[Transaction], max_days: float, tolerance: float
    ) -> Iterator[Match]:
        candidates = [
            t for t in transactions if t.type != TransactionType.TRANSFER and t.linked_id is None
        ]
        for i, first in enumerate(candidates):
            for second in candidates[i + 1 :]:
                if first.account != second.account or not opposite_signs(first.amount, second.amount):
                    continue
                if fractional_days(first.date, second.date) > max_days:
                    continue
                if relative_amount_difference(first.amount, second.amount) > tolerance:
                    continue
                yield self._build(first, second)

    def _build(self, first: Transaction, second: Transaction) -> Match:
        # The original charge is the earlier one; same timestamp puts the outflow first.
        source, target = sorted((first, second), key=lambda t: (t.date, t.amount >= 0))
        elapsed = fractional_days(source.date, target.date)
        days = whole_day_difference(source.date, target.date)
        amount_difference = absolute_amount_difference(source.amount, target.amount)
        cancellation = indicates_cancellation(source.description, target.description)
        exact = elapsed == 0 and amount_difference < Decimal("0.01")

        return self.build_match(
            source,
            target,
            confidence=self.score(elapsed, amount_difference, cancellation),
            match_type=MatchType.EXACT if exact else MatchType.APPROXIMATE,
            date_difference=days,
            amount_difference=amount_difference,
            reasoning=(
                f"Same-account reversal in {source.account}: {days} days apart"
                + (", cancellation wording" if cancellation else "")
            ),
        )
