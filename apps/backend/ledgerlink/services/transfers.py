"""Pairing of transfer legs across accounts."""

from collections.abc import Iterator, Sequence
from decimal import Decimal

from ledgerlink.config import settings
from ledgerlink.logger import get_logger
from ledgerlink.models.transaction import TransactionType
from ledgerlink.schemas.matching import Match, MatchKind, MatchRequest, MatchType
from ledgerlink.schemas.transaction import Transaction
from ledgerlink.services.pair_matching import (
    MatchingError,
    PairMatcher,
    absolute_amount_difference,
    fractional_days,
    has_transfer_keyword,
    opposite_signs,
    relative_amount_difference,
    whole_day_difference,
    within_date_range,
)
from ledgerlink.services.transactions import TransactionPatch, TransactionStore

logger = get_logger(__name__)

BASE_CONFIDENCE = 0.5
MANUAL_SEARCH_BASE_CONFIDENCE = 0.4
KEYWORD_BONUS = 0.1
# (max whole days, bonus), first tier that fits wins
DATE_BONUSES = ((0, 0.3), (1, 0.2), (3, 0.1))
# (max absolute difference, bonus)
AMOUNT_BONUSES = ((Decimal("0"), 0.3), (Decimal("0.01"), 0.2), (Decimal("1.00"), 0.1))


def _tier_bonus(value, tiers) -> float:
    for limit, bonus in tiers:
        if value <= limit:
            return bonus
    return 0.0


class TransferMatcher(PairMatcher):
    """Links the outgoing and incoming legs of a transfer between accounts."""

    kind = MatchKind.TRANSFER
    note_label = "Matched Transfer"

    @property
    def default_max_days(self) -> float:
        return self.config.transfer_max_days

    @property
    def default_tolerance(self) -> float:
        return self.config.transfer_tolerance

    def score(self, days: float, amount_difference: Decimal, keyword: bool, *, base: float = BASE_CONFIDENCE) -> float:
        confidence = base + _tier_bonus(days, DATE_BONUSES) + _tier_bonus(amount_difference, AMOUNT_BONUSES)
        if keyword:
            confidence += KEYWORD_BONUS
        return confidence

    def _looks_like_fee(self, a: Decimal, b: Decimal) -> bool:
        difference = absolute_amount_difference(a, b)
        return (
            difference < self.config.fee_max_absolute
            and relative_amount_difference(a, b) < self.config.fee_max_percentage
        )

    def score_pairs(
        self, transactions: Sequence[Transaction], max_days: float, tolerance: float
    ) -> Iterator[Match]:
        candidates = [
            t for t in transactions if t.type == TransactionType.TRANSFER and t.linked_id is None
        ]
        for i, first in enumerate(candidates):
            for second in candidates[i + 1 :]:
                match = self._score_pair(first, second, max_days, tolerance)
                if match is not None:
                    yield match

    def _score_pair(
        self, first: Transaction, second: Transaction, max_days: float, tolerance: float
    ) -> Match | None:
        if first.account == second.account or not opposite_signs(first.amount, second.amount):
            return None
        if fractional_days(first.date, second.date) > max_days:
            return None
        if relative_amount_difference(first.amount, second.amount) > tolerance:
            return None

        amount_difference = absolute_amount_difference(first.amount, second.amount)
        same_currency = first.currency == second.currency
        # Same-currency legs only differ by a small transfer fee.
        if same_currency and amount_difference != 0 and not self._looks_like_fee(first.amount, second.amount):
            return None

        source, target = (first, second) if first.amount < 0 else (second, first)
        elapsed = fractional_days(source.date, target.date)
        days = whole_day_difference(source.date, target.date)
        keyword = has_transfer_keyword(source.description) or has_transfer_keyword(target.description)
        confidence = min(self.score(elapsed, amount_difference, keyword), self.config.max_confidence)
        exact = elapsed == 0 and amount_difference == 0

        return self.build_match(
            source,
            target,
            confidence=confidence,
            match_type=MatchType.EXACT if exact else MatchType.APPROXIMATE,
            date_difference=days,
            amount_difference=amount_difference,
            reasoning=f"Transfer match: {source.account} ↔ {target.account}, {days} days apart",
        )

    def auto_match(
        self, transactions: Sequence[Transaction], tolerance: float | None = None
    ) -> tuple[list[Transaction], list[Match]]:
        """Link confident transfer pairs. Existing links, manual ones included, are kept."""
        if tolerance is None:
            tolerance = self.config.transfer_auto_tolerance
        return super().auto_match(transactions, tolerance)

    # ------------------------------------------------------------------
    # Manual search and linking
    # ------------------------------------------------------------------

    def find_manual_matches(self, request: MatchRequest) -> list[Match]:
        """Relaxed search for candidates the user confirms by hand.

        Foreign-currency income and expenses are searched alongside
        transfers, and a transaction may appear in several suggestions.
        """
        max_days = (
            self.config.manual_search_max_days
            if request.max_days_difference is None
            else request.max_days_difference
        )
        tolerance = (
            self.config.manual_search_tolerance
            if request.tolerance_percentage is None
            else request.tolerance_percentage
        )
        candidates = [
            t
            for t in within_date_range(request.transactions, request.start_date, request.end_date)
            if t.linked_id is None
            and (t.type == TransactionType.TRANSFER or t.currency != settings.base_currency)
        ]

        suggestions: list[Match] = []
        for i, first in enumerate(candidates):
            for second in candidates[i + 1 :]:
                if not opposite_signs(first.amount, second.amount):
                    continue
                cross_currency = first.currency != second.currency
                if first.account == second.account and not cross_currency:
                    continue
                if fractional_days(first.date, second.date) > max_days:
                    continue
                relative = relative_amount_difference(first.amount, second.amount)
                if relative > tolerance:
                    continue

                source, target = (first, second) if first.amount < 0 else (second, first)
                days = whole_day_difference(source.date, target.date)
                amount_difference = absolute_amount_difference(source.amount, target.amount)
                keyword = has_transfer_keyword(source.description) or has_transfer_keyword(
                    target.description
                )
                confidence = min(
                    self.score(
                        fractional_days(source.date, target.date),
                        amount_difference,
                        keyword,
                        base=MANUAL_SEARCH_BASE_CONFIDENCE,
                    ),
                    self.config.manual_search_max_confidence,
                )
                suggestions.append(
                    self.build_match(
                        source,
                        target,
                        confidence=confidence,
                        match_type=MatchType.APPROXIMATE,
                        date_difference=days,
                        amount_difference=amount_difference,
                        reasoning=(
                            f"Possible transfer: {source.account} ↔ {target.account}, "
                            f"{days} days apart, {relative:.1%} amount difference"
                        ),
                    )
                )

        suggestions.sort(key=lambda m: -m.confidence)
        return suggestions

    async def manually_match(
        self, store: TransactionStore, source_id: str, target_id: str
    ) -> Match:
        """Link two transfers chosen by the user, both sides in one write."""
        source = await store.get_transaction(source_id)
        target = await store.get_transaction(target_id)
        if source is None or target is None:
            raise MatchingError("Both transactions must exist")
        if source.id == target.id:
            raise MatchingError("A transaction cannot be matched with itself")
        if source.type != TransactionType.TRANSFER or target.type != TransactionType.TRANSFER:
            raise MatchingError("Both transactions must be transfers")
        if source.account == target.account:
            raise MatchingError("Transfers must be in different accounts")
        if source.linked_id or target.linked_id:
            raise MatchingError("Transaction is already matched")

        days = whole_day_difference(source.date, target.date)
        match = self.build_match(
            source,
            target,
            confidence=1.0,
            match_type=MatchType.MANUAL,
            date_difference=days,
            amount_difference=absolute_amount_difference(source.amount, target.amount),
            reasoning=f"Manual transfer match: {source.account} ↔ {target.account}, {days} days apart",
        )
        match.is_verified = True

        source_updates, target_updates = self.link_updates(source, target, match)
        await store.batch_update_transactions(
            [TransactionPatch(source.id, source_updates), TransactionPatch(target.id, target_updates)]
        )
        logger.info("Transfers matched manually", match_id=match.id)
        return match

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def get_matched_transfers(self, transactions: Sequence[Transaction]) -> list[Match]:
        """Rebuild matches for transfer pairs that are already linked."""
        by_id = {t.id: t for t in transactions}
        matches: list[Match] = []
        seen: set[str] = set()
        for transaction in transactions:
            if transaction.type != TransactionType.TRANSFER or transaction.id in seen:
                continue
            counterpart = by_id.get(transaction.linked_id or "")
            if counterpart is None or counterpart.linked_id != transaction.id:
                continue
            seen.update((transaction.id, counterpart.id))
            source, target = (
                (transaction, counterpart) if transaction.amount < 0 else (counterpart, transaction)
            )
            days = whole_day_difference(source.date, target.date)
            matches.append(
                self.build_match(
                    source,
                    target,
                    confidence=1.0,
                    match_type=MatchType.MANUAL,
                    date_difference=days,
                    amount_difference=absolute_amount_difference(source.amount, target.amount),
                    reasoning=f"Linked transfer: {source.account} ↔ {target.account}",
                )
            )
        return matches

    @staticmethod
    def get_unmatched_transfers(transactions: Sequence[Transaction]) -> list[Transaction]:
        return [
            t for t in transactions if t.type == TransactionType.TRANSFER and t.linked_id is None
        ]

    def count_unmatched_transfers(self, transactions: Sequence[Transaction]) -> int:
        return len(self.get_unmatched_transfers(transactions))

    @staticmethod
    def filter_non_transfers(transactions: Sequence[Transaction]) -> list[Transaction]:
        """Drop transfers so they do not count as spending or income."""
        return [t for t in transactions if t.type != TransactionType.TRANSFER]
