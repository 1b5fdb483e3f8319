"""Duplicate detection for incoming transaction batches."""

import hashlib
import re
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal
from difflib import SequenceMatcher

from ledgerlink.logger import get_logger, log_timing
from ledgerlink.schemas.duplicates import (
    DuplicateDetectionConfig,
    DuplicateDetectionResult,
    DuplicateGroup,
    DuplicateMatchType,
    DuplicateTransaction,
)
from ledgerlink.schemas.transaction import Transaction

logger = get_logger(__name__)

AMOUNT_WEIGHT = 0.4
DATE_WEIGHT = 0.3
DESCRIPTION_WEIGHT = 0.3
CENTS = Decimal("0.01")


def normalize_text(value: str) -> str:
    """Normalize text for similarity comparison."""
    cleaned = re.sub(r"[^a-z0-9]+", " ", value.lower()).strip()
    return re.sub(r"\s+", " ", cleaned)


def description_similarity(a: str | None, b: str | None) -> float:
    """Blend of character ratio and token overlap, 0-1."""
    if not a or not b:
        return 0.0
    norm_a = normalize_text(a)
    norm_b = normalize_text(b)
    if not norm_a or not norm_b:
        return 0.0
    if norm_a == norm_b:
        return 1.0
    ratio = SequenceMatcher(None, norm_a, norm_b).ratio()
    tokens_a = set(norm_a.split())
    tokens_b = set(norm_b.split())
    token_score = len(tokens_a & tokens_b) / len(tokens_a | tokens_b)
    return round(0.6 * ratio + 0.4 * token_score, 4)


def calculate_fingerprint(
    transaction: Transaction, include_account: bool = True, *, flip_sign: bool = False
) -> str:
    """SHA256(date|signed amount|normalized description|account).

    `flip_sign` hashes the negated amount, for looking up sign-flipped re-imports.
    """
    amount = -transaction.amount if flip_sign else transaction.amount
    components = [
        transaction.date.date().isoformat(),
        str(amount.quantize(CENTS)),
        normalize_text(transaction.description),
        transaction.account if include_account else "",
    ]
    return hashlib.sha256("|".join(components).encode("utf-8")).hexdigest()


def _same_kind(existing: Transaction, incoming: Transaction) -> bool:
    """Same sign, or a sign-flipped re-import of the same transaction type.

    A refund against a charge has the opposite sign and a different type, so
    it is never treated as a duplicate.
    """
    if (existing.amount < 0) == (incoming.amount < 0):
        return True
    return existing.type == incoming.type


@dataclass
class _Candidate:
    transaction: Transaction
    similarity: float
    amount_difference: Decimal
    days_difference: int
    match_fields: list[str]


class DuplicateDetector:
    """Partitions incoming records into duplicates of existing ones and unique ones.

    Exact duplicates are found through a fingerprint index. Everything else
    is scored against existing records within the date and amount tolerances.
    """

    def __init__(self, config: DuplicateDetectionConfig | None = None):
        self.config = config or DuplicateDetectionConfig()

    def detect(
        self, existing: Sequence[Transaction], incoming: Sequence[Transaction]
    ) -> DuplicateDetectionResult:
        result = DuplicateDetectionResult()
        if not incoming:
            return result

        include_account = self.config.require_same_account
        by_fingerprint: dict[str, Transaction] = {}
        for transaction in existing:
            by_fingerprint.setdefault(calculate_fingerprint(transaction, include_account), transaction)
        by_account: dict[str, list[Transaction]] = defaultdict(list)
        for transaction in existing:
            by_account[transaction.account].append(transaction)

        with log_timing(
            "detect_duplicates",
            logger=logger,
            level="debug",
            existing=len(existing),
            incoming=len(incoming),
        ) as ctx:
            for transaction in incoming:
                exact = self._exact_match(by_fingerprint, transaction)
                if exact is not None:
                    result.duplicates.append(self._exact_duplicate(exact, transaction))
                    continue

                pool = by_account.get(transaction.account, []) if include_account else existing
                best = self._best_candidate(transaction, pool)
                if best is None:
                    result.unique_transactions.append(transaction)
                    continue
                result.duplicates.append(
                    DuplicateTransaction(
                        existing_transaction=best.transaction,
                        new_transaction=transaction,
                        match_fields=best.match_fields,
                        similarity=best.similarity,
                        amount_difference=best.amount_difference,
                        days_difference=best.days_difference,
                        match_type=DuplicateMatchType.TOLERANCE,
                    )
                )
            ctx["duplicates"] = len(result.duplicates)

        return result

    def find_duplicate_groups(self, transactions: Sequence[Transaction]) -> list[DuplicateGroup]:
        """Cluster records of one set that look like the same transaction.

        Each record joins the first earlier cluster whose first member it
        duplicates. Only clusters with more than one record are returned.
        """
        include_account = self.config.require_same_account
        clusters: list[list[Transaction]] = []
        similarities: list[float] = []
        by_fingerprint: dict[str, int] = {}

        for transaction in sorted(transactions, key=lambda t: (t.date, t.id)):
            fingerprint = calculate_fingerprint(transaction, include_account)
            index = by_fingerprint.get(fingerprint)
            if index is None:
                flipped = by_fingerprint.get(calculate_fingerprint(transaction, include_account, flip_sign=True))
                if flipped is not None and _same_kind(clusters[flipped][0], transaction):
                    index = flipped
            similarity = 1.0
            if index is None:
                best = self._best_candidate(transaction, [cluster[0] for cluster in clusters])
                if best is not None:
                    index = next(i for i, c in enumerate(clusters) if c[0] is best.transaction)
                    similarity = best.similarity
            if index is None:
                by_fingerprint[fingerprint] = len(clusters)
                clusters.append([transaction])
                similarities.append(1.0)
                continue
            clusters[index].append(transaction)
            similarities[index] = min(similarities[index], similarity)

        return [
            DuplicateGroup(transactions=cluster, similarity=similarity)
            for cluster, similarity in zip(clusters, similarities, strict=True)
            if len(cluster) > 1
        ]

    def _exact_match(
        self, by_fingerprint: dict[str, Transaction], transaction: Transaction
    ) -> Transaction | None:
        include_account = self.config.require_same_account
        exact = by_fingerprint.get(calculate_fingerprint(transaction, include_account))
        if exact is not None:
            return exact
        flipped = by_fingerprint.get(calculate_fingerprint(transaction, include_account, flip_sign=True))
        if flipped is not None and _same_kind(flipped, transaction):
            return flipped
        return None

    def _exact_duplicate(self, existing: Transaction, incoming: Transaction) -> DuplicateTransaction:
        fields = ["date", "amount", "description"]
        if existing.account == incoming.account:
            fields.append("account")
        return DuplicateTransaction(
            existing_transaction=existing,
            new_transaction=incoming,
            match_fields=fields,
            similarity=1.0,
            amount_difference=abs(abs(existing.amount) - abs(incoming.amount)),
            days_difference=0,
            match_type=DuplicateMatchType.EXACT,
        )

    def _best_candidate(
        self, incoming: Transaction, pool: Sequence[Transaction]
    ) -> _Candidate | None:
        best: _Candidate | None = None
        for existing in pool:
            candidate = self._score(existing, incoming)
            if candidate is not None and (best is None or candidate.similarity > best.similarity):
                best = candidate
        return best

    def _score(self, existing: Transaction, incoming: Transaction) -> _Candidate | None:
        config = self.config
        if config.require_same_account and existing.account != incoming.account:
            return None
        if not _same_kind(existing, incoming):
            return None

        days = abs((existing.date.date() - incoming.date.date()).days)
        if days > config.date_tolerance:
            return None

        amount_difference = abs(abs(existing.amount) - abs(incoming.amount))
        allowed = max(
            Decimal(str(config.amount_tolerance)) * abs(incoming.amount),
            config.fixed_amount_tolerance,
        )
        if amount_difference > allowed:
            return None

        same_description = normalize_text(existing.description) == normalize_text(incoming.description)
        if config.require_exact_description and not same_description:
            return None

        amount_score = 1.0 if allowed == 0 else 1.0 - float(amount_difference / allowed) * 0.5
        date_score = 1.0 - days / (config.date_tolerance + 1)
        description_score = description_similarity(existing.description, incoming.description)
        similarity = round(
            AMOUNT_WEIGHT * amount_score
            + DATE_WEIGHT * date_score
            + DESCRIPTION_WEIGHT * description_score,
            4,
        )
        if similarity < config.similarity_threshold:
            return None

        fields: list[str] = []
        if days == 0:
            fields.append("date")
        if amount_difference == 0:
            fields.append("amount")
        if same_description:
            fields.append("description")
        if existing.account == incoming.account:
            fields.append("account")
        return _Candidate(existing, similarity, amount_difference, days, fields)


def detect_duplicates(
    existing: Sequence[Transaction],
    incoming: Sequence[Transaction],
    config: DuplicateDetectionConfig | None = None,
) -> DuplicateDetectionResult:
    return DuplicateDetector(config).detect(existing, incoming)
