"""Shared machinery for the pair matchers.

A pair matcher proposes links between two transactions (a transfer's two
legs, a charge and its reversal, an expense and its reimbursement). Links are
symmetric: applying a match writes each side's ``linked_id`` to the other's
id, and unmatching clears both.
"""

from __future__ import annotations

import asyncio
import math
import os
import re
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

from ledgerlink.logger import get_logger, log_timing
from ledgerlink.schemas.matching import Match, MatchKind, MatchRequest, MatchResponse, MatchType
from ledgerlink.schemas.transaction import Transaction
from ledgerlink.services.transactions import (
    TransactionPatch,
    TransactionStore,
    apply_transaction_update,
)

logger = get_logger(__name__)

SECONDS_PER_DAY = 86400

TRANSFER_KEYWORDS = [
    "ach transfer",
    "wire transfer",
    "transfer to",
    "transfer from",
    "internal transfer",
    "online transfer",
    "fund transfer",
    "zelle",
    "venmo",
    "quickpay",
    "atm withdrawal",
    "withdrawal",
    "deposit",
    "transfer",
    "tfr",
    "xfer",
]

MATCH_NOTE_PATTERNS = [
    re.compile(r"\n?\[Matched Transfer: .+?\]"),
    re.compile(r"\n?\[Manual Transfer Match\]"),
    re.compile(r"\n?\[Matched Transaction: .+?\]"),
    re.compile(r"\n?\[Matched Reimbursement: .+?\]"),
]


class MatchingError(Exception):
    """Raised when a requested link violates the pairing rules."""

    pass


@dataclass(frozen=True)
class MatchingConfig:
    """Runtime tuning for the pair matchers."""

    transfer_max_days: float = 7
    transfer_tolerance: float = 0.01
    transfer_auto_tolerance: float = 0.05
    fee_max_absolute: Decimal = Decimal("5.00")
    fee_max_percentage: float = 0.003
    manual_search_max_days: float = 8
    manual_search_tolerance: float = 0.12
    manual_search_max_confidence: float = 0.85
    same_account_max_days: float = 1
    same_account_tolerance: float = 0.01
    reimbursement_max_days: float = 90
    reimbursement_tolerance: float = 0.05
    auto_match_threshold: float = 0.7
    max_confidence: float = 0.99
    persist_chunk_size: int = 200


DEFAULT_MATCHING_CONFIG = MatchingConfig()

_config_cache: MatchingConfig | None = None


def load_matching_config(force_reload: bool = False) -> MatchingConfig:
    """Load matcher tuning from ``config/matching.yaml`` plus env overrides.

    Caches the result to avoid repeated disk I/O.
    """
    global _config_cache
    if _config_cache is not None and not force_reload:
        return _config_cache

    config = DEFAULT_MATCHING_CONFIG
    config_path = Path(__file__).resolve().parents[2] / "config" / "matching.yaml"

    if config_path.exists():
        try:
            raw = yaml.safe_load(config_path.read_text()) or {}
            transfers = raw.get("transfers", {})
            manual = raw.get("manual_search", {})
            same_account = raw.get("same_account", {})
            reimbursements = raw.get("reimbursements", {})
            thresholds = raw.get("thresholds", {})

            config = MatchingConfig(
                transfer_max_days=float(transfers.get("max_days", config.transfer_max_days)),
                transfer_tolerance=float(transfers.get("tolerance", config.transfer_tolerance)),
                transfer_auto_tolerance=float(
                    transfers.get("auto_tolerance", config.transfer_auto_tolerance)
                ),
                fee_max_absolute=Decimal(str(transfers.get("fee_max_absolute", config.fee_max_absolute))),
                fee_max_percentage=float(transfers.get("fee_max_percentage", config.fee_max_percentage)),
                manual_search_max_days=float(manual.get("max_days", config.manual_search_max_days)),
                manual_search_tolerance=float(manual.get("tolerance", config.manual_search_tolerance)),
                manual_search_max_confidence=float(
                    manual.get("max_confidence", config.manual_search_max_confidence)
                ),
                same_account_max_days=float(same_account.get("max_days", config.same_account_max_days)),
                same_account_tolerance=float(
                    same_account.get("tolerance", config.same_account_tolerance)
                ),
                reimbursement_max_days=float(
                    reimbursements.get("max_days", config.reimbursement_max_days)
                ),
                reimbursement_tolerance=float(
                    reimbursements.get("tolerance", config.reimbursement_tolerance)
                ),
                auto_match_threshold=float(thresholds.get("auto_match", config.auto_match_threshold)),
                max_confidence=float(thresholds.get("max_confidence", config.max_confidence)),
                persist_chunk_size=int(raw.get("persist_chunk_size", config.persist_chunk_size)),
            )
        except (yaml.YAMLError, OSError, TypeError, ValueError, ArithmeticError) as e:
            logger.warning(
                "Failed to load matching config - using defaults",
                config_path=str(config_path),
                error=str(e),
                error_type=type(e).__name__,
            )

    threshold_env = os.getenv("MATCHING_AUTO_MATCH_THRESHOLD")
    max_confidence_env = os.getenv("MATCHING_MAX_CONFIDENCE")
    if threshold_env:
        config = replace(config, auto_match_threshold=float(threshold_env))
    if max_confidence_env:
        config = replace(config, max_confidence=float(max_confidence_env))

    _config_cache = config
    return config


# =============================================================================
# Day and amount arithmetic
# =============================================================================


def fractional_days(a: datetime, b: datetime) -> float:
    return abs((a - b).total_seconds()) / SECONDS_PER_DAY


def whole_day_difference(a: datetime, b: datetime) -> int:
    """Day gap rounded half up to whole days: 22 hours reports 1, 31.2 hours reports 1."""
    return math.floor(fractional_days(a, b) + 0.5)


def absolute_amount_difference(a: Decimal, b: Decimal) -> Decimal:
    return abs(abs(a) - abs(b))


def relative_amount_difference(a: Decimal, b: Decimal) -> float:
    """Gap between absolute amounts relative to their mean."""
    mean = (abs(a) + abs(b)) / 2
    if mean == 0:
        return 0.0
    return float(absolute_amount_difference(a, b) / mean)


def opposite_signs(a: Decimal, b: Decimal) -> bool:
    return (a < 0 < b) or (b < 0 < a)


def has_transfer_keyword(description: str | None) -> bool:
    if not description:
        return False
    lowered = description.lower()
    return any(keyword in lowered for keyword in TRANSFER_KEYWORDS)


def within_date_range(
    transactions: Iterable[Transaction],
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[Transaction]:
    return [
        t
        for t in transactions
        if (start is None or t.date >= start) and (end is None or t.date <= end)
    ]


# =============================================================================
# Match ids and notes
# =============================================================================


def build_match_id(kind: MatchKind, source_id: str, target_id: str) -> str:
    return f"{kind.value}:{source_id}:{target_id}"


def parse_match_id(match_id: str) -> tuple[MatchKind, str, str] | None:
    parts = match_id.split(":")
    if len(parts) != 3 or not parts[1] or not parts[2]:
        return None
    try:
        kind = MatchKind(parts[0])
    except ValueError:
        return None
    return kind, parts[1], parts[2]


def confidence_note(label: str, confidence: float) -> str:
    return f"[{label}: {confidence:.2f} confidence]"


def append_note(notes: str | None, note: str) -> str:
    return f"{notes}\n{note}" if notes else note


def strip_match_notes(notes: str | None) -> str | None:
    if not notes:
        return notes
    for pattern in MATCH_NOTE_PATTERNS:
        notes = pattern.sub("", notes)
    return notes.strip() or None


# =============================================================================
# Base matcher
# =============================================================================


class PairMatcher:
    """Scoring-independent half of every matcher.

    Subclasses set ``kind`` and ``note_label``, provide default windows and
    implement ``score_pairs``.
    """

    kind: MatchKind
    note_label: str
    manual_note = "[Manual Transfer Match]"

    def __init__(self, config: MatchingConfig | None = None):
        self.config = config or load_matching_config()

    @property
    def default_max_days(self) -> float:
        raise NotImplementedError

    @property
    def default_tolerance(self) -> float:
        raise NotImplementedError

    def score_pairs(
        self, transactions: Sequence[Transaction], max_days: float, tolerance: float
    ) -> Iterator[Match]:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Finding
    # ------------------------------------------------------------------

    def find_matches(self, request: MatchRequest) -> MatchResponse:
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
        transactions = within_date_range(request.transactions, request.start_date, request.end_date)

        with log_timing(
            "find_matches",
            logger=logger,
            level="debug",
            kind=self.kind.value,
            size=len(transactions),
        ) as ctx:
            matches = self.select_matches(self.score_pairs(transactions, max_days, tolerance))
            ctx["matches"] = len(matches)

        return self.build_response(request.transactions, matches)

    def select_matches(self, candidates: Iterable[Match]) -> list[Match]:
        """Greedy highest-confidence-first pick; each transaction is used once."""
        used: set[str] = set()
        selected: list[Match] = []
        for match in sorted(candidates, key=lambda m: -m.confidence):
            if match.source_transaction_id in used or match.target_transaction_id in used:
                continue
            used.update((match.source_transaction_id, match.target_transaction_id))
            selected.append(match)
        return selected

    @staticmethod
    def build_response(transactions: Sequence[Transaction], matches: list[Match]) -> MatchResponse:
        matched_ids = {m.source_transaction_id for m in matches} | {
            m.target_transaction_id for m in matches
        }
        return MatchResponse(
            matches=matches,
            unmatched=[t for t in transactions if t.id not in matched_ids],
        )

    def build_match(
        self,
        source: Transaction,
        target: Transaction,
        *,
        confidence: float,
        match_type: MatchType,
        date_difference: int,
        amount_difference: Decimal,
        reasoning: str,
    ) -> Match:
        return Match(
            id=build_match_id(self.kind, source.id, target.id),
            kind=self.kind,
            source_transaction_id=source.id,
            target_transaction_id=target.id,
            confidence=round(confidence, 4),
            match_type=match_type,
            date_difference=date_difference,
            amount_difference=amount_difference,
            reasoning=reasoning,
        )

    def auto_match(
        self, transactions: Sequence[Transaction], tolerance: float | None = None
    ) -> tuple[list[Transaction], list[Match]]:
        """Find and apply matches at or above the auto-match threshold."""
        response = self.find_matches(
            MatchRequest(transactions=list(transactions), tolerance_percentage=tolerance)
        )
        confident = [
            m for m in response.matches if m.confidence >= self.config.auto_match_threshold
        ]
        logger.info(
            "Auto-match completed",
            kind=self.kind.value,
            proposed=len(response.matches),
            applied=len(confident),
        )
        return self.apply_matches(transactions, confident), confident

    # ------------------------------------------------------------------
    # Linking
    # ------------------------------------------------------------------

    def link_updates(
        self, source: Transaction, target: Transaction, match: Match
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        if match.match_type == MatchType.MANUAL:
            note = self.manual_note
        else:
            note = confidence_note(self.note_label, match.confidence)
        return (
            {"linked_id": target.id, "notes": append_note(source.notes, note)},
            {"linked_id": source.id, "notes": append_note(target.notes, note)},
        )

    def unlink_updates(self, transaction: Transaction) -> dict[str, Any]:
        return {"linked_id": None, "notes": strip_match_notes(transaction.notes)}

    def plan_links(
        self, transactions: Sequence[Transaction], matches: Iterable[Match]
    ) -> dict[str, dict[str, Any]]:
        """Resolve matches into per-transaction updates.

        A match is skipped as a whole when either side is missing, already
        linked to a third transaction, or claimed by an earlier match.
        """
        by_id = {t.id: t for t in transactions}
        planned: dict[str, dict[str, Any]] = {}
        for match in matches:
            source = by_id.get(match.source_transaction_id)
            target = by_id.get(match.target_transaction_id)
            if source is None or target is None or source.id == target.id:
                logger.debug("Skipping match with missing side", match_id=match.id)
                continue
            if source.id in planned or target.id in planned:
                continue
            if source.linked_id not in (None, target.id) or target.linked_id not in (None, source.id):
                logger.debug("Skipping match on already linked transaction", match_id=match.id)
                continue
            planned[source.id], planned[target.id] = self.link_updates(source, target, match)
        return planned

    def apply_matches(
        self, transactions: Sequence[Transaction], matches: Iterable[Match]
    ) -> list[Transaction]:
        """Return copies of ``transactions`` with both sides of each match linked."""
        planned = self.plan_links(transactions, matches)
        return [
            apply_transaction_update(t, planned[t.id]) if t.id in planned else t
            for t in transactions
        ]

    def unmatch(self, transactions: Sequence[Transaction], match_id: str) -> list[Transaction]:
        """Clear both sides of a link. Unknown or stale ids change nothing."""
        parsed = parse_match_id(match_id)
        if parsed is None:
            return list(transactions)
        _, source_id, target_id = parsed

        by_id = {t.id: t for t in transactions}
        source, target = by_id.get(source_id), by_id.get(target_id)
        if source is None or target is None:
            return list(transactions)
        if source.linked_id != target_id and target.linked_id != source_id:
            return list(transactions)

        return [
            apply_transaction_update(t, self.unlink_updates(t)) if t.id in (source_id, target_id) else t
            for t in transactions
        ]

    async def persist_matches(
        self,
        store: TransactionStore,
        transactions: Sequence[Transaction],
        matches: Sequence[Match],
        *,
        chunk_size: int | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> int:
        """Write links through ``store``, one batch write per chunk of matches.

        Both sides of a match always share a write. ``cancel_event`` is
        checked before each chunk. Returns the number of matches persisted.
        """
        size = chunk_size or self.config.persist_chunk_size
        working = {t.id: t for t in transactions}
        persisted = 0

        for start in range(0, len(matches), size):
            if cancel_event is not None and cancel_event.is_set():
                logger.info(
                    "Match persistence cancelled",
                    kind=self.kind.value,
                    persisted=persisted,
                    remaining=len(matches) - start,
                )
                break

            planned = self.plan_links(list(working.values()), matches[start : start + size])
            if not planned:
                continue
            await store.batch_update_transactions(
                [TransactionPatch(transaction_id, updates) for transaction_id, updates in planned.items()]
            )
            for transaction_id, updates in planned.items():
                working[transaction_id] = apply_transaction_update(working[transaction_id], updates)
            persisted += len(planned) // 2

        return persisted

    async def unmatch_persisted(self, store: TransactionStore, match_id: str) -> bool:
        """Clear a stored link on both sides in a single write."""
        parsed = parse_match_id(match_id)
        if parsed is None:
            return False
        _, source_id, target_id = parsed
        source = await store.get_transaction(source_id)
        target = await store.get_transaction(target_id)
        if source is None or target is None:
            return False
        if source.linked_id != target_id and target.linked_id != source_id:
            return False
        await store.batch_update_transactions(
            [
                TransactionPatch(source.id, self.unlink_updates(source)),
                TransactionPatch(target.id, self.unlink_updates(target)),
            ]
        )
        logger.info("Match removed", match_id=match_id)
        return True
