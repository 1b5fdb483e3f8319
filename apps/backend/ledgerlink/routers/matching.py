"""Pair matching API router."""

from collections import defaultdict

from fastapi import APIRouter, status

from ledgerlink.deps import MatchingConfigDep, TransactionStoreDep
from ledgerlink.logger import get_logger
from ledgerlink.schemas import (
    ApplyMatchesRequest,
    ManualMatchRequest,
    Match,
    MatchKind,
    MatchRequest,
    MatchResponse,
    PersistMatchesRequest,
    PersistMatchesResponse,
    Transaction,
    UnmatchRequest,
)
from ledgerlink.services import (
    MatchingConfig,
    MatchingError,
    PersistenceError,
    ReimbursementMatcher,
    SameAccountMatcher,
    TransferMatcher,
)
from ledgerlink.services.pair_matching import PairMatcher, parse_match_id
from ledgerlink.utils import raise_bad_request, raise_not_found, raise_service_unavailable

router = APIRouter(prefix="/matching", tags=["matching"])
logger = get_logger(__name__)

_MATCHERS: dict[MatchKind, type[PairMatcher]] = {
    MatchKind.TRANSFER: TransferMatcher,
    MatchKind.SAME_ACCOUNT: SameAccountMatcher,
    MatchKind.REIMBURSEMENT: ReimbursementMatcher,
}


def _matcher_for(kind: MatchKind, config: MatchingConfig) -> PairMatcher:
    return _MATCHERS[kind](config)


def _group_by_kind(matches: list[Match]) -> dict[MatchKind, list[Match]]:
    grouped: dict[MatchKind, list[Match]] = defaultdict(list)
    for match in matches:
        grouped[match.kind].append(match)
    return grouped


@router.post("/transfers", response_model=MatchResponse)
async def find_transfers(request: MatchRequest, config: MatchingConfigDep) -> MatchResponse:
    return TransferMatcher(config).find_matches(request)


@router.post("/transfers/suggestions", response_model=list[Match])
async def suggest_transfers(request: MatchRequest, config: MatchingConfigDep) -> list[Match]:
    """Relaxed candidate search for transfers the user confirms by hand."""
    return TransferMatcher(config).find_manual_matches(request)


@router.post("/transfers/manual", response_model=Match, status_code=status.HTTP_201_CREATED)
async def manual_transfer_match(
    request: ManualMatchRequest,
    store: TransactionStoreDep,
    config: MatchingConfigDep,
) -> Match:
    try:
        return await TransferMatcher(config).manually_match(
            store, request.source_transaction_id, request.target_transaction_id
        )
    except MatchingError as e:
        raise_bad_request(str(e), cause=e)
    except PersistenceError as e:
        raise_service_unavailable("Match could not be saved", cause=e)


@router.post("/same-account", response_model=MatchResponse)
async def find_same_account(request: MatchRequest, config: MatchingConfigDep) -> MatchResponse:
    return SameAccountMatcher(config).find_matches(request)


@router.post("/reimbursements", response_model=MatchResponse)
async def find_reimbursements(request: MatchRequest, config: MatchingConfigDep) -> MatchResponse:
    return await ReimbursementMatcher(config).find_matches_with_conversion(request)


@router.post("/apply", response_model=list[Transaction])
async def apply_matches(request: ApplyMatchesRequest, config: MatchingConfigDep) -> list[Transaction]:
    """Link both sides of every match. Nothing is persisted."""
    transactions = request.transactions
    for kind, matches in _group_by_kind(request.matches).items():
        transactions = _matcher_for(kind, config).apply_matches(transactions, matches)
    return transactions


@router.post("/unmatch", response_model=list[Transaction])
async def unmatch(request: UnmatchRequest, config: MatchingConfigDep) -> list[Transaction]:
    parsed = parse_match_id(request.match_id)
    if parsed is None:
        raise_bad_request(f"Invalid match id: {request.match_id}")
    kind, _, _ = parsed
    return _matcher_for(kind, config).unmatch(request.transactions, request.match_id)


@router.post("/persist", response_model=PersistMatchesResponse)
async def persist_matches(
    request: PersistMatchesRequest,
    store: TransactionStoreDep,
    config: MatchingConfigDep,
) -> PersistMatchesResponse:
    """Write links for accepted matches to the stored transactions."""
    persisted = 0
    try:
        for kind, matches in _group_by_kind(request.matches).items():
            transactions = await store.get_all_transactions()
            persisted += await _matcher_for(kind, config).persist_matches(store, transactions, matches)
    except PersistenceError as e:
        raise_service_unavailable("Matches could not be saved", cause=e)
    logger.info("Matches persisted", requested=len(request.matches), persisted=persisted)
    return PersistMatchesResponse(persisted=persisted)


@router.delete("/{match_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_match(match_id: str, store: TransactionStoreDep, config: MatchingConfigDep) -> None:
    """Clear a stored link on both sides."""
    parsed = parse_match_id(match_id)
    if parsed is None:
        raise_bad_request(f"Invalid match id: {match_id}")
    kind, _, _ = parsed
    try:
        removed = await _matcher_for(kind, config).unmatch_persisted(store, match_id)
    except PersistenceError as e:
        raise_service_unavailable("Match could not be removed", cause=e)
    if not removed:
        raise_not_found("Match")
