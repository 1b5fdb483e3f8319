"""Transaction API router."""

from fastapi import APIRouter

from ledgerlink.deps import ClassifierDep, RuleEngineDep, TransactionStoreDep
from ledgerlink.logger import get_logger
from ledgerlink.models import TransactionType
from ledgerlink.schemas import (
    BulkCategoryUpdate,
    BulkUpdateResponse,
    ImportRequest,
    ImportResult,
    ListResponse,
    Transaction,
    TransactionUpdate,
)
from ledgerlink.services import (
    ImportService,
    PersistenceError,
    TransactionNotFoundError,
    bulk_update_category,
)
from ledgerlink.utils import raise_not_found, raise_service_unavailable

router = APIRouter(prefix="/transactions", tags=["transactions"])
logger = get_logger(__name__)


@router.get("", response_model=ListResponse[Transaction])
async def list_transactions(
    store: TransactionStoreDep,
    account: str | None = None,
    category: str | None = None,
    transaction_type: TransactionType | None = None,
) -> ListResponse[Transaction]:
    """List stored transactions ordered by date, with optional filters."""
    transactions = [
        t
        for t in await store.get_all_transactions()
        if (account is None or t.account == account)
        and (category is None or t.category == category)
        and (transaction_type is None or t.type == transaction_type)
    ]
    return ListResponse[Transaction](items=transactions, total=len(transactions))


@router.get("/{transaction_id}", response_model=Transaction)
async def get_transaction(transaction_id: str, store: TransactionStoreDep) -> Transaction:
    transaction = await store.get_transaction(transaction_id)
    if transaction is None:
        raise_not_found("Transaction")
    return transaction


@router.patch("/{transaction_id}", response_model=Transaction)
async def update_transaction(
    transaction_id: str,
    data: TransactionUpdate,
    store: TransactionStoreDep,
) -> Transaction:
    """Apply a partial update.

    A category change clears the AI confidence, reasoning and metadata unless
    the request sets them too.
    """
    try:
        return await store.update_transaction(transaction_id, data.model_dump(exclude_unset=True))
    except TransactionNotFoundError as e:
        logger.debug("Transaction not found for update", transaction_id=transaction_id)
        raise_not_found("Transaction", cause=e)
    except PersistenceError as e:
        raise_service_unavailable("Transaction could not be saved", cause=e)


@router.post("/bulk-category", response_model=BulkUpdateResponse)
async def bulk_category(data: BulkCategoryUpdate, store: TransactionStoreDep) -> BulkUpdateResponse:
    try:
        updated = await bulk_update_category(
            store, data.transaction_ids, data.category, data.subcategory
        )
    except TransactionNotFoundError as e:
        raise_not_found("Transaction", cause=e)
    except PersistenceError as e:
        raise_service_unavailable("Transactions could not be saved", cause=e)
    return BulkUpdateResponse(updated=updated)


@router.post("/import", response_model=ImportResult)
async def import_transactions(
    request: ImportRequest,
    store: TransactionStoreDep,
    engine: RuleEngineDep,
    classifier: ClassifierDep,
) -> ImportResult:
    """Deduplicate, classify and store a normalized batch of records."""
    service = ImportService(store, engine, classifier)
    try:
        return await service.import_records(
            request.transactions, skip_duplicates=request.skip_duplicates
        )
    except PersistenceError as e:
        raise_service_unavailable("Imported transactions could not be saved", cause=e)
