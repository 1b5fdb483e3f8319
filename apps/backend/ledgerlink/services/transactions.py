"""Transaction updates and the persistence contract the engine talks to.

Every update, single or batched, goes through ``apply_transaction_update`` so
the category-change policy holds no matter which store is plugged in.
"""

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from ledgerlink.logger import get_logger
from ledgerlink.schemas.transaction import PROVENANCE_FIELDS, Transaction, utc_now

logger = get_logger(__name__)

ChangeListener = Callable[[list[Transaction]], None]

# Fields a caller can never overwrite through an update.
_IMMUTABLE_FIELDS = frozenset({"id", "added_date"})


class TransactionNotFoundError(Exception):
    """Raised when an update targets an unknown transaction id."""

    def __init__(self, transaction_ids: Iterable[str]):
        self.transaction_ids = sorted(transaction_ids)
        super().__init__(f"Transactions not found: {', '.join(self.transaction_ids)}")


class PersistenceError(Exception):
    """Raised when the backing store fails to save a write."""

    pass


@dataclass
class TransactionPatch:
    """Pending update for one transaction inside a batch write."""

    id: str
    updates: dict[str, Any]


@dataclass
class HistoryEntry:
    transaction_id: str
    changes: dict[str, Any]
    note: str | None = None
    recorded_at: datetime = field(default_factory=utc_now)


def apply_transaction_update(current: Transaction, updates: dict[str, Any]) -> Transaction:
    """Return a copy of ``current`` with ``updates`` applied.

    Changing ``category`` or ``subcategory`` to a different value drops the
    classification provenance (confidence, reasoning, ai_metadata) unless the
    same update supplies it. Re-sending identical values keeps it.
    """
    updates = {k: v for k, v in updates.items() if k not in _IMMUTABLE_FIELDS}
    category_changed = any(
        name in updates and updates[name] != getattr(current, name)
        for name in ("category", "subcategory")
    )

    merged = current.model_dump()
    merged.update(updates)
    if category_changed:
        for name in PROVENANCE_FIELDS:
            if name not in updates:
                merged[name] = None
    merged["last_modified"] = utc_now()
    return Transaction.model_validate(merged)


def changed_fields(before: Transaction, after: Transaction) -> dict[str, Any]:
    """Previous JSON values of every field that differs, for history rows."""
    old = before.model_dump(mode="json", exclude={"last_modified"})
    new = after.model_dump(mode="json", exclude={"last_modified"})
    return {name: value for name, value in old.items() if new.get(name) != value}


class TransactionStore(Protocol):
    """Persistence collaborator.

    ``batch_update_transactions`` validates every id before touching
    anything, persists once and notifies subscribers once.
    """

    async def get_all_transactions(self) -> list[Transaction]: ...

    async def get_transaction(self, transaction_id: str) -> Transaction | None: ...

    async def add_transaction(self, transaction: Transaction) -> Transaction: ...

    async def add_transactions(self, transactions: Sequence[Transaction]) -> list[Transaction]: ...

    async def update_transaction(self, transaction_id: str, updates: dict[str, Any]) -> Transaction: ...

    async def batch_update_transactions(
        self, patches: Sequence[TransactionPatch], *, skip_history: bool = False
    ) -> int: ...

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]: ...


class ListenerRegistry:
    """Change subscribers shared by the store implementations."""

    def __init__(self) -> None:
        self._listeners: list[ChangeListener] = []
        self.notification_count = 0

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def notify(self, changed: list[Transaction]) -> None:
        if not changed:
            return
        self.notification_count += 1
        for listener in list(self._listeners):
            listener(changed)


class InMemoryTransactionStore:
    """Dict-backed store. ``save_count`` counts physical writes."""

    def __init__(self, transactions: Iterable[Transaction] = ()):
        self._transactions: dict[str, Transaction] = {t.id: t for t in transactions}
        self._listeners = ListenerRegistry()
        self.history: list[HistoryEntry] = []
        self.save_count = 0

    @property
    def notification_count(self) -> int:
        return self._listeners.notification_count

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        return self._listeners.subscribe(listener)

    async def get_all_transactions(self) -> list[Transaction]:
        return list(self._transactions.values())

    async def get_transaction(self, transaction_id: str) -> Transaction | None:
        return self._transactions.get(transaction_id)

    async def add_transaction(self, transaction: Transaction) -> Transaction:
        added = await self.add_transactions([transaction])
        return added[0]

    async def add_transactions(self, transactions: Sequence[Transaction]) -> list[Transaction]:
        transactions = list(transactions)
        if not transactions:
            return []
        self._save()
        for transaction in transactions:
            self._transactions[transaction.id] = transaction
        self._listeners.notify(transactions)
        return transactions

    async def update_transaction(self, transaction_id: str, updates: dict[str, Any]) -> Transaction:
        await self.batch_update_transactions([TransactionPatch(transaction_id, updates)])
        return self._transactions[transaction_id]

    async def batch_update_transactions(
        self, patches: Sequence[TransactionPatch], *, skip_history: bool = False
    ) -> int:
        patches = list(patches)
        if not patches:
            return 0

        missing = {p.id for p in patches} - self._transactions.keys()
        if missing:
            raise TransactionNotFoundError(missing)

        updated: dict[str, Transaction] = {}
        history: list[HistoryEntry] = []
        for patch in patches:
            current = updated.get(patch.id, self._transactions[patch.id])
            after = apply_transaction_update(current, patch.updates)
            updated[patch.id] = after
            if not skip_history:
                history.append(HistoryEntry(patch.id, changed_fields(current, after)))

        # The write happens before any in-memory state changes.
        self._save()
        self._transactions.update(updated)
        self.history.extend(history)
        self._listeners.notify(list(updated.values()))
        logger.debug("Batch update saved", updated=len(updated), skip_history=skip_history)
        return len(updated)

    def _save(self) -> None:
        self.save_count += 1


async def bulk_update_category(
    store: TransactionStore,
    transaction_ids: Sequence[str],
    category: str,
    subcategory: str | None = None,
) -> int:
    """Assign one category to many transactions with a single batch write."""
    patches = [
        TransactionPatch(transaction_id, {"category": category, "subcategory": subcategory})
        for transaction_id in dict.fromkeys(transaction_ids)
    ]
    updated = await store.batch_update_transactions(patches)
    logger.info("Bulk category update", updated=updated, category=category)
    return updated
