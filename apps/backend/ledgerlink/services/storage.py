"""SQLAlchemy-backed implementations of the store collaborators."""

from collections.abc import Callable, Sequence
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerlink.logger import get_logger
from ledgerlink.models import CategoryRuleRecord, TransactionHistory, TransactionRecord
from ledgerlink.schemas.rules import CategoryRule
from ledgerlink.schemas.transaction import Transaction
from ledgerlink.services.transactions import (
    ChangeListener,
    ListenerRegistry,
    PersistenceError,
    TransactionNotFoundError,
    TransactionPatch,
    apply_transaction_update,
    changed_fields,
)

logger = get_logger(__name__)


async def _commit(db: AsyncSession) -> None:
    try:
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        raise PersistenceError(str(e)) from e


class SqlTransactionStore:
    """Transaction store on an async session. One commit per write call."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self._listeners = ListenerRegistry()

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        return self._listeners.subscribe(listener)

    async def get_all_transactions(self) -> list[Transaction]:
        result = await self.db.execute(
            select(TransactionRecord).order_by(TransactionRecord.date, TransactionRecord.id)
        )
        return [Transaction.model_validate(record) for record in result.scalars().all()]

    async def get_transaction(self, transaction_id: str) -> Transaction | None:
        record = await self.db.get(TransactionRecord, transaction_id)
        return Transaction.model_validate(record) if record else None

    async def add_transaction(self, transaction: Transaction) -> Transaction:
        added = await self.add_transactions([transaction])
        return added[0]

    async def add_transactions(self, transactions: Sequence[Transaction]) -> list[Transaction]:
        transactions = list(transactions)
        if not transactions:
            return []
        self.db.add_all(TransactionRecord(**t.model_dump()) for t in transactions)
        await _commit(self.db)
        self._listeners.notify(transactions)
        logger.info("Transactions added", count=len(transactions))
        return transactions

    async def update_transaction(self, transaction_id: str, updates: dict[str, Any]) -> Transaction:
        await self.batch_update_transactions([TransactionPatch(transaction_id, updates)])
        updated = await self.get_transaction(transaction_id)
        if updated is None:
            raise TransactionNotFoundError([transaction_id])
        return updated

    async def batch_update_transactions(
        self, patches: Sequence[TransactionPatch], *, skip_history: bool = False
    ) -> int:
        patches = list(patches)
        if not patches:
            return 0

        ids = {patch.id for patch in patches}
        result = await self.db.execute(
            select(TransactionRecord).where(TransactionRecord.id.in_(ids))
        )
        records = {record.id: record for record in result.scalars().all()}
        missing = ids - records.keys()
        if missing:
            raise TransactionNotFoundError(missing)

        updated: dict[str, Transaction] = {}
        for patch in patches:
            current = updated.get(patch.id) or Transaction.model_validate(records[patch.id])
            after = apply_transaction_update(current, patch.updates)
            updated[patch.id] = after
            if not skip_history:
                self.db.add(
                    TransactionHistory(
                        transaction_id=patch.id,
                        changes=changed_fields(current, after),
                    )
                )

        for transaction_id, transaction in updated.items():
            record = records[transaction_id]
            for name, value in transaction.model_dump(exclude={"id"}).items():
                setattr(record, name, value)

        await _commit(self.db)
        self._listeners.notify(list(updated.values()))
        logger.info("Batch update committed", updated=len(updated), skip_history=skip_history)
        return len(updated)


class SqlRuleRepository:
    """Rule persistence for ``RuleEngine``."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_rules(self) -> list[CategoryRule]:
        result = await self.db.execute(
            select(CategoryRuleRecord).order_by(
                CategoryRuleRecord.priority, CategoryRuleRecord.created_at
            )
        )
        return [self._to_rule(record) for record in result.scalars().all()]

    async def save_rule(self, rule: CategoryRule) -> None:
        data = rule.model_dump(mode="json")
        record = await self.db.get(CategoryRuleRecord, rule.id)
        if record is None:
            record = CategoryRuleRecord(id=rule.id, created_at=rule.created_date)
            self.db.add(record)
        record.name = rule.name
        record.description = rule.description
        record.is_active = rule.is_active
        record.priority = rule.priority
        record.conditions = data["conditions"]
        record.action = data["action"]
        record.updated_at = rule.last_modified_date
        await _commit(self.db)

    async def delete_rule(self, rule_id: str) -> bool:
        result = await self.db.execute(
            delete(CategoryRuleRecord).where(CategoryRuleRecord.id == rule_id)
        )
        await _commit(self.db)
        return result.rowcount > 0

    async def delete_all_rules(self) -> int:
        result = await self.db.execute(delete(CategoryRuleRecord))
        await _commit(self.db)
        return result.rowcount

    @staticmethod
    def _to_rule(record: CategoryRuleRecord) -> CategoryRule:
        return CategoryRule(
            id=record.id,
            name=record.name,
            description=record.description,
            is_active=record.is_active,
            priority=record.priority,
            conditions=record.conditions,
            action=record.action,
            created_date=record.created_at,
            last_modified_date=record.updated_at,
        )
