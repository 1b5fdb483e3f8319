"""SQLAlchemy models package."""

from ledgerlink.models.rule import CategoryRuleRecord
from ledgerlink.models.transaction import TransactionHistory, TransactionRecord, TransactionType

__all__ = [
    "CategoryRuleRecord",
    "TransactionHistory",
    "TransactionRecord",
    "TransactionType",
]
