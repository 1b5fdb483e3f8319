"""Transaction records and their change history."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum as SQLEnum,
    Float,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from ledgerlink.database import Base
from ledgerlink.models.base import StringIdMixin, TimestampMixin


class TransactionType(str, Enum):
    """Direction of a transaction."""

    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"


class TransactionRecord(Base, StringIdMixin, TimestampMixin):
    """A persisted, normalized transaction.

    ``linked_id`` is the symmetric back-reference written by the pair
    matchers: when set, the counterpart carries this record's id.
    """

    __tablename__ = "transactions"

    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False, default="Uncategorized")
    subcategory: Mapped[str | None] = mapped_column(String(100), nullable=True)
    account: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    type: Mapped[TransactionType] = mapped_column(
        SQLEnum(
            TransactionType,
            name="transaction_type_enum",
            values_callable=lambda obj: [e.value for e in obj],
        ),
        nullable=False,
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    reasoning: Mapped[str | None] = mapped_column(Text, nullable=True)
    ai_metadata: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    linked_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    reimbursed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    tags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    added_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_modified: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class TransactionHistory(Base, StringIdMixin, TimestampMixin):
    """One row per applied update, holding the previous values of changed fields."""

    __tablename__ = "transaction_history"

    transaction_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    changes: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    note: Mapped[str | None] = mapped_column(String(200), nullable=True)
