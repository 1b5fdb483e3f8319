"""Pydantic schemas for transactions."""

from datetime import UTC, date as date_type, datetime, time
from decimal import Decimal
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ledgerlink.config import settings
from ledgerlink.models.transaction import TransactionType

UNCATEGORIZED = "Uncategorized"

# Provenance fields written by the AI classifier or a matched rule.
PROVENANCE_FIELDS = ("confidence", "reasoning", "ai_metadata")


def utc_now() -> datetime:
    return datetime.now(UTC)


def to_utc_datetime(value: Any) -> Any:
    """Promote plain dates to midnight UTC and attach UTC to naive datetimes."""
    if isinstance(value, date_type) and not isinstance(value, datetime):
        return datetime.combine(value, time.min, tzinfo=UTC)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)
    return value


class Transaction(BaseModel):
    """A normalized transaction as seen by rules, matchers and the dedup pass."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    date: datetime
    amount: Decimal
    description: str
    category: str = UNCATEGORIZED
    subcategory: str | None = None
    account: str
    type: TransactionType
    currency: str = Field(default_factory=lambda: settings.base_currency)

    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    reasoning: str | None = None
    ai_metadata: dict[str, Any] | None = None

    linked_id: str | None = None
    reimbursed: bool = False
    is_verified: bool = False
    notes: str | None = None
    tags: list[str] = Field(default_factory=list)

    added_date: datetime = Field(default_factory=utc_now)
    last_modified: datetime = Field(default_factory=utc_now)

    @field_validator("date", "added_date", "last_modified", mode="before")
    @classmethod
    def _promote_dates(cls, value: Any) -> Any:
        return to_utc_datetime(value)

    @field_validator("date", "added_date", "last_modified")
    @classmethod
    def _ensure_utc(cls, value: datetime) -> datetime:
        return to_utc_datetime(value)


class TransactionUpdate(BaseModel):
    """Partial update of a transaction. Only fields that are set are applied."""

    date: datetime | None = None
    amount: Decimal | None = None
    description: str | None = None
    category: str | None = None
    subcategory: str | None = None
    account: str | None = None
    type: TransactionType | None = None
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    reasoning: str | None = None
    notes: str | None = None
    tags: list[str] | None = None
    is_verified: bool | None = None

    @field_validator("date", mode="before")
    @classmethod
    def _promote_date(cls, value: Any) -> Any:
        return to_utc_datetime(value)

    # Omit a field to leave it unchanged; these ones cannot be cleared.
    @field_validator("date", "amount", "description", "category", "account", "type", "tags", "is_verified")
    @classmethod
    def _reject_null(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("Field cannot be null")
        return value


class BulkCategoryUpdate(BaseModel):
    """Assign one category to many transactions in a single write."""

    transaction_ids: list[str] = Field(min_length=1)
    category: str
    subcategory: str | None = None


class BulkUpdateResponse(BaseModel):
    updated: int
