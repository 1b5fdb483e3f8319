"""Pydantic schemas for duplicate detection."""

from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field

from ledgerlink.schemas.transaction import Transaction


class DuplicateMatchType(str, Enum):
    EXACT = "exact"
    TOLERANCE = "tolerance"


class DuplicateDetectionConfig(BaseModel):
    amount_tolerance: float = Field(default=0.02, ge=0.0)
    fixed_amount_tolerance: Decimal = Field(default=Decimal("1.00"), ge=0)
    date_tolerance: int = Field(default=3, ge=0)
    require_exact_description: bool = False
    require_same_account: bool = True
    similarity_threshold: float = Field(default=0.8, ge=0.0, le=1.0)


class DuplicateTransaction(BaseModel):
    existing_transaction: Transaction
    new_transaction: Transaction
    match_fields: list[str]
    similarity: float
    amount_difference: Decimal
    days_difference: int
    match_type: DuplicateMatchType


class DuplicateDetectionResult(BaseModel):
    duplicates: list[DuplicateTransaction] = Field(default_factory=list)
    unique_transactions: list[Transaction] = Field(default_factory=list)


class DuplicateDetectionRequest(BaseModel):
    existing: list[Transaction]
    incoming: list[Transaction]
    config: DuplicateDetectionConfig = Field(default_factory=DuplicateDetectionConfig)


class DuplicateGroup(BaseModel):
    """Records inside one set that look like the same transaction."""

    transactions: list[Transaction]
    similarity: float


class DuplicateGroupsRequest(BaseModel):
    transactions: list[Transaction]
    config: DuplicateDetectionConfig = Field(default_factory=DuplicateDetectionConfig)
