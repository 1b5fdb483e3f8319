"""Pydantic schemas for pair matching (transfers, reversals, reimbursements)."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from ledgerlink.schemas.transaction import Transaction, to_utc_datetime


class MatchKind(str, Enum):
    TRANSFER = "transfer"
    SAME_ACCOUNT = "same_account"
    REIMBURSEMENT = "reimbursement"


class MatchType(str, Enum):
    EXACT = "exact"
    APPROXIMATE = "approximate"
    MANUAL = "manual"


class Match(BaseModel):
    """A proposed or applied link between two transactions."""

    id: str
    kind: MatchKind
    source_transaction_id: str
    target_transaction_id: str
    confidence: float = Field(ge=0.0, le=1.0)
    match_type: MatchType
    date_difference: int
    amount_difference: Decimal
    reasoning: str
    is_verified: bool = False


class MatchRequest(BaseModel):
    transactions: list[Transaction]
    max_days_difference: float | None = Field(default=None, ge=0)
    tolerance_percentage: float | None = Field(default=None, ge=0)
    start_date: datetime | None = None
    end_date: datetime | None = None

    @field_validator("start_date", "end_date")
    @classmethod
    def _ensure_utc(cls, value: Any) -> Any:
        return to_utc_datetime(value)


class MatchResponse(BaseModel):
    matches: list[Match]
    unmatched: list[Transaction]


class ApplyMatchesRequest(BaseModel):
    transactions: list[Transaction]
    matches: list[Match]


class UnmatchRequest(BaseModel):
    transactions: list[Transaction]
    match_id: str


class ManualMatchRequest(BaseModel):
    source_transaction_id: str
    target_transaction_id: str


class PersistMatchesRequest(BaseModel):
    matches: list[Match] = Field(min_length=1)


class PersistMatchesResponse(BaseModel):
    persisted: int
