"""Pydantic schemas for the import classification pipeline."""

from pydantic import BaseModel, Field

from ledgerlink.schemas.duplicates import DuplicateTransaction
from ledgerlink.schemas.transaction import Transaction


class AIClassification(BaseModel):
    """One classifier verdict, in the same order as the submitted records."""

    transaction_id: str | None = None
    category: str
    subcategory: str | None = None
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str | None = None


class ImportRequest(BaseModel):
    transactions: list[Transaction]
    skip_duplicates: bool = True


class ImportResult(BaseModel):
    imported: list[Transaction] = Field(default_factory=list)
    duplicates: list[DuplicateTransaction] = Field(default_factory=list)
    pending: list[Transaction] = Field(default_factory=list)
    rule_matched: int = 0
    ai_classified: int = 0
    fallback: int = 0
    rules_created: int = 0
    cancelled: bool = False
