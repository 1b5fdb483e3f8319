"""Pydantic schemas for category rules."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from ledgerlink.schemas.transaction import Transaction, utc_now


class ConditionField(str, Enum):
    """Transaction field a condition reads."""

    DESCRIPTION = "description"
    AMOUNT = "amount"
    ACCOUNT = "account"
    DATE = "date"


class ConditionOperator(str, Enum):
    """Closed set of comparison operators."""

    EQUALS = "equals"
    CONTAINS = "contains"
    STARTS_WITH = "startsWith"
    ENDS_WITH = "endsWith"
    GREATER_THAN = "greaterThan"
    LESS_THAN = "lessThan"
    BETWEEN = "between"
    REGEX = "regex"


ConditionValue = str | int | float | Decimal | datetime


class RuleCondition(BaseModel):
    field: ConditionField
    operator: ConditionOperator
    value: ConditionValue
    value_end: ConditionValue | None = None
    case_sensitive: bool = False


class RuleAction(BaseModel):
    category_id: str | None = None
    category_name: str
    subcategory_id: str | None = None
    subcategory_name: str | None = None


class CategoryRule(BaseModel):
    """A prioritized rule; lower priority values are evaluated first."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str
    description: str | None = None
    is_active: bool = True
    priority: int = 100
    conditions: list[RuleCondition] = Field(default_factory=list)
    action: RuleAction
    created_date: datetime = Field(default_factory=utc_now)
    last_modified_date: datetime = Field(default_factory=utc_now)


class CategoryRuleCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: str | None = None
    is_active: bool = True
    priority: int = 100
    conditions: list[RuleCondition] = Field(min_length=1)
    action: RuleAction


class CategoryRuleUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    is_active: bool | None = None
    priority: int | None = None
    conditions: list[RuleCondition] | None = None
    action: RuleAction | None = None


class RuleMatchResult(BaseModel):
    matched: bool
    rule: CategoryRule | None = None
    confidence: float | None = None


class RuleMatchedTransaction(BaseModel):
    transaction: Transaction
    rule: CategoryRule


class BatchRuleResult(BaseModel):
    """Partition of a batch into rule-matched and unmatched transactions."""

    matched: list[RuleMatchedTransaction] = Field(default_factory=list)
    unmatched: list[Transaction] = Field(default_factory=list)


class ApplyRulesRequest(BaseModel):
    transactions: list[Transaction]


class RuleEditRequest(BaseModel):
    """A user's manual category edit, promoted to a rule."""

    account: str
    description: str
    category: str
    subcategory: str | None = None
    apply_to_existing: bool = True


class RuleEditResult(BaseModel):
    rule: CategoryRule
    is_new: bool
    reclassified_count: int


class RuleStats(BaseModel):
    total: int
    active: int
    inactive: int
