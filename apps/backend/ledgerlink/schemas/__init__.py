"""Pydantic schemas package."""

from ledgerlink.schemas.base import BaseResponse, ListResponse
from ledgerlink.schemas.classification import AIClassification, ImportRequest, ImportResult
from ledgerlink.schemas.duplicates import (
    DuplicateDetectionConfig,
    DuplicateDetectionRequest,
    DuplicateDetectionResult,
    DuplicateGroup,
    DuplicateGroupsRequest,
    DuplicateMatchType,
    DuplicateTransaction,
)
from ledgerlink.schemas.matching import (
    ApplyMatchesRequest,
    ManualMatchRequest,
    Match,
    MatchKind,
    MatchRequest,
    MatchResponse,
    MatchType,
    PersistMatchesRequest,
    PersistMatchesResponse,
    UnmatchRequest,
)
from ledgerlink.schemas.rules import (
    ApplyRulesRequest,
    BatchRuleResult,
    CategoryRule,
    CategoryRuleCreate,
    CategoryRuleUpdate,
    ConditionField,
    ConditionOperator,
    RuleAction,
    RuleCondition,
    RuleEditRequest,
    RuleEditResult,
    RuleMatchedTransaction,
    RuleMatchResult,
    RuleStats,
)
from ledgerlink.schemas.transaction import (
    UNCATEGORIZED,
    BulkCategoryUpdate,
    BulkUpdateResponse,
    Transaction,
    TransactionUpdate,
)

__all__ = [
    "AIClassification",
    "ApplyMatchesRequest",
    "ApplyRulesRequest",
    "BaseResponse",
    "BatchRuleResult",
    "BulkCategoryUpdate",
    "BulkUpdateResponse",
    "CategoryRule",
    "CategoryRuleCreate",
    "CategoryRuleUpdate",
    "ConditionField",
    "ConditionOperator",
    "DuplicateDetectionConfig",
    "DuplicateDetectionRequest",
    "DuplicateDetectionResult",
    "DuplicateGroup",
    "DuplicateGroupsRequest",
    "DuplicateMatchType",
    "DuplicateTransaction",
    "ImportRequest",
    "ImportResult",
    "ListResponse",
    "ManualMatchRequest",
    "Match",
    "MatchKind",
    "MatchRequest",
    "MatchResponse",
    "MatchType",
    "PersistMatchesRequest",
    "PersistMatchesResponse",
    "RuleAction",
    "RuleCondition",
    "RuleEditRequest",
    "RuleEditResult",
    "RuleMatchResult",
    "RuleMatchedTransaction",
    "RuleStats",
    "Transaction",
    "TransactionUpdate",
    "UNCATEGORIZED",
    "UnmatchRequest",
]
