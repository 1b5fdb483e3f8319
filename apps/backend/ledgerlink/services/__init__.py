"""Services package."""

from ledgerlink.services.classification import AIClassifier, ImportService
from ledgerlink.services.conditions import evaluate_condition
from ledgerlink.services.deduplication import (
    DuplicateDetector,
    calculate_fingerprint,
    detect_duplicates,
)
from ledgerlink.services.openrouter import ClassifierError, OpenRouterClassifier
from ledgerlink.services.pair_matching import (
    MatchingConfig,
    MatchingError,
    load_matching_config,
    whole_day_difference,
)
from ledgerlink.services.reimbursements import RateLookup, ReimbursementMatcher
from ledgerlink.services.rule_generator import RuleAutoGenerator
from ledgerlink.services.rules import RuleEngine, RuleNotFoundError, RuleRepository
from ledgerlink.services.same_account import SameAccountMatcher
from ledgerlink.services.storage import SqlRuleRepository, SqlTransactionStore
from ledgerlink.services.transactions import (
    InMemoryTransactionStore,
    PersistenceError,
    TransactionNotFoundError,
    TransactionPatch,
    TransactionStore,
    apply_transaction_update,
    bulk_update_category,
)
from ledgerlink.services.transfers import TransferMatcher

__all__ = [
    "AIClassifier",
    "ClassifierError",
    "DuplicateDetector",
    "ImportService",
    "InMemoryTransactionStore",
    "MatchingConfig",
    "MatchingError",
    "OpenRouterClassifier",
    "PersistenceError",
    "RateLookup",
    "ReimbursementMatcher",
    "RuleAutoGenerator",
    "RuleEngine",
    "RuleNotFoundError",
    "RuleRepository",
    "SameAccountMatcher",
    "SqlRuleRepository",
    "SqlTransactionStore",
    "TransactionNotFoundError",
    "TransactionPatch",
    "TransactionStore",
    "TransferMatcher",
    "apply_transaction_update",
    "bulk_update_category",
    "calculate_fingerprint",
    "detect_duplicates",
    "evaluate_condition",
    "load_matching_config",
    "whole_day_difference",
]
