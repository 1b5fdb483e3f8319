"""Common FastAPI dependencies for consistent type annotations.

Usage:
    from ledgerlink.deps import RuleEngineDep, TransactionStoreDep

    async def my_endpoint(store: TransactionStoreDep, engine: RuleEngineDep):
        ...
"""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerlink.config import settings
from ledgerlink.database import get_db
from ledgerlink.services.classification import AIClassifier
from ledgerlink.services.openrouter import OpenRouterClassifier
from ledgerlink.services.pair_matching import MatchingConfig, load_matching_config
from ledgerlink.services.rules import RuleEngine
from ledgerlink.services.storage import SqlRuleRepository, SqlTransactionStore
from ledgerlink.services.transactions import TransactionStore

DbSession = Annotated[AsyncSession, Depends(get_db)]


async def get_transaction_store(db: DbSession) -> TransactionStore:
    return SqlTransactionStore(db)


async def get_rule_engine(db: DbSession) -> RuleEngine:
    engine = RuleEngine(repository=SqlRuleRepository(db))
    await engine.load()
    return engine


def get_classifier() -> AIClassifier | None:
    """OpenRouter classifier, or None when no API key is configured."""
    if not settings.openrouter_api_key:
        return None
    return OpenRouterClassifier()


def get_matching_config() -> MatchingConfig:
    return load_matching_config()


TransactionStoreDep = Annotated[TransactionStore, Depends(get_transaction_store)]
RuleEngineDep = Annotated[RuleEngine, Depends(get_rule_engine)]
ClassifierDep = Annotated[AIClassifier | None, Depends(get_classifier)]
MatchingConfigDep = Annotated[MatchingConfig, Depends(get_matching_config)]

__all__ = [
    "ClassifierDep",
    "DbSession",
    "MatchingConfigDep",
    "RuleEngineDep",
    "TransactionStoreDep",
]
