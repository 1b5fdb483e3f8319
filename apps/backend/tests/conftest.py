"""Test fixtures and configuration."""

import logging
import os
import sys

# Settings are read at import time; point them at throwaway values first.
os.environ["ENVIRONMENT"] = "testing"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["OPENROUTER_API_KEY"] = ""

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
import structlog  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from ledgerlink.logger import get_logger  # noqa: E402

logger = get_logger(__name__)

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


# --- Structlog Configuration for Tests ---
@pytest.fixture(autouse=True, scope="session")
def configure_structlog_for_tests():
    """Configure structlog for proper capsys capture in tests."""
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.format_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ]

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=structlog.dev.ConsoleRenderer(colors=False),
        foreign_pre_chain=processors[:-1],
    )

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.DEBUG)

    yield

    structlog.reset_defaults()


# --- Matching config isolation ---
@pytest.fixture(autouse=True)
def reset_matching_config_cache():
    """Drop the cached matching config so env overrides never leak between tests."""
    from ledgerlink.services import pair_matching

    pair_matching._config_cache = None
    yield
    pair_matching._config_cache = None


# --- Database ---
@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Fresh in-memory SQLite database per test.

    StaticPool keeps one connection alive so every session sees the same
    in-memory database.
    """
    from ledgerlink.database import Base
    from ledgerlink.models import (  # noqa: F401
        CategoryRuleRecord,
        TransactionHistory,
        TransactionRecord,
    )

    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_maker(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db(session_maker):
    """Session bound to the per-test database."""
    async with session_maker() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(session_maker):
    """Async test client whose requests use the per-test database."""
    from ledgerlink.database import get_db
    from ledgerlink.deps import get_classifier
    from ledgerlink.main import app

    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_classifier] = lambda: None
    try:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client_instance:
            yield client_instance
    finally:
        app.dependency_overrides.clear()
