"""ledgerlink backend - FastAPI application."""

import time
import traceback
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ledgerlink import __version__
from ledgerlink.config import settings
from ledgerlink.database import init_db
from ledgerlink.deps import DbSession
from ledgerlink.logger import configure_logging, get_logger
from ledgerlink.routers import duplicates, matching, rules, transactions

# Initialize logging early
configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan - create tables on startup."""
    await init_db()
    logger.info("Application started", version=__version__, environment=settings.environment)
    yield
    logger.info("Application shutting down")


app = FastAPI(
    title="ledgerlink API",
    description="Rule-based transaction classification, pair matching and duplicate detection",
    version=__version__,
    lifespan=lifespan,
)


@app.middleware("http")
async def logging_middleware(request: Request, call_next: Any) -> Response:
    """Middleware to inject Request-ID and log request details."""
    request_id = request.headers.get("X-Request-ID", str(uuid4()))

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        method=request.method,
        path=request.url.path,
    )

    start_time = time.perf_counter()
    try:
        response = await call_next(request)
        duration = time.perf_counter() - start_time

        logger.info(
            "HTTP Request",
            status_code=response.status_code,
            duration_ms=round(duration * 1000, 2),
        )

        response.headers["X-Request-ID"] = request_id
        return response
    except Exception as exc:
        duration = time.perf_counter() - start_time
        logger.exception(
            "HTTP Request Failed",
            duration_ms=round(duration * 1000, 2),
            error=str(exc),
        )
        raise


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler to ensure JSON response."""
    # Only show exception details in DEBUG mode
    if settings.debug:
        detail = str(exc)
        trace = traceback.format_exc()
    else:
        detail = "An internal server error occurred. Please try again later."
        trace = None

    return JSONResponse(
        status_code=500,
        content={
            "detail": detail,
            "trace": trace,
            "request_id": structlog.contextvars.get_contextvars().get("request_id"),
        },
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
)

app.include_router(rules.router)
app.include_router(transactions.router)
app.include_router(matching.router)
app.include_router(duplicates.router)


@app.get("/health")
async def health_check(db: DbSession) -> JSONResponse:
    """Report database connectivity. Returns 503 when the database is unreachable."""
    try:
        await db.execute(text("SELECT 1"))
        database_ok = True
    except SQLAlchemyError as e:
        logger.error("Health check: database unreachable", error=str(e), error_type=type(e).__name__)
        database_ok = False

    return JSONResponse(
        status_code=200 if database_ok else 503,
        content={
            "status": "healthy" if database_ok else "unhealthy",
            "timestamp": datetime.now(UTC).isoformat(),
            "checks": {"database": database_ok},
            "version": __version__,
        },
    )
