"""Structured logging configuration.

This module provides:
- Structured logging via structlog with JSON output outside debug mode
- Timing utilities for rule, matching and import passes
- A decorator for calls to external services (AI classifier, rate lookups)
- Exception logging helpers with full context
"""

import inspect
import logging
import sys
import time
from collections.abc import AsyncIterator, Callable, Iterator
from contextlib import asynccontextmanager, contextmanager
from functools import wraps
from typing import Any, ParamSpec, TypeVar

import structlog
from structlog.stdlib import BoundLogger
from structlog.types import Processor

from ledgerlink.config import settings

P = ParamSpec("P")
T = TypeVar("T")


def _build_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.format_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]


def _select_renderer() -> Processor:
    if settings.debug:
        return structlog.dev.ConsoleRenderer()
    return structlog.processors.JSONRenderer()


def configure_logging() -> None:
    """Configure structlog on top of the stdlib logging handlers."""

    processors = _build_processors()
    renderer = _select_renderer()

    structlog.configure(
        processors=processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=processors,
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    logging.basicConfig(
        handlers=[handler],
        level=logging.DEBUG if settings.debug else logging.INFO,
    )


def get_logger(name: str | None = None) -> BoundLogger:
    """Get a structured logger."""
    return structlog.get_logger(name)


# =============================================================================
# Timing Utilities
# =============================================================================


def _emit_timing(
    log: BoundLogger,
    level: str,
    operation: str,
    start: float,
    result_context: dict[str, Any],
    context: dict[str, Any],
) -> None:
    duration_ms = round((time.perf_counter() - start) * 1000, 2)
    extra_context = {k: v for k, v in result_context.items() if k != "duration_ms"}
    result_context["duration_ms"] = duration_ms

    log_method = getattr(log, level, log.info)
    log_method(
        f"{operation} completed",
        operation=operation,
        duration_ms=duration_ms,
        **context,
        **extra_context,
    )


@contextmanager
def log_timing(
    operation: str,
    logger: BoundLogger | None = None,
    level: str = "info",
    **context: Any,
) -> Iterator[dict[str, Any]]:
    """Context manager to log operation timing.

    Usage:
        with log_timing("apply_rules_to_batch", logger=logger, size=len(batch)) as ctx:
            result = engine.apply_rules_to_batch(batch)
            ctx["matched"] = len(result.matched)

    Yields:
        A dict that can be updated with additional context during the operation.
        The dict will include 'duration_ms' after the operation completes.
    """
    log = logger or get_logger(__name__)
    start = time.perf_counter()
    result_context: dict[str, Any] = {}

    try:
        yield result_context
    finally:
        _emit_timing(log, level, operation, start, result_context, context)


@asynccontextmanager
async def async_log_timing(
    operation: str,
    logger: BoundLogger | None = None,
    level: str = "info",
    **context: Any,
) -> AsyncIterator[dict[str, Any]]:
    """Async context manager to log operation timing.

    Usage:
        async with async_log_timing("import_records", logger=logger, size=len(records)):
            result = await service.import_records(records)
    """
    log = logger or get_logger(__name__)
    start = time.perf_counter()
    result_context: dict[str, Any] = {}

    try:
        yield result_context
    finally:
        _emit_timing(log, level, operation, start, result_context, context)


def log_external_api(
    service: str,
    *,
    logger: BoundLogger | None = None,
    log_args: bool = False,
) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """Decorator to log external API calls with timing.

    Usage:
        @log_external_api("openrouter")
        async def classify_batch(self, records):
            ...

    Args:
        service: Name of the external service
        logger: Logger instance (uses decorated function's module logger if not provided)
        log_args: If True, log argument counts and keyword names (never values)
    """

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        log = logger or get_logger(func.__module__)

        def _extra(args: tuple[Any, ...], kwargs: dict[str, Any]) -> dict[str, Any]:
            extra: dict[str, Any] = {"service": service, "function": func.__name__}
            if log_args:
                extra["args_count"] = len(args)
                extra["kwargs_keys"] = list(kwargs.keys())
            return extra

        def _log_success(start: float, extra: dict[str, Any]) -> None:
            log.info(
                f"External API call to {service}",
                duration_ms=round((time.perf_counter() - start) * 1000, 2),
                success=True,
                **extra,
            )

        def _log_failure(start: float, exc: Exception, extra: dict[str, Any]) -> None:
            log.error(
                f"External API call to {service} failed",
                duration_ms=round((time.perf_counter() - start) * 1000, 2),
                success=False,
                error=str(exc),
                error_type=type(exc).__name__,
                **extra,
            )

        @wraps(func)
        async def async_wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            start = time.perf_counter()
            extra = _extra(args, kwargs)
            try:
                result = await func(*args, **kwargs)  # type: ignore[misc]
            except Exception as exc:
                _log_failure(start, exc, extra)
                raise
            _log_success(start, extra)
            return result

        @wraps(func)
        def sync_wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            start = time.perf_counter()
            extra = _extra(args, kwargs)
            try:
                result = func(*args, **kwargs)
            except Exception as exc:
                _log_failure(start, exc, extra)
                raise
            _log_success(start, extra)
            return result

        if inspect.iscoroutinefunction(func):
            return async_wrapper  # type: ignore[return-value]
        return sync_wrapper

    return decorator


# =============================================================================
# Exception Logging Helpers
# =============================================================================


def log_exception(
    logger: BoundLogger,
    exc: BaseException,
    context: str,
    *,
    level: str = "error",
    include_traceback: bool = True,
    **extra: Any,
) -> None:
    """Log an exception with full context.

    Usage:
        except PersistenceError as exc:
            log_exception(logger, exc, "Reclassification write failed", rule_id=rule.id)

    Args:
        logger: Logger instance
        exc: The exception to log
        context: Human-readable context message
        level: Log level (default: error)
        include_traceback: Whether to include full traceback (default: True)
        **extra: Additional context to include
    """
    log_method = getattr(logger, level, logger.error)

    log_kwargs: dict[str, Any] = {
        "error": str(exc),
        "error_type": type(exc).__name__,
        "error_module": type(exc).__module__,
        **extra,
    }

    if include_traceback:
        log_method(context, exc_info=exc, **log_kwargs)
    else:
        log_method(context, **log_kwargs)
