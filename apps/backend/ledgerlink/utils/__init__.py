"""Utility functions and helpers."""

from .exceptions import (
    raise_bad_request,
    raise_not_found,
    raise_service_unavailable,
)

__all__ = [
    "raise_bad_request",
    "raise_not_found",
    "raise_service_unavailable",
]
