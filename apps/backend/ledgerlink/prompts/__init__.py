"""Prompts package."""

from ledgerlink.prompts.classification import (
    DEFAULT_CATEGORIES,
    SYSTEM_PROMPT,
    get_classification_prompt,
)

__all__ = [
    "DEFAULT_CATEGORIES",
    "SYSTEM_PROMPT",
    "get_classification_prompt",
]
