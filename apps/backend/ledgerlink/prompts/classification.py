"""Prompt templates for AI transaction classification."""

from __future__ import annotations

import json
from collections.abc import Sequence

from ledgerlink.schemas.transaction import Transaction

DEFAULT_CATEGORIES = [
    "Food & Dining",
    "Shopping",
    "Transportation",
    "Bills & Utilities",
    "Entertainment",
    "Healthcare",
    "Education",
    "Travel",
    "Income",
    "Transfer",
    "Fees & Charges",
    "Uncategorized",
]

SYSTEM_PROMPT = (
    "You are a personal finance assistant that assigns spending categories to bank transactions.\n"
    "Rules:\n"
    "- Use only the categories you are given\n"
    "- Return one classification per transaction, keyed by its id\n"
    "- confidence is a number between 0 and 1; use low values when the description is ambiguous\n"
    "- Keep reasoning to one short sentence\n"
    "- Respond with JSON only"
)


def get_classification_prompt(
    records: Sequence[Transaction], categories: Sequence[str] | None = None
) -> str:
    """Return the user prompt listing the records to classify."""
    payload = [
        {
            "id": record.id,
            "date": record.date.date().isoformat(),
            "description": record.description,
            "amount": str(record.amount),
            "account": record.account,
            "type": record.type.value,
        }
        for record in records
    ]
    return (
        f"Categories: {', '.join(categories or DEFAULT_CATEGORIES)}\n\n"
        "Transactions:\n"
        f"{json.dumps(payload, indent=2)}\n\n"
        'Respond as {"classifications": [{"transaction_id": "...", "category": "...", '
        '"subcategory": null, "confidence": 0.0, "reasoning": "..."}]}'
    )
