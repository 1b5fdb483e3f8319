"""API routers package."""

from ledgerlink.routers import duplicates, matching, rules, transactions

__all__ = [
    "duplicates",
    "matching",
    "rules",
    "transactions",
]
