"""Persisted category rules."""

from typing import Any

from sqlalchemy import JSON, Boolean, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ledgerlink.database import Base
from ledgerlink.models.base import StringIdMixin, TimestampMixin


class CategoryRuleRecord(Base, StringIdMixin, TimestampMixin):
    """
    A prioritized classification rule.

    Conditions and the action are stored as JSON documents in the shape of
    the ``RuleCondition`` / ``RuleAction`` schemas.
    """

    __tablename__ = "category_rules"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    conditions: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False)
    action: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
