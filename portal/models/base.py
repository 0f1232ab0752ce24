"""Базовые примеси для SQLModel моделей."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

MONEY_DIGITS = 18
MONEY_PLACES = 6


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def money_field(default: Decimal | None = Decimal("0"), **kwargs: Any) -> Any:
    """Поле Numeric(18, 6) для денег и объёмов."""

    return Field(
        default=default,
        max_digits=MONEY_DIGITS,
        decimal_places=MONEY_PLACES,
        **kwargs,
    )


class TimeStampedModel(SQLModel, table=False):
    """Добавляет created_at / updated_at."""

    created_at: datetime = Field(
        default_factory=utcnow, nullable=False, sa_type=DateTime(timezone=True)
    )
    updated_at: datetime = Field(
        default_factory=utcnow, nullable=False, sa_type=DateTime(timezone=True)
    )

    def touch(self) -> None:
        self.updated_at = utcnow()


__all__ = ["MONEY_DIGITS", "MONEY_PLACES", "TimeStampedModel", "money_field", "utcnow"]
