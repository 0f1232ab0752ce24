"""Рефералы партнёров и снапшоты комиссий."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import Field

from .base import TimeStampedModel, money_field, utcnow


class IBReferral(TimeStampedModel, table=True):
    __tablename__ = "ib_referrals"
    __table_args__ = (UniqueConstraint("ib_request_id", "email"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    ib_request_id: int = Field(foreign_key="ib_requests.id", index=True)
    email: str = Field(max_length=255, index=True)
    user_id: Optional[str] = Field(default=None, foreign_key="users.id", index=True)
    referral_code: str = Field(max_length=8)
    source: Optional[str] = Field(default=None, max_length=32)


class CommissionSnapshot(TimeStampedModel, table=True):
    """Последний пересчёт комиссии по даунлайну партнёра."""

    __tablename__ = "ib_commission"

    id: Optional[int] = Field(default=None, primary_key=True)
    ib_request_id: int = Field(foreign_key="ib_requests.id", unique=True, index=True)
    user_id: Optional[str] = Field(default=None, max_length=64)
    fixed_commission: Decimal = money_field()
    spread_commission: Decimal = money_field()
    total_commission: Decimal = money_field()
    total_trades: int = Field(default=0)
    total_lots: Decimal = money_field()
    last_updated: datetime = Field(
        default_factory=utcnow, nullable=False, sa_type=DateTime(timezone=True)
    )


__all__ = ["CommissionSnapshot", "IBReferral"]
