"""Леджер закрытых сделок, синхронизированных из MT5."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime
from sqlmodel import Field

from .base import TimeStampedModel, money_field, utcnow


class TradeRecord(TimeStampedModel, table=True):
    __tablename__ = "ib_trade_history"

    id: str = Field(primary_key=True, max_length=128)
    order_id: str = Field(max_length=64, unique=True, index=True)
    account_id: str = Field(max_length=64, index=True)
    user_id: Optional[str] = Field(default=None, max_length=64, index=True)
    ib_request_id: Optional[int] = Field(
        default=None, foreign_key="ib_requests.id", index=True
    )
    symbol: str = Field(max_length=32, index=True)
    order_type: str = Field(max_length=8)
    volume_lots: Decimal = money_field()
    open_price: Optional[Decimal] = money_field(default=None)
    close_price: Optional[Decimal] = money_field(default=None)
    profit: Optional[Decimal] = money_field(default=None)
    take_profit: Optional[Decimal] = money_field(default=None)
    stop_loss: Optional[Decimal] = money_field(default=None)
    group_id: Optional[str] = Field(default=None, max_length=255)
    ib_commission: Decimal = money_field()
    close_time: Optional[datetime] = Field(
        default=None, sa_type=DateTime(timezone=True)
    )
    synced_at: datetime = Field(
        default_factory=utcnow, nullable=False, index=True, sa_type=DateTime(timezone=True)
    )

    @staticmethod
    def make_id(account_id: str, order_id: str) -> str:
        return f"{account_id}-{order_id}"


__all__ = ["TradeRecord"]
