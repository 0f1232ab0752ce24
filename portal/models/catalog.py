"""Каталог брокерских групп и именованные структуры комиссий."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import Field

from .base import TimeStampedModel, money_field, utcnow


class BrokerGroup(TimeStampedModel, table=True):
    __tablename__ = "mt5_groups"

    id: Optional[int] = Field(default=None, primary_key=True)
    group_id: str = Field(max_length=255, unique=True, index=True)
    name: str = Field(max_length=255)
    synced_at: datetime = Field(
        default_factory=utcnow, nullable=False, sa_type=DateTime(timezone=True)
    )


class CommissionStructure(TimeStampedModel, table=True):
    __tablename__ = "group_commission_structures"
    __table_args__ = (UniqueConstraint("group_id", "structure_name"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    group_id: str = Field(max_length=255, index=True)
    structure_name: str = Field(max_length=255)
    usd_per_lot: Decimal = money_field()
    spread_share_percentage: Decimal = money_field()
    is_active: bool = Field(default=True)


__all__ = ["BrokerGroup", "CommissionStructure"]
