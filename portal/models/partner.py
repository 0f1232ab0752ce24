"""IB-партнёры (заявки) и их групповые назначения."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime
from sqlmodel import Field

from .base import TimeStampedModel, money_field, utcnow


class PartnerStatus(str):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    BANNED = "banned"

    ALL = (PENDING, APPROVED, REJECTED, BANNED)


IB_TYPES = ("common", "advanced", "bronze", "silver", "gold", "platinum", "brilliant")
DEFAULT_IB_TYPE = "common"


class IBPartner(TimeStampedModel, table=True):
    """Заявка IB, после одобрения - учётная запись партнёра."""

    __tablename__ = "ib_requests"

    id: Optional[int] = Field(default=None, primary_key=True)
    full_name: str = Field(max_length=255)
    email: str = Field(max_length=255, unique=True, index=True)
    password_hash: str = Field(max_length=255)
    status: str = Field(default=PartnerStatus.PENDING, max_length=16, index=True)
    ib_type: str = Field(default=DEFAULT_IB_TYPE, max_length=32)
    usd_per_lot: Optional[Decimal] = money_field(default=None)
    spread_percentage_per_lot: Optional[Decimal] = money_field(default=None)
    referred_by: Optional[int] = Field(
        default=None, foreign_key="ib_requests.id", index=True
    )
    referral_code: Optional[str] = Field(
        default=None, max_length=8, unique=True, index=True
    )
    submitted_at: datetime = Field(
        default_factory=utcnow, nullable=False, sa_type=DateTime(timezone=True)
    )
    approved_at: Optional[datetime] = Field(
        default=None, sa_type=DateTime(timezone=True)
    )
    admin_comments: Optional[str] = Field(default=None)

    @property
    def is_approved(self) -> bool:
        return (self.status or "").strip().lower() == PartnerStatus.APPROVED


class GroupAssignment(TimeStampedModel, table=True):
    """Правило комиссии: партнёр x брокерская группа."""

    __tablename__ = "ib_group_assignments"

    id: Optional[int] = Field(default=None, primary_key=True)
    ib_request_id: int = Field(foreign_key="ib_requests.id", index=True)
    group_id: str = Field(max_length=255)
    group_name: Optional[str] = Field(default=None, max_length=255)
    structure_id: Optional[int] = Field(
        default=None, foreign_key="group_commission_structures.id"
    )
    structure_name: Optional[str] = Field(default=None, max_length=255)
    usd_per_lot: Optional[Decimal] = money_field(default=None)
    spread_share_percentage: Optional[Decimal] = money_field(default=None)


__all__ = ["DEFAULT_IB_TYPE", "GroupAssignment", "IBPartner", "IB_TYPES", "PartnerStatus"]
