"""Pydantic-схемы запросов и сериализация ответов."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from portal.models import IBPartner, TradeRecord
from portal.services.commission.rule_store import RuleInput
from portal.utils.numbers import to_display


class CamelModel(BaseModel):
    """Принимает и snake_case, и camelCase от фронтенда."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class LoginRequest(CamelModel):
    email: str
    password: str


class ApplyRequest(CamelModel):
    full_name: str = Field(..., alias="fullName")
    email: str
    password: str
    ib_type: str | None = Field(None, alias="ibType")
    referral_code: str | None = Field(None, alias="referralCode")


class ReferralCodeRequest(CamelModel):
    referral_code: str = Field(..., alias="referralCode")


class ReferralAttachRequest(CamelModel):
    referral_code: str = Field(..., alias="referralCode")
    email: str
    source: str | None = None


class WithdrawalCreateRequest(CamelModel):
    amount: Decimal
    method: str
    account_details: dict[str, Any] = Field(default_factory=dict, alias="accountDetails")


class WithdrawalStatusRequest(CamelModel):
    status: str


class GroupRule(CamelModel):
    group_id: str = Field(..., alias="groupId")
    group_name: str | None = Field(None, alias="groupName")
    structure_id: int | None = Field(None, alias="structureId")
    structure_name: str | None = Field(None, alias="structureName")
    usd_per_lot: Decimal | None = Field(None, alias="usdPerLot")
    spread_share_percentage: Decimal | None = Field(None, alias="spreadSharePercentage")

    def to_rule(self) -> RuleInput:
        return RuleInput(
            group_id=self.group_id.strip(),
            group_name=self.group_name,
            structure_id=self.structure_id,
            structure_name=self.structure_name,
            usd_per_lot=self.usd_per_lot,
            spread_share_percentage=self.spread_share_percentage,
        )


class StatusUpdateRequest(CamelModel):
    status: str
    groups: list[GroupRule] = Field(default_factory=list)
    admin_comments: str | None = Field(None, alias="adminComments")
    ib_type: str | None = Field(None, alias="ibType")
    # одна группа в старом формате запроса
    group_id: str | None = Field(None, alias="groupId")
    usd_per_lot: Decimal | None = Field(None, alias="usdPerLot")
    spread_percentage_per_lot: Decimal | None = Field(None, alias="spreadPercentagePerLot")

    def rules(self) -> list[RuleInput]:
        if self.groups:
            return [group.to_rule() for group in self.groups]
        if self.group_id:
            return [
                RuleInput(
                    group_id=self.group_id.strip(),
                    usd_per_lot=self.usd_per_lot,
                    spread_share_percentage=self.spread_percentage_per_lot,
                )
            ]
        return []


class StructureCreateRequest(CamelModel):
    group_id: str = Field(..., alias="groupId")
    structure_name: str = Field(..., alias="structureName")
    usd_per_lot: Decimal = Field(Decimal("0"), alias="usdPerLot")
    spread_share_percentage: Decimal = Field(Decimal("0"), alias="spreadSharePercentage")
    is_active: bool = Field(True, alias="isActive")


def partner_as_dict(partner: IBPartner) -> dict:
    return {
        "id": partner.id,
        "full_name": partner.full_name,
        "email": partner.email,
        "status": partner.status,
        "ib_type": partner.ib_type,
        "usd_per_lot": to_display(partner.usd_per_lot),
        "spread_percentage_per_lot": to_display(partner.spread_percentage_per_lot),
        "referral_code": partner.referral_code,
        "referred_by": partner.referred_by,
        "submitted_at": partner.submitted_at.isoformat() if partner.submitted_at else None,
        "approved_at": partner.approved_at.isoformat() if partner.approved_at else None,
        "admin_comments": partner.admin_comments,
    }


def trade_as_dict(trade: TradeRecord) -> dict:
    return {
        "id": trade.id,
        "order_id": trade.order_id,
        "account_id": trade.account_id,
        "symbol": trade.symbol,
        "order_type": trade.order_type,
        "volume_lots": to_display(trade.volume_lots),
        "open_price": float(trade.open_price) if trade.open_price is not None else None,
        "close_price": float(trade.close_price) if trade.close_price is not None else None,
        "profit": to_display(trade.profit),
        "group_id": trade.group_id,
        "ib_commission": to_display(trade.ib_commission),
        "close_time": trade.close_time.isoformat() if trade.close_time else None,
        "synced_at": trade.synced_at.isoformat() if trade.synced_at else None,
    }


__all__ = [
    "ApplyRequest",
    "GroupRule",
    "LoginRequest",
    "ReferralAttachRequest",
    "ReferralCodeRequest",
    "StatusUpdateRequest",
    "StructureCreateRequest",
    "WithdrawalCreateRequest",
    "WithdrawalStatusRequest",
    "partner_as_dict",
    "trade_as_dict",
]
