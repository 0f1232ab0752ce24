"""Заявки партнёров на вывод комиссии."""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from sqlalchemy import JSON
from sqlmodel import Column, Field

from .base import TimeStampedModel, money_field


class WithdrawalStatus(str):
    PENDING = "pending"
    APPROVED = "approved"
    PAID = "paid"
    COMPLETED = "completed"
    REJECTED = "rejected"

    ALL = (PENDING, APPROVED, PAID, COMPLETED, REJECTED)
    SETTLED = (APPROVED, PAID, COMPLETED)


class WithdrawalRequest(TimeStampedModel, table=True):
    __tablename__ = "ib_withdrawal_requests"

    id: Optional[int] = Field(default=None, primary_key=True)
    ib_request_id: int = Field(foreign_key="ib_requests.id", index=True)
    amount: Decimal = money_field()
    method: str = Field(max_length=64)
    account_details: dict = Field(default_factory=dict, sa_column=Column(JSON))
    status: str = Field(default=WithdrawalStatus.PENDING, max_length=16, index=True)


__all__ = ["WithdrawalRequest", "WithdrawalStatus"]
