"""Внешний контракт CRM: клиенты брокера и их торговые счета.

Набор полей фиксирован, все необязательные поля nullable.
"""

from __future__ import annotations

from typing import Optional

from sqlmodel import Field

from .base import TimeStampedModel


class ClientUser(TimeStampedModel, table=True):
    __tablename__ = "users"

    id: str = Field(primary_key=True, max_length=64)
    email: str = Field(max_length=255, index=True)
    full_name: Optional[str] = Field(default=None, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=64)
    country: Optional[str] = Field(default=None, max_length=64)
    referred_by_code: Optional[str] = Field(default=None, max_length=8)


class TradingAccount(TimeStampedModel, table=True):
    __tablename__ = "mt5_accounts"

    account_id: str = Field(primary_key=True, max_length=64)
    user_id: str = Field(foreign_key="users.id", index=True, max_length=64)
    account_type: Optional[str] = Field(default=None, max_length=32)
    package: Optional[str] = Field(default=None, max_length=64)
    leverage: Optional[int] = Field(default=None)


__all__ = ["ClientUser", "TradingAccount"]
