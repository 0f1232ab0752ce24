"""Чтение внешнего контракта CRM: клиенты и MT5-счета."""

from __future__ import annotations

from typing import Collection, Optional, Sequence

from sqlalchemy import func, or_
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from portal.models import ClientUser, TradingAccount


async def get_user_by_email(session: AsyncSession, email: str) -> Optional[ClientUser]:
    stmt = select(ClientUser).where(
        func.lower(func.trim(ClientUser.email)) == email.strip().lower()
    )
    return (await session.exec(stmt)).first()


async def list_user_ids_by_emails(
    session: AsyncSession, emails: Collection[str]
) -> list[str]:
    normalized = sorted({email.strip().lower() for email in emails if email})
    if not normalized:
        return []
    stmt = select(ClientUser.id).where(
        func.lower(func.trim(ClientUser.email)).in_(normalized)
    )
    return list((await session.exec(stmt)).all())


async def list_users(
    session: AsyncSession,
    *,
    user_ids: Collection[str] = (),
    emails: Collection[str] = (),
) -> Sequence[ClientUser]:
    """Пользователи CRM по id или email (email без учёта регистра)."""

    normalized = sorted({email.strip().lower() for email in emails if email})
    conditions = []
    if user_ids:
        conditions.append(col(ClientUser.id).in_(list(user_ids)))
    if normalized:
        conditions.append(func.lower(func.trim(ClientUser.email)).in_(normalized))
    if not conditions:
        return []
    return (await session.exec(select(ClientUser).where(or_(*conditions)))).all()


async def list_accounts_for_user(session: AsyncSession, user_id: str) -> Sequence[TradingAccount]:
    stmt = (
        select(TradingAccount)
        .where(TradingAccount.user_id == user_id)
        .order_by(col(TradingAccount.account_id))
    )
    return (await session.exec(stmt)).all()


async def list_accounts_for_users(
    session: AsyncSession, user_ids: Collection[str]
) -> Sequence[TradingAccount]:
    if not user_ids:
        return []
    stmt = select(TradingAccount).where(col(TradingAccount.user_id).in_(list(user_ids)))
    return (await session.exec(stmt)).all()


async def get_account(session: AsyncSession, account_id: str) -> Optional[TradingAccount]:
    return await session.get(TradingAccount, account_id)


__all__ = [
    "get_account",
    "get_user_by_email",
    "list_accounts_for_user",
    "list_accounts_for_users",
    "list_user_ids_by_emails",
    "list_users",
]
