"""Заявки на вывод средств."""

from __future__ import annotations

from decimal import Decimal
from typing import Collection, Optional, Sequence

from sqlalchemy import func
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from portal.models import WithdrawalRequest
from portal.utils.numbers import to_decimal


async def add_withdrawal(session: AsyncSession, withdrawal: WithdrawalRequest) -> WithdrawalRequest:
    session.add(withdrawal)
    await session.commit()
    await session.refresh(withdrawal)
    return withdrawal


async def get_withdrawal(session: AsyncSession, withdrawal_id: int) -> Optional[WithdrawalRequest]:
    return await session.get(WithdrawalRequest, withdrawal_id)


async def list_withdrawals(
    session: AsyncSession,
    ib_request_id: int,
    *,
    status: str | None = None,
    limit: int = 50,
) -> Sequence[WithdrawalRequest]:
    stmt = select(WithdrawalRequest).where(WithdrawalRequest.ib_request_id == ib_request_id)
    if status:
        stmt = stmt.where(WithdrawalRequest.status == status)
    stmt = stmt.order_by(
        col(WithdrawalRequest.created_at).desc(), col(WithdrawalRequest.id).desc()
    ).limit(limit)
    return (await session.exec(stmt)).all()


async def sum_by_statuses(
    session: AsyncSession, ib_request_id: int, statuses: Collection[str]
) -> Decimal:
    stmt = select(func.coalesce(func.sum(WithdrawalRequest.amount), 0)).where(
        WithdrawalRequest.ib_request_id == ib_request_id,
        col(WithdrawalRequest.status).in_(list(statuses)),
    )
    return to_decimal((await session.exec(stmt)).one())


async def save_withdrawal(session: AsyncSession, withdrawal: WithdrawalRequest) -> WithdrawalRequest:
    withdrawal.touch()
    session.add(withdrawal)
    await session.commit()
    await session.refresh(withdrawal)
    return withdrawal


__all__ = [
    "add_withdrawal",
    "get_withdrawal",
    "list_withdrawals",
    "save_withdrawal",
    "sum_by_statuses",
]
