"""Рефералы партнёров и снапшоты комиссий."""

from __future__ import annotations

from typing import Collection, Optional, Sequence

from sqlalchemy import func, or_
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from portal.models import CommissionSnapshot, IBPartner, IBReferral


async def get_referral(
    session: AsyncSession, ib_request_id: int, email: str
) -> Optional[IBReferral]:
    stmt = select(IBReferral).where(
        IBReferral.ib_request_id == ib_request_id,
        IBReferral.email == email,
    )
    return (await session.exec(stmt)).one_or_none()


async def add_referral(session: AsyncSession, referral: IBReferral) -> IBReferral:
    session.add(referral)
    await session.commit()
    await session.refresh(referral)
    return referral


async def list_referrals(
    session: AsyncSession, ib_request_ids: Collection[int]
) -> Sequence[IBReferral]:
    if not ib_request_ids:
        return []
    stmt = (
        select(IBReferral)
        .where(col(IBReferral.ib_request_id).in_(list(ib_request_ids)))
        .order_by(col(IBReferral.created_at).desc())
    )
    return (await session.exec(stmt)).all()


async def search_referrals(
    session: AsyncSession,
    *,
    search: str | None = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[tuple[IBReferral, IBPartner]], int]:
    """Рефералы всех партнёров с владельцем; поиск по email, имени IB и коду IB."""

    conditions = []
    pattern = (search or "").strip().lower()
    if pattern:
        like = f"%{pattern}%"
        conditions.append(
            or_(
                func.lower(IBReferral.email).like(like),
                func.lower(IBPartner.full_name).like(like),
                func.lower(IBPartner.referral_code).like(like),
            )
        )
    joined = IBPartner.id == IBReferral.ib_request_id
    total = (
        await session.exec(
            select(func.count()).select_from(IBReferral).join(IBPartner, joined).where(*conditions)
        )
    ).one()
    stmt = (
        select(IBReferral, IBPartner)
        .join(IBPartner, joined)
        .where(*conditions)
        .order_by(col(IBReferral.created_at).desc(), col(IBReferral.id).desc())
        .offset(offset)
        .limit(limit)
    )
    rows = [(referral, partner) for referral, partner in (await session.exec(stmt)).all()]
    return rows, int(total or 0)


async def get_snapshot(session: AsyncSession, ib_request_id: int) -> Optional[CommissionSnapshot]:
    stmt = select(CommissionSnapshot).where(CommissionSnapshot.ib_request_id == ib_request_id)
    return (await session.exec(stmt)).one_or_none()


async def upsert_snapshot(
    session: AsyncSession, snapshot: CommissionSnapshot
) -> CommissionSnapshot:
    existing = await get_snapshot(session, snapshot.ib_request_id)
    if existing is None:
        existing = snapshot
    else:
        existing.user_id = snapshot.user_id
        existing.fixed_commission = snapshot.fixed_commission
        existing.spread_commission = snapshot.spread_commission
        existing.total_commission = snapshot.total_commission
        existing.total_trades = snapshot.total_trades
        existing.total_lots = snapshot.total_lots
        existing.last_updated = snapshot.last_updated
        existing.touch()
    session.add(existing)
    await session.commit()
    await session.refresh(existing)
    return existing


__all__ = [
    "add_referral",
    "get_referral",
    "get_snapshot",
    "list_referrals",
    "search_referrals",
    "upsert_snapshot",
]
