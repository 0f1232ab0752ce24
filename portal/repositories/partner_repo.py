"""Функции для работы с таблицей IB-партнёров."""

from __future__ import annotations

from typing import Iterable, Optional, Sequence

from sqlalchemy import func
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from portal.models import IBPartner, PartnerStatus


async def get_partner(session: AsyncSession, partner_id: int) -> Optional[IBPartner]:
    return await session.get(IBPartner, partner_id)


async def get_partner_by_email(session: AsyncSession, email: str) -> Optional[IBPartner]:
    stmt = select(IBPartner).where(
        func.lower(func.trim(IBPartner.email)) == email.strip().lower()
    )
    return (await session.exec(stmt)).first()


async def get_partner_by_referral_code(
    session: AsyncSession, code: str
) -> Optional[IBPartner]:
    stmt = select(IBPartner).where(IBPartner.referral_code == code)
    return (await session.exec(stmt)).one_or_none()


async def list_partners(
    session: AsyncSession,
    *,
    status: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> Sequence[IBPartner]:
    stmt = select(IBPartner).order_by(col(IBPartner.submitted_at).desc())
    if status:
        stmt = stmt.where(func.lower(func.trim(IBPartner.status)) == status.strip().lower())
    stmt = stmt.offset(offset).limit(limit)
    return (await session.exec(stmt)).all()


async def list_approved_partners(session: AsyncSession) -> list[IBPartner]:
    stmt = (
        select(IBPartner)
        .where(func.lower(func.trim(IBPartner.status)) == PartnerStatus.APPROVED)
        .order_by(col(IBPartner.id))
    )
    return list((await session.exec(stmt)).all())


async def list_children(
    session: AsyncSession, parent_ids: Iterable[int]
) -> list[IBPartner]:
    ids = list(parent_ids)
    if not ids:
        return []
    stmt = select(IBPartner).where(col(IBPartner.referred_by).in_(ids))
    return list((await session.exec(stmt)).all())


async def save_partner(session: AsyncSession, partner: IBPartner) -> IBPartner:
    partner.touch()
    session.add(partner)
    await session.commit()
    await session.refresh(partner)
    return partner


__all__ = [
    "get_partner",
    "get_partner_by_email",
    "get_partner_by_referral_code",
    "list_approved_partners",
    "list_children",
    "list_partners",
    "save_partner",
]
