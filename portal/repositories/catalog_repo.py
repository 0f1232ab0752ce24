"""Каталог групп MT5 и структуры комиссий."""

from __future__ import annotations

from typing import Iterable, Optional, Sequence

from sqlalchemy import delete
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from portal.models import BrokerGroup, CommissionStructure


async def replace_groups(session: AsyncSession, groups: Iterable[BrokerGroup]) -> int:
    await session.execute(delete(BrokerGroup))
    count = 0
    for group in groups:
        session.add(group)
        count += 1
    await session.commit()
    return count


async def list_groups(session: AsyncSession) -> Sequence[BrokerGroup]:
    stmt = select(BrokerGroup).order_by(col(BrokerGroup.group_id))
    return (await session.exec(stmt)).all()


async def list_structures(
    session: AsyncSession, *, group_id: str | None = None, active_only: bool = False
) -> Sequence[CommissionStructure]:
    stmt = select(CommissionStructure).order_by(
        col(CommissionStructure.group_id), col(CommissionStructure.structure_name)
    )
    if group_id is not None:
        stmt = stmt.where(CommissionStructure.group_id == group_id)
    if active_only:
        stmt = stmt.where(col(CommissionStructure.is_active).is_(True))
    return (await session.exec(stmt)).all()


async def get_structure(session: AsyncSession, structure_id: int) -> Optional[CommissionStructure]:
    return await session.get(CommissionStructure, structure_id)


async def find_structure(
    session: AsyncSession, group_id: str, structure_name: str
) -> Optional[CommissionStructure]:
    stmt = select(CommissionStructure).where(
        CommissionStructure.group_id == group_id,
        CommissionStructure.structure_name == structure_name,
    )
    return (await session.exec(stmt)).one_or_none()


async def save_structure(
    session: AsyncSession, structure: CommissionStructure
) -> CommissionStructure:
    structure.touch()
    session.add(structure)
    await session.commit()
    await session.refresh(structure)
    return structure


async def delete_structure(session: AsyncSession, structure: CommissionStructure) -> None:
    await session.delete(structure)
    await session.commit()


__all__ = [
    "delete_structure",
    "find_structure",
    "get_structure",
    "list_groups",
    "list_structures",
    "replace_groups",
    "save_structure",
]
