"""Групповые назначения партнёров (правила комиссии)."""

from __future__ import annotations

from typing import Iterable, Optional

from sqlalchemy import delete
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from portal.models import CommissionStructure, GroupAssignment


async def list_assignments(
    session: AsyncSession, ib_request_id: int
) -> list[tuple[GroupAssignment, Optional[CommissionStructure]]]:
    stmt = (
        select(GroupAssignment, CommissionStructure)
        .join(
            CommissionStructure,
            col(GroupAssignment.structure_id) == col(CommissionStructure.id),
            isouter=True,
        )
        .where(GroupAssignment.ib_request_id == ib_request_id)
        .order_by(col(GroupAssignment.id))
    )
    return list((await session.exec(stmt)).all())


async def replace_assignments(
    session: AsyncSession,
    ib_request_id: int,
    assignments: Iterable[GroupAssignment],
    *,
    commit: bool = True,
) -> list[GroupAssignment]:
    """Удаляет старые назначения и вставляет новые в одной транзакции."""

    await session.execute(
        delete(GroupAssignment).where(col(GroupAssignment.ib_request_id) == ib_request_id)
    )
    rows = []
    for assignment in assignments:
        assignment.ib_request_id = ib_request_id
        session.add(assignment)
        rows.append(assignment)
    if commit:
        await session.commit()
    return rows


async def clear_assignments(
    session: AsyncSession, ib_request_id: int, *, commit: bool = True
) -> None:
    await replace_assignments(session, ib_request_id, (), commit=commit)


__all__ = ["clear_assignments", "list_assignments", "replace_assignments"]
