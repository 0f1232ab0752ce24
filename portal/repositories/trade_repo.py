"""Леджер сделок: атомарный upsert и выборки для агрегации."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Collection, Sequence

from sqlalchemy import func, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from portal.models import TradeRecord

ELIGIBLE_ORDER_TYPES = ("buy", "sell")

_INSERTS = {
    "sqlite": sqlite_insert,
    "postgresql": pg_insert,
}


def _dialect_insert(session: AsyncSession):
    dialect = session.get_bind().dialect.name
    try:
        return _INSERTS[dialect]
    except KeyError as exc:
        raise RuntimeError(f"Upsert сделок не поддерживается для диалекта {dialect}") from exc


async def upsert_trade(
    session: AsyncSession,
    values: dict[str, Any],
    *,
    keep_commission: bool = False,
) -> None:
    """INSERT ... ON CONFLICT(order_id) DO UPDATE.

    group_id сохраняется, если новое значение пустое. При keep_commission
    уже посчитанная ib_commission не перезаписывается.
    """

    table = TradeRecord.__table__
    stmt = _dialect_insert(session)(table).values(**values)
    excluded = stmt.excluded
    changes: dict[str, Any] = {
        "volume_lots": excluded.volume_lots,
        "close_price": excluded.close_price,
        "profit": excluded.profit,
        "updated_at": excluded.updated_at,
        "synced_at": excluded.synced_at,
        "group_id": func.coalesce(excluded.group_id, table.c.group_id),
    }
    if not keep_commission:
        changes["ib_commission"] = excluded.ib_commission
    stmt = stmt.on_conflict_do_update(index_elements=[table.c.order_id], set_=changes)
    await session.execute(stmt)


async def get_trades_by_order_ids(
    session: AsyncSession, order_ids: Collection[str]
) -> list[TradeRecord]:
    if not order_ids:
        return []
    stmt = select(TradeRecord).where(col(TradeRecord.order_id).in_(list(order_ids)))
    return list((await session.exec(stmt)).all())


async def list_eligible_trades(
    session: AsyncSession,
    *,
    ib_request_id: int,
    account_ids: Collection[str] | None = None,
    user_ids: Collection[str] | None = None,
    exclude_user_ids: Collection[str] = (),
    since: datetime | None = None,
    until: datetime | None = None,
) -> Sequence[TradeRecord]:
    """Сделки, пригодные для агрегации: есть цена закрытия и ненулевой профит."""

    stmt = select(TradeRecord).where(
        TradeRecord.ib_request_id == ib_request_id,
        col(TradeRecord.close_price).is_not(None),
        col(TradeRecord.close_price) != 0,
        col(TradeRecord.profit).is_not(None),
        col(TradeRecord.profit) != 0,
        col(TradeRecord.order_type).in_(ELIGIBLE_ORDER_TYPES),
    )
    if account_ids is not None:
        stmt = stmt.where(col(TradeRecord.account_id).in_(list(account_ids)))
    if user_ids is not None:
        stmt = stmt.where(col(TradeRecord.user_id).in_(list(user_ids)))
    if exclude_user_ids:
        stmt = stmt.where(
            (col(TradeRecord.user_id).is_(None))
            | (col(TradeRecord.user_id).not_in(list(exclude_user_ids)))
        )
    if since is not None:
        stmt = stmt.where(col(TradeRecord.synced_at) >= since)
    if until is not None:
        stmt = stmt.where(col(TradeRecord.synced_at) <= until)
    return (await session.exec(stmt)).all()


async def list_account_trades(session: AsyncSession, account_id: str) -> Sequence[TradeRecord]:
    stmt = select(TradeRecord).where(TradeRecord.account_id == account_id)
    return (await session.exec(stmt)).all()


async def set_trade_commission(
    session: AsyncSession, trade_id: str, commission: Any, *, at: datetime
) -> None:
    await session.execute(
        update(TradeRecord)
        .where(col(TradeRecord.id) == trade_id)
        .values(ib_commission=commission, updated_at=at)
    )


async def list_partner_trades(
    session: AsyncSession,
    ib_request_id: int,
    *,
    limit: int = 50,
    offset: int = 0,
) -> tuple[Sequence[TradeRecord], int]:
    base = select(TradeRecord).where(TradeRecord.ib_request_id == ib_request_id)
    total = (
        await session.exec(
            select(func.count()).select_from(TradeRecord).where(
                TradeRecord.ib_request_id == ib_request_id
            )
        )
    ).one()
    stmt = (
        base.order_by(col(TradeRecord.synced_at).desc(), col(TradeRecord.order_id).desc())
        .offset(offset)
        .limit(limit)
    )
    return (await session.exec(stmt)).all(), int(total or 0)


async def volume_by_partner(
    session: AsyncSession, ib_request_ids: Collection[int]
) -> dict[int, tuple[int, Any]]:
    """Число и объём пригодных сделок по каждому партнёру."""

    if not ib_request_ids:
        return {}
    stmt = (
        select(
            TradeRecord.ib_request_id,
            func.count(TradeRecord.id),
            func.coalesce(func.sum(TradeRecord.volume_lots), 0),
        )
        .where(
            col(TradeRecord.ib_request_id).in_(list(ib_request_ids)),
            col(TradeRecord.close_price).is_not(None),
            col(TradeRecord.close_price) != 0,
            col(TradeRecord.profit).is_not(None),
            col(TradeRecord.profit) != 0,
            col(TradeRecord.order_type).in_(ELIGIBLE_ORDER_TYPES),
        )
        .group_by(TradeRecord.ib_request_id)
    )
    rows = (await session.exec(stmt)).all()
    return {int(ib_id): (int(count or 0), lots) for ib_id, count, lots in rows}


__all__ = [
    "ELIGIBLE_ORDER_TYPES",
    "get_trades_by_order_ids",
    "list_account_trades",
    "list_eligible_trades",
    "list_partner_trades",
    "set_trade_commission",
    "upsert_trade",
    "volume_by_partner",
]
