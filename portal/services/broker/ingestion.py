"""Загрузка истории сделок MT5 в локальный леджер.

Порядок внутри одного счёта фиксирован: группа -> сделки -> фильтр ->
комиссия -> upsert. Повторная загрузка того же окна идемпотентна: ключ
upsert - order_id.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Protocol

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession

from portal.models import TradeRecord
from portal.repositories import (
    ELIGIBLE_ORDER_TYPES,
    get_trades_by_order_ids,
    list_account_trades,
    set_trade_commission,
    upsert_trade,
)
from portal.services.commission.group_keys import RuleMap, is_demo
from portal.services.core.accounts import AccountRef
from portal.utils.numbers import ZERO
from .mt5_client import BrokerApiError, BrokerTrade, ClientProfile

VOLUME_SCALE_THRESHOLD = Decimal("0.1")
VOLUME_SCALE = Decimal("1000")


class BrokerGateway(Protocol):
    async def get_client_profile(self, account_id: str) -> ClientProfile | None: ...

    async def fetch_trades(
        self, account_id: str, from_date: datetime, to_date: datetime
    ) -> list[BrokerTrade]: ...


@dataclass(frozen=True, slots=True)
class SyncWindow:
    from_date: datetime
    to_date: datetime

    @classmethod
    def trailing(cls, days: int, now: datetime | None = None) -> "SyncWindow":
        end = now or datetime.now(timezone.utc)
        return cls(from_date=end - timedelta(days=days), to_date=end)


@dataclass(slots=True)
class IngestionReport:
    """Итог синхронизации одного счёта."""

    account_id: str
    group_id: str | None = None
    fetched: int = 0
    admitted: int = 0
    failed: int = 0
    skipped_reason: str | None = None
    error: str | None = None
    trades: list[TradeRecord] = field(default_factory=list)

    @property
    def saved(self) -> int:
        return len(self.trades)

    @property
    def ok(self) -> bool:
        return self.error is None

    def as_dict(self) -> dict:
        return {
            "account_id": self.account_id,
            "group_id": self.group_id,
            "fetched": self.fetched,
            "admitted": self.admitted,
            "saved": self.saved,
            "failed": self.failed,
            "skipped_reason": self.skipped_reason,
            "error": self.error,
        }


def admit(trade: BrokerTrade) -> bool:
    """Только реальные buy/sell позиции с ценами и объёмом."""

    return bool(
        trade.order_id
        and trade.symbol
        and trade.order_type in ELIGIBLE_ORDER_TYPES
        and trade.close_price != 0
        and trade.open_price != 0
        and trade.volume != 0
    )


def normalize_volume(volume: Decimal) -> Decimal:
    """Объём меньше 0.1 брокер отдаёт в тысячных долях лота."""

    if volume < VOLUME_SCALE_THRESHOLD:
        return volume * VOLUME_SCALE
    return volume


class TradeIngestionService:
    """Upsert сделок одного счёта с расчётом фиксированной комиссии."""

    def __init__(self, broker: BrokerGateway) -> None:
        self._broker = broker
        self._session_maker: async_sessionmaker[AsyncSession] | None = None

    def set_session_maker(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        self._session_maker = session_maker

    def _require_session_maker(self) -> async_sessionmaker[AsyncSession]:
        if self._session_maker is None:
            raise RuntimeError("TradeIngestionService: session_maker не задан")
        return self._session_maker

    async def ingest_account(
        self,
        account: AccountRef,
        window: SyncWindow,
        rule_map: RuleMap,
    ) -> IngestionReport:
        session_maker = self._require_session_maker()
        report = IngestionReport(account_id=account.account_id)

        profile = await self._broker.get_client_profile(account.account_id)
        group_known = profile is not None and bool(profile.group)
        if profile is not None:
            report.group_id = profile.group
            if is_demo(profile.group, profile.account_type):
                report.skipped_reason = "demo"
                logger.debug("Счёт {account} демо, пропуск", account=account.account_id)
                return report

        try:
            raw_trades = await self._broker.fetch_trades(
                account.account_id, window.from_date, window.to_date
            )
        except BrokerApiError as exc:
            report.error = str(exc)
            logger.warning(
                "Сделки MT5 {account} не получены, повтор в следующем цикле: {error}",
                account=account.account_id,
                error=str(exc),
            )
            return report

        report.fetched = len(raw_trades)
        admitted = [trade for trade in raw_trades if admit(trade)]
        report.admitted = len(admitted)

        # группа неизвестна и нет '*' - уже посчитанную комиссию не трогаем
        rule = rule_map.match(report.group_id) if group_known else rule_map.match(None)
        keep_commission = rule is None and not group_known
        usd_per_lot = rule.usd_per_lot if rule is not None else ZERO

        touched: list[str] = []
        async with session_maker() as session:
            for trade in admitted:
                now = datetime.now(timezone.utc)
                volume = normalize_volume(trade.volume)
                values = {
                    "id": TradeRecord.make_id(account.account_id, trade.order_id),
                    "order_id": trade.order_id,
                    "account_id": account.account_id,
                    "user_id": account.user_id,
                    "ib_request_id": account.ib_request_id,
                    "symbol": trade.symbol,
                    "order_type": trade.order_type,
                    "volume_lots": volume,
                    "open_price": trade.open_price,
                    "close_price": trade.close_price,
                    "profit": trade.profit,
                    "take_profit": trade.take_profit,
                    "stop_loss": trade.stop_loss,
                    "group_id": report.group_id,
                    "ib_commission": volume * usd_per_lot,
                    "close_time": trade.close_time,
                    "created_at": now,
                    "updated_at": now,
                    "synced_at": now,
                }
                try:
                    await upsert_trade(session, values, keep_commission=keep_commission)
                    await session.commit()
                except SQLAlchemyError as exc:
                    await session.rollback()
                    report.failed += 1
                    logger.error(
                        "Не удалось сохранить сделку {order} счёта {account}: {error}",
                        order=trade.order_id,
                        account=account.account_id,
                        error=str(exc),
                    )
                    continue
                touched.append(trade.order_id)
            report.trades = await get_trades_by_order_ids(session, touched)

        logger.info(
            "MT5 {account}: получено {fetched}, принято {admitted}, сохранено {saved}, ошибок {failed}",
            account=account.account_id,
            fetched=report.fetched,
            admitted=report.admitted,
            saved=report.saved,
            failed=report.failed,
        )
        return report

    async def recompute_account_commission(self, account_id: str, rule_map: RuleMap) -> int:
        """Пересчитывает ib_commission сохранённых сделок счёта по их группе."""

        session_maker = self._require_session_maker()
        changed = 0
        async with session_maker() as session:
            now = datetime.now(timezone.utc)
            for trade in await list_account_trades(session, account_id):
                rule = rule_map.match(trade.group_id)
                if rule is None and trade.group_id is None:
                    continue
                commission = trade.volume_lots * rule.usd_per_lot if rule is not None else ZERO
                if commission == trade.ib_commission:
                    continue
                await set_trade_commission(session, trade.id, commission, at=now)
                changed += 1
            await session.commit()
        if changed:
            logger.debug(
                "Комиссия пересчитана для {count} сделок счёта {account}",
                count=changed,
                account=account_id,
            )
        return changed


__all__ = [
    "BrokerGateway",
    "IngestionReport",
    "SyncWindow",
    "TradeIngestionService",
    "admit",
    "normalize_volume",
]
