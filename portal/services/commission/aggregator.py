"""Агрегатор комиссий по леджеру сделок.

Один алгоритм для всех дашбордов: пригодные сделки партнёра (цена закрытия и
профит ненулевые, buy/sell) -> нормализатор групп -> одобренное правило.
Сделки без правила исключаются целиком, в том числе из счётчиков.
``total = fixed + spread`` считается в Decimal, округление только на выходе
HTTP-слоя.

Результаты кешируются по времени (aiocache, TTL из настроек). Инвалидации при
новой синхронизации нет: дашборд может отставать на TTL.
"""

from __future__ import annotations

import hashlib
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Iterable

from aiocache.base import BaseCache
from loguru import logger
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession

from config.settings import get_settings
from portal.models import CommissionSnapshot, IBPartner, TradeRecord
from portal.repositories import list_eligible_trades, upsert_snapshot
from portal.services.core.accounts import AccountDirectory
from portal.services.core.referral_service import ReferralService
from portal.utils.cache import cached_call
from portal.utils.numbers import HUNDRED, ZERO, to_decimal, to_display
from .group_keys import RuleMap, is_demo
from .rule_store import CommissionRuleStore

# сделки счетов, не найденных в CRM
UNASSIGNED_USER = "-"


@dataclass(frozen=True, slots=True)
class AggregationScope:
    """Фильтры выборки. None - без ограничения, пустое множество - ничего."""

    account_ids: frozenset[str] | None = None
    user_ids: frozenset[str] | None = None
    exclude_user_ids: frozenset[str] = frozenset()
    since: datetime | None = None
    until: datetime | None = None

    @classmethod
    def trailing(cls, period_days: int | None, **kwargs) -> "AggregationScope":
        since = None
        if period_days:
            since = datetime.now(timezone.utc) - timedelta(days=period_days)
        return cls(since=since, **kwargs)

    @property
    def is_empty(self) -> bool:
        return self.account_ids == frozenset() or self.user_ids == frozenset()

    def cache_key(self) -> str:
        def _set(values: frozenset[str] | None) -> str:
            return "*" if values is None else ",".join(sorted(values))

        # окно округляем до минуты, иначе trailing-скоуп никогда не попадёт в кеш
        def _time(value: datetime | None) -> str:
            return "-" if value is None else value.strftime("%Y%m%d%H%M")

        raw = "|".join(
            (
                _set(self.account_ids),
                _set(self.user_ids),
                _set(self.exclude_user_ids),
                _time(self.since),
                _time(self.until),
            )
        )
        return hashlib.sha1(raw.encode("utf-8")).hexdigest()


@dataclass(slots=True)
class CommissionBucket:
    trades: int = 0
    lots: Decimal = ZERO
    profit: Decimal = ZERO
    fixed: Decimal = ZERO
    spread: Decimal = ZERO
    last_trade_at: datetime | None = None

    @property
    def total(self) -> Decimal:
        return self.fixed + self.spread

    def add(
        self,
        lots: Decimal,
        profit: Decimal,
        fixed: Decimal,
        spread: Decimal,
        at: datetime | None = None,
    ) -> None:
        self.trades += 1
        self.lots += lots
        self.profit += profit
        self.fixed += fixed
        self.spread += spread
        if at is not None and (self.last_trade_at is None or at > self.last_trade_at):
            self.last_trade_at = at

    def as_dict(self) -> dict:
        return {
            "trades": self.trades,
            "lots": to_display(self.lots),
            "profit": to_display(self.profit),
            "fixed": to_display(self.fixed),
            "spread": to_display(self.spread),
            "total": to_display(self.total),
            "last_trade_at": self.last_trade_at.isoformat() if self.last_trade_at else None,
        }


@dataclass(slots=True)
class CommissionSummary:
    """Итог агрегации и разрезы по группе, символу, дню, счёту и клиенту."""

    totals: CommissionBucket = field(default_factory=CommissionBucket)
    by_group: dict[str, CommissionBucket] = field(default_factory=dict)
    by_symbol: dict[str, CommissionBucket] = field(default_factory=dict)
    by_day: dict[str, CommissionBucket] = field(default_factory=dict)
    by_account: dict[str, CommissionBucket] = field(default_factory=dict)
    by_user: dict[str, CommissionBucket] = field(default_factory=dict)

    @property
    def fixed(self) -> Decimal:
        return self.totals.fixed

    @property
    def spread(self) -> Decimal:
        return self.totals.spread

    @property
    def total(self) -> Decimal:
        return self.totals.total

    @property
    def total_trades(self) -> int:
        return self.totals.trades

    @property
    def total_lots(self) -> Decimal:
        return self.totals.lots

    def as_dict(self, *, breakdowns: bool = True) -> dict:
        data = {
            "fixed": to_display(self.fixed),
            "spread": to_display(self.spread),
            "total": to_display(self.total),
            "total_trades": self.total_trades,
            "total_lots": to_display(self.total_lots),
            "total_profit": to_display(self.totals.profit),
        }
        if breakdowns:
            data["by_group"] = _buckets(self.by_group)
            data["by_symbol"] = _buckets(self.by_symbol)
            data["by_day"] = _buckets(self.by_day, sort_by_key=True)
            data["by_account"] = _buckets(self.by_account)
            data["by_user"] = _buckets(self.by_user)
        return data


def _buckets(buckets: dict[str, CommissionBucket], sort_by_key: bool = False) -> list[dict]:
    items = sorted(buckets.items()) if sort_by_key else sorted(
        buckets.items(), key=lambda item: item[1].total, reverse=True
    )
    return [{"key": key, **bucket.as_dict()} for key, bucket in items]


def summarize(rows: Iterable[TradeRecord], rule_map: RuleMap) -> CommissionSummary:
    """Чистая функция агрегации: никаких запросов, только правила и строки."""

    summary = CommissionSummary()
    groups: dict[str, CommissionBucket] = defaultdict(CommissionBucket)
    symbols: dict[str, CommissionBucket] = defaultdict(CommissionBucket)
    days: dict[str, CommissionBucket] = defaultdict(CommissionBucket)
    accounts: dict[str, CommissionBucket] = defaultdict(CommissionBucket)
    users: dict[str, CommissionBucket] = defaultdict(CommissionBucket)

    for row in rows:
        if is_demo(row.group_id):
            continue
        rule = rule_map.match(row.group_id)
        if rule is None:
            continue
        lots = to_decimal(row.volume_lots)
        profit = to_decimal(row.profit)
        fixed = to_decimal(row.ib_commission)
        spread = lots * (rule.spread_share_percentage / HUNDRED)
        day = row.synced_at.date().isoformat() if row.synced_at else "unknown"
        at = row.close_time or row.synced_at
        for bucket in (
            summary.totals,
            groups[rule.group_id],
            symbols[row.symbol],
            days[day],
            accounts[row.account_id],
            users[row.user_id or UNASSIGNED_USER],
        ):
            bucket.add(lots, profit, fixed, spread, at)

    summary.by_group = dict(groups)
    summary.by_symbol = dict(symbols)
    summary.by_day = dict(days)
    summary.by_account = dict(accounts)
    summary.by_user = dict(users)
    return summary


class CommissionAggregator:
    """Единая точка подсчёта комиссии для дашбордов, выводов и снапшотов."""

    def __init__(
        self,
        rule_store: CommissionRuleStore,
        accounts: AccountDirectory,
        referrals: ReferralService,
        cache: BaseCache | None = None,
    ) -> None:
        self._rules = rule_store
        self._accounts = accounts
        self._referrals = referrals
        self._cache = cache
        self._ttl = get_settings().cache.ttl_seconds
        self._session_maker: async_sessionmaker[AsyncSession] | None = None

    def set_session_maker(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        self._session_maker = session_maker

    def _require_session_maker(self) -> async_sessionmaker[AsyncSession]:
        if self._session_maker is None:
            raise RuntimeError("CommissionAggregator: session_maker не задан")
        return self._session_maker

    async def aggregate(
        self,
        partner: IBPartner,
        scope: AggregationScope | None = None,
        *,
        rule_map: RuleMap | None = None,
        use_cache: bool = True,
    ) -> CommissionSummary:
        scope = scope or AggregationScope()
        if scope.is_empty:
            return CommissionSummary()

        async def _compute() -> CommissionSummary:
            return await self._aggregate(partner, scope, rule_map)

        if not use_cache or self._cache is None or rule_map is not None:
            return await _compute()
        key = f"commission:{partner.id}:{scope.cache_key()}"
        return await cached_call(self._cache, key, self._ttl, _compute)

    async def _aggregate(
        self,
        partner: IBPartner,
        scope: AggregationScope,
        rule_map: RuleMap | None,
    ) -> CommissionSummary:
        async with self._require_session_maker()() as session:
            if rule_map is None:
                rule_map = await self._rules.load(session, partner)
            if not rule_map:
                return CommissionSummary()
            rows = await list_eligible_trades(
                session,
                ib_request_id=partner.id,  # type: ignore[arg-type]
                account_ids=scope.account_ids,
                user_ids=scope.user_ids,
                exclude_user_ids=scope.exclude_user_ids,
                since=scope.since,
                until=scope.until,
            )
        return summarize(rows, rule_map)

    async def earned_summary(
        self, partner: IBPartner, period_days: int | None = None, *, use_cache: bool = True
    ) -> CommissionSummary:
        """Всё, что атрибутировано партнёру (база для баланса и выводов)."""

        return await self.aggregate(
            partner, AggregationScope.trailing(period_days), use_cache=use_cache
        )

    async def own_summary(
        self, partner: IBPartner, period_days: int | None = None, *, use_cache: bool = True
    ) -> CommissionSummary:
        """Комиссия по собственным живым счетам партнёра."""

        async with self._require_session_maker()() as session:
            account_ids = await self._accounts.live_account_ids(session, partner)
        return await self.aggregate(
            partner,
            AggregationScope.trailing(period_days, account_ids=account_ids),
            use_cache=use_cache,
        )

    async def downline_summary(
        self, partner: IBPartner, period_days: int | None = None, *, use_cache: bool = True
    ) -> CommissionSummary:
        """Комиссия по клиентам даунлайна; собственные сделки партнёра исключены."""

        async with self._require_session_maker()() as session:
            own_user = await self._accounts.linked_user(session, partner)
            own_user_id = own_user.id if own_user else None
            user_ids = await self._referrals.downline_user_ids(
                session, partner, own_user_id=own_user_id
            )
        exclude = frozenset({own_user_id}) if own_user_id else frozenset()
        return await self.aggregate(
            partner,
            AggregationScope.trailing(period_days, user_ids=user_ids, exclude_user_ids=exclude),
            use_cache=use_cache,
        )

    async def refresh_snapshot(self, partner: IBPartner) -> CommissionSnapshot:
        """Сохраняет текущую комиссию даунлайна в ib_commission."""

        summary = await self.downline_summary(partner, use_cache=False)
        async with self._require_session_maker()() as session:
            own_user = await self._accounts.linked_user(session, partner)
            snapshot = await upsert_snapshot(
                session,
                CommissionSnapshot(
                    ib_request_id=partner.id,  # type: ignore[arg-type]
                    user_id=own_user.id if own_user else None,
                    fixed_commission=summary.fixed,
                    spread_commission=summary.spread,
                    total_commission=summary.total,
                    total_trades=summary.total_trades,
                    total_lots=summary.total_lots,
                    last_updated=datetime.now(timezone.utc),
                ),
            )
        logger.debug(
            "Снапшот комиссии партнёра {partner}: {total}",
            partner=partner.id,
            total=summary.total,
        )
        return snapshot


__all__ = [
    "AggregationScope",
    "CommissionAggregator",
    "CommissionBucket",
    "CommissionSummary",
    "UNASSIGNED_USER",
    "summarize",
]
