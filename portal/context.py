"""Глобальные сервисы и зависимости IB Portal."""

from __future__ import annotations

from dataclasses import dataclass

from aiocache.base import BaseCache
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession

from config.settings import get_settings
from .middlewares import get_session_maker
from .services.broker.catalog import GroupCatalog
from .services.broker.ingestion import TradeIngestionService
from .services.broker.mt5_client import MT5Client
from .services.commission.aggregator import CommissionAggregator
from .services.commission.rule_store import CommissionRuleStore
from .services.commission.withdrawals import WithdrawalLedger
from .services.core.accounts import AccountDirectory
from .services.core.partner_service import PartnerService
from .services.core.referral_service import ReferralService
from .services.sync.scheduler import TradeSyncScheduler
from .utils.cache import get_cache


@dataclass(slots=True)
class PortalServices:
    """Связанный набор сервисов, общий для HTTP-слоя и фоновых задач."""

    session_maker: async_sessionmaker[AsyncSession]
    broker: MT5Client
    rule_store: CommissionRuleStore
    accounts: AccountDirectory
    referrals: ReferralService
    partners: PartnerService
    ingestion: TradeIngestionService
    aggregator: CommissionAggregator
    withdrawals: WithdrawalLedger
    catalog: GroupCatalog
    scheduler: TradeSyncScheduler


def build_services(
    session_maker: async_sessionmaker[AsyncSession],
    *,
    broker: MT5Client | None = None,
    cache: BaseCache | None = None,
) -> PortalServices:
    broker = broker or MT5Client()
    rule_store = CommissionRuleStore()
    accounts = AccountDirectory()
    referrals = ReferralService()
    partners = PartnerService(rule_store, referrals)
    ingestion = TradeIngestionService(broker)
    aggregator = CommissionAggregator(
        rule_store, accounts, referrals, cache=cache if cache is not None else get_cache()
    )
    withdrawals = WithdrawalLedger(aggregator)
    catalog = GroupCatalog(broker)
    scheduler = TradeSyncScheduler(
        ingestion=ingestion,
        rule_store=rule_store,
        accounts=accounts,
        aggregator=aggregator,
    )

    ingestion.set_session_maker(session_maker)
    aggregator.set_session_maker(session_maker)
    withdrawals.set_session_maker(session_maker)
    scheduler.set_session_maker(session_maker)

    return PortalServices(
        session_maker=session_maker,
        broker=broker,
        rule_store=rule_store,
        accounts=accounts,
        referrals=referrals,
        partners=partners,
        ingestion=ingestion,
        aggregator=aggregator,
        withdrawals=withdrawals,
        catalog=catalog,
        scheduler=scheduler,
    )


settings = get_settings()
session_maker = get_session_maker()
services = build_services(session_maker)

__all__ = ["PortalServices", "build_services", "services", "session_maker", "settings"]
