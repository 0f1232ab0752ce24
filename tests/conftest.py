"""Общие фикстуры: временная sqlite-база, фейковый брокер, набор сервисов."""

import asyncio
import os
from datetime import datetime, timezone
from decimal import Decimal

os.environ.setdefault("SECURITY__JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("SECURITY__BCRYPT_ROUNDS", "4")
os.environ.setdefault("SECURITY__ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("PORTAL__RATE_LIMIT_REQUESTS", "0")
os.environ.setdefault("SYNC__ENABLED", "false")
os.environ.setdefault("DATABASE__DSN", "sqlite+aiosqlite:///:memory:")

import pytest
from aiocache import SimpleMemoryCache
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from portal.context import build_services
from portal.middlewares.db import build_session_maker, init_db
from portal.models import ClientUser, IBPartner, PartnerStatus, TradeRecord, TradingAccount
from portal.services.broker.mt5_client import BrokerApiError, BrokerTrade, ClientProfile
from portal.utils.security import hash_password

ADMIN_KEY = "test-admin-key"
PASSWORD = "secret123"


class FakeBroker:
    """Брокер в памяти: профили, сделки и счета, которые всегда падают."""

    def __init__(self):
        self.profiles = {}
        self.trades = {}
        self.groups = []
        self.failing = set()
        self.calls = []
        self.gate = None
        self.entered = asyncio.Event()

    async def start(self):
        return None

    async def close(self):
        return None

    async def get_client_profile(self, account_id):
        return self.profiles.get(account_id)

    async def fetch_trades(self, account_id, from_date, to_date):
        self.calls.append(account_id)
        self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        if account_id in self.failing:
            raise BrokerApiError(f"MT5 недоступен для {account_id}", status=503)
        return list(self.trades.get(account_id, []))

    async def get_groups(self):
        return list(self.groups)


def make_trade(order_id, *, volume="1", profit="10", symbol="EURUSD", order_type="buy",
               open_price="1.1000", close_price="1.1010"):
    return BrokerTrade(
        order_id=str(order_id),
        symbol=symbol,
        order_type=order_type,
        volume=Decimal(volume),
        open_price=Decimal(open_price),
        close_price=Decimal(close_price),
        profit=Decimal(profit),
        take_profit=Decimal("0"),
        stop_loss=Decimal("0"),
        close_time=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
    )


def make_profile(account_id, group, *, account_type="live", balance="1000"):
    return ClientProfile(
        account_id=account_id,
        group=group,
        account_type=account_type,
        balance=Decimal(balance),
        equity=Decimal(balance),
        margin=Decimal("0"),
        profit=Decimal("0"),
        leverage=100,
    )


def make_record(order_id, *, ib_request_id, account_id="1001", user_id=None, group_id="standard",
                volume="1", profit="10", commission="10", symbol="EURUSD", close_price="1.1010",
                order_type="buy"):
    return TradeRecord(
        id=TradeRecord.make_id(account_id, str(order_id)),
        order_id=str(order_id),
        account_id=account_id,
        user_id=user_id,
        ib_request_id=ib_request_id,
        symbol=symbol,
        order_type=order_type,
        volume_lots=Decimal(volume),
        open_price=Decimal("1.1000"),
        close_price=Decimal(close_price),
        profit=Decimal(profit),
        group_id=group_id,
        ib_commission=Decimal(commission),
    )


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'portal.db'}", poolclass=NullPool
    )
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return build_session_maker(engine)


@pytest.fixture
def broker():
    return FakeBroker()


@pytest.fixture
def services(session_maker, broker):
    return build_services(session_maker, broker=broker, cache=SimpleMemoryCache())


@pytest.fixture
def seed(session_maker):
    """Фабрики тестовых данных прямо в базе."""

    class Seeder:
        async def partner(self, email, *, status=PartnerStatus.APPROVED, usd_per_lot=None,
                          spread_pct=None, referred_by=None, referral_code=None,
                          full_name="Test Partner"):
            async with session_maker() as session:
                partner = IBPartner(
                    full_name=full_name,
                    email=email,
                    password_hash=hash_password(PASSWORD),
                    status=status,
                    usd_per_lot=usd_per_lot,
                    spread_percentage_per_lot=spread_pct,
                    referred_by=referred_by,
                    referral_code=referral_code,
                )
                session.add(partner)
                await session.commit()
                await session.refresh(partner)
                return partner

        async def client(self, user_id, email, accounts=()):
            async with session_maker() as session:
                session.add(ClientUser(id=user_id, email=email))
                await session.commit()
                for account_id, account_type in accounts:
                    session.add(
                        TradingAccount(
                            account_id=account_id, user_id=user_id, account_type=account_type
                        )
                    )
                await session.commit()

        async def records(self, *records):
            async with session_maker() as session:
                for record in records:
                    session.add(record)
                await session.commit()

        async def add(self, *rows):
            async with session_maker() as session:
                for row in rows:
                    session.add(row)
                await session.commit()
                for row in rows:
                    await session.refresh(row)
            return rows

    return Seeder()
