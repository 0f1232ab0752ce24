"""Авто-синхронизация: защита от наложения тиков и изоляция ошибок."""

import asyncio
from decimal import Decimal

from conftest import make_profile, make_trade
from portal.models import PartnerStatus
from portal.repositories import get_snapshot, list_account_trades
from portal.services.sync.scheduler import SchedulerState


async def partner_with_account(seed, broker, email, user_id, account_id, *, account_type="live"):
    partner = await seed.partner(email, usd_per_lot=Decimal("10"), spread_pct=Decimal("0"))
    await seed.client(user_id, email, [(account_id, account_type)])
    broker.profiles[account_id] = make_profile(account_id, "standard", account_type=account_type)
    broker.trades[account_id] = [make_trade(f"{account_id}01")]
    return partner


class TestTick:
    async def test_tick_syncs_approved_partners(self, services, broker, seed, session_maker):
        partner = await partner_with_account(seed, broker, "ib@example.com", "u-1", "1001")
        await seed.partner("pending@example.com", status=PartnerStatus.PENDING)

        report = await services.scheduler.tick()

        assert not report.skipped
        assert report.partners == 1
        assert report.accounts == 1
        assert report.trades == 1
        assert services.scheduler.state == SchedulerState.IDLE
        assert services.scheduler.last_report is report
        async with session_maker() as session:
            snapshot = await get_snapshot(session, partner.id)
        assert snapshot is not None

    async def test_overlapping_tick_is_skipped(self, services, broker, seed):
        await partner_with_account(seed, broker, "ib@example.com", "u-1", "1001")
        broker.gate = asyncio.Event()

        first = asyncio.create_task(services.scheduler.tick())
        await asyncio.wait_for(broker.entered.wait(), timeout=5)
        assert services.scheduler.is_running

        second = await services.scheduler.tick()
        broker.gate.set()
        finished = await first

        assert second.skipped
        assert not finished.skipped
        assert finished.trades == 1

    async def test_failing_account_does_not_stop_others(self, services, broker, seed, session_maker):
        await partner_with_account(seed, broker, "first@example.com", "u-1", "1001")
        await partner_with_account(seed, broker, "second@example.com", "u-2", "2001")
        broker.failing.add("1001")

        report = await services.scheduler.tick()

        assert report.failures == 1
        assert report.accounts == 2
        assert report.trades == 1
        async with session_maker() as session:
            assert len(await list_account_trades(session, "2001")) == 1

    async def test_demo_accounts_are_not_targeted(self, services, broker, seed):
        await partner_with_account(seed, broker, "ib@example.com", "u-1", "9001", account_type="demo")

        report = await services.scheduler.tick()

        assert broker.calls == []
        assert report.accounts == 0


class TestManualSync:
    async def test_sync_single_account_outside_crm(self, services, broker, seed, session_maker):
        partner = await seed.partner("ib@example.com", usd_per_lot=Decimal("10"), spread_pct=Decimal("0"))
        broker.profiles["5555"] = make_profile("5555", "standard")
        broker.trades["5555"] = [make_trade("555501", volume="2")]

        report = await services.scheduler.sync_partner_account(partner, "5555", lookback_days=90)

        assert report.ok
        async with session_maker() as session:
            (row,) = await list_account_trades(session, "5555")
        assert row.ib_request_id == partner.id
        assert row.ib_commission == Decimal("20")

    async def test_start_and_stop(self, services):
        await services.scheduler.start()
        await services.scheduler.stop()
        assert services.scheduler.state == SchedulerState.IDLE
