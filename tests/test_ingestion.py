"""Загрузка сделок MT5 в леджер: upsert, фильтр, объём, комиссия."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from conftest import make_profile, make_trade
from portal.repositories import get_partner, list_account_trades
from portal.services.broker.ingestion import SyncWindow, admit, normalize_volume
from portal.services.commission.group_keys import CommissionRule, RuleMap
from portal.services.core.accounts import AccountRef

WINDOW = SyncWindow(
    from_date=datetime(2024, 4, 1, tzinfo=timezone.utc),
    to_date=datetime(2024, 5, 30, tzinfo=timezone.utc),
)


def standard_rules(usd="10", pct="0"):
    return RuleMap([
        CommissionRule(
            group_id="standard",
            usd_per_lot=Decimal(usd),
            spread_share_percentage=Decimal(pct),
        )
    ])


@pytest.fixture
async def account(seed):
    partner = await seed.partner("ib@example.com")
    return AccountRef(account_id="1001", ib_request_id=partner.id, user_id="u-1", account_type="live")


async def stored(session_maker, account_id="1001"):
    async with session_maker() as session:
        return list(await list_account_trades(session, account_id))


class TestAdmission:
    def test_only_real_positions_with_prices(self):
        assert admit(make_trade("1"))
        assert admit(make_trade("2", order_type="sell"))
        assert not admit(make_trade("3", order_type="balance"))
        assert not admit(make_trade("4", close_price="0"))
        assert not admit(make_trade("5", open_price="0"))
        assert not admit(make_trade("6", volume="0"))
        assert not admit(make_trade("7", symbol=""))
        assert not admit(make_trade(""))

    def test_zero_profit_is_admitted(self):
        assert admit(make_trade("8", profit="0"))

    def test_small_volume_is_in_thousandths(self):
        assert normalize_volume(Decimal("0.05")) == Decimal("50.00")
        assert normalize_volume(Decimal("0.1")) == Decimal("0.1")
        assert normalize_volume(Decimal("2")) == Decimal("2")


class TestIngestAccount:
    async def test_repeated_sync_updates_in_place(self, services, broker, session_maker, account):
        broker.profiles["1001"] = make_profile("1001", "BBOOK\\STANDARD\\USD")
        broker.trades["1001"] = [make_trade("5001", profit="10")]
        await services.ingestion.ingest_account(account, WINDOW, standard_rules())

        broker.trades["1001"] = [make_trade("5001", profit="12")]
        report = await services.ingestion.ingest_account(account, WINDOW, standard_rules())

        rows = await stored(session_maker)
        assert report.saved == 1
        assert len(rows) == 1
        assert rows[0].profit == Decimal("12")
        assert rows[0].ib_commission == Decimal("10")
        assert rows[0].id == "1001-5001"
        assert rows[0].group_id == "BBOOK\\STANDARD\\USD"

    async def test_resync_is_counted_once_by_aggregator(self, services, broker, session_maker, account):
        broker.profiles["1001"] = make_profile("1001", "BBOOK\\STANDARD\\USD")
        broker.trades["1001"] = [make_trade("5001", profit="10")]
        await services.ingestion.ingest_account(account, WINDOW, standard_rules())
        async with session_maker() as session:
            partner = await get_partner(session, account.ib_request_id)
        before = await services.aggregator.aggregate(partner, rule_map=standard_rules())

        broker.trades["1001"] = [make_trade("5001", profit="12")]
        await services.ingestion.ingest_account(account, WINDOW, standard_rules())
        after = await services.aggregator.aggregate(partner, rule_map=standard_rules())

        assert before.totals.profit == Decimal("10")
        assert after.totals.profit == Decimal("12")
        assert after.total_trades == 1
        assert after.fixed == before.fixed == Decimal("10")

    async def test_thousandth_volume_commission(self, services, broker, session_maker, account):
        broker.profiles["1001"] = make_profile("1001", "standard")
        broker.trades["1001"] = [make_trade("6001", volume="0.05")]
        await services.ingestion.ingest_account(account, WINDOW, standard_rules(usd="15"))

        (row,) = await stored(session_maker)
        assert row.volume_lots == Decimal("50")
        assert row.ib_commission == Decimal("750")

    async def test_filtered_trades_are_not_stored(self, services, broker, session_maker, account):
        broker.profiles["1001"] = make_profile("1001", "standard")
        broker.trades["1001"] = [
            make_trade("7001"),
            make_trade("7002", order_type="balance"),
            make_trade("7003", close_price="0"),
            make_trade("7004", volume="0"),
            make_trade("7005", symbol=""),
        ]
        report = await services.ingestion.ingest_account(account, WINDOW, standard_rules())

        assert report.fetched == 5
        assert report.admitted == 1
        assert [row.order_id for row in await stored(session_maker)] == ["7001"]

    async def test_unmatched_group_stores_zero_commission(self, services, broker, session_maker, account):
        broker.profiles["1001"] = make_profile("1001", "gold")
        broker.trades["1001"] = [make_trade("7101")]
        await services.ingestion.ingest_account(account, WINDOW, standard_rules())

        (row,) = await stored(session_maker)
        assert row.ib_commission == Decimal("0")

    async def test_demo_account_is_skipped(self, services, broker, session_maker, account):
        broker.profiles["1001"] = make_profile("1001", "demo\\standard")
        broker.trades["1001"] = [make_trade("8001")]
        report = await services.ingestion.ingest_account(account, WINDOW, standard_rules())

        assert report.skipped_reason == "demo"
        assert broker.calls == []
        assert await stored(session_maker) == []

    async def test_broker_failure_is_reported(self, services, broker, session_maker, account):
        broker.profiles["1001"] = make_profile("1001", "standard")
        broker.failing.add("1001")
        report = await services.ingestion.ingest_account(account, WINDOW, standard_rules())

        assert not report.ok
        assert report.error
        assert await stored(session_maker) == []

    async def test_unknown_group_keeps_stored_commission(self, services, broker, session_maker, account):
        broker.profiles["1001"] = make_profile("1001", "standard")
        broker.trades["1001"] = [make_trade("9001", profit="10")]
        await services.ingestion.ingest_account(account, WINDOW, standard_rules())

        del broker.profiles["1001"]
        broker.trades["1001"] = [make_trade("9001", profit="15")]
        report = await services.ingestion.ingest_account(account, WINDOW, standard_rules())

        (row,) = await stored(session_maker)
        assert report.group_id is None
        assert row.profit == Decimal("15")
        assert row.ib_commission == Decimal("10")
        assert row.group_id == "standard"

    async def test_recompute_applies_new_rates(self, services, broker, session_maker, account):
        broker.profiles["1001"] = make_profile("1001", "standard")
        broker.trades["1001"] = [make_trade("9101", volume="2")]
        await services.ingestion.ingest_account(account, WINDOW, standard_rules(usd="10"))

        changed = await services.ingestion.recompute_account_commission(
            "1001", standard_rules(usd="20")
        )

        (row,) = await stored(session_maker)
        assert changed == 1
        assert row.ib_commission == Decimal("40")
