"""Агрегация комиссий: пригодность строк, сохранение суммы, даунлайн."""

from datetime import datetime, timezone
from decimal import Decimal

from conftest import make_record
from portal.models import CommissionSnapshot
from portal.repositories import get_snapshot
from portal.services.commission.aggregator import UNASSIGNED_USER, AggregationScope, summarize
from portal.services.commission.group_keys import CommissionRule, RuleMap


def rules(usd="10", pct="10"):
    return RuleMap([
        CommissionRule(
            group_id="standard",
            usd_per_lot=Decimal(usd),
            spread_share_percentage=Decimal(pct),
        )
    ])


class TestSummarize:
    def test_total_is_fixed_plus_spread(self):
        summary = summarize(
            [
                make_record("1", ib_request_id=1, volume="2", commission="20"),
                make_record("2", ib_request_id=1, volume="3", commission="30", symbol="XAUUSD"),
            ],
            rules(pct="10"),
        )
        assert summary.fixed == Decimal("50")
        assert summary.spread == Decimal("0.5")
        assert summary.total == summary.fixed + summary.spread
        assert summary.total_trades == 2
        assert summary.total_lots == Decimal("5")
        assert set(summary.by_symbol) == {"EURUSD", "XAUUSD"}

    def test_unmatched_and_demo_rows_are_excluded_entirely(self):
        summary = summarize(
            [
                make_record("1", ib_request_id=1, group_id="standard"),
                make_record("2", ib_request_id=1, group_id="gold"),
                make_record("3", ib_request_id=1, group_id="demo\\standard"),
            ],
            rules(),
        )
        assert summary.total_trades == 1
        assert summary.fixed == Decimal("10")

    def test_breakdown_serialization(self):
        data = summarize([make_record("1", ib_request_id=1)], rules()).as_dict()
        assert data["total"] == 10.1
        assert data["by_group"][0]["key"] == "standard"
        assert data["by_account"][0]["key"] == "1001"
        assert len(data["by_day"]) == 1

    def test_breakdown_per_client_user(self):
        early = make_record("1", ib_request_id=1, user_id="u-1", volume="2", commission="20")
        early.close_time = datetime(2024, 5, 1, tzinfo=timezone.utc)
        late = make_record("2", ib_request_id=1, user_id="u-1", account_id="1002", commission="10")
        late.close_time = datetime(2024, 5, 3, tzinfo=timezone.utc)
        summary = summarize(
            [
                early,
                late,
                make_record("3", ib_request_id=1, user_id="u-2", commission="10"),
                make_record("4", ib_request_id=1, account_id="9999", commission="10"),
            ],
            rules(pct="0"),
        )

        assert summary.by_user["u-1"].lots == Decimal("3")
        assert summary.by_user["u-1"].fixed == Decimal("30")
        assert summary.by_user["u-1"].last_trade_at == datetime(2024, 5, 3, tzinfo=timezone.utc)
        assert summary.by_user["u-2"].trades == 1
        assert summary.by_user[UNASSIGNED_USER].trades == 1
        data = summary.as_dict()
        assert data["by_user"][0]["key"] == "u-1"
        assert data["by_user"][0]["last_trade_at"] == "2024-05-03T00:00:00+00:00"

    def test_summary_without_breakdowns(self):
        data = summarize([], rules()).as_dict(breakdowns=False)
        assert data["total"] == 0.0
        assert "by_symbol" not in data


class TestScope:
    def test_empty_sets_mean_nothing(self):
        assert AggregationScope(account_ids=frozenset()).is_empty
        assert not AggregationScope().is_empty

    def test_cache_key_is_stable_within_a_minute(self):
        first = AggregationScope.trailing(30, user_ids=frozenset({"b", "a"}))
        second = AggregationScope.trailing(30, user_ids=frozenset({"a", "b"}))
        assert first.cache_key() == second.cache_key()
        assert first.cache_key() != AggregationScope.trailing(7).cache_key()


class TestCommissionAggregator:
    async def test_zero_profit_rows_are_stored_but_not_counted(self, services, seed):
        partner = await seed.partner("ib@example.com", usd_per_lot=Decimal("10"), spread_pct=Decimal("0"))
        await seed.records(
            make_record("1", ib_request_id=partner.id, profit="0"),
            make_record("2", ib_request_id=partner.id, profit="5"),
            make_record("3", ib_request_id=partner.id, close_price="0"),
            make_record("4", ib_request_id=partner.id, order_type="balance"),
        )

        summary = await services.aggregator.earned_summary(partner, use_cache=False)

        assert summary.total_trades == 1
        assert summary.total == Decimal("10")

    async def test_partner_without_rules_earns_nothing(self, services, seed):
        partner = await seed.partner("ib@example.com")
        await seed.records(make_record("1", ib_request_id=partner.id))

        summary = await services.aggregator.earned_summary(partner, use_cache=False)

        assert summary.total == Decimal("0")
        assert summary.total_trades == 0

    async def test_own_and_downline_are_separate(self, services, seed):
        partner = await seed.partner("ib@example.com", usd_per_lot=Decimal("10"), spread_pct=Decimal("0"))
        child = await seed.partner("child@example.com", referred_by=partner.id)
        await seed.client("u-own", "ib@example.com", [("A1", "live"), ("D1", "demo")])
        await seed.client("u-child", "child@example.com", [("C1", "live")])
        await seed.records(
            make_record("1", ib_request_id=partner.id, account_id="A1", user_id="u-own", commission="10"),
            make_record("2", ib_request_id=partner.id, account_id="C1", user_id="u-child", commission="30"),
        )

        own = await services.aggregator.own_summary(partner, use_cache=False)
        downline = await services.aggregator.downline_summary(partner, use_cache=False)
        earned = await services.aggregator.earned_summary(partner, use_cache=False)

        assert own.total == Decimal("10")
        assert downline.total == Decimal("30")
        assert earned.total == Decimal("40")
        assert child.referred_by == partner.id

    async def test_own_user_is_never_in_downline(self, services, seed):
        partner = await seed.partner("ib@example.com", usd_per_lot=Decimal("10"), spread_pct=Decimal("0"))
        await seed.partner("child@example.com", referred_by=partner.id)
        await seed.client("u-own", "ib@example.com", [("A1", "live")])
        await seed.client("u-child", "child@example.com", [("C1", "live")])

        async with services.session_maker() as session:
            user_ids = await services.referrals.downline_user_ids(session, partner, own_user_id="u-own")

        assert user_ids == frozenset({"u-child"})

    async def test_refresh_snapshot_stores_downline_totals(self, services, seed, session_maker):
        partner = await seed.partner("ib@example.com", usd_per_lot=Decimal("10"), spread_pct=Decimal("50"))
        await seed.partner("child@example.com", referred_by=partner.id)
        await seed.client("u-child", "child@example.com", [("C1", "live")])
        await seed.records(
            make_record("1", ib_request_id=partner.id, account_id="C1", user_id="u-child",
                        volume="2", commission="20"),
        )

        snapshot = await services.aggregator.refresh_snapshot(partner)

        assert isinstance(snapshot, CommissionSnapshot)
        async with session_maker() as session:
            stored = await get_snapshot(session, partner.id)
        assert stored.total_commission == Decimal("21")
        assert stored.total_trades == 1
