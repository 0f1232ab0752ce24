"""HTTP-клиент MT5 против локального aiohttp-сервера."""

from datetime import datetime, timezone

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from portal.services.broker.mt5_client import BrokerApiError, BrokerTrade, MT5Client

FROM = datetime(2024, 5, 1, tzinfo=timezone.utc)
TO = datetime(2024, 5, 8, tzinfo=timezone.utc)


def trade_item(order_id):
    return {
        "OrderId": order_id,
        "Symbol": "EURUSD",
        "OrderType": "Buy",
        "Volume": 0.05,
        "OpenPrice": 1.1,
        "ClosePrice": 1.2,
        "Profit": 12.5,
        "CloseTime": "2024-05-02T10:00:00Z",
    }


class BrokerStub:
    def __init__(self):
        self.requests = []
        self.pages = {}
        self.fail_first = 0
        self.profile_status = 200
        self.profile_body = {"Success": True, "Data": {"Balance": 1500, "Group": "real\\standard"}}
        self.groups = ["real\\Bbook\\Pro\\USD", {"Group": "demo\\std"}]

    async def trades(self, request):
        self.requests.append(dict(request.query))
        if self.fail_first:
            self.fail_first -= 1
            return web.Response(status=500, text="boom")
        return web.json_response(self.pages.get(int(request.query["page"]), {"Items": []}))

    async def profile(self, request):
        self.requests.append({"account": request.match_info["account_id"]})
        if self.fail_first:
            self.fail_first -= 1
            return web.Response(status=502, text="bad gateway")
        if self.profile_status != 200:
            return web.Response(status=self.profile_status, text="nope")
        return web.json_response(self.profile_body)

    async def group_list(self, request):
        return web.json_response(self.groups)


@pytest.fixture
def stub():
    return BrokerStub()


@pytest.fixture
async def client(stub):
    app = web.Application()
    app.router.add_get("/api/client/tradehistory/trades", stub.trades)
    app.router.add_get("/api/Users/{account_id}/getClientProfile", stub.profile)
    app.router.add_get("/api/Groups", stub.group_list)
    server = TestServer(app)
    await server.start_server()
    client = MT5Client(str(server.make_url("/")), timeouts=(2.0, 3.0), page_size=2, max_pages=5)
    yield client
    await client.close()
    await server.close()


class TestFetchTrades:
    async def test_pages_until_total_pages(self, client, stub):
        stub.pages = {
            1: {"Items": [trade_item(1), trade_item(2)], "TotalPages": 2},
            2: {"Items": [trade_item(3)], "TotalPages": 2},
        }
        trades = await client.fetch_trades("1001", FROM, TO)

        assert [t.order_id for t in trades] == ["1", "2", "3"]
        assert len(stub.requests) == 2
        assert stub.requests[0]["accountId"] == "1001"
        assert stub.requests[0]["fromDate"] == "2024-05-01T00:00:00Z"

    async def test_short_page_ends_paging(self, client, stub):
        stub.pages = {
            1: {"Items": [trade_item(1), trade_item(2)]},
            2: {"Items": [trade_item(3)]},
            3: {"Items": [trade_item(4)]},
        }
        trades = await client.fetch_trades("1001", FROM, TO)

        assert len(trades) == 3
        assert len(stub.requests) == 2

    async def test_retries_once_after_server_error(self, client, stub):
        stub.fail_first = 1
        stub.pages = {1: {"Items": [trade_item(1)]}}
        trades = await client.fetch_trades("1001", FROM, TO)

        assert len(trades) == 1
        assert len(stub.requests) == 2

    async def test_raises_after_second_failure(self, client, stub):
        stub.fail_first = 2
        with pytest.raises(BrokerApiError):
            await client.fetch_trades("1001", FROM, TO)

    async def test_out_of_range_close_time_keeps_batch(self, client, stub):
        broken = dict(trade_item(2), CloseTime=10**20)
        stub.pages = {1: {"Items": [trade_item(1), broken]}}
        trades = await client.fetch_trades("1001", FROM, TO)

        assert [t.order_id for t in trades] == ["1", "2"]
        assert trades[0].close_time == datetime(2024, 5, 2, 10, tzinfo=timezone.utc)
        assert trades[1].close_time is None

    async def test_missing_items_is_empty(self, client, stub):
        stub.pages = {1: {"Unexpected": True}}
        assert await client.fetch_trades("1001", FROM, TO) == []


class TestClientProfile:
    async def test_profile_fields(self, client):
        profile = await client.get_client_profile("1001")

        assert profile.group == "real\\standard"
        assert float(profile.balance) == 1500
        assert float(profile.equity) == 0

    async def test_lowercase_envelope(self, client, stub):
        stub.profile_body = {"success": True, "data": {"balance": "20.5", "group": "std"}}
        profile = await client.get_client_profile("1001")
        assert profile.group == "std"

    async def test_unsuccessful_profile_is_none(self, client, stub):
        stub.profile_body = {"Success": False, "Data": None}
        assert await client.get_client_profile("1001") is None

    async def test_client_error_is_not_retried(self, client, stub):
        stub.profile_status = 404
        assert await client.get_client_profile("1001") is None
        assert len(stub.requests) == 1

    async def test_server_error_retried_then_recovers(self, client, stub):
        stub.fail_first = 1
        assert await client.get_client_profile("1001") is not None
        assert len(stub.requests) == 2


class TestPayloadCoercion:
    async def test_groups_accept_strings_and_objects(self, client):
        assert await client.get_groups() == ["real\\Bbook\\Pro\\USD", "demo\\std"]

    def test_trade_fields_are_coerced(self):
        trade = BrokerTrade.from_payload(
            {"orderId": 77, "symbol": "XAUUSD", "orderType": "SELL", "volume": "0.5",
             "openPrice": None, "closePrice": "oops", "profit": "3.5", "closeTime": 1714644000}
        )
        assert trade.order_id == "77"
        assert trade.order_type == "sell"
        assert float(trade.volume) == 0.5
        assert float(trade.open_price) == 0
        assert float(trade.close_price) == 0
        assert trade.close_time == datetime.fromtimestamp(1714644000, tz=timezone.utc)

    @pytest.mark.parametrize("close_time", [10**20, -(10**20), float("inf"), float("nan")])
    def test_unrepresentable_timestamp_is_none(self, close_time):
        trade = BrokerTrade.from_payload({"OrderId": 5, "CloseTime": close_time})
        assert trade.close_time is None
