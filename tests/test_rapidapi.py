"""Tests for the CoinRanking client and the gated store refresh."""

import httpx
import pytest

from app.services.prices.errors import UpstreamError
from app.services.prices.rapidapi import RapidApiClient, refresh_rapidapi_prices
from app.services.prices.store import BINANCE, RAPIDAPI

COINS = [
    {"uuid": "Qwsogvtv82FCd", "symbol": "BTC", "name": "Bitcoin", "price": "64000.5",
     "rank": 1, "marketCap": "1260000000000", "change": "1.25", "24hVolume": "31000000000"},
    {"uuid": "razxDUgYGNAdQ", "symbol": "ETH", "name": "Ethereum", "price": "3000.1",
     "rank": 2, "marketCap": "360000000000", "change": "-0.4", "24hVolume": "15000000000"},
    {"uuid": "zNZHO_Sjf", "symbol": "SOL", "name": "Solana", "price": "141.2",
     "rank": 5, "marketCap": "65000000000", "change": "3.1", "24hVolume": "2000000000"},
    {"uuid": "dupe", "symbol": "sol", "name": "Fake Solana", "price": "0.01",
     "rank": 900, "marketCap": "1000", "change": "0", "24hVolume": "5"},
]


def coins_payload(coins=COINS) -> dict:
    return {"status": "success", "data": {"stats": {"total": 1500}, "coins": coins}}


def make_client(handler) -> RapidApiClient:
    return RapidApiClient(
        api_key="test-key",
        host="coinranking.test",
        transport=httpx.MockTransport(handler),
    )


class TestRefresh:
    @pytest.mark.asyncio
    async def test_refresh_populates_store(self, store):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json=coins_payload())

        result = await refresh_rapidapi_prices(store, make_client(handler))

        assert result["success"] is True
        assert result["updated"] == 3  # duplicate SOL is skipped
        assert "Refreshed 4 coins" in result["message"]

        sol = store.get_price("SOL")
        assert sol.price == 141.2
        assert sol.source == RAPIDAPI
        assert sol.name == "Solana"
        assert sol.rank == 5
        assert sol.market_cap == 65000000000.0
        assert sol.coin_data["uuid"] == "zNZHO_Sjf"

        sent = requests[0]
        assert sent.headers["X-RapidAPI-Key"] == "test-key"
        assert sent.headers["X-RapidAPI-Host"] == "coinranking.test"
        assert sent.url.params["orderBy"] == "marketCap"
        assert sent.url.params["limit"] == "1500"

    @pytest.mark.asyncio
    async def test_second_refresh_is_gated(self, store, clock):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json=coins_payload())

        client = make_client(handler)
        await refresh_rapidapi_prices(store, client)
        clock.advance(60)
        result = await refresh_rapidapi_prices(store, client)

        assert result["success"] is False
        assert "Too soon" in result["message"]
        assert result["next_refresh"] == store.last_rapidapi_fetch + 900
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_refresh_keeps_live_binance_price(self, store):
        store.update_price("BTC", BINANCE, 65000.0, pair="BTCUSDT")

        def handler(request):
            return httpx.Response(200, json=coins_payload())

        await refresh_rapidapi_prices(store, make_client(handler))

        btc = store.get_price("BTC")
        assert btc.price == 65000.0
        assert btc.source == BINANCE
        assert btc.is_live is True
        assert btc.rapid_price == 64000.5
        assert btc.rank == 1

    @pytest.mark.asyncio
    async def test_upstream_failure_raises_and_leaves_gate_open(self, store):
        def handler(request):
            return httpx.Response(503, json={"message": "quota exceeded"})

        with pytest.raises(UpstreamError) as exc_info:
            await refresh_rapidapi_prices(store, make_client(handler))

        assert exc_info.value.status_code == 503
        assert store.should_fetch_rapidapi() is True
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_malformed_payload_raises_and_leaves_gate_open(self, store):
        def handler(request):
            return httpx.Response(200, json={"status": "success", "data": "maintenance"})

        with pytest.raises(UpstreamError):
            await refresh_rapidapi_prices(store, make_client(handler))

        assert store.should_fetch_rapidapi() is True
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_unpriced_coins_only_update_known_symbols(self, store):
        store.update_price("ETH", BINANCE, 3001.0)
        coins = [
            {"uuid": "razxDUgYGNAdQ", "symbol": "ETH", "name": "Ethereum", "price": None, "rank": 2},
            {"uuid": "ghost", "symbol": "GHOST", "name": "Ghost", "price": "n/a", "rank": 40},
        ]

        def handler(request):
            return httpx.Response(200, json=coins_payload(coins))

        result = await refresh_rapidapi_prices(store, make_client(handler))

        assert result["updated"] == 1
        assert store.get_price("GHOST") is None
        eth = store.get_price("ETH")
        assert eth.price == 3001.0
        assert eth.name == "Ethereum"
        assert eth.rank == 2


class TestLookups:
    @pytest.mark.asyncio
    async def test_find_prices_reports_missing(self):
        client = make_client(lambda request: httpx.Response(200, json=coins_payload()))
        prices, missing = await client.find_prices(["btc", "SOL", "NOPE"])

        assert set(prices) == {"BTC", "SOL"}
        assert prices["SOL"]["name"] == "Solana"  # first (highest-ranked) match wins
        assert prices["BTC"]["volume_24h"] == 31000000000.0
        assert missing == ["NOPE"]

    @pytest.mark.asyncio
    async def test_coin_list_is_cached(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json=coins_payload())

        client = make_client(handler)
        await client.all_coins()
        await client.find_prices(["BTC"])
        await client.search("sol")
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_search_matches_symbol_or_name_and_caps_results(self):
        many = [
            {"uuid": str(i), "symbol": f"AB{i}", "name": f"Token {i}", "price": "1", "rank": i}
            for i in range(30)
        ]
        client = make_client(lambda request: httpx.Response(200, json=coins_payload(COINS + many)))

        by_name = await client.search("ethereum")
        assert [c["symbol"] for c in by_name] == ["ETH"]

        capped = await client.search("token")
        assert len(capped) == 20

    @pytest.mark.asyncio
    async def test_ping(self):
        client = make_client(lambda request: httpx.Response(200, json=coins_payload()))
        assert await client.ping() == {"status": "online", "total_coins": 1500}

    @pytest.mark.asyncio
    async def test_transport_error_wrapped(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(UpstreamError, match="rapidapi"):
            await make_client(handler).get_coin("Qwsogvtv82FCd")

    def test_configured_flag(self):
        assert RapidApiClient(api_key="").configured is False
        assert RapidApiClient(api_key="k").configured is True
