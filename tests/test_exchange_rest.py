"""Tests for the CCXT-backed REST snapshot feeds, using an in-memory exchange."""

import ccxt
import pytest

from app.services.prices.errors import UpstreamError
from app.services.prices.exchange_rest import BinanceRestFeed, CoinbaseRestFeed
from app.services.prices.store import BINANCE, COINBASE


class FakeExchange:
    """The slice of a ccxt.Exchange the feeds use."""

    def __init__(self, tickers: dict[str, dict], inactive=()):
        self.tickers = tickers
        self.markets: dict[str, dict] = {}
        self._inactive = set(inactive)
        self.load_calls = 0
        self.ticker_calls: list[str] = []
        self.fail_with: Exception | None = None

    def load_markets(self):
        self.load_calls += 1
        for pair in list(self.tickers) + list(self._inactive):
            base, quote = pair.split("/")
            self.markets[pair] = {
                "symbol": pair, "base": base, "quote": quote,
                "active": pair not in self._inactive, "spot": True,
            }
        return self.markets

    def fetch_ticker(self, symbol):
        self.ticker_calls.append(symbol)
        if self.fail_with:
            raise self.fail_with
        if symbol not in self.tickers:
            raise ccxt.BadSymbol(symbol)
        return self.tickers[symbol]

    def fetch_tickers(self):
        if self.fail_with:
            raise self.fail_with
        return self.tickers

    def fetch_time(self):
        return 1_760_000_000_000


BINANCE_TICKERS = {
    "BTC/USDT": {"symbol": "BTC/USDT", "last": 65000.0},
    "ETH/USDT": {"symbol": "ETH/USDT", "last": 3000.0},
    "ETH/BTC": {"symbol": "ETH/BTC", "last": 0.046},
    "NEW/USDT": {"symbol": "NEW/USDT", "last": None, "close": None},
}


@pytest.fixture
def binance_exchange():
    return FakeExchange(dict(BINANCE_TICKERS), inactive=["OLD/USDT"])


@pytest.fixture
def binance_feed(store, binance_exchange):
    return BinanceRestFeed(store, exchange=binance_exchange, cache_ttl=30)


class TestBinanceRest:
    @pytest.mark.asyncio
    async def test_price_fetched_then_cached(self, binance_feed, binance_exchange, store):
        first = await binance_feed.get_price("btc")
        second = await binance_feed.get_price("BTC")

        assert first["symbol"] == "BTC"
        assert first["price"] == 65000.0
        assert first["source"] == BINANCE
        assert first["cached"] is False
        assert second["cached"] is True
        assert binance_exchange.ticker_calls == ["BTC/USDT"]
        assert binance_exchange.load_calls == 1

        entry = store.get_price("BTC")
        assert entry.binance_price == 65000.0
        assert entry.is_live is False

    @pytest.mark.asyncio
    async def test_unlisted_or_inactive_symbol_is_none(self, binance_feed, binance_exchange):
        assert await binance_feed.get_price("DOGE") is None
        assert await binance_feed.get_price("OLD") is None
        assert binance_exchange.ticker_calls == []
        assert await binance_feed.has_symbol("eth") is True
        assert await binance_feed.has_symbol("OLD") is False

    @pytest.mark.asyncio
    async def test_rest_write_keeps_live_flag(self, binance_feed, store):
        store.update_price("ETH", BINANCE, 2999.0, is_live=True)
        await binance_feed.get_price("ETH")

        entry = store.get_price("ETH")
        assert entry.price == 3000.0
        assert entry.is_live is True

    @pytest.mark.asyncio
    async def test_batch_skips_missing_and_failures(self, binance_feed, binance_exchange):
        prices = await binance_feed.get_prices(["BTC", "btc", "DOGE", "eth"])
        assert prices == {
            "BTC": {"price": 65000.0, "source": BINANCE},
            "ETH": {"price": 3000.0, "source": BINANCE},
        }

        binance_exchange.fail_with = ccxt.NetworkError("timeout")
        binance_feed._cache.clear()
        assert await binance_feed.get_prices(["BTC"]) == {}

    @pytest.mark.asyncio
    async def test_exchange_error_raised_as_upstream(self, binance_feed, binance_exchange):
        binance_exchange.fail_with = ccxt.ExchangeNotAvailable("maintenance")
        with pytest.raises(UpstreamError) as exc_info:
            await binance_feed.get_price("BTC")
        assert exc_info.value.source == BINANCE

    @pytest.mark.asyncio
    async def test_all_prices_only_usdt_with_last(self, binance_feed, store):
        prices = await binance_feed.all_prices()

        assert set(prices) == {"BTC", "ETH"}
        assert prices["BTC"]["pair"] == "BTCUSDT"
        assert prices["BTC"]["source"] == "rest"
        assert store.get_price("ETH").price == 3000.0
        assert store.get_price("NEW") is None

    @pytest.mark.asyncio
    async def test_ticker_24h_unknown_symbol_is_404(self, binance_feed):
        with pytest.raises(UpstreamError) as exc_info:
            await binance_feed.ticker_24h("NOPE")
        assert exc_info.value.status_code == 404

        ticker = await binance_feed.ticker_24h("btc")
        assert ticker["last"] == 65000.0

    @pytest.mark.asyncio
    async def test_base_symbols_and_ping(self, binance_feed):
        assert await binance_feed.base_symbols() == ["BTC", "ETH", "NEW"]
        assert await binance_feed.ping() >= 0


class TestCoinbaseRest:
    @pytest.mark.asyncio
    async def test_usd_products_written_as_coinbase(self, store):
        exchange = FakeExchange({"SOL/USD": {"last": 141.0}})
        feed = CoinbaseRestFeed(store, exchange=exchange)

        result = await feed.get_price("sol")

        assert result["price"] == 141.0
        assert result["source"] == COINBASE
        assert exchange.ticker_calls == ["SOL/USD"]
        entry = store.get_price("SOL")
        assert entry.source == COINBASE
        assert entry.pair == "SOL-USD"
