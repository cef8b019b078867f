"""REST price snapshots from Binance.US and Coinbase via CCXT public endpoints.

No authentication is required for market data. CCXT's built-in rate limiter
(``enableRateLimit``) keeps us under each exchange's request budget. Every price
fetched here is also merged into the global store under its exchange source.
"""

import asyncio
import logging
import time
from typing import Any

import ccxt

from app.config import settings
from app.services.prices.errors import UpstreamError
from app.services.prices.store import BINANCE, COINBASE, GlobalPriceStore
from app.services.prices.symbols import market_symbol, normalize_symbol

logger = logging.getLogger(__name__)


class ExchangeRestFeed:
    """Pull ticker prices for one exchange/quote pair, with a short per-symbol cache."""

    def __init__(
        self,
        store: GlobalPriceStore,
        exchange_id: str,
        source: str,
        quote: str,
        cache_ttl: float | None = None,
        exchange: ccxt.Exchange | None = None,
    ) -> None:
        self._store = store
        self.exchange_id = exchange_id
        self.source = source
        self.quote = quote
        self._cache_ttl = float(cache_ttl if cache_ttl is not None else settings.rest_cache_ttl_seconds)
        self._exchange = exchange
        self._markets_loaded = False
        self._cache: dict[str, tuple[float, float]] = {}  # symbol -> (price, epoch seconds)

    def _get_exchange(self) -> ccxt.Exchange:
        """Lazy init and market load. Sync, call from a worker thread."""
        if self._exchange is None:
            exchange_cls = getattr(ccxt, self.exchange_id)
            self._exchange = exchange_cls({"enableRateLimit": True, "timeout": 10000})
        if not self._markets_loaded:
            try:
                self._exchange.load_markets()
            except ccxt.BaseError as e:
                raise UpstreamError(self.source, f"load_markets failed: {e}") from e
            self._markets_loaded = True
            logger.info("CCXT: %s markets loaded (%d)", self.exchange_id, len(self._exchange.markets))
        return self._exchange

    def _has_market(self, symbol: str) -> bool:
        exchange = self._get_exchange()
        market = exchange.markets.get(market_symbol(symbol, self.quote))
        return bool(market) and market.get("active") is not False

    def _fetch_last(self, symbol: str) -> float | None:
        """Synchronous last-price fetch. None when the pair isn't listed."""
        if not self._has_market(symbol):
            return None
        exchange = self._get_exchange()
        try:
            ticker = exchange.fetch_ticker(market_symbol(symbol, self.quote))
        except ccxt.BadSymbol:
            return None
        except ccxt.BaseError as e:
            raise UpstreamError(self.source, f"fetch_ticker {symbol} failed: {e}") from e
        last = ticker.get("last") or ticker.get("close")
        return float(last) if last is not None else None

    def _cached(self, symbol: str) -> tuple[float, float] | None:
        hit = self._cache.get(symbol)
        if hit and (time.time() - hit[1]) < self._cache_ttl:
            return hit
        return None

    def _record(self, symbol: str, price: float) -> float:
        now = time.time()
        self._cache[symbol] = (price, now)
        self._write_store(symbol, price)
        return now

    def _write_store(self, symbol: str, price: float) -> None:
        self._store.update_price(symbol, self.source, price, pair=f"{symbol}-{self.quote}")

    async def get_price(self, symbol: str) -> dict[str, Any] | None:
        """Current price for one symbol, or None if the exchange doesn't list it."""
        symbol = normalize_symbol(symbol)
        hit = self._cached(symbol)
        if hit:
            return {"symbol": symbol, "price": hit[0], "source": self.source, "cached": True, "timestamp": hit[1]}

        price = await asyncio.to_thread(self._fetch_last, symbol)
        if price is None:
            return None
        ts = self._record(symbol, price)
        return {"symbol": symbol, "price": price, "source": self.source, "cached": False, "timestamp": ts}

    async def get_prices(self, symbols: list[str]) -> dict[str, dict[str, Any]]:
        """Prices for several symbols. Unlisted or failing symbols are left out."""
        prices: dict[str, dict[str, Any]] = {}
        for symbol in dict.fromkeys(normalize_symbol(s) for s in symbols):
            if not symbol:
                continue
            try:
                result = await self.get_price(symbol)
            except UpstreamError as e:
                logger.warning("Failed to fetch %s from %s: %s", symbol, self.source, e)
                continue
            if result:
                prices[symbol] = {"price": result["price"], "source": self.source}
        return prices

    async def has_symbol(self, symbol: str) -> bool:
        return await asyncio.to_thread(self._has_market, normalize_symbol(symbol))

    async def base_symbols(self) -> list[str]:
        """Base assets of all active markets quoted in ``self.quote``."""

        def _bases() -> list[str]:
            exchange = self._get_exchange()
            return sorted({
                m["base"] for m in exchange.markets.values()
                if m.get("quote") == self.quote and m.get("active") is not False and m.get("spot", True)
            })

        return await asyncio.to_thread(_bases)

    async def ping(self) -> float:
        """Round-trip latency to the exchange in milliseconds."""

        def _ping() -> float:
            exchange = self._get_exchange()
            start = time.perf_counter()
            try:
                exchange.fetch_time()
            except ccxt.BaseError as e:
                raise UpstreamError(self.source, f"ping failed: {e}") from e
            return (time.perf_counter() - start) * 1000

        return await asyncio.to_thread(_ping)


class BinanceRestFeed(ExchangeRestFeed):
    """Binance.US USDT pairs."""

    def __init__(self, store: GlobalPriceStore, **kwargs: Any) -> None:
        super().__init__(store, exchange_id="binanceus", source=BINANCE, quote="USDT", **kwargs)

    def _write_store(self, symbol: str, price: float) -> None:
        # A REST poll must not knock a live WebSocket entry off its live flag
        existing = self._store.get_price(symbol)
        live = bool(existing and existing.source == BINANCE and existing.is_live)
        self._store.update_price(symbol, BINANCE, price, is_live=live, pair=f"{symbol}{self.quote}")

    async def all_prices(self) -> dict[str, dict[str, Any]]:
        """Snapshot of every USDT pair, merged into the store."""

        def _fetch() -> dict:
            exchange = self._get_exchange()
            try:
                return exchange.fetch_tickers()
            except ccxt.BaseError as e:
                raise UpstreamError(self.source, f"fetch_tickers failed: {e}") from e

        tickers = await asyncio.to_thread(_fetch)
        prices: dict[str, dict[str, Any]] = {}
        suffix = f"/{self.quote}"
        for pair, ticker in tickers.items():
            if not pair.endswith(suffix):
                continue
            last = ticker.get("last") or ticker.get("close")
            if last is None:
                continue
            base = pair[: -len(suffix)]
            price = float(last)
            ts = self._record(base, price)
            prices[base] = {"price": price, "pair": f"{base}{self.quote}", "source": "rest", "timestamp": ts}
        logger.info("Binance REST snapshot: %d USDT pairs", len(prices))
        return prices

    async def ticker_24h(self, symbol: str | None = None) -> dict[str, Any]:
        """24h rolling ticker for one symbol, or all symbols when none is given."""

        def _fetch() -> dict:
            exchange = self._get_exchange()
            try:
                if symbol:
                    return exchange.fetch_ticker(market_symbol(symbol, self.quote))
                return exchange.fetch_tickers()
            except ccxt.BadSymbol as e:
                raise UpstreamError(self.source, f"unknown symbol {symbol}", 404) from e
            except ccxt.BaseError as e:
                raise UpstreamError(self.source, f"24h ticker failed: {e}") from e

        return await asyncio.to_thread(_fetch)


class CoinbaseRestFeed(ExchangeRestFeed):
    """Coinbase Exchange USD products."""

    def __init__(self, store: GlobalPriceStore, **kwargs: Any) -> None:
        super().__init__(store, exchange_id="coinbaseexchange", source=COINBASE, quote="USD", **kwargs)
