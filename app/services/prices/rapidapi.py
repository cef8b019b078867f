"""RapidAPI / CoinRanking client and the store refresh built on it.

CoinRanking is the only source with a full ranked universe (1500+ coins), so it
backfills every symbol the exchange feeds don't cover, plus name/rank/market
cap. The free tier is tight: the store gate limits full refreshes to one per
``rapidapi_interval_seconds`` (15 min), and lookups use a 10-minute coin-list
cache.
"""

import logging
import time
from typing import Any

import httpx

from app.config import settings
from app.services.prices.errors import UpstreamError
from app.services.prices.store import RAPIDAPI, GlobalPriceStore

logger = logging.getLogger(__name__)

COIN_LIST_TTL_SECONDS = 10 * 60
SEARCH_LIMIT = 20

# Ranked snapshot used to backfill the store
REFRESH_PARAMS = {
    "referenceCurrencyUuid": "yhjMzLPhuIDl",  # US Dollar
    "timePeriod": "24h",
    "tiers[0]": "1",
    "orderBy": "marketCap",
    "orderDirection": "desc",
    "limit": "1500",
    "offset": "0",
}


def _to_float(value: Any) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _to_int(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _payload(data: Any, path: str) -> dict:
    """The ``data`` object of a CoinRanking response. Anything else is an upstream fault."""
    body = data.get("data") if isinstance(data, dict) else None
    if not isinstance(body, dict):
        raise UpstreamError(RAPIDAPI, f"unexpected payload from {path}: {str(data)[:200]}")
    return body


def _coin_list(data: Any, path: str) -> list[dict]:
    coins = _payload(data, path).get("coins") or []
    if not isinstance(coins, list):
        raise UpstreamError(RAPIDAPI, f"unexpected coin list from {path}")
    return [coin for coin in coins if isinstance(coin, dict)]


class RapidApiClient:
    """Thin async wrapper over the CoinRanking REST API."""

    def __init__(
        self,
        api_key: str | None = None,
        host: str | None = None,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key if api_key is not None else settings.rapidapi_key
        self._host = host or settings.rapidapi_host
        self._timeout = timeout
        self._transport = transport
        self._coins: list[dict] = []
        self._coins_time: float = 0.0

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=f"https://{self._host}",
            headers={"X-RapidAPI-Key": self._api_key, "X-RapidAPI-Host": self._host},
            timeout=self._timeout,
            transport=self._transport,
        )

    async def _get(self, path: str, params: dict | None = None) -> dict:
        try:
            async with self._client() as client:
                resp = await client.get(path, params=params)
                resp.raise_for_status()
                return resp.json()
        except httpx.HTTPStatusError as e:
            raise UpstreamError(
                RAPIDAPI, f"HTTP {e.response.status_code} from {path}", e.response.status_code
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise UpstreamError(RAPIDAPI, f"{path} failed: {e}") from e

    async def list_coins(self, limit: int | str = 100, **params: Any) -> dict:
        """Raw ``/coins`` response, passed through unchanged for the frontend."""
        return await self._get("/coins", {"limit": str(limit), **params})

    async def get_coin(self, uuid: str) -> dict:
        return await self._get(f"/coin/{uuid}")

    async def ranked_coins(self) -> list[dict]:
        """Top coins by market cap using the refresh parameters."""
        return _coin_list(await self._get("/coins", REFRESH_PARAMS), "/coins")

    async def all_coins(self) -> list[dict]:
        """Full coin list, cached for 10 minutes."""
        now = time.monotonic()
        if self._coins and (now - self._coins_time) < COIN_LIST_TTL_SECONDS:
            return self._coins

        logger.info("Fetching full coin list from RapidAPI")
        self._coins = _coin_list(await self._get("/coins", {"limit": "2000"}), "/coins")
        self._coins_time = now
        logger.info("Loaded %d coins from RapidAPI", len(self._coins))
        return self._coins

    async def find_prices(self, symbols: list[str]) -> tuple[dict[str, dict], list[str]]:
        """Look up symbols in the cached coin list. Returns (prices, missing)."""
        by_symbol: dict[str, dict] = {}
        for coin in await self.all_coins():
            sym = (coin.get("symbol") or "").upper()
            # First hit wins; list is ordered by rank
            if sym and sym not in by_symbol:
                by_symbol[sym] = coin

        prices: dict[str, dict] = {}
        missing: list[str] = []
        for symbol in symbols:
            upper = symbol.upper()
            coin = by_symbol.get(upper)
            price = _to_float(coin.get("price")) if coin else None
            if price is None:
                missing.append(upper)
                continue
            prices[upper] = {
                "price": price,
                "uuid": coin.get("uuid"),
                "name": coin.get("name"),
                "market_cap": _to_float(coin.get("marketCap")),
                "volume_24h": _to_float(coin.get("24hVolume")),
                "rank": _to_int(coin.get("rank")),
            }
        return prices, missing

    async def search(self, query: str) -> list[dict]:
        needle = query.lower()
        hits = [
            coin for coin in await self.all_coins()
            if needle in (coin.get("symbol") or "").lower() or needle in (coin.get("name") or "").lower()
        ]
        return [
            {
                "uuid": coin.get("uuid"),
                "symbol": coin.get("symbol"),
                "name": coin.get("name"),
                "price": coin.get("price"),
                "rank": coin.get("rank"),
            }
            for coin in hits[:SEARCH_LIMIT]
        ]

    async def ping(self) -> dict:
        data = await self._get("/coins", {"limit": "1"})
        stats = _payload(data, "/coins").get("stats") or {}
        return {"status": "online", "total_coins": stats.get("total", 0)}


async def refresh_rapidapi_prices(store: GlobalPriceStore, client: RapidApiClient) -> dict:
    """Pull the ranked coin list into the store, at most once per refresh interval.

    Raises UpstreamError if CoinRanking fails; the gate is left open so the
    next call retries.
    """
    if not store.should_fetch_rapidapi():
        return {
            "success": False,
            "message": f"Too soon to refresh. Wait {int(store.rapidapi_interval // 60)} minutes.",
            "next_refresh": store.next_rapidapi_refresh(),
        }

    coins = await client.ranked_coins()
    updates: dict[str, dict] = {}
    seen: set[str] = set()
    for coin in coins:
        symbol = (coin.get("symbol") or "").upper()
        price = _to_float(coin.get("price"))
        # First (highest-ranked) coin per symbol wins
        if not symbol or symbol in seen:
            continue
        seen.add(symbol)
        # An unpriced coin may refresh metadata on a known symbol but never creates one
        if price is None and store.get_price(symbol) is None:
            continue
        updates[symbol] = {
            "price": price,
            "uuid": coin.get("uuid"),
            "name": coin.get("name"),
            "rank": _to_int(coin.get("rank")),
            "market_cap": _to_float(coin.get("marketCap")),
            "change": _to_float(coin.get("change")),
            "coin_data": coin,
        }

    updated = store.update_prices(updates, RAPIDAPI)
    store.mark_rapidapi_fetched()
    logger.info("RapidAPI refresh: %d coins, %d symbols updated", len(coins), updated)

    return {
        "success": True,
        "message": f"Refreshed {len(coins)} coins from RapidAPI",
        "updated": updated,
        "timestamp": time.time(),
    }
