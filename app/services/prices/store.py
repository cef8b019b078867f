"""Global price store: one best-available price per symbol for the whole process.

Merges three kinds of input into a single entry per upper-case symbol:

- Binance ticks (live WebSocket, or REST snapshots with ``is_live=False``)
- Coinbase ticks and REST snapshots
- RapidAPI/CoinRanking ranked coin list (price plus name, rank, market cap)

Price priority is binance > coinbase > rapidapi. A Binance or Coinbase price
only holds priority while it is fresh (``live_stale_seconds`` since its last
update); after that a lower source may take over the headline price.
Every source always records its own value (``binance_price``,
``coinbase_price``, ``rapid_price``) so callers can pick for themselves.
"""

import logging
import time
from dataclasses import asdict, dataclass, replace
from typing import Any, Callable

from app.config import settings

logger = logging.getLogger(__name__)

BINANCE = "binance"
COINBASE = "coinbase"
RAPIDAPI = "rapidapi"
SOURCES = (BINANCE, COINBASE, RAPIDAPI)

# Fields a caller may pass through update_price(**fields)
_METADATA_FIELDS = frozenset({"name", "rank", "market_cap", "change", "uuid", "pair", "coin_data"})

Subscriber = Callable[[str, "PriceEntry"], None]


@dataclass
class PriceEntry:
    """Merged state for one symbol. Timestamps are epoch seconds."""

    symbol: str
    price: float | None = None
    source: str | None = None
    updated_source: str | None = None
    is_live: bool = False
    binance_price: float | None = None
    coinbase_price: float | None = None
    rapid_price: float | None = None
    binance_updated: float | None = None
    coinbase_updated: float | None = None
    name: str | None = None
    rank: int | None = None
    market_cap: float | None = None
    change: float | None = None
    uuid: str | None = None
    pair: str | None = None
    coin_data: dict | None = None
    last_updated: float = 0.0

    def to_dict(self, include_coin_data: bool = True) -> dict[str, Any]:
        data = asdict(self)
        if not include_coin_data:
            data.pop("coin_data", None)
        return data


class GlobalPriceStore:
    """In-memory symbol -> PriceEntry map with source-priority merge rules."""

    def __init__(
        self,
        rapidapi_interval: float | None = None,
        live_stale_seconds: float | None = None,
        entry_max_age: float | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._prices: dict[str, PriceEntry] = {}
        self._subscribers: list[Subscriber] = []
        self._clock = clock
        self.rapidapi_interval = float(
            rapidapi_interval if rapidapi_interval is not None else settings.rapidapi_interval_seconds
        )
        self.live_stale_seconds = float(
            live_stale_seconds if live_stale_seconds is not None else settings.live_stale_seconds
        )
        self.entry_max_age = float(
            entry_max_age if entry_max_age is not None else settings.entry_max_age_seconds
        )
        self.last_rapidapi_fetch: float = 0.0

    def __len__(self) -> int:
        return len(self._prices)

    # ---------- Freshness ----------

    def _is_fresh(self, updated_at: float | None, now: float) -> bool:
        return updated_at is not None and (now - updated_at) <= self.live_stale_seconds

    def _binance_fresh(self, entry: PriceEntry, now: float) -> bool:
        return entry.binance_price is not None and self._is_fresh(entry.binance_updated, now)

    def _coinbase_fresh(self, entry: PriceEntry, now: float) -> bool:
        return entry.coinbase_price is not None and self._is_fresh(entry.coinbase_updated, now)

    def _view(self, entry: PriceEntry, now: float) -> PriceEntry:
        """Copy of an entry as readers should see it. Stale Binance is never live."""
        view = replace(entry)
        if view.source == BINANCE and view.is_live and not self._binance_fresh(entry, now):
            view.is_live = False
        return view

    # ---------- Writes ----------

    def update_price(self, symbol: str, source: str, price: float | None = None, **fields: Any) -> PriceEntry:
        """Merge one update from ``source`` into the entry for ``symbol``.

        Accepts ``is_live`` plus the metadata fields (name, rank, market_cap,
        change, uuid, pair, coin_data). Metadata given as None never clears
        an existing value.
        """
        if source not in SOURCES:
            raise ValueError(f"Unknown price source: {source!r}")
        is_live = fields.pop("is_live", None)
        unknown = set(fields) - _METADATA_FIELDS
        if unknown:
            raise ValueError(f"Unknown price fields: {sorted(unknown)}")

        key = (symbol or "").strip().upper()
        if not key:
            raise ValueError("Symbol is required")

        now = self._clock()
        entry = self._prices.get(key)
        if entry is None:
            entry = PriceEntry(symbol=key)
        binance_fresh = self._binance_fresh(entry, now)
        coinbase_fresh = self._coinbase_fresh(entry, now)

        for name, value in fields.items():
            if value is not None:
                setattr(entry, name, value)

        if source == BINANCE:
            if price is not None:
                entry.binance_price = price
                entry.binance_updated = now
            # A metadata-only update re-asserts a Binance price only while it is fresh.
            if entry.binance_price is not None and (price is not None or binance_fresh):
                entry.price = entry.binance_price
                entry.source = BINANCE
                entry.is_live = True if is_live is None else bool(is_live)

        elif source == COINBASE:
            if price is not None:
                entry.coinbase_price = price
                entry.coinbase_updated = now
            if not binance_fresh and entry.coinbase_price is not None and (price is not None or coinbase_fresh):
                entry.price = entry.coinbase_price
                entry.source = COINBASE
                entry.is_live = bool(is_live)

        else:
            if price is not None:
                entry.rapid_price = price
            if not binance_fresh and not coinbase_fresh and entry.rapid_price is not None:
                entry.price = entry.rapid_price
                entry.source = RAPIDAPI
                entry.is_live = False

        entry.updated_source = source
        entry.last_updated = now
        self._prices[key] = entry
        view = self._view(entry, now)
        self._notify(key, view)
        return view

    def update_prices(self, prices: dict[str, Any], source: str) -> int:
        """Bulk merge. Values are bare prices or dicts of update fields. Returns count applied."""
        count = 0
        for symbol, data in prices.items():
            if isinstance(data, dict):
                fields = dict(data)
                price = fields.pop("price", None)
                fields.pop("source", None)
                self.update_price(symbol, source, price, **fields)
            else:
                self.update_price(symbol, source, data)
            count += 1
        return count

    # ---------- Reads ----------

    def get_price(self, symbol: str) -> PriceEntry | None:
        entry = self._prices.get((symbol or "").strip().upper())
        if entry is None:
            return None
        return self._view(entry, self._clock())

    def get_all_prices(self) -> dict[str, PriceEntry]:
        now = self._clock()
        return {symbol: self._view(entry, now) for symbol, entry in self._prices.items()}

    def get_batch_prices(self, symbols: list[str]) -> dict[str, PriceEntry]:
        """Entries for the symbols that exist, keyed upper-case. Missing symbols are skipped."""
        result: dict[str, PriceEntry] = {}
        for symbol in symbols:
            entry = self.get_price(symbol)
            if entry is not None:
                result[entry.symbol] = entry
        return result

    def symbols(self) -> list[str]:
        return list(self._prices)

    def source_counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for entry in self._prices.values():
            source = entry.source or "unknown"
            counts[source] = counts.get(source, 0) + 1
        return counts

    def get_stats(self) -> dict[str, Any]:
        now = self._clock()
        entries = [self._view(e, now) for e in self._prices.values()]
        return {
            "total": len(entries),
            "binance_prices": sum(1 for e in entries if e.source == BINANCE),
            "coinbase_prices": sum(1 for e in entries if e.source == COINBASE),
            "rapidapi_prices": sum(1 for e in entries if e.rapid_price is not None),
            "live_prices": sum(1 for e in entries if e.is_live),
            "last_rapidapi_fetch": self.last_rapidapi_fetch,
        }

    # ---------- RapidAPI gate ----------

    def should_fetch_rapidapi(self) -> bool:
        return (self._clock() - self.last_rapidapi_fetch) > self.rapidapi_interval

    def mark_rapidapi_fetched(self) -> None:
        self.last_rapidapi_fetch = self._clock()

    def next_rapidapi_refresh(self) -> float:
        return self.last_rapidapi_fetch + self.rapidapi_interval

    # ---------- Subscribers ----------

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a listener for every update. Returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self, symbol: str, entry: PriceEntry) -> None:
        for callback in list(self._subscribers):
            try:
                callback(symbol, entry)
            except Exception:
                logger.exception("Price subscriber failed for %s", symbol)

    # ---------- Eviction ----------

    def cleanup(self, older_than: float | None = None) -> int:
        """Evict entries not updated within ``older_than`` seconds. Returns count evicted."""
        max_age = self.entry_max_age if older_than is None else older_than
        cutoff = self._clock() - max_age
        stale = [symbol for symbol, entry in self._prices.items() if entry.last_updated < cutoff]
        for symbol in stale:
            del self._prices[symbol]
        if stale:
            logger.info("Evicted %d stale price entries", len(stale))
        return len(stale)

    def clear(self) -> None:
        self._prices.clear()
        self.last_rapidapi_fetch = 0.0
