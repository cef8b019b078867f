"""Binance all-market ticker bridge.

Subscribes once to ``!ticker@arr`` (every symbol, ~1s cadence) and turns each
``*USDT`` ticker into a live Binance price in the global store. Raw frames are
also relayed to browsers connected on ``/ws/binance`` so the frontend needs
no direct upstream connection.
"""

import asyncio
import json
import logging
import math
import time
from typing import Any, Awaitable, Callable

from app.config import settings
from app.services.prices.store import BINANCE, GlobalPriceStore
from app.services.prices.streams import UpstreamStream
from app.services.prices.symbols import base_from_pair

logger = logging.getLogger(__name__)

QUOTE = "USDT"
SAMPLE_LOG_INTERVAL = 5.0
SEND_TIMEOUT_SECONDS = 2.0

Sender = Callable[[str], Awaitable[None]]


class BinanceTickerStream(UpstreamStream):
    """Live Binance ticker feed into the store, fanned out to downstream clients."""

    name = "binance"

    def __init__(
        self,
        store: GlobalPriceStore,
        url: str | None = None,
        reconnect_delay: float | None = None,
        send_timeout: float = SEND_TIMEOUT_SECONDS,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            url or settings.binance_ws_url,
            reconnect_delay if reconnect_delay is not None else settings.binance_reconnect_delay,
            **kwargs,
        )
        self._store = store
        self.send_timeout = send_timeout
        self._clients: set[Sender] = set()
        self._last_sample_log = 0.0

    @property
    def client_count(self) -> int:
        return len(self._clients)

    def add_client(self, send: Sender) -> None:
        self._clients.add(send)

    def remove_client(self, send: Sender) -> None:
        self._clients.discard(send)

    def apply_tickers(self, message: str) -> int:
        """Merge a ticker-array frame into the store. Returns the number of prices applied."""
        try:
            tickers = json.loads(message)
        except ValueError:
            logger.debug("Ignoring non-JSON Binance frame")
            return 0
        if not isinstance(tickers, list):
            return 0

        applied = 0
        for ticker in tickers:
            if not isinstance(ticker, dict):
                continue
            pair = ticker.get("s")
            base = base_from_pair(pair, QUOTE) if isinstance(pair, str) else None
            if not base or ticker.get("c") is None:
                continue
            try:
                price = float(ticker["c"])
            except (TypeError, ValueError):
                continue
            if math.isnan(price):
                continue
            self._store.update_price(base, BINANCE, price, is_live=True, pair=pair)
            applied += 1

        now = time.monotonic()
        if now - self._last_sample_log > SAMPLE_LOG_INTERVAL:
            self._last_sample_log = now
            logger.info("Binance ticker array: %d entries, %d USDT prices applied", len(tickers), applied)
            if tickers:
                logger.debug("Binance ticker sample: %s", tickers[0])
        return applied

    async def broadcast(self, message: str) -> None:
        """Relay a raw frame to every client at once; drop clients whose send fails or stalls."""
        clients = list(self._clients)
        if not clients:
            return
        results = await asyncio.gather(
            *(asyncio.wait_for(send(message), self.send_timeout) for send in clients),
            return_exceptions=True,
        )
        for send, result in zip(clients, results):
            if isinstance(result, asyncio.TimeoutError):
                logger.info("Dropping /ws/binance client: no send within %.1fs", self.send_timeout)
                self._clients.discard(send)
            elif isinstance(result, Exception):
                logger.debug("Dropping /ws/binance client: %s", result)
                self._clients.discard(send)

    async def _on_message(self, message: str) -> None:
        self.apply_tickers(message)
        await self.broadcast(message)
