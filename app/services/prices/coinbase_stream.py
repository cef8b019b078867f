"""Coinbase ticker bridge: one connection, growing set of ``<SYM>-USD`` products."""

import json
import logging
from typing import Any

import websockets

from app.config import settings
from app.services.prices.store import COINBASE, GlobalPriceStore
from app.services.prices.streams import UpstreamStream
from app.services.prices.symbols import base_from_pair, normalize_symbol

logger = logging.getLogger(__name__)

QUOTE = "USD"


def subscribe_message(symbols: list[str]) -> dict[str, Any]:
    return {
        "type": "subscribe",
        "product_ids": [f"{s}-{QUOTE}" for s in symbols],
        "channels": ["ticker"],
    }


class CoinbaseTickerStream(UpstreamStream):
    """Coinbase ``ticker`` channel into the store.

    The wanted symbol set survives reconnects: every new connection
    re-subscribes all of it.
    """

    name = "coinbase"

    def __init__(
        self,
        store: GlobalPriceStore,
        url: str | None = None,
        reconnect_delay: float | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            url or settings.coinbase_ws_url,
            reconnect_delay if reconnect_delay is not None else settings.coinbase_reconnect_delay,
            **kwargs,
        )
        self._store = store
        self._wanted: set[str] = set()

    @property
    def subscribed(self) -> list[str]:
        return sorted(self._wanted)

    async def subscribe(self, symbols: list[str]) -> list[str]:
        """Add symbols to the subscription. Starts the connection if needed. Returns normalised symbols."""
        normalized = [s for s in dict.fromkeys(normalize_symbol(s) for s in symbols) if s]
        new = [s for s in normalized if s not in self._wanted]
        self._wanted.update(new)

        if self.connected and self._ws is not None:
            if new:
                try:
                    await self._send_subscribe(new)
                except websockets.exceptions.ConnectionClosed as e:
                    # Already in the wanted set, so the reconnect subscribes them.
                    logger.info("Coinbase closed during subscribe, deferring to reconnect: %s", e)
        else:
            self.ensure_started()
        return normalized

    async def _send_subscribe(self, symbols: list[str]) -> None:
        await self._ws.send(json.dumps(subscribe_message(symbols)))
        logger.info("Coinbase subscribed to %d products", len(symbols))

    async def _on_open(self, ws: Any) -> None:
        if self._wanted:
            await self._send_subscribe(sorted(self._wanted))

    def apply_message(self, message: str) -> bool:
        """Merge one ticker message into the store. Returns True if a price was applied."""
        try:
            data = json.loads(message)
        except ValueError:
            logger.debug("Ignoring non-JSON Coinbase frame")
            return False
        if not isinstance(data, dict):
            return False

        msg_type = data.get("type")
        if msg_type == "error":
            logger.warning("Coinbase feed error: %s", data.get("message") or data.get("reason"))
            return False
        if msg_type != "ticker" or not data.get("product_id"):
            return False

        base = base_from_pair(data["product_id"], QUOTE)
        try:
            price = float(data.get("price"))
        except (TypeError, ValueError):
            return False
        if not base:
            return False
        self._store.update_price(base, COINBASE, price, pair=data["product_id"])
        return True

    async def _on_message(self, message: str) -> None:
        self.apply_message(message)
