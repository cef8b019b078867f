"""Background refresh loops for the price store, run inside the API process.

The store is process-local memory, so its maintenance runs as asyncio tasks
in the FastAPI lifespan:

- RapidAPI ranked snapshot: at startup, then every ``rapidapi_interval_seconds``
- Binance REST snapshot: every ``rest_snapshot_interval_seconds`` while the
  live Binance stream is disconnected
- Eviction of entries older than ``entry_max_age_seconds``, hourly
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable

from app.config import settings
from app.services.alerting import AlertService
from app.services.prices.binance_stream import BinanceTickerStream
from app.services.prices.errors import UpstreamError
from app.services.prices.exchange_rest import BinanceRestFeed
from app.services.prices.rapidapi import RapidApiClient, refresh_rapidapi_prices
from app.services.prices.store import GlobalPriceStore

logger = logging.getLogger(__name__)


class PriceRefresher:
    """Owns the periodic store maintenance tasks."""

    def __init__(
        self,
        store: GlobalPriceStore,
        rapidapi: RapidApiClient,
        binance_rest: BinanceRestFeed,
        binance_stream: BinanceTickerStream,
        alerts: AlertService | None = None,
        rapidapi_interval: float | None = None,
        snapshot_interval: float | None = None,
        cleanup_interval: float | None = None,
    ) -> None:
        self._store = store
        self._rapidapi = rapidapi
        self._binance_rest = binance_rest
        self._binance_stream = binance_stream
        self._alerts = alerts or AlertService()
        self._tasks: list[asyncio.Task] = []
        self.rapidapi_interval = rapidapi_interval if rapidapi_interval is not None else settings.rapidapi_interval_seconds
        self.snapshot_interval = snapshot_interval if snapshot_interval is not None else settings.rest_snapshot_interval_seconds
        self.cleanup_interval = cleanup_interval if cleanup_interval is not None else settings.cleanup_interval_seconds

    def start(self) -> None:
        if self._tasks:
            return
        loop = asyncio.get_running_loop()
        if self._rapidapi.configured:
            self._tasks.append(loop.create_task(
                self._every("rapidapi", self.rapidapi_interval, self.refresh_rapidapi, run_first=True),
                name="rapidapi-refresh",
            ))
        else:
            logger.warning("RAPIDAPI_KEY not configured, RapidAPI backfill disabled")
        self._tasks.append(loop.create_task(
            self._every("binance-snapshot", self.snapshot_interval, self.snapshot_binance),
            name="binance-rest-snapshot",
        ))
        self._tasks.append(loop.create_task(
            self._every("cleanup", self.cleanup_interval, self.cleanup),
            name="price-cleanup",
        ))

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def refresh_rapidapi(self) -> dict | None:
        """One gated RapidAPI refresh. Failures are logged and alerted, never raised."""
        try:
            result = await refresh_rapidapi_prices(self._store, self._rapidapi)
        except UpstreamError as e:
            logger.error("Scheduled RapidAPI refresh failed: %s", e)
            await self._alerts.refresh_failed("rapidapi", str(e))
            return None
        except Exception as e:
            logger.exception("Scheduled RapidAPI refresh crashed")
            await self._alerts.refresh_failed("rapidapi", repr(e))
            return None
        if not result["success"]:
            logger.debug("RapidAPI refresh skipped: %s", result["message"])
        return result

    async def snapshot_binance(self) -> int:
        """Backfill Binance prices over REST if the live stream is down. Returns prices written."""
        if self._binance_stream.connected:
            return 0
        try:
            prices = await self._binance_rest.all_prices()
        except UpstreamError as e:
            logger.warning("Binance REST snapshot failed: %s", e)
            await self._alerts.refresh_failed("binance", str(e))
            return 0
        return len(prices)

    async def cleanup(self) -> int:
        return self._store.cleanup()

    async def _every(
        self,
        name: str,
        interval: float,
        job: Callable[[], Awaitable[Any]],
        run_first: bool = False,
    ) -> None:
        """Run ``job`` every ``interval`` seconds. A failing run is logged and alerted; the loop goes on."""
        if not run_first:
            await asyncio.sleep(interval)
        while True:
            try:
                await job()
            except Exception as e:
                logger.exception("Periodic job %s failed", name)
                await self._alerts.refresh_failed(name, repr(e))
            await asyncio.sleep(interval)
