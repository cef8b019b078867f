"""Reconnecting upstream WebSocket client shared by the exchange bridges.

One long-lived asyncio task per upstream. When the socket closes or errors,
the task waits a fixed delay and reconnects until ``stop()`` is called.
"""

import asyncio
import logging
import time
from typing import Any, Callable

import websockets

from app.services.alerting import AlertService

logger = logging.getLogger(__name__)

PING_INTERVAL_SECS = 20
PING_TIMEOUT_SECS = 10
# Alert once after this many consecutive failed connects
ALERT_AFTER_FAILURES = 5


class UpstreamStream:
    """Base class: owns the connect/reconnect loop. Subclasses handle messages."""

    name = "upstream"

    def __init__(
        self,
        url: str,
        reconnect_delay: float,
        connect: Callable[..., Any] | None = None,
        alerts: AlertService | None = None,
    ) -> None:
        self.url = url
        self.reconnect_delay = reconnect_delay
        self._connect = connect or websockets.connect
        self._alerts = alerts
        self._task: asyncio.Task | None = None
        self._ws: Any = None
        self._stopping = False
        self.connected = False
        self.messages_received = 0
        self.last_message_at: float | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def ensure_started(self) -> asyncio.Task:
        """Start the connection loop if it isn't already running. Needs a running event loop."""
        if not self.running:
            self._stopping = False
            self._task = asyncio.get_running_loop().create_task(
                self._run(), name=f"{self.name}-stream"
            )
        return self._task

    async def stop(self) -> None:
        self._stopping = True
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.connected = False
        self._ws = None

    async def _on_open(self, ws: Any) -> None:
        """Hook run after each successful connect (e.g. to send subscriptions)."""

    async def _on_message(self, message: str) -> None:
        raise NotImplementedError

    async def _run(self) -> None:
        failures = 0
        down_since: float | None = None

        while not self._stopping:
            last_error = "connection closed"
            try:
                async with self._connect(
                    self.url,
                    ping_interval=PING_INTERVAL_SECS,
                    ping_timeout=PING_TIMEOUT_SECS,
                    close_timeout=5,
                ) as ws:
                    self._ws = ws
                    self.connected = True
                    logger.info("Connected to %s stream %s", self.name, self.url)
                    if down_since is not None and self._alerts and failures >= ALERT_AFTER_FAILURES:
                        await self._alerts.feed_recovered(self.name, time.time() - down_since)
                    failures = 0
                    down_since = None

                    await self._on_open(ws)
                    async for raw in ws:
                        message = raw.decode() if isinstance(raw, (bytes, bytearray)) else str(raw)
                        self.messages_received += 1
                        self.last_message_at = time.time()
                        await self._on_message(message)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                last_error = repr(e)
                logger.warning("%s stream error: %s", self.name, last_error)
            finally:
                self._ws = None
                self.connected = False

            if self._stopping:
                break

            failures += 1
            if down_since is None:
                down_since = time.time()
            if failures == ALERT_AFTER_FAILURES and self._alerts:
                await self._alerts.feed_down(self.name, failures, last_error)

            logger.info("%s stream down (%s). Reconnecting in %.1fs", self.name, last_error, self.reconnect_delay)
            await asyncio.sleep(self.reconnect_delay)
