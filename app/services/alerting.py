"""Operator alerts for the price feeds, posted to a Discord/Slack webhook.

Without a webhook URL, alerts are written to the log at the matching level.
Identical alerts inside ``COOLDOWN_SECONDS`` are suppressed so a flapping
upstream produces one message, not one per reconnect.
"""

import logging
import time
from datetime import datetime, timezone
from enum import Enum

import httpx

from app.config import settings

logger = logging.getLogger(__name__)

COOLDOWN_SECONDS = 300


class AlertLevel(str, Enum):
    """Alert severity levels."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


_LEVEL_EMOJI = {
    AlertLevel.INFO: "ℹ️",
    AlertLevel.WARNING: "⚠️",
    AlertLevel.ERROR: "❌",
    AlertLevel.CRITICAL: "\U0001f6a8",
}

_LEVEL_LOG = {
    AlertLevel.INFO: logging.INFO,
    AlertLevel.WARNING: logging.WARNING,
    AlertLevel.ERROR: logging.ERROR,
    AlertLevel.CRITICAL: logging.CRITICAL,
}


def format_alert(title: str, message: str, level: AlertLevel) -> str:
    """Markdown body understood by both Discord and Slack."""
    return f"**{_LEVEL_EMOJI.get(level, '')} {title}**\n{message}"


class AlertService:
    """Feed outage and refresh failure notifications."""

    def __init__(self, webhook_url: str | None = None, cooldown: float = COOLDOWN_SECONDS) -> None:
        self._webhook_url = webhook_url if webhook_url is not None else settings.alert_webhook_url
        self._cooldown = cooldown
        self._last_sent: dict[str, float] = {}

    def _suppressed(self, title: str) -> bool:
        now = time.monotonic()
        last = self._last_sent.get(title)
        if last is not None and now - last < self._cooldown:
            return True
        self._last_sent[title] = now
        return False

    async def send(self, title: str, message: str, level: AlertLevel = AlertLevel.INFO) -> bool:
        """Deliver one alert. Returns True only when the webhook accepted it."""
        if self._suppressed(title):
            logger.debug("Alert suppressed (cooldown): %s", title)
            return False

        if not self._webhook_url:
            logger.log(_LEVEL_LOG.get(level, logging.INFO), "ALERT [%s]: %s: %s", level.value, title, message)
            return False

        try:
            async with httpx.AsyncClient(timeout=10.0) as client:
                resp = await client.post(self._webhook_url, json={"content": format_alert(title, message, level)})
        except httpx.HTTPError as e:
            logger.error("Failed to send webhook alert %r: %s", title, e)
            return False

        if resp.status_code not in (200, 204):
            logger.warning("Webhook returned %d: %s", resp.status_code, resp.text[:200])
            return False
        return True

    async def feed_down(self, feed: str, attempts: int, error: str) -> bool:
        """An upstream WebSocket keeps failing to reconnect."""
        return await self.send(
            title=f"Price Feed Down: {feed}",
            message=f"{attempts} consecutive reconnect attempts failed.\nLast error: {error}",
            level=AlertLevel.ERROR,
        )

    async def feed_recovered(self, feed: str, downtime_seconds: float) -> bool:
        return await self.send(
            title=f"Price Feed Recovered: {feed}",
            message=f"Reconnected after {downtime_seconds:.0f}s",
            level=AlertLevel.INFO,
        )

    async def refresh_failed(self, source: str, error: str) -> bool:
        """A scheduled snapshot refresh raised."""
        stamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
        return await self.send(
            title=f"Price Refresh Failed: {source}",
            message=f"{stamp}\n{error}",
            level=AlertLevel.WARNING,
        )
