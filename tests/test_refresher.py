"""Tests for the background refresh jobs and the alert sender."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from app.services.alerting import AlertLevel, AlertService
from app.services.prices.errors import UpstreamError
from app.services.prices.refresher import PriceRefresher
from app.services.prices.store import RAPIDAPI


def make_refresher(store, connected=False, configured=True):
    rapidapi = MagicMock(configured=configured)
    binance_rest = MagicMock()
    binance_rest.all_prices = AsyncMock(return_value={"BTC": {"price": 1.0}, "ETH": {"price": 2.0}})
    binance_stream = MagicMock(connected=connected)
    alerts = AsyncMock()
    refresher = PriceRefresher(store, rapidapi, binance_rest, binance_stream, alerts=alerts)
    return refresher, binance_rest, alerts


class TestRapidApiJob:
    @pytest.mark.asyncio
    async def test_failure_is_alerted_not_raised(self, store):
        refresher, _, alerts = make_refresher(store)
        failing = AsyncMock(side_effect=UpstreamError(RAPIDAPI, "HTTP 500 from /coins", 500))

        with patch("app.services.prices.refresher.refresh_rapidapi_prices", failing):
            assert await refresher.refresh_rapidapi() is None

        alerts.refresh_failed.assert_awaited_once()
        assert alerts.refresh_failed.await_args.args[0] == "rapidapi"

    @pytest.mark.asyncio
    async def test_result_passed_through(self, store):
        refresher, _, alerts = make_refresher(store)
        result = {"success": False, "message": "Too soon to refresh. Wait 15 minutes.", "next_refresh": 1.0}

        with patch("app.services.prices.refresher.refresh_rapidapi_prices", AsyncMock(return_value=result)):
            assert await refresher.refresh_rapidapi() == result

        alerts.refresh_failed.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unexpected_error_is_alerted_not_raised(self, store):
        refresher, _, alerts = make_refresher(store)
        crashing = AsyncMock(side_effect=AttributeError("'str' object has no attribute 'get'"))

        with patch("app.services.prices.refresher.refresh_rapidapi_prices", crashing):
            assert await refresher.refresh_rapidapi() is None

        alerts.refresh_failed.assert_awaited_once()
        assert alerts.refresh_failed.await_args.args[0] == "rapidapi"


class TestBinanceSnapshotJob:
    @pytest.mark.asyncio
    async def test_skipped_while_stream_connected(self, store):
        refresher, binance_rest, _ = make_refresher(store, connected=True)
        assert await refresher.snapshot_binance() == 0
        binance_rest.all_prices.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_backfills_while_stream_down(self, store):
        refresher, binance_rest, _ = make_refresher(store, connected=False)
        assert await refresher.snapshot_binance() == 2
        binance_rest.all_prices.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_snapshot_failure_returns_zero_and_alerts(self, store):
        refresher, binance_rest, alerts = make_refresher(store)
        binance_rest.all_prices.side_effect = UpstreamError("binance", "fetch_tickers failed")
        assert await refresher.snapshot_binance() == 0
        alerts.refresh_failed.assert_awaited_once()
        assert alerts.refresh_failed.await_args.args[0] == "binance"


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, store):
        refresher, _, _ = make_refresher(store, configured=False)
        refresher.start()
        assert len(refresher._tasks) == 2  # no RapidAPI loop without a key
        await refresher.stop()
        assert refresher._tasks == []

    @pytest.mark.asyncio
    async def test_rapidapi_loop_keeps_running_after_crash(self, store):
        alerts = AsyncMock()
        refresher = PriceRefresher(
            store, MagicMock(configured=True), MagicMock(), MagicMock(connected=True), alerts=alerts,
            rapidapi_interval=0.01, snapshot_interval=60, cleanup_interval=60,
        )
        crashing = AsyncMock(side_effect=AttributeError("boom"))

        with patch("app.services.prices.refresher.refresh_rapidapi_prices", crashing):
            refresher.start()
            await asyncio.sleep(0.1)
            assert crashing.await_count >= 2
            assert not refresher._tasks[0].done()
            await refresher.stop()

        assert alerts.refresh_failed.await_count >= 2

    @pytest.mark.asyncio
    async def test_failing_job_does_not_end_loop(self, store):
        refresher, _, alerts = make_refresher(store)
        calls = 0

        async def job():
            nonlocal calls
            calls += 1
            raise KeyError("symbol")

        task = asyncio.create_task(refresher._every("cleanup", 0.01, job, run_first=True))
        await asyncio.sleep(0.1)
        assert calls >= 2
        assert not task.done()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert alerts.refresh_failed.await_args.args[0] == "cleanup"


class TestAlertService:
    @pytest.mark.asyncio
    async def test_logs_when_no_webhook(self):
        alerts = AlertService(webhook_url="")
        assert await alerts.feed_down("binance", 5, "refused") is False

    @pytest.mark.asyncio
    async def test_posts_to_webhook(self):
        alerts = AlertService(webhook_url="https://hooks.test/alert")
        response = MagicMock(status_code=204)
        client = AsyncMock()
        client.post.return_value = response
        client.__aenter__.return_value = client

        with patch("app.services.alerting.httpx.AsyncClient", return_value=client):
            sent = await alerts.send("Price Feed Down: binance", "5 attempts", AlertLevel.ERROR)

        assert sent is True
        url = client.post.await_args.args[0]
        body = client.post.await_args.kwargs["json"]
        assert url == "https://hooks.test/alert"
        assert "Price Feed Down: binance" in body["content"]

    @pytest.mark.asyncio
    async def test_webhook_error_returns_false(self):
        alerts = AlertService(webhook_url="https://hooks.test/alert")
        client = AsyncMock()
        client.post.side_effect = httpx.ConnectError("refused")
        client.__aenter__.return_value = client

        with patch("app.services.alerting.httpx.AsyncClient", return_value=client):
            assert await alerts.refresh_failed("rapidapi", "HTTP 500") is False

    @pytest.mark.asyncio
    async def test_repeated_alert_suppressed_during_cooldown(self):
        alerts = AlertService(webhook_url="https://hooks.test/alert", cooldown=300)
        client = AsyncMock()
        client.post.return_value = MagicMock(status_code=200)
        client.__aenter__.return_value = client

        with patch("app.services.alerting.httpx.AsyncClient", return_value=client):
            assert await alerts.feed_down("coinbase", 5, "refused") is True
            assert await alerts.feed_down("coinbase", 5, "refused") is False
            assert await alerts.feed_down("binance", 5, "refused") is True

        assert client.post.await_count == 2
