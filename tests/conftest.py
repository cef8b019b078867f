"""Shared test fixtures."""

import pytest

from app.services.prices.store import GlobalPriceStore

START_TS = 1_760_000_000.0


class FakeClock:
    """Manually advanced epoch-seconds clock."""

    def __init__(self, start: float = START_TS) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the limiter and response cache."""

    def __init__(self) -> None:
        self.data: dict[str, str | int] = {}
        self.expiry: dict[str, int | None] = {}
        self.fail_with: Exception | None = None
        self.closed = 0

    def _check(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    async def incr(self, key: str) -> int:
        self._check()
        self.data[key] = int(self.data.get(key, 0)) + 1
        return self.data[key]

    async def expire(self, key: str, seconds: int) -> bool:
        self._check()
        self.expiry[key] = seconds
        return True

    async def get(self, key: str):
        self._check()
        return self.data.get(key)

    async def set(self, key: str, value, ex: int | None = None) -> bool:
        self._check()
        self.data[key] = value
        self.expiry[key] = ex
        return True

    async def aclose(self) -> None:
        self.closed += 1


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> GlobalPriceStore:
    """Fresh store on a fake clock: 15 min RapidAPI gate, 60s freshness, 1h eviction."""
    return GlobalPriceStore(
        rapidapi_interval=900,
        live_stale_seconds=60,
        entry_max_age=3600,
        clock=clock,
    )


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()
