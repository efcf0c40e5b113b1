import pytest

from adgovernor.core.fetch.throttling import RateLimiter
from adgovernor.core.config.models import RateLimitTier


class FakeClock:
    """Manually advanced monotonic clock, tracked in whole milliseconds."""

    def __init__(self, start_ms: int = 1_000_000):
        self.now_ms = start_ms

    def __call__(self) -> float:
        return self.now_ms / 1000.0

    def advance_ms(self, ms: int) -> None:
        self.now_ms += ms


class ClockSleep:
    """Async sleep that advances a FakeClock instead of waiting."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        self.clock.advance_ms(round(seconds * 1000))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def clock_sleep(clock):
    return ClockSleep(clock)


@pytest.fixture
def dev_limiter(clock, clock_sleep):
    """Development-tier limiter on a fake clock."""
    return RateLimiter(RateLimitTier.DEVELOPMENT, clock=clock, sleep=clock_sleep)


@pytest.fixture(autouse=True)
def isolate_env(monkeypatch):
    """Keep the developer's real token and tier out of the tests."""
    monkeypatch.delenv("META_ACCESS_TOKEN", raising=False)
    monkeypatch.delenv("META_API_TIER", raising=False)
