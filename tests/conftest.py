"""Pytest configuration and fixtures for synclayer tests."""

import pytest

from synclayer.monitoring.telemetry import BufferedTelemetry
from synclayer.storage.memory import MemoryStore


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Async sleep replacement that records delays and returns immediately."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FlakyOperation:
    """Coroutine function failing `failures` times before returning `result`."""

    def __init__(self, failures: int, error_factory, result="ok"):
        self.failures = failures
        self.error_factory = error_factory
        self.result = result
        self.calls = 0

    async def __call__(self, *args, **kwargs):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error_factory()
        return self.result


@pytest.fixture(autouse=True)
def use_test_environment(monkeypatch):
    """Keep tests independent of the developer's SYNCLAYER_* environment."""
    monkeypatch.delenv("SYNCLAYER_STORAGE_DIR", raising=False)


@pytest.fixture
def clock():
    """Fake clock starting at t=1000s."""
    return FakeClock()


@pytest.fixture
def fake_sleep():
    """Sleep that records requested delays without waiting."""
    return RecordingSleep()


@pytest.fixture
def sink():
    """Telemetry sink buffering everything for inspection."""
    return BufferedTelemetry(buffer_size=10_000)


@pytest.fixture
def memory_store():
    """Fresh in-memory persisted store."""
    return MemoryStore()


@pytest.fixture
def flaky():
    """Factory for FlakyOperation instances."""
    return FlakyOperation
