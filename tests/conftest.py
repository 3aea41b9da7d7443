"""Root pytest fixtures for resilient-client tests."""

from __future__ import annotations

import pytest

from resilient_client.resilience import BreakerRegistry, ResilientExecutor


class FakeClock:
    """Manually advanced wall clock (epoch seconds)."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SleepRecorder:
    """Stands in for asyncio.sleep and records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def registry(clock: FakeClock) -> BreakerRegistry:
    """Fresh registry driven by the fake clock."""
    return BreakerRegistry(clock=clock)


@pytest.fixture
def executor(registry: BreakerRegistry, sleeps: SleepRecorder) -> ResilientExecutor:
    """Executor that never waits on real time."""
    return ResilientExecutor(registry=registry, sleep=sleeps)
