"""Shared test fixtures for converge tests.

Provides a fake monotonic clock whose sleep advances it, so poll and
retry timing can be asserted without waiting in real time.
"""

from datetime import datetime, timezone

import pytest

from converge.config.settings import HarnessSettings
from converge.engine.step import ScenarioContext


# ---------------------------------------------------------------------------
# Fixed timestamps
# ---------------------------------------------------------------------------
SAMPLE_TIMESTAMP = datetime(2026, 2, 9, 14, 30, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Fake time
# ---------------------------------------------------------------------------
class FakeClock:
    """Monotonic clock that only moves when told to.

    ``sleep`` is an async drop-in for asyncio.sleep that advances the
    clock and records every requested duration.
    """

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    @property
    def slept(self) -> float:
        return sum(self.sleeps)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Scenario context
# ---------------------------------------------------------------------------
@pytest.fixture
def settings(tmp_path) -> HarnessSettings:
    """Settings that keep history under tmp_path and never wait on cleanups."""
    return HarnessSettings(
        data_dir=tmp_path / "data",
        profiles_path=tmp_path / "profiles.yaml",
        cleanup_timeout=None,
    )


@pytest.fixture
def context(settings) -> ScenarioContext:
    return ScenarioContext(scenario="test-scenario", settings=settings)
