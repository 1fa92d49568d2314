"""Shared fixtures for unit tests.

Provides:
- clock: Manually advanced UTC clock for deterministic scheduling
- monotonic: Manually advanced monotonic clock for token buckets
- scheduler_config: In-memory scheduler config (no persistence)
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from wadispatch.queue import SchedulerConfig


class FakeClock:
    """Callable clock returning a fixed instant until advanced."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, *, ms: float = 0, seconds: float = 0) -> None:
        self.now += timedelta(milliseconds=ms, seconds=seconds)


class FakeMonotonic:
    def __init__(self) -> None:
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 1, 15, 12, 0, tzinfo=UTC))


@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def scheduler_config() -> SchedulerConfig:
    return SchedulerConfig(persistence_enabled=False, processing_interval_ms=5)
