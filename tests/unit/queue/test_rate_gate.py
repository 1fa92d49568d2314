"""Unit tests for the token bucket rate gate."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from wadispatch.queue import AlwaysAdmitRateGate, RateGate, RateLimitConfig, TokenBucketRateGate

if TYPE_CHECKING:
    from tests.conftest import FakeMonotonic


@pytest.fixture
def gate(monotonic: FakeMonotonic) -> TokenBucketRateGate:
    return TokenBucketRateGate(clock=monotonic)


@pytest.fixture
def limit() -> RateLimitConfig:
    return RateLimitConfig(capacity=2, refill_rate=1.0)


class TestTokenBucketRateGate:
    """Tests for TokenBucketRateGate."""

    def test_satisfies_protocol(self, gate: TokenBucketRateGate) -> None:
        assert isinstance(gate, RateGate)

    def test_no_config_always_admits(self, gate: TokenBucketRateGate) -> None:
        assert all(gate.admit("573001234567", None) for _ in range(100))
        assert len(gate) == 0

    def test_admits_up_to_capacity_then_denies(self, gate: TokenBucketRateGate, limit: RateLimitConfig) -> None:
        assert gate.admit("a", limit) is True
        assert gate.admit("a", limit) is True
        assert gate.admit("a", limit) is False

    def test_buckets_are_per_identifier(self, gate: TokenBucketRateGate, limit: RateLimitConfig) -> None:
        gate.admit("a", limit)
        gate.admit("a", limit)

        assert gate.admit("b", limit) is True
        assert len(gate) == 2

    def test_refills_over_time(
        self, gate: TokenBucketRateGate, limit: RateLimitConfig, monotonic: FakeMonotonic
    ) -> None:
        gate.admit("a", limit)
        gate.admit("a", limit)
        assert gate.admit("a", limit) is False

        monotonic.advance(1.0)

        assert gate.admit("a", limit) is True
        assert gate.admit("a", limit) is False

    def test_refill_never_exceeds_capacity(
        self, gate: TokenBucketRateGate, limit: RateLimitConfig, monotonic: FakeMonotonic
    ) -> None:
        gate.admit("a", limit)
        monotonic.advance(3600)

        admitted = sum(gate.admit("a", limit) for _ in range(10))

        assert admitted == 2

    def test_retry_after_reports_time_to_next_token(
        self, gate: TokenBucketRateGate, monotonic: FakeMonotonic
    ) -> None:
        limit = RateLimitConfig(capacity=1, refill_rate=4.0)
        gate.admit("a", limit)

        assert gate.retry_after("a", limit) == pytest.approx(0.25)

        monotonic.advance(0.1)
        assert gate.retry_after("a", limit) == pytest.approx(0.15)

    def test_retry_after_is_zero_with_tokens_left(self, gate: TokenBucketRateGate, limit: RateLimitConfig) -> None:
        assert gate.retry_after("fresh", limit) == 0.0
        assert gate.retry_after("fresh", None) == 0.0

    def test_get_info(self, gate: TokenBucketRateGate, limit: RateLimitConfig) -> None:
        assert gate.get_info("a") is None

        gate.admit("a", limit)
        info = gate.get_info("a")

        assert info is not None
        assert info.identifier == "a"
        assert info.tokens == pytest.approx(1.0)
        assert info.capacity == 2
        assert info.refill_rate == 1.0

    def test_clear_resets_all_buckets(self, gate: TokenBucketRateGate, limit: RateLimitConfig) -> None:
        gate.admit("a", limit)
        gate.admit("a", limit)

        gate.clear()

        assert len(gate) == 0
        assert gate.get_info("a") is None
        assert gate.admit("a", limit) is True


    def test_idle_buckets_are_swept_after_refill(
        self, gate: TokenBucketRateGate, limit: RateLimitConfig, monotonic: FakeMonotonic
    ) -> None:
        for recipient in ("573001111111", "573002222222", "573003333333"):
            gate.admit(recipient, limit)
        assert len(gate) == 3

        monotonic.advance(60)
        gate.admit("573004444444", limit)

        assert len(gate) == 1
        assert gate.get_info("573001111111") is None

    def test_sweep_keeps_buckets_still_refilling(
        self, monotonic: FakeMonotonic, limit: RateLimitConfig
    ) -> None:
        gate = TokenBucketRateGate(clock=monotonic, sweep_interval=0.5)
        gate.admit("busy", limit)
        gate.admit("busy", limit)
        gate.admit("idle", limit)

        monotonic.advance(1.0)

        assert gate.prune() == 1
        assert gate.get_info("idle") is None
        info = gate.get_info("busy")
        assert info is not None
        assert info.tokens == pytest.approx(0.0)
        assert gate.admit("busy", limit) is True
        assert gate.admit("busy", limit) is False


class TestAlwaysAdmitRateGate:
    def test_admits_everything(self, limit: RateLimitConfig) -> None:
        gate = AlwaysAdmitRateGate()

        assert all(gate.admit("a", limit) for _ in range(50))
        assert gate.retry_after("a", limit) == 0.0
        assert gate.get_info("a") is None
        assert len(gate) == 0
        assert isinstance(gate, RateGate)
