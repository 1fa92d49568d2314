from __future__ import annotations

import pytest

from wadispatch.queue import RetryStrategy
from wadispatch.queue.retry import compute_delay, should_retry


class TestComputeDelay:
    @pytest.mark.parametrize(
        ("attempt", "expected"),
        [(1, 1000), (2, 2000), (3, 4000), (4, 8000)],
    )
    def test_exponential(self, attempt: int, expected: int) -> None:
        assert compute_delay(attempt, RetryStrategy.EXPONENTIAL) == expected

    @pytest.mark.parametrize(
        ("attempt", "expected"),
        [(1, 500), (2, 1000), (3, 1500)],
    )
    def test_linear(self, attempt: int, expected: int) -> None:
        assert compute_delay(attempt, RetryStrategy.LINEAR, 500) == expected

    @pytest.mark.parametrize("attempt", [1, 2, 10])
    def test_fixed(self, attempt: int) -> None:
        assert compute_delay(attempt, RetryStrategy.FIXED, 10) == 10

    def test_accepts_policy_as_string(self) -> None:
        assert compute_delay(3, "linear", 100) == 300

    def test_unknown_policy_falls_back_to_fixed(self) -> None:
        assert compute_delay(5, "fibonacci", 250) == 250

    def test_max_delay_caps_result(self) -> None:
        assert compute_delay(10, RetryStrategy.EXPONENTIAL, 1000, max_delay_ms=30_000) == 30_000

    def test_attempt_below_one_is_treated_as_first(self) -> None:
        assert compute_delay(0, RetryStrategy.EXPONENTIAL, 1000) == 1000

    @pytest.mark.parametrize("base", [1, 10, 1000])
    def test_exponential_is_monotonic(self, base: int) -> None:
        delays = [compute_delay(n, RetryStrategy.EXPONENTIAL, base) for n in range(1, 25)]
        assert all(later >= earlier for earlier, later in zip(delays, delays[1:], strict=False))


class TestShouldRetry:
    @pytest.mark.parametrize(
        ("attempts", "max_retries", "expected"),
        [
            (1, 3, True),
            (2, 3, True),
            (3, 3, False),
            (1, 1, False),
            (1, 0, False),
        ],
    )
    def test_retries_while_below_ceiling(self, attempts: int, max_retries: int, expected: bool) -> None:
        assert should_retry(attempts, max_retries) is expected
