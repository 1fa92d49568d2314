from __future__ import annotations

from .enums import RetryStrategy

DEFAULT_BASE_DELAY_MS = 1000


def compute_delay(
    attempt: int,
    policy: RetryStrategy | str,
    base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
    max_delay_ms: int | None = None,
) -> int:
    """Backoff delay in milliseconds before the next attempt.

    Parameters
    ----------
    attempt : int
        The message's ``attempts`` after the failed try (first retry uses 1).
    policy : RetryStrategy | str
        ``exponential`` -> ``base * 2**(attempt-1)``, ``linear`` ->
        ``base * attempt``, ``fixed`` -> ``base``. Unknown values fall back to fixed.
    base_delay_ms : int
        Base delay.
    max_delay_ms : int | None
        Optional cap on the returned delay.
    """
    attempt = max(attempt, 1)
    try:
        strategy = RetryStrategy(policy)
    except ValueError:
        strategy = RetryStrategy.FIXED

    match strategy:
        case RetryStrategy.EXPONENTIAL:
            delay = base_delay_ms * 2 ** (attempt - 1)
        case RetryStrategy.LINEAR:
            delay = base_delay_ms * attempt
        case _:
            delay = base_delay_ms

    if max_delay_ms is not None:
        delay = min(delay, max_delay_ms)
    return delay


def should_retry(attempts: int, max_retries: int) -> bool:
    """A failed message is retried while ``attempts < max_retries``."""
    return attempts < max_retries
