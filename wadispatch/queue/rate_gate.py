from __future__ import annotations

import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

if TYPE_CHECKING:
    from .config import RateLimitConfig


class RateLimitInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    identifier: str
    tokens: float
    capacity: int
    refill_rate: float


@runtime_checkable
class RateGate(Protocol):
    """Admission decision for one identifier under a token-bucket config."""

    def admit(self, identifier: str, config: RateLimitConfig | None) -> bool: ...

    def retry_after(self, identifier: str, config: RateLimitConfig | None) -> float: ...

    def get_info(self, identifier: str) -> RateLimitInfo | None: ...

    def clear(self) -> None: ...

    def __len__(self) -> int: ...


@dataclass(slots=True)
class _Bucket:
    tokens: float
    capacity: int
    refill_rate: float
    updated_at: float


class TokenBucketRateGate:
    """One token bucket per identifier.

    A bucket starts full and refills continuously at ``refill_rate`` tokens
    per second up to ``capacity``. Each admitted call consumes one token.

    Buckets that have refilled to capacity behave exactly like new ones, so
    they are swept every ``sweep_interval`` seconds. Identifiers such as
    recipient numbers therefore do not accumulate forever.

    Parameters
    ----------
    clock : Callable[[], float]
        Monotonic seconds. Injected by tests.
    sweep_interval : float
        Minimum seconds between sweeps of idle buckets.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic, sweep_interval: float = 60.0) -> None:
        self._clock = clock
        self._sweep_interval = sweep_interval
        self._buckets: dict[str, _Bucket] = {}
        self._last_sweep = clock()

    def __len__(self) -> int:
        return len(self._buckets)

    def prune(self) -> int:
        """Drop buckets that are full again. Returns how many were removed."""
        now = self._clock()
        idle = [
            identifier
            for identifier, bucket in self._buckets.items()
            if bucket.tokens + max(now - bucket.updated_at, 0.0) * bucket.refill_rate >= bucket.capacity
        ]
        for identifier in idle:
            del self._buckets[identifier]
        self._last_sweep = now
        return len(idle)

    def _refill(self, identifier: str, config: RateLimitConfig) -> _Bucket:
        now = self._clock()
        if now - self._last_sweep >= self._sweep_interval:
            self.prune()
        bucket = self._buckets.get(identifier)
        if bucket is None:
            bucket = _Bucket(
                tokens=float(config.capacity),
                capacity=config.capacity,
                refill_rate=config.refill_rate,
                updated_at=now,
            )
            self._buckets[identifier] = bucket
            return bucket

        # Config may change between calls; the latest one wins.
        bucket.capacity = config.capacity
        bucket.refill_rate = config.refill_rate
        elapsed = max(now - bucket.updated_at, 0.0)
        bucket.tokens = min(float(bucket.capacity), bucket.tokens + elapsed * bucket.refill_rate)
        bucket.updated_at = now
        return bucket

    def admit(self, identifier: str, config: RateLimitConfig | None) -> bool:
        if config is None:
            return True

        bucket = self._refill(identifier, config)
        if bucket.tokens >= 1.0:
            bucket.tokens -= 1.0
            return True
        return False

    def retry_after(self, identifier: str, config: RateLimitConfig | None) -> float:
        """Seconds until ``identifier`` has a whole token again (0.0 if it has one now)."""
        if config is None:
            return 0.0

        bucket = self._refill(identifier, config)
        missing = 1.0 - bucket.tokens
        if missing <= 0:
            return 0.0
        return missing / bucket.refill_rate

    def get_info(self, identifier: str) -> RateLimitInfo | None:
        bucket = self._buckets.get(identifier)
        if bucket is None:
            return None
        return RateLimitInfo(
            identifier=identifier,
            tokens=math.floor(bucket.tokens * 1000) / 1000,
            capacity=bucket.capacity,
            refill_rate=bucket.refill_rate,
        )

    def clear(self) -> None:
        self._buckets.clear()


class AlwaysAdmitRateGate:
    """Admits everything and tracks nothing."""

    def __len__(self) -> int:
        return 0

    def admit(self, identifier: str, config: RateLimitConfig | None) -> bool:
        return True

    def retry_after(self, identifier: str, config: RateLimitConfig | None) -> float:
        return 0.0

    def get_info(self, identifier: str) -> RateLimitInfo | None:
        return None

    def clear(self) -> None:
        return None
