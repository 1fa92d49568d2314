from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from .enums import MessagePriority, RetryStrategy


class RateLimitConfig(BaseModel):
    """Token bucket parameters.

    ``capacity`` tokens are available at once; tokens refill continuously at
    ``refill_rate`` per second.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    capacity: int = Field(default=60, ge=1, description="Burst size (bucket capacity)")
    refill_rate: float = Field(default=1.0, gt=0, description="Tokens added per second")


class QueueConfig(BaseModel):
    """Per-queue configuration. Immutable; pause/resume swap in a copy."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    priority: MessagePriority = Field(
        default=MessagePriority.NORMAL,
        description="Priority given to messages enqueued without one",
    )
    max_size: int = Field(default=1000, ge=1, description="Enqueue is rejected at this length")
    batch_size: int = Field(default=10, ge=1, le=1000, description="Messages pulled per scheduler pass")
    processing_delay_ms: int = Field(default=0, ge=0, description="Pause between messages inside a batch")
    retry_policy: RetryStrategy = Field(default=RetryStrategy.EXPONENTIAL)
    retry_delay_ms: int = Field(default=1000, ge=0, description="Base delay fed to the retry policy")
    max_retry_delay_ms: int | None = Field(default=None, ge=0, description="Upper bound on a single retry delay")
    worker_timeout_ms: int = Field(
        default=30_000,
        ge=1,
        description="A worker call running longer than this counts as a failed attempt",
    )
    dead_letter_queue: str | None = Field(default=None, min_length=1)
    rate_limit_config: RateLimitConfig | None = Field(
        default=None,
        description="Admission limit applied at enqueue, keyed by the message's rate_limit_key",
    )
    dispatch_rate_limit: RateLimitConfig | None = Field(
        default=None,
        description="Throttle applied to worker calls, keyed by queue name",
    )
    paused: bool = Field(default=False)


class SchedulerConfig(BaseModel):
    """Service-wide scheduler and persistence settings."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    processing_interval_ms: int = Field(default=100, ge=1, description="Scheduler tick period")
    default_max_retries: int = Field(default=3, ge=0)
    persistence_enabled: bool = Field(default=True)
    persist_on_enqueue: bool = Field(default=True, description="Also snapshot after every accepted enqueue")
    persistence_path: Path = Field(default=Path("data/message-queues.json"))
    default_queue: QueueConfig = Field(
        default_factory=QueueConfig,
        description="Config used for queues created implicitly by enqueue",
    )
