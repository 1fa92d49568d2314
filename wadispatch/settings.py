from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .delivery.config import DeliveryConfig
from .infrastructure.redis.config import RedisConfig
from .queue.config import QueueConfig, RateLimitConfig, SchedulerConfig
from .queue.enums import MessagePriority

type PersistenceBackend = Literal["file", "redis", "none"]


class OutboundQueueSettings(QueueConfig):
    """Defaults for the outbound WhatsApp queue and its dead-letter queue."""

    name: str = Field(default="wa-out", min_length=1)
    dead_letter_queue: str | None = Field(default="wa-dlq", min_length=1)
    priority: MessagePriority = Field(default=MessagePriority.NORMAL)
    dispatch_rate_limit: RateLimitConfig | None = Field(
        default_factory=lambda: RateLimitConfig(capacity=20, refill_rate=20.0),
        description="360Dialog throughput guard applied to worker calls",
    )

    def queue_config(self) -> QueueConfig:
        return QueueConfig.model_validate(self.model_dump(exclude={"name"}))


class DispatchSettings(BaseSettings):
    """Environment entry point, e.g. ``WADISPATCH_DELIVERY__API_KEY``.

    Examples
    --------
    >>> settings = DispatchSettings(persistence_backend="none")
    >>> settings.outbound.name
    'wa-out'
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="WADISPATCH_",
        env_nested_delimiter="__",
        extra="ignore",
        frozen=True,
    )

    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    outbound: OutboundQueueSettings = Field(default_factory=OutboundQueueSettings)
    delivery: DeliveryConfig = Field(default_factory=DeliveryConfig)
    redis: RedisConfig = Field(default_factory=RedisConfig)
    persistence_backend: PersistenceBackend = Field(
        default="file",
        description="file: JSON at scheduler.persistence_path, redis: one key in Redis, none: in-memory only",
    )
