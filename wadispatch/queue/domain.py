from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..core.enums import DeliveryState
from .config import QueueConfig
from .enums import MessagePriority, QueueEvent


def generate_message_id() -> str:
    """Return ``msg_<epoch-ms>_<9 hex chars>``; unique enough, not cryptographic."""
    return f"msg_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def utcnow() -> datetime:
    return datetime.now(UTC)


class Message(BaseModel):
    """A unit of work owned by exactly one queue.

    The queue never inspects ``payload``. ``metadata`` is handed to the worker
    unchanged and enriched with ``originalQueue``/``error`` on dead-lettering.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=generate_message_id, min_length=1)
    payload: Any = Field(default=None, description="Opaque application data")
    priority: MessagePriority = Field(default=MessagePriority.NORMAL)
    attempts: int = Field(default=0, ge=0, description="Delivery attempts made so far")
    max_retries: int = Field(default=3, ge=0, description="Attempt ceiling before dead-lettering")
    created_at: datetime = Field(default_factory=utcnow)
    scheduled_at: datetime = Field(default_factory=utcnow, description="Not dispatched before this instant")
    metadata: dict[str, Any] = Field(default_factory=dict)
    rate_limit_key: str | None = Field(default=None, description="Admission identifier supplied at enqueue")

    @field_validator("created_at", "scheduled_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


class QueueStats(BaseModel):
    model_config = ConfigDict(extra="forbid")

    processed: int = 0
    failed: int = 0
    pending: int = 0


class GlobalStats(BaseModel):
    model_config = ConfigDict(extra="forbid")

    total_processed: int = 0
    total_failed: int = 0
    total_retries: int = 0
    queues_created: int = 0
    rate_limit_hits: int = 0


@dataclass(slots=True)
class QueueState:
    """Runtime state of one named queue.

    ``in_flight`` holds the batch currently being drained so snapshots taken
    mid-batch still contain those messages.
    """

    name: str
    config: QueueConfig
    messages: list[Message] = field(default_factory=list)
    in_flight: list[Message] = field(default_factory=list)
    processing: bool = False
    stats: QueueStats = field(default_factory=QueueStats)

    @property
    def paused(self) -> bool:
        return self.config.paused


class QueueSnapshot(BaseModel):
    model_config = ConfigDict(extra="forbid")

    messages: list[Message] = Field(default_factory=list)
    config: QueueConfig = Field(default_factory=QueueConfig)
    stats: QueueStats = Field(default_factory=QueueStats)


class Snapshot(BaseModel):
    """Persisted layout: ``{queues: {name: {messages, config, stats}}, stats, timestamp}``."""

    model_config = ConfigDict(extra="forbid")

    queues: dict[str, QueueSnapshot] = Field(default_factory=dict)
    stats: GlobalStats = Field(default_factory=GlobalStats)
    timestamp: datetime = Field(default_factory=utcnow)


class QueueInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    message_count: int
    processing: bool
    paused: bool
    config: QueueConfig
    stats: QueueStats
    has_worker: bool


class ServiceStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_processed: int
    total_failed: int
    total_retries: int
    queues_created: int
    rate_limit_hits: int
    active_queues: int
    total_messages: int
    rate_limit_entries: int


class EventRecord(BaseModel):
    """One published event. ``message`` is the live message object."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    kind: QueueEvent
    queue_name: str
    message: Message | None = None
    error: str | None = None
    result: Any = None
    state: DeliveryState | None = Field(default=None, description="Where the message now sits in its lifecycle")
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)
