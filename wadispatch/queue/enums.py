from __future__ import annotations

from enum import StrEnum


class MessagePriority(StrEnum):
    """Dispatch priority. Higher rank is dispatched first."""

    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK: dict[MessagePriority, int] = {
    MessagePriority.HIGH: 3,
    MessagePriority.NORMAL: 2,
    MessagePriority.LOW: 1,
}


class RetryStrategy(StrEnum):
    EXPONENTIAL = "exponential"
    LINEAR = "linear"
    FIXED = "fixed"


class QueueEvent(StrEnum):
    """Event kinds published on the queue service's event bus."""

    QUEUE_CREATED = "queue_created"
    QUEUE_DELETED = "queue_deleted"
    MESSAGE_ADDED = "message_added"
    MESSAGE_PROCESSED = "message_processed"
    MESSAGE_RETRY = "message_retry"
    MESSAGE_FAILED = "message_failed"
    WORKER_REGISTERED = "worker_registered"
    WORKER_UNREGISTERED = "worker_unregistered"
    QUEUE_PAUSED = "queue_paused"
    QUEUE_RESUMED = "queue_resumed"
    QUEUE_CLEARED = "queue_cleared"
    QUEUE_REDRIVEN = "queue_redriven"
