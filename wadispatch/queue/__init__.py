from __future__ import annotations

from .config import QueueConfig, RateLimitConfig, SchedulerConfig
from .domain import EventRecord, Message, QueueInfo, QueueStats, ServiceStats, Snapshot
from .enums import MessagePriority, QueueEvent, RetryStrategy
from .events import EventBus
from .exceptions import InvalidWorkerError, PersistenceError, QueueError, WorkerTimeoutError
from .persistence import JsonFileStore, PersistenceStore, RedisSnapshotStore
from .rate_gate import AlwaysAdmitRateGate, RateGate, RateLimitInfo, TokenBucketRateGate
from .service import MessageQueueService
from .workers import Worker, WorkerRegistry

__all__ = [
    "AlwaysAdmitRateGate",
    "EventBus",
    "EventRecord",
    "InvalidWorkerError",
    "JsonFileStore",
    "Message",
    "MessagePriority",
    "MessageQueueService",
    "PersistenceError",
    "PersistenceStore",
    "QueueConfig",
    "QueueError",
    "QueueEvent",
    "QueueInfo",
    "QueueStats",
    "RateGate",
    "RateLimitConfig",
    "RateLimitInfo",
    "RedisSnapshotStore",
    "RetryStrategy",
    "SchedulerConfig",
    "ServiceStats",
    "Snapshot",
    "TokenBucketRateGate",
    "Worker",
    "WorkerRegistry",
    "WorkerTimeoutError",
]
