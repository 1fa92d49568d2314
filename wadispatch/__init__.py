from __future__ import annotations

from .bootstrap import Dispatcher, build_dispatcher
from .delivery import DeliveryClient, DeliveryConfig, DeliveryError, DeliveryResult
from .queue import Message, MessagePriority, MessageQueueService, QueueConfig, QueueEvent, SchedulerConfig
from .settings import DispatchSettings

__all__ = [
    "DeliveryClient",
    "DeliveryConfig",
    "DeliveryError",
    "DeliveryResult",
    "DispatchSettings",
    "Dispatcher",
    "Message",
    "MessagePriority",
    "MessageQueueService",
    "QueueConfig",
    "QueueEvent",
    "SchedulerConfig",
]
