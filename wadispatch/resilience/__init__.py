from __future__ import annotations

from .config import RetryConfig
from .retry import Retry, log_before_sleep, retry
from .types import BeforeSleepCallback, RetryCallback, RetryLogicError

__all__ = [
    "BeforeSleepCallback",
    "Retry",
    "RetryCallback",
    "RetryConfig",
    "RetryLogicError",
    "log_before_sleep",
    "retry",
]
