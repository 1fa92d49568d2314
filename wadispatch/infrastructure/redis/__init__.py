"""Redis module exports."""

from __future__ import annotations

from .client import RedisClient
from .config import (
    RedisConfig,
    RedisConnectionSettings,
    RedisDriverSettings,
    RedisPoolSettings,
    RedisSSLSettings,
)

__all__ = [
    "RedisClient",
    "RedisConfig",
    "RedisConnectionSettings",
    "RedisDriverSettings",
    "RedisPoolSettings",
    "RedisSSLSettings",
]
