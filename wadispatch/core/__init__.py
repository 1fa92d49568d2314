"""Core module exports."""

from __future__ import annotations

from .enums import DeliveryState, HealthCheckStatus

__all__ = [
    "DeliveryState",
    "HealthCheckStatus",
]
