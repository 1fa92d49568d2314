from __future__ import annotations

from enum import StrEnum


class HealthCheckStatus(StrEnum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    INITIALIZING = "initializing"


class DeliveryState(StrEnum):
    """Lifecycle of one outbound message through the dispatch pipeline.

    ``DELIVERED``, ``DEAD_LETTERED`` and ``DISCARDED`` are terminal.
    ``RETRY_SCHEDULED`` loops back to ``ENQUEUED`` with a later ``scheduled_at``.
    """

    ENQUEUED = "enqueued"
    DISPATCHING = "dispatching"
    DELIVERED = "delivered"
    RETRY_SCHEDULED = "retry_scheduled"
    DEAD_LETTERED = "dead_lettered"
    DISCARDED = "discarded"

    @property
    def is_terminal(self) -> bool:
        return self in (DeliveryState.DELIVERED, DeliveryState.DEAD_LETTERED, DeliveryState.DISCARDED)
