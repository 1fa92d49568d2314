from __future__ import annotations


class QueueError(Exception):
    """Base class for queue service errors."""


class InvalidWorkerError(QueueError, TypeError):
    """Raised at registration time when a worker is not callable."""


class WorkerTimeoutError(QueueError, TimeoutError):
    """A worker call exceeded the queue's ``worker_timeout_ms``."""

    def __init__(self, queue_name: str, timeout_ms: int) -> None:
        super().__init__(f"Worker for queue {queue_name!r} timed out after {timeout_ms}ms")
        self.queue_name = queue_name
        self.timeout_ms = timeout_ms


class PersistenceError(QueueError):
    """A snapshot could not be written or read."""
