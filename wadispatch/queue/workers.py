from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterator
from typing import Any

from .exceptions import InvalidWorkerError

type Worker = Callable[[Any, dict[str, Any]], Awaitable[Any]]


class WorkerRegistry:
    """Maps queue names to the async callable that delivers their messages.

    At most one worker per queue; registering again replaces the previous one.
    """

    def __init__(self) -> None:
        self._workers: dict[str, Worker] = {}

    def __contains__(self, queue_name: object) -> bool:
        return queue_name in self._workers

    def __len__(self) -> int:
        return len(self._workers)

    def __iter__(self) -> Iterator[str]:
        return iter(self._workers)

    def register(self, queue_name: str, worker: Worker) -> Worker | None:
        """Register ``worker`` for ``queue_name``.

        Returns
        -------
        Worker | None
            The worker that was replaced, if any.

        Raises
        ------
        InvalidWorkerError
            If ``worker`` is not callable. Subclasses ``TypeError``.
        """
        if not callable(worker):
            raise InvalidWorkerError(f"Worker for queue {queue_name!r} must be callable, got {type(worker).__name__}")
        previous = self._workers.get(queue_name)
        self._workers[queue_name] = worker
        return previous

    def unregister(self, queue_name: str) -> bool:
        return self._workers.pop(queue_name, None) is not None

    def get(self, queue_name: str) -> Worker | None:
        return self._workers.get(queue_name)
