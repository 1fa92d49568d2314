from __future__ import annotations

import asyncio
import inspect
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from ..logger import get_logger
from .domain import EventRecord
from .enums import QueueEvent

if TYPE_CHECKING:
    from structlog.stdlib import BoundLogger

    from ..core.enums import DeliveryState
    from .domain import Message

logger: BoundLogger = get_logger(__name__)

type EventHandler = Callable[[EventRecord], None | Awaitable[None]]


class EventBus:
    """Fire-and-forget observer for queue lifecycle events.

    Handlers may be plain functions or coroutine functions. Coroutines are
    scheduled as tasks on the running loop. A failing handler is logged and
    never affects the emitter or other handlers.

    Examples
    --------
    >>> bus = EventBus()
    >>> unsubscribe = bus.subscribe(QueueEvent.MESSAGE_FAILED, alert)
    >>> unsubscribe()
    """

    def __init__(self) -> None:
        self._handlers: defaultdict[QueueEvent, list[EventHandler]] = defaultdict(list)
        self._pending: set[asyncio.Task[None]] = set()

    def subscribe(self, kind: QueueEvent | str, handler: EventHandler) -> Callable[[], None]:
        """Register ``handler`` for ``kind``; returns a callable that removes it."""
        event = QueueEvent(kind)
        self._handlers[event].append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(event, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def handler_count(self, kind: QueueEvent | str) -> int:
        return len(self._handlers.get(QueueEvent(kind), []))

    def emit(
        self,
        kind: QueueEvent,
        queue_name: str,
        *,
        message: Message | None = None,
        error: BaseException | str | None = None,
        result: Any = None,
        state: DeliveryState | None = None,
        **data: Any,
    ) -> EventRecord:
        record = EventRecord(
            kind=kind,
            queue_name=queue_name,
            message=message,
            error=str(error) if error is not None else None,
            result=result,
            state=state,
            data=data,
        )

        for handler in list(self._handlers.get(kind, [])):
            try:
                outcome = handler(record)
            except Exception as e:
                logger.error("Event handler failed", event=kind.value, queue=queue_name, exc_info=e)
                continue

            if inspect.isawaitable(outcome):
                self._schedule(outcome, kind, queue_name)

        return record

    def _schedule(self, awaitable: Awaitable[None], kind: QueueEvent, queue_name: str) -> None:
        async def _run() -> None:
            try:
                await awaitable
            except Exception as e:
                logger.error("Async event handler failed", event=kind.value, queue=queue_name, exc_info=e)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop, dropping async event handler", event=kind.value, queue=queue_name)
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return

        task = loop.create_task(_run())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for scheduled async handlers to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
