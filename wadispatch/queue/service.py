from __future__ import annotations

import asyncio
import inspect
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Literal, Self

from ..core.enums import DeliveryState, HealthCheckStatus
from ..logger import get_logger
from .config import QueueConfig, SchedulerConfig
from .domain import (
    GlobalStats,
    Message,
    QueueInfo,
    QueueSnapshot,
    QueueState,
    ServiceStats,
    Snapshot,
    utcnow,
)
from .enums import MessagePriority, QueueEvent
from .events import EventBus
from .exceptions import WorkerTimeoutError
from .persistence import JsonFileStore, PersistenceStore
from .priority import insert_by_priority, requeue_front, take_batch
from .rate_gate import RateGate, RateLimitInfo, TokenBucketRateGate
from .retry import compute_delay, should_retry
from .workers import Worker, WorkerRegistry

if TYPE_CHECKING:
    from types import TracebackType

    from structlog.stdlib import BoundLogger

logger: BoundLogger = get_logger(__name__)

DEAD_LETTER_KEYS: tuple[str, ...] = ("originalQueue", "error")


class MessageQueueService:
    """Named priority queues drained by registered async workers.

    Producers call :meth:`enqueue`; a periodic scheduler (``start``/``stop``)
    drains every eligible queue in batches, retrying failures with backoff and
    moving exhausted messages to the queue's dead-letter queue. A snapshot of
    all queues is persisted after every batch.

    Parameters
    ----------
    config : SchedulerConfig | None
        Scheduler and persistence settings.
    store : PersistenceStore | None
        Snapshot backend. Defaults to a ``JsonFileStore`` at
        ``config.persistence_path`` when persistence is enabled.
    rate_gate : RateGate | None
        Token buckets shared by enqueue admission and dispatch throttling.
    clock : Callable[[], datetime]
        Source of "now" for scheduling decisions.

    Examples
    --------
    >>> service = MessageQueueService(SchedulerConfig(persistence_enabled=False))
    >>> service.register_worker("wa-out", send)
    >>> async with service:
    ...     await service.enqueue("wa-out", {"to": "573001234567", "text": "hola"})
    """

    def __init__(
        self,
        config: SchedulerConfig | None = None,
        *,
        store: PersistenceStore | None = None,
        rate_gate: RateGate | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._config = config or SchedulerConfig()
        if store is None and self._config.persistence_enabled:
            store = JsonFileStore(self._config.persistence_path)
        self._store = store if self._config.persistence_enabled else None
        self._rate_gate: RateGate = rate_gate if rate_gate is not None else TokenBucketRateGate()
        self._clock = clock

        self.events = EventBus()
        self._queues: dict[str, QueueState] = {}
        self._workers = WorkerRegistry()
        self._stats = GlobalStats()

        self._inflight: dict[str, asyncio.Task[None]] = {}
        self._background: set[asyncio.Task[None]] = set()
        self._loop_task: asyncio.Task[None] | None = None
        self._initialized = False
        self._init_lock = asyncio.Lock()

    @property
    def config(self) -> SchedulerConfig:
        return self._config

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.stop()

    async def ainitialize(self) -> None:
        """Restore queues from the persisted snapshot, if any. Safe to call twice.

        Nothing is persisted before this has run, so a fresh process cannot
        overwrite the previous snapshot before loading it.
        """
        async with self._init_lock:
            if self._initialized:
                return

            if self._store is not None:
                try:
                    snapshot = await self._store.load()
                except Exception as e:
                    logger.error("Failed to load queue snapshot, starting empty", exc_info=e)
                    snapshot = None
                if snapshot is not None:
                    self._restore(snapshot)

            self._initialized = True
        logger.info(
            "Message queue service initialized",
            queues=len(self._queues),
            messages=sum(len(q.messages) for q in self._queues.values()),
            persistence=type(self._store).__name__ if self._store else None,
        )

    def _restore(self, snapshot: Snapshot) -> None:
        for name, saved in snapshot.queues.items():
            existing = self._queues.get(name)
            if existing is not None:
                # Created before load: keep the live config, adopt saved messages and stats.
                known = {message.id for message in existing.messages}
                live = len(existing.messages)
                for message in saved.messages:
                    if message.id not in known:
                        insert_by_priority(existing.messages, message)
                existing.stats = saved.stats.model_copy(update={"pending": saved.stats.pending + live})
                continue
            self._queues[name] = QueueState(
                name=name,
                config=saved.config,
                messages=list(saved.messages),
                processing=False,
                stats=saved.stats.model_copy(),
            )
        self._stats = snapshot.stats.model_copy()

    async def start(self) -> None:
        """Load persisted state and start the periodic scheduler."""
        if self.running:
            return
        await self.ainitialize()
        self._loop_task = asyncio.create_task(self._run_loop(), name="wadispatch-scheduler")
        logger.info("Queue processing started", interval_ms=self._config.processing_interval_ms)

    async def stop(self) -> None:
        """Stop ticking, wait for running batches, then persist once more."""
        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        if self._inflight:
            await asyncio.gather(*self._inflight.values(), return_exceptions=True)
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        await self.events.drain()

        if self._initialized:
            await self._persist()
        logger.info("Queue processing stopped")

    async def aclose(self) -> None:
        await self.stop()

    async def ahealth_check(self) -> HealthCheckStatus:
        if not self._initialized:
            return HealthCheckStatus.INITIALIZING
        if self._loop_task is not None and self._loop_task.done():
            return HealthCheckStatus.UNHEALTHY
        if self._loop_task is None:
            return HealthCheckStatus.DEGRADED
        return HealthCheckStatus.HEALTHY

    def create_queue(self, name: str, config: QueueConfig | Mapping[str, Any] | None = None) -> bool:
        """Create ``name``; returns ``False`` if it already exists."""
        if name in self._queues:
            return False
        if config is None:
            config = self._config.default_queue
        elif not isinstance(config, QueueConfig):
            config = QueueConfig.model_validate(config)

        self._queues[name] = QueueState(name=name, config=config)
        self._stats.queues_created += 1
        logger.info("Queue created", queue=name, config=config.model_dump(mode="json"))
        self.events.emit(QueueEvent.QUEUE_CREATED, name, config=config)
        return True

    def delete_queue(self, name: str) -> bool:
        """Remove ``name`` and its worker. Refused while a batch is running."""
        queue = self._queues.get(name)
        if queue is None:
            return False
        if queue.processing:
            logger.warning("Cannot delete queue while processing", queue=name)
            return False

        del self._queues[name]
        self._workers.unregister(name)
        logger.info("Queue deleted", queue=name)
        self.events.emit(QueueEvent.QUEUE_DELETED, name)
        self._persist_soon()
        return True

    def pause_queue(self, name: str) -> bool:
        return self._set_paused(name, True)

    def resume_queue(self, name: str) -> bool:
        return self._set_paused(name, False)

    def _set_paused(self, name: str, paused: bool) -> bool:
        queue = self._queues.get(name)
        if queue is None:
            return False
        queue.config = queue.config.model_copy(update={"paused": paused})
        if paused:
            logger.info("Queue paused", queue=name)
            self.events.emit(QueueEvent.QUEUE_PAUSED, name)
        else:
            logger.info("Queue resumed", queue=name)
            self.events.emit(QueueEvent.QUEUE_RESUMED, name)
        return True

    def pause_all(self) -> int:
        return sum(self.pause_queue(name) for name in list(self._queues))

    def resume_all(self) -> int:
        return sum(self.resume_queue(name) for name in list(self._queues))

    def clear_queue(self, name: str) -> int:
        """Drop every waiting message. Returns how many were removed (0 while processing)."""
        queue = self._queues.get(name)
        if queue is None:
            return 0
        if queue.processing:
            logger.warning("Cannot clear queue while processing", queue=name)
            return 0

        cleared = len(queue.messages)
        queue.messages.clear()
        queue.stats.pending = 0
        logger.info("Queue cleared", queue=name, cleared=cleared)
        self.events.emit(QueueEvent.QUEUE_CLEARED, name, cleared_count=cleared)
        self._persist_soon()
        return cleared

    def get_queue_info(self, name: str) -> QueueInfo | None:
        queue = self._queues.get(name)
        return self._info(queue) if queue is not None else None

    def get_all_queues(self) -> list[QueueInfo]:
        return [self._info(queue) for queue in self._queues.values()]

    def _info(self, queue: QueueState) -> QueueInfo:
        return QueueInfo(
            name=queue.name,
            message_count=len(queue.messages),
            processing=queue.processing,
            paused=queue.paused,
            config=queue.config,
            stats=queue.stats.model_copy(),
            has_worker=queue.name in self._workers,
        )

    def get_messages(self, name: str) -> list[Message]:
        """Waiting messages of ``name`` in dispatch order (a shallow copy)."""
        queue = self._queues.get(name)
        return list(queue.messages) if queue is not None else []

    def get_stats(self) -> ServiceStats:
        return ServiceStats(
            **self._stats.model_dump(),
            active_queues=len(self._queues),
            total_messages=sum(len(q.messages) for q in self._queues.values()),
            rate_limit_entries=len(self._rate_gate),
        )

    def register_worker(self, queue_name: str, worker: Worker) -> None:
        """Attach ``worker`` to ``queue_name``, replacing any previous one.

        Raises
        ------
        TypeError
            If ``worker`` is not callable.
        """
        self._workers.register(queue_name, worker)
        logger.info("Worker registered", queue=queue_name)
        self.events.emit(QueueEvent.WORKER_REGISTERED, queue_name)

    def unregister_worker(self, queue_name: str) -> bool:
        removed = self._workers.unregister(queue_name)
        logger.info("Worker unregistered", queue=queue_name, removed=removed)
        self.events.emit(QueueEvent.WORKER_UNREGISTERED, queue_name)
        return removed

    async def enqueue(
        self,
        queue_name: str,
        payload: Any,
        *,
        priority: MessagePriority | str | None = None,
        max_retries: int | None = None,
        scheduled_at: datetime | None = None,
        metadata: Mapping[str, Any] | None = None,
        rate_limit_key: str | None = None,
    ) -> str | Literal[False]:
        """Add ``payload`` to ``queue_name``, creating the queue on first use.

        Parameters
        ----------
        queue_name : str
            Target queue.
        payload : Any
            Opaque JSON-serialisable data handed to the worker.
        priority : MessagePriority | str | None
            Defaults to the queue's configured priority.
        max_retries : int | None
            Attempt ceiling; ``0`` means a single attempt. Defaults to
            ``SchedulerConfig.default_max_retries``.
        scheduled_at : datetime | None
            Earliest dispatch time. Defaults to now.
        metadata : Mapping[str, Any] | None
            Passed to the worker alongside the payload.
        rate_limit_key : str | None
            Identifier checked against the queue's ``rate_limit_config``.

        Returns
        -------
        str | Literal[False]
            The new message id, or ``False`` when the queue is full or the
            identifier is over its rate limit.
        """
        if not self._initialized:
            await self.ainitialize()
        if queue_name not in self._queues:
            self.create_queue(queue_name)
        queue = self._queues[queue_name]
        config = queue.config

        if len(queue.messages) >= config.max_size:
            logger.warning("Queue is full, message rejected", queue=queue_name, max_size=config.max_size)
            return False

        if rate_limit_key is not None and not self._rate_gate.admit(rate_limit_key, config.rate_limit_config):
            self._stats.rate_limit_hits += 1
            logger.warning("Rate limit exceeded, message rejected", queue=queue_name, rate_limit_key=rate_limit_key)
            return False

        now = self._clock()
        message = Message(
            payload=payload,
            priority=MessagePriority(priority) if priority is not None else config.priority,
            max_retries=max_retries if max_retries is not None else self._config.default_max_retries,
            created_at=now,
            scheduled_at=scheduled_at or now,
            metadata=dict(metadata or {}),
            rate_limit_key=rate_limit_key,
        )
        self._add(queue, message)

        if self._config.persist_on_enqueue:
            await self._persist()

        return message.id

    def _add(self, queue: QueueState, message: Message) -> None:
        insert_by_priority(queue.messages, message)
        queue.stats.pending += 1
        logger.debug("Message added", queue=queue.name, message_id=message.id, priority=message.priority.value)
        self.events.emit(QueueEvent.MESSAGE_ADDED, queue.name, message=message, state=DeliveryState.ENQUEUED)

    def redrive_messages(
        self,
        dead_letter_queue: str,
        target_queue: str,
        *,
        predicate: Callable[[Message], bool] | None = None,
        max_count: int | None = None,
    ) -> int:
        """Move dead-lettered messages back into ``target_queue``.

        The redriven copies lose the ``originalQueue``/``error`` metadata added
        on dead-lettering and start again with zero attempts. Messages that do
        not fit in the target queue stay in the dead-letter queue.

        Returns
        -------
        int
            Number of messages moved.
        """
        source = self._queues.get(dead_letter_queue)
        if source is None or not source.messages:
            return 0
        if source.processing:
            logger.warning("Cannot redrive from a queue while processing", queue=dead_letter_queue)
            return 0

        if target_queue not in self._queues:
            self.create_queue(target_queue)
        target = self._queues[target_queue]

        moved: list[Message] = []
        for message in source.messages:
            if max_count is not None and len(moved) >= max_count:
                break
            if len(target.messages) + len(moved) >= target.config.max_size:
                logger.warning("Redrive target is full", queue=target_queue, max_size=target.config.max_size)
                break
            if predicate is not None and not predicate(message):
                continue
            moved.append(message)

        if not moved:
            return 0

        moved_ids = {m.id for m in moved}
        source.messages[:] = [m for m in source.messages if m.id not in moved_ids]
        source.stats.pending = max(source.stats.pending - len(moved), 0)

        now = self._clock()
        for message in moved:
            metadata = {k: v for k, v in message.metadata.items() if k not in DEAD_LETTER_KEYS}
            self._add(
                target,
                message.model_copy(
                    update={"attempts": 0, "metadata": metadata, "created_at": now, "scheduled_at": now},
                ),
            )

        logger.info("Messages redriven", source=dead_letter_queue, target=target_queue, count=len(moved))
        self.events.emit(QueueEvent.QUEUE_REDRIVEN, target_queue, source=dead_letter_queue, count=len(moved))
        self._persist_soon()
        return len(moved)

    def get_rate_limit_info(self, identifier: str) -> RateLimitInfo | None:
        return self._rate_gate.get_info(identifier)

    def clear_rate_limits(self) -> None:
        self._rate_gate.clear()
        logger.info("All rate limits cleared")

    async def _run_loop(self) -> None:
        interval = self._config.processing_interval_ms / 1000
        while True:
            self._start_batches()
            await asyncio.sleep(interval)

    async def process_queues(self) -> None:
        """Run one scheduler tick and wait for the batches it started."""
        if not self._initialized:
            await self.ainitialize()
        tasks = self._start_batches()
        if tasks:
            await asyncio.gather(*tasks)

    def _start_batches(self) -> list[asyncio.Task[None]]:
        started: list[asyncio.Task[None]] = []
        for name, queue in list(self._queues.items()):
            if queue.processing or queue.paused or not queue.messages or name in self._inflight:
                continue
            worker = self._workers.get(name)
            if worker is None:
                continue

            queue.processing = True
            task = asyncio.create_task(self._run_batch(queue, worker), name=f"wadispatch-batch-{name}")
            self._inflight[name] = task
            task.add_done_callback(lambda t, n=name: self._forget_batch(n, t))
            started.append(task)
        return started

    def _forget_batch(self, name: str, task: asyncio.Task[None]) -> None:
        if self._inflight.get(name) is task:
            del self._inflight[name]

    async def _run_batch(self, queue: QueueState, worker: Worker) -> None:
        attempted = False
        try:
            attempted = await self._process_batch(queue, worker)
        except Exception as e:
            logger.error("Batch processing failed", queue=queue.name, exc_info=e)
        finally:
            # Anything still in flight (cancellation, crash) goes back to the queue.
            requeue_front(queue.messages, queue.in_flight)
            queue.in_flight = []
            queue.processing = False

        if attempted:
            await self._persist()

    async def _process_batch(self, queue: QueueState, worker: Worker) -> bool:
        queue.in_flight = take_batch(queue.messages, queue.config.batch_size)
        logger.debug("Processing batch", queue=queue.name, size=len(queue.in_flight))

        attempted = False
        while queue.in_flight:
            message = queue.in_flight[0]
            if not self._admit_dispatch(queue, message):
                # The rest of the batch goes back to the front, in order, until tokens refill.
                requeue_front(queue.messages, queue.in_flight)
                queue.in_flight = []
                break
            attempted = await self._process_message(queue, worker, message) or attempted
            queue.in_flight.pop(0)

            delay_ms = queue.config.processing_delay_ms
            if delay_ms > 0 and queue.in_flight:
                await asyncio.sleep(delay_ms / 1000)
        return attempted

    def _admit_dispatch(self, queue: QueueState, message: Message) -> bool:
        """Take a dispatch token for ``message``; messages not yet due never spend one."""
        limit = queue.config.dispatch_rate_limit
        if limit is None or message.scheduled_at > self._clock():
            return True

        key = f"dispatch:{queue.name}"
        if self._rate_gate.admit(key, limit):
            return True
        logger.debug(
            "Dispatch throttled",
            queue=queue.name,
            message_id=message.id,
            retry_after_s=self._rate_gate.retry_after(key, limit),
        )
        return False

    async def _process_message(self, queue: QueueState, worker: Worker, message: Message) -> bool:
        """Handle one message. Returns ``True`` if the worker was invoked."""
        config = queue.config
        now = self._clock()

        if message.scheduled_at > now:
            insert_by_priority(queue.messages, message)
            return False

        message.attempts += 1
        deadline = asyncio.timeout(config.worker_timeout_ms / 1000)
        try:
            async with deadline:
                result = worker(message.payload, message.metadata)
                if inspect.isawaitable(result):
                    result = await result
        except Exception as e:
            error: Exception = e
            if isinstance(e, TimeoutError) and deadline.expired():
                error = WorkerTimeoutError(queue.name, config.worker_timeout_ms)
            self._handle_failure(queue, message, error)
            return True

        queue.stats.processed += 1
        queue.stats.pending = max(queue.stats.pending - 1, 0)
        self._stats.total_processed += 1
        logger.debug("Message processed", queue=queue.name, message_id=message.id, attempts=message.attempts)
        self.events.emit(
            QueueEvent.MESSAGE_PROCESSED,
            queue.name,
            message=message,
            result=result,
            state=DeliveryState.DELIVERED,
        )
        return True

    def _handle_failure(self, queue: QueueState, message: Message, error: Exception) -> None:
        config = queue.config

        if should_retry(message.attempts, message.max_retries):
            delay_ms = compute_delay(
                message.attempts,
                config.retry_policy,
                config.retry_delay_ms,
                config.max_retry_delay_ms,
            )
            message.scheduled_at = self._clock() + timedelta(milliseconds=delay_ms)
            insert_by_priority(queue.messages, message)
            self._stats.total_retries += 1
            logger.warning(
                "Message failed, retry scheduled",
                queue=queue.name,
                message_id=message.id,
                attempts=message.attempts,
                max_retries=message.max_retries,
                delay_ms=delay_ms,
                error=str(error),
            )
            self.events.emit(
                QueueEvent.MESSAGE_RETRY,
                queue.name,
                message=message,
                error=error,
                state=DeliveryState.RETRY_SCHEDULED,
                delay_ms=delay_ms,
            )
            return

        queue.stats.failed += 1
        queue.stats.pending = max(queue.stats.pending - 1, 0)
        self._stats.total_failed += 1
        logger.error(
            "Message failed permanently",
            queue=queue.name,
            message_id=message.id,
            attempts=message.attempts,
            dead_letter_queue=config.dead_letter_queue,
            error=str(error),
            error_type=type(error).__name__,
        )

        if config.dead_letter_queue:
            self._dead_letter(queue.name, config.dead_letter_queue, message, error)

        state = DeliveryState.DEAD_LETTERED if config.dead_letter_queue else DeliveryState.DISCARDED
        self.events.emit(QueueEvent.MESSAGE_FAILED, queue.name, message=message, error=error, state=state)

    def _dead_letter(self, source: str, dead_letter_queue: str, message: Message, error: Exception) -> None:
        if dead_letter_queue not in self._queues:
            self.create_queue(dead_letter_queue)
        dlq = self._queues[dead_letter_queue]

        if len(dlq.messages) >= dlq.config.max_size:
            logger.error("Dead letter queue is full, message dropped", queue=dead_letter_queue, message_id=message.id)
            return

        now = self._clock()
        self._add(
            dlq,
            Message(
                payload=message.payload,
                priority=message.priority,
                max_retries=self._config.default_max_retries,
                created_at=now,
                scheduled_at=now,
                metadata={**message.metadata, "originalQueue": source, "error": str(error)},
                rate_limit_key=message.rate_limit_key,
            ),
        )

    def snapshot(self) -> Snapshot:
        """Current state of every queue, in-flight batch messages included."""
        return Snapshot(
            queues={
                name: QueueSnapshot(
                    messages=[m.model_copy() for m in (*queue.in_flight, *queue.messages)],
                    config=queue.config,
                    stats=queue.stats.model_copy(),
                )
                for name, queue in self._queues.items()
            },
            stats=self._stats.model_copy(),
            timestamp=self._clock(),
        )

    async def _persist(self) -> None:
        # Saving before the snapshot is loaded would replace it with partial state.
        if self._store is None or not self._initialized:
            return
        try:
            await self._store.save(self.snapshot())
        except Exception as e:
            logger.error("Failed to persist queue snapshot", exc_info=e)

    def _persist_soon(self) -> None:
        if self._store is None or not self._initialized:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self._persist())
        self._background.add(task)
        task.add_done_callback(self._background.discard)
