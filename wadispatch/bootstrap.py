from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal, Self

from .core.enums import HealthCheckStatus
from .delivery import DeliveryClient, build_whatsapp_worker
from .infrastructure.redis import RedisClient
from .logger import get_logger
from .queue import JsonFileStore, MessageQueueService, RedisSnapshotStore
from .settings import DispatchSettings

if TYPE_CHECKING:
    from types import TracebackType

    import httpx
    from structlog.stdlib import BoundLogger

    from .queue import PersistenceStore

logger: BoundLogger = get_logger(__name__)


@dataclass(slots=True)
class Dispatcher:
    """Everything needed to run outbound delivery, wired together.

    Built by :func:`build_dispatcher`; owns the lifecycle of the queue
    service, the HTTP client and, for the Redis backend, the Redis client.
    """

    settings: DispatchSettings
    service: MessageQueueService
    delivery: DeliveryClient
    redis: RedisClient | None = None

    @property
    def outbound_queue(self) -> str:
        return self.settings.outbound.name

    @property
    def dead_letter_queue(self) -> str | None:
        return self.settings.outbound.dead_letter_queue

    async def __aenter__(self) -> Self:
        await self.ainitialize()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def ainitialize(self) -> None:
        if self.redis is not None:
            await self.redis.ainitialize()
        await self.delivery.ainitialize()
        await self.service.start()
        logger.info("Dispatcher started", outbound_queue=self.outbound_queue, dead_letter_queue=self.dead_letter_queue)

    async def aclose(self) -> None:
        await self.service.stop()
        await self.delivery.aclose()
        if self.redis is not None:
            await self.redis.aclose()
        logger.info("Dispatcher stopped")

    async def ahealth_check(self) -> dict[str, HealthCheckStatus]:
        statuses = {
            "queue": await self.service.ahealth_check(),
            "delivery": await self.delivery.ahealth_check(),
        }
        if self.redis is not None:
            statuses["redis"] = await self.redis.ahealth_check()
        return statuses

    async def enqueue(self, payload: dict[str, Any], **options: Any) -> str | Literal[False]:
        """Queue ``payload`` on the outbound queue; ``options`` go to ``MessageQueueService.enqueue``."""
        return await self.service.enqueue(self.outbound_queue, payload, **options)


def build_dispatcher(
    settings: DispatchSettings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Dispatcher:
    """Construct the service graph described by ``settings``.

    Creates the outbound queue and its dead-letter queue and registers the
    WhatsApp worker on the outbound queue. Nothing connects until
    :meth:`Dispatcher.ainitialize`.
    """
    settings = settings or DispatchSettings()

    redis_client: RedisClient | None = None
    store: PersistenceStore | None = None
    scheduler = settings.scheduler
    match settings.persistence_backend:
        case "file":
            store = JsonFileStore(scheduler.persistence_path)
        case "redis":
            redis_client = RedisClient(settings.redis)
            store = RedisSnapshotStore(redis_client, settings.redis.snapshot_key)
        case "none":
            scheduler = scheduler.model_copy(update={"persistence_enabled": False})

    service = MessageQueueService(scheduler, store=store)
    delivery = DeliveryClient(settings.delivery, transport=transport)

    outbound = settings.outbound
    service.create_queue(outbound.name, outbound.queue_config())
    if outbound.dead_letter_queue:
        service.create_queue(outbound.dead_letter_queue)
    service.register_worker(outbound.name, build_whatsapp_worker(delivery))

    logger.debug(
        "Dispatcher built",
        persistence_backend=settings.persistence_backend,
        outbound_queue=outbound.name,
    )
    return Dispatcher(settings=settings, service=service, delivery=delivery, redis=redis_client)
