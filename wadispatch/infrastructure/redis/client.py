from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, AsyncIterator, Self

from redis.asyncio import ConnectionPool, Redis

from ...core.enums import HealthCheckStatus
from ...logger import get_logger

if TYPE_CHECKING:
    from types import TracebackType

    from structlog.stdlib import BoundLogger

    from .config import RedisConfig

logger: BoundLogger = get_logger(__name__)


class RedisClient:
    """Async Redis client with an explicitly owned connection pool.

    Examples
    --------
    >>> async with RedisClient(RedisConfig()) as client:
    ...     async with client.aget_client() as redis:
    ...         await redis.get("wadispatch:queues:snapshot")
    """

    def __init__(self, config: RedisConfig) -> None:
        self.config = config
        self._pool: ConnectionPool | None = None
        self._client: Redis | None = None
        self._init_lock = asyncio.Lock()

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
        """Create the pool and verify connectivity. Safe to call more than once."""
        async with self._init_lock:
            if self._client is not None:
                return

            self._pool = ConnectionPool(**self.config.get_connection_pool_kwargs())
            self._client = Redis(connection_pool=self._pool)

            try:
                await self._client.ping()  # type: ignore[misc]
                logger.info(
                    "Redis client initialized",
                    host=self.config.connection.host,
                    port=self.config.connection.port,
                    db=self.config.connection.db,
                    ssl_enabled=self.config.ssl.enabled,
                )
            except Exception as e:
                logger.error("Failed to initialize Redis client", exc_info=e)
                raise

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

        if self._pool is not None:
            await self._pool.aclose()
            self._pool = None

        logger.info("Redis client closed")

    async def ahealth_check(self) -> HealthCheckStatus:
        if self._client is None:
            return HealthCheckStatus.INITIALIZING

        try:
            await self._client.ping()  # type: ignore[misc]
            return HealthCheckStatus.HEALTHY
        except Exception as e:
            logger.error("Redis health check failed", exc_info=e)
            return HealthCheckStatus.UNHEALTHY

    @asynccontextmanager
    async def aget_client(self) -> AsyncIterator[Redis]:
        """Yield the initialized client, logging any failed operation.

        Raises
        ------
        RuntimeError
            If the client has not been initialized.
        """
        if self._client is None:
            raise RuntimeError("Redis client not initialized")

        try:
            yield self._client
        except Exception as e:
            logger.error("Redis operation failed", exc_info=e)
            raise
