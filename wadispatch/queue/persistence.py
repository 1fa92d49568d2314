from __future__ import annotations

import asyncio
import os
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from pydantic import ValidationError

from ..logger import get_logger
from .domain import Snapshot

if TYPE_CHECKING:
    from structlog.stdlib import BoundLogger

    from ..infrastructure.redis import RedisClient

logger: BoundLogger = get_logger(__name__)


@runtime_checkable
class PersistenceStore(Protocol):
    async def save(self, snapshot: Snapshot) -> None: ...

    async def load(self) -> Snapshot | None: ...


def _decode_snapshot(raw: str | bytes, source: str) -> Snapshot | None:
    try:
        return Snapshot.model_validate_json(raw)
    except ValidationError as e:
        logger.error("Discarding unreadable queue snapshot", source=source, errors=e.error_count(), exc_info=e)
        return None


class JsonFileStore:
    """Snapshot store backed by one JSON file.

    Writes go to a temporary file in the same directory which then replaces
    the target, so a crash mid-write leaves the previous snapshot intact.
    File I/O runs in a worker thread.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = asyncio.Lock()

    def _write(self, data: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _read(self) -> str | None:
        try:
            return self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    async def save(self, snapshot: Snapshot) -> None:
        data = snapshot.model_dump_json(indent=2)
        async with self._lock:
            await asyncio.to_thread(self._write, data)
        logger.debug("Queue snapshot saved", path=str(self.path), queues=len(snapshot.queues))

    async def load(self) -> Snapshot | None:
        async with self._lock:
            raw = await asyncio.to_thread(self._read)
        if raw is None:
            logger.info("No queue snapshot found, starting empty", path=str(self.path))
            return None
        return _decode_snapshot(raw, str(self.path))


class RedisSnapshotStore:
    """Snapshot store keeping the whole JSON document under a single Redis key."""

    def __init__(self, redis_client: RedisClient, key: str = "wadispatch:queues:snapshot") -> None:
        self._redis_client = redis_client
        self.key = key

    async def save(self, snapshot: Snapshot) -> None:
        data = snapshot.model_dump_json()
        async with self._redis_client.aget_client() as client:
            await client.set(self.key, data)
        logger.debug("Queue snapshot saved", key=self.key, queues=len(snapshot.queues))

    async def load(self) -> Snapshot | None:
        async with self._redis_client.aget_client() as client:
            raw = await client.get(self.key)
        if raw is None:
            logger.info("No queue snapshot found, starting empty", key=self.key)
            return None
        return _decode_snapshot(raw, self.key)
