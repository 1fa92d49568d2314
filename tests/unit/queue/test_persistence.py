"""Unit tests for snapshot stores."""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING
from unittest.mock import AsyncMock, MagicMock

import pytest

from wadispatch.queue import (
    JsonFileStore,
    Message,
    MessagePriority,
    PersistenceStore,
    QueueConfig,
    RedisSnapshotStore,
    Snapshot,
)
from wadispatch.queue.domain import GlobalStats, QueueSnapshot, QueueStats

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def snapshot() -> Snapshot:
    messages = [
        Message(payload={"to": "573001234567", "text": "hola"}, priority=MessagePriority.HIGH, attempts=1),
        Message(payload={"to": "573009876543", "text": "adios"}, metadata={"campaign": "spring"}),
    ]
    return Snapshot(
        queues={
            "wa-out": QueueSnapshot(
                messages=messages,
                config=QueueConfig(dead_letter_queue="wa-dlq", batch_size=5),
                stats=QueueStats(processed=4, failed=1, pending=2),
            ),
            "wa-dlq": QueueSnapshot(),
        },
        stats=GlobalStats(total_processed=4, total_failed=1, queues_created=2),
    )


@pytest.fixture
def mock_redis() -> MagicMock:
    redis = MagicMock()
    redis.set = AsyncMock(return_value=True)
    redis.get = AsyncMock(return_value=None)
    return redis


@pytest.fixture
def mock_redis_client(mock_redis: MagicMock) -> MagicMock:
    client = MagicMock()

    @asynccontextmanager
    async def mock_aget_client() -> AsyncIterator[MagicMock]:
        yield mock_redis

    client.aget_client = mock_aget_client
    return client


# =============================================================================
# TEST CLASSES
# =============================================================================


class TestJsonFileStore:
    """Tests for JsonFileStore."""

    def test_satisfies_protocol(self, tmp_path: Path) -> None:
        assert isinstance(JsonFileStore(tmp_path / "q.json"), PersistenceStore)

    @pytest.mark.asyncio
    async def test_save_then_load_preserves_messages(self, tmp_path: Path, snapshot: Snapshot) -> None:
        store = JsonFileStore(tmp_path / "data" / "message-queues.json")

        await store.save(snapshot)
        loaded = await store.load()

        assert loaded is not None
        assert set(loaded.queues) == {"wa-out", "wa-dlq"}
        out = loaded.queues["wa-out"]
        assert [m.id for m in out.messages] == [m.id for m in snapshot.queues["wa-out"].messages]
        assert out.messages[0].priority is MessagePriority.HIGH
        assert out.messages[0].attempts == 1
        assert out.messages[1].metadata == {"campaign": "spring"}
        assert out.config.dead_letter_queue == "wa-dlq"
        assert out.stats.processed == 4
        assert loaded.stats.total_failed == 1

    @pytest.mark.asyncio
    async def test_written_document_layout(self, tmp_path: Path, snapshot: Snapshot) -> None:
        path = tmp_path / "q.json"
        await JsonFileStore(path).save(snapshot)

        document = json.loads(path.read_text(encoding="utf-8"))

        assert set(document) == {"queues", "stats", "timestamp"}
        assert set(document["queues"]["wa-out"]) == {"messages", "config", "stats"}

    @pytest.mark.asyncio
    async def test_save_leaves_no_temp_files(self, tmp_path: Path, snapshot: Snapshot) -> None:
        store = JsonFileStore(tmp_path / "q.json")

        await store.save(snapshot)
        await store.save(snapshot)

        assert [p.name for p in tmp_path.iterdir()] == ["q.json"]

    @pytest.mark.asyncio
    async def test_load_missing_file_returns_none(self, tmp_path: Path) -> None:
        assert await JsonFileStore(tmp_path / "absent.json").load() is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", ["", "{not json", '{"queues": {"wa-out": {"messages": [{"attempts": -1}]}}}'])
    async def test_load_corrupt_file_returns_none(self, tmp_path: Path, content: str) -> None:
        path = tmp_path / "q.json"
        path.write_text(content, encoding="utf-8")

        assert await JsonFileStore(path).load() is None


class TestRedisSnapshotStore:
    """Tests for RedisSnapshotStore."""

    @pytest.mark.asyncio
    async def test_save_writes_json_under_key(
        self, mock_redis_client: MagicMock, mock_redis: MagicMock, snapshot: Snapshot
    ) -> None:
        store = RedisSnapshotStore(mock_redis_client, key="test:snapshot")

        await store.save(snapshot)

        mock_redis.set.assert_awaited_once()
        key, data = mock_redis.set.call_args.args
        assert key == "test:snapshot"
        assert json.loads(data)["stats"]["total_processed"] == 4

    @pytest.mark.asyncio
    async def test_load_missing_key_returns_none(self, mock_redis_client: MagicMock, mock_redis: MagicMock) -> None:
        store = RedisSnapshotStore(mock_redis_client)

        assert await store.load() is None
        mock_redis.get.assert_awaited_once_with("wadispatch:queues:snapshot")

    @pytest.mark.asyncio
    async def test_load_decodes_stored_snapshot(
        self, mock_redis_client: MagicMock, mock_redis: MagicMock, snapshot: Snapshot
    ) -> None:
        mock_redis.get.return_value = snapshot.model_dump_json()

        loaded = await RedisSnapshotStore(mock_redis_client).load()

        assert loaded is not None
        assert len(loaded.queues["wa-out"].messages) == 2

    @pytest.mark.asyncio
    async def test_load_corrupt_value_returns_none(self, mock_redis_client: MagicMock, mock_redis: MagicMock) -> None:
        mock_redis.get.return_value = "garbage"

        assert await RedisSnapshotStore(mock_redis_client).load() is None
