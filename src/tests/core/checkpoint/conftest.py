"""Shared fixtures for checkpoint store tests."""

import fakeredis
import pytest

from graphflow.core.checkpoint import (
    FileCheckpointStore,
    MemoryCheckpointStore,
    RedisCheckpointStore,
    SQLCheckpointStore,
    SQLiteCheckpointStore,
)

BACKENDS = ["memory", "sqlite", "sql", "redis", "file"]


@pytest.fixture
def redis_client():
    """Fixture providing an isolated fake Redis client."""
    return fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer())


@pytest.fixture(params=BACKENDS)
async def store(request, tmp_path, redis_client):
    """Fixture providing each checkpoint store backend in turn."""
    backend = request.param
    if backend == "memory":
        store = MemoryCheckpointStore()
    elif backend == "sqlite":
        store = SQLiteCheckpointStore(tmp_path / "checkpoints.db")
    elif backend == "sql":
        store = SQLCheckpointStore(f"sqlite:///{tmp_path / 'sql_checkpoints.db'}")
    elif backend == "redis":
        store = RedisCheckpointStore(client=redis_client)
    else:
        store = FileCheckpointStore(tmp_path / "checkpoints")
    yield store
    await store.close()
