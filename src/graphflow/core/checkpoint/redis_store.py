"""Redis checkpoint store.

Layout, with the default ``graphflow:`` prefix:

- ``graphflow:checkpoint:<id>``: the serialized checkpoint document
- ``graphflow:index:<key>``: a set of checkpoint ids for every grouping key
  (execution, thread and session id) the checkpoint carries

Document and index updates go through one transactional pipeline. With a TTL
both the document and its index sets expire; ``list`` skips index members
whose document is already gone.
"""

from typing import Iterable, List, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from graphflow.core.checkpoint.base import (
    Checkpoint,
    CheckpointStore,
    checkpoint_keys,
    sort_checkpoints,
)
from graphflow.core.checkpoint.serde import CheckpointSerializer
from graphflow.core.errors import NotFoundError, StoreError
from graphflow.core.logging import LogComponent, get_logger

logger = get_logger(LogComponent.CHECKPOINT)

DEFAULT_PREFIX = "graphflow:"


class RedisCheckpointStore(CheckpointStore):
    """Checkpoint store backed by Redis.

    Args:
        client: An existing ``redis.asyncio.Redis`` client
        url: Connection URL used when no client is given
        prefix: Key prefix
        ttl: Expiry in seconds for checkpoints and their indexes
        serializer: Serializer for checkpoint documents
    """

    def __init__(
        self,
        client: Optional[aioredis.Redis] = None,
        url: str = "redis://localhost:6379/0",
        prefix: str = DEFAULT_PREFIX,
        ttl: Optional[int] = None,
        serializer: Optional[CheckpointSerializer] = None,
    ):
        if ttl is not None and ttl <= 0:
            raise ValueError("ttl must be positive")
        self._owns_client = client is None
        self.client = client if client is not None else aioredis.from_url(url)
        self.prefix = prefix
        self.ttl = ttl
        self.serializer = serializer or CheckpointSerializer()

    def checkpoint_key(self, checkpoint_id: str) -> str:
        return f"{self.prefix}checkpoint:{checkpoint_id}"

    def index_key(self, key: str) -> str:
        return f"{self.prefix}index:{key}"

    async def save(self, checkpoint: Checkpoint) -> None:
        data = self.serializer.dumps(checkpoint)
        keys = checkpoint_keys(checkpoint.metadata)
        try:
            # Drop index entries the previous version of this id no longer carries
            previous = await self.client.get(self.checkpoint_key(checkpoint.id))
            stale = set()
            if previous is not None:
                stale = self.serializer.loads(previous).group_keys() - keys

            async with self.client.pipeline(transaction=True) as pipe:
                pipe.set(self.checkpoint_key(checkpoint.id), data, ex=self.ttl)
                for key in stale:
                    pipe.srem(self.index_key(key), checkpoint.id)
                for key in keys:
                    pipe.sadd(self.index_key(key), checkpoint.id)
                    if self.ttl is not None:
                        pipe.expire(self.index_key(key), self.ttl)
                await pipe.execute()
        except RedisError as e:
            raise StoreError(f"redis save failed: {e}") from e
        logger.debug(f"Saved checkpoint {checkpoint.id} (version {checkpoint.version})")

    async def load(self, checkpoint_id: str) -> Checkpoint:
        try:
            data = await self.client.get(self.checkpoint_key(checkpoint_id))
        except RedisError as e:
            raise StoreError(f"redis load failed: {e}") from e
        if data is None:
            raise NotFoundError(f"checkpoint not found: {checkpoint_id}")
        return self.serializer.loads(data)

    async def list(self, key: str) -> List[Checkpoint]:
        try:
            ids = await self._members(key)
            if not ids:
                return []
            documents = await self.client.mget([self.checkpoint_key(cp_id) for cp_id in ids])
        except RedisError as e:
            raise StoreError(f"redis list failed: {e}") from e
        checkpoints = self._matching(documents, key)
        return sort_checkpoints(checkpoints)

    async def delete(self, checkpoint_id: str) -> None:
        try:
            data = await self.client.get(self.checkpoint_key(checkpoint_id))
            if data is None:
                return
            await self._remove([self.serializer.loads(data)])
        except RedisError as e:
            raise StoreError(f"redis delete failed: {e}") from e

    async def clear(self, key: str) -> None:
        try:
            ids = await self._members(key)
            checkpoints = []
            if ids:
                documents = await self.client.mget([self.checkpoint_key(cp_id) for cp_id in ids])
                checkpoints = self._matching(documents, key)
            await self._remove(checkpoints, extra_index=key)
        except RedisError as e:
            raise StoreError(f"redis clear failed: {e}") from e
        logger.debug(f"Cleared {len(checkpoints)} checkpoints for {key}")

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    def _matching(self, documents, key: str) -> List[Checkpoint]:
        # Index sets can briefly hold ids whose document was re-saved under other keys
        loaded = [self.serializer.loads(doc) for doc in documents if doc is not None]
        return [cp for cp in loaded if cp.matches(key)]

    async def _members(self, key: str) -> List[str]:
        members = await self.client.smembers(self.index_key(key))
        return [m.decode() if isinstance(m, bytes) else m for m in members]

    async def _remove(self, checkpoints: Iterable[Checkpoint], extra_index: Optional[str] = None) -> None:
        async with self.client.pipeline(transaction=True) as pipe:
            for checkpoint in checkpoints:
                pipe.delete(self.checkpoint_key(checkpoint.id))
                for key in checkpoint.group_keys():
                    pipe.srem(self.index_key(key), checkpoint.id)
            if extra_index is not None:
                pipe.delete(self.index_key(extra_index))
            await pipe.execute()
