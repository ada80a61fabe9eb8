"""JSON-file checkpoint store: one document per checkpoint in a directory."""

import asyncio
import functools
import os
import threading
from pathlib import Path
from typing import List, Optional, Union
from urllib.parse import quote

from graphflow.core.checkpoint.base import Checkpoint, CheckpointStore, sort_checkpoints
from graphflow.core.checkpoint.serde import CheckpointSerializer
from graphflow.core.errors import NotFoundError, StoreError
from graphflow.core.logging import LogComponent, get_logger

logger = get_logger(LogComponent.CHECKPOINT)


class FileCheckpointStore(CheckpointStore):
    """Stores each checkpoint as ``<directory>/<quoted id>.json``.

    Suited to local development; ``list`` and ``clear`` scan the directory.
    """

    def __init__(
        self,
        directory: Union[str, Path],
        serializer: Optional[CheckpointSerializer] = None,
    ):
        self.directory = Path(os.path.expanduser(str(directory)))
        self.serializer = serializer or CheckpointSerializer()
        self._lock = threading.Lock()

    def _path(self, checkpoint_id: str) -> Path:
        return self.directory / f"{quote(checkpoint_id, safe='')}.json"

    async def _run(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(self._locked, func, *args))

    def _locked(self, func, *args):
        with self._lock:
            try:
                return func(*args)
            except OSError as e:
                raise StoreError(f"file store {func.__name__.strip('_')} failed: {e}") from e

    async def save(self, checkpoint: Checkpoint) -> None:
        data = self.serializer.dumps(checkpoint)
        await self._run(self._save_sync, checkpoint.id, data)
        logger.debug(f"Saved checkpoint {checkpoint.id} (version {checkpoint.version})")

    def _save_sync(self, checkpoint_id: str, data: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(checkpoint_id)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(data, encoding="utf-8")
        tmp.replace(path)

    async def load(self, checkpoint_id: str) -> Checkpoint:
        data = await self._run(self._load_sync, checkpoint_id)
        if data is None:
            raise NotFoundError(f"checkpoint not found: {checkpoint_id}")
        return self.serializer.loads(data)

    def _load_sync(self, checkpoint_id: str) -> Optional[str]:
        path = self._path(checkpoint_id)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    async def list(self, key: str) -> List[Checkpoint]:
        documents = await self._run(self._read_all_sync)
        checkpoints = [self.serializer.loads(doc) for doc in documents]
        return sort_checkpoints(cp for cp in checkpoints if cp.matches(key))

    def _read_all_sync(self) -> List[str]:
        if not self.directory.exists():
            return []
        return [path.read_text(encoding="utf-8") for path in sorted(self.directory.glob("*.json"))]

    async def delete(self, checkpoint_id: str) -> None:
        await self._run(self._delete_sync, [checkpoint_id])

    def _delete_sync(self, checkpoint_ids: List[str]) -> None:
        for checkpoint_id in checkpoint_ids:
            self._path(checkpoint_id).unlink(missing_ok=True)

    async def clear(self, key: str) -> None:
        for checkpoint in await self.list(key):
            await self.delete(checkpoint.id)
