"""In-memory checkpoint store."""

import threading
from typing import Dict, List

from graphflow.core.checkpoint.base import Checkpoint, CheckpointStore, sort_checkpoints
from graphflow.core.errors import NotFoundError
from graphflow.core.logging import LogComponent, get_logger

logger = get_logger(LogComponent.CHECKPOINT)


class MemoryCheckpointStore(CheckpointStore):
    """Lock-guarded dict of checkpoints. Not durable across restarts.

    Checkpoints are deep-copied on the way in and out so callers never share
    state objects with the store.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._checkpoints: Dict[str, Checkpoint] = {}

    async def save(self, checkpoint: Checkpoint) -> None:
        stored = checkpoint.model_copy(deep=True)
        with self._lock:
            self._checkpoints[stored.id] = stored
        logger.debug(f"Saved checkpoint {stored.id} (version {stored.version})")

    async def load(self, checkpoint_id: str) -> Checkpoint:
        with self._lock:
            stored = self._checkpoints.get(checkpoint_id)
        if stored is None:
            raise NotFoundError(f"checkpoint not found: {checkpoint_id}")
        return stored.model_copy(deep=True)

    async def list(self, key: str) -> List[Checkpoint]:
        with self._lock:
            matching = [cp for cp in self._checkpoints.values() if cp.matches(key)]
        return [cp.model_copy(deep=True) for cp in sort_checkpoints(matching)]

    async def delete(self, checkpoint_id: str) -> None:
        with self._lock:
            self._checkpoints.pop(checkpoint_id, None)

    async def clear(self, key: str) -> None:
        with self._lock:
            doomed = [cp_id for cp_id, cp in self._checkpoints.items() if cp.matches(key)]
            for cp_id in doomed:
                del self._checkpoints[cp_id]
        logger.debug(f"Cleared {len(doomed)} checkpoints for {key}")

    def __len__(self) -> int:
        with self._lock:
            return len(self._checkpoints)
