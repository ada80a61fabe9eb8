"""Checkpoint model and store interface.

A checkpoint is a snapshot of an execution's state taken after a superstep.
Stores group checkpoints by the identifiers found in their metadata:
``execution_id``, ``thread_id`` and ``session_id``. ``list(key)`` and
``clear(key)`` match a checkpoint when any of those equals ``key``.
"""

import abc
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Set
from uuid import uuid4

from pydantic import BaseModel, Field

GROUP_KEYS = ("execution_id", "thread_id", "session_id")


def new_checkpoint_id() -> str:
    """Generate a fresh checkpoint id."""
    return f"checkpoint_{uuid4()}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Checkpoint(BaseModel):
    """A durable snapshot of workflow state.

    Attributes:
        id: Unique checkpoint id
        node_name: Node(s) whose superstep produced this snapshot
        state: The workflow state value
        metadata: Grouping identifiers plus arbitrary context
        timestamp: Creation time (UTC)
        version: Monotonic counter within one execution
    """
    id: str = Field(default_factory=new_checkpoint_id)
    node_name: str = ""
    state: Any = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)
    version: int = 0

    class Config:
        arbitrary_types_allowed = True

    @property
    def execution_id(self) -> Optional[str]:
        return self.metadata.get("execution_id")

    def group_keys(self) -> Set[str]:
        """Every non-empty grouping identifier in the metadata."""
        return checkpoint_keys(self.metadata)

    def matches(self, key: str) -> bool:
        return key in self.group_keys()


def checkpoint_keys(metadata: Dict[str, Any]) -> Set[str]:
    """Grouping identifiers present in ``metadata``."""
    keys = set()
    for field in GROUP_KEYS:
        value = metadata.get(field)
        if isinstance(value, str) and value:
            keys.add(value)
    return keys


def _sort_key(checkpoint: Checkpoint):
    timestamp = checkpoint.timestamp
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return (checkpoint.version, timestamp)


def sort_checkpoints(checkpoints: Iterable[Checkpoint]) -> List[Checkpoint]:
    """Order checkpoints ascending by version, then timestamp."""
    return sorted(checkpoints, key=_sort_key)


class CheckpointStore(abc.ABC):
    """Persistence interface shared by every backend.

    Implementations must be safe for concurrent use by many executions.
    Backend failures are raised as ``StoreError``.
    """

    @abc.abstractmethod
    async def save(self, checkpoint: Checkpoint) -> None:
        """Insert or replace the checkpoint with ``checkpoint.id``."""

    @abc.abstractmethod
    async def load(self, checkpoint_id: str) -> Checkpoint:
        """Load a checkpoint.

        Raises:
            NotFoundError: If no checkpoint has this id
        """

    @abc.abstractmethod
    async def list(self, key: str) -> List[Checkpoint]:
        """All checkpoints grouped under ``key``, ascending by version."""

    @abc.abstractmethod
    async def delete(self, checkpoint_id: str) -> None:
        """Remove a checkpoint; unknown ids are ignored."""

    @abc.abstractmethod
    async def clear(self, key: str) -> None:
        """Remove every checkpoint grouped under ``key``."""

    async def close(self) -> None:
        """Release backend resources."""

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()
