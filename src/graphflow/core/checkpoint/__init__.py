"""Checkpoint persistence: model, store interface, backends and type registry."""

from graphflow.core.checkpoint.base import Checkpoint, CheckpointStore, sort_checkpoints
from graphflow.core.checkpoint.file import FileCheckpointStore
from graphflow.core.checkpoint.memory import MemoryCheckpointStore
from graphflow.core.checkpoint.redis_store import RedisCheckpointStore
from graphflow.core.checkpoint.registry import (
    TypeRegistry,
    get_type_registry,
    register_type,
    registered_type,
)
from graphflow.core.checkpoint.serde import CheckpointSerializer
from graphflow.core.checkpoint.sql import SQLCheckpointStore
from graphflow.core.checkpoint.sqlite import SQLiteCheckpointStore

__all__ = [
    "Checkpoint",
    "CheckpointStore",
    "CheckpointSerializer",
    "sort_checkpoints",

    # Backends
    "MemoryCheckpointStore",
    "SQLiteCheckpointStore",
    "SQLCheckpointStore",
    "RedisCheckpointStore",
    "FileCheckpointStore",

    # Type registry
    "TypeRegistry",
    "get_type_registry",
    "register_type",
    "registered_type",
]
