"""graphflow - typed graph execution engine for stateful workflows."""

from graphflow.core.checkpoint import (
    Checkpoint,
    CheckpointStore,
    FileCheckpointStore,
    MemoryCheckpointStore,
    RedisCheckpointStore,
    SQLCheckpointStore,
    SQLiteCheckpointStore,
    TypeRegistry,
    get_type_registry,
    register_type,
    registered_type,
)
from graphflow.core.config import GraphConfig, RunConfig
from graphflow.core.errors import (
    CompileError,
    DuplicateNodeError,
    ExecutionError,
    GraphFlowError,
    GraphInterrupt,
    NotFoundError,
    SerializationError,
    StoreError,
    UnknownNodeError,
    UnknownTypeError,
)
from graphflow.core.graph import (
    END,
    START,
    CancellationToken,
    Command,
    MapSchema,
    NodeEvent,
    RunContext,
    Runnable,
    StateGraph,
    StructSchema,
    interrupt,
)
from graphflow.core.logging import configure_logging, LogLevel, LogComponent

__all__ = [
    'StateGraph',
    'Runnable',
    'END',
    'START',
    'MapSchema',
    'StructSchema',
    'RunContext',
    'CancellationToken',
    'Command',
    'NodeEvent',
    'interrupt',
    'GraphConfig',
    'RunConfig',
    'Checkpoint',
    'CheckpointStore',
    'MemoryCheckpointStore',
    'SQLiteCheckpointStore',
    'SQLCheckpointStore',
    'RedisCheckpointStore',
    'FileCheckpointStore',
    'TypeRegistry',
    'get_type_registry',
    'register_type',
    'registered_type',
    'GraphFlowError',
    'CompileError',
    'DuplicateNodeError',
    'UnknownNodeError',
    'ExecutionError',
    'GraphInterrupt',
    'NotFoundError',
    'SerializationError',
    'StoreError',
    'UnknownTypeError',
    'configure_logging',
    'LogLevel',
    'LogComponent'
]
