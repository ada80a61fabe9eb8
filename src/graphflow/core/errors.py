"""Exception taxonomy for graphflow.

Errors fall into two families that callers can tell apart by type:

1. CompileError: the graph itself is wrong. Raised by the builder and by
   ``StateGraph.compile()``, never while a graph is running.
2. ExecutionError: a run went wrong (a handler raised, a router returned an
   unknown node, the run was cancelled). Raised by ``Runnable.invoke`` and
   ``Runnable.resume``.

Checkpoint persistence and serialization have their own branches.
``GraphInterrupt`` is not an error in the usual sense: it is how a paused
execution is reported to the caller.
"""

from typing import Any, List, Optional


class GraphFlowError(Exception):
    """Base class for all graphflow errors."""


###################################################################
# Build time
###################################################################

class CompileError(GraphFlowError):
    """The graph topology is invalid.

    Attributes:
        errors: Every problem found, one message per entry
    """

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = list(errors) if errors else [message]


class DuplicateNodeError(CompileError):
    """A node name was declared twice."""


class UnknownNodeError(CompileError):
    """A node name was referenced before being declared."""


class DuplicateEdgeError(CompileError):
    """A node was given a second conditional edge."""


###################################################################
# Run time
###################################################################

class ExecutionError(GraphFlowError):
    """A run failed.

    Attributes:
        node: Name of the node (or router source) that failed, if known
    """

    def __init__(self, message: str, node: Optional[str] = None):
        super().__init__(message)
        self.node = node


class NodeExecutionError(ExecutionError):
    """A node handler raised."""


class RouterError(ExecutionError):
    """A router raised or returned a name that is not a declared node."""


class RecursionLimitError(ExecutionError):
    """The run exceeded the configured number of supersteps."""


class ExecutionCancelledError(ExecutionError):
    """The run's cancellation token was cancelled or its deadline passed."""


class NodeInterrupt(GraphFlowError):
    """Raised inside a handler by ``interrupt()`` to pause the run.

    Attributes:
        value: Payload surfaced to the caller (e.g. a question for a human)
        node: Filled in by the engine with the interrupting node's name
    """

    def __init__(self, value: Any = None, node: Optional[str] = None):
        super().__init__(f"node interrupted: {value!r}")
        self.value = value
        self.node = node


class GraphInterrupt(GraphFlowError):
    """An execution paused before, inside, or after a node.

    The paused state has been checkpointed (when a store is configured), and
    ``Runnable.resume(execution_id, checkpoint_id)`` continues from it.
    """

    def __init__(
        self,
        node: str,
        state: Any,
        next_nodes: List[str],
        execution_id: str,
        checkpoint_id: Optional[str] = None,
        value: Any = None,
    ):
        super().__init__(f"execution {execution_id} interrupted at node {node}")
        self.node = node
        self.state = state
        self.next_nodes = list(next_nodes)
        self.execution_id = execution_id
        self.checkpoint_id = checkpoint_id
        self.value = value


###################################################################
# Persistence
###################################################################

class CheckpointError(GraphFlowError):
    """Base class for checkpoint store errors."""


class NotFoundError(CheckpointError):
    """No checkpoint exists with the requested id."""


class StoreError(CheckpointError):
    """A backend operation failed (I/O, SQL, network)."""


class SerializationError(GraphFlowError):
    """A value could not be marshalled or unmarshalled."""


class UnknownTypeError(SerializationError):
    """An envelope names a type that is not registered."""


class TypeRegistrationError(SerializationError):
    """A type registration was rejected."""
