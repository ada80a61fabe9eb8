"""Run-time state for graph executions.

This module provides:
1. CancellationToken: cooperative cancellation with an optional deadline
2. RunContext: what every handler and router receives besides the state
3. interrupt(): pause a run from inside a handler (human in the loop)
4. Command: a handler result that also picks the next nodes
5. StepEvent: one finished superstep, as yielded by ``Runnable.astream``
6. NodeEvent: a node starting, completing or failing, as seen by listeners
7. StateSnapshot: a checkpointed state, as returned by ``Runnable.get_state``
"""

import time
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from graphflow.core.errors import ExecutionCancelledError, NodeInterrupt


class CancellationToken:
    """Cooperative cancellation signal.

    The engine checks the token between supersteps; long-running handlers
    should check ``ctx.cancelled`` themselves. A child token is cancelled
    whenever its parent is, so one caller token can govern many runs.

    Args:
        timeout: Seconds from now after which the token counts as cancelled
        parent: Token whose cancellation propagates to this one
    """

    def __init__(self, timeout: Optional[float] = None, parent: Optional["CancellationToken"] = None):
        self._parent = parent
        self._deadline = time.monotonic() + timeout if timeout is not None else None
        self._reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        if self._reason is None:
            self._reason = reason

    @property
    def reason(self) -> Optional[str]:
        if self._reason is not None:
            return self._reason
        if self._deadline is not None and time.monotonic() >= self._deadline:
            return "deadline exceeded"
        if self._parent is not None:
            return self._parent.reason
        return None

    @property
    def cancelled(self) -> bool:
        return self.reason is not None

    def child(self, timeout: Optional[float] = None) -> "CancellationToken":
        return CancellationToken(timeout=timeout, parent=self)

    def raise_if_cancelled(self) -> None:
        reason = self.reason
        if reason is not None:
            raise ExecutionCancelledError(f"execution cancelled: {reason}")


class RunContext(BaseModel):
    """Context passed to handlers and routers.

    Attributes:
        execution_id: Id of the running execution
        thread_id: Optional thread grouping key
        session_id: Optional session grouping key
        node: Name of the node being run, or the source node for routers
        step: Number of the current superstep, starting at 1
        metadata: Caller metadata from ``RunConfig``
        resume_value: Answer supplied to ``resume`` for a pending ``interrupt``
        token: The execution's cancellation token
    """
    execution_id: str
    thread_id: Optional[str] = None
    session_id: Optional[str] = None
    node: Optional[str] = None
    step: int = 0
    metadata: Dict[str, Any] = Field(default_factory=dict)
    resume_value: Any = None
    token: CancellationToken = Field(default_factory=CancellationToken)

    class Config:
        arbitrary_types_allowed = True

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled

    def raise_if_cancelled(self) -> None:
        self.token.raise_if_cancelled()


def interrupt(ctx: RunContext, value: Any = None) -> Any:
    """Pause the run and ask the caller for input.

    On the first pass this raises ``NodeInterrupt``; the engine checkpoints
    the state and surfaces ``value`` through ``GraphInterrupt``. When the run
    is resumed with a ``resume_value``, the node runs again and this call
    returns that value instead.

    Example:
        async def approve(ctx, state):
            answer = interrupt(ctx, {"question": "ship it?"})
            return {"approved": answer == "yes"}
    """
    if ctx.resume_value is not None:
        return ctx.resume_value
    raise NodeInterrupt(value, node=ctx.node)


class Command(BaseModel):
    """Handler result that updates the state and chooses where to go next.

    ``update`` is merged exactly like a plain return value. When ``goto`` is
    set it replaces the node's static edges or router for this superstep; it
    may name one node, several nodes, or END. An empty list ends the branch.

    Example:
        async def triage(ctx, state):
            if state["urgent"]:
                return Command(update={"queue": "pager"}, goto="escalate")
            return {"queue": "inbox"}
    """
    update: Any = None
    goto: Optional[Union[str, List[str]]] = None

    class Config:
        arbitrary_types_allowed = True
        frozen = True

    def targets(self) -> Optional[List[str]]:
        """``goto`` as a list, or None when routing is left to the graph."""
        if self.goto is None:
            return None
        if isinstance(self.goto, str):
            return [self.goto]
        return list(self.goto)


class StepEvent(BaseModel):
    """One completed superstep."""
    step: int
    nodes: List[str]
    state: Any = None
    next_nodes: List[str] = Field(default_factory=list)
    checkpoint_id: Optional[str] = None

    class Config:
        arbitrary_types_allowed = True


class NodeEventType(str, Enum):
    START = "start"
    COMPLETE = "complete"
    ERROR = "error"


class NodeEvent(BaseModel):
    """A node run starting, completing or failing.

    Attributes:
        type: Which transition happened
        node: Name of the node
        execution_id: Owning execution
        step: Superstep number
        state: The handler's input for START, its return value for COMPLETE
        error: The raised error for ERROR
        duration: Seconds the handler ran, for COMPLETE and ERROR
    """
    type: NodeEventType
    node: str
    execution_id: str
    step: int
    state: Any = None
    error: Optional[BaseException] = None
    duration: Optional[float] = None

    class Config:
        arbitrary_types_allowed = True


class StateSnapshot(BaseModel):
    """A checkpointed state of an execution.

    Attributes:
        values: The state value
        next: Nodes that would run next (empty when the execution finished)
        checkpoint_id: Id of the checkpoint the snapshot was read from
        execution_id: Owning execution
        version: Checkpoint version
        metadata: Checkpoint metadata
        created_at: Checkpoint timestamp
    """
    values: Any = None
    next: List[str] = Field(default_factory=list)
    checkpoint_id: str
    execution_id: str
    version: int = 0
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None

    class Config:
        arbitrary_types_allowed = True
