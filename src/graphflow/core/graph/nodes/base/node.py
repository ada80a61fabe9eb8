"""Node and edge descriptors for the graph builder.

A Node is a named unit of work: a handler called as ``handler(ctx, state)``
that returns a partial state update (or None for no update). Handlers may be
coroutine functions or plain functions; plain functions run in a worker
thread so they never block the event loop.

Edges connect nodes. A static Edge always fires; a ConditionalEdge calls
``router(ctx, state)`` after the superstep's merge and follows the returned
node name (or ``END``).
"""

import asyncio
import functools
import inspect
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Optional, Union

from pydantic import BaseModel, Field, field_validator

from graphflow.core.graph.state import NodeEvent, RunContext

END = "__end__"
START = "__start__"
RESERVED_NAMES = frozenset({END, START})

Handler = Callable[[RunContext, Any], Union[Any, Awaitable[Any]]]
Router = Callable[[RunContext, Any], Union[str, Awaitable[str]]]
Listener = Callable[[NodeEvent], Union[None, Awaitable[None]]]


def is_async_callable(func: Callable) -> bool:
    """True if calling ``func`` returns a coroutine."""
    while isinstance(func, functools.partial):
        func = func.func
    if inspect.iscoroutinefunction(func):
        return True
    return inspect.iscoroutinefunction(getattr(func, "__call__", None))


async def call_maybe_async(func: Callable, *args: Any, offload: bool = True) -> Any:
    """Await ``func(*args)``.

    Plain functions run in a worker thread unless ``offload`` is False.
    """
    if is_async_callable(func):
        return await func(*args)
    if offload:
        result = await asyncio.to_thread(func, *args)
    else:
        result = func(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


class Node(BaseModel):
    """A named workflow step.

    Attributes:
        name: Unique name within the graph
        description: Human-readable purpose of the step
        handler: ``handler(ctx, state) -> partial state | None``
        metadata: Free-form data for tooling (e.g. visualization)
    """
    name: str
    description: str = ""
    handler: Callable[..., Any]
    metadata: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        arbitrary_types_allowed = True
        frozen = True

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        if not value:
            raise ValueError("node name must not be empty")
        return value

    async def run(self, ctx: RunContext, state: Any) -> Any:
        return await call_maybe_async(self.handler, ctx, state)


class Edge(BaseModel):
    """Unconditional transition from ``source`` to ``target`` (or END)."""
    source: str
    target: str

    class Config:
        frozen = True


class ConditionalEdge(BaseModel):
    """Data-dependent transition chosen by ``router`` after a superstep.

    Attributes:
        source: Node whose completion triggers the router
        router: ``router(ctx, state) -> node name | END``
        path_map: Optional mapping from router outputs to node names
    """
    source: str
    router: Callable[..., Any]
    path_map: Optional[Dict[str, str]] = None

    class Config:
        arbitrary_types_allowed = True
        frozen = True

    def resolve(self, choice: str) -> str:
        """Translate a router output through ``path_map``."""
        if self.path_map is None:
            return choice
        return self.path_map.get(choice, choice)

    async def route(self, ctx: RunContext, state: Any) -> str:
        return self.resolve(await call_maybe_async(self.router, ctx, state, offload=False))


class NodeListener(BaseModel):
    """Callback told when nodes start, complete or fail.

    Attributes:
        callback: ``callback(event)``; may be a coroutine function
        nodes: Only these nodes are reported; every node when None
    """
    callback: Callable[..., Any]
    nodes: Optional[FrozenSet[str]] = None

    class Config:
        arbitrary_types_allowed = True
        frozen = True

    def wants(self, node: str) -> bool:
        return self.nodes is None or node in self.nodes

    async def notify(self, event: NodeEvent) -> None:
        await call_maybe_async(self.callback, event, offload=False)
