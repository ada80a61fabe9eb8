"""Node and edge descriptors."""

from graphflow.core.graph.nodes.base.node import (
    END,
    START,
    ConditionalEdge,
    Edge,
    Node,
    NodeListener,
    call_maybe_async,
    is_async_callable,
)

__all__ = [
    "END",
    "START",
    "Node",
    "Edge",
    "ConditionalEdge",
    "NodeListener",
    "call_maybe_async",
    "is_async_callable",
]
