"""Graph package initialization.

Exposes the builder, the compiled runnable, schemas and run-time helpers.
"""

from graphflow.core.graph.base import StateGraph
from graphflow.core.graph.nodes.base.node import END, START, ConditionalEdge, Edge, Node, NodeListener
from graphflow.core.graph.runnable import CompiledNode, Runnable
from graphflow.core.graph.schema import (
    MapSchema,
    OverwriteSchema,
    StateSchema,
    StructSchema,
    add,
    append,
    infer_schema,
    keep_current,
    max_value,
    merge_dict,
    min_value,
    overwrite,
    set_union,
)
from graphflow.core.graph.state import (
    CancellationToken,
    Command,
    NodeEvent,
    NodeEventType,
    RunContext,
    StateSnapshot,
    StepEvent,
    interrupt,
)
from graphflow.core.graph.subgraph import Subgraph
from graphflow.core.graph.viz import GraphVisualizer

__all__ = [
    # Core classes
    "StateGraph",
    "Runnable",
    "CompiledNode",
    "Node",
    "Edge",
    "ConditionalEdge",
    "NodeListener",
    "Subgraph",
    "END",
    "START",

    # Schemas and reducers
    "StateSchema",
    "MapSchema",
    "StructSchema",
    "OverwriteSchema",
    "infer_schema",
    "overwrite",
    "keep_current",
    "append",
    "add",
    "max_value",
    "min_value",
    "set_union",
    "merge_dict",

    # Run time
    "RunContext",
    "CancellationToken",
    "StateSnapshot",
    "StepEvent",
    "Command",
    "NodeEvent",
    "NodeEventType",
    "interrupt",
    "GraphVisualizer",
]
