"""Graph builder and compiler.

This module defines ``StateGraph``, the mutable builder for workflows. The
builder lets you:
1. Declare named nodes with handler functions
2. Connect them with static edges or conditional (router) edges
3. Choose the entry point and the state schema
4. Compile everything into an immutable, concurrency-safe ``Runnable``

Example:
    ```python
    graph = StateGraph()
    graph.add_node("check_age", "Inspect the age", check_age)
    graph.add_node("adult_path", "Handle adults", adult)
    graph.add_node("minor_path", "Handle minors", minor)

    graph.add_conditional_edge(
        "check_age",
        lambda ctx, state: "adult_path" if state["age"] >= 18 else "minor_path",
    )
    graph.add_edge("adult_path", END)
    graph.add_edge("minor_path", END)
    graph.set_entry_point("check_age")

    app = graph.compile()
    result = await app.invoke({"age": 25})
    ```
"""

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from pydantic import BaseModel, Field, PrivateAttr

from graphflow.core.checkpoint.base import CheckpointStore
from graphflow.core.config import GraphConfig
from graphflow.core.errors import (
    CompileError,
    DuplicateEdgeError,
    DuplicateNodeError,
    UnknownNodeError,
)
from graphflow.core.graph.nodes.base.node import (
    END,
    RESERVED_NAMES,
    ConditionalEdge,
    Edge,
    Node,
    NodeListener,
)
from graphflow.core.graph.runnable import CompiledNode, Runnable
from graphflow.core.graph.schema import StateSchema
from graphflow.core.graph.subgraph import Subgraph
from graphflow.core.logging import LogComponent, LoggingConfig, get_logger


class StateGraph(BaseModel):
    """A directed graph of workflow steps, under construction.

    The builder is not thread-safe; build a graph once, then share the
    compiled ``Runnable``.

    Attributes:
        nodes: Declared nodes, in declaration order
        edges: Static edges, in registration order
        conditional_edges: Router edge per source node
        listeners: Callbacks told when nodes start, complete or fail
        entry_point: Name of the first node to run
        state_schema: Merge policy; inferred from the initial state when None
        config: Engine settings used by ``compile``
        logging_config: Controls transition and state logging
    """
    nodes: Dict[str, Node] = Field(default_factory=dict)
    edges: List[Edge] = Field(default_factory=list)
    conditional_edges: Dict[str, ConditionalEdge] = Field(default_factory=dict)
    listeners: List[NodeListener] = Field(default_factory=list)
    entry_point: Optional[str] = None
    state_schema: Optional[StateSchema] = None
    config: GraphConfig = Field(default_factory=GraphConfig)
    logging_config: LoggingConfig = Field(default_factory=LoggingConfig)
    _logger: logging.Logger = PrivateAttr()

    class Config:
        arbitrary_types_allowed = True

    def __init__(self, **data):
        super().__init__(**data)
        self._logger = get_logger(LogComponent.GRAPH)

    def add_node(
        self,
        name: str,
        description: str,
        handler: Callable[..., Any],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> "StateGraph":
        """Declare a node.

        Args:
            name: Unique node name
            description: Human-readable purpose of the node
            handler: ``handler(ctx, state)`` returning a partial state, a
                ``Command``, or None
            metadata: Free-form data for tooling

        Raises:
            DuplicateNodeError: If the name is already declared
            CompileError: If the name is empty or reserved
            TypeError: If the handler is not callable
        """
        if not name:
            raise CompileError("node name must not be empty")
        if name in RESERVED_NAMES:
            raise CompileError(f"node name {name!r} is reserved")
        if name in self.nodes:
            raise DuplicateNodeError(f"node already exists: {name}")
        if not callable(handler):
            raise TypeError(f"handler for node {name} is not callable")

        self.nodes[name] = Node(
            name=name, description=description, handler=handler, metadata=dict(metadata or {})
        )
        self._logger.debug(f"Added node: {name}")
        return self

    def add_subgraph(
        self,
        name: str,
        description: str,
        subgraph: Union["StateGraph", Runnable],
        input_mapper: Optional[Callable[[Any], Any]] = None,
        output_mapper: Optional[Callable[[Any], Any]] = None,
    ) -> "StateGraph":
        """Declare a node that runs another graph to completion.

        Args:
            name: Unique node name
            description: Human-readable purpose of the node
            subgraph: A builder (compiled here, without a checkpoint store) or a
                compiled ``Runnable``
            input_mapper: Parent state -> child initial state
            output_mapper: Child final state -> parent update

        Raises:
            CompileError: If the child graph does not compile
        """
        if isinstance(subgraph, StateGraph):
            try:
                runnable = subgraph.compile()
            except CompileError as e:
                raise CompileError(
                    f"subgraph {name} is invalid: {e}",
                    [f"subgraph {name}: {error}" for error in e.errors],
                ) from e
        elif isinstance(subgraph, Runnable):
            runnable = subgraph
        else:
            raise TypeError(f"subgraph for node {name} must be a StateGraph or Runnable")

        handler = Subgraph(name, runnable, input_mapper=input_mapper, output_mapper=output_mapper)
        return self.add_node(name, description, handler, metadata={"subgraph": True})

    def add_listener(
        self,
        callback: Callable[..., Any],
        nodes: Optional[Iterable[str]] = None,
    ) -> "StateGraph":
        """Call ``callback(event)`` when nodes start, complete or fail.

        Listeners run inline in the node's task, so they should be quick.
        A listener that raises is logged and does not affect the run.

        Args:
            callback: Receives a ``NodeEvent``; may be a coroutine function
            nodes: Restrict events to these nodes (checked at compile time)
        """
        if not callable(callback):
            raise TypeError("listener is not callable")
        names = frozenset(nodes) if nodes is not None else None
        self.listeners.append(NodeListener(callback=callback, nodes=names))
        self._logger.debug(f"Added listener for: {sorted(names) if names is not None else 'all nodes'}")
        return self

    def add_edge(self, source: str, target: str) -> "StateGraph":
        """Add a static edge; ``target`` may be END and is checked at compile time.

        Raises:
            UnknownNodeError: If ``source`` is not declared
        """
        self._require_node(source)
        self.edges.append(Edge(source=source, target=target))
        self._logger.debug(f"Added edge: {source} --> {target}")
        return self

    def add_conditional_edge(
        self,
        source: str,
        router: Callable[..., Any],
        path_map: Optional[Dict[str, str]] = None,
    ) -> "StateGraph":
        """Route from ``source`` to whichever node ``router(ctx, state)`` names.

        Args:
            source: Node whose completion triggers the router
            router: Returns a node name or END; validated at run time
            path_map: Optional mapping from router outputs to node names

        Raises:
            UnknownNodeError: If ``source`` is not declared
            DuplicateEdgeError: If ``source`` already has a router
        """
        self._require_node(source)
        if source in self.conditional_edges:
            raise DuplicateEdgeError(f"node {source} already has a conditional edge")
        if not callable(router):
            raise TypeError(f"router for node {source} is not callable")
        self.conditional_edges[source] = ConditionalEdge(
            source=source, router=router, path_map=path_map
        )
        self._logger.debug(f"Added conditional edge from: {source}")
        return self

    def set_entry_point(self, name: str) -> "StateGraph":
        """Set the node that runs first.

        Raises:
            UnknownNodeError: If the node is not declared
        """
        self._require_node(name)
        self.entry_point = name
        self._logger.debug(f"Set entry point: {name}")
        return self

    def set_schema(self, schema: StateSchema) -> "StateGraph":
        """Replace the default merge policy."""
        self.state_schema = schema
        return self

    def validate(self) -> List[str]:
        """Validate the graph topology.

        Returns:
            List of validation error messages (empty if valid)
        """
        errors: List[str] = []

        if not self.nodes:
            errors.append("graph has no nodes")
        if self.entry_point is None:
            errors.append("entry point not set")
        elif self.entry_point not in self.nodes:
            errors.append(f"entry point references unknown node: {self.entry_point}")

        for edge in self.edges:
            if edge.source not in self.nodes:
                errors.append(f"edge source references unknown node: {edge.source}")
            if edge.target != END and edge.target not in self.nodes:
                errors.append(f"edge {edge.source} --> {edge.target} references unknown node")

        for source, conditional in self.conditional_edges.items():
            if source not in self.nodes:
                errors.append(f"conditional edge source references unknown node: {source}")
            for choice, target in (conditional.path_map or {}).items():
                if target != END and target not in self.nodes:
                    errors.append(
                        f"conditional edge {source} maps {choice!r} to unknown node: {target}"
                    )

        for listener in self.listeners:
            for name in sorted(listener.nodes or ()):
                if name not in self.nodes:
                    errors.append(f"listener references unknown node: {name}")

        static_sources = {edge.source for edge in self.edges}
        for name in self.nodes:
            has_router = name in self.conditional_edges
            if has_router and name in static_sources:
                errors.append(f"node {name} has both static and conditional edges")
            elif not has_router and name not in static_sources:
                errors.append(f"node {name} has no outgoing edge")

        return errors

    def compile(
        self,
        checkpoint_store: Optional[CheckpointStore] = None,
        config: Optional[GraphConfig] = None,
    ) -> Runnable:
        """Validate the graph and freeze it into a ``Runnable``.

        Args:
            checkpoint_store: Store for checkpoints; None disables checkpointing
            config: Engine settings; defaults to the graph's ``config``

        Raises:
            CompileError: If validation finds problems (all are listed in ``errors``)
        """
        errors = self.validate()
        if errors:
            self._logger.error(f"Graph failed validation: {'; '.join(errors)}")
            raise CompileError(f"invalid graph: {'; '.join(errors)}", errors)

        index = {name: i for i, name in enumerate(self.nodes)}
        successors: Dict[str, List[int]] = {name: [] for name in self.nodes}
        terminal = set()
        for edge in self.edges:
            if edge.target == END:
                terminal.add(edge.source)
            elif index[edge.target] not in successors[edge.source]:
                successors[edge.source].append(index[edge.target])

        compiled = tuple(
            CompiledNode(
                index=index[name],
                node=node,
                successors=tuple(sorted(successors[name])),
                terminal=name in terminal,
                router=self.conditional_edges.get(name),
            )
            for name, node in self.nodes.items()
        )

        self._logger.info(
            f"Compiled graph: {len(compiled)} nodes, {len(self.edges)} edges, "
            f"{len(self.conditional_edges)} conditional edges"
        )
        return Runnable(
            nodes=compiled,
            entry=index[self.entry_point],
            schema=self.state_schema.clone() if self.state_schema is not None else None,
            checkpoint_store=checkpoint_store,
            config=(config or self.config).model_copy(),
            logging_config=self.logging_config.model_copy(),
            listeners=tuple(self.listeners),
        )

    def _require_node(self, name: str) -> None:
        if name not in self.nodes:
            raise UnknownNodeError(f"node not found: {name}")
