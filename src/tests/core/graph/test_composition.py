"""Tests for Command results, subgraph nodes and node listeners.

This module tests:
- Handlers returning ``Command`` to update state and pick the next nodes
- Compiled graphs used as nodes of a parent graph
- Start/complete/error notifications delivered to listeners
"""

import asyncio
from typing import Any, Dict, List

import pytest

from graphflow.core.checkpoint import MemoryCheckpointStore
from graphflow.core.config import RunConfig
from graphflow.core.errors import (
    CompileError,
    ExecutionCancelledError,
    NodeExecutionError,
    RouterError,
)
from graphflow.core.graph import (
    END,
    CancellationToken,
    Command,
    MapSchema,
    NodeEvent,
    NodeEventType,
    StateGraph,
    append,
)


def triage_graph(handler) -> StateGraph:
    """triage -> normal, with an escalate node reachable only by Command."""
    graph = StateGraph()
    graph.add_node("triage", "", handler)
    graph.add_node("normal", "", lambda ctx, state: {"log": ["normal"]})
    graph.add_node("escalate", "", lambda ctx, state: {"log": ["escalate"]})
    graph.add_edge("triage", "normal")
    graph.add_edge("normal", END)
    graph.add_edge("escalate", END)
    graph.set_entry_point("triage")
    graph.set_schema(MapSchema(reducers={"log": append}))
    return graph


class TestCommand:
    """Test suite for Command results."""

    async def test_goto_overrides_edges(self):
        """Test that goto replaces the node's static edge."""
        async def triage(ctx, state):
            return Command(update={"log": ["triage"]}, goto="escalate")

        result = await triage_graph(triage).compile().invoke({"log": []})
        assert result == {"log": ["triage", "escalate"]}

    async def test_without_goto_follows_edges(self):
        """Test that a Command without goto only updates the state."""
        async def triage(ctx, state):
            return Command(update={"log": ["triage"]})

        result = await triage_graph(triage).compile().invoke({"log": []})
        assert result == {"log": ["triage", "normal"]}

    async def test_goto_end(self):
        """Test that goto END finishes the branch."""
        async def triage(ctx, state):
            return Command(update={"log": ["triage"]}, goto=END)

        result = await triage_graph(triage).compile().invoke({"log": []})
        assert result == {"log": ["triage"]}

    async def test_goto_fans_out(self):
        """Test that a list of targets runs as one superstep."""
        async def triage(ctx, state):
            return Command(goto=["escalate", "normal"])

        app = triage_graph(triage).compile()
        events = [event async for event in app.astream({"log": []})]
        assert [event.nodes for event in events] == [["triage"], ["normal", "escalate"]]
        assert events[-1].state == {"log": ["normal", "escalate"]}

    async def test_goto_overrides_router(self):
        """Test that goto wins over the node's conditional edge."""
        graph = StateGraph()
        graph.add_node("start", "", lambda ctx, state: Command(goto="b"))
        graph.add_node("a", "", lambda ctx, state: {"path": "a"})
        graph.add_node("b", "", lambda ctx, state: {"path": "b"})
        graph.add_conditional_edge("start", lambda ctx, state: "a")
        graph.add_edge("a", END)
        graph.add_edge("b", END)
        graph.set_entry_point("start")

        assert await graph.compile().invoke({}) == {"path": "b"}

    async def test_sibling_routing_is_independent(self):
        """Test that one node's goto does not reroute its siblings."""
        graph = StateGraph()
        graph.add_node("root", "", lambda ctx, state: None)
        graph.add_node("left", "", lambda ctx, state: Command(update={"log": ["left"]}, goto=END))
        graph.add_node("right", "", lambda ctx, state: {"log": ["right"]})
        graph.add_node("after", "", lambda ctx, state: {"log": ["after"]})
        graph.add_edge("root", "left")
        graph.add_edge("root", "right")
        graph.add_edge("left", "after")
        graph.add_edge("right", "after")
        graph.add_edge("after", END)
        graph.set_entry_point("root")
        graph.set_schema(MapSchema(reducers={"log": append}))

        result = await graph.compile().invoke({"log": []})
        assert result == {"log": ["left", "right", "after"]}

    async def test_unknown_target(self):
        """Test that goto to an undeclared node fails the run."""
        async def triage(ctx, state):
            return Command(goto="nowhere")

        with pytest.raises(RouterError) as exc_info:
            await triage_graph(triage).compile().invoke({"log": []})
        assert exc_info.value.node == "triage"

    async def test_goto_is_checkpointed(self):
        """Test that the chosen nodes are recorded for resume."""
        async def triage(ctx, state):
            return Command(update={"log": ["triage"]}, goto="escalate")

        store = MemoryCheckpointStore()
        app = triage_graph(triage).compile(checkpoint_store=store)
        await app.invoke({"log": []}, RunConfig(execution_id="e-1"))

        checkpoints = await app.list_checkpoints("e-1")
        assert checkpoints[1].metadata["next_nodes"] == ["escalate"]

        resumed = await app.resume("e-1", checkpoints[1].id)
        assert resumed == {"log": ["triage", "escalate"]}


def summary_graph() -> StateGraph:
    """Child graph: split the text into words, then count them."""
    graph = StateGraph()
    graph.add_node("split", "", lambda ctx, state: {"words": state["text"].split()})
    graph.add_node("count", "", lambda ctx, state: {"count": len(state["words"])})
    graph.add_edge("split", "count")
    graph.add_edge("count", END)
    graph.set_entry_point("split")
    return graph


class TestSubgraph:
    """Test suite for subgraph nodes."""

    async def test_subgraph_with_mappers(self):
        """Test mapping parent state in and the child result out."""
        graph = StateGraph()
        graph.add_node("draft", "", lambda ctx, state: {"draft": "one two three"})
        graph.add_subgraph(
            "summarize",
            "Count words",
            summary_graph(),
            input_mapper=lambda state: {"text": state["draft"]},
            output_mapper=lambda result: {"words": result["count"]},
        )
        graph.add_edge("draft", "summarize")
        graph.add_edge("summarize", END)
        graph.set_entry_point("draft")

        result = await graph.compile().invoke({})
        assert result == {"draft": "one two three", "words": 3}

    async def test_subgraph_passes_state_through(self):
        """Test that without mappers the child's final state is the update."""
        graph = StateGraph()
        graph.add_subgraph("summarize", "", summary_graph().compile())
        graph.add_edge("summarize", END)
        graph.set_entry_point("summarize")

        result = await graph.compile().invoke({"text": "a b"})
        assert result == {"text": "a b", "words": ["a", "b"], "count": 2}

    async def test_child_execution_id(self):
        """Test that the child run is named after its parent and node."""
        seen: Dict[str, Any] = {}

        def record(ctx, state):
            seen.update(execution_id=ctx.execution_id, parent=ctx.metadata["parent_execution_id"])
            return None

        child = StateGraph()
        child.add_node("record", "", record)
        child.add_edge("record", END)
        child.set_entry_point("record")

        graph = StateGraph()
        graph.add_subgraph("inner", "", child)
        graph.add_edge("inner", END)
        graph.set_entry_point("inner")

        await graph.compile().invoke({}, RunConfig(execution_id="outer"))
        assert seen == {"execution_id": "outer/inner", "parent": "outer"}

    def test_invalid_subgraph(self):
        """Test that a child graph that does not compile is rejected."""
        child = StateGraph()
        child.add_node("lonely", "", lambda ctx, state: None)
        child.set_entry_point("lonely")

        with pytest.raises(CompileError) as exc_info:
            StateGraph().add_subgraph("inner", "", child)
        assert exc_info.value.errors == ["subgraph inner: node lonely has no outgoing edge"]

    async def test_child_failure(self):
        """Test that a failing child node fails the subgraph node."""
        def boom(ctx, state):
            raise ValueError("boom")

        child = StateGraph()
        child.add_node("boom", "", boom)
        child.add_edge("boom", END)
        child.set_entry_point("boom")

        graph = StateGraph()
        graph.add_subgraph("inner", "", child)
        graph.add_edge("inner", END)
        graph.set_entry_point("inner")

        with pytest.raises(NodeExecutionError) as exc_info:
            await graph.compile().invoke({})
        assert exc_info.value.node == "inner"
        assert exc_info.value.__cause__.node == "boom"

    async def test_parent_cancellation_reaches_child(self):
        """Test that cancelling the parent token stops the child."""
        token = CancellationToken()

        async def slow(ctx, state):
            token.cancel("stop")
            await asyncio.sleep(0)
            ctx.raise_if_cancelled()
            return {"done": True}

        child = StateGraph()
        child.add_node("slow", "", slow)
        child.add_edge("slow", END)
        child.set_entry_point("slow")

        graph = StateGraph()
        graph.add_subgraph("inner", "", child)
        graph.add_edge("inner", END)
        graph.set_entry_point("inner")

        with pytest.raises(ExecutionCancelledError):
            await graph.compile().invoke({}, cancel_token=token)

    def test_mermaid_shape(self):
        """Test that subgraph nodes are drawn as subroutines."""
        graph = StateGraph()
        graph.add_subgraph("inner", "", summary_graph())
        graph.add_edge("inner", END)
        graph.set_entry_point("inner")

        assert 'inner[["inner"]]' in graph.compile().get_graph_mermaid()


class TestListeners:
    """Test suite for node listeners."""

    async def test_start_and_complete(self):
        """Test the events of a successful run."""
        events: List[NodeEvent] = []
        graph = triage_graph(lambda ctx, state: {"log": ["triage"]})
        graph.add_listener(events.append)

        await graph.compile().invoke({"log": []}, RunConfig(execution_id="e-1"))

        assert [(e.type, e.node) for e in events] == [
            (NodeEventType.START, "triage"),
            (NodeEventType.COMPLETE, "triage"),
            (NodeEventType.START, "normal"),
            (NodeEventType.COMPLETE, "normal"),
        ]
        assert events[0].state == {"log": []}
        assert events[1].state == {"log": ["triage"]}
        assert events[1].duration >= 0
        assert all(e.execution_id == "e-1" for e in events)
        assert [e.step for e in events] == [1, 1, 2, 2]

    async def test_error_event(self):
        """Test that a failing handler reports an error event."""
        events: List[NodeEvent] = []

        def fail(ctx, state):
            raise RuntimeError("broken")

        graph = triage_graph(fail)
        graph.add_listener(events.append)

        with pytest.raises(NodeExecutionError):
            await graph.compile().invoke({"log": []})

        assert [e.type for e in events] == [NodeEventType.START, NodeEventType.ERROR]
        assert isinstance(events[1].error, NodeExecutionError)
        assert events[1].error.node == "triage"

    async def test_node_filter_and_async_listener(self):
        """Test an async listener limited to one node."""
        seen: List[str] = []

        async def listener(event: NodeEvent):
            seen.append(f"{event.node}:{event.type.value}")

        graph = triage_graph(lambda ctx, state: None)
        graph.add_listener(listener, nodes=["normal"])

        await graph.compile().invoke({"log": []})
        assert seen == ["normal:start", "normal:complete"]

    async def test_failing_listener_does_not_stop_run(self):
        """Test that listener errors are logged, not raised."""
        def listener(event: NodeEvent):
            raise RuntimeError("listener bug")

        graph = triage_graph(lambda ctx, state: {"log": ["triage"]})
        graph.add_listener(listener)

        assert await graph.compile().invoke({"log": []}) == {"log": ["triage", "normal"]}

    def test_unknown_listener_node(self):
        """Test that listening to an undeclared node fails validation."""
        graph = triage_graph(lambda ctx, state: None)
        graph.add_listener(lambda event: None, nodes=["ghost"])

        with pytest.raises(CompileError) as exc_info:
            graph.compile()
        assert "listener references unknown node: ghost" in exc_info.value.errors
