"""Graph visualization tools.

Renders a compiled graph as a Mermaid flowchart. Static edges are solid
arrows; conditional edges are dotted and labelled with the router output.
A router without a ``path_map`` can pick any node, so its source node is
drawn dashed instead of guessing at edges. Subgraph nodes use the subroutine
shape.
"""

from typing import TYPE_CHECKING, Iterable, List

from graphflow.core.graph.nodes.base.node import END, START
from graphflow.core.graph.state import StepEvent

if TYPE_CHECKING:
    from graphflow.core.graph.runnable import Runnable


def _node_id(name: str) -> str:
    return "".join(ch if ch.isalnum() or ch == "_" else "_" for ch in name)


class GraphVisualizer:
    """Visualize graph structure and execution."""

    def __init__(self, runnable: "Runnable"):
        self.runnable = runnable

    def render_graph(self) -> str:
        lines = ["flowchart TD", f"    {_node_id(START)}([start])", f"    {_node_id(END)}([end])"]
        names = self.runnable.node_names

        for compiled in self.runnable.nodes:
            label = compiled.name.replace('"', "'")
            if compiled.node.metadata.get("subgraph"):
                lines.append(f'    {_node_id(compiled.name)}[["{label}"]]')
            else:
                lines.append(f'    {_node_id(compiled.name)}["{label}"]')

        lines.append(f"    {_node_id(START)} --> {_node_id(self.runnable.entry_point)}")
        for compiled in self.runnable.nodes:
            source = _node_id(compiled.name)
            for successor in compiled.successors:
                lines.append(f"    {source} --> {_node_id(names[successor])}")
            if compiled.terminal:
                lines.append(f"    {source} --> {_node_id(END)}")
            if compiled.router is not None and compiled.router.path_map:
                for choice, target in compiled.router.path_map.items():
                    lines.append(f"    {source} -.->|{choice}| {_node_id(target)}")
        unmapped = [
            _node_id(compiled.name)
            for compiled in self.runnable.nodes
            if compiled.router is not None and not compiled.router.path_map
        ]
        if unmapped:
            lines.append("    classDef router stroke-dasharray: 5 5")
            lines.append(f"    class {','.join(unmapped)} router")
        return "\n".join(lines)

    def render_execution(self, events: Iterable[StepEvent]) -> str:
        """The graph with every node that ran highlighted."""
        visited: List[str] = []
        for event in events:
            for name in event.nodes:
                if name not in visited:
                    visited.append(name)
        lines = [self.render_graph(), "    classDef visited fill:#d4f7d4,stroke:#2e7d32"]
        if visited:
            lines.append(f"    class {','.join(_node_id(name) for name in visited)} visited")
        return "\n".join(lines)
