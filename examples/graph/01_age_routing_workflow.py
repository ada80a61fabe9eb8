"""
Age Routing Example

This example demonstrates:
1. A typed pydantic state
2. Conditional edges choosing the next node from the state
3. Streaming superstep events and rendering the visited path

The workflow:
- Checks a person's age
- Routes adults and minors down different paths
- Prints the result and a Mermaid chart of the run
"""

import asyncio
from pydantic import BaseModel

from graphflow.core.graph import END, GraphVisualizer, StateGraph
from graphflow.core.logging import LogComponent, LogLevel, configure_logging, get_logger

logger = get_logger(LogComponent.WORKFLOW)

###################################################################
# Models
###################################################################

class Person(BaseModel):
    """Workflow state."""
    name: str = ""
    age: int = 0
    result: str = ""

###################################################################
# Nodes
###################################################################

async def check_age(ctx, state: Person) -> None:
    """Log the person being checked; routing happens on the edge."""
    logger.info(f"Checking {state.name} ({state.age})")
    return None

async def adult_path(ctx, state: Person) -> Person:
    return Person(result=f"{state.name} is an adult")

async def minor_path(ctx, state: Person) -> Person:
    return Person(result=f"{state.name} is a minor")

def route_by_age(ctx, state: Person) -> str:
    return "adult_path" if state.age >= 18 else "minor_path"

def build_graph() -> StateGraph:
    graph = StateGraph()
    graph.add_node("check_age", "Inspect the age", check_age)
    graph.add_node("adult_path", "Handle adults", adult_path)
    graph.add_node("minor_path", "Handle minors", minor_path)
    graph.add_conditional_edge("check_age", route_by_age)
    graph.add_edge("adult_path", END)
    graph.add_edge("minor_path", END)
    graph.set_entry_point("check_age")
    return graph

async def main():
    """Run the workflow for two people."""
    configure_logging(
        default_level=LogLevel.INFO,
        component_levels={
            LogComponent.WORKFLOW: LogLevel.INFO,
            LogComponent.RUNTIME: LogLevel.STEP,
        },
    )

    app = build_graph().compile()

    for person in [Person(name="Ada", age=36), Person(name="Bo", age=9)]:
        events = [event async for event in app.astream(person)]
        logger.info(f"Result: {events[-1].state.result}")

    print(GraphVisualizer(app).render_execution(events))

if __name__ == "__main__":
    asyncio.run(main())
