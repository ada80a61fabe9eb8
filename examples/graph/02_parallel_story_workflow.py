"""
Parallel Story Example

This example demonstrates:
1. Fan-out: two writer nodes running concurrently in one superstep
2. Fan-in: a join node that runs once both writers finish
3. Reducers: every node appends to the story in declaration order,
   whichever writer finishes first

The workflow:
- Opens a story
- Writes a nature line and an emotion line in parallel
- Closes the story
"""

import asyncio
import random
from typing import List
from pydantic import BaseModel, Field

from graphflow.core.config import GraphConfig
from graphflow.core.graph import END, StateGraph, StructSchema, add, append
from graphflow.core.logging import LogComponent, LogLevel, configure_logging, get_logger

logger = get_logger(LogComponent.WORKFLOW)

###################################################################
# Models
###################################################################

class Story(BaseModel):
    """Workflow state."""
    title: str = ""
    lines: List[str] = Field(default_factory=list)
    words: int = 0

###################################################################
# Nodes
###################################################################

def line(text: str) -> Story:
    return Story(lines=[text], words=len(text.split()))

async def opening(ctx, state: Story) -> Story:
    return line(f"Once upon a time, {state.title.lower()} began.")

def writer(theme: str, text: str):
    async def write(ctx, state: Story) -> Story:
        delay = random.uniform(0.1, 0.5)
        logger.info(f"{ctx.node} writing about {theme} ({delay:.2f}s)")
        await asyncio.sleep(delay)
        return line(text)
    return write

async def closing(ctx, state: Story) -> Story:
    return line(f"The end, after {state.words} words.")

async def main():
    """Run the parallel story workflow."""
    configure_logging(
        default_level=LogLevel.INFO,
        component_levels={
            LogComponent.WORKFLOW: LogLevel.INFO,
            LogComponent.RUNTIME: LogLevel.STEP,
        },
    )

    graph = StateGraph(config=GraphConfig(max_concurrency=2))
    graph.add_node("opening", "Start the story", opening)
    graph.add_node("nature", "Nature line", writer("nature", "Leaves fell on the still pond."))
    graph.add_node("emotion", "Emotion line", writer("emotion", "Someone, somewhere, felt at home."))
    graph.add_node("closing", "Finish the story", closing)

    graph.add_edge("opening", "nature")
    graph.add_edge("opening", "emotion")
    graph.add_edge("nature", "closing")
    graph.add_edge("emotion", "closing")
    graph.add_edge("closing", END)
    graph.set_entry_point("opening")
    graph.set_schema(StructSchema(Story, reducers={"lines": append, "words": add}))

    story = await graph.compile().invoke(Story(title="A Quiet Morning"))

    print(f"\n{story.title}\n")
    for text in story.lines:
        print(f"  {text}")

if __name__ == "__main__":
    asyncio.run(main())
