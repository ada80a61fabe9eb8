"""
Human Review Example

This example demonstrates:
1. Checkpointing every superstep to SQLite
2. Pausing inside a node with interrupt() to ask a human
3. Resuming the execution later with the human's answer
4. Inspecting the checkpoint history

The workflow:
- Drafts a reply
- Asks a reviewer to approve it
- Sends or discards it
"""

import asyncio
import tempfile
from pathlib import Path
from typing import Optional
from pydantic import BaseModel

from graphflow.core.checkpoint import SQLiteCheckpointStore, registered_type
from graphflow.core.config import RunConfig
from graphflow.core.errors import GraphInterrupt
from graphflow.core.graph import END, StateGraph, interrupt
from graphflow.core.logging import LogComponent, LogLevel, configure_logging, get_logger

logger = get_logger(LogComponent.WORKFLOW)

###################################################################
# Models
###################################################################

@registered_type("examples.Reply")
class Reply(BaseModel):
    """Workflow state; registered so it survives the SQLite round trip."""
    question: str = ""
    draft: str = ""
    approved: Optional[bool] = None
    status: str = ""

###################################################################
# Nodes
###################################################################

async def draft(ctx, state: Reply) -> Reply:
    return Reply(draft=f"Thanks for asking about '{state.question}'. We're on it!")

async def review(ctx, state: Reply) -> dict:
    answer = interrupt(ctx, {"draft": state.draft, "question": "Send this reply? (yes/no)"})
    return {"approved": answer == "yes"}

async def send(ctx, state: Reply) -> Reply:
    return Reply(status="sent")

async def discard(ctx, state: Reply) -> Reply:
    return Reply(status="discarded")

def build_graph() -> StateGraph:
    graph = StateGraph()
    graph.add_node("draft", "Write a reply", draft)
    graph.add_node("review", "Ask a human", review)
    graph.add_node("send", "Send the reply", send)
    graph.add_node("discard", "Drop the reply", discard)
    graph.add_edge("draft", "review")
    graph.add_conditional_edge(
        "review",
        lambda ctx, state: "yes" if state.approved else "no",
        path_map={"yes": "send", "no": "discard"},
    )
    graph.add_edge("send", END)
    graph.add_edge("discard", END)
    graph.set_entry_point("draft")
    return graph

async def main():
    """Run until the review pause, then resume with an answer."""
    configure_logging(
        default_level=LogLevel.INFO,
        component_levels={
            LogComponent.WORKFLOW: LogLevel.INFO,
            LogComponent.RUNTIME: LogLevel.INFO,
            LogComponent.CHECKPOINT: LogLevel.INFO,
        },
    )

    with tempfile.TemporaryDirectory() as tmp:
        store = SQLiteCheckpointStore(Path(tmp) / "checkpoints.db")
        app = build_graph().compile(checkpoint_store=store)
        config = RunConfig(execution_id="reply-42", thread_id="support-7")

        try:
            await app.invoke(Reply(question="my order"), config)
        except GraphInterrupt as paused:
            logger.info(f"Paused at {paused.node}: {paused.value['question']}")
            logger.info(f"Draft: {paused.value['draft']}")
            result = await app.resume(config.execution_id, paused.checkpoint_id, resume_value="yes")
            logger.info(f"Final status: {result.status}")

        for checkpoint in await app.list_checkpoints(config.execution_id):
            logger.info(
                f"v{checkpoint.version} {checkpoint.metadata['event']:<10} "
                f"{checkpoint.node_name:<10} next={checkpoint.metadata['next_nodes']}"
            )
        await store.close()

if __name__ == "__main__":
    asyncio.run(main())
