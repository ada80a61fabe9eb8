"""Compiled graphs used as nodes of a larger graph.

A subgraph node runs a whole child ``Runnable`` as one step of its parent.
The child gets its own execution id (``<parent id>/<node name>``), shares
the parent's cancellation token, and its final state becomes the node's
return value.

Example:
    ```python
    review = StateGraph()
    ...  # nodes working on {"text": ..., "notes": [...]}

    graph.add_subgraph(
        "review",
        "Peer review",
        review,
        input_mapper=lambda state: {"text": state["draft"]},
        output_mapper=lambda result: {"notes": result["notes"]},
    )
    ```
"""

from typing import Any, Callable, Optional

from graphflow.core.config import RunConfig
from graphflow.core.errors import ExecutionCancelledError, ExecutionError, NodeExecutionError
from graphflow.core.graph.runnable import Runnable
from graphflow.core.graph.state import RunContext
from graphflow.core.logging import LogComponent, get_logger

logger = get_logger(LogComponent.RUNTIME)


class Subgraph:
    """Node handler that invokes a compiled child graph.

    Args:
        name: Name of the node in the parent graph
        runnable: The compiled child graph
        input_mapper: Builds the child's initial state from the parent state;
            the parent state is passed through when None
        output_mapper: Turns the child's final state into the parent update;
            the final state is returned as is when None
    """

    def __init__(
        self,
        name: str,
        runnable: Runnable,
        input_mapper: Optional[Callable[[Any], Any]] = None,
        output_mapper: Optional[Callable[[Any], Any]] = None,
    ):
        self.name = name
        self.runnable = runnable
        self.input_mapper = input_mapper
        self.output_mapper = output_mapper

    async def __call__(self, ctx: RunContext, state: Any) -> Any:
        child_state = self.input_mapper(state) if self.input_mapper is not None else state
        metadata = dict(ctx.metadata)
        metadata.update(parent_execution_id=ctx.execution_id, parent_node=self.name)
        config = RunConfig(
            execution_id=f"{ctx.execution_id}/{self.name}",
            thread_id=ctx.thread_id,
            session_id=ctx.session_id,
            metadata=metadata,
        )
        logger.debug(f"Entering subgraph {self.name} as {config.execution_id}")

        try:
            result = await self.runnable.invoke(child_state, config, cancel_token=ctx.token)
        except ExecutionCancelledError:
            raise
        except ExecutionError as e:
            raise NodeExecutionError(
                f"subgraph {self.name} failed at node {e.node}: {e}",
                node=self.name,
            ) from e

        logger.debug(f"Left subgraph {self.name}")
        return self.output_mapper(result) if self.output_mapper is not None else result
