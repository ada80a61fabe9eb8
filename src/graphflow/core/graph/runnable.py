"""Execution engine for compiled graphs.

A ``Runnable`` drives an execution superstep by superstep. Each superstep:

1. Runs every node in the frontier, concurrently when there is more than
   one, each handler on its own copy of the state
2. Waits for all of them (a failure cancels the run's token so siblings can
   stop early, but in-flight handlers are always awaited)
3. Merges the returned updates through the schema in node declaration order,
   so the result never depends on which handler finished first
4. Follows static edges and evaluates routers to build the next frontier;
   a node that returned a ``Command`` with ``goto`` picks its own successors
5. Saves a checkpoint when a store is configured

The run ends when the frontier is empty. Any handler or router error aborts
the run and the failing superstep is never merged.

A Runnable holds no per-run state, so one instance can serve any number of
concurrent ``invoke``/``resume`` calls.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import (
    Any,
    AsyncIterator,
    Dict,
    FrozenSet,
    Iterable,
    List,
    Optional,
    Sequence,
    Set,
    Tuple,
)

from graphflow.core.checkpoint.base import Checkpoint, CheckpointStore
from graphflow.core.config import GraphConfig, RunConfig
from graphflow.core.errors import (
    ExecutionCancelledError,
    ExecutionError,
    GraphInterrupt,
    NodeExecutionError,
    NodeInterrupt,
    NotFoundError,
    RecursionLimitError,
    RouterError,
)
from graphflow.core.graph.nodes.base.node import END, START, ConditionalEdge, Node, NodeListener
from graphflow.core.graph.schema import StateSchema, infer_schema
from graphflow.core.graph.state import (
    CancellationToken,
    Command,
    NodeEvent,
    NodeEventType,
    RunContext,
    StateSnapshot,
    StepEvent,
)
from graphflow.core.graph.viz import GraphVisualizer
from graphflow.core.logging import (
    LogComponent,
    LoggingConfig,
    get_logger,
    log_state,
    log_verbose,
)

# Checkpoint events after which a resumed run must not pause before its first superstep again
RESUME_SKIPS_INTERRUPT_BEFORE = frozenset({"interrupt_before", "interrupt"})


@dataclass(frozen=True)
class CompiledNode:
    """A node resolved to its position in the compiled graph."""
    index: int
    node: Node
    successors: Tuple[int, ...]
    terminal: bool
    router: Optional[ConditionalEdge]

    @property
    def name(self) -> str:
        return self.node.name


@dataclass
class _Execution:
    """Mutable bookkeeping for one invoke/resume call."""
    execution_id: str
    thread_id: Optional[str]
    session_id: Optional[str]
    metadata: Dict[str, Any]
    schema: StateSchema
    token: CancellationToken
    value: Any
    frontier: List[int]
    interrupt_before: FrozenSet[int]
    interrupt_after: FrozenSet[int]
    step: int = 0
    steps_taken: int = 0
    version: int = 0
    resume_value: Any = None
    skip_interrupt_before: bool = False
    resumed: bool = False

    def context(self, node: Optional[str], step: int) -> RunContext:
        return RunContext(
            execution_id=self.execution_id,
            thread_id=self.thread_id,
            session_id=self.session_id,
            node=node,
            step=step,
            metadata=self.metadata,
            resume_value=self.resume_value,
            token=self.token,
        )


class Runnable:
    """Compiled, immutable form of a ``StateGraph``.

    Created by ``StateGraph.compile()``; not meant to be built directly.
    """

    def __init__(
        self,
        nodes: Tuple[CompiledNode, ...],
        entry: int,
        schema: Optional[StateSchema] = None,
        checkpoint_store: Optional[CheckpointStore] = None,
        config: Optional[GraphConfig] = None,
        logging_config: Optional[LoggingConfig] = None,
        listeners: Tuple[NodeListener, ...] = (),
    ):
        self._nodes = nodes
        self._index: Dict[str, int] = {compiled.name: compiled.index for compiled in nodes}
        self._entry = entry
        self._schema = schema
        self._store = checkpoint_store
        self._config = config or GraphConfig()
        self._logging = logging_config or LoggingConfig()
        self._listeners = tuple(listeners)
        self._logger = get_logger(LogComponent.RUNTIME)

    @property
    def nodes(self) -> Tuple[CompiledNode, ...]:
        return self._nodes

    @property
    def node_names(self) -> List[str]:
        return [compiled.name for compiled in self._nodes]

    @property
    def entry_point(self) -> str:
        return self._nodes[self._entry].name

    @property
    def checkpoint_store(self) -> Optional[CheckpointStore]:
        return self._store

    @property
    def config(self) -> GraphConfig:
        return self._config

    ###################################################################
    # Public API
    ###################################################################

    async def invoke(
        self,
        initial: Any = None,
        config: Optional[RunConfig] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Any:
        """Run the graph from the entry point to completion.

        Args:
            initial: Initial state (dict, pydantic model or dataclass)
            config: Execution id, grouping ids, interrupts and timeout
            cancel_token: Caller-owned token; cancelling it stops the run

        Returns:
            The final state

        Raises:
            ExecutionError: A handler or router failed, or the run was cancelled
            GraphInterrupt: The run paused; resume it with ``resume``
            StoreError: Saving a checkpoint failed
        """
        run = self._start(initial, config, cancel_token)
        async for _ in self._execute(run):
            pass
        return run.value

    async def astream(
        self,
        initial: Any = None,
        config: Optional[RunConfig] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> AsyncIterator[StepEvent]:
        """Like ``invoke`` but yields a ``StepEvent`` after every superstep."""
        run = self._start(initial, config, cancel_token)
        async for event in self._execute(run):
            yield event

    async def resume(
        self,
        execution_id: str,
        checkpoint_id: str,
        config: Optional[RunConfig] = None,
        resume_value: Any = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Any:
        """Continue an execution from one of its checkpoints.

        The frontier is the checkpoint's recorded next nodes (or the
        successors of the checkpointed node). ``resume_value`` answers a
        pending ``interrupt()`` and is visible to the first resumed
        superstep only.

        Raises:
            NotFoundError: The checkpoint does not exist or belongs to another execution
            ExecutionError: No store is configured, or the run fails
        """
        run = await self._restore(execution_id, checkpoint_id, config, resume_value, cancel_token)
        async for _ in self._execute(run):
            pass
        return run.value

    async def list_checkpoints(self, execution_id: str) -> List[Checkpoint]:
        """Checkpoints of one execution, oldest first."""
        store = self._require_store("listing checkpoints")
        return [cp for cp in await store.list(execution_id) if cp.execution_id == execution_id]

    async def get_state(self, execution_id: str, checkpoint_id: Optional[str] = None) -> StateSnapshot:
        """Snapshot of a checkpoint, the latest one of the execution by default."""
        if checkpoint_id is not None:
            checkpoint = await self._load_owned(execution_id, checkpoint_id)
        else:
            checkpoint = await self._latest(execution_id)
        return StateSnapshot(
            values=checkpoint.state,
            next=list(checkpoint.metadata.get("next_nodes", [])),
            checkpoint_id=checkpoint.id,
            execution_id=execution_id,
            version=checkpoint.version,
            metadata=checkpoint.metadata,
            created_at=checkpoint.timestamp,
        )

    async def update_state(self, execution_id: str, values: Any, as_node: Optional[str] = None) -> Checkpoint:
        """Merge ``values`` into the latest state and save it as a new checkpoint.

        Args:
            execution_id: Execution to update
            values: Partial update, merged through the schema as if a node returned it
            as_node: Treat the update as coming from this node, so the next
                nodes become its successors

        Returns:
            The saved checkpoint; pass its id to ``resume`` to continue
        """
        latest = await self._latest(execution_id)
        schema = self._schema or infer_schema(latest.state)
        value = schema.update(schema.coerce(latest.state), values)

        if as_node is not None:
            if as_node not in self._index:
                raise ValueError(f"unknown node: {as_node}")
            compiled = self._nodes[self._index[as_node]]
            ctx = RunContext(
                execution_id=execution_id,
                thread_id=latest.metadata.get("thread_id"),
                session_id=latest.metadata.get("session_id"),
                node=as_node,
                step=latest.metadata.get("step", 0),
            )
            next_nodes = self._names(sorted(await self._successors(compiled, ctx, value)))
        else:
            next_nodes = list(latest.metadata.get("next_nodes", []))

        versions = [cp.version for cp in await self.list_checkpoints(execution_id)]
        metadata = dict(latest.metadata)
        metadata.update(event="update_state", next_nodes=next_nodes)
        if as_node is not None:
            metadata["as_node"] = as_node
        checkpoint = Checkpoint(
            node_name=as_node or latest.node_name,
            state=value,
            metadata=metadata,
            version=max(versions, default=latest.version) + 1,
        )
        await self._store.save(checkpoint)
        if self._config.max_checkpoints:
            await self._prune(execution_id)
        self._logger.info(f"Updated state of {execution_id} (checkpoint {checkpoint.id})")
        return checkpoint

    def get_graph_mermaid(self) -> str:
        """Mermaid flowchart of the compiled topology."""
        return GraphVisualizer(self).render_graph()

    ###################################################################
    # Execution setup
    ###################################################################

    def _start(
        self,
        initial: Any,
        config: Optional[RunConfig],
        cancel_token: Optional[CancellationToken],
    ) -> _Execution:
        config = config or RunConfig()
        schema = self._schema or infer_schema(initial)
        return _Execution(
            execution_id=config.execution_id,
            thread_id=config.thread_id,
            session_id=config.session_id,
            metadata=dict(config.metadata),
            schema=schema,
            token=self._token(cancel_token, config.timeout),
            value=schema.seed(initial),
            frontier=[self._entry],
            interrupt_before=self._interrupt_set(config.interrupt_before),
            interrupt_after=self._interrupt_set(config.interrupt_after),
        )

    async def _restore(
        self,
        execution_id: str,
        checkpoint_id: str,
        config: Optional[RunConfig],
        resume_value: Any,
        cancel_token: Optional[CancellationToken],
    ) -> _Execution:
        checkpoint = await self._load_owned(execution_id, checkpoint_id)
        metadata = checkpoint.metadata
        config = config or RunConfig(execution_id=execution_id)
        schema = self._schema or infer_schema(checkpoint.state)
        value = schema.coerce(checkpoint.state)

        names = metadata.get("next_nodes")
        if names is None:
            if checkpoint.node_name not in self._index:
                raise ExecutionError(
                    f"cannot determine next nodes from checkpoint {checkpoint_id}",
                    node=checkpoint.node_name,
                )
            compiled = self._nodes[self._index[checkpoint.node_name]]
            ctx = RunContext(execution_id=execution_id, node=compiled.name)
            frontier = sorted(await self._successors(compiled, ctx, value))
        else:
            unknown = [name for name in names if name not in self._index]
            if unknown:
                raise ExecutionError(f"checkpoint {checkpoint_id} references unknown nodes: {unknown}")
            frontier = sorted(self._index[name] for name in names)

        versions = [cp.version for cp in await self.list_checkpoints(execution_id)]
        self._logger.info(
            f"Resuming {execution_id} from checkpoint {checkpoint_id} "
            f"(version {checkpoint.version}) at {self._names(frontier)}"
        )
        return _Execution(
            execution_id=execution_id,
            thread_id=config.thread_id or metadata.get("thread_id"),
            session_id=config.session_id or metadata.get("session_id"),
            metadata=dict(config.metadata),
            schema=schema,
            token=self._token(cancel_token, config.timeout),
            value=value,
            frontier=frontier,
            interrupt_before=self._interrupt_set(config.interrupt_before),
            interrupt_after=self._interrupt_set(config.interrupt_after),
            step=int(metadata.get("step", 0)),
            version=max(versions, default=checkpoint.version),
            resume_value=resume_value,
            skip_interrupt_before=metadata.get("event") in RESUME_SKIPS_INTERRUPT_BEFORE,
            resumed=True,
        )

    ###################################################################
    # Superstep loop
    ###################################################################

    async def _execute(self, run: _Execution) -> AsyncIterator[StepEvent]:
        try:
            if not run.resumed and self._checkpointing and self._config.checkpoint_input:
                await self._save(run, START, "input", self._names(run.frontier))

            while run.frontier:
                run.token.raise_if_cancelled()
                if run.steps_taken >= self._config.max_steps:
                    raise RecursionLimitError(
                        f"execution {run.execution_id} exceeded {self._config.max_steps} supersteps"
                    )

                if not run.skip_interrupt_before:
                    paused = [i for i in run.frontier if i in run.interrupt_before]
                    if paused:
                        await self._pause(run, self._nodes[paused[0]].name, "interrupt_before")
                run.skip_interrupt_before = False

                step = run.step + 1
                ran = [self._nodes[i] for i in run.frontier]
                names = [compiled.name for compiled in ran]
                log_verbose(self._logger, f"Superstep {step}: running {names}")

                results = await self._run_superstep(run, ran, step)
                run.token.raise_if_cancelled()

                updates, gotos = _split_commands(results)
                value = self._merge(run, updates)
                frontier = await self._next_frontier(run, ran, value, step, gotos)

                run.value = value
                run.frontier = frontier
                run.step = step
                run.steps_taken += 1
                run.resume_value = None

                next_nodes = self._names(frontier)
                self._log_transitions(names, next_nodes)
                if self._logging.show_state:
                    log_state(self._logger, value)

                checkpoint_id = None
                if self._checkpointing:
                    checkpoint_id = await self._save(run, ",".join(names), "step", next_nodes)
                self._logger.step(f"Superstep {step} complete: {names} -> {next_nodes or 'END'}")

                yield StepEvent(
                    step=step,
                    nodes=names,
                    state=value,
                    next_nodes=next_nodes,
                    checkpoint_id=checkpoint_id,
                )

                after = [compiled.name for compiled in ran if compiled.index in run.interrupt_after]
                if after:
                    if checkpoint_id is None and self._store is not None:
                        checkpoint_id = await self._save(run, ",".join(names), "interrupt_after", next_nodes)
                    self._logger.checkpoint(f"Execution {run.execution_id} paused after {after[0]}, checkpoint {checkpoint_id}")
                    raise GraphInterrupt(
                        node=after[0],
                        state=run.value,
                        next_nodes=next_nodes,
                        execution_id=run.execution_id,
                        checkpoint_id=checkpoint_id,
                    )

            self._logger.info(f"Execution {run.execution_id} finished after {run.step} supersteps")
        except asyncio.CancelledError:
            run.token.cancel("task cancelled")
            raise
        except ExecutionError as e:
            self._logger.error(f"Execution {run.execution_id} failed: {e}")
            raise

    async def _run_superstep(self, run: _Execution, ran: List[CompiledNode], step: int) -> List[Tuple[CompiledNode, Any]]:
        semaphore = (
            asyncio.Semaphore(self._config.max_concurrency)
            if self._config.max_concurrency and len(ran) > 1
            else None
        )
        tasks = [
            asyncio.ensure_future(self._call_node(run, compiled, step, semaphore))
            for compiled in ran
        ]
        try:
            pending: Set[asyncio.Future] = set(tasks)
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_EXCEPTION)
                if any(_failed(task) for task in done):
                    run.token.cancel("a node in the same superstep failed")
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        results: List[Tuple[CompiledNode, Any]] = []
        errors: List[BaseException] = []
        interrupts: List[NodeInterrupt] = []
        for compiled, task in zip(ran, tasks):
            if task.cancelled():
                errors.append(ExecutionCancelledError(f"node {compiled.name} was cancelled", node=compiled.name))
                continue
            exc = task.exception()
            if exc is None:
                results.append((compiled, task.result()))
            elif isinstance(exc, NodeInterrupt):
                interrupts.append(exc)
            else:
                errors.append(exc)

        if errors:
            # Prefer the error that caused the cancellation over siblings that observed it
            primary = [e for e in errors if not isinstance(e, ExecutionCancelledError)]
            raise (primary or errors)[0]
        if interrupts:
            first = interrupts[0]
            await self._pause(run, first.node, "interrupt", value=first.value)
        return results

    async def _call_node(
        self,
        run: _Execution,
        compiled: CompiledNode,
        step: int,
        semaphore: Optional[asyncio.Semaphore],
    ) -> Any:
        ctx = run.context(compiled.name, step)
        if semaphore is None:
            return await self._run_node(run, compiled, ctx)
        async with semaphore:
            return await self._run_node(run, compiled, ctx)

    async def _run_node(self, run: _Execution, compiled: CompiledNode, ctx: RunContext) -> Any:
        view = run.schema.copy(run.value)
        await self._notify(NodeEventType.START, ctx, state=view)
        started = time.monotonic()
        try:
            result = await compiled.node.run(ctx, view)
        except NodeInterrupt as e:
            e.node = e.node or compiled.name
            raise
        except ExecutionError as e:
            e.node = e.node or compiled.name
            await self._notify(NodeEventType.ERROR, ctx, error=e, duration=time.monotonic() - started)
            raise
        except Exception as e:
            error = NodeExecutionError(f"node {compiled.name} failed: {e}", node=compiled.name)
            await self._notify(NodeEventType.ERROR, ctx, error=error, duration=time.monotonic() - started)
            raise error from e
        await self._notify(NodeEventType.COMPLETE, ctx, state=result, duration=time.monotonic() - started)
        return result

    async def _notify(
        self,
        kind: NodeEventType,
        ctx: RunContext,
        state: Any = None,
        error: Optional[BaseException] = None,
        duration: Optional[float] = None,
    ) -> None:
        listeners = [listener for listener in self._listeners if listener.wants(ctx.node)]
        if not listeners:
            return
        event = NodeEvent(
            type=kind,
            node=ctx.node,
            execution_id=ctx.execution_id,
            step=ctx.step,
            state=state,
            error=error,
            duration=duration,
        )
        for listener in listeners:
            try:
                await listener.notify(event)
            except Exception as e:
                self._logger.warning(f"Listener failed on {kind.value} of node {ctx.node}: {e}")

    def _merge(self, run: _Execution, results: Iterable[Tuple[CompiledNode, Any]]) -> Any:
        value = run.value
        for compiled, update in results:
            if update is None:
                continue
            try:
                value = run.schema.update(value, update)
            except Exception as e:
                raise NodeExecutionError(
                    f"failed to merge update from node {compiled.name}: {e}",
                    node=compiled.name,
                ) from e
        return value

    async def _next_frontier(
        self,
        run: _Execution,
        ran: Sequence[CompiledNode],
        value: Any,
        step: int,
        gotos: Optional[Dict[int, List[str]]] = None,
    ) -> List[int]:
        frontier: Set[int] = set()
        for compiled in ran:
            if gotos and compiled.index in gotos:
                frontier |= self._goto(compiled, gotos[compiled.index])
            else:
                frontier |= await self._successors(compiled, run.context(compiled.name, step), value)
        return sorted(frontier)

    def _goto(self, compiled: CompiledNode, targets: List[str]) -> Set[int]:
        chosen: Set[int] = set()
        for target in targets:
            if target == END:
                continue
            if target not in self._index:
                raise RouterError(
                    f"command from node {compiled.name} targets unknown node: {target!r}",
                    node=compiled.name,
                )
            chosen.add(self._index[target])
        return chosen

    async def _successors(self, compiled: CompiledNode, ctx: RunContext, value: Any) -> Set[int]:
        if compiled.router is None:
            return set(compiled.successors)

        try:
            target = await compiled.router.route(ctx, value)
        except ExecutionError:
            raise
        except Exception as e:
            raise RouterError(f"router for node {compiled.name} failed: {e}", node=compiled.name) from e

        if target == END:
            return set()
        if not isinstance(target, str) or target not in self._index:
            raise RouterError(
                f"router for node {compiled.name} returned unknown node: {target!r}",
                node=compiled.name,
            )
        return {self._index[target]}

    ###################################################################
    # Checkpoints and interrupts
    ###################################################################

    @property
    def _checkpointing(self) -> bool:
        return self._store is not None and self._config.checkpoint_enabled

    async def _save(self, run: _Execution, node_name: str, event: str, next_nodes: List[str]) -> str:
        run.version += 1
        metadata = dict(run.metadata)
        metadata.update(
            execution_id=run.execution_id,
            event=event,
            step=run.step,
            next_nodes=list(next_nodes),
        )
        if run.thread_id:
            metadata["thread_id"] = run.thread_id
        if run.session_id:
            metadata["session_id"] = run.session_id

        checkpoint = Checkpoint(
            node_name=node_name,
            state=run.value,
            metadata=metadata,
            version=run.version,
        )
        await self._store.save(checkpoint)
        self._logger.debug(
            f"Saved checkpoint {checkpoint.id} for {run.execution_id} "
            f"(version {checkpoint.version}, event {event})"
        )
        if self._config.max_checkpoints:
            await self._prune(run.execution_id)
        return checkpoint.id

    async def _prune(self, execution_id: str) -> None:
        checkpoints = await self.list_checkpoints(execution_id)
        excess = len(checkpoints) - self._config.max_checkpoints
        for checkpoint in checkpoints[:max(excess, 0)]:
            await self._store.delete(checkpoint.id)

    async def _pause(self, run: _Execution, node: str, event: str, value: Any = None) -> None:
        """Checkpoint the current state and raise ``GraphInterrupt``."""
        next_nodes = self._names(run.frontier)
        checkpoint_id = None
        if self._store is not None:
            checkpoint_id = await self._save(run, node, event, next_nodes)
        self._logger.checkpoint(f"Execution {run.execution_id} paused at {node} ({event}), checkpoint {checkpoint_id}")
        raise GraphInterrupt(
            node=node,
            state=run.value,
            next_nodes=next_nodes,
            execution_id=run.execution_id,
            checkpoint_id=checkpoint_id,
            value=value,
        )

    async def _load_owned(self, execution_id: str, checkpoint_id: str) -> Checkpoint:
        store = self._require_store("resuming")
        checkpoint = await store.load(checkpoint_id)
        owner = checkpoint.execution_id
        if owner is not None and owner != execution_id:
            raise NotFoundError(
                f"checkpoint {checkpoint_id} does not belong to execution {execution_id}"
            )
        return checkpoint

    async def _latest(self, execution_id: str) -> Checkpoint:
        checkpoints = await self.list_checkpoints(execution_id)
        if not checkpoints:
            raise NotFoundError(f"no checkpoints for execution {execution_id}")
        return checkpoints[-1]

    def _require_store(self, action: str) -> CheckpointStore:
        if self._store is None:
            raise ExecutionError(f"{action} requires a checkpoint store")
        return self._store

    ###################################################################
    # Helpers
    ###################################################################

    def _token(self, cancel_token: Optional[CancellationToken], timeout: Optional[float]) -> CancellationToken:
        if cancel_token is not None:
            return cancel_token.child(timeout=timeout)
        return CancellationToken(timeout=timeout)

    def _interrupt_set(self, names: Iterable[str]) -> FrozenSet[int]:
        unknown = [name for name in names if name not in self._index]
        if unknown:
            raise ValueError(f"interrupt references unknown nodes: {unknown}")
        return frozenset(self._index[name] for name in names)

    def _names(self, indices: Iterable[int]) -> List[str]:
        return [self._nodes[i].name for i in indices]

    def _log_transitions(self, ran: List[str], next_nodes: List[str]) -> None:
        log = self._logger.info if self._logging.show_node_transitions else self._logger.debug
        log(f"Transitioning {ran} --> {next_nodes or 'END'}")


def _failed(task: asyncio.Future) -> bool:
    if task.cancelled():
        return True
    exc = task.exception()
    return exc is not None and not isinstance(exc, NodeInterrupt)


def _split_commands(
    results: Iterable[Tuple[CompiledNode, Any]],
) -> Tuple[List[Tuple[CompiledNode, Any]], Dict[int, List[str]]]:
    """Separate ``Command`` routing from the state updates to merge."""
    updates: List[Tuple[CompiledNode, Any]] = []
    gotos: Dict[int, List[str]] = {}
    for compiled, result in results:
        if isinstance(result, Command):
            updates.append((compiled, result.update))
            targets = result.targets()
            if targets is not None:
                gotos[compiled.index] = targets
        else:
            updates.append((compiled, result))
    return updates, gotos
