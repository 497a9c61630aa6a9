"""
Flow Scheduler - Runs flow graphs.

The scheduler:
1. Resets every node of the graph to idle in the caller's RunContext
2. Dispatches all nodes without dependencies concurrently
3. As each node finishes, unlocks the successors whose predecessors have
   all deposited a result, and dispatches them immediately
4. On the first failure stops dispatching, lets in-flight nodes drain, and
   reports the run as failed

A node is never dispatched before every direct predecessor has completed
successfully. Nodes with no path between them may overlap in time.

All state mutation happens in the scheduling loop between awaits, so the
result store and the execution-state map have a single writer.
"""

import asyncio
import logging
from collections import deque
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from flowstudio.errors import NodeReferenceError
from flowstudio.graph.context import RunContext
from flowstudio.graph.edge import GraphSpec
from flowstudio.graph.node import NodeExecutor, NodeResult
from flowstudio.observability import reset_trace_context, set_trace_context

logger = logging.getLogger(__name__)


@dataclass
class RunResult:
    """Result of running a graph."""

    success: bool
    run_id: str
    output: Any = None  # Single sink's result, or {sink_id: result}
    error: str | None = None
    results: dict[str, Any] = field(default_factory=dict)
    failed_nodes: list[str] = field(default_factory=list)
    dispatch_order: list[str] = field(default_factory=list)
    total_input_tokens: int = 0
    total_output_tokens: int = 0


def _check_references(graph: GraphSpec) -> None:
    node_ids = set(graph.node_ids())
    for edge in graph.edges:
        for endpoint in (edge.source, edge.target):
            if endpoint not in node_ids:
                raise NodeReferenceError(endpoint, edge_id=edge.id)


def collect_sink_output(sinks: Sequence[str], results: dict[str, Any]) -> Any:
    """The single sink's result, or a mapping from sink ID to result."""
    if len(sinks) == 1:
        return results.get(sinks[0])
    return {sink: results.get(sink) for sink in sinks}


class FlowScheduler:
    """
    Executes flow graphs with dependency-driven concurrency.

    Example:
        scheduler = FlowScheduler(
            node_executor=NodeExecutor(service=GenerationService(LiteLLMProvider())),
        )
        ctx = RunContext()
        result = await scheduler.run(graph, ctx, inputs={"prompt": "Plan a trip"})
        ctx.execution["prompt"].status  # ExecutionStatus.DONE
    """

    def __init__(self, node_executor: NodeExecutor, event_bus: Any | None = None):
        """
        Args:
            node_executor: Runs individual nodes
            event_bus: Optional EventBus receiving run and node lifecycle events
        """
        self.node_executor = node_executor
        self._event_bus = event_bus

    async def run(
        self,
        graph: GraphSpec,
        run_context: RunContext | None = None,
        inputs: dict[str, str] | None = None,
    ) -> RunResult:
        """
        Run every node of ``graph`` once.

        Args:
            graph: Graph snapshot, normally from GraphModel.to_spec()
            run_context: Caller-owned state; a fresh one is created if omitted
            inputs: Text for entry nodes, keyed by node ID (routed to the
                user prompt of prompt nodes)

        Returns:
            RunResult; per-node detail stays in ``run_context.execution``

        Raises:
            NodeReferenceError: an edge names a node missing from ``graph``;
                raised before any node state is touched
        """
        ctx = run_context or RunContext()
        _check_references(graph)
        ctx.reset(graph.node_ids())
        token = set_trace_context(run_id=ctx.run_id, graph_id=graph.id)
        try:
            return await self._run_graph(graph, ctx, inputs or {})
        finally:
            reset_trace_context(token)

    async def _run_graph(
        self, graph: GraphSpec, ctx: RunContext, inputs: dict[str, str]
    ) -> RunResult:
        node_ids = graph.node_ids()
        nodes_by_id = {node.id: node for node in graph.nodes}
        adjacency: dict[str, list[str]] = {node_id: [] for node_id in node_ids}
        predecessors: dict[str, list[str]] = {node_id: [] for node_id in node_ids}
        remaining: dict[str, int] = {node_id: 0 for node_id in node_ids}
        for edge in graph.edges:
            adjacency[edge.source].append(edge.target)
            predecessors[edge.target].append(edge.source)
            remaining[edge.target] += 1

        entry_ids = {node_id for node_id, count in remaining.items() if count == 0}
        for key in inputs:
            if key not in entry_ids:
                logger.warning(f"⚠ Input for '{key}' ignored: not an entry node")

        ready = [node_id for node_id in node_ids if node_id in entry_ids]
        if node_ids and not ready:
            # Unreachable for graphs built through GraphModel
            logger.error(
                "No node without dependencies - graph is cyclic; dispatching every node",
                extra={"event": "cyclic_graph_fallback"},
            )
            ready = list(node_ids)

        logger.info(f"🚀 Starting run of '{graph.id}': {len(node_ids)} node(s)")
        logger.info(f"   Ready: {', '.join(ready) if ready else '(none)'}")
        if self._event_bus:
            await self._event_bus.emit_execution_started(
                run_id=ctx.run_id, graph_id=graph.id, node_count=len(node_ids)
            )

        queue: deque[str] = deque(ready)
        enqueued: set[str] = set(ready)
        running: dict[asyncio.Task, str] = {}
        dispatch_order: list[str] = []
        failed_nodes: list[str] = []
        first_error: str | None = None
        aborted = False

        while queue or running:
            while not aborted and queue:
                node_id = queue.popleft()
                node = nodes_by_id[node_id]
                ctx.mark_running(node_id)
                dispatch_order.append(node_id)
                entry_input = inputs.get(node_id) if node_id in entry_ids else None
                task = asyncio.create_task(
                    self._run_node(node, graph.get_incoming_edges(node_id), ctx, entry_input),
                    name=f"node:{node_id}",
                )
                running[task] = node_id

            if not running:
                break

            done, _ = await asyncio.wait(running, return_when=asyncio.FIRST_COMPLETED)

            for task in done:
                node_id = running.pop(task)
                result: NodeResult = task.result()

                if not result.success:
                    error = result.error or "Unknown error"
                    ctx.mark_error(
                        node_id,
                        error,
                        raw_output=result.raw_output,
                        input_tokens=result.input_tokens,
                        output_tokens=result.output_tokens,
                    )
                    failed_nodes.append(node_id)
                    first_error = first_error or f"Node '{node_id}' failed: {error}"
                    if not aborted:
                        logger.error(f"   ✗ {node_id} failed: {error} - halting new dispatch")
                    else:
                        logger.error(f"   ✗ {node_id} failed while draining: {error}")
                    aborted = True
                    if self._event_bus:
                        await self._event_bus.emit_node_failed(
                            run_id=ctx.run_id, node_id=node_id, error=error
                        )
                    continue

                ctx.mark_done(
                    node_id,
                    result.output,
                    input_tokens=result.input_tokens,
                    output_tokens=result.output_tokens,
                )
                logger.info(
                    f"   ✓ {node_id} done "
                    f"(tokens: {result.input_tokens}/{result.output_tokens}, "
                    f"latency: {result.latency_ms}ms)"
                )
                if self._event_bus:
                    await self._event_bus.emit_node_completed(
                        run_id=ctx.run_id,
                        node_id=node_id,
                        input_tokens=result.input_tokens,
                        output_tokens=result.output_tokens,
                        latency_ms=result.latency_ms,
                    )

                if aborted:
                    # Recorded, but never used to unlock descendants
                    continue

                for next_id in adjacency.get(node_id, []):
                    remaining[next_id] -= 1
                    if remaining[next_id] != 0 or next_id in enqueued:
                        continue
                    if all(ctx.has_result(source) for source in predecessors[next_id]):
                        enqueued.add(next_id)
                        queue.append(next_id)
                        logger.info(f"   → {next_id} ready")

        total_in, total_out = ctx.token_totals()
        result = RunResult(
            success=not aborted,
            run_id=ctx.run_id,
            error=first_error,
            results=dict(ctx.results),
            failed_nodes=failed_nodes,
            dispatch_order=dispatch_order,
            total_input_tokens=total_in,
            total_output_tokens=total_out,
        )

        if aborted:
            logger.error(f"✗ Run failed: {first_error}")
            if self._event_bus:
                await self._event_bus.emit_execution_failed(
                    run_id=ctx.run_id, error=first_error or "", failed_nodes=failed_nodes
                )
            return result

        result.output = collect_sink_output(graph.sink_nodes(), ctx.results)
        logger.info("✓ Run complete!")
        logger.info(f"   Dispatch order: {' → '.join(dispatch_order)}")
        logger.info(f"   Total tokens: {total_in} in / {total_out} out")
        if self._event_bus:
            await self._event_bus.emit_execution_completed(run_id=ctx.run_id, output=result.output)
        return result

    async def _run_node(
        self,
        node: Any,
        inbound_edges: list,
        ctx: RunContext,
        entry_input: str | None,
    ) -> NodeResult:
        """Execute one node; any exception becomes an unsuccessful NodeResult."""
        set_trace_context(node_id=node.id)
        logger.info(f"▶ {node.id} ({node.kind})")
        if self._event_bus:
            await self._event_bus.emit_node_started(run_id=ctx.run_id, node_id=node.id)

        try:
            return await self.node_executor.execute(node, inbound_edges, ctx, entry_input)
        except Exception as e:
            logger.exception(f"   ✗ {node.id} raised: {e}")
            return NodeResult(success=False, error=str(e) or type(e).__name__)
