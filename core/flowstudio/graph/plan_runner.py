"""
Plan Runner - replays an ExecutionPlan level by level.

Each level runs fully in parallel (asyncio.gather) and must finish before
the next one starts, so a node only ever reads results of earlier levels.
Node semantics are exactly those of the runtime scheduler: the same
NodeExecutor resolves handles and calls the generation service.

Any node failure aborts the whole run once its level has drained:

    {"ok": True, "output": <single sink result or {sink_id: result}>}
    {"ok": False, "error": "<message>"}
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from flowstudio.graph.compiler import ExecutionPlan
from flowstudio.graph.context import RunContext
from flowstudio.graph.node import NodeExecutor, NodeResult
from flowstudio.graph.scheduler import collect_sink_output
from flowstudio.llm.service import GenerationService
from flowstudio.observability import reset_trace_context, set_trace_context

logger = logging.getLogger(__name__)


@dataclass
class PlanRunResult:
    """Result of replaying a plan."""

    ok: bool
    output: Any = None
    error: str | None = None
    results: dict[str, Any] = field(default_factory=dict)
    levels_completed: int = 0

    def to_response(self) -> dict[str, Any]:
        """The wire shape served by the exported endpoint."""
        if self.ok:
            return {"ok": True, "output": self.output}
        return {"ok": False, "error": self.error}


class PlanRunner:
    """
    Executes a compiled plan without a dependency-tracking runtime.

    Example:
        runner = PlanRunner(plan, service=GenerationService(LiteLLMProvider()))
        result = await runner.run({"prompt": "Plan a trip to Lisbon"})
        result.to_response()  # {"ok": True, "output": "..."}
    """

    def __init__(
        self,
        plan: ExecutionPlan,
        service: GenerationService | None = None,
        node_executor: NodeExecutor | None = None,
    ):
        self.plan = plan
        self.node_executor = node_executor or NodeExecutor(service=service)
        self._graph = plan.to_graph_spec()
        self._nodes_by_id = {node.id: node for node in self._graph.nodes}

    async def run(
        self,
        inputs: dict[str, str] | None = None,
        run_context: RunContext | None = None,
    ) -> PlanRunResult:
        """
        Args:
            inputs: Text for entry points, keyed by node ID
            run_context: Optional caller-owned state for inspection
        """
        ctx = run_context or RunContext()
        ctx.reset(self._graph.node_ids())
        token = set_trace_context(run_id=ctx.run_id, graph_id=self.plan.graph_id)
        try:
            return await self._run_levels(ctx, inputs or {})
        finally:
            reset_trace_context(token)

    async def _run_levels(self, ctx: RunContext, inputs: dict[str, str]) -> PlanRunResult:
        entry_points = set(self.plan.entry_points)

        logger.info(
            f"🚀 Replaying plan '{self.plan.graph_id}': {len(self.plan.levels)} level(s)"
        )

        for level_idx, level in enumerate(self.plan.levels):
            logger.info(f"   Level {level_idx}: {', '.join(level)}")
            for node_id in level:
                ctx.mark_running(node_id)

            outcomes = await asyncio.gather(
                *(
                    self._run_node(
                        node_id,
                        ctx,
                        inputs.get(node_id) if node_id in entry_points else None,
                    )
                    for node_id in level
                )
            )

            errors = []
            for node_id, result in zip(level, outcomes, strict=True):
                if result.success:
                    ctx.mark_done(
                        node_id,
                        result.output,
                        input_tokens=result.input_tokens,
                        output_tokens=result.output_tokens,
                    )
                else:
                    error = result.error or "Unknown error"
                    ctx.mark_error(
                        node_id,
                        error,
                        raw_output=result.raw_output,
                        input_tokens=result.input_tokens,
                        output_tokens=result.output_tokens,
                    )
                    errors.append(f"Node '{node_id}' failed: {error}")

            if errors:
                logger.error(f"✗ Plan aborted at level {level_idx}: {errors[0]}")
                return PlanRunResult(
                    ok=False,
                    error=errors[0],
                    results=dict(ctx.results),
                    levels_completed=level_idx,
                )

        output = collect_sink_output(self.plan.sinks, ctx.results)
        logger.info("✓ Plan complete!")
        return PlanRunResult(
            ok=True,
            output=output,
            results=dict(ctx.results),
            levels_completed=len(self.plan.levels),
        )

    async def _run_node(
        self, node_id: str, ctx: RunContext, entry_input: str | None
    ) -> NodeResult:
        node = self._nodes_by_id.get(node_id)
        if node is None:
            return NodeResult(success=False, error=f"Node '{node_id}' is not part of the plan")

        set_trace_context(node_id=node_id)
        try:
            return await self.node_executor.execute(
                node, self._graph.get_incoming_edges(node_id), ctx, entry_input
            )
        except Exception as e:
            logger.exception(f"   ✗ {node_id} raised: {e}")
            return NodeResult(success=False, error=str(e) or type(e).__name__)
