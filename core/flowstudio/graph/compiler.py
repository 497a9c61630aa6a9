"""
Static Compiler - turns a flow graph into a portable execution plan.

The plan is coarser than the runtime scheduler: nodes are grouped into
levels (waves) with no edges among them, and a level only starts once the
previous one has completely finished. That makes the plan executable by a
runner with no live dependency tracking (see PlanRunner and FlowServer).

    levels[0]  = nodes with no incoming edges (entry points)
    levels[k]  = nodes whose predecessors all sit in levels[0..k-1]
    sinks      = nodes with no outgoing edges

Plans are plain pydantic models and round-trip through JSON, so a plan
compiled on one machine can be served on another.
"""

import json
import logging
from typing import Any

from pydantic import BaseModel
from pydantic.alias_generators import to_camel

from flowstudio.config import DEFAULT_MODEL
from flowstudio.errors import CycleError
from flowstudio.graph.edge import EdgeSpec, GraphSpec
from flowstudio.graph.model import GraphModel
from flowstudio.graph.node import PassthroughNodeSpec, PromptNodeSpec

logger = logging.getLogger(__name__)

_PLAN_MODEL_CONFIG = {"alias_generator": to_camel, "populate_by_name": True, "frozen": True}


class PlanNode(BaseModel):
    """Minimal node description baked into a plan."""

    id: str
    kind: str = "prompt"
    model: str = DEFAULT_MODEL
    system_prompt: str = ""
    user_prompt: str = ""
    parse_json: bool = False

    model_config = _PLAN_MODEL_CONFIG

    def to_node_spec(self) -> PromptNodeSpec | PassthroughNodeSpec:
        if self.kind == "passthrough":
            return PassthroughNodeSpec(id=self.id)
        return PromptNodeSpec(
            id=self.id,
            model=self.model,
            system_prompt=self.system_prompt,
            user_prompt=self.user_prompt,
            return_json=self.parse_json,
        )


class PlanEdge(BaseModel):
    """Connection info only."""

    source: str
    target: str
    source_handle: str | None = None
    target_handle: str | None = None

    model_config = _PLAN_MODEL_CONFIG


class ExecutionPlan(BaseModel):
    """
    Wave-leveled, immutable execution plan.

    Every field is frozen and every collection is a tuple, so a compiled plan
    cannot drift from the runner that caches it.

    Example:
        plan = StaticCompiler().compile(graph)
        plan.levels        # (("prompt",), ("summary", "critique"), ("final",))
        plan.entry_points  # ("prompt",)
        plan.sinks         # ("final",)
    """

    graph_id: str = "flow"
    levels: tuple[tuple[str, ...], ...] = ()
    entry_points: tuple[str, ...] = ()
    sinks: tuple[str, ...] = ()
    nodes: tuple[PlanNode, ...] = ()
    edges: tuple[PlanEdge, ...] = ()

    model_config = _PLAN_MODEL_CONFIG

    def get_node(self, node_id: str) -> PlanNode | None:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def to_graph_spec(self) -> GraphSpec:
        """Rebuild the graph the plan was compiled from (edge IDs are synthesized)."""
        return GraphSpec(
            id=self.graph_id,
            nodes=[node.to_node_spec() for node in self.nodes],
            edges=[
                EdgeSpec(
                    id=f"{edge.source}->{edge.target}#{idx}",
                    source=edge.source,
                    target=edge.target,
                    source_handle=edge.source_handle,
                    target_handle=edge.target_handle,
                )
                for idx, edge in enumerate(self.edges)
            ],
        )

    def to_json(self, indent: int | None = 2) -> str:
        return self.model_dump_json(by_alias=True, indent=indent)

    @classmethod
    def from_json(cls, data: str | dict) -> "ExecutionPlan":
        """
        Load a plan from exported JSON.

        Accepts the document itself or an envelope with a nested "plan" key.
        """
        if isinstance(data, str):
            data = json.loads(data)
        if "plan" in data:
            data = data["plan"]
        return cls.model_validate(data)


def compute_levels(node_ids: list[str], edges: list[Any]) -> list[list[str]]:
    """
    Kahn's algorithm, leveled by waves.

    Raises CycleError when nodes remain but none has in-degree zero.
    """
    in_degree = {node_id: 0 for node_id in node_ids}
    adjacency: dict[str, list[str]] = {node_id: [] for node_id in node_ids}
    for edge in edges:
        adjacency[edge.source].append(edge.target)
        in_degree[edge.target] += 1

    levels: list[list[str]] = []
    current = [node_id for node_id in node_ids if in_degree[node_id] == 0]
    placed = 0

    while current:
        levels.append(current)
        placed += len(current)
        next_wave: set[str] = set()
        for node_id in current:
            for neighbor in adjacency[node_id]:
                in_degree[neighbor] -= 1
                if in_degree[neighbor] == 0:
                    next_wave.add(neighbor)
        # Keep graph order inside a level
        current = [node_id for node_id in node_ids if node_id in next_wave]

    if placed != len(node_ids):
        stuck = [node_id for node_id in node_ids if in_degree[node_id] > 0]
        raise CycleError(stuck[0], stuck[-1])

    return levels


class StaticCompiler:
    """
    Compiles a graph into an ExecutionPlan.

    Example:
        plan = StaticCompiler(default_model="gemini/gemini-2.5-flash").compile(model)
        Path("plan.json").write_text(plan.to_json())
    """

    def __init__(self, default_model: str = DEFAULT_MODEL):
        self.default_model = default_model

    def compile(self, graph: GraphSpec | GraphModel) -> ExecutionPlan:
        """
        Raises:
            GraphStructureError: a raw GraphSpec with dangling edges, duplicate
                IDs or a cycle (the same errors GraphModel raises on edit)
        """
        if not isinstance(graph, GraphModel):
            graph = GraphModel.from_spec(graph)
        graph = graph.to_spec()

        node_ids = graph.node_ids()
        levels = compute_levels(node_ids, graph.edges)
        sinks = graph.sink_nodes()

        plan = ExecutionPlan(
            graph_id=graph.id,
            levels=levels,
            entry_points=list(levels[0]) if levels else [],
            sinks=sinks,
            nodes=[self._compile_node(node) for node in graph.nodes],
            edges=[
                PlanEdge(
                    source=edge.source,
                    target=edge.target,
                    source_handle=edge.source_handle,
                    target_handle=edge.target_handle,
                )
                for edge in graph.edges
            ],
        )

        logger.info(
            f"Compiled '{graph.id}': {len(node_ids)} node(s) in {len(levels)} level(s), "
            f"entry points {plan.entry_points}, sinks {plan.sinks}"
        )
        return plan

    def _compile_node(self, node: Any) -> PlanNode:
        if node.kind == "passthrough":
            return PlanNode(id=node.id, kind="passthrough", model="")
        return PlanNode(
            id=node.id,
            kind=node.kind,
            model=node.model or self.default_model,
            system_prompt=node.system_prompt,
            user_prompt=node.user_prompt,
            parse_json=node.return_json,
        )
