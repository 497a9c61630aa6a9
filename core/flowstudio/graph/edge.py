"""
Edge Protocol - How nodes connect in a flow graph.

Edges define:
1. Source and target nodes (the dependency)
2. Which input slot of the target receives the value (target_handle)
3. Which part of a structured upstream result is routed (source_handle)

An edge is both a scheduling constraint (the target never runs before the
source has finished successfully) and a data link. An edge without a
target_handle still orders execution; prompt nodes simply ignore its value.

GraphSpec is the plain, serializable snapshot of a graph. It performs no
invariant enforcement on construction; GraphModel owns that. Documents that
arrive from outside can be checked with GraphSpec.validate_structure().
"""

from typing import Any

from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel

from flowstudio.graph.cycle_guard import find_cycle
from flowstudio.graph.node import NodeSpec
from flowstudio.graph.router import canonical_handle


class EdgeSpec(BaseModel):
    """
    A connection between two nodes.

    Examples:
        # Route A's result into B's user prompt
        EdgeSpec(id="a-b", source="a", target="b", target_handle="user_prompt")

        # Pure ordering constraint, no data routed into a prompt slot
        EdgeSpec(id="a-c", source="a", target="c")
    """

    id: str
    source: str = Field(description="Source node ID")
    target: str = Field(description="Target node ID")

    source_handle: str | None = Field(
        default=None,
        description="Key of a structured upstream result to route (multi-output kinds)",
    )
    target_handle: str | None = Field(
        default=None,
        description="Input slot of the target node, e.g. 'system_prompt' or 'user_prompt'",
    )

    model_config = {"alias_generator": to_camel, "populate_by_name": True, "extra": "allow"}

    @field_validator("target_handle")
    @classmethod
    def _normalize_target_handle(cls, value: str | None) -> str | None:
        return canonical_handle(value)

    @field_validator("source_handle")
    @classmethod
    def _empty_source_handle(cls, value: str | None) -> str | None:
        return value or None

    def select(self, upstream_result: Any) -> Any:
        """Pick the part of an upstream result this edge routes."""
        if self.source_handle and isinstance(upstream_result, dict):
            return upstream_result.get(self.source_handle)
        return upstream_result


class GraphSpec(BaseModel):
    """
    Complete, serializable description of a flow graph.

        GraphSpec(
            id="summarize-then-plan",
            nodes=[PromptNodeSpec(id="a", ...), PromptNodeSpec(id="b", ...)],
            edges=[EdgeSpec(id="a-b", source="a", target="b", target_handle="user_prompt")],
        )
    """

    id: str = "flow"
    description: str = ""
    nodes: list[NodeSpec] = Field(default_factory=list, description="All nodes")
    edges: list[EdgeSpec] = Field(default_factory=list, description="All edges")

    model_config = {"alias_generator": to_camel, "populate_by_name": True, "extra": "allow"}

    def get_node(self, node_id: str) -> NodeSpec | None:
        """Get a node by ID."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def node_ids(self) -> list[str]:
        return [node.id for node in self.nodes]

    def get_outgoing_edges(self, node_id: str) -> list[EdgeSpec]:
        """Get all edges leaving a node, in edge order."""
        return [e for e in self.edges if e.source == node_id]

    def get_incoming_edges(self, node_id: str) -> list[EdgeSpec]:
        """Get all edges entering a node, in edge order."""
        return [e for e in self.edges if e.target == node_id]

    def entry_nodes(self) -> list[str]:
        """Nodes with no incoming edges."""
        targets = {e.target for e in self.edges}
        return [n.id for n in self.nodes if n.id not in targets]

    def sink_nodes(self) -> list[str]:
        """Nodes with no outgoing edges."""
        sources = {e.source for e in self.edges}
        return [n.id for n in self.nodes if n.id not in sources]

    def validate_structure(self) -> list[str]:
        """Validate the graph structure. Returns a list of problems (empty if valid)."""
        errors = []

        seen_nodes: set[str] = set()
        for node in self.nodes:
            if node.id in seen_nodes:
                errors.append(f"Duplicate node ID: '{node.id}'")
            seen_nodes.add(node.id)

        seen_edges: set[str] = set()
        for edge in self.edges:
            if edge.id in seen_edges:
                errors.append(f"Duplicate edge ID: '{edge.id}'")
            seen_edges.add(edge.id)

            if edge.source not in seen_nodes:
                errors.append(f"Edge '{edge.id}' references missing source '{edge.source}'")
            if edge.target not in seen_nodes:
                errors.append(f"Edge '{edge.id}' references missing target '{edge.target}'")
            if edge.source == edge.target:
                errors.append(f"Edge '{edge.id}' is a self-loop on '{edge.source}'")

        cycle = find_cycle(self.node_ids(), self.edges)
        if cycle and len(cycle) > 2:
            errors.append(f"Graph contains a cycle: {' -> '.join(cycle)}")

        return errors
