"""
Graph Model - the editable flow graph.

GraphModel is the only way to build a graph that the scheduler trusts. Every
edit is checked before it is committed, so the model never holds:
- an edge whose source or target is missing
- a self-loop or any other directed cycle
- duplicate node or edge IDs

A rejected edit raises a GraphStructureError subclass and leaves the model
exactly as it was.
"""

import logging
from typing import Any

from flowstudio.errors import (
    CycleError,
    DuplicateEdgeError,
    DuplicateNodeError,
    EdgeNotFoundError,
    NodeReferenceError,
)
from flowstudio.graph.cycle_guard import would_create_cycle
from flowstudio.graph.edge import EdgeSpec, GraphSpec

logger = logging.getLogger(__name__)


class GraphModel:
    """
    Holds nodes and edges and enforces the DAG invariant on every edit.

    Example:
        model = GraphModel()
        model.add_node(PromptNodeSpec(id="a", user_prompt="hi"))
        model.add_node(PromptNodeSpec(id="b", system_prompt="be terse"))
        model.add_edge(EdgeSpec(id="a-b", source="a", target="b", target_handle="user_prompt"))
        model.add_edge(EdgeSpec(id="b-a", source="b", target="a"))  # raises CycleError
    """

    def __init__(self, graph_id: str = "flow", description: str = ""):
        self.graph_id = graph_id
        self.description = description
        self._nodes: dict[str, Any] = {}
        self._edges: dict[str, EdgeSpec] = {}

    @classmethod
    def from_spec(cls, spec: GraphSpec) -> "GraphModel":
        """
        Rebuild a model by replaying every node and edge insertion.

        Documents that violate the invariants fail with the same errors an
        interactive edit would.
        """
        model = cls(graph_id=spec.id, description=spec.description)
        for node in spec.nodes:
            model.add_node(node)
        for edge in spec.edges:
            model.add_edge(edge)
        return model

    def to_spec(self) -> GraphSpec:
        """Snapshot the current graph (copies, so later edits don't leak in)."""
        return GraphSpec(
            id=self.graph_id,
            description=self.description,
            nodes=[node.model_copy(deep=True) for node in self._nodes.values()],
            edges=[edge.model_copy() for edge in self._edges.values()],
        )

    # === QUERIES ===

    @property
    def nodes(self) -> list[Any]:
        return list(self._nodes.values())

    @property
    def edges(self) -> list[EdgeSpec]:
        return list(self._edges.values())

    def get_node(self, node_id: str) -> Any | None:
        return self._nodes.get(node_id)

    def get_edge(self, edge_id: str) -> EdgeSpec | None:
        return self._edges.get(edge_id)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    # === NODE EDITS ===

    def add_node(self, node: Any) -> None:
        if node.id in self._nodes:
            raise DuplicateNodeError(node.id)
        self._nodes[node.id] = node
        logger.debug(f"Added {node.kind} node '{node.id}'")

    def update_node(self, node: Any) -> None:
        """Replace the configuration of an existing node; edges are untouched."""
        if node.id not in self._nodes:
            raise NodeReferenceError(node.id)
        self._nodes[node.id] = node

    def remove_node(self, node_id: str) -> None:
        """Remove a node and every edge that starts or ends at it."""
        if node_id not in self._nodes:
            raise NodeReferenceError(node_id)
        del self._nodes[node_id]

        dropped = [
            edge_id
            for edge_id, edge in self._edges.items()
            if edge.source == node_id or edge.target == node_id
        ]
        for edge_id in dropped:
            del self._edges[edge_id]
        logger.debug(f"Removed node '{node_id}' and {len(dropped)} edge(s)")

    def set_handle_data(self, node_id: str, handle: str, value: str) -> None:
        """Store the last value delivered to a node input (HandleRouter sink)."""
        node = self._nodes.get(node_id)
        if node is None:
            raise NodeReferenceError(node_id)
        node.handle_data[handle] = value

    # === EDGE EDITS ===

    def add_edge(self, edge: EdgeSpec) -> None:
        if edge.id in self._edges:
            raise DuplicateEdgeError(edge.id)
        for endpoint in (edge.source, edge.target):
            if endpoint not in self._nodes:
                raise NodeReferenceError(endpoint, edge_id=edge.id)
        if would_create_cycle(edge, self._edges.values()):
            raise CycleError(edge.source, edge.target, edge_id=edge.id)

        self._edges[edge.id] = edge
        logger.debug(f"Added edge '{edge.id}': {edge.source} -> {edge.target}")

    def remove_edge(self, edge_id: str) -> None:
        if edge_id not in self._edges:
            raise EdgeNotFoundError(edge_id)
        del self._edges[edge_id]
