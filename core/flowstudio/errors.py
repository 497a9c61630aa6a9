"""
Flow errors - the exception taxonomy for graph editing and execution.

Two families:
- GraphStructureError: raised synchronously by GraphModel when an edit would
  break the graph invariants. The graph is left unchanged.
- NodeExecutionError: raised (or captured) while a single node runs. The
  scheduler records it on that node's ExecutionState and stops dispatching
  new work.
"""


class FlowError(Exception):
    """Base class for all flowstudio errors."""


# ---------------------------------------------------------------------------
# Structural errors (never enter execution)
# ---------------------------------------------------------------------------


class GraphStructureError(FlowError):
    """An edit was rejected because it would leave the graph invalid."""


class CycleError(GraphStructureError):
    """Adding the edge would close a directed cycle."""

    def __init__(self, source: str, target: str, edge_id: str | None = None):
        self.source = source
        self.target = target
        self.edge_id = edge_id
        label = f"Edge '{edge_id}'" if edge_id else "Edge"
        super().__init__(f"{label} {source} -> {target} would create a cycle")


class NodeReferenceError(GraphStructureError):
    """An edge (or lookup) refers to a node that does not exist."""

    def __init__(self, node_id: str, edge_id: str | None = None):
        self.node_id = node_id
        self.edge_id = edge_id
        if edge_id:
            message = f"Edge '{edge_id}' references missing node '{node_id}'"
        else:
            message = f"Node '{node_id}' not found"
        super().__init__(message)


class EdgeNotFoundError(GraphStructureError):
    def __init__(self, edge_id: str):
        self.edge_id = edge_id
        super().__init__(f"Edge '{edge_id}' not found")


class DuplicateNodeError(GraphStructureError):
    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Node '{node_id}' already exists")


class DuplicateEdgeError(GraphStructureError):
    def __init__(self, edge_id: str):
        self.edge_id = edge_id
        super().__init__(f"Edge '{edge_id}' already exists")


# ---------------------------------------------------------------------------
# Execution errors (captured per node)
# ---------------------------------------------------------------------------


class NodeExecutionError(FlowError):
    """Uncategorized failure while a node executes (network fault, timeout...)."""

    def __init__(self, message: str, node_id: str | None = None, raw_output: str | None = None):
        self.node_id = node_id
        self.raw_output = raw_output
        super().__init__(message)


# Name used throughout the docs for the generic execution failure.
ExecutionError = NodeExecutionError


class PromptValidationError(NodeExecutionError):
    """A required prompt field was missing from a generation request."""


class UpstreamEmptyError(NodeExecutionError):
    """The generation service returned no text."""


class ParseError(NodeExecutionError):
    """JSON output was requested but the model text is not valid JSON."""
