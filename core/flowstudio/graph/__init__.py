"""Graph structures: nodes, edges, the DAG model, scheduling and compilation."""

from flowstudio.graph.compiler import ExecutionPlan, PlanEdge, PlanNode, StaticCompiler
from flowstudio.graph.context import ExecutionState, ExecutionStatus, RunContext
from flowstudio.graph.cycle_guard import find_cycle, would_create_cycle
from flowstudio.graph.edge import EdgeSpec, GraphSpec
from flowstudio.graph.model import GraphModel
from flowstudio.graph.node import (
    NodeContext,
    NodeExecutor,
    NodeProtocol,
    NodeResult,
    NodeSpec,
    PassthroughNode,
    PassthroughNodeSpec,
    PromptNode,
    PromptNodeSpec,
)
from flowstudio.graph.plan_runner import PlanRunner, PlanRunResult
from flowstudio.graph.router import HandleRouter, normalize_value
from flowstudio.graph.scheduler import FlowScheduler, RunResult

__all__ = [
    # Node
    "NodeSpec",
    "PromptNodeSpec",
    "PassthroughNodeSpec",
    "NodeContext",
    "NodeResult",
    "NodeProtocol",
    "PromptNode",
    "PassthroughNode",
    "NodeExecutor",
    # Edge / graph
    "EdgeSpec",
    "GraphSpec",
    "GraphModel",
    "would_create_cycle",
    "find_cycle",
    # Routing
    "HandleRouter",
    "normalize_value",
    # Run state
    "RunContext",
    "ExecutionState",
    "ExecutionStatus",
    # Scheduler (runtime)
    "FlowScheduler",
    "RunResult",
    # Compiler (static)
    "StaticCompiler",
    "ExecutionPlan",
    "PlanNode",
    "PlanEdge",
    "PlanRunner",
    "PlanRunResult",
]
