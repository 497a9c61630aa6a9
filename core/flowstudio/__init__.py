"""
Flow Studio - build, run and export graphs of LLM prompt calls.

Nodes are prompt calls (or passthroughs); edges carry one node's result into
another node's prompt slot. GraphModel keeps the graph acyclic, FlowScheduler
runs it with dependency-driven concurrency, and StaticCompiler turns it into
a portable, wave-leveled ExecutionPlan.
"""

from flowstudio.errors import (
    CycleError,
    ExecutionError,
    FlowError,
    GraphStructureError,
    NodeExecutionError,
    NodeReferenceError,
    ParseError,
)
from flowstudio.graph import (
    EdgeSpec,
    ExecutionPlan,
    FlowScheduler,
    GraphModel,
    GraphSpec,
    NodeExecutor,
    PassthroughNodeSpec,
    PlanRunner,
    PromptNodeSpec,
    RunContext,
    StaticCompiler,
)
from flowstudio.llm import GenerationService, LiteLLMProvider, MockLLMProvider

__version__ = "0.1.0"

__all__ = [
    "CycleError",
    "ExecutionError",
    "FlowError",
    "GraphStructureError",
    "NodeExecutionError",
    "NodeReferenceError",
    "ParseError",
    "EdgeSpec",
    "ExecutionPlan",
    "FlowScheduler",
    "GraphModel",
    "GraphSpec",
    "NodeExecutor",
    "PassthroughNodeSpec",
    "PlanRunner",
    "PromptNodeSpec",
    "RunContext",
    "StaticCompiler",
    "GenerationService",
    "LiteLLMProvider",
    "MockLLMProvider",
]
