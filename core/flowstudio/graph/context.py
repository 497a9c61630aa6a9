"""
Run context - the state of one execution of a flow graph.

A RunContext is created by the caller and handed to the scheduler and the
node executor. It owns:
- the per-node ExecutionState map (what an editor shows on each node)
- the result store (node_id -> result, written once per node)
- the HandleRouter recording values delivered to node inputs

Nothing here is global, so independent graphs can run concurrently with
separate contexts.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from flowstudio.graph.router import HandleRouter

TOKENS_UNAVAILABLE = -1


class ExecutionStatus(StrEnum):
    """Lifecycle of a node within a run."""

    IDLE = "idle"
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"

    def is_terminal(self) -> bool:
        return self in (ExecutionStatus.DONE, ExecutionStatus.ERROR)


@dataclass
class ExecutionState:
    """Live execution state of a single node."""

    status: ExecutionStatus = ExecutionStatus.IDLE
    result: Any = None
    error: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    input_tokens: int = TOKENS_UNAVAILABLE
    output_tokens: int = TOKENS_UNAVAILABLE

    @property
    def latency_ms(self) -> int | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return int((self.finished_at - self.started_at).total_seconds() * 1000)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "result": self.result,
            "error": self.error,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
        }


@dataclass
class RunContext:
    """Caller-owned state for one run of a graph."""

    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    execution: dict[str, ExecutionState] = field(default_factory=dict)
    results: dict[str, Any] = field(default_factory=dict)
    router: HandleRouter = field(default_factory=HandleRouter)

    @property
    def handle_data(self) -> dict[str, dict[str, str]]:
        return self.router.values

    def reset(self, node_ids: list[str]) -> None:
        """Put every node back to idle and forget previous results."""
        self.execution = {node_id: ExecutionState() for node_id in node_ids}
        self.results.clear()
        self.router.clear()

    def state(self, node_id: str) -> ExecutionState:
        return self.execution.setdefault(node_id, ExecutionState())

    def has_result(self, node_id: str) -> bool:
        return node_id in self.results

    def mark_running(self, node_id: str) -> ExecutionState:
        state = self.state(node_id)
        if state.status.is_terminal():
            raise RuntimeError(f"Node '{node_id}' already finished in run {self.run_id}")
        state.status = ExecutionStatus.RUNNING
        state.started_at = datetime.now()
        return state

    def mark_done(
        self,
        node_id: str,
        result: Any,
        input_tokens: int = TOKENS_UNAVAILABLE,
        output_tokens: int = TOKENS_UNAVAILABLE,
    ) -> ExecutionState:
        state = self._finish(node_id, ExecutionStatus.DONE)
        state.result = result
        state.input_tokens = input_tokens
        state.output_tokens = output_tokens
        self.results[node_id] = result
        return state

    def mark_error(
        self,
        node_id: str,
        error: str,
        raw_output: Any = None,
        input_tokens: int = TOKENS_UNAVAILABLE,
        output_tokens: int = TOKENS_UNAVAILABLE,
    ) -> ExecutionState:
        """Record a failure. The raw output is kept for inspection, not as a result."""
        state = self._finish(node_id, ExecutionStatus.ERROR)
        state.error = error
        state.result = raw_output
        state.input_tokens = input_tokens
        state.output_tokens = output_tokens
        return state

    def _finish(self, node_id: str, status: ExecutionStatus) -> ExecutionState:
        state = self.state(node_id)
        if state.status.is_terminal():
            raise RuntimeError(f"Node '{node_id}' already finished in run {self.run_id}")
        state.status = status
        state.finished_at = datetime.now()
        return state

    def token_totals(self) -> tuple[int, int]:
        """Sum of reported (non-sentinel) input and output tokens."""
        total_in = sum(s.input_tokens for s in self.execution.values() if s.input_tokens > 0)
        total_out = sum(s.output_tokens for s in self.execution.values() if s.output_tokens > 0)
        return total_in, total_out
