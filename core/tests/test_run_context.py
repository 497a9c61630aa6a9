"""
Tests for per-run execution state.
"""

import pytest

from flowstudio.graph.context import TOKENS_UNAVAILABLE, ExecutionStatus, RunContext


def test_reset_puts_every_node_back_to_idle():
    ctx = RunContext()
    ctx.reset(["a", "b"])
    ctx.mark_running("a")
    ctx.mark_done("a", "out")

    ctx.reset(["a", "b"])

    assert {s.status for s in ctx.execution.values()} == {ExecutionStatus.IDLE}
    assert ctx.results == {}
    assert ctx.execution["a"].input_tokens == TOKENS_UNAVAILABLE


def test_done_stores_result_once():
    ctx = RunContext()
    ctx.reset(["a"])
    ctx.mark_running("a")
    state = ctx.mark_done("a", {"k": 1}, input_tokens=3, output_tokens=4)

    assert state.status == ExecutionStatus.DONE
    assert ctx.results["a"] == {"k": 1}
    assert state.latency_ms is not None

    with pytest.raises(RuntimeError):
        ctx.mark_done("a", "again")
    with pytest.raises(RuntimeError):
        ctx.mark_running("a")


def test_error_keeps_raw_output_out_of_result_store():
    ctx = RunContext()
    ctx.reset(["a"])
    ctx.mark_running("a")
    state = ctx.mark_error("a", "bad json", raw_output="not json")

    assert state.status == ExecutionStatus.ERROR
    assert state.result == "not json"
    assert state.error == "bad json"
    assert not ctx.has_result("a")


def test_token_totals_skip_unavailable():
    ctx = RunContext()
    ctx.reset(["a", "b", "c"])
    for node_id in ("a", "b", "c"):
        ctx.mark_running(node_id)
    ctx.mark_done("a", "x", input_tokens=5, output_tokens=2)
    ctx.mark_done("b", "y")
    ctx.mark_error("c", "boom", input_tokens=1, output_tokens=0)

    assert ctx.token_totals() == (6, 2)


def test_to_dict_is_serializable():
    ctx = RunContext()
    ctx.reset(["a"])
    ctx.mark_running("a")
    data = ctx.execution["a"].to_dict()
    assert data["status"] == "running"
    assert data["started_at"] is not None
    assert data["finished_at"] is None
