"""
Tests for FlowScheduler: dependency order, concurrency and failure containment.
"""

import asyncio
import time
from unittest.mock import AsyncMock, MagicMock

import pytest

from flowstudio.errors import NodeReferenceError
from flowstudio.graph.context import TOKENS_UNAVAILABLE, ExecutionStatus, RunContext
from flowstudio.graph.edge import EdgeSpec, GraphSpec
from flowstudio.graph.model import GraphModel
from flowstudio.graph.node import (
    NodeExecutor,
    NodeProtocol,
    NodeResult,
    PassthroughNodeSpec,
    PromptNodeSpec,
)
from flowstudio.graph.router import HandleRouter
from flowstudio.graph.scheduler import FlowScheduler
from flowstudio.llm.mock import MockLLMProvider
from flowstudio.llm.provider import LLMResponse
from flowstudio.llm.service import GenerationService
from flowstudio.observability import clear_trace_context, get_trace_context, set_trace_context
from flowstudio.runtime.event_bus import EventBus, EventType


# ---- Fake nodes ----
class SlowNode(NodeProtocol):
    """Sleeps, then records when it started and finished."""

    def __init__(self, delay: float, log: list):
        self.delay = delay
        self.log = log

    async def execute(self, ctx):
        node_id = ctx.node_spec.id
        self.log.append(("start", node_id, time.monotonic()))
        await asyncio.sleep(self.delay)
        self.log.append(("end", node_id, time.monotonic()))
        return NodeResult(success=True, output=node_id)


class FailingNode(NodeProtocol):
    async def execute(self, ctx):
        return NodeResult(success=False, error="boom", raw_output="partial")


class ExplodingNode(NodeProtocol):
    async def execute(self, ctx):
        raise RuntimeError("unexpected")


def _graph(edges: list[tuple[str, str]], node_ids: list[str]) -> GraphSpec:
    model = GraphModel(graph_id="test")
    for node_id in node_ids:
        model.add_node(PassthroughNodeSpec(id=node_id))
    for source, target in edges:
        model.add_edge(EdgeSpec(id=f"{source}-{target}", source=source, target=target))
    return model.to_spec()


def _diamond() -> GraphSpec:
    return _graph([("a", "b"), ("a", "c"), ("b", "d"), ("c", "d")], ["a", "b", "c", "d"])


class TestOrdering:
    @pytest.mark.asyncio
    async def test_predecessors_finish_before_successor_starts(self):
        log: list = []
        registry = {
            "a": SlowNode(0.01, log),
            "b": SlowNode(0.05, log),
            "c": SlowNode(0.01, log),
            "d": SlowNode(0.01, log),
        }
        scheduler = FlowScheduler(NodeExecutor(node_registry=registry))

        result = await scheduler.run(_diamond())

        assert result.success is True
        times = {(kind, node_id): t for kind, node_id, t in log}
        assert times[("start", "b")] >= times[("end", "a")]
        assert times[("start", "c")] >= times[("end", "a")]
        assert times[("start", "d")] >= times[("end", "b")]
        assert times[("start", "d")] >= times[("end", "c")]
        assert result.dispatch_order[0] == "a"
        assert result.dispatch_order[-1] == "d"

    @pytest.mark.asyncio
    async def test_independent_nodes_overlap(self):
        log: list = []
        registry = {"x": SlowNode(0.1, log), "y": SlowNode(0.1, log)}
        scheduler = FlowScheduler(NodeExecutor(node_registry=registry))

        start = time.monotonic()
        result = await scheduler.run(_graph([], ["x", "y"]))
        elapsed = time.monotonic() - start

        assert result.success is True
        assert elapsed < 0.19
        starts = [entry for entry in log if entry[0] == "start"]
        ends = [entry for entry in log if entry[0] == "end"]
        assert max(s[2] for s in starts) < min(e[2] for e in ends)

    @pytest.mark.asyncio
    async def test_every_node_runs_exactly_once(self):
        log: list = []
        ids = ["a", "b", "c", "d"]
        registry = {node_id: SlowNode(0, log) for node_id in ids}
        result = await FlowScheduler(NodeExecutor(node_registry=registry)).run(_diamond())

        started = [node_id for kind, node_id, _ in log if kind == "start"]
        assert sorted(started) == ids
        assert sorted(result.dispatch_order) == ids

    @pytest.mark.asyncio
    async def test_empty_graph(self):
        result = await FlowScheduler(NodeExecutor()).run(GraphSpec())
        assert result.success is True
        assert result.dispatch_order == []


class TestDataFlow:
    @pytest.mark.asyncio
    async def test_linear_chain_routes_result_into_user_prompt(self):
        provider = MockLLMProvider(
            responder=lambda system, user, model: "hello" if system == "greet" else user.upper()
        )
        model = GraphModel()
        model.add_node(PromptNodeSpec(id="A", system_prompt="greet", user_prompt="start"))
        model.add_node(PromptNodeSpec(id="B", system_prompt="be terse", user_prompt="ignored"))
        model.add_edge(EdgeSpec(id="ab", source="A", target="B", target_handle="userPrompt"))

        ctx = RunContext()
        scheduler = FlowScheduler(NodeExecutor(service=GenerationService(provider)))
        result = await scheduler.run(model.to_spec(), ctx)

        assert result.success is True
        assert provider.calls[1].system == "be terse"
        assert provider.calls[1].user == "hello"
        assert result.output == "HELLO"
        assert ctx.handle_data == {"B": {"user_prompt": "hello"}}
        assert ctx.execution["B"].status == ExecutionStatus.DONE
        assert result.total_input_tokens > 0

    @pytest.mark.asyncio
    async def test_fan_in_list_in_edge_order(self):
        graph = _graph([("A", "C"), ("B", "C")], ["A", "B", "C"])
        ctx = RunContext()

        result = await FlowScheduler(NodeExecutor()).run(graph, ctx, inputs={"A": "x", "B": "y"})

        assert ctx.results["C"] == ["x", "y"]
        assert result.output == ["x", "y"]

    @pytest.mark.asyncio
    async def test_multiple_sinks_output_mapping(self):
        graph = _graph([("A", "B"), ("A", "C")], ["A", "B", "C"])
        result = await FlowScheduler(NodeExecutor()).run(graph, inputs={"A": "v"})
        assert result.output == {"B": "v", "C": "v"}

    @pytest.mark.asyncio
    async def test_inputs_for_non_entry_nodes_are_ignored(self):
        graph = _graph([("A", "B")], ["A", "B"])
        result = await FlowScheduler(NodeExecutor()).run(graph, inputs={"A": "x", "B": "nope"})
        assert result.output == "x"

    @pytest.mark.asyncio
    async def test_router_sink_updates_stored_nodes(self):
        model = GraphModel()
        model.add_node(PassthroughNodeSpec(id="A"))
        model.add_node(PromptNodeSpec(id="B", system_prompt="s"))
        model.add_edge(EdgeSpec(id="ab", source="A", target="B", target_handle="user_prompt"))

        ctx = RunContext(router=HandleRouter(sink=model.set_handle_data))
        service = GenerationService(MockLLMProvider())
        await FlowScheduler(NodeExecutor(service=service)).run(
            model.to_spec(), ctx, inputs={"A": "routed"}
        )

        assert model.get_node("B").handle_data == {"user_prompt": "routed"}


class TestFailure:
    @pytest.mark.asyncio
    async def test_json_failure_blocks_descendants(self):
        provider = MockLLMProvider(responder=lambda system, user, model: "not json")
        model = GraphModel()
        model.add_node(PromptNodeSpec(id="P", system_prompt="s", user_prompt="u", return_json=True))
        model.add_node(PromptNodeSpec(id="Q", system_prompt="s", user_prompt="u"))
        model.add_edge(EdgeSpec(id="pq", source="P", target="Q", target_handle="user_prompt"))

        ctx = RunContext()
        scheduler = FlowScheduler(NodeExecutor(service=GenerationService(provider)))
        result = await scheduler.run(model.to_spec(), ctx)

        assert result.success is False
        assert result.failed_nodes == ["P"]
        assert ctx.execution["P"].status == ExecutionStatus.ERROR
        assert ctx.execution["P"].result == "not json"
        assert ctx.execution["Q"].status == ExecutionStatus.IDLE
        assert "Q" not in result.dispatch_order
        assert len(provider.calls) == 1

    @pytest.mark.asyncio
    async def test_in_flight_siblings_drain_but_nothing_new_starts(self):
        log: list = []
        registry = {
            "fail": FailingNode(),
            "slow": SlowNode(0.05, log),
            "after_slow": SlowNode(0, log),
        }
        graph = _graph([("slow", "after_slow")], ["fail", "slow", "after_slow"])
        ctx = RunContext()

        result = await FlowScheduler(NodeExecutor(node_registry=registry)).run(graph, ctx)

        assert result.success is False
        assert ctx.execution["slow"].status == ExecutionStatus.DONE
        assert ctx.execution["after_slow"].status == ExecutionStatus.IDLE
        assert ctx.execution["fail"].result == "partial"
        assert result.error == "Node 'fail' failed: boom"

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_contained(self):
        graph = _graph([("a", "b")], ["a", "b"])
        ctx = RunContext()
        executor = NodeExecutor(node_registry={"a": ExplodingNode()})

        result = await FlowScheduler(executor).run(graph, ctx)

        assert result.success is False
        assert ctx.execution["a"].error == "unexpected"
        assert ctx.execution["b"].status == ExecutionStatus.IDLE

    @pytest.mark.asyncio
    async def test_rerun_resets_state(self):
        graph = _graph([("a", "b")], ["a", "b"])
        ctx = RunContext()
        scheduler = FlowScheduler(NodeExecutor())

        await scheduler.run(graph, ctx, inputs={"a": "first"})
        result = await scheduler.run(graph, ctx, inputs={"a": "second"})

        assert result.output == "second"
        assert ctx.execution["b"].status == ExecutionStatus.DONE


class TestTokens:
    @pytest.mark.asyncio
    async def test_provider_without_usage_records_unavailable(self):
        provider = MagicMock()
        provider.acomplete = AsyncMock(return_value=LLMResponse(content="hi", model="m"))
        model = GraphModel()
        model.add_node(PromptNodeSpec(id="p", system_prompt="s", user_prompt="u"))
        ctx = RunContext()

        result = await FlowScheduler(NodeExecutor(service=GenerationService(provider))).run(
            model.to_spec(), ctx
        )

        assert result.success is True
        assert ctx.execution["p"].input_tokens == TOKENS_UNAVAILABLE
        assert ctx.execution["p"].output_tokens == TOKENS_UNAVAILABLE
        assert (result.total_input_tokens, result.total_output_tokens) == (0, 0)


class TestStructure:
    @pytest.mark.asyncio
    async def test_dangling_edge_raises_before_any_dispatch(self):
        graph = GraphSpec(
            nodes=[PassthroughNodeSpec(id="a")],
            edges=[EdgeSpec(id="a-ghost", source="a", target="ghost")],
        )
        ctx = RunContext()

        with pytest.raises(NodeReferenceError, match="ghost"):
            await FlowScheduler(NodeExecutor()).run(graph, ctx)

        assert ctx.execution == {}


class TestTraceContext:
    @pytest.mark.asyncio
    async def test_run_restores_caller_context(self):
        clear_trace_context()
        set_trace_context(request_id="req-1")

        result = await FlowScheduler(NodeExecutor()).run(_graph([], ["a"]))

        assert result.success is True
        assert get_trace_context() == {"request_id": "req-1"}
        clear_trace_context()


class TestCyclicFallback:
    @pytest.mark.asyncio
    async def test_graph_without_entry_nodes_dispatches_everything(self, caplog):
        # Built directly; GraphModel would reject the cycle
        graph = GraphSpec(
            nodes=[PassthroughNodeSpec(id="a"), PassthroughNodeSpec(id="b")],
            edges=[
                EdgeSpec(id="ab", source="a", target="b"),
                EdgeSpec(id="ba", source="b", target="a"),
            ],
        )
        with caplog.at_level("ERROR"):
            result = await FlowScheduler(NodeExecutor()).run(graph)

        assert sorted(result.dispatch_order) == ["a", "b"]
        assert any("cyclic" in record.getMessage() for record in caplog.records)


class TestEvents:
    @pytest.mark.asyncio
    async def test_lifecycle_events_published(self):
        bus = EventBus()
        graph = _graph([("a", "b")], ["a", "b"])

        result = await FlowScheduler(NodeExecutor(), event_bus=bus).run(graph, inputs={"a": "x"})

        types = [event.type for event in bus.get_history(run_id=result.run_id)]
        assert types[0] == EventType.EXECUTION_STARTED
        assert types[-1] == EventType.EXECUTION_COMPLETED
        assert types.count(EventType.NODE_STARTED) == 2
        assert types.count(EventType.NODE_COMPLETED) == 2

    @pytest.mark.asyncio
    async def test_failure_events(self):
        bus = EventBus()
        received = []

        async def handler(event):
            received.append(event)

        bus.subscribe([EventType.NODE_FAILED, EventType.EXECUTION_FAILED], handler)
        executor = NodeExecutor(node_registry={"a": FailingNode()})

        await FlowScheduler(executor, event_bus=bus).run(_graph([], ["a"]))

        assert [e.type for e in received] == [EventType.NODE_FAILED, EventType.EXECUTION_FAILED]
        assert received[0].node_id == "a"
        assert received[1].data["failed_nodes"] == ["a"]
