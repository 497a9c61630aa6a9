"""
Tests for PlanRunner: level-by-level replay of a compiled plan.
"""

import pytest

from flowstudio.graph.compiler import StaticCompiler
from flowstudio.graph.context import ExecutionStatus, RunContext
from flowstudio.graph.edge import EdgeSpec
from flowstudio.graph.model import GraphModel
from flowstudio.graph.node import NodeExecutor, PassthroughNodeSpec, PromptNodeSpec
from flowstudio.graph.plan_runner import PlanRunner
from flowstudio.graph.scheduler import FlowScheduler
from flowstudio.llm.mock import MockLLMProvider
from flowstudio.llm.service import GenerationService
from flowstudio.observability import clear_trace_context, get_trace_context, set_trace_context


def _responder(system: str, user: str, model: str) -> str:
    if system.startswith("extract"):
        return '{"topic": "%s"}' % user
    return f"{system}({user})"


def _model() -> GraphModel:
    model = GraphModel(graph_id="pipeline")
    model.add_node(PromptNodeSpec(id="ask", system_prompt="answer", user_prompt="default"))
    model.add_node(PromptNodeSpec(id="shorten", system_prompt="shorten"))
    model.add_node(PromptNodeSpec(id="topic", system_prompt="extract", return_json=True))
    model.add_node(PassthroughNodeSpec(id="collect"))
    model.add_edge(EdgeSpec(id="e1", source="ask", target="shorten", target_handle="user_prompt"))
    model.add_edge(EdgeSpec(id="e2", source="ask", target="topic", target_handle="user_prompt"))
    model.add_edge(EdgeSpec(id="e3", source="shorten", target="collect"))
    model.add_edge(EdgeSpec(id="e4", source="topic", target="collect"))
    return model


class TestPlanRunner:
    @pytest.mark.asyncio
    async def test_replays_levels_in_order(self):
        plan = StaticCompiler(default_model="mock/model").compile(_model())
        service = GenerationService(MockLLMProvider(responder=_responder))

        result = await PlanRunner(plan, service=service).run({"ask": "why"})

        assert result.ok is True
        assert result.levels_completed == 3
        assert result.output == ["shorten(answer(why))", {"topic": "answer(why)"}]
        assert result.to_response() == {"ok": True, "output": result.output}

    @pytest.mark.asyncio
    async def test_same_output_as_runtime_scheduler(self):
        model = _model()
        service = GenerationService(MockLLMProvider(responder=_responder), default_model="m")
        inputs = {"ask": "why"}

        runtime_result = await FlowScheduler(NodeExecutor(service=service)).run(
            model.to_spec(), inputs=inputs
        )
        plan = StaticCompiler(default_model="m").compile(model)
        plan_result = await PlanRunner(plan, service=service).run(inputs)

        assert plan_result.output == runtime_result.output

    @pytest.mark.asyncio
    async def test_entry_without_input_uses_static_prompt(self):
        plan = StaticCompiler().compile(_model())
        provider = MockLLMProvider(responder=_responder)

        await PlanRunner(plan, service=GenerationService(provider)).run()

        assert provider.calls[0].user == "default"

    @pytest.mark.asyncio
    async def test_failure_aborts_before_next_level(self):
        provider = MockLLMProvider(
            responder=lambda system, user, model: (
                "not json" if system.startswith("extract") else user
            )
        )
        plan = StaticCompiler().compile(_model())
        ctx = RunContext()

        result = await PlanRunner(plan, service=GenerationService(provider)).run(
            {"ask": "why"}, run_context=ctx
        )

        assert result.ok is False
        assert result.levels_completed == 1
        assert result.to_response() == {
            "ok": False,
            "error": "Node 'topic' failed: Error parsing JSON response from model.",
        }
        assert ctx.execution["shorten"].status == ExecutionStatus.DONE
        assert ctx.execution["collect"].status == ExecutionStatus.IDLE

    @pytest.mark.asyncio
    async def test_failed_node_keeps_token_counts(self):
        provider = MockLLMProvider(
            responder=lambda system, user, model: (
                "not json" if system.startswith("extract") else user
            )
        )
        plan = StaticCompiler().compile(_model())
        ctx = RunContext()

        await PlanRunner(plan, service=GenerationService(provider)).run(
            {"ask": "why"}, run_context=ctx
        )

        assert ctx.execution["topic"].status == ExecutionStatus.ERROR
        assert ctx.execution["topic"].input_tokens > 0
        assert ctx.execution["topic"].output_tokens == 2

    @pytest.mark.asyncio
    async def test_run_restores_caller_context(self):
        clear_trace_context()
        set_trace_context(request_id="req-1")
        plan = StaticCompiler().compile(_model())

        await PlanRunner(plan, service=GenerationService(MockLLMProvider())).run({"ask": "why"})

        assert get_trace_context() == {"request_id": "req-1"}
        clear_trace_context()

    @pytest.mark.asyncio
    async def test_multiple_sinks(self):
        model = GraphModel()
        model.add_node(PassthroughNodeSpec(id="a"))
        model.add_node(PassthroughNodeSpec(id="b"))
        plan = StaticCompiler().compile(model)

        result = await PlanRunner(plan).run({"a": "1", "b": "2"})

        assert result.output == {"a": "1", "b": "2"}
