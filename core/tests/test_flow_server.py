"""
Tests for FlowServer: the generation endpoint and the exported plan endpoint.
"""

import aiohttp
import pytest

from flowstudio.graph.compiler import StaticCompiler
from flowstudio.graph.edge import EdgeSpec
from flowstudio.graph.model import GraphModel
from flowstudio.graph.node import PromptNodeSpec
from flowstudio.llm.mock import MockLLMProvider
from flowstudio.llm.provider import LLMResponse
from flowstudio.llm.service import GenerationService
from flowstudio.runtime.flow_server import FlowServer, FlowServerConfig


def _responder(system: str, user: str, model: str) -> str:
    if system.startswith("json"):
        return '{"answer": 42}' if user != "bad" else "not json"
    return f"echo: {user}"


def _make_server(plan=None, provider=None) -> FlowServer:
    service = GenerationService(provider or MockLLMProvider(responder=_responder))
    return FlowServer(service, plan=plan, config=FlowServerConfig(host="127.0.0.1", port=0))


def _base_url(server: FlowServer) -> str:
    return f"http://127.0.0.1:{server.port}"


def _plan():
    model = GraphModel(graph_id="exported")
    model.add_node(PromptNodeSpec(id="first", system_prompt="plain"))
    model.add_node(PromptNodeSpec(id="second", system_prompt="json", return_json=True))
    model.add_edge(EdgeSpec(id="e1", source="first", target="second", target_handle="user_prompt"))
    return StaticCompiler(default_model="mock/model").compile(model)


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_stop(self):
        server = _make_server()

        await server.start()
        assert server.is_running
        assert server.port is not None

        await server.stop()
        assert not server.is_running
        assert server.port is None

    @pytest.mark.asyncio
    async def test_stop_when_not_started(self):
        server = _make_server()
        await server.stop()
        assert not server.is_running


class TestGenerationEndpoint:
    @pytest.mark.asyncio
    async def test_text_generation(self):
        server = _make_server()
        await server.start()
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    f"{_base_url(server)}/api/llm",
                    json={"systemPrompt": "plain", "userPrompt": "hello"},
                ) as resp:
                    assert resp.status == 200
                    body = await resp.json()
        finally:
            await server.stop()

        assert body["ok"] is True
        assert body["output"] == "echo: hello"
        assert body["inputTokens"] == 2
        assert body["outputTokens"] == 2

    @pytest.mark.asyncio
    async def test_json_generation(self):
        server = _make_server()
        await server.start()
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    f"{_base_url(server)}/api/llm",
                    json={"systemPrompt": "json", "userPrompt": "q", "returnAsJson": True},
                ) as resp:
                    body = await resp.json()
        finally:
            await server.stop()

        assert body["output"] == {"answer": 42}

    @pytest.mark.asyncio
    async def test_parse_failure_returns_raw_output(self):
        server = _make_server()
        await server.start()
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    f"{_base_url(server)}/api/llm",
                    json={"systemPrompt": "json", "userPrompt": "bad", "returnAsJson": True},
                ) as resp:
                    assert resp.status == 400
                    body = await resp.json()
        finally:
            await server.stop()

        assert body["ok"] is False
        assert body["output"] == "not json"
        assert body["error"] == "Error parsing JSON response from model."

    @pytest.mark.asyncio
    async def test_missing_prompt_is_rejected(self):
        server = _make_server()
        await server.start()
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    f"{_base_url(server)}/api/llm", json={"userPrompt": "hello"}
                ) as resp:
                    assert resp.status == 400
                    body = await resp.json()
        finally:
            await server.stop()

        assert "required" in body["error"]

    @pytest.mark.asyncio
    async def test_empty_model_output_is_rejected(self):
        class EmptyProvider(MockLLMProvider):
            async def acomplete(self, messages, system="", model=None, max_tokens=None):
                return LLMResponse(content="", model="mock")

        server = _make_server(provider=EmptyProvider())
        await server.start()
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    f"{_base_url(server)}/api/llm",
                    json={"systemPrompt": "s", "userPrompt": "u"},
                ) as resp:
                    assert resp.status == 400
                    body = await resp.json()
        finally:
            await server.stop()

        assert body == {"error": "No response from model."}

    @pytest.mark.asyncio
    async def test_invalid_body(self):
        server = _make_server()
        await server.start()
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(f"{_base_url(server)}/api/llm", data=b"not json") as resp:
                    assert resp.status == 400
        finally:
            await server.stop()


class TestPlanEndpoint:
    @pytest.mark.asyncio
    async def test_plan_success(self):
        server = _make_server(plan=_plan())
        await server.start()
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    f"{_base_url(server)}/api/flow", json={"inputs": {"first": "hi"}}
                ) as resp:
                    assert resp.status == 200
                    body = await resp.json()
        finally:
            await server.stop()

        assert body == {"ok": True, "output": {"answer": 42}}

    @pytest.mark.asyncio
    async def test_plan_failure(self):
        provider = MockLLMProvider(
            responder=lambda system, user, model: "not json" if system.startswith("json") else user
        )
        server = _make_server(plan=_plan(), provider=provider)
        await server.start()
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    f"{_base_url(server)}/api/flow", json={"inputs": {"first": "hi"}}
                ) as resp:
                    body = await resp.json()
        finally:
            await server.stop()

        assert body["ok"] is False
        assert body["error"].startswith("Node 'second' failed")

    @pytest.mark.asyncio
    async def test_no_plan_route_without_plan(self):
        server = _make_server()
        await server.start()
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(f"{_base_url(server)}/api/flow", json={}) as resp:
                    assert resp.status == 404
        finally:
            await server.stop()
