"""
Flow HTTP Server - serves the generation contract and compiled plans.

Routes:
- POST /api/llm   → one generation call (camelCase GenerationRequest body)
- POST <plan path> → replay a compiled ExecutionPlan:
      {"inputs": {"<entryNodeId>": "text"}} → {"ok": true, "output": ...}
                                            → {"ok": false, "error": "..."}

Uses aiohttp for a lightweight embedded HTTP server that runs within the
existing asyncio loop.
"""

import json
import logging
from dataclasses import dataclass

from aiohttp import web
from pydantic import ValidationError

from flowstudio.config import DEFAULT_SERVER_HOST, DEFAULT_SERVER_PORT
from flowstudio.errors import NodeExecutionError, PromptValidationError, UpstreamEmptyError
from flowstudio.graph.compiler import ExecutionPlan
from flowstudio.graph.plan_runner import PlanRunner
from flowstudio.llm.service import GenerationRequest, GenerationService

logger = logging.getLogger(__name__)

GENERATION_PATH = "/api/llm"
DEFAULT_PLAN_PATH = "/api/flow"


@dataclass
class FlowServerConfig:
    """Configuration for the flow HTTP server."""

    host: str = DEFAULT_SERVER_HOST
    port: int = DEFAULT_SERVER_PORT
    plan_path: str = DEFAULT_PLAN_PATH


class FlowServer:
    """
    Embedded HTTP server for a generation service and (optionally) one plan.

    Lifecycle:
        server = FlowServer(service, plan=plan, config=FlowServerConfig(port=0))
        await server.start()
        # ... server running ...
        await server.stop()
    """

    def __init__(
        self,
        service: GenerationService,
        plan: ExecutionPlan | None = None,
        config: FlowServerConfig | None = None,
    ):
        self._service = service
        self._plan = plan
        self._config = config or FlowServerConfig()
        self._runner_for_plan = PlanRunner(plan, service=service) if plan else None
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None

    def build_app(self) -> web.Application:
        """Create the aiohttp application (also handy for aiohttp test clients)."""
        app = web.Application()
        app.router.add_post(GENERATION_PATH, self._handle_generate)
        if self._runner_for_plan is not None:
            app.router.add_post(self._config.plan_path, self._handle_plan)
        return app

    async def start(self) -> None:
        """Start the HTTP server."""
        self._app = self.build_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self._config.host, self._config.port)
        await self._site.start()

        plan_info = f", plan at {self._config.plan_path}" if self._plan else ""
        logger.info(
            f"Flow server started on {self._config.host}:{self.port}{plan_info}"
        )

    async def stop(self) -> None:
        """Stop the HTTP server gracefully."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            self._app = None
            self._site = None
            logger.info("Flow server stopped")

    async def _read_json(self, request: web.Request) -> dict | None:
        try:
            body = await request.read()
            payload = json.loads(body) if body else {}
        except (json.JSONDecodeError, ValueError):
            return None
        return payload if isinstance(payload, dict) else None

    async def _handle_generate(self, request: web.Request) -> web.Response:
        """One generation call over HTTP."""
        payload = await self._read_json(request)
        if payload is None:
            return web.json_response({"error": "Request body must be a JSON object."}, status=400)

        try:
            gen_request = GenerationRequest.model_validate(payload)
        except ValidationError as e:
            return web.json_response({"error": str(e)}, status=400)

        try:
            response = await self._service.generate(gen_request)
        except (PromptValidationError, UpstreamEmptyError) as e:
            return web.json_response({"error": str(e)}, status=400)
        except NodeExecutionError as e:
            logger.error(f"Generation failed: {e}")
            return web.json_response({"error": str(e)}, status=502)

        body = response.model_dump(by_alias=True, exclude_none=True)
        return web.json_response(body, status=200 if response.ok else 400)

    async def _handle_plan(self, request: web.Request) -> web.Response:
        """Replay the compiled plan with the request's entry inputs."""
        payload = await self._read_json(request)
        inputs = (payload or {}).get("inputs") or {}
        if not isinstance(inputs, dict):
            return web.json_response({"ok": False, "error": "'inputs' must be an object"})

        inputs = {str(k): v if isinstance(v, str) else json.dumps(v) for k, v in inputs.items()}
        result = await self._runner_for_plan.run(inputs)
        return web.json_response(result.to_response())

    @property
    def is_running(self) -> bool:
        return self._site is not None

    @property
    def port(self) -> int | None:
        """Return the actual listening port (useful when configured with port=0)."""
        if self._site and self._site._server and self._site._server.sockets:
            return self._site._server.sockets[0].getsockname()[1]
        return None
