"""
Command-line interface for Flow Studio.

Usage:
    flowstudio validate flows/trip.json
    flowstudio run flows/trip.json --input prompt="Plan a weekend in Lisbon"
    flowstudio run flows/trip.json --mock --input prompt=hello
    flowstudio compile flows/trip.json -o plans/trip.plan.json
    flowstudio serve --plan plans/trip.plan.json --port 8080

Graph documents are the JSON form of GraphSpec (camelCase or snake_case
field names). Every document is replayed through GraphModel, so a cyclic or
dangling graph is rejected before anything runs.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from flowstudio.config import RuntimeConfig
from flowstudio.errors import FlowError
from flowstudio.graph.compiler import ExecutionPlan, StaticCompiler
from flowstudio.graph.context import RunContext
from flowstudio.graph.edge import GraphSpec
from flowstudio.graph.model import GraphModel
from flowstudio.graph.node import NodeExecutor
from flowstudio.graph.scheduler import FlowScheduler
from flowstudio.llm.litellm import LiteLLMProvider
from flowstudio.llm.mock import MockLLMProvider
from flowstudio.llm.service import GenerationService
from flowstudio.observability import configure_logging

logger = logging.getLogger(__name__)


def load_graph(path: str | Path) -> GraphModel:
    """Read a graph document and replay it through GraphModel."""
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    spec = GraphSpec.model_validate(data)
    problems = spec.validate_structure()
    if problems:
        raise ValueError("Invalid graph:\n  " + "\n  ".join(problems))
    return GraphModel.from_spec(spec)


def parse_inputs(pairs: list[str] | None) -> dict[str, str]:
    """Turn ["node=text", ...] into {"node": "text"}."""
    inputs: dict[str, str] = {}
    for pair in pairs or []:
        node_id, sep, text = pair.partition("=")
        if not sep or not node_id:
            raise ValueError(f"Expected NODE=TEXT, got '{pair}'")
        inputs[node_id] = text
    return inputs


def build_service(config: RuntimeConfig, mock: bool = False) -> GenerationService:
    if mock:
        provider = MockLLMProvider()
    else:
        provider = LiteLLMProvider(
            model=config.model, api_key=config.api_key, api_base=config.api_base
        )
    return GenerationService(
        provider,
        default_model=config.model,
        timeout_seconds=config.node_timeout_seconds,
    )


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


# === COMMANDS ===


def cmd_validate(args: argparse.Namespace) -> int:
    try:
        model = load_graph(args.graph)
    except (OSError, ValueError, FlowError) as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1
    print(f"✓ '{model.graph_id}' is valid: {len(model)} node(s), {len(model.edges)} edge(s)")
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    try:
        model = load_graph(args.graph)
        inputs = parse_inputs(args.input)
    except (OSError, ValueError, FlowError) as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1

    config = RuntimeConfig()
    if args.model:
        config.model = args.model
    service = build_service(config, mock=args.mock)

    ctx = RunContext()
    scheduler = FlowScheduler(NodeExecutor(service=service))
    result = asyncio.run(scheduler.run(model.to_spec(), ctx, inputs=inputs))

    _print_json(
        {
            "ok": result.success,
            "output": result.output,
            "error": result.error,
            "nodes": {node_id: state.to_dict() for node_id, state in ctx.execution.items()},
            "tokens": {"input": result.total_input_tokens, "output": result.total_output_tokens},
        }
    )
    return 0 if result.success else 1


def cmd_compile(args: argparse.Namespace) -> int:
    try:
        model = load_graph(args.graph)
        plan = StaticCompiler(default_model=args.model or RuntimeConfig().model).compile(model)
    except (OSError, ValueError, FlowError) as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1

    if args.output:
        Path(args.output).write_text(plan.to_json(), encoding="utf-8")
        print(f"✓ Plan written to {args.output} ({len(plan.levels)} level(s))")
    else:
        print(plan.to_json())
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    from flowstudio.runtime.flow_server import FlowServer, FlowServerConfig

    config = RuntimeConfig()
    if args.model:
        config.model = args.model

    plan = None
    if args.plan:
        try:
            plan = ExecutionPlan.from_json(Path(args.plan).read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            print(f"✗ Cannot load plan: {e}", file=sys.stderr)
            return 1

    server = FlowServer(
        build_service(config, mock=args.mock),
        plan=plan,
        config=FlowServerConfig(
            host=args.host or config.server_host,
            port=args.port if args.port is not None else config.server_port,
        ),
    )

    async def _serve() -> None:
        await server.start()
        try:
            await asyncio.Event().wait()
        finally:
            await server.stop()

    try:
        asyncio.run(_serve())
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    return 0


# === PARSER ===


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="flowstudio",
        description="Flow Studio - Build, run and export LLM prompt graphs",
    )
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    parser.add_argument(
        "--log-format",
        default="auto",
        choices=["auto", "human", "json"],
        help="Log output format",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    validate_parser = subparsers.add_parser("validate", help="Check a graph document")
    validate_parser.add_argument("graph", help="Path to the graph JSON document")
    validate_parser.set_defaults(func=cmd_validate)

    run_parser = subparsers.add_parser("run", help="Run a graph once")
    run_parser.add_argument("graph", help="Path to the graph JSON document")
    run_parser.add_argument(
        "--input",
        "-i",
        action="append",
        metavar="NODE=TEXT",
        help="Text for an entry node (repeatable)",
    )
    run_parser.add_argument("--model", help="Model used by nodes without one")
    run_parser.add_argument(
        "--mock", action="store_true", help="Echo prompts instead of calling a model"
    )
    run_parser.set_defaults(func=cmd_run)

    compile_parser = subparsers.add_parser("compile", help="Compile a graph into an execution plan")
    compile_parser.add_argument("graph", help="Path to the graph JSON document")
    compile_parser.add_argument("--output", "-o", help="Write the plan here instead of stdout")
    compile_parser.add_argument("--model", help="Model baked into nodes without one")
    compile_parser.set_defaults(func=cmd_compile)

    serve_parser = subparsers.add_parser("serve", help="Serve the generation endpoint and a plan")
    serve_parser.add_argument("--plan", help="Compiled plan to serve at /api/flow")
    serve_parser.add_argument("--host", help="Bind address")
    serve_parser.add_argument("--port", type=int, help="Port (0 picks a free one)")
    serve_parser.add_argument("--model", help="Default model for generation calls")
    serve_parser.add_argument(
        "--mock", action="store_true", help="Echo prompts instead of calling a model"
    )
    serve_parser.set_defaults(func=cmd_serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(level=args.log_level, format=args.log_format)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
