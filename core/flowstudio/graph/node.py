"""
Node Protocol - The building blocks of a flow graph.

A node is specified by a pydantic model tagged with ``kind``:
- prompt: calls the generation service with a system and a user prompt
- passthrough: forwards (or gathers) upstream results unchanged

Each kind has one NodeProtocol implementation. NodeExecutor resolves the
inbound values of a node into a NodeContext once per dispatch and hands it
to that implementation; the stored node spec is never mutated to carry
inputs.

    NodeExecutor.execute(node, inbound_edges, run_context)
        → resolve inputs (HandleRouter records each routed value)
        → PromptNode / PassthroughNode .execute(ctx)
        → NodeResult
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Annotated, Any, Literal

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from flowstudio.errors import NodeExecutionError, ParseError
from flowstudio.graph.context import TOKENS_UNAVAILABLE, RunContext
from flowstudio.graph.router import SYSTEM_PROMPT_HANDLE, USER_PROMPT_HANDLE, normalize_value
from flowstudio.llm.service import GenerationRequest, GenerationService

if TYPE_CHECKING:
    from flowstudio.graph.edge import EdgeSpec

logger = logging.getLogger(__name__)

JSON_INSTRUCTION = (
    "\n\nReturn the response as single line JSON. "
    "You must not include any other text such as markdown or formatting."
)


# ---------------------------------------------------------------------------
# Specs
# ---------------------------------------------------------------------------


class BaseNodeSpec(BaseModel):
    """Fields shared by every node kind."""

    id: str
    title: str = ""
    description: str = ""

    # Last value delivered to each input handle (display only, never config)
    handle_data: dict[str, str] = Field(default_factory=dict)

    model_config = {"alias_generator": to_camel, "populate_by_name": True, "extra": "allow"}


class PromptNodeSpec(BaseNodeSpec):
    """
    A call to the generation service.

    Example:
        PromptNodeSpec(
            id="summarize",
            system_prompt="You are a helpful assistant.",
            user_prompt="Summarize the request.",
            return_json=False,
        )
    """

    kind: Literal["prompt"] = "prompt"
    model: str | None = Field(default=None, description="None uses the service default model")
    system_prompt: str = ""
    user_prompt: str = ""
    return_json: bool = False


class PassthroughNodeSpec(BaseNodeSpec):
    """Forwards a single upstream result, or gathers several into a list."""

    kind: Literal["passthrough"] = "passthrough"


NodeSpec = Annotated[PromptNodeSpec | PassthroughNodeSpec, Field(discriminator="kind")]


# ---------------------------------------------------------------------------
# Execution contract
# ---------------------------------------------------------------------------


@dataclass
class NodeContext:
    """Everything a node implementation needs for one execution."""

    node_spec: Any
    run_context: RunContext
    # handle -> normalized text, only for edges that name a target_handle
    inputs: dict[str, str] = field(default_factory=dict)
    # Raw upstream values, one per inbound edge, in edge order
    upstream: list[Any] = field(default_factory=list)
    entry_input: str | None = None
    service: GenerationService | None = None


@dataclass
class NodeResult:
    """
    Outcome of executing one node.

    ``raw_output`` keeps whatever the node produced even when it failed,
    e.g. the text a model returned in JSON mode that did not parse.
    """

    success: bool
    output: Any = None
    error: str | None = None
    raw_output: Any = None
    input_tokens: int = TOKENS_UNAVAILABLE
    output_tokens: int = TOKENS_UNAVAILABLE
    latency_ms: int = 0


class NodeProtocol(ABC):
    """Interface every node kind implements."""

    @abstractmethod
    async def execute(self, ctx: NodeContext) -> NodeResult:
        pass


class PromptNode(NodeProtocol):
    """
    Calls the generation service.

    An inbound value on the system_prompt / user_prompt handle replaces the
    static text configured on the node. JSON mode appends an instruction to
    the system prompt and fails the node when the reply does not parse.
    """

    async def execute(self, ctx: NodeContext) -> NodeResult:
        spec: PromptNodeSpec = ctx.node_spec
        if ctx.service is None:
            raise NodeExecutionError(
                f"Prompt node '{spec.id}' requires a generation service", node_id=spec.id
            )

        system_prompt = ctx.inputs.get(SYSTEM_PROMPT_HANDLE, spec.system_prompt)
        user_prompt = ctx.inputs.get(USER_PROMPT_HANDLE, spec.user_prompt)
        if spec.return_json:
            system_prompt += JSON_INSTRUCTION

        start = time.monotonic()
        try:
            response = await ctx.service.generate(
                GenerationRequest(
                    model=spec.model,
                    system_prompt=system_prompt,
                    user_prompt=user_prompt,
                    return_as_json=spec.return_json,
                )
            )
        except NodeExecutionError as e:
            e.node_id = e.node_id or spec.id
            return NodeResult(
                success=False,
                error=str(e),
                raw_output=e.raw_output,
                latency_ms=int((time.monotonic() - start) * 1000),
            )
        latency_ms = int((time.monotonic() - start) * 1000)
        # Zero means the provider reported no usage
        input_tokens = response.input_tokens or TOKENS_UNAVAILABLE
        output_tokens = response.output_tokens or TOKENS_UNAVAILABLE

        if not response.ok:
            error = ParseError(response.error or "", node_id=spec.id, raw_output=response.output)
            logger.warning(f"   ⚠ {spec.id}: {error}")
            return NodeResult(
                success=False,
                error=str(error),
                raw_output=error.raw_output,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                latency_ms=latency_ms,
            )

        return NodeResult(
            success=True,
            output=response.output,
            raw_output=response.output,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            latency_ms=latency_ms,
        )


class PassthroughNode(NodeProtocol):
    """No inbound edges → None (or the entry input); one → that value; many → a list."""

    async def execute(self, ctx: NodeContext) -> NodeResult:
        if not ctx.upstream:
            output = ctx.entry_input
        elif len(ctx.upstream) == 1:
            output = ctx.upstream[0]
        else:
            output = list(ctx.upstream)
        return NodeResult(success=True, output=output, raw_output=output)


# Closed set: one implementation per node kind.
NODE_IMPLEMENTATIONS: dict[str, NodeProtocol] = {
    "prompt": PromptNode(),
    "passthrough": PassthroughNode(),
}


class NodeExecutor:
    """
    Runs a single node against the results gathered so far.

    Example:
        executor = NodeExecutor(service=GenerationService(MockLLMProvider()))
        result = await executor.execute(node, graph.get_incoming_edges(node.id), ctx)
    """

    def __init__(
        self,
        service: GenerationService | None = None,
        node_registry: dict[str, NodeProtocol] | None = None,
    ):
        """
        Args:
            service: Generation service used by prompt nodes
            node_registry: Custom implementations by node ID, checked before
                the implementation for the node's kind
        """
        self.service = service
        self.node_registry = node_registry or {}

    def get_implementation(self, node: Any) -> NodeProtocol:
        if node.id in self.node_registry:
            return self.node_registry[node.id]
        implementation = NODE_IMPLEMENTATIONS.get(node.kind)
        if implementation is None:
            raise NodeExecutionError(f"Unknown node kind '{node.kind}'", node_id=node.id)
        return implementation

    def resolve_inputs(
        self,
        node: Any,
        inbound_edges: list["EdgeSpec"],
        run_context: RunContext,
        entry_input: str | None = None,
    ) -> NodeContext:
        """Build the resolved-input record for one dispatch of ``node``."""
        inputs: dict[str, str] = {}
        upstream: list[Any] = []

        if entry_input is not None:
            inputs[USER_PROMPT_HANDLE] = entry_input
            run_context.router.record(node.id, USER_PROMPT_HANDLE, entry_input)

        for edge in inbound_edges:
            value = edge.select(run_context.results.get(edge.source))
            upstream.append(value)
            if not edge.target_handle:
                continue
            normalized = normalize_value(value)
            inputs[edge.target_handle] = normalized
            run_context.router.record(node.id, edge.target_handle, normalized)

        return NodeContext(
            node_spec=node,
            run_context=run_context,
            inputs=inputs,
            upstream=upstream,
            entry_input=entry_input,
            service=self.service,
        )

    async def execute(
        self,
        node: Any,
        inbound_edges: list["EdgeSpec"],
        run_context: RunContext,
        entry_input: str | None = None,
    ) -> NodeResult:
        implementation = self.get_implementation(node)
        ctx = self.resolve_inputs(node, inbound_edges, run_context, entry_input)
        logger.debug(f"Executing {node.kind} node '{node.id}' with inputs {sorted(ctx.inputs)}")
        return await implementation.execute(ctx)
