"""
Generation Service - the request/response contract prompt nodes call.

    GenerationRequest {model, system_prompt, user_prompt, return_as_json}
        → GenerationResponse {ok, input_tokens, output_tokens, output, error}

Failure modes:
- missing prompt field          → PromptValidationError (raised)
- model produced no text        → UpstreamEmptyError (raised)
- provider fault or timeout     → NodeExecutionError (raised)
- JSON requested, text not JSON → GenerationResponse(ok=False, output=<raw>, error=...)

The same contract is exposed over HTTP by FlowServer (POST /api/llm), using
camelCase field names.
"""

import asyncio
import json
import logging
import time
from typing import Any

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from flowstudio.config import DEFAULT_MODEL, DEFAULT_NODE_TIMEOUT_SECONDS
from flowstudio.errors import NodeExecutionError, PromptValidationError, UpstreamEmptyError
from flowstudio.llm.provider import LLMProvider

logger = logging.getLogger(__name__)

PARSE_ERROR_MESSAGE = "Error parsing JSON response from model."


class GenerationRequest(BaseModel):
    """One call to the generation service."""

    model: str | None = None
    system_prompt: str | None = None
    user_prompt: str | None = None
    return_as_json: bool = False

    model_config = {"alias_generator": to_camel, "populate_by_name": True}


class GenerationResponse(BaseModel):
    """Outcome of a generation call. ``ok`` is False only for JSON parse failures."""

    ok: bool
    input_tokens: int = 0
    output_tokens: int = 0
    output: Any = None
    error: str | None = None

    model_config = {"alias_generator": to_camel, "populate_by_name": True}


class GenerationService:
    """
    Wraps an LLMProvider with validation, a bounded wait, and JSON handling.

    Example:
        service = GenerationService(LiteLLMProvider(), timeout_seconds=60)
        response = await service.generate(
            GenerationRequest(system_prompt="be terse", user_prompt="hello")
        )
    """

    def __init__(
        self,
        provider: LLMProvider,
        default_model: str = DEFAULT_MODEL,
        timeout_seconds: float | None = DEFAULT_NODE_TIMEOUT_SECONDS,
    ):
        self.provider = provider
        self.default_model = default_model
        self.timeout_seconds = timeout_seconds

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        if request.system_prompt is None or request.user_prompt is None:
            raise PromptValidationError("system_prompt and user_prompt are required.")

        system_prompt = request.system_prompt.strip()
        user_prompt = request.user_prompt.strip()
        model = request.model or self.default_model

        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self.provider.acomplete(
                    messages=[{"role": "user", "content": user_prompt}],
                    system=system_prompt,
                    model=model,
                ),
                timeout=self.timeout_seconds,
            )
        except TimeoutError as e:
            raise NodeExecutionError(
                f"Generation with {model} timed out after {self.timeout_seconds}s"
            ) from e
        except NodeExecutionError:
            raise
        except Exception as e:
            raise NodeExecutionError(f"Generation with {model} failed: {e}") from e

        latency_ms = int((time.monotonic() - start) * 1000)

        if not response.content:
            raise UpstreamEmptyError("No response from model.")

        input_tokens = response.input_tokens
        if response.total_tokens:
            output_tokens = max(response.total_tokens - input_tokens, 0)
        else:
            output_tokens = max(response.output_tokens, 0)

        logger.info(
            f"Generated {len(response.content)} chars with {model}",
            extra={
                "model": model,
                "input_tokens": input_tokens,
                "output_tokens": output_tokens,
                "latency_ms": latency_ms,
            },
        )

        if not request.return_as_json:
            return GenerationResponse(
                ok=True,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                output=response.content,
            )

        try:
            parsed = json.loads(response.content)
        except (json.JSONDecodeError, ValueError):
            logger.warning(f"Model {model} returned non-JSON text in JSON mode")
            return GenerationResponse(
                ok=False,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                output=response.content,
                error=PARSE_ERROR_MESSAGE,
            )

        return GenerationResponse(
            ok=True,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            output=parsed,
        )
