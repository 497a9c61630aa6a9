"""Deterministic provider for tests, demos and offline runs."""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from flowstudio.llm.provider import LLMProvider, LLMResponse

# (system, user, model) -> response text
Responder = Callable[[str, str, str], str]


@dataclass
class MockCall:
    """One recorded call to MockLLMProvider."""

    model: str
    system: str
    user: str


def _echo(system: str, user: str, model: str) -> str:
    return user


def _count_tokens(text: str) -> int:
    return len(text.split())


class MockLLMProvider(LLMProvider):
    """
    Provider that answers from a responder function or a fixed mapping.

    Token usage is the whitespace word count of the prompts and the answer,
    so results are fully deterministic.

    Examples:
        MockLLMProvider()  # echoes the user prompt
        MockLLMProvider(responses={"be terse": "ok"})  # keyed by system prompt
        MockLLMProvider(responder=lambda system, user, model: user.upper())
    """

    def __init__(
        self,
        responder: Responder | None = None,
        responses: dict[str, str] | None = None,
        model: str = "mock-model",
        delay: float = 0.0,
    ):
        self.responder = responder or _echo
        self.responses = responses or {}
        self.model = model
        self.delay = delay
        self.calls: list[MockCall] = []

    async def acomplete(
        self,
        messages: list[dict[str, Any]],
        system: str = "",
        model: str | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        user = "\n".join(str(m.get("content", "")) for m in messages if m.get("role") == "user")
        model = model or self.model
        self.calls.append(MockCall(model=model, system=system, user=user))

        if self.delay:
            await asyncio.sleep(self.delay)

        if system in self.responses:
            content = self.responses[system]
        else:
            content = self.responder(system, user, model)

        input_tokens = _count_tokens(system) + _count_tokens(user)
        output_tokens = _count_tokens(content)
        return LLMResponse(
            content=content,
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=input_tokens + output_tokens,
            stop_reason="stop",
        )
