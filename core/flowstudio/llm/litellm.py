"""LiteLLM provider - one interface over Gemini, Anthropic, OpenAI and friends.

Model names use LiteLLM's ``provider/model`` format, e.g.
``gemini/gemini-2.5-flash`` or ``anthropic/claude-haiku-4-5-20251001``.
"""

import logging
from typing import Any

import litellm

from flowstudio.config import DEFAULT_MODEL
from flowstudio.llm.provider import LLMProvider, LLMResponse

logger = logging.getLogger(__name__)


def _usage_value(usage: Any, name: str) -> int:
    if usage is None:
        return 0
    value = usage.get(name) if isinstance(usage, dict) else getattr(usage, name, None)
    return int(value or 0)


class LiteLLMProvider(LLMProvider):
    """
    Text generation through ``litellm.acompletion``.

    Example:
        provider = LiteLLMProvider(model="gemini/gemini-2.5-flash")
        response = await provider.acomplete(
            messages=[{"role": "user", "content": "Hello"}],
            system="Be terse.",
        )
    """

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        api_key: str | None = None,
        api_base: str | None = None,
        **extra_kwargs: Any,
    ):
        """
        Args:
            model: Default model in LiteLLM format
            api_key: Explicit key; None lets LiteLLM read the provider env var
                (GEMINI_API_KEY, ANTHROPIC_API_KEY, ...)
            api_base: Custom endpoint (proxies, local servers)
            **extra_kwargs: Passed through to every acompletion call
        """
        self.model = model
        self.api_key = api_key
        self.api_base = api_base
        self.extra_kwargs = extra_kwargs

    async def acomplete(
        self,
        messages: list[dict[str, Any]],
        system: str = "",
        model: str | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        full_messages: list[dict[str, Any]] = []
        if system:
            full_messages.append({"role": "system", "content": system})
        full_messages.extend(messages)

        kwargs: dict[str, Any] = {
            "model": model or self.model,
            "messages": full_messages,
            **self.extra_kwargs,
        }
        if max_tokens:
            kwargs["max_tokens"] = max_tokens
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base

        response = await litellm.acompletion(**kwargs)

        choice = response.choices[0] if response.choices else None
        content = ""
        stop_reason = ""
        if choice is not None:
            content = choice.message.content or ""
            stop_reason = choice.finish_reason or ""

        usage = getattr(response, "usage", None)
        input_tokens = _usage_value(usage, "prompt_tokens")
        output_tokens = _usage_value(usage, "completion_tokens")
        total_tokens = _usage_value(usage, "total_tokens") or input_tokens + output_tokens

        logger.debug(
            f"LiteLLM call complete: {kwargs['model']}",
            extra={
                "model": kwargs["model"],
                "input_tokens": input_tokens,
                "output_tokens": output_tokens,
            },
        )

        return LLMResponse(
            content=content,
            model=getattr(response, "model", None) or kwargs["model"],
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=total_tokens,
            stop_reason=stop_reason,
            raw_response=response,
        )
