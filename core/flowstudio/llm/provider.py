"""LLM Provider abstraction for pluggable text-generation backends."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass
class LLMResponse:
    """Response from an LLM call."""

    content: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    stop_reason: str = ""
    raw_response: Any = None


class LLMProvider(ABC):
    """
    Abstract LLM provider - plug in any text-generation backend.

    Implementations should handle:
    - API authentication
    - Request/response formatting
    - Token counting

    They should NOT retry, time out, or parse JSON; GenerationService owns
    those concerns so every backend behaves the same inside a flow.
    """

    @abstractmethod
    async def acomplete(
        self,
        messages: list[dict[str, Any]],
        system: str = "",
        model: str | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """
        Generate a completion.

        Args:
            messages: Conversation [{role: "user"|"assistant", content: str}]
            system: System prompt
            model: Model override; None uses the provider default
            max_tokens: Maximum tokens to generate (None = backend default)

        Returns:
            LLMResponse with content and usage metadata
        """
        pass
