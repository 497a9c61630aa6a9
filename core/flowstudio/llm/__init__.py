"""LLM provider abstraction and the generation service contract."""

from flowstudio.llm.litellm import LiteLLMProvider
from flowstudio.llm.mock import MockLLMProvider
from flowstudio.llm.provider import LLMProvider, LLMResponse
from flowstudio.llm.service import GenerationRequest, GenerationResponse, GenerationService

__all__ = [
    "LLMProvider",
    "LLMResponse",
    "LiteLLMProvider",
    "MockLLMProvider",
    "GenerationRequest",
    "GenerationResponse",
    "GenerationService",
]
