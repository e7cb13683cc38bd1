"""LLM backend implementations.

Provides the async abstract base class and implementations for OpenAI,
Anthropic and an offline mock.
"""

from .base import (
    AuthenticationError,
    ContextLengthError,
    GenerationConfig,
    GenerationResult,
    InvalidResponseError,
    LLMBackend,
    LLMError,
    RateLimitError,
)
from .factory import create_llm_backend
from .mock import MockLLMBackend
from .model_spec import (
    DEFAULT_ANTHROPIC_MODEL,
    DEFAULT_MODEL,
    DEFAULT_OPENAI_MODEL,
    DEFAULT_VISION_MODEL,
    LLMCapability,
    LLMModel,
    LLMProviderType,
    LLMSpec,
    get_llm_spec,
)

__all__ = [
    # Base classes and types
    "LLMBackend",
    "GenerationConfig",
    "GenerationResult",
    "MockLLMBackend",
    # Exceptions
    "LLMError",
    "RateLimitError",
    "ContextLengthError",
    "InvalidResponseError",
    "AuthenticationError",
    # Model specification
    "LLMCapability",
    "LLMProviderType",
    "LLMSpec",
    "LLMModel",
    "get_llm_spec",
    # Defaults
    "DEFAULT_MODEL",
    "DEFAULT_OPENAI_MODEL",
    "DEFAULT_ANTHROPIC_MODEL",
    "DEFAULT_VISION_MODEL",
    # Factory
    "create_llm_backend",
]
