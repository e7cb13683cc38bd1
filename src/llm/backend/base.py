"""Abstract base class for LLM backends.

Defines the async interface every provider implementation follows. Backends
only return text; JSON extraction and schema validation live in
`src.llm.structured`.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass
class GenerationConfig:
    """Configuration for LLM text generation.

    Attributes:
        temperature: Sampling temperature (0.0-2.0). Lower = more deterministic.
        max_tokens: Maximum tokens to generate in response.
        json_mode: Whether to ask the provider for JSON output.
        stop_sequences: Optional sequences that stop generation.
        top_p: Nucleus sampling parameter (0.0-1.0).
        seed: Optional seed for reproducible generation.
    """

    temperature: float = 0.7
    max_tokens: int = 4000
    json_mode: bool = True
    stop_sequences: list[str] = field(default_factory=list)
    top_p: float = 1.0
    seed: int | None = None


@dataclass
class GenerationResult:
    """Result from LLM text generation.

    Attributes:
        content: Generated text content.
        finish_reason: Why generation stopped ('stop', 'length', 'end_turn').
        usage: Token usage dict (prompt_tokens, completion_tokens, total_tokens).
        model: Model identifier that was used.
        raw_response: Provider-specific raw response for debugging.
    """

    content: str
    finish_reason: str
    usage: dict[str, int]
    model: str
    raw_response: Any = None


class LLMBackend(ABC):
    """Abstract interface for async LLM text generation backends.

    Example:
        >>> backend = AnthropicBackend(model="claude-3-5-haiku-20241022")
        >>> result = await backend.generate("Describe a label palette as JSON")
        >>> print(result.content)
    """

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        *,
        system_prompt: str | None = None,
        config: GenerationConfig | None = None,
    ) -> GenerationResult:
        """Generate text from a prompt.

        Args:
            prompt: User prompt text.
            system_prompt: Optional system instruction for context.
            config: Generation configuration options.

        Returns:
            GenerationResult with generated content and metadata.

        Raises:
            LLMError: If generation fails.
            RateLimitError: If API rate limit is exceeded.
            ContextLengthError: If prompt exceeds context window.
        """

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Model identifier (e.g., 'gpt-4.1-mini', 'claude-3-5-haiku-20241022')."""

    @property
    @abstractmethod
    def provider(self) -> str:
        """Provider identifier (e.g., 'openai', 'anthropic', 'mock')."""

    @property
    def name(self) -> str:
        """Backend identifier for logging, 'provider:model'."""
        return f"{self.provider}:{self.model_name}"

    @property
    @abstractmethod
    def supports_json_mode(self) -> bool:
        """Whether the backend natively enforces JSON output."""

    @property
    @abstractmethod
    def context_window(self) -> int:
        """Maximum context window size in tokens."""


class LLMError(Exception):
    """Base exception for LLM backend errors."""


class RateLimitError(LLMError):
    """Raised when API rate limit is exceeded.

    Attributes:
        retry_after: Suggested wait time in seconds before retry.
    """

    def __init__(self, message: str, retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class ContextLengthError(LLMError):
    """Raised when prompt exceeds the model's context window."""


class InvalidResponseError(LLMError):
    """Raised when the provider returns no usable content."""


class AuthenticationError(LLMError):
    """Raised when API authentication fails (invalid or missing key)."""


__all__ = [
    "LLMBackend",
    "GenerationConfig",
    "GenerationResult",
    "LLMError",
    "RateLimitError",
    "ContextLengthError",
    "InvalidResponseError",
    "AuthenticationError",
]
