"""Anthropic Claude backend implementation.

Uses the async Anthropic client for the Messages API.
"""

import logging
from typing import Any

from src.config import EnvVar, get_environment

from .base import (
    AuthenticationError,
    ContextLengthError,
    GenerationConfig,
    GenerationResult,
    LLMBackend,
    LLMError,
    RateLimitError,
)
from .model_spec import DEFAULT_ANTHROPIC_MODEL, get_llm_spec

logger = logging.getLogger(__name__)


class AnthropicBackend(LLMBackend):
    """Anthropic Claude backend.

    Anthropic has no native JSON mode; in JSON mode the prompt gets an
    explicit instruction and callers extract the JSON from the reply.

    Environment:
        ANTHROPIC_API_KEY: API key (required if not passed to constructor).

    Example:
        >>> backend = AnthropicBackend()
        >>> result = await backend.generate("Return a palette as JSON")
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str = DEFAULT_ANTHROPIC_MODEL.spec.name,
        timeout: float = 30.0,
        max_retries: int = 0,
    ):
        """Initialize Anthropic backend.

        Args:
            api_key: Anthropic API key. Falls back to ANTHROPIC_API_KEY env var.
            model: Model name (claude-3-5-haiku-20241022, claude-sonnet-4-5, ...).
            timeout: Request timeout in seconds.
            max_retries: SDK-level retries (0, callers use `with_retry`).

        Raises:
            AuthenticationError: If no API key available.
        """
        self._api_key = api_key or get_environment(EnvVar.ANTHROPIC_API_KEY)
        if not self._api_key:
            raise AuthenticationError(
                "Anthropic API key required. Set ANTHROPIC_API_KEY environment "
                "variable or pass api_key parameter."
            )

        self._spec = get_llm_spec(model)
        self._timeout = timeout
        self._max_retries = max_retries
        self._client: Any = None

    def _get_client(self) -> Any:
        """Lazily initialize the async Anthropic client."""
        if self._client is None:
            import anthropic

            self._client = anthropic.AsyncAnthropic(
                api_key=self._api_key,
                timeout=self._timeout,
                max_retries=self._max_retries,
            )
        return self._client

    @property
    def model_name(self) -> str:
        return self._spec.name

    @property
    def provider(self) -> str:
        return "anthropic"

    @property
    def supports_json_mode(self) -> bool:
        return False

    @property
    def context_window(self) -> int:
        return self._spec.context_window

    async def generate(
        self,
        prompt: str,
        *,
        system_prompt: str | None = None,
        config: GenerationConfig | None = None,
    ) -> GenerationResult:
        """Generate text using the Anthropic Messages API.

        Raises:
            LLMError: If generation fails.
            RateLimitError: If rate limit exceeded.
            ContextLengthError: If prompt too long.
        """
        config = config or GenerationConfig()
        client = self._get_client()

        effective_prompt = prompt
        if config.json_mode:
            effective_prompt = (
                f"{prompt}\n\n"
                "IMPORTANT: Respond with valid JSON only. "
                "Do not include any text, explanation, or markdown formatting "
                "before or after the JSON object."
            )

        kwargs: dict[str, Any] = {
            "model": self._spec.name,
            "messages": [{"role": "user", "content": effective_prompt}],
            "max_tokens": config.max_tokens,
            "temperature": config.temperature,
        }

        if system_prompt:
            kwargs["system"] = system_prompt

        if config.stop_sequences:
            kwargs["stop_sequences"] = config.stop_sequences

        try:
            response = await client.messages.create(**kwargs)
        except Exception as e:
            self._handle_error(e)
            raise

        content = "".join(
            block.text for block in response.content if getattr(block, "type", "text") == "text"
        )

        return GenerationResult(
            content=content,
            finish_reason=response.stop_reason or "unknown",
            usage={
                "prompt_tokens": response.usage.input_tokens,
                "completion_tokens": response.usage.output_tokens,
                "total_tokens": response.usage.input_tokens + response.usage.output_tokens,
            },
            model=response.model,
            raw_response=response,
        )

    def _handle_error(self, error: Exception) -> None:
        """Convert provider errors to standard exceptions."""
        error_str = str(error).lower()
        error_type = type(error).__name__

        if "ratelimit" in error_type.lower() or "rate limit" in error_str or "rate_limit" in error_str:
            raise RateLimitError(str(error)) from error
        elif "context length" in error_str or "too long" in error_str:
            raise ContextLengthError(str(error)) from error
        elif "authentication" in error_type.lower() or "x-api-key" in error_str:
            raise AuthenticationError(str(error)) from error
        else:
            raise LLMError(f"{error_type}: {error}") from error


__all__ = ["AnthropicBackend"]
