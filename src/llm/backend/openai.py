"""OpenAI GPT backend implementation.

Uses the async OpenAI client for chat completions.
"""

import logging
from typing import Any

from src.config import EnvVar, get_environment

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
from .model_spec import DEFAULT_OPENAI_MODEL, LLMCapability, get_llm_spec

logger = logging.getLogger(__name__)


class OpenAIBackend(LLMBackend):
    """OpenAI GPT backend.

    Environment:
        OPENAI_API_KEY: API key (required if not passed to constructor).

    Example:
        >>> backend = OpenAIBackend(model="gpt-4.1-mini")
        >>> result = await backend.generate("Return a palette as JSON")
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str = DEFAULT_OPENAI_MODEL.spec.name,
        base_url: str | None = None,
        timeout: float = 30.0,
        max_retries: int = 0,
    ):
        """Initialize OpenAI backend.

        Args:
            api_key: OpenAI API key. Falls back to OPENAI_API_KEY env var.
            model: Model name (gpt-4.1-mini, gpt-4o, etc.).
            base_url: Optional custom API endpoint.
            timeout: Request timeout in seconds.
            max_retries: SDK-level retries. Defaults to 0 since callers
                wrap requests in `with_retry`.

        Raises:
            AuthenticationError: If no API key available.
        """
        self._api_key = api_key or get_environment(EnvVar.OPENAI_API_KEY)
        if not self._api_key:
            raise AuthenticationError(
                "OpenAI API key required. Set OPENAI_API_KEY environment "
                "variable or pass api_key parameter."
            )

        self._spec = get_llm_spec(model)
        self._base_url = base_url
        self._timeout = timeout
        self._max_retries = max_retries
        self._client: Any = None

    def _get_client(self) -> Any:
        """Lazily initialize the async OpenAI client."""
        if self._client is None:
            from openai import AsyncOpenAI

            self._client = AsyncOpenAI(
                api_key=self._api_key,
                base_url=self._base_url,
                timeout=self._timeout,
                max_retries=self._max_retries,
            )
        return self._client

    @property
    def model_name(self) -> str:
        return self._spec.name

    @property
    def provider(self) -> str:
        return "openai"

    @property
    def supports_json_mode(self) -> bool:
        return self._spec.supports(LLMCapability.JSON_MODE)

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
        """Generate text using the OpenAI chat completions API.

        Raises:
            LLMError: If generation fails.
            RateLimitError: If rate limit exceeded.
            ContextLengthError: If prompt too long.
        """
        config = config or GenerationConfig()
        client = self._get_client()

        messages: list[dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        kwargs: dict[str, Any] = {
            "model": self._spec.name,
            "messages": messages,
            "temperature": config.temperature,
            "max_tokens": config.max_tokens,
            "top_p": config.top_p,
        }

        if config.json_mode and self.supports_json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        if config.stop_sequences:
            kwargs["stop"] = config.stop_sequences

        if config.seed is not None and self._spec.supports(LLMCapability.SEED):
            kwargs["seed"] = config.seed

        try:
            response = await client.chat.completions.create(**kwargs)
        except Exception as e:
            self._handle_error(e)
            raise

        if not response.choices:
            raise InvalidResponseError("OpenAI response contained no choices")

        choice = response.choices[0]
        usage = response.usage
        return GenerationResult(
            content=choice.message.content or "",
            finish_reason=choice.finish_reason or "unknown",
            usage={
                "prompt_tokens": usage.prompt_tokens if usage else 0,
                "completion_tokens": usage.completion_tokens if usage else 0,
                "total_tokens": usage.total_tokens if usage else 0,
            },
            model=response.model,
            raw_response=response,
        )

    def _handle_error(self, error: Exception) -> None:
        """Convert provider errors to standard exceptions.

        Timeouts and connection failures keep their wording so the
        retry layer classifies them as network errors.
        """
        error_str = str(error).lower()
        error_type = type(error).__name__

        if "ratelimit" in error_type.lower() or "rate limit" in error_str or "429" in error_str:
            raise RateLimitError(str(error)) from error
        elif "context length" in error_str or "maximum context" in error_str:
            raise ContextLengthError(str(error)) from error
        elif "authentication" in error_type.lower() or "invalid api key" in error_str:
            raise AuthenticationError(str(error)) from error
        else:
            raise LLMError(f"{error_type}: {error}") from error


__all__ = ["OpenAIBackend"]
