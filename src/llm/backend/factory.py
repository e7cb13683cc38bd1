"""Backend factory for creating LLM backends from model specifications.

Provides a unified entry point for creating any supported LLM backend.
"""

from .base import LLMBackend
from .model_spec import (
    DEFAULT_MODEL,
    LLMModel,
    LLMProviderType,
    LLMSpec,
    get_llm_spec,
)


def create_llm_backend(
    model: str | LLMModel | LLMSpec = DEFAULT_MODEL,
    *,
    api_key: str | None = None,
    base_url: str | None = None,
    **kwargs,
) -> LLMBackend:
    """Create an LLM backend from a model specification.

    Args:
        model: Model name string, LLMModel value or LLMSpec.
        api_key: API key for remote providers. Falls back to environment
            variable if not provided.
        base_url: Optional custom API endpoint (OpenAI only).
        **kwargs: Additional arguments passed to the backend constructor
            (e.g., timeout for remote backends, responder for the mock).

    Returns:
        Configured LLMBackend instance.

    Raises:
        ValueError: If model is unknown.
        AuthenticationError: If API key required but not provided.

    Example:
        >>> backend = create_llm_backend("claude-3-5-haiku-20241022", timeout=30.0)
        >>> backend = create_llm_backend(LLMModel.MOCK, responder=lambda p: "{}")
    """
    spec = get_llm_spec(model)

    if spec.provider == LLMProviderType.OPENAI:
        from .openai import OpenAIBackend

        return OpenAIBackend(
            api_key=api_key,
            model=spec.name,
            base_url=base_url,
            **kwargs,
        )

    if spec.provider == LLMProviderType.ANTHROPIC:
        from .anthropic import AnthropicBackend

        return AnthropicBackend(
            api_key=api_key,
            model=spec.name,
            **kwargs,
        )

    if spec.provider == LLMProviderType.MOCK:
        from .mock import MockLLMBackend

        kwargs.pop("timeout", None)
        return MockLLMBackend(model=spec.name, **kwargs)

    raise ValueError(f"Unsupported provider type: {spec.provider}")


__all__ = ["create_llm_backend"]
