"""LLM integration layer for the label pipeline.

Main components:
- StructuredLLM: Schema-validated step calls with one self-repair round
- LLMBackend: Async interface for LLM providers
- create_llm_backend: Factory function for creating backends

Supported providers:
- Anthropic (Claude 3.5 Haiku default, Claude 4.5)
- OpenAI (GPT-4.1, GPT-4o)
- Mock (offline, scripted or keyword-driven replies)

Example:
    >>> from src.llm import PipelineStep, StructuredLLM, mock_model_configs
    >>> llm = StructuredLLM(model_configs=mock_model_configs())
"""

from .backend import (
    DEFAULT_ANTHROPIC_MODEL,
    DEFAULT_MODEL,
    DEFAULT_OPENAI_MODEL,
    DEFAULT_VISION_MODEL,
    AuthenticationError,
    ContextLengthError,
    GenerationConfig,
    GenerationResult,
    InvalidResponseError,
    LLMBackend,
    LLMCapability,
    LLMError,
    LLMModel,
    LLMProviderType,
    LLMSpec,
    MockLLMBackend,
    RateLimitError,
    create_llm_backend,
    get_llm_spec,
)
from .structured import (
    DEFAULT_MODEL_CONFIGS,
    JSONExtractionError,
    PipelineStep,
    RepairState,
    StepModelConfig,
    StructuredLLM,
    StructuredResult,
    extract_json,
    mock_model_configs,
    model_configs_for,
)

__all__ = [
    # Main API
    "StructuredLLM",
    "StructuredResult",
    "PipelineStep",
    "RepairState",
    "StepModelConfig",
    "DEFAULT_MODEL_CONFIGS",
    "model_configs_for",
    "mock_model_configs",
    "extract_json",
    "JSONExtractionError",
    "create_llm_backend",
    # Backend types
    "LLMBackend",
    "MockLLMBackend",
    "GenerationConfig",
    "GenerationResult",
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
    # Exceptions
    "LLMError",
    "RateLimitError",
    "ContextLengthError",
    "InvalidResponseError",
    "AuthenticationError",
]
