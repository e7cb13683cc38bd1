"""Model specification system for LLM backends.

Provides a registry of supported LLM models with their capabilities,
context windows, and provider information.
"""

from dataclasses import dataclass, field
from enum import Enum


class LLMCapability(Enum):
    """Capabilities that an LLM model may support."""

    JSON_MODE = "json_mode"  # Native JSON output enforcement
    VISION = "vision"  # Image input support
    SYSTEM_PROMPT = "system_prompt"
    SEED = "seed"  # Reproducible generation with seed


class LLMProviderType(Enum):
    """Available LLM backend providers."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    MOCK = "mock"


@dataclass(frozen=True)
class LLMSpec:
    """Specification for an LLM model.

    Attributes:
        name: Model identifier (e.g., 'gpt-4.1-mini', 'claude-3-5-haiku-20241022').
        provider: Backend provider type.
        context_window: Maximum context size in tokens.
        max_output_tokens: Maximum generation tokens.
        capabilities: Set of supported capabilities.
        description: Human-readable description.
        requires_api_key: Whether this model needs an API key.
        api_key_env_var: Environment variable name for API key.
    """

    name: str
    provider: LLMProviderType
    context_window: int
    max_output_tokens: int
    capabilities: frozenset[LLMCapability] = field(default_factory=frozenset)
    description: str = ""
    requires_api_key: bool = True
    api_key_env_var: str = ""

    def supports(self, capability: LLMCapability) -> bool:
        """Check if model supports a capability."""
        return capability in self.capabilities

    @property
    def is_mock(self) -> bool:
        """Check if model is the offline mock."""
        return self.provider == LLMProviderType.MOCK


_OPENAI_FULL = frozenset(
    {
        LLMCapability.JSON_MODE,
        LLMCapability.VISION,
        LLMCapability.SYSTEM_PROMPT,
        LLMCapability.SEED,
    }
)

_ANTHROPIC_FULL = frozenset({LLMCapability.VISION, LLMCapability.SYSTEM_PROMPT})


class LLMModel(Enum):
    """Registry of available LLM models."""

    # === OpenAI Models ===
    GPT_4_1 = LLMSpec(
        name="gpt-4.1",
        provider=LLMProviderType.OPENAI,
        context_window=128000,
        max_output_tokens=16384,
        capabilities=_OPENAI_FULL,
        description="OpenAI general purpose model",
        api_key_env_var="OPENAI_API_KEY",
    )

    GPT_4_1_MINI = LLMSpec(
        name="gpt-4.1-mini",
        provider=LLMProviderType.OPENAI,
        context_window=128000,
        max_output_tokens=16384,
        capabilities=_OPENAI_FULL,
        description="OpenAI fast and efficient small model",
        api_key_env_var="OPENAI_API_KEY",
    )

    GPT_4O = LLMSpec(
        name="gpt-4o",
        provider=LLMProviderType.OPENAI,
        context_window=128000,
        max_output_tokens=16384,
        capabilities=_OPENAI_FULL,
        description="OpenAI multimodal model used for label critique",
        api_key_env_var="OPENAI_API_KEY",
    )

    # === Anthropic Claude Models ===
    CLAUDE_3_5_HAIKU = LLMSpec(
        name="claude-3-5-haiku-20241022",
        provider=LLMProviderType.ANTHROPIC,
        context_window=200000,
        max_output_tokens=8192,
        capabilities=_ANTHROPIC_FULL,
        description="Anthropic fast model, default for every pipeline step",
        api_key_env_var="ANTHROPIC_API_KEY",
    )

    CLAUDE_HAIKU_4_5 = LLMSpec(
        name="claude-haiku-4-5",
        provider=LLMProviderType.ANTHROPIC,
        context_window=200000,
        max_output_tokens=64000,
        capabilities=_ANTHROPIC_FULL,
        description="Anthropic fastest current model",
        api_key_env_var="ANTHROPIC_API_KEY",
    )

    CLAUDE_SONNET_4_5 = LLMSpec(
        name="claude-sonnet-4-5",
        provider=LLMProviderType.ANTHROPIC,
        context_window=200000,
        max_output_tokens=64000,
        capabilities=_ANTHROPIC_FULL,
        description="Anthropic balanced model",
        api_key_env_var="ANTHROPIC_API_KEY",
    )

    # === Offline ===
    MOCK = LLMSpec(
        name="mock",
        provider=LLMProviderType.MOCK,
        context_window=200000,
        max_output_tokens=8192,
        capabilities=frozenset({LLMCapability.JSON_MODE, LLMCapability.SYSTEM_PROMPT}),
        description="Deterministic offline responses for tests and demos",
        requires_api_key=False,
    )

    @property
    def spec(self) -> LLMSpec:
        """Get the LLMSpec for this model."""
        return self.value

    @classmethod
    def by_name(cls, name: str) -> "LLMModel | None":
        """Look up model by name string."""
        for model in cls:
            if model.spec.name == name:
                return model
        return None

    @classmethod
    def list_by_provider(cls, provider: LLMProviderType) -> list["LLMModel"]:
        """Get all models for a specific provider."""
        return [m for m in cls if m.spec.provider == provider]


DEFAULT_OPENAI_MODEL = LLMModel.GPT_4_1_MINI
DEFAULT_ANTHROPIC_MODEL = LLMModel.CLAUDE_3_5_HAIKU
DEFAULT_VISION_MODEL = LLMModel.GPT_4O

DEFAULT_MODEL = DEFAULT_ANTHROPIC_MODEL


def get_llm_spec(model: str | LLMModel | LLMSpec) -> LLMSpec:
    """Resolve a model reference to its LLMSpec.

    Args:
        model: Can be a model name string, LLMModel enum, or LLMSpec.

    Returns:
        The resolved LLMSpec.

    Raises:
        ValueError: If model name is not found.
    """
    if isinstance(model, LLMSpec):
        return model
    if isinstance(model, LLMModel):
        return model.spec
    found = LLMModel.by_name(model)
    if found:
        return found.spec
    raise ValueError(f"Unknown model: {model}")


__all__ = [
    "LLMCapability",
    "LLMProviderType",
    "LLMSpec",
    "LLMModel",
    "DEFAULT_OPENAI_MODEL",
    "DEFAULT_ANTHROPIC_MODEL",
    "DEFAULT_VISION_MODEL",
    "DEFAULT_MODEL",
    "get_llm_spec",
]
