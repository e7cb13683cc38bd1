"""Tests for LLM backend implementations."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from .base import (
    AuthenticationError,
    GenerationConfig,
    GenerationResult,
    InvalidResponseError,
    LLMError,
    RateLimitError,
)
from .factory import create_llm_backend
from .mock import MockLLMBackend
from .model_spec import (
    DEFAULT_MODEL,
    LLMCapability,
    LLMModel,
    LLMProviderType,
    LLMSpec,
    get_llm_spec,
)


class TestLLMSpec:
    """Tests for LLMSpec dataclass."""

    @pytest.mark.unit
    def test_spec_capabilities(self):
        spec = LLMSpec(
            name="test",
            provider=LLMProviderType.OPENAI,
            context_window=128000,
            max_output_tokens=4096,
            capabilities=frozenset({LLMCapability.JSON_MODE}),
        )
        assert spec.supports(LLMCapability.JSON_MODE)
        assert not spec.supports(LLMCapability.VISION)
        assert not spec.is_mock


class TestLLMModel:
    """Tests for LLMModel enum registry."""

    @pytest.mark.unit
    def test_default_is_haiku(self):
        assert DEFAULT_MODEL.spec.name == "claude-3-5-haiku-20241022"
        assert DEFAULT_MODEL.spec.provider == LLMProviderType.ANTHROPIC

    @pytest.mark.unit
    def test_by_name_lookup(self):
        assert LLMModel.by_name("gpt-4.1-mini") == LLMModel.GPT_4_1_MINI
        assert LLMModel.by_name("nonexistent") is None

    @pytest.mark.unit
    def test_list_by_provider(self):
        openai_models = LLMModel.list_by_provider(LLMProviderType.OPENAI)
        assert openai_models
        assert all(m.spec.provider == LLMProviderType.OPENAI for m in openai_models)

    @pytest.mark.unit
    def test_mock_needs_no_key(self):
        assert LLMModel.MOCK.spec.is_mock
        assert not LLMModel.MOCK.spec.requires_api_key


class TestGetLLMSpec:
    """Tests for get_llm_spec helper."""

    @pytest.mark.unit
    def test_resolution(self):
        original = LLMModel.GPT_4O.spec
        assert get_llm_spec("gpt-4o") is original
        assert get_llm_spec(LLMModel.GPT_4O) is original
        assert get_llm_spec(original) is original

    @pytest.mark.unit
    def test_unknown_model_raises(self):
        with pytest.raises(ValueError, match="Unknown model"):
            get_llm_spec("nonexistent-model")


class TestGenerationConfig:
    """Tests for GenerationConfig."""

    @pytest.mark.unit
    def test_defaults(self):
        config = GenerationConfig()
        assert config.temperature == 0.7
        assert config.json_mode is True
        assert config.max_tokens == 4000
        assert config.seed is None
        assert config.stop_sequences == []


class TestOpenAIBackend:
    """Tests for OpenAI backend."""

    @pytest.mark.unit
    def test_requires_api_key(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        from .openai import OpenAIBackend

        with pytest.raises(AuthenticationError, match="API key required"):
            OpenAIBackend()

    @pytest.mark.unit
    def test_creates_with_api_key(self, mock_api_key):
        from .openai import OpenAIBackend

        backend = OpenAIBackend(api_key=mock_api_key)
        assert backend.provider == "openai"
        assert backend.model_name == "gpt-4.1-mini"
        assert backend.supports_json_mode is True

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_generate_maps_response(self, mock_api_key):
        from .openai import OpenAIBackend

        backend = OpenAIBackend(api_key=mock_api_key)
        response = SimpleNamespace(
            choices=[
                SimpleNamespace(
                    message=SimpleNamespace(content='{"a": 1}'), finish_reason="stop"
                )
            ],
            usage=SimpleNamespace(prompt_tokens=3, completion_tokens=4, total_tokens=7),
            model="gpt-4.1-mini",
        )
        client = MagicMock()
        client.chat.completions.create = AsyncMock(return_value=response)
        backend._client = client

        result = await backend.generate("hi", system_prompt="sys", config=GenerationConfig(seed=1))

        assert result.content == '{"a": 1}'
        assert result.usage["total_tokens"] == 7
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["messages"][0] == {"role": "system", "content": "sys"}
        assert kwargs["seed"] == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_generate_maps_rate_limit(self, mock_api_key):
        from .openai import OpenAIBackend

        backend = OpenAIBackend(api_key=mock_api_key)
        client = MagicMock()
        client.chat.completions.create = AsyncMock(side_effect=Exception("Error code: 429"))
        backend._client = client

        with pytest.raises(RateLimitError):
            await backend.generate("hi")


class TestAnthropicBackend:
    """Tests for Anthropic backend."""

    @pytest.mark.unit
    def test_requires_api_key(self, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        from .anthropic import AnthropicBackend

        with pytest.raises(AuthenticationError, match="API key required"):
            AnthropicBackend()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_generate_joins_text_blocks(self, mock_api_key):
        from .anthropic import AnthropicBackend

        backend = AnthropicBackend(api_key=mock_api_key)
        response = SimpleNamespace(
            content=[SimpleNamespace(type="text", text='{"a":'), SimpleNamespace(type="text", text=" 1}")],
            stop_reason="end_turn",
            usage=SimpleNamespace(input_tokens=5, output_tokens=2),
            model="claude-3-5-haiku-20241022",
        )
        client = MagicMock()
        client.messages.create = AsyncMock(return_value=response)
        backend._client = client

        result = await backend.generate("palette please")

        assert result.content == '{"a": 1}'
        assert result.usage["total_tokens"] == 7
        prompt = client.messages.create.call_args.kwargs["messages"][0]["content"]
        assert "Respond with valid JSON only" in prompt

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_generic_error_wrapped(self, mock_api_key):
        from .anthropic import AnthropicBackend

        backend = AnthropicBackend(api_key=mock_api_key)
        client = MagicMock()
        client.messages.create = AsyncMock(side_effect=RuntimeError("overloaded_error"))
        backend._client = client

        with pytest.raises(LLMError, match="overloaded"):
            await backend.generate("hi")


class TestMockBackend:
    """Tests for the offline backend."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_script_then_exhausted(self):
        backend = MockLLMBackend(["one", RateLimitError("slow down")])
        assert (await backend.generate("p1")).content == "one"
        with pytest.raises(RateLimitError):
            await backend.generate("p2")
        with pytest.raises(InvalidResponseError):
            await backend.generate("p3")
        assert backend.calls == ["p1", "p2", "p3"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_responder(self):
        backend = MockLLMBackend(responder=lambda prompt: prompt.upper())
        result = await backend.generate("abc")
        assert isinstance(result, GenerationResult)
        assert result.content == "ABC"


class TestCreateLLMBackend:
    """Tests for the backend factory."""

    @pytest.mark.unit
    def test_creates_openai_backend(self, mock_api_key):
        backend = create_llm_backend(LLMModel.GPT_4_1_MINI, api_key=mock_api_key)
        assert backend.provider == "openai"

    @pytest.mark.unit
    def test_creates_anthropic_backend(self, mock_api_key):
        backend = create_llm_backend("claude-3-5-haiku-20241022", api_key=mock_api_key, timeout=30.0)
        assert backend.name == "anthropic:claude-3-5-haiku-20241022"

    @pytest.mark.unit
    def test_creates_mock_backend(self):
        backend = create_llm_backend(LLMModel.MOCK, timeout=30.0)
        assert isinstance(backend, MockLLMBackend)
