"""Tests for structured LLM invocation and JSON extraction."""

import json

import pytest
from pydantic import BaseModel, Field

from src.errors import ErrorKind, PipelineError, RetryConfig
from src.llm.backend import MockLLMBackend, RateLimitError

from .json_repair import JSONExtractionError, extract_json, fix_common_json_issues
from .lib import (
    DEFAULT_MODEL_CONFIGS,
    FORMAT_INSTRUCTIONS,
    PipelineStep,
    RepairState,
    StepModelConfig,
    StructuredLLM,
    default_backend_factory,
    model_configs_for,
)


class Swatch(BaseModel):
    name: str
    hex: str = Field(pattern=r"^#[0-9A-Fa-f]{6}$")


class SwatchRequest(BaseModel):
    mood: str = Field(min_length=3)


TEMPLATE = "Suggest one colour swatch for a {mood} wine label."
VALID = json.dumps({"name": "claret", "hex": "#722F37"})
INVALID = json.dumps({"name": "claret", "hex": "wine red"})
FAST_RETRY = RetryConfig(max_attempts=3, base_delay=0.0, jitter=False)


def make_llm(backend: MockLLMBackend) -> StructuredLLM:
    return StructuredLLM(backend_factory=lambda config: backend, retry_config=FAST_RETRY)


# =============================================================================
# JSON Extraction
# =============================================================================


class TestExtractJson:
    """Tests for extract_json strategies."""

    @pytest.mark.unit
    def test_plain_json(self):
        assert extract_json('{"a": 1}') == {"a": 1}

    @pytest.mark.unit
    def test_code_fence(self):
        text = 'Here you go:\n```json\n{"a": [1, 2]}\n```\nEnjoy.'
        assert extract_json(text) == {"a": [1, 2]}

    @pytest.mark.unit
    def test_prose_around_object(self):
        text = 'Sure! {"note": "braces } inside strings"} Hope that helps.'
        assert extract_json(text) == {"note": "braces } inside strings"}

    @pytest.mark.unit
    def test_comments_and_trailing_commas(self):
        text = '{\n  "a": 1, // first\n  "b": [1, 2,],\n}'
        assert extract_json(text) == {"a": 1, "b": [1, 2]}

    @pytest.mark.unit
    def test_python_literals_and_single_quotes(self):
        text = "{'done': True, 'missing': None, 'url': 'http://x'}"
        assert extract_json(text) == {"done": True, "missing": None, "url": "http://x"}

    @pytest.mark.unit
    def test_unquoted_keys(self):
        assert json.loads(fix_common_json_issues("{a: 1, b: undefined}")) == {"a": 1, "b": None}

    @pytest.mark.unit
    def test_no_json_raises(self):
        with pytest.raises(JSONExtractionError):
            extract_json("I cannot help with that.")


# =============================================================================
# Model Configuration
# =============================================================================


class TestModelConfigs:
    """Tests for per-step model configuration."""

    @pytest.mark.unit
    def test_default_temperatures(self):
        assert DEFAULT_MODEL_CONFIGS[PipelineStep.DESIGN_SCHEME].temperature == 0.3
        assert DEFAULT_MODEL_CONFIGS[PipelineStep.IMAGE_PROMPTS].temperature == 0.7
        assert DEFAULT_MODEL_CONFIGS[PipelineStep.DETAILED_LAYOUT].temperature == 0.2
        assert DEFAULT_MODEL_CONFIGS[PipelineStep.REFINE].temperature == 0.1
        assert all(c.provider == "anthropic" for c in DEFAULT_MODEL_CONFIGS.values())

    @pytest.mark.unit
    def test_provider_override_keeps_temperatures(self, monkeypatch):
        monkeypatch.delenv("LABEL_LLM_MODEL", raising=False)
        configs = model_configs_for(provider="openai")
        refine = configs[PipelineStep.REFINE]
        assert refine.provider == "openai"
        assert refine.model == "gpt-4.1-mini"
        assert refine.temperature == 0.1

    @pytest.mark.unit
    def test_model_override_sets_provider(self):
        configs = model_configs_for(model="gpt-4o")
        assert {c.provider for c in configs.values()} == {"openai"}

    @pytest.mark.unit
    def test_unknown_provider(self, monkeypatch):
        monkeypatch.delenv("LABEL_LLM_MODEL", raising=False)
        with pytest.raises(ValueError, match="Unsupported LLM provider"):
            model_configs_for(provider="carrier-pigeon")

    @pytest.mark.unit
    def test_factory_rejects_provider_mismatch(self):
        with pytest.raises(ValueError, match="belongs to provider"):
            default_backend_factory(StepModelConfig(provider="openai", model="mock"))


# =============================================================================
# Structured Invocation
# =============================================================================


class TestStructuredLLM:
    """Tests for StructuredLLM.invoke."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_valid_first_reply(self):
        backend = MockLLMBackend([VALID])
        swatch = await make_llm(backend).invoke(
            PipelineStep.DESIGN_SCHEME, TEMPLATE, {"mood": "bold"}, Swatch
        )
        assert swatch == Swatch(name="claret", hex="#722F37")
        assert len(backend.calls) == 1
        assert "bold wine label" in backend.calls[0]
        assert FORMAT_INSTRUCTIONS in backend.calls[0]
        assert '"hex"' in backend.calls[0]
        assert backend.configs[0].temperature == 0.3

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_self_repair_succeeds(self):
        backend = MockLLMBackend([INVALID, f"```json\n{VALID}\n```"])
        result = await make_llm(backend).invoke_detailed(
            PipelineStep.DESIGN_SCHEME, TEMPLATE, {"mood": "bold"}, Swatch
        )
        assert result.value.hex == "#722F37"
        assert result.repaired is True
        assert result.repair_state == RepairState.DONE
        assert len(result.raw_outputs) == 2
        repair_prompt = backend.calls[1]
        assert "PREVIOUS OUTPUT HAD VALIDATION ERRORS:" in repair_prompt
        assert "wine red" in repair_prompt
        assert "hex" in repair_prompt

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_repair_failure_is_validation_error(self):
        backend = MockLLMBackend([INVALID, "still not json"])
        with pytest.raises(PipelineError) as exc_info:
            await make_llm(backend).invoke(
                PipelineStep.REFINE, TEMPLATE, {"mood": "bold"}, Swatch
            )
        assert exc_info.value.kind == ErrorKind.VALIDATION
        assert exc_info.value.retryable is False
        assert exc_info.value.context["repair_state"] == "failed"
        assert len(backend.calls) == 2

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_rate_limit_is_retried(self):
        backend = MockLLMBackend([RateLimitError("slow down"), VALID])
        swatch = await make_llm(backend).invoke(
            PipelineStep.DESIGN_SCHEME, TEMPLATE, {"mood": "bold"}, Swatch
        )
        assert swatch.name == "claret"
        assert len(backend.calls) == 2

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_invalid_input_fails_before_generation(self):
        backend = MockLLMBackend([VALID])
        with pytest.raises(PipelineError) as exc_info:
            await make_llm(backend).invoke(
                PipelineStep.DESIGN_SCHEME, TEMPLATE, {"mood": "ok"}, Swatch, SwatchRequest
            )
        assert exc_info.value.kind == ErrorKind.VALIDATION
        assert backend.calls == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_template_variable(self):
        backend = MockLLMBackend([VALID])
        with pytest.raises(PipelineError, match="missing variable"):
            await make_llm(backend).invoke(PipelineStep.DESIGN_SCHEME, TEMPLATE, {}, Swatch)
        assert backend.calls == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_step_without_model(self):
        llm = StructuredLLM(backend_factory=lambda config: MockLLMBackend([VALID]))
        with pytest.raises(PipelineError, match="no LLM model configured"):
            await llm.invoke(PipelineStep.RENDER, TEMPLATE, {"mood": "bold"}, Swatch)

    @pytest.mark.unit
    def test_backend_created_once_per_config(self):
        created = []

        def factory(config):
            created.append(config)
            return MockLLMBackend()

        llm = StructuredLLM(backend_factory=factory)
        llm.backend_for(PipelineStep.DESIGN_SCHEME)
        llm.backend_for(PipelineStep.DESIGN_SCHEME)
        llm.backend_for(PipelineStep.REFINE)
        assert len(created) == 2
