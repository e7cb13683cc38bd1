"""Structured LLM invocation with bounded self-repair.

`StructuredLLM.invoke` formats a step prompt, calls the step's backend,
extracts JSON from the reply and validates it against a pydantic model.
An invalid reply gets exactly one repair round in which the model sees its
own output and the validation errors. Transport failures are retried
separately by `with_retry`; validation failures are never retried.

Example:
    >>> llm = StructuredLLM()
    >>> palette = await llm.invoke(
    ...     PipelineStep.DESIGN_SCHEME,
    ...     "Design a palette for {producer}.",
    ...     {"producer": "Chateau Example"},
    ...     Palette,
    ... )
"""

import json
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Generic, Mapping, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from src.config import EnvVar, get_environment
from src.errors import ErrorKind, PipelineError, RetryConfig, with_retry

from ..backend import (
    DEFAULT_ANTHROPIC_MODEL,
    DEFAULT_OPENAI_MODEL,
    GenerationConfig,
    LLMBackend,
    LLMModel,
    create_llm_backend,
    get_llm_spec,
)
from .json_repair import JSONExtractionError, extract_json

logger = logging.getLogger(__name__)

OutputT = TypeVar("OutputT", bound=BaseModel)


class PipelineStep(str, Enum):
    """Steps of the label generation pipeline."""

    DESIGN_SCHEME = "design-scheme"
    IMAGE_PROMPTS = "image-prompts"
    IMAGE_GENERATE = "image-generate"
    DETAILED_LAYOUT = "detailed-layout"
    RENDER = "render"
    REFINE = "refine"


LLM_STEPS = (
    PipelineStep.DESIGN_SCHEME,
    PipelineStep.IMAGE_PROMPTS,
    PipelineStep.DETAILED_LAYOUT,
    PipelineStep.REFINE,
)


class RepairState(str, Enum):
    """Self-repair progress for one structured call."""

    INITIAL = "initial"
    REPAIRING = "repairing"
    DONE = "done"
    FAILED = "failed"


FORMAT_INSTRUCTIONS = """You must respond with VALID JSON ONLY. Critical requirements:
1. NO explanations, NO markdown, NO code blocks (no ```json blocks)
2. NO comments in the JSON (// comments will break parsing)
3. Use ONLY the exact field names and types specified in the schema
4. All color values must be hex strings like "#FF0000", NOT objects
5. All enum values must match exactly (case-sensitive)
6. Your entire response must be parseable as JSON - nothing before or after the JSON object
Return only the JSON object that matches the required schema."""

REPAIR_HEADER = "PREVIOUS OUTPUT HAD VALIDATION ERRORS:"
REPAIR_FOOTER = "Please correct these issues and provide valid JSON only:"


# =============================================================================
# Model Configuration
# =============================================================================


@dataclass(frozen=True)
class StepModelConfig:
    """Model settings for one pipeline step.

    Attributes:
        provider: 'anthropic', 'openai' or 'mock'.
        model: Model name resolvable by `get_llm_spec`.
        temperature: Sampling temperature.
        max_tokens: Generation limit.
        timeout: Request timeout in seconds.
    """

    provider: str = "anthropic"
    model: str = DEFAULT_ANTHROPIC_MODEL.spec.name
    temperature: float = 0.3
    max_tokens: int = 4000
    timeout: float = 30.0


DEFAULT_MODEL_CONFIGS: dict[PipelineStep, StepModelConfig] = {
    PipelineStep.DESIGN_SCHEME: StepModelConfig(temperature=0.3),
    PipelineStep.IMAGE_PROMPTS: StepModelConfig(temperature=0.7),
    PipelineStep.DETAILED_LAYOUT: StepModelConfig(temperature=0.2),
    PipelineStep.REFINE: StepModelConfig(temperature=0.1),
}


def model_configs_for(
    provider: str | None = None,
    model: str | None = None,
    base: Mapping[PipelineStep, StepModelConfig] | None = None,
) -> dict[PipelineStep, StepModelConfig]:
    """Derive per-step configs for another provider or model.

    Temperatures and limits are kept from ``base``; provider and model are
    replaced. With only a provider, that provider's default model is used.
    Falls back to LLM_PROVIDER / LABEL_LLM_MODEL.
    """
    base = base or DEFAULT_MODEL_CONFIGS
    provider = provider or get_environment(EnvVar.LLM_PROVIDER)
    model = model or get_environment(EnvVar.LABEL_LLM_MODEL)

    if model:
        provider = get_llm_spec(model).provider.value
    elif provider == "openai":
        model = DEFAULT_OPENAI_MODEL.spec.name
    elif provider == "mock":
        model = LLMModel.MOCK.spec.name
    elif provider in (None, "anthropic"):
        return dict(base)
    else:
        raise ValueError(f"Unsupported LLM provider: {provider}")

    return {step: replace(config, provider=provider, model=model) for step, config in base.items()}


def mock_model_configs() -> dict[PipelineStep, StepModelConfig]:
    """Per-step configs that route every LLM step to the mock backend."""
    return model_configs_for(provider="mock")


BackendFactory = Callable[[StepModelConfig], LLMBackend]


def default_backend_factory(config: StepModelConfig) -> LLMBackend:
    """Create the backend described by a step config.

    Raises:
        ValueError: If provider and model disagree.
    """
    spec = get_llm_spec(config.model)
    if spec.provider.value != config.provider:
        raise ValueError(
            f"Model '{config.model}' belongs to provider '{spec.provider.value}', "
            f"not '{config.provider}'"
        )
    return create_llm_backend(spec, timeout=config.timeout)


# =============================================================================
# Results
# =============================================================================


class OutputValidationError(ValueError):
    """A reply could not be turned into the expected output model."""


@dataclass
class StructuredResult(Generic[OutputT]):
    """Validated output and how it was obtained.

    Attributes:
        value: The validated output model.
        repair_state: DONE, reached directly or through one repair round.
        repaired: Whether the repair round was needed.
        raw_outputs: Every raw reply seen, in order.
    """

    value: OutputT
    repair_state: RepairState
    repaired: bool = False
    raw_outputs: list[str] = field(default_factory=list)


def format_validation_error(error: PydanticValidationError) -> str:
    """Flatten a pydantic error into 'loc: message' lines."""
    lines = []
    for detail in error.errors():
        location = ".".join(str(p) for p in detail.get("loc", ())) or "<root>"
        lines.append(f"{location}: {detail.get('msg')}")
    return "; ".join(lines)


def parse_structured_output(
    raw: str,
    output_schema: type[OutputT],
    context: Mapping[str, Any] | None = None,
) -> OutputT:
    """Extract JSON from ``raw`` and validate it against ``output_schema``.

    ``context`` is passed to pydantic validators as ``info.context``.

    Raises:
        OutputValidationError: On missing JSON or schema mismatch.
    """
    try:
        data = extract_json(raw)
    except JSONExtractionError as e:
        raise OutputValidationError(str(e)) from e

    try:
        return output_schema.model_validate(data, context=dict(context) if context else None)
    except PydanticValidationError as e:
        raise OutputValidationError(format_validation_error(e)) from e


def build_prompt(template: str, prompt_input: Mapping[str, Any], output_schema: type[BaseModel]) -> str:
    """Fill the template and append format instructions and the JSON schema."""
    values = {
        key: value if isinstance(value, str) else json.dumps(value, default=str)
        for key, value in prompt_input.items()
    }
    body = template.format(**values)
    schema = json.dumps(output_schema.model_json_schema(by_alias=True), indent=2)
    return f"{body}\n\n{FORMAT_INSTRUCTIONS}\n\nJSON schema of the expected output:\n{schema}"


def build_repair_prompt(prompt: str, errors: str, previous_output: str) -> str:
    """Prompt for the single self-repair round."""
    return (
        f"{prompt}\n\n{REPAIR_HEADER} {errors}\n\n"
        f"Previous output:\n{previous_output}\n\n"
        f"{REPAIR_FOOTER}\n{FORMAT_INSTRUCTIONS}"
    )


# =============================================================================
# Structured LLM
# =============================================================================


class StructuredLLM:
    """Schema-validated LLM calls for the pipeline steps.

    The model map and backend factory are injectable, so the whole pipeline
    can run against the mock backend without touching call sites.
    """

    def __init__(
        self,
        model_configs: Mapping[PipelineStep, StepModelConfig] | None = None,
        backend_factory: BackendFactory | None = None,
        retry_config: RetryConfig | None = None,
    ):
        self.model_configs = dict(model_configs or DEFAULT_MODEL_CONFIGS)
        self._backend_factory = backend_factory or default_backend_factory
        self.retry_config = retry_config or RetryConfig()
        self._backends: dict[StepModelConfig, LLMBackend] = {}

    def config_for(self, step: PipelineStep | str) -> StepModelConfig:
        """Model config of a step.

        Raises:
            PipelineError: If the step has no LLM configured.
        """
        step = PipelineStep(step)
        config = self.model_configs.get(step)
        if config is None:
            raise PipelineError(
                f"Step '{step.value}' has no LLM model configured",
                kind=ErrorKind.VALIDATION,
                context={"step": step.value},
            )
        return config

    def backend_for(self, step: PipelineStep | str) -> LLMBackend:
        """Backend of a step, created once per distinct config."""
        config = self.config_for(step)
        backend = self._backends.get(config)
        if backend is None:
            backend = self._backend_factory(config)
            self._backends[config] = backend
            logger.debug(f"Created backend {backend.name} for step {PipelineStep(step).value}")
        return backend

    async def invoke(
        self,
        step: PipelineStep | str,
        prompt_template: str,
        prompt_input: Mapping[str, Any],
        output_schema: type[OutputT],
        input_schema: type[BaseModel] | None = None,
        *,
        original_input: Any = None,
        validation_context: Mapping[str, Any] | None = None,
    ) -> OutputT:
        """Run one structured step and return the validated output.

        Args:
            step: Pipeline step (selects model config).
            prompt_template: ``str.format`` template.
            prompt_input: Template values; non-strings are JSON-encoded.
            output_schema: Pydantic model the reply must satisfy.
            input_schema: Optional model the step input must satisfy.
            original_input: Value checked against ``input_schema``
                (defaults to ``prompt_input``).
            validation_context: Passed to output validators as
                ``info.context``.

        Raises:
            PipelineError: ``validation`` for bad input or output that stays
                invalid after repair; the classified transport error otherwise.
        """
        result = await self.invoke_detailed(
            step,
            prompt_template,
            prompt_input,
            output_schema,
            input_schema,
            original_input=original_input,
            validation_context=validation_context,
        )
        return result.value

    async def invoke_detailed(
        self,
        step: PipelineStep | str,
        prompt_template: str,
        prompt_input: Mapping[str, Any],
        output_schema: type[OutputT],
        input_schema: type[BaseModel] | None = None,
        *,
        original_input: Any = None,
        validation_context: Mapping[str, Any] | None = None,
    ) -> StructuredResult[OutputT]:
        """Like `invoke`, also reporting the repair state and raw outputs."""
        step = PipelineStep(step)
        context = {"step": step.value, "operation": "structured_llm"}

        if input_schema is not None:
            candidate = dict(prompt_input) if original_input is None else original_input
            if isinstance(candidate, BaseModel):
                candidate = candidate.model_dump()
            try:
                input_schema.model_validate(candidate)
            except PydanticValidationError as e:
                raise PipelineError(
                    f"Invalid input for step '{step.value}': {format_validation_error(e)}",
                    kind=ErrorKind.VALIDATION,
                    context=context,
                ) from e

        try:
            prompt = build_prompt(prompt_template, prompt_input, output_schema)
        except (KeyError, IndexError) as e:
            raise PipelineError(
                f"Prompt for step '{step.value}' is missing variable {e}",
                kind=ErrorKind.VALIDATION,
                context=context,
            ) from e

        config = self.config_for(step)
        generation = GenerationConfig(
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            json_mode=True,
        )

        async def attempt() -> StructuredResult[OutputT]:
            backend = self.backend_for(step)
            return await self._generate_with_repair(
                step, backend, generation, prompt, output_schema, validation_context
            )

        return await with_retry(
            attempt, self.retry_config, operation=f"structured_llm:{step.value}", context=context
        )

    async def _generate_with_repair(
        self,
        step: PipelineStep,
        backend: LLMBackend,
        generation: GenerationConfig,
        prompt: str,
        output_schema: type[OutputT],
        validation_context: Mapping[str, Any] | None = None,
    ) -> StructuredResult[OutputT]:
        state = RepairState.INITIAL
        current_prompt = prompt
        raw_outputs: list[str] = []

        while True:
            response = await backend.generate(current_prompt, config=generation)
            raw_outputs.append(response.content)

            try:
                value = parse_structured_output(
                    response.content, output_schema, validation_context
                )
            except OutputValidationError as e:
                if state is RepairState.INITIAL:
                    state = RepairState.REPAIRING
                    logger.info(f"[{step.value}] Output invalid, attempting self-repair: {e}")
                    current_prompt = build_repair_prompt(prompt, str(e), response.content)
                    continue

                state = RepairState.FAILED
                logger.warning(f"[{step.value}] Self-repair failed: {e}")
                raise PipelineError(
                    f"Output of step '{step.value}' failed validation after self-repair: {e}",
                    kind=ErrorKind.VALIDATION,
                    retryable=False,
                    context={
                        "step": step.value,
                        "repair_state": state.value,
                        "backend": backend.name,
                    },
                ) from e

            repaired = state is RepairState.REPAIRING
            state = RepairState.DONE
            logger.debug(f"[{step.value}] Output valid (repaired={repaired})")
            return StructuredResult(
                value=value, repair_state=state, repaired=repaired, raw_outputs=raw_outputs
            )


__all__ = [
    "PipelineStep",
    "LLM_STEPS",
    "RepairState",
    "FORMAT_INSTRUCTIONS",
    "StepModelConfig",
    "DEFAULT_MODEL_CONFIGS",
    "model_configs_for",
    "mock_model_configs",
    "BackendFactory",
    "default_backend_factory",
    "OutputValidationError",
    "StructuredResult",
    "format_validation_error",
    "parse_structured_output",
    "build_prompt",
    "build_repair_prompt",
    "StructuredLLM",
]
