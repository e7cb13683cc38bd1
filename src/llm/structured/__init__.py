"""Structured, schema-validated LLM calls for pipeline steps.

Example:
    >>> from src.llm.structured import PipelineStep, StructuredLLM
    >>> llm = StructuredLLM()
    >>> result = await llm.invoke(PipelineStep.REFINE, template, values, RefineOutput)
"""

from .json_repair import (
    JSONExtractionError,
    clean_json_text,
    extract_json,
    fix_common_json_issues,
)
from .lib import (
    DEFAULT_MODEL_CONFIGS,
    FORMAT_INSTRUCTIONS,
    LLM_STEPS,
    BackendFactory,
    OutputValidationError,
    PipelineStep,
    RepairState,
    StepModelConfig,
    StructuredLLM,
    StructuredResult,
    build_prompt,
    build_repair_prompt,
    default_backend_factory,
    format_validation_error,
    mock_model_configs,
    model_configs_for,
    parse_structured_output,
)

__all__ = [
    # JSON extraction
    "JSONExtractionError",
    "clean_json_text",
    "fix_common_json_issues",
    "extract_json",
    # Steps and models
    "PipelineStep",
    "LLM_STEPS",
    "StepModelConfig",
    "DEFAULT_MODEL_CONFIGS",
    "model_configs_for",
    "mock_model_configs",
    "BackendFactory",
    "default_backend_factory",
    # Invocation
    "RepairState",
    "FORMAT_INSTRUCTIONS",
    "OutputValidationError",
    "StructuredResult",
    "StructuredLLM",
    "format_validation_error",
    "parse_structured_output",
    "build_prompt",
    "build_repair_prompt",
]
