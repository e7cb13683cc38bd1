"""label-pipeline: AI wine label generation."""

from src.dsl import DSLValidationError, LabelDSL, parse_label_dsl, validate_label_dsl
from src.edits import refine_label
from src.errors import ErrorKind, PipelineError
from src.pipeline import LabelPipeline, LabelStyle, WineSubmission, create_pipeline_config

__all__ = [
    # DSL
    "LabelDSL",
    "parse_label_dsl",
    "validate_label_dsl",
    "DSLValidationError",
    # Edits
    "refine_label",
    # Errors
    "PipelineError",
    "ErrorKind",
    # Pipeline
    "LabelPipeline",
    "LabelStyle",
    "WineSubmission",
    "create_pipeline_config",
]
