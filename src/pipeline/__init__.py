"""Wine label generation pipeline.

Main components:
- LabelPipeline: Runs every step for one submission and tracks step status
- steps: design_scheme, image_prompts, image_generate, detailed_layout,
  render and refine as standalone async functions
- ImageGenerationService: Bounded-concurrency image generation and storage
- PillowRenderer / HTTPRenderer: Rasterize a label DSL to a preview
- create_pipeline_config: Wire real or mock collaborators from the environment

Example:
    >>> from src.pipeline import LabelPipeline, LabelStyle, WineSubmission, create_pipeline_config
    >>> pipeline = LabelPipeline(create_pipeline_config(use_mocks=True))
    >>> result = await pipeline.run(submission, LabelStyle.MODERN)
    >>> result.refinement.stop_reason
    <StopReason.NO_OPERATIONS: 'no_operations'>
"""

from . import steps
from .adapters import (
    ImageModelAdapter,
    OpenAIImageAdapter,
    OpenAIVisionRefiner,
    Renderer,
    VisionRefiner,
    build_refine_prompt,
    enhance_image_prompt,
    orientation_for,
    refine_prompt_input,
)
from .config import PipelineConfig, create_pipeline_config
from .images import ImageGenerationService
from .lib import LabelGenerationResult, LabelPipeline, StepTracker
from .mocks import (
    MOCK_DESIGN_SCHEME,
    MOCK_IMAGE_PROMPTS,
    MockImageAdapter,
    MockVisionRefiner,
    mock_llm_responder,
)
from .models import (
    MAX_REFINE_OPERATIONS,
    AspectRatio,
    DesignSchemeInput,
    DesignSchemeOutput,
    DetailedLayoutInput,
    DetailedLayoutOutput,
    GeneratedImage,
    ImageBatchResult,
    ImageError,
    ImagePromptSpec,
    ImagePromptsInput,
    ImagePromptsOutput,
    ImagePurpose,
    LabelStyle,
    PreviewFormat,
    RefineInput,
    RefineOutput,
    RenderedImage,
    RenderedPreview,
    WineSubmission,
)
from .prompts import STYLE_GUIDELINES, StyleGuideline, get_style_guideline
from .render import AssetFetcher, HTTPRenderer, PillowRenderer, RenderError

__all__ = [
    # Orchestration
    "LabelPipeline",
    "LabelGenerationResult",
    "StepTracker",
    "steps",
    # Configuration
    "PipelineConfig",
    "create_pipeline_config",
    # Models
    "MAX_REFINE_OPERATIONS",
    "LabelStyle",
    "AspectRatio",
    "ImagePurpose",
    "PreviewFormat",
    "WineSubmission",
    "DesignSchemeInput",
    "DesignSchemeOutput",
    "ImagePromptsInput",
    "ImagePromptSpec",
    "ImagePromptsOutput",
    "DetailedLayoutInput",
    "DetailedLayoutOutput",
    "RenderedPreview",
    "RefineInput",
    "RefineOutput",
    "GeneratedImage",
    "RenderedImage",
    "ImageError",
    "ImageBatchResult",
    # Styles
    "StyleGuideline",
    "STYLE_GUIDELINES",
    "get_style_guideline",
    # Images
    "ImageGenerationService",
    "ImageModelAdapter",
    "OpenAIImageAdapter",
    "orientation_for",
    "enhance_image_prompt",
    # Refinement
    "VisionRefiner",
    "OpenAIVisionRefiner",
    "refine_prompt_input",
    "build_refine_prompt",
    # Rendering
    "Renderer",
    "RenderError",
    "AssetFetcher",
    "HTTPRenderer",
    "PillowRenderer",
    # Mocks
    "MOCK_DESIGN_SCHEME",
    "MOCK_IMAGE_PROMPTS",
    "MockImageAdapter",
    "MockVisionRefiner",
    "mock_llm_responder",
]
