"""The six steps of label generation.

Each step is an async function over explicit collaborators, so steps can be
run and tested in isolation. `LabelPipeline` wires them together.

    design_scheme -> image_prompts -> image_generate -> detailed_layout
        -> render -> refine
"""

import json
import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from src.dsl import DesignScheme, LabelDSL, validate_label_dsl
from src.errors import ErrorKind, PipelineError, RetryConfig, with_retry
from src.llm import PipelineStep, StructuredLLM
from src.storage import AliasStore, BlobStore, ImageAsset, upload_rendered_label

from .adapters import Renderer, VisionRefiner, refine_prompt_input
from .images import ImageGenerationService
from .models import (
    DesignSchemeInput,
    DesignSchemeOutput,
    DetailedLayoutInput,
    DetailedLayoutOutput,
    ImageBatchResult,
    ImagePromptsInput,
    ImagePromptSpec,
    ImagePromptsOutput,
    LabelStyle,
    RefineInput,
    RefineOutput,
    RenderedPreview,
    WineSubmission,
)
from .prompts import (
    DESIGN_SCHEME_PROMPT,
    DETAILED_LAYOUT_PROMPT,
    IMAGE_PROMPTS_PROMPT,
    REFINE_PROMPT,
    describe_assets,
    image_prompt_guidelines,
)

logger = logging.getLogger(__name__)


def _style_value(style: LabelStyle | str) -> str:
    try:
        return LabelStyle(style).value
    except ValueError as e:
        raise PipelineError(
            f"Unknown label style '{style}'",
            kind=ErrorKind.VALIDATION,
            context={"style": str(style)},
        ) from e


def _wine_details(submission: WineSubmission) -> dict[str, Any]:
    return submission.model_dump()


# =============================================================================
# LLM Steps
# =============================================================================


async def design_scheme(
    llm: StructuredLLM,
    submission: WineSubmission,
    style: LabelStyle | str,
    historical_examples: list[Any] | None = None,
) -> DesignScheme:
    """Choose canvas, palette and typography for a wine.

    Raises:
        PipelineError: ``validation`` for bad input or unrepairable output.
    """
    style = _style_value(style)
    logger.info(f"Running design-scheme step for {submission.producer_name} ({style})")

    examples = ""
    if historical_examples:
        examples = "Previous designs for reference:\n" + json.dumps(historical_examples, indent=2)

    return await llm.invoke(
        PipelineStep.DESIGN_SCHEME,
        DESIGN_SCHEME_PROMPT,
        {**_wine_details(submission), "style": style, "historical_examples": examples},
        DesignSchemeOutput,
        DesignSchemeInput,
        original_input={
            "submission": submission,
            "style": style,
            "historical_examples": historical_examples,
        },
    )


async def image_prompts(
    llm: StructuredLLM,
    scheme: DesignScheme,
    submission: WineSubmission,
    style: LabelStyle | str,
) -> ImagePromptsOutput:
    """Write image generation prompts that fit the design scheme."""
    style = _style_value(style)
    logger.info(f"Running image-prompts step (temperature {scheme.palette.temperature})")

    return await llm.invoke(
        PipelineStep.IMAGE_PROMPTS,
        IMAGE_PROMPTS_PROMPT,
        {
            **_wine_details(submission),
            "style": style,
            "style_guidelines": image_prompt_guidelines(style),
            "primary": scheme.palette.primary,
            "secondary": scheme.palette.secondary,
            "accent": scheme.palette.accent,
            "background": scheme.palette.background,
            "temperature": scheme.palette.temperature,
            "contrast": scheme.palette.contrast,
            "primary_font": scheme.typography.primary.family,
            "secondary_font": scheme.typography.secondary.family,
        },
        ImagePromptsOutput,
        ImagePromptsInput,
        original_input={"design_scheme": scheme, "style": style, "submission": submission},
    )


async def detailed_layout(
    llm: StructuredLLM,
    scheme: DesignScheme,
    submission: WineSubmission,
    style: LabelStyle | str,
) -> LabelDSL:
    """Position elements on the canvas and return the complete DSL.

    ``scheme`` must carry the generated assets. The model returns elements
    only; they are combined with the scheme and every asset must be used by
    an image element.

    Raises:
        PipelineError: ``validation`` if input or combined DSL is invalid.
    """
    style = _style_value(style)
    asset_ids = [asset.id for asset in scheme.assets]
    logger.info(f"Running detailed-layout step with {len(asset_ids)} assets")

    typography = scheme.typography
    output = await llm.invoke(
        PipelineStep.DETAILED_LAYOUT,
        DETAILED_LAYOUT_PROMPT,
        {
            **_wine_details(submission),
            "style": style,
            "width": scheme.canvas.width,
            "height": scheme.canvas.height,
            "dpi": scheme.canvas.dpi,
            "background": scheme.canvas.background,
            "primary": scheme.palette.primary,
            "secondary": scheme.palette.secondary,
            "accent": scheme.palette.accent,
            "temperature": scheme.palette.temperature,
            "contrast": scheme.palette.contrast,
            "asset_count": len(asset_ids),
            "asset_ids": ", ".join(asset_ids),
            "asset_details": describe_assets(scheme.assets),
            "primary_font": typography.primary.family,
            "primary_weight": typography.primary.weight,
            "primary_style": typography.primary.style,
            "secondary_font": typography.secondary.family,
            "secondary_weight": typography.secondary.weight,
            "secondary_style": typography.secondary.style,
            "producer_emphasis": typography.hierarchy.producer_emphasis,
            "vintage_prominence": typography.hierarchy.vintage_prominence,
            "region_display": typography.hierarchy.region_display,
        },
        DetailedLayoutOutput,
        DetailedLayoutInput,
        original_input={"design_scheme": scheme, "submission": submission, "style": style},
        validation_context={"asset_ids": asset_ids},
    )

    context = {"step": PipelineStep.DETAILED_LAYOUT.value}
    try:
        dsl = LabelDSL.model_validate(
            {**scheme.model_dump(), "elements": [e.model_dump() for e in output.elements]}
        )
    except PydanticValidationError as e:
        raise PipelineError(
            f"Layout does not form a valid label: {e.error_count()} errors",
            kind=ErrorKind.VALIDATION,
            context=context,
        ) from e

    issues = validate_label_dsl(dsl)
    if issues:
        raise PipelineError(
            f"Layout does not form a valid label: {'; '.join(str(i) for i in issues)}",
            kind=ErrorKind.VALIDATION,
            context=context,
        )
    return dsl


# =============================================================================
# Images and Rendering
# =============================================================================


async def image_generate(
    service: ImageGenerationService,
    generation_id: str,
    specs: list[ImagePromptSpec],
) -> ImageBatchResult:
    """Generate and store every prompt's image.

    Partial failure is allowed; the step fails only when no image could be
    produced, since the layout needs at least one asset.
    """
    logger.info(f"Running image-generate step for {len(specs)} prompts")
    batch = await service.generate_and_store(generation_id, specs)
    if not batch.assets:
        raise PipelineError(
            "No images could be generated",
            kind=ErrorKind.PROCESSING,
            context={
                "step": PipelineStep.IMAGE_GENERATE.value,
                "generation_id": generation_id,
                "errors": [error.error for error in batch.errors],
            },
        )
    return batch


def attach_assets(scheme: DesignScheme, assets: list[ImageAsset]) -> DesignScheme:
    """Copy of ``scheme`` carrying the generated assets."""
    return DesignScheme.model_validate(
        {**scheme.model_dump(), "assets": [asset.to_dsl_asset().model_dump() for asset in assets]}
    )


async def render(
    renderer: Renderer,
    dsl: LabelDSL,
    generation_id: str,
    *,
    aliases: AliasStore,
    blobs: BlobStore,
    retry_config: RetryConfig | None = None,
) -> RenderedPreview:
    """Rasterize the DSL and store the preview.

    Raises:
        PipelineError: Classified render or storage failure.
    """
    logger.info(f"Running render step for {generation_id}")
    image = await with_retry(
        lambda: renderer.render(dsl),
        retry_config,
        operation="render",
        context={"step": PipelineStep.RENDER.value, "generation_id": generation_id},
    )
    asset = await upload_rendered_label(
        generation_id, image.data, aliases=aliases, blobs=blobs, retry_config=retry_config
    )
    return RenderedPreview(
        preview_url=asset.url,
        width=asset.width,
        height=asset.height,
        format=asset.format.upper(),
    )


# =============================================================================
# Refine
# =============================================================================


async def refine(
    llm: StructuredLLM,
    submission: WineSubmission,
    dsl: LabelDSL,
    preview_url: str,
    *,
    vision_refiner: VisionRefiner | None = None,
    feedback: str | None = None,
    retry_config: RetryConfig | None = None,
    generation_id: str | None = None,
) -> RefineOutput:
    """Propose edit operations for a rendered label.

    Uses the vision refiner when one is configured, otherwise the text-only
    LLM critique of the DSL. Vision calls are retried under ``retry_config``;
    the text path retries inside StructuredLLM.
    """
    refine_input = RefineInput(
        submission=submission,
        current_dsl=dsl,
        preview_url=preview_url,
        refinement_feedback=feedback,
    )

    if vision_refiner is not None:
        logger.info("Running refine step with vision refiner")
        context = {"step": PipelineStep.REFINE.value}
        if generation_id:
            context["generation_id"] = generation_id
        return await with_retry(
            lambda: vision_refiner.propose_edits(refine_input),
            retry_config,
            operation="vision_refine",
            context=context,
        )

    logger.info("Running refine step with text-only LLM critique")
    return await llm.invoke(
        PipelineStep.REFINE,
        REFINE_PROMPT,
        refine_prompt_input(refine_input),
        RefineOutput,
        RefineInput,
        original_input=refine_input,
    )


__all__ = [
    "design_scheme",
    "image_prompts",
    "image_generate",
    "attach_assets",
    "detailed_layout",
    "render",
    "refine",
]
