"""Label generation orchestrator.

`LabelPipeline.run` executes every step in order, records each step's
status, and returns the final label with its preview and refinement summary.

Example:
    >>> pipeline = LabelPipeline(create_pipeline_config(use_mocks=True))
    >>> result = await pipeline.run(submission, LabelStyle.CLASSIC)
    >>> result.preview.preview_url
    'memory://blobs/content/....png'
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, TypeVar

from src.dsl import DesignScheme, LabelDSL
from src.errors import PipelineError, classify
from src.llm import PipelineStep
from src.storage import ImageAsset, InMemoryAliasStore, StepRecord, StepStatus, StepStore, utc_now

from . import steps
from .config import PipelineConfig
from .images import ImageGenerationService
from .models import ImageError, ImagePromptsOutput, LabelStyle, RenderedPreview, WineSubmission

if TYPE_CHECKING:
    from src.refine import RefinementResult

logger = logging.getLogger(__name__)

T = TypeVar("T")


# =============================================================================
# Step Tracking
# =============================================================================


class StepTracker:
    """Records the lifecycle of each step of one generation.

    ``pending -> processing -> completed | failed``; ``attempts`` counts
    how often a step entered ``processing``.
    """

    def __init__(self, generation_id: str, store: StepStore | None = None):
        self.generation_id = generation_id
        self.store: StepStore = store if store is not None else InMemoryAliasStore()

    async def _record(self, step: PipelineStep) -> StepRecord:
        record = await self.store.get_step(self.generation_id, step.value)
        return record or StepRecord(self.generation_id, step.value)

    async def initialize(self, steps: list[PipelineStep]) -> None:
        """Mark every step pending unless it already has a record."""
        for step in steps:
            if await self.store.get_step(self.generation_id, step.value) is None:
                await self.store.save_step(StepRecord(self.generation_id, step.value))

    async def start(self, step: PipelineStep) -> None:
        record = await self._record(step)
        now = utc_now()
        record.status = StepStatus.PROCESSING
        record.attempts += 1
        record.error = None
        record.started_at = now
        record.completed_at = None
        record.updated_at = now
        await self.store.save_step(record)

    async def complete(self, step: PipelineStep) -> None:
        record = await self._record(step)
        now = utc_now()
        record.status = StepStatus.COMPLETED
        record.completed_at = now
        record.updated_at = now
        await self.store.save_step(record)

    async def fail(self, step: PipelineStep, error: PipelineError) -> None:
        record = await self._record(step)
        record.status = StepStatus.FAILED
        record.error = error.to_dict()
        record.updated_at = utc_now()
        await self.store.save_step(record)

    async def statuses(self) -> dict[str, StepStatus]:
        """Current status per step name."""
        records = await self.store.list_steps(self.generation_id)
        return {record.step: StepStatus(record.status) for record in records}


# =============================================================================
# Orchestrator
# =============================================================================


@dataclass
class LabelGenerationResult:
    """Everything a finished generation produced.

    Attributes:
        generation_id: Id shared by all stored assets and step records.
        dsl: Final label after refinement.
        preview: Preview of ``dsl``.
        design_scheme: Output of the design-scheme step (with assets).
        image_prompts: Output of the image-prompts step.
        assets: Generated images that were stored.
        image_errors: Prompts whose image failed.
        refinement: Refinement summary, None when refinement was skipped.
    """

    generation_id: str
    dsl: LabelDSL
    preview: RenderedPreview
    design_scheme: DesignScheme
    image_prompts: ImagePromptsOutput
    assets: list[ImageAsset] = field(default_factory=list)
    image_errors: list[ImageError] = field(default_factory=list)
    refinement: RefinementResult | None = None


class LabelPipeline:
    """Runs design-scheme through refine for one wine submission."""

    STEPS = list(PipelineStep)

    def __init__(self, config: PipelineConfig):
        self.config = config
        self.images = ImageGenerationService(
            config.image_adapter,
            config.aliases,
            config.blobs,
            max_concurrent=config.max_concurrency,
            retry_config=config.retry,
        )

    async def _run_step(
        self,
        tracker: StepTracker,
        step: PipelineStep,
        operation: Callable[[], Awaitable[T]],
    ) -> T:
        await tracker.start(step)
        try:
            value = await operation()
        except Exception as e:
            error = classify(e, {"step": step.value, "generation_id": tracker.generation_id})
            logger.error(f"Step {step.value} failed: {error.message}")
            await tracker.fail(step, error)
            if error is e:
                raise
            raise error from e
        await tracker.complete(step)
        return value

    async def run(
        self,
        submission: WineSubmission,
        style: LabelStyle | str,
        generation_id: str | None = None,
        *,
        historical_examples: list[Any] | None = None,
        feedback: str | None = None,
        refine: bool = True,
    ) -> LabelGenerationResult:
        """Generate a label.

        Args:
            submission: The wine.
            style: Label style.
            generation_id: Id for stored assets and step records (random
                when None).
            historical_examples: Earlier designs passed to design-scheme.
            feedback: Reviewer feedback for the refine step.
            refine: Run the refinement loop after the first render.

        Raises:
            PipelineError: Classified failure of the first failing step.
        """
        generation_id = generation_id or str(uuid.uuid4())
        tracker = StepTracker(generation_id, self.config.steps)
        await tracker.initialize(self.STEPS)
        config = self.config
        logger.info(f"Starting label generation {generation_id} ({submission.wine_name})")

        scheme = await self._run_step(
            tracker,
            PipelineStep.DESIGN_SCHEME,
            lambda: steps.design_scheme(config.llm, submission, style, historical_examples),
        )
        prompts = await self._run_step(
            tracker,
            PipelineStep.IMAGE_PROMPTS,
            lambda: steps.image_prompts(config.llm, scheme, submission, style),
        )
        batch = await self._run_step(
            tracker,
            PipelineStep.IMAGE_GENERATE,
            lambda: steps.image_generate(self.images, generation_id, prompts.prompts),
        )
        scheme = steps.attach_assets(scheme, batch.assets)
        dsl = await self._run_step(
            tracker,
            PipelineStep.DETAILED_LAYOUT,
            lambda: steps.detailed_layout(config.llm, scheme, submission, style),
        )
        preview = await self._run_step(
            tracker,
            PipelineStep.RENDER,
            lambda: steps.render(
                config.renderer,
                dsl,
                generation_id,
                aliases=config.aliases,
                blobs=config.blobs,
                retry_config=config.retry,
            ),
        )

        refinement = None
        if refine and config.max_iterations > 0:
            from src.refine import run_refinement

            refinement = await self._run_step(
                tracker,
                PipelineStep.REFINE,
                lambda: run_refinement(
                    submission,
                    dsl,
                    preview.preview_url,
                    config,
                    max_iterations=config.max_iterations,
                    feedback=feedback,
                    generation_id=generation_id,
                ),
            )
            dsl = refinement.dsl
            if refinement.preview is not None:
                preview = refinement.preview
        else:
            await self._run_step(tracker, PipelineStep.REFINE, _skipped)

        logger.info(
            f"Label generation {generation_id} complete: {len(dsl.elements)} elements, "
            f"{len(batch.assets)} images, {len(batch.errors)} image errors"
        )
        return LabelGenerationResult(
            generation_id=generation_id,
            dsl=dsl,
            preview=preview,
            design_scheme=scheme,
            image_prompts=prompts,
            assets=batch.assets,
            image_errors=batch.errors,
            refinement=refinement,
        )


async def _skipped() -> None:
    logger.info("Refinement skipped")


__all__ = [
    "StepTracker",
    "LabelGenerationResult",
    "LabelPipeline",
]
