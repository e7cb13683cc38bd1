"""Iterative refinement of a rendered label.

One iteration: ask the refiner for proposals, convert them to edits,
validate and clamp, apply, and re-render if anything changed. The loop is
strictly sequential and never raises; it stops early with the best result so
far and reports why.
"""

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum

from src.dsl import LabelDSL
from src.edits import EditLimits, convert_operations, refine_label
from src.errors import classify
from src.pipeline.config import PipelineConfig
from src.pipeline.models import RenderedPreview, WineSubmission
from src.pipeline.steps import refine, render

logger = logging.getLogger(__name__)


class StopReason(str, Enum):
    MAX_ITERATIONS = "max_iterations"
    NO_OPERATIONS = "no_operations"
    NO_EDITS = "no_edits"
    NOTHING_APPLIED = "nothing_applied"
    PROPOSAL_FAILED = "proposal_failed"
    RENDER_FAILED = "render_failed"


@dataclass
class RefinementIteration:
    """What happened in one iteration."""

    iteration: int
    operation_count: int = 0
    edit_count: int = 0
    applied: int = 0
    failed: int = 0
    rejected: int = 0
    clamped: int = 0
    reasoning: str | None = None
    confidence: float | None = None
    preview_url: str | None = None
    error: dict | None = None


@dataclass
class RefinementResult:
    """Outcome of `run_refinement`.

    ``dsl`` and ``preview_url`` always belong together: when re-rendering
    fails, that iteration's edits are dropped. ``preview`` is set once an
    iteration produced a new render.
    """

    dsl: LabelDSL
    preview_url: str
    preview: RenderedPreview | None = None
    iterations: int = 0
    applied_edit_count: int = 0
    failed_edit_count: int = 0
    rejected_edit_count: int = 0
    stop_reason: StopReason = StopReason.MAX_ITERATIONS
    history: list[RefinementIteration] = field(default_factory=list)


async def run_refinement(
    submission: WineSubmission,
    dsl: LabelDSL,
    preview_url: str,
    config: PipelineConfig,
    max_iterations: int = 2,
    feedback: str | None = None,
    *,
    generation_id: str | None = None,
    limits: EditLimits | None = None,
) -> RefinementResult:
    """Refine a label for up to ``max_iterations`` rounds.

    Args:
        submission: The wine the label is for.
        dsl: Current label.
        preview_url: Rendered preview of ``dsl``.
        config: Pipeline collaborators (LLM, vision refiner, renderer, stores).
        max_iterations: Upper bound on refine rounds.
        feedback: Optional reviewer feedback passed to the refiner.
        generation_id: Owner of re-rendered previews (random when None).
        limits: Edit batch limits.

    Returns:
        RefinementResult; never raises for refiner or renderer failures.
    """
    generation_id = generation_id or str(uuid.uuid4())
    result = RefinementResult(dsl=dsl, preview_url=preview_url)

    for iteration in range(1, max_iterations + 1):
        record = RefinementIteration(iteration=iteration)
        result.history.append(record)
        result.iterations = iteration
        logger.info(f"Refinement iteration {iteration}/{max_iterations}")

        try:
            proposal = await refine(
                config.llm,
                submission,
                result.dsl,
                result.preview_url,
                vision_refiner=config.vision_refiner,
                feedback=feedback,
                retry_config=config.retry,
                generation_id=generation_id,
            )
        except Exception as e:
            error = classify(e, {"step": "refine", "iteration": iteration})
            logger.warning(f"Refinement proposal failed: {error.message}")
            record.error = error.to_dict()
            result.stop_reason = StopReason.PROPOSAL_FAILED
            return result

        record.operation_count = len(proposal.operations)
        record.reasoning = proposal.reasoning
        record.confidence = proposal.confidence
        if not proposal.operations:
            logger.info("Refiner proposed no operations, stopping")
            result.stop_reason = StopReason.NO_OPERATIONS
            return result

        edits = convert_operations(proposal.operations, result.dsl)
        record.edit_count = len(edits)
        if not edits:
            logger.info("No proposal could be converted to an edit, stopping")
            result.stop_reason = StopReason.NO_EDITS
            return result

        batch = refine_label(result.dsl, edits, limits)
        record.applied = len(batch.application.applied_edits)
        record.failed = len(batch.application.failed_edits)
        record.rejected = len(batch.validation.rejected_edits)
        record.clamped = len(batch.validation.clamped_edits)
        if not record.applied:
            result.failed_edit_count += record.failed
            result.rejected_edit_count += record.rejected
            logger.info("No edit could be applied, stopping")
            result.stop_reason = StopReason.NOTHING_APPLIED
            return result

        try:
            preview = await render(
                config.renderer,
                batch.updated_dsl,
                generation_id,
                aliases=config.aliases,
                blobs=config.blobs,
                retry_config=config.retry,
            )
        except Exception as e:
            error = classify(e, {"step": "render", "iteration": iteration})
            logger.warning(f"Re-render failed, keeping previous label: {error.message}")
            record.error = error.to_dict()
            result.stop_reason = StopReason.RENDER_FAILED
            return result

        record.preview_url = preview.preview_url
        result.dsl = batch.updated_dsl
        result.preview_url = preview.preview_url
        result.preview = preview
        result.applied_edit_count += record.applied
        result.failed_edit_count += record.failed
        result.rejected_edit_count += record.rejected
        logger.info(
            f"Iteration {iteration}: {record.applied} applied, {record.failed} failed, "
            f"{record.rejected} rejected"
        )

    result.stop_reason = StopReason.MAX_ITERATIONS
    return result


__all__ = [
    "StopReason",
    "RefinementIteration",
    "RefinementResult",
    "run_refinement",
]
