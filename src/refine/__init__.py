"""Refinement loop: propose, convert, clamp, apply and re-render.

Example:
    >>> from src.refine import run_refinement
    >>> result = await run_refinement(submission, dsl, preview_url, config)
    >>> result.stop_reason
    <StopReason.NO_OPERATIONS: 'no_operations'>
"""

from .lib import RefinementIteration, RefinementResult, StopReason, run_refinement

__all__ = [
    "StopReason",
    "RefinementIteration",
    "RefinementResult",
    "run_refinement",
]
