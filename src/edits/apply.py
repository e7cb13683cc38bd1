"""Applying validated edits to a label DSL.

`apply_edits` folds a list of edits over a DSL and never mutates its input.
Each edit produces a new candidate document that is fully re-validated; an
edit that is inapplicable or would break an invariant is recorded as failed
and the previous document is kept.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from src.dsl import (
    Z_MAX,
    Z_MIN,
    ImageElement,
    LabelDSL,
    TextElement,
    validate_label_dsl,
)

from .lib import (
    Edit,
    EditLimits,
    EditValidationResult,
    MoveEdit,
    RecolorEdit,
    ReorderEdit,
    ResizeEdit,
    UpdateFontSizeEdit,
    clamp_bounds,
    parse_edit,
    validate_and_clamp_edits,
)

logger = logging.getLogger(__name__)


class EditApplicationError(Exception):
    """An edit could not be applied to its target."""


@dataclass
class FailedEdit:
    edit: Any
    reason: str


@dataclass
class EditApplicationResult:
    """Outcome of applying a batch of edits.

    Attributes:
        updated_dsl: New DSL after every applicable edit.
        applied_edits: Edits that changed the document, in order.
        failed_edits: Edits that were skipped, with the reason.
    """

    updated_dsl: LabelDSL
    applied_edits: list[Edit] = field(default_factory=list)
    failed_edits: list[FailedEdit] = field(default_factory=list)


@dataclass
class EditBatchResult:
    """Validation and application results for one batch of raw edits."""

    validation: EditValidationResult
    application: EditApplicationResult

    @property
    def updated_dsl(self) -> LabelDSL:
        return self.application.updated_dsl


def _revalidate(dsl: LabelDSL) -> LabelDSL:
    try:
        rebuilt = LabelDSL.model_validate(dsl.model_dump())
    except PydanticValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(p) for p in first.get("loc", ()))
        raise EditApplicationError(
            f"Edit would produce an invalid DSL at {location}: {first.get('msg')}"
        ) from e

    issues = validate_label_dsl(rebuilt)
    if issues:
        raise EditApplicationError(f"Edit would produce an invalid DSL: {issues[0]}")
    return rebuilt


def _apply_one(dsl: LabelDSL, edit: Edit) -> LabelDSL:
    index = next((i for i, el in enumerate(dsl.elements) if el.id == edit.id), None)
    if index is None:
        raise EditApplicationError(f"Element with id '{edit.id}' not found")

    element = dsl.elements[index]

    if isinstance(edit, (MoveEdit, ResizeEdit)):
        updated = element.model_copy(update={"bounds": clamp_bounds(element.bounds, edit)})
    elif isinstance(edit, RecolorEdit):
        if isinstance(element, ImageElement):
            raise EditApplicationError(
                f"Cannot recolor element of type '{element.type}'"
            )
        updated = element.model_copy(update={"color": edit.color})
    elif isinstance(edit, ReorderEdit):
        updated = element.model_copy(update={"z": max(Z_MIN, min(Z_MAX, edit.z))})
    elif isinstance(edit, UpdateFontSizeEdit):
        if not isinstance(element, TextElement):
            raise EditApplicationError(
                f"Cannot update font size of element of type '{element.type}'"
            )
        updated = element.model_copy(update={"font_size": edit.font_size})
    else:
        raise EditApplicationError(f"Unsupported edit operation: {edit!r}")

    elements = list(dsl.elements)
    elements[index] = updated
    return _revalidate(dsl.model_copy(update={"elements": elements}))


def apply_edits(dsl: LabelDSL, edits: Iterable[Any]) -> EditApplicationResult:
    """Apply edits in order, producing a new DSL.

    Move and resize go through `clamp_bounds`; recolor rebinds the palette
    role (images cannot be recoloured); reorder sets z within [0, 1000];
    font size changes apply to text elements only. The document satisfies
    every DSL invariant after each edit.

    Args:
        dsl: Source document (left untouched).
        edits: Edit models or raw dicts, normally the ``valid_edits`` of
            `validate_and_clamp_edits`.

    Returns:
        EditApplicationResult with the new DSL and applied/failed edits.
    """
    current = dsl
    applied: list[Edit] = []
    failed: list[FailedEdit] = []

    for raw in edits:
        try:
            edit = raw if isinstance(raw, BaseModel) else parse_edit(raw)
        except PydanticValidationError as e:
            failed.append(FailedEdit(raw, f"Invalid edit: {e.error_count()} schema errors"))
            continue

        try:
            current = _apply_one(current, edit)
        except EditApplicationError as e:
            logger.warning(f"Edit {edit.op} on '{edit.id}' failed: {e}")
            failed.append(FailedEdit(edit, str(e)))
            continue

        applied.append(edit)

    logger.info(f"Applied {len(applied)} edits, {len(failed)} failed")
    return EditApplicationResult(updated_dsl=current, applied_edits=applied, failed_edits=failed)


def refine_label(
    dsl: LabelDSL,
    raw_edits: Iterable[Any],
    limits: EditLimits | None = None,
) -> EditBatchResult:
    """Validate, clamp and apply a batch of untrusted edits.

    Args:
        dsl: Document to edit.
        raw_edits: Candidate edits from an untrusted source.
        limits: Batch limits.

    Returns:
        EditBatchResult with both validation and application outcomes.
    """
    validation = validate_and_clamp_edits(raw_edits, dsl.element_ids(), limits)
    application = apply_edits(dsl, validation.valid_edits)
    return EditBatchResult(validation=validation, application=application)


__all__ = [
    "EditApplicationError",
    "FailedEdit",
    "EditApplicationResult",
    "EditBatchResult",
    "apply_edits",
    "refine_label",
]
