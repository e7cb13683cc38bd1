"""Edit proposals: validation, delta clamping and bounds clamping.

Edits arrive from untrusted sources (vision models, LLMs, API clients).
Before anything touches a DSL, `validate_and_clamp_edits` sorts every
candidate into accepted, clamped or rejected, in input order.

Example:
    >>> result = validate_and_clamp_edits(
    ...     [{"op": "move", "id": "e1", "dx": 0.3, "dy": -0.25}],
    ...     existing_element_ids=["e1"],
    ... )
    >>> clamped = result.clamped_edits[0].clamped
    >>> clamped.dx, clamped.dy
    (0.2, -0.2)
"""

import logging
from dataclasses import dataclass, field
from typing import Annotated, Any, Iterable, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from src.dsl import Z_MAX, Z_MIN, Bounds, PaletteRole

logger = logging.getLogger(__name__)

DEFAULT_MAX_EDITS = 10
DEFAULT_MAX_DELTA = 0.2


# =============================================================================
# Edit Models
# =============================================================================


class EditBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)

    id: str = Field(..., min_length=1, description="Target element id")


class MoveEdit(EditBase):
    op: Literal["move"] = "move"
    dx: float
    dy: float


class ResizeEdit(EditBase):
    op: Literal["resize"] = "resize"
    dw: float
    dh: float


class RecolorEdit(EditBase):
    op: Literal["recolor"] = "recolor"
    color: PaletteRole


class ReorderEdit(EditBase):
    op: Literal["reorder"] = "reorder"
    z: int


class UpdateFontSizeEdit(EditBase):
    op: Literal["update_font_size"] = "update_font_size"
    font_size: Annotated[int, Field(gt=0, alias="fontSize")]


Edit = Annotated[
    Union[MoveEdit, ResizeEdit, RecolorEdit, ReorderEdit, UpdateFontSizeEdit],
    Field(discriminator="op"),
]

_EDIT_ADAPTER: TypeAdapter = TypeAdapter(Edit)


def parse_edit(raw: Any) -> Edit:
    """Validate a single raw edit (dict or model) into an Edit.

    Raises:
        pydantic.ValidationError: If the edit does not match any variant.
    """
    if isinstance(raw, BaseModel):
        raw = raw.model_dump(by_alias=True)
    return _EDIT_ADAPTER.validate_python(raw)


def edit_to_dict(edit: Edit) -> dict[str, Any]:
    """Dump an edit to its wire form (camelCase ``fontSize``)."""
    return edit.model_dump(by_alias=True, mode="json")


# =============================================================================
# Validation Results
# =============================================================================


@dataclass
class EditLimits:
    """Bounds applied to untrusted edit batches.

    Attributes:
        max_edits: Maximum number of edits accepted from one batch.
        max_delta: Maximum absolute move/resize delta per axis.
    """

    max_edits: int = DEFAULT_MAX_EDITS
    max_delta: float = DEFAULT_MAX_DELTA

    def __post_init__(self) -> None:
        if self.max_edits < 0:
            raise ValueError(f"max_edits must be >= 0, got {self.max_edits}")
        if self.max_delta < 0:
            raise ValueError(f"max_delta must be >= 0, got {self.max_delta}")


@dataclass
class RejectedEdit:
    edit: Any
    reason: str


@dataclass
class ClampedEdit:
    original: Edit
    clamped: Edit
    reason: str


@dataclass
class EditValidationResult:
    """Outcome of validating a batch of edits.

    Attributes:
        valid_edits: Accepted and clamped edits, in input order.
        rejected_edits: Edits dropped with the reason.
        clamped_edits: Edits that were adjusted, with original and clamped form.
    """

    valid_edits: list[Edit] = field(default_factory=list)
    rejected_edits: list[RejectedEdit] = field(default_factory=list)
    clamped_edits: list[ClampedEdit] = field(default_factory=list)


# =============================================================================
# Validation and Clamping
# =============================================================================


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _format_schema_error(error: PydanticValidationError) -> str:
    parts = []
    for detail in error.errors():
        location = ".".join(str(p) for p in detail.get("loc", ()))
        parts.append(f"{location}: {detail.get('msg')}" if location else detail.get("msg", ""))
    return "Schema validation failed: " + "; ".join(parts)


def clamp_edit_deltas(edit: Edit, max_delta: float) -> tuple[Edit, str | None]:
    """Bound the requested magnitude of an edit.

    Returns:
        Tuple of (possibly clamped edit, reason or None when unchanged).
    """
    if isinstance(edit, MoveEdit):
        dx = _clamp(edit.dx, -max_delta, max_delta)
        dy = _clamp(edit.dy, -max_delta, max_delta)
        if (dx, dy) != (edit.dx, edit.dy):
            return (
                edit.model_copy(update={"dx": dx, "dy": dy}),
                f"Move deltas clamped from ({edit.dx}, {edit.dy}) to ({dx}, {dy})",
            )
    elif isinstance(edit, ResizeEdit):
        dw = _clamp(edit.dw, -max_delta, max_delta)
        dh = _clamp(edit.dh, -max_delta, max_delta)
        if (dw, dh) != (edit.dw, edit.dh):
            return (
                edit.model_copy(update={"dw": dw, "dh": dh}),
                f"Resize deltas clamped from ({edit.dw}, {edit.dh}) to ({dw}, {dh})",
            )
    elif isinstance(edit, ReorderEdit):
        z = int(_clamp(edit.z, Z_MIN, Z_MAX))
        if z != edit.z:
            return (
                edit.model_copy(update={"z": z}),
                f"Z-index clamped from {edit.z} to {z}",
            )
    return edit, None


def validate_and_clamp_edits(
    raw_edits: Iterable[Any],
    existing_element_ids: Iterable[str],
    limits: EditLimits | None = None,
) -> EditValidationResult:
    """Sort candidate edits into accepted, clamped and rejected.

    Every candidate is evaluated in input order; the function never stops
    early. A candidate is rejected when the accepted count already reached
    ``max_edits``, when it fails schema validation, or when its id is unknown.
    Move/resize deltas outside ``[-max_delta, max_delta]`` and reorder z
    outside ``[0, 1000]`` are clamped per axis, keeping the sign.

    Args:
        raw_edits: Untrusted edits (dicts or Edit models).
        existing_element_ids: Ids present in the target DSL.
        limits: Batch limits (defaults to 10 edits, 0.2 delta).

    Returns:
        EditValidationResult with the three buckets.
    """
    limits = limits or EditLimits()
    known_ids = set(existing_element_ids)
    result = EditValidationResult()
    total = 0

    for raw in raw_edits:
        total += 1

        if len(result.valid_edits) >= limits.max_edits:
            result.rejected_edits.append(
                RejectedEdit(raw, f"Exceeded maximum edits limit of {limits.max_edits}")
            )
            continue

        try:
            edit = parse_edit(raw)
        except PydanticValidationError as e:
            reason = _format_schema_error(e)
            logger.warning(f"Edit validation failed: {reason}")
            result.rejected_edits.append(RejectedEdit(raw, reason))
            continue

        if edit.id not in known_ids:
            result.rejected_edits.append(
                RejectedEdit(raw, f"Element ID '{edit.id}' does not exist")
            )
            continue

        clamped, reason = clamp_edit_deltas(edit, limits.max_delta)
        if reason is not None:
            result.clamped_edits.append(ClampedEdit(edit, clamped, reason))
        result.valid_edits.append(clamped)

    logger.info(
        f"Edit validation completed: {total} in, {len(result.valid_edits)} valid, "
        f"{len(result.rejected_edits)} rejected, {len(result.clamped_edits)} clamped"
    )
    return result


def clamp_bounds(bounds: Bounds, edit: Edit) -> Bounds:
    """Apply a spatial edit and keep the resulting rectangle on the canvas.

    - move: x clamped into [0, 1 - w], y into [0, 1 - h]
    - resize: w clamped into [0, 1 - x], h into [0, 1 - y]
    - anything else: bounds returned unchanged

    Clamping an already clamped rectangle is a no-op.
    """
    x, y, w, h = bounds.x, bounds.y, bounds.w, bounds.h

    if isinstance(edit, MoveEdit):
        x = _clamp(x + edit.dx, 0.0, max(0.0, 1.0 - w))
        y = _clamp(y + edit.dy, 0.0, max(0.0, 1.0 - h))
    elif isinstance(edit, ResizeEdit):
        w = _clamp(w + edit.dw, 0.0, max(0.0, 1.0 - x))
        h = _clamp(h + edit.dh, 0.0, max(0.0, 1.0 - y))
    else:
        return bounds

    return Bounds(x=x, y=y, w=w, h=h)


__all__ = [
    "DEFAULT_MAX_EDITS",
    "DEFAULT_MAX_DELTA",
    "MoveEdit",
    "ResizeEdit",
    "RecolorEdit",
    "ReorderEdit",
    "UpdateFontSizeEdit",
    "Edit",
    "parse_edit",
    "edit_to_dict",
    "EditLimits",
    "RejectedEdit",
    "ClampedEdit",
    "EditValidationResult",
    "clamp_edit_deltas",
    "validate_and_clamp_edits",
    "clamp_bounds",
]
