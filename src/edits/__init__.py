"""Bounded edits for iterative label refinement.

Example:
    >>> from src.edits import refine_label
    >>> result = refine_label(dsl, [{"op": "move", "id": "producer_text", "dx": 0.5, "dy": 0}])
    >>> result.validation.clamped_edits[0].clamped.dx
    0.2
"""

from .apply import (
    EditApplicationError,
    EditApplicationResult,
    EditBatchResult,
    FailedEdit,
    apply_edits,
    refine_label,
)
from .convert import (
    FONT_SIZE_MAX,
    FONT_SIZE_MIN,
    convert_operations,
    parse_font_size,
    resolve_element_id,
)
from .lib import (
    DEFAULT_MAX_DELTA,
    DEFAULT_MAX_EDITS,
    ClampedEdit,
    Edit,
    EditLimits,
    EditValidationResult,
    MoveEdit,
    RecolorEdit,
    RejectedEdit,
    ReorderEdit,
    ResizeEdit,
    UpdateFontSizeEdit,
    clamp_bounds,
    clamp_edit_deltas,
    edit_to_dict,
    parse_edit,
    validate_and_clamp_edits,
)
from .operations import (
    EditOperation,
    ElementProperty,
    UpdateElementOperation,
    UpdatePaletteOperation,
    parse_operation,
)

__all__ = [
    # Edits
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
    # Validation
    "EditLimits",
    "RejectedEdit",
    "ClampedEdit",
    "EditValidationResult",
    "clamp_edit_deltas",
    "validate_and_clamp_edits",
    "clamp_bounds",
    # Application
    "EditApplicationError",
    "FailedEdit",
    "EditApplicationResult",
    "EditBatchResult",
    "apply_edits",
    "refine_label",
    # Proposals
    "ElementProperty",
    "UpdatePaletteOperation",
    "UpdateElementOperation",
    "EditOperation",
    "parse_operation",
    "FONT_SIZE_MIN",
    "FONT_SIZE_MAX",
    "parse_font_size",
    "resolve_element_id",
    "convert_operations",
]
