"""Proposal language emitted by refiners.

Vision models and the text refine step describe changes as high-level
operations on the palette or on a single element. `convert_operations`
turns them into concrete `Edit` values.
"""

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import Field, TypeAdapter

from src.dsl import DSLModel, PaletteRole
from src.dsl.lib import HexColor


class ElementProperty(str, Enum):
    BOUNDS = "bounds"
    FONT_SIZE = "fontSize"
    COLOR = "color"
    TEXT = "text"
    OPACITY = "opacity"
    ROTATION = "rotation"


class UpdatePaletteOperation(DSLModel):
    """Change the hex value behind a palette role."""

    type: Literal["update_palette"] = "update_palette"
    target: PaletteRole
    value: HexColor


class UpdateElementOperation(DSLModel):
    """Change one property of one element.

    ``element_id`` may be a semantic name (e.g. ``year-text``) rather than
    the id used in the DSL; see `resolve_element_id`.
    """

    type: Literal["update_element"] = "update_element"
    element_id: str = Field(..., min_length=1)
    property: ElementProperty
    value: Any = None


EditOperation = Annotated[
    Union[UpdatePaletteOperation, UpdateElementOperation],
    Field(discriminator="type"),
]

_OPERATION_ADAPTER: TypeAdapter = TypeAdapter(EditOperation)


def parse_operation(raw: Any) -> EditOperation:
    """Validate one raw operation dict.

    Raises:
        pydantic.ValidationError: If it matches no operation variant.
    """
    return _OPERATION_ADAPTER.validate_python(raw)


__all__ = [
    "ElementProperty",
    "UpdatePaletteOperation",
    "UpdateElementOperation",
    "EditOperation",
    "parse_operation",
]
