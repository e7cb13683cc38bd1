"""Label DSL: the structured description of a wine label.

The DSL is the artifact every pipeline step produces or consumes. It
describes the canvas, the four-role colour palette, typography, the image
assets and the positioned elements (text, image, shape) of a label.

All geometry is normalized: element bounds live in [0, 1] relative to the
canvas, and `z` orders elements from 0 (back) to 1000 (front).

Field names are snake_case in Python and camelCase on the wire.
"""

from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

BOUNDS_EPSILON = 1e-9
Z_MIN = 0
Z_MAX = 1000
DEFAULT_DPI = 144

HexColor = Annotated[
    str,
    Field(pattern=r"^#[0-9A-Fa-f]{6}$", description="Hex colour '#RRGGBB'"),
]
UnitFloat = Annotated[float, Field(ge=0.0, le=1.0)]


# =============================================================================
# Enumerations
# =============================================================================


class PaletteRole(str, Enum):
    """Named colour slots of the palette; elements reference these, never hex."""

    PRIMARY = "primary"
    SECONDARY = "secondary"
    ACCENT = "accent"
    BACKGROUND = "background"


class Temperature(str, Enum):
    WARM = "warm"
    COOL = "cool"
    NEUTRAL = "neutral"


class Contrast(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class FontStyle(str, Enum):
    NORMAL = "normal"
    ITALIC = "italic"


class FontRole(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


class ProducerEmphasis(str, Enum):
    DOMINANT = "dominant"
    BALANCED = "balanced"
    SUBTLE = "subtle"


class VintageProminence(str, Enum):
    FEATURED = "featured"
    STANDARD = "standard"
    MINIMAL = "minimal"


class RegionDisplay(str, Enum):
    PROMINENT = "prominent"
    INTEGRATED = "integrated"
    SUBTLE = "subtle"


class TextAlign(str, Enum):
    LEFT = "left"
    CENTER = "center"
    RIGHT = "right"


class TextTransform(str, Enum):
    UPPERCASE = "uppercase"
    LOWERCASE = "lowercase"
    NONE = "none"


class ImageFit(str, Enum):
    CONTAIN = "contain"
    COVER = "cover"
    FILL = "fill"


class ShapeKind(str, Enum):
    RECT = "rect"
    LINE = "line"


# =============================================================================
# Models
# =============================================================================


class DSLModel(BaseModel):
    """Base model: camelCase aliases on the wire, enum values stored as str."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
        extra="ignore",
    )


class Canvas(DSLModel):
    width: Annotated[int, Field(gt=0)] = Field(..., description="Width in pixels")
    height: Annotated[int, Field(gt=0)] = Field(..., description="Height in pixels")
    dpi: Annotated[int, Field(gt=0)] = Field(
        default=DEFAULT_DPI, description="Print resolution"
    )
    background: HexColor


class Palette(DSLModel):
    primary: HexColor
    secondary: HexColor
    accent: HexColor
    background: HexColor
    temperature: Temperature
    contrast: Contrast

    def color_for(self, role: PaletteRole | str) -> str:
        """Resolve a palette role to its hex value."""
        return getattr(self, PaletteRole(role).value)


class Font(DSLModel):
    family: str = Field(..., min_length=1)
    weight: Annotated[int, Field(ge=100, le=900)] = 400
    style: FontStyle = FontStyle.NORMAL
    letter_spacing: float = 0.0


class Hierarchy(DSLModel):
    producer_emphasis: ProducerEmphasis
    vintage_prominence: VintageProminence
    region_display: RegionDisplay


class FontSources(DSLModel):
    primary_url: str | None = None
    secondary_url: str | None = None


class Typography(DSLModel):
    primary: Font
    secondary: Font
    hierarchy: Hierarchy
    fonts: FontSources | None = None


class Asset(DSLModel):
    id: str = Field(..., min_length=1)
    type: Literal["image"] = "image"
    url: str = Field(..., min_length=1)
    width: Annotated[int, Field(gt=0)]
    height: Annotated[int, Field(gt=0)]


class Bounds(DSLModel):
    """Normalized rectangle; must stay inside the unit square."""

    x: UnitFloat
    y: UnitFloat
    w: UnitFloat
    h: UnitFloat

    @model_validator(mode="after")
    def _check_extent(self) -> "Bounds":
        if self.x + self.w > 1.0 + BOUNDS_EPSILON:
            raise ValueError(f"x + w must be <= 1 (got {self.x + self.w:.4f})")
        if self.y + self.h > 1.0 + BOUNDS_EPSILON:
            raise ValueError(f"y + h must be <= 1 (got {self.y + self.h:.4f})")
        return self


class ElementBase(DSLModel):
    id: str = Field(..., min_length=1, description="Unique element identifier")
    bounds: Bounds
    z: Annotated[int, Field(ge=Z_MIN, le=Z_MAX)] = Field(
        ..., description="Stacking order, 0 (back) to 1000 (front)"
    )


class TextElement(ElementBase):
    type: Literal["text"] = "text"
    text: str
    font: FontRole
    color: PaletteRole
    align: TextAlign = TextAlign.LEFT
    font_size: Annotated[int, Field(gt=0)]
    line_height: Annotated[float, Field(gt=0)] = 1.2
    max_lines: Annotated[int, Field(ge=1, le=10)] = 1
    text_transform: TextTransform = TextTransform.NONE


class ImageElement(ElementBase):
    type: Literal["image"] = "image"
    asset_id: str = Field(..., min_length=1)
    fit: ImageFit = ImageFit.CONTAIN
    opacity: UnitFloat = 1.0
    rotation: Annotated[float, Field(ge=-180, le=180)] = 0.0


class ShapeElement(ElementBase):
    type: Literal["shape"] = "shape"
    shape: ShapeKind
    color: PaletteRole
    stroke_width: Annotated[float, Field(ge=0, le=20)] = 0.0
    rotation: Annotated[float, Field(ge=-180, le=180)] = 0.0


Element = Annotated[
    Union[TextElement, ImageElement, ShapeElement],
    Field(discriminator="type"),
]


class DesignScheme(DSLModel):
    """A label without elements: canvas, palette, typography and assets."""

    version: Literal["1"] = "1"
    canvas: Canvas
    palette: Palette
    typography: Typography
    assets: list[Asset] = Field(default_factory=list)


class LabelDSL(DesignScheme):
    """A complete label description.

    Structural rules (types, ranges, bounds extent, unique ids) are enforced
    here; image asset references are checked by `validate_label_dsl`.
    """

    elements: list[Element] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_unique_ids(self) -> "LabelDSL":
        seen: set[str] = set()
        for element in self.elements:
            if element.id in seen:
                raise ValueError(f"Duplicate element id '{element.id}'")
            seen.add(element.id)
        return self

    def get_element(self, element_id: str) -> TextElement | ImageElement | ShapeElement | None:
        """Find an element by id."""
        for element in self.elements:
            if element.id == element_id:
                return element
        return None

    def element_ids(self) -> list[str]:
        """All element ids in document order."""
        return [element.id for element in self.elements]


def design_scheme_to_label_dsl(
    scheme: DesignScheme, assets: list[Asset] | None = None
) -> LabelDSL:
    """Promote a design scheme to a base DSL without elements.

    Args:
        scheme: Output of the design-scheme step.
        assets: Generated assets replacing the scheme's (usually empty) list.
    """
    data = scheme.model_dump()
    if assets is not None:
        data["assets"] = [asset.model_dump() for asset in assets]
    data["elements"] = []
    return LabelDSL.model_validate(data)


__all__ = [
    "BOUNDS_EPSILON",
    "Z_MIN",
    "Z_MAX",
    "DEFAULT_DPI",
    "HexColor",
    "PaletteRole",
    "Temperature",
    "Contrast",
    "FontStyle",
    "FontRole",
    "ProducerEmphasis",
    "VintageProminence",
    "RegionDisplay",
    "TextAlign",
    "TextTransform",
    "ImageFit",
    "ShapeKind",
    "DSLModel",
    "Canvas",
    "Palette",
    "Font",
    "Hierarchy",
    "FontSources",
    "Typography",
    "Asset",
    "Bounds",
    "ElementBase",
    "TextElement",
    "ImageElement",
    "ShapeElement",
    "Element",
    "DesignScheme",
    "LabelDSL",
    "design_scheme_to_label_dsl",
]
