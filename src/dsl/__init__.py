"""Label DSL data model and validation.

Example:
    >>> from src.dsl import parse_label_dsl, serialize_label_dsl
    >>> dsl = parse_label_dsl(raw_json)
    >>> dsl.canvas.dpi
    144
    >>> parse_label_dsl(serialize_label_dsl(dsl)) == dsl
    True
"""

from .color import (
    closest_palette_role,
    color_distance,
    hex_to_rgb,
    normalize_hex_color,
)
from .lib import (
    BOUNDS_EPSILON,
    DEFAULT_DPI,
    Z_MAX,
    Z_MIN,
    Asset,
    Bounds,
    Canvas,
    Contrast,
    DesignScheme,
    DSLModel,
    Element,
    Font,
    FontRole,
    FontSources,
    FontStyle,
    Hierarchy,
    ImageElement,
    ImageFit,
    LabelDSL,
    Palette,
    PaletteRole,
    ProducerEmphasis,
    RegionDisplay,
    ShapeElement,
    ShapeKind,
    Temperature,
    TextAlign,
    TextElement,
    TextTransform,
    Typography,
    VintageProminence,
    design_scheme_to_label_dsl,
)
from .validation import (
    DSLIssue,
    DSLValidationError,
    dsl_to_dict,
    is_valid,
    load_label_dsl,
    parse_label_dsl,
    serialize_label_dsl,
    validate_label_dsl,
)

__all__ = [
    # Constants
    "BOUNDS_EPSILON",
    "DEFAULT_DPI",
    "Z_MIN",
    "Z_MAX",
    # Enums
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
    # Models
    "DSLModel",
    "Canvas",
    "Palette",
    "Font",
    "Hierarchy",
    "FontSources",
    "Typography",
    "Asset",
    "Bounds",
    "TextElement",
    "ImageElement",
    "ShapeElement",
    "Element",
    "DesignScheme",
    "LabelDSL",
    "design_scheme_to_label_dsl",
    # Validation
    "DSLIssue",
    "DSLValidationError",
    "validate_label_dsl",
    "is_valid",
    "parse_label_dsl",
    "serialize_label_dsl",
    "dsl_to_dict",
    "load_label_dsl",
    # Colour
    "normalize_hex_color",
    "hex_to_rgb",
    "color_distance",
    "closest_palette_role",
]
