"""Conversion of refiner proposals into concrete edits.

Refiners speak about elements loosely ("year-text", "winery-name") and about
colours in hex. This module resolves element names against the DSL, maps
colours onto palette roles and font-size hints onto pixel sizes, and emits
`Edit` values ready for `validate_and_clamp_edits`.
"""

import logging
import math
import re
from typing import Any, Iterable

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from src.dsl import LabelDSL, PaletteRole, TextElement, closest_palette_role

from .lib import Edit, MoveEdit, RecolorEdit, ResizeEdit, UpdateFontSizeEdit
from .operations import (
    ElementProperty,
    UpdateElementOperation,
    UpdatePaletteOperation,
    parse_operation,
)

logger = logging.getLogger(__name__)

FONT_SIZE_MIN = 1
FONT_SIZE_MAX = 200

_VINTAGE_IDS = ["vintage_text", "vintage"]
_PRODUCER_IDS = ["producer_text", "producer"]
_WINE_NAME_IDS = ["wine_name_text", "wine-name"]
_REGION_IDS = ["region_text", "region"]
_VARIETY_IDS = ["variety_text", "variety"]

SEMANTIC_ELEMENT_MAPPINGS: dict[str, list[str]] = {
    "year-text": _VINTAGE_IDS,
    "vintage-text": _VINTAGE_IDS,
    "year": _VINTAGE_IDS,
    "winery-name": _PRODUCER_IDS,
    "producer-name": _PRODUCER_IDS,
    "winery": _PRODUCER_IDS,
    "producer": _PRODUCER_IDS,
    "producer-text": _PRODUCER_IDS,
    "winery-text": _PRODUCER_IDS,
    "wine-name": _WINE_NAME_IDS,
    "wine-title": _WINE_NAME_IDS,
    "wine-label": _WINE_NAME_IDS,
    "wine-name-text": _WINE_NAME_IDS,
    "region-text": _REGION_IDS,
    "appellation-text": _REGION_IDS,
    "appellation": _REGION_IDS,
    "location": _REGION_IDS,
    "ava-text": _REGION_IDS,
    "valley-text": _REGION_IDS,
    "variety-text": _VARIETY_IDS,
    "grape-variety": _VARIETY_IDS,
    "wine-type": _VARIETY_IDS,
}

FUZZY_PATTERNS: dict[str, re.Pattern] = {
    "vintage": re.compile(r"^(19|20)\d{2}$"),
    "producer": re.compile(
        r"ch[aâ]teau|domaine|estate|winery|vineyard|cellars|wines|family|brothers|sons|daughters",
        re.IGNORECASE,
    ),
    "region": re.compile(
        r"valley|county|appellation|region|terroir|vineyard|ava|hills|mountains|coast"
        r"|creek|ranch|napa|sonoma|paso|santa|willamette",
        re.IGNORECASE,
    ),
    "variety": re.compile(
        r"cabernet|chardonnay|merlot|pinot|sauvignon|shiraz|riesling|malbec|syrah"
        r"|grenache|tempranillo|sangiovese|zinfandel|petit|verdot",
        re.IGNORECASE,
    ),
}

FONT_SIZE_KEYWORDS: dict[str, float] = {
    "xx-small": 0.5,
    "x-small": 0.625,
    "small": 0.8,
    "smaller": 0.8,
    "medium": 1.0,
    "normal": 1.0,
    "large": 1.2,
    "larger": 1.2,
    "big": 1.2,
    "bigger": 1.2,
    "x-large": 1.5,
    "xx-large": 2.0,
}

_PIXEL_RE = re.compile(r"^(\d+(?:\.\d+)?)(?:px)?$")
_PERCENT_RE = re.compile(r"^(\d+(?:\.\d+)?)%$")


# =============================================================================
# Font Sizes
# =============================================================================


def _finite(value: Any) -> float:
    """Coerce a model-supplied number, rejecting NaN and infinities.

    Raises:
        TypeError: If value is not numeric (None, dict, ...).
        ValueError: If value is a non-numeric string or not finite.
    """
    if isinstance(value, bool):
        raise TypeError(f"Expected a number, got {value!r}")
    number = float(value)
    if not math.isfinite(number):
        raise ValueError(f"Expected a finite number, got {value!r}")
    return number


def _round_size(value: float) -> int:
    size = math.floor(_finite(value) + 0.5)
    return max(FONT_SIZE_MIN, min(FONT_SIZE_MAX, size))


def parse_font_size(hint: Any, current_size: int) -> int:
    """Resolve a font-size hint to pixels in [1, 200].

    Accepts numbers, ``"18"``/``"18px"``, percentages of the current size
    (``"120%"``) and CSS keywords (``"larger"``, ``"x-small"``, ...).
    Anything unrecognised or non-finite keeps the current size.
    """
    try:
        return _parse_font_size(hint, current_size)
    except (TypeError, ValueError, OverflowError):
        logger.warning(f"Invalid font size hint {hint!r}, keeping {current_size}")
        return current_size


def _parse_font_size(hint: Any, current_size: int) -> int:
    if hint is None or isinstance(hint, bool):
        return current_size
    if isinstance(hint, (int, float)):
        return _round_size(hint)

    text = str(hint).strip().lower()
    if not text:
        return current_size

    match = _PIXEL_RE.match(text)
    if match:
        return _round_size(float(match.group(1)))

    match = _PERCENT_RE.match(text)
    if match:
        return _round_size(current_size * float(match.group(1)) / 100)

    multiplier = FONT_SIZE_KEYWORDS.get(text)
    if multiplier is not None:
        size = _round_size(current_size * multiplier)
        logger.debug(f"Font size hint '{text}' -> {size} (from {current_size})")
        return size

    logger.warning(f"Unrecognised font size hint '{hint}', keeping {current_size}")
    return current_size


# =============================================================================
# Element Resolution
# =============================================================================


def _fuzzy_match(semantic_id: str, texts: list[TextElement]) -> str | None:
    lowered = semantic_id.lower()

    for concept, pattern in FUZZY_PATTERNS.items():
        named = concept in lowered or (concept == "vintage" and "year" in lowered)
        if not (named or pattern.search(semantic_id)):
            continue

        if concept == "vintage":
            for el in texts:
                if pattern.match(el.text.strip()):
                    return el.id
            for el in texts:
                if "vintage" in el.id or "year" in el.id:
                    return el.id

        if concept == "region":
            for el in texts:
                if any(key in el.id for key in ("region", "appellation", "location", "ava")):
                    return el.id
            for el in texts:
                if pattern.search(el.text):
                    return el.id

        for el in texts:
            if concept in el.id or (concept == "producer" and "winery" in el.id):
                return el.id

        if concept in ("producer", "variety"):
            for el in texts:
                if pattern.search(el.text):
                    return el.id

    return None


def resolve_element_id(semantic_id: str, dsl: LabelDSL) -> str | None:
    """Map a refiner's element name onto an id present in the DSL.

    Tries a direct match, then the semantic alias table, then a fuzzy match
    on text elements by id fragments and content (vintage years, producer,
    region and grape variety keywords).

    Returns:
        The actual element id, or None when nothing matches.
    """
    ids = set(dsl.element_ids())
    if semantic_id in ids:
        return semantic_id

    for candidate in SEMANTIC_ELEMENT_MAPPINGS.get(semantic_id, []):
        if candidate in ids:
            return candidate

    texts = [el for el in dsl.elements if isinstance(el, TextElement)]
    resolved = _fuzzy_match(semantic_id, texts)
    if resolved is not None:
        logger.debug(f"Fuzzy matched element '{semantic_id}' -> '{resolved}'")
    return resolved


# =============================================================================
# Conversion
# =============================================================================


def _convert_element(op: UpdateElementOperation, dsl: LabelDSL) -> list[Edit]:
    element_id = resolve_element_id(op.element_id, dsl)
    if element_id is None:
        logger.warning(
            f"Element '{op.element_id}' not found; available: {', '.join(dsl.element_ids())}"
        )
        return []

    element = dsl.get_element(element_id)
    prop = op.property
    edits: list[Edit] = []

    if prop == ElementProperty.BOUNDS and isinstance(op.value, dict):
        current = element.bounds
        target = op.value
        try:
            x, y, w, h = (
                _finite(target.get(key, getattr(current, key))) for key in ("x", "y", "w", "h")
            )
        except (TypeError, ValueError, OverflowError):
            logger.warning(f"Skipping bounds update for '{element_id}' with invalid value {target!r}")
            return []

        if "x" in target or "y" in target:
            dx, dy = x - current.x, y - current.y
            if dx != 0 or dy != 0:
                edits.append(MoveEdit(id=element_id, dx=dx, dy=dy))
        if "w" in target or "h" in target:
            dw, dh = w - current.w, h - current.h
            if dw != 0 or dh != 0:
                edits.append(ResizeEdit(id=element_id, dw=dw, dh=dh))

    elif prop == ElementProperty.COLOR and isinstance(op.value, str):
        value = op.value.strip()
        roles = {role.value for role in PaletteRole}
        role = value.lower() if value.lower() in roles else closest_palette_role(value, dsl.palette)
        edits.append(RecolorEdit(id=element_id, color=role))

    elif prop == ElementProperty.FONT_SIZE:
        if not isinstance(element, TextElement):
            logger.warning(f"Cannot update fontSize on {element.type} element '{element_id}'")
            return []
        size = parse_font_size(op.value, element.font_size)
        if size != element.font_size:
            edits.append(UpdateFontSizeEdit(id=element_id, font_size=size))

    else:
        logger.info(f"Unsupported update_element property '{prop}' for '{element_id}'")

    return edits


def _convert_palette(op: UpdatePaletteOperation, dsl: LabelDSL) -> list[Edit]:
    new_role = closest_palette_role(op.value, dsl.palette)
    if new_role == op.target:
        return []

    return [
        RecolorEdit(id=el.id, color=new_role)
        for el in dsl.elements
        if getattr(el, "color", None) == op.target
    ]


def convert_operations(operations: Iterable[Any], dsl: LabelDSL) -> list[Edit]:
    """Translate refiner operations into edits against ``dsl``.

    Operations that cannot be parsed, target unknown elements or use
    unsupported properties are skipped and logged.

    Args:
        operations: Operation models or raw dicts.
        dsl: Document the operations refer to.

    Returns:
        Edits in operation order (not yet validated or clamped).
    """
    operations = list(operations)
    edits: list[Edit] = []

    for raw in operations:
        try:
            op = raw if isinstance(raw, BaseModel) else parse_operation(raw)
        except PydanticValidationError as e:
            logger.warning(f"Skipping unparseable operation: {e.error_count()} errors")
            continue

        if isinstance(op, UpdateElementOperation):
            edits.extend(_convert_element(op, dsl))
        elif isinstance(op, UpdatePaletteOperation):
            edits.extend(_convert_palette(op, dsl))
        else:
            logger.info(f"Operation type {type(op).__name__} is not convertible to an edit")

    logger.info(f"Converted {len(operations)} operations to {len(edits)} edits")
    return edits


__all__ = [
    "FONT_SIZE_MIN",
    "FONT_SIZE_MAX",
    "SEMANTIC_ELEMENT_MAPPINGS",
    "FUZZY_PATTERNS",
    "parse_font_size",
    "resolve_element_id",
    "convert_operations",
]
