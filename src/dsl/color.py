"""Colour helpers for mapping arbitrary hex values onto palette roles.

Refiners often propose literal colours ("make the vintage #C9A227"). The DSL
only stores palette roles, so a proposed colour is mapped to the perceptually
closest role using the CIE76 colour difference in Lab space.
"""

import logging
import math
import re

from .lib import Palette, PaletteRole

logger = logging.getLogger(__name__)

_HEX_RE = re.compile(r"^[0-9A-F]{6}$")

# D65 reference white
_XN, _YN, _ZN = 95.047, 100.0, 108.883


def normalize_hex_color(value: str) -> str:
    """Normalize '#abc', 'abc', '#aabbcc' to '#AABBCC'.

    Raises:
        ValueError: If the value is not a 3 or 6 digit hex colour.
    """
    clean = value.strip().lstrip("#").upper()
    if len(clean) == 3:
        clean = "".join(c * 2 for c in clean)
    if not _HEX_RE.match(clean):
        raise ValueError(f"Invalid hex color: {value}")
    return f"#{clean}"


def hex_to_rgb(value: str) -> tuple[int, int, int]:
    """Convert a hex colour to an (r, g, b) tuple."""
    clean = normalize_hex_color(value)[1:]
    return int(clean[0:2], 16), int(clean[2:4], 16), int(clean[4:6], 16)


def _to_lab(rgb: tuple[int, int, int]) -> tuple[float, float, float]:
    def linear(c: float) -> float:
        c = c / 255
        return ((c + 0.055) / 1.055) ** 2.4 if c > 0.04045 else c / 12.92

    r, g, b = (linear(c) for c in rgb)
    x = (r * 0.4124564 + g * 0.3575761 + b * 0.1804375) * 100
    y = (r * 0.2126729 + g * 0.7151522 + b * 0.0721750) * 100
    z = (r * 0.0193339 + g * 0.1191920 + b * 0.9503041) * 100

    def f(t: float) -> float:
        return t ** (1 / 3) if t > 0.008856 else 7.787 * t + 16 / 116

    fx, fy, fz = f(x / _XN), f(y / _YN), f(z / _ZN)
    return 116 * fy - 16, 500 * (fx - fy), 200 * (fy - fz)


def color_distance(hex1: str, hex2: str) -> float:
    """Perceptual distance (CIE76 delta E) between two hex colours.

    0 means identical; values above ~3 are noticeable.
    """
    l1, a1, b1 = _to_lab(hex_to_rgb(hex1))
    l2, a2, b2 = _to_lab(hex_to_rgb(hex2))
    return math.sqrt((l2 - l1) ** 2 + (a2 - a1) ** 2 + (b2 - b1) ** 2)


def closest_palette_role(hex_color: str, palette: Palette) -> PaletteRole:
    """Find the palette role whose colour is closest to ``hex_color``.

    Invalid input falls back to PaletteRole.PRIMARY.
    """
    try:
        target = normalize_hex_color(hex_color)
    except ValueError:
        logger.warning(f"Invalid hex color {hex_color!r}, defaulting to primary")
        return PaletteRole.PRIMARY

    best_role = PaletteRole.PRIMARY
    best_distance = math.inf
    for role in PaletteRole:
        distance = color_distance(target, palette.color_for(role))
        if distance < best_distance:
            best_role, best_distance = role, distance

    logger.debug(f"Mapped {target} to palette role {best_role.value} (dE={best_distance:.2f})")
    return best_role


__all__ = [
    "normalize_hex_color",
    "hex_to_rgb",
    "color_distance",
    "closest_palette_role",
]
