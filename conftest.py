"""Root pytest configuration and fixtures.

This module provides:
- Environment setup (loads .env)
- Auto-skip for tests that need real provider credentials
- Shared label DSL, submission and image fixtures
"""

from __future__ import annotations

import io
from typing import TYPE_CHECKING, Any, Callable

import pytest
from dotenv import load_dotenv

from src.config import get_available_llm_providers

if TYPE_CHECKING:
    from src.dsl import LabelDSL
    from src.pipeline import WineSubmission

# Load environment variables from .env file
load_dotenv()


# =============================================================================
# Pytest Hooks
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]):
    """Auto-skip tests marked ``llm`` when no provider API key is configured."""
    providers = get_available_llm_providers()
    skip_llm = pytest.mark.skip(reason="No LLM provider API key configured")

    for item in items:
        if "llm" in item.keywords and not providers:
            item.add_marker(skip_llm)


# =============================================================================
# Label DSL Fixtures
# =============================================================================


@pytest.fixture
def sample_dsl_data() -> dict[str, Any]:
    """Raw camelCase DSL document with one element of each kind.

    Returns:
        A dict as an LLM or API client would send it.
    """
    return {
        "version": "1",
        "canvas": {"width": 750, "height": 1000, "background": "#F5F5DC"},
        "palette": {
            "primary": "#722F37",
            "secondary": "#D4AF37",
            "accent": "#2F4F2F",
            "background": "#F5F5DC",
            "temperature": "warm",
            "contrast": "medium",
        },
        "typography": {
            "primary": {"family": "serif", "weight": 600, "style": "normal", "letterSpacing": 0},
            "secondary": {"family": "sans-serif", "weight": 400, "style": "normal", "letterSpacing": 0.5},
            "hierarchy": {
                "producerEmphasis": "dominant",
                "vintageProminence": "featured",
                "regionDisplay": "integrated",
            },
        },
        "assets": [
            {
                "id": "background-texture",
                "type": "image",
                "url": "https://cdn.example.com/content/abc.png",
                "width": 512,
                "height": 512,
            }
        ],
        "elements": [
            {
                "id": "background",
                "type": "image",
                "assetId": "background-texture",
                "bounds": {"x": 0, "y": 0, "w": 1, "h": 1},
                "z": 0,
                "fit": "cover",
            },
            {
                "id": "producer_text",
                "type": "text",
                "text": "Chateau Example",
                "font": "primary",
                "color": "primary",
                "align": "center",
                "fontSize": 48,
                "bounds": {"x": 0.1, "y": 0.1, "w": 0.8, "h": 0.1},
                "z": 10,
            },
            {
                "id": "vintage_text",
                "type": "text",
                "text": "2021",
                "font": "secondary",
                "color": "accent",
                "fontSize": 28,
                "bounds": {"x": 0.35, "y": 0.75, "w": 0.3, "h": 0.06},
                "z": 10,
            },
            {
                "id": "divider",
                "type": "shape",
                "shape": "line",
                "color": "secondary",
                "strokeWidth": 2,
                "bounds": {"x": 0.2, "y": 0.5, "w": 0.6, "h": 0.01},
                "z": 5,
            },
        ],
    }


@pytest.fixture
def sample_dsl(sample_dsl_data: dict[str, Any]) -> LabelDSL:
    """Parsed version of ``sample_dsl_data``."""
    from src.dsl import parse_label_dsl

    return parse_label_dsl(sample_dsl_data)


@pytest.fixture
def sample_submission() -> WineSubmission:
    """A typical wine submission."""
    from src.pipeline import WineSubmission

    return WineSubmission(
        producer_name="Chateau Example",
        wine_name="Reserve Rouge",
        vintage="2021",
        variety="Cabernet Sauvignon",
        region="Napa Valley",
        appellation="Oakville AVA",
    )


# =============================================================================
# Image Fixtures
# =============================================================================


@pytest.fixture
def make_png() -> Callable[..., bytes]:
    """Factory producing small PNG images with Pillow.

    Returns:
        Callable ``(width=8, height=6, color=(114, 47, 55)) -> bytes``.
    """
    from PIL import Image

    def _make(width: int = 8, height: int = 6, color=(114, 47, 55), fmt: str = "PNG") -> bytes:
        buffer = io.BytesIO()
        Image.new("RGB", (width, height), color).save(buffer, format=fmt)
        return buffer.getvalue()

    return _make
