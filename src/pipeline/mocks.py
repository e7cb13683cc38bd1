"""Offline adapters for development and tests.

`mock_llm_responder` answers every LLM step prompt with valid JSON, so a
full pipeline run works without API keys. Images are deterministic Pillow
gradients and the vision refiner returns fixed proposals.
"""

import asyncio
import hashlib
import io
import json
import logging
import re

from PIL import Image, ImageDraw

from src.edits import EditOperation

from .adapters import orientation_for
from .models import GeneratedImage, ImagePromptSpec, RefineInput, RefineOutput

logger = logging.getLogger(__name__)

MOCK_DESIGN_SCHEME = {
    "version": "1",
    "canvas": {"width": 750, "height": 1000, "dpi": 144, "background": "#F5F5DC"},
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
    "assets": [],
}

MOCK_IMAGE_PROMPTS = {
    "expectedPrompts": 2,
    "prompts": [
        {
            "id": "background-mock",
            "purpose": "background",
            "prompt": "Soft watercolor vineyard landscape at golden hour",
            "negativePrompt": "text, logos, people",
            "guidance": 7.5,
            "aspect": "3:2",
        },
        {
            "id": "decoration-mock",
            "purpose": "decoration",
            "prompt": "Delicate grapevine ornament in gold line art",
            "negativePrompt": "text, photographs",
            "aspect": "1:1",
        },
    ],
}

MOCK_REFINE_REASONING = "Label appears well-balanced; no changes needed."

_DETAIL_RE = re.compile(r"^- (Producer|Wine Name|Vintage|Variety|Region|Appellation): (.*)$", re.MULTILINE)
_ASSET_IDS_RE = re.compile(r"assetId values are: (.*)$", re.MULTILINE)

_TEXT_LAYOUT = [
    # (id, detail, font, color, y, h, size)
    ("producer_text", "Producer", "primary", "primary", 0.08, 0.08, 40),
    ("wine_name_text", "Wine Name", "primary", "secondary", 0.18, 0.07, 32),
    ("vintage_text", "Vintage", "secondary", "accent", 0.70, 0.06, 28),
    ("variety_text", "Variety", "secondary", "primary", 0.78, 0.05, 20),
    ("region_text", "Region", "secondary", "primary", 0.84, 0.05, 18),
    ("appellation_text", "Appellation", "secondary", "accent", 0.90, 0.04, 14),
]


def _mock_layout(prompt: str) -> dict:
    details = dict(_DETAIL_RE.findall(prompt))
    match = _ASSET_IDS_RE.search(prompt)
    asset_ids = [a.strip() for a in match.group(1).split(",") if a.strip()] if match else []

    elements: list[dict] = []
    for index, asset_id in enumerate(asset_ids):
        if index == 0:
            bounds, z, fit, opacity = {"x": 0, "y": 0, "w": 1, "h": 1}, 0, "cover", 0.6
        else:
            x = 0.35 + 0.1 * ((index - 1) % 3)
            bounds, z, fit, opacity = {"x": x, "y": 0.3, "w": 0.3, "h": 0.3}, 50 + index, "contain", 1.0
        elements.append(
            {
                "id": f"image_{asset_id}",
                "type": "image",
                "assetId": asset_id,
                "bounds": bounds,
                "z": z,
                "fit": fit,
                "opacity": opacity,
            }
        )

    for element_id, detail, font, color, y, h, size in _TEXT_LAYOUT:
        elements.append(
            {
                "id": element_id,
                "type": "text",
                "text": details.get(detail, detail),
                "font": font,
                "color": color,
                "align": "center",
                "fontSize": size,
                "bounds": {"x": 0.1, "y": y, "w": 0.8, "h": h},
                "z": 100,
            }
        )

    elements.append(
        {
            "id": "divider",
            "type": "shape",
            "shape": "line",
            "color": "secondary",
            "strokeWidth": 2,
            "bounds": {"x": 0.25, "y": 0.66, "w": 0.5, "h": 0.01},
            "z": 90,
        }
    )
    return {"elements": elements}


def mock_llm_responder(prompt: str) -> str:
    """Reply to a pipeline step prompt with valid JSON.

    The step is recognized from the prompt's opening role line, which repair
    prompts repeat.
    """
    if "creating a design scheme" in prompt:
        return json.dumps(MOCK_DESIGN_SCHEME)
    if "image generation prompt engineer" in prompt:
        return json.dumps(MOCK_IMAGE_PROMPTS)
    if "layout designer" in prompt:
        return json.dumps(_mock_layout(prompt))
    if "design critic" in prompt:
        return json.dumps({"operations": [], "reasoning": MOCK_REFINE_REASONING, "confidence": 0.85})
    logger.warning("Mock LLM received an unrecognized prompt")
    return "{}"


# =============================================================================
# Images
# =============================================================================


_MOCK_SIZES = {"square": (256, 256), "landscape": (384, 256), "portrait": (256, 384)}


class MockImageAdapter:
    """Deterministic gradient images derived from the prompt.

    The same spec always yields the same bytes, which exercises storage
    deduplication. ``delay`` simulates latency.
    """

    def __init__(self, delay: float = 0.0, fail_ids: set[str] | None = None):
        self.delay = delay
        self.fail_ids = set(fail_ids or ())
        self.calls: list[str] = []

    async def generate(self, spec: ImagePromptSpec) -> GeneratedImage:
        self.calls.append(spec.id)
        if self.delay:
            await asyncio.sleep(self.delay)
        if spec.id in self.fail_ids:
            raise RuntimeError(f"Mock image generation failed for {spec.id}")

        width, height = _MOCK_SIZES[orientation_for(spec.aspect)]
        data = await asyncio.to_thread(self._draw, spec, width, height)
        return GeneratedImage(data=data, width=width, height=height, format="png", model="mock")

    @staticmethod
    def _draw(spec: ImagePromptSpec, width: int, height: int) -> bytes:
        digest = hashlib.sha256(f"{spec.id}:{spec.purpose}:{spec.prompt}".encode()).digest()
        start, end = digest[:3], digest[3:6]

        image = Image.new("RGB", (width, height))
        draw = ImageDraw.Draw(image)
        for y in range(height):
            t = y / max(1, height - 1)
            color = tuple(round(a + (b - a) * t) for a, b in zip(start, end))
            draw.line([(0, y), (width, y)], fill=color)

        buffer = io.BytesIO()
        image.save(buffer, format="PNG")
        return buffer.getvalue()


# =============================================================================
# Vision
# =============================================================================


class MockVisionRefiner:
    """Returns the same proposals for every label.

    Operations whose ``element_id`` is not in the current DSL are dropped,
    so fixed proposals can be reused across layouts.
    """

    def __init__(
        self,
        operations: list[EditOperation] | None = None,
        reasoning: str = MOCK_REFINE_REASONING,
        confidence: float = 0.85,
    ):
        self.operations = list(operations or [])
        self.reasoning = reasoning
        self.confidence = confidence
        self.inputs: list[RefineInput] = []

    async def propose_edits(self, refine_input: RefineInput) -> RefineOutput:
        self.inputs.append(refine_input)
        existing = set(refine_input.current_dsl.element_ids())
        operations = [
            op
            for op in self.operations
            if getattr(op, "element_id", None) is None or op.element_id in existing
        ]
        logger.info(f"Mock vision refiner proposing {len(operations)} operations")
        return RefineOutput(
            operations=operations, reasoning=self.reasoning, confidence=self.confidence
        )


__all__ = [
    "MOCK_DESIGN_SCHEME",
    "MOCK_IMAGE_PROMPTS",
    "MOCK_REFINE_REASONING",
    "mock_llm_responder",
    "MockImageAdapter",
    "MockVisionRefiner",
]
