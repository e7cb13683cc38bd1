"""Input and output models of the pipeline steps.

Every model uses camelCase on the wire (see `DSLModel`), so LLM replies and
API payloads validate directly.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, Any

from pydantic import Field, ValidationInfo, field_validator, model_validator

from src.dsl import DesignScheme, DSLModel, Element, ImageElement, LabelDSL
from src.edits import EditOperation
from src.storage import ImageAsset

MAX_REFINE_OPERATIONS = 10


class LabelStyle(str, Enum):
    CLASSIC = "classic"
    MODERN = "modern"
    ELEGANT = "elegant"
    FUNKY = "funky"


class AspectRatio(str, Enum):
    SQUARE = "1:1"
    LANDSCAPE_3_2 = "3:2"
    LANDSCAPE_4_3 = "4:3"
    WIDE = "16:9"
    PORTRAIT_2_3 = "2:3"
    PORTRAIT_3_4 = "3:4"


class ImagePurpose(str, Enum):
    BACKGROUND = "background"
    FOREGROUND = "foreground"
    DECORATION = "decoration"


class PreviewFormat(str, Enum):
    PNG = "PNG"
    JPEG = "JPEG"
    WEBP = "WEBP"


NonEmptyStr = Annotated[str, Field(min_length=1)]


class WineSubmission(DSLModel):
    """The wine a label is designed for."""

    producer_name: NonEmptyStr
    wine_name: NonEmptyStr
    vintage: str = Field(..., pattern=r"^\d{4}$", description="Four-digit year")
    variety: NonEmptyStr
    region: NonEmptyStr
    appellation: NonEmptyStr


# =============================================================================
# Step IO
# =============================================================================


class DesignSchemeInput(DSLModel):
    submission: WineSubmission
    style: LabelStyle
    historical_examples: list[Any] | None = None


class DesignSchemeOutput(DesignScheme):
    """Design scheme as produced by the LLM; assets come later."""

    @field_validator("assets")
    @classmethod
    def _assets_empty(cls, value: list) -> list:
        if value:
            raise ValueError("assets must be empty in the design scheme")
        return value


class ImagePromptsInput(DSLModel):
    design_scheme: DesignScheme
    style: LabelStyle
    submission: WineSubmission


class ImagePromptSpec(DSLModel):
    """Instructions for one generated image; ``id`` becomes the asset id."""

    id: str = Field(..., pattern=r"^[A-Za-z0-9][A-Za-z0-9_-]*$")
    purpose: ImagePurpose
    prompt: NonEmptyStr
    negative_prompt: str | None = None
    guidance: Annotated[float, Field(ge=1, le=20)] | None = None
    aspect: AspectRatio


class ImagePromptsOutput(DSLModel):
    expected_prompts: Annotated[int, Field(ge=0)]
    prompts: list[ImagePromptSpec]

    @model_validator(mode="after")
    def _check_count(self) -> "ImagePromptsOutput":
        if len(self.prompts) != self.expected_prompts:
            raise ValueError(
                f"Number of prompts ({len(self.prompts)}) must match "
                f"expectedPrompts ({self.expected_prompts})"
            )
        ids = [spec.id for spec in self.prompts]
        if len(set(ids)) != len(ids):
            raise ValueError("Prompt ids must be unique")
        return self


class DetailedLayoutInput(DSLModel):
    design_scheme: DesignScheme
    submission: WineSubmission
    style: LabelStyle

    @field_validator("design_scheme")
    @classmethod
    def _needs_assets(cls, value: DesignScheme) -> DesignScheme:
        if not value.assets:
            raise ValueError("design scheme must carry at least one generated asset")
        return value


class DetailedLayoutOutput(DSLModel):
    """Positioned elements for a design scheme.

    With validation context ``{"asset_ids": [...]}`` every asset must be
    used by an image element and image elements may only use those assets.
    """

    elements: list[Element] = Field(..., min_length=1)

    @model_validator(mode="after")
    def _check_assets(self, info: ValidationInfo) -> "DetailedLayoutOutput":
        ids = [element.id for element in self.elements]
        if len(set(ids)) != len(ids):
            raise ValueError("Element ids must be unique")

        asset_ids = (info.context or {}).get("asset_ids")
        if asset_ids is None:
            return self

        referenced = {e.asset_id for e in self.elements if isinstance(e, ImageElement)}
        unknown = sorted(referenced - set(asset_ids))
        if unknown:
            raise ValueError(f"Image elements reference unknown assets: {', '.join(unknown)}")
        unreferenced = [a for a in asset_ids if a not in referenced]
        if unreferenced:
            raise ValueError(f"Assets not referenced by any element: {', '.join(unreferenced)}")
        return self


class RenderedPreview(DSLModel):
    preview_url: NonEmptyStr
    width: Annotated[int, Field(gt=0)] | None = None
    height: Annotated[int, Field(gt=0)] | None = None
    format: PreviewFormat = PreviewFormat.PNG


class RefineInput(DSLModel):
    submission: WineSubmission
    current_dsl: LabelDSL = Field(..., alias="currentDSL")
    preview_url: NonEmptyStr
    refinement_feedback: str | None = None


class RefineOutput(DSLModel):
    operations: list[EditOperation] = Field(
        default_factory=list, max_length=MAX_REFINE_OPERATIONS
    )
    reasoning: str | None = None
    confidence: Annotated[float, Field(ge=0, le=1)] | None = None


# =============================================================================
# Adapter Results
# =============================================================================


@dataclass
class GeneratedImage:
    """Raw output of an image model."""

    data: bytes
    width: int
    height: int
    format: str = "png"
    model: str | None = None
    seed: str | None = None


@dataclass
class RenderedImage:
    """Raw output of a renderer."""

    data: bytes
    width: int
    height: int
    format: str = "png"


@dataclass
class ImageError:
    """A failed image in a batch."""

    prompt_id: str
    error: dict[str, Any]


@dataclass
class ImageBatchResult:
    """Outcome of generating a batch of images; partial success is normal."""

    assets: list[ImageAsset] = field(default_factory=list)
    errors: list[ImageError] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.errors


__all__ = [
    "MAX_REFINE_OPERATIONS",
    "LabelStyle",
    "AspectRatio",
    "ImagePurpose",
    "PreviewFormat",
    "WineSubmission",
    "DesignSchemeInput",
    "DesignSchemeOutput",
    "ImagePromptsInput",
    "ImagePromptSpec",
    "ImagePromptsOutput",
    "DetailedLayoutInput",
    "DetailedLayoutOutput",
    "RenderedPreview",
    "RefineInput",
    "RefineOutput",
    "GeneratedImage",
    "RenderedImage",
    "ImageError",
    "ImageBatchResult",
]
