"""Capability interfaces for images, vision refinement and rendering.

The pipeline only talks to these protocols. Which implementation runs is
decided by `create_pipeline_config`, never by inspecting types.
"""

import base64
import logging
from typing import Any, Protocol, runtime_checkable

import httpx
from pydantic import ValidationError as PydanticValidationError

from src.config import EnvVar, get_environment
from src.dsl import LabelDSL, serialize_label_dsl
from src.llm.backend import AuthenticationError, InvalidResponseError, RateLimitError
from src.llm.structured import JSONExtractionError, extract_json, format_validation_error
from src.storage import ImageMetadataError, detect_image_metadata

from .models import GeneratedImage, ImagePromptSpec, RefineInput, RefineOutput, RenderedImage
from .prompts import REFINE_PROMPT, describe_elements
from .render import AssetFetcher

logger = logging.getLogger(__name__)


@runtime_checkable
class ImageModelAdapter(Protocol):
    """Turns one image prompt into image bytes."""

    async def generate(self, spec: ImagePromptSpec) -> GeneratedImage:
        ...


@runtime_checkable
class VisionRefiner(Protocol):
    """Looks at a rendered label and proposes edit operations."""

    async def propose_edits(self, refine_input: RefineInput) -> RefineOutput:
        ...


@runtime_checkable
class Renderer(Protocol):
    """Rasterizes a label DSL."""

    async def render(self, dsl: LabelDSL) -> RenderedImage:
        ...


def _openai_client(api_key: str | None, timeout: float) -> Any:
    from openai import AsyncOpenAI

    api_key = api_key or get_environment(EnvVar.OPENAI_API_KEY)
    if not api_key:
        raise AuthenticationError(
            "OpenAI API key required. Set OPENAI_API_KEY environment "
            "variable or pass api_key parameter."
        )
    return AsyncOpenAI(api_key=api_key, timeout=timeout, max_retries=0)


def _handle_openai_error(error: Exception) -> None:
    """Convert OpenAI SDK errors to backend exceptions.

    Timeouts and connection failures keep their wording so the retry layer
    classifies them as network errors.
    """
    error_str = str(error).lower()
    error_type = type(error).__name__.lower()

    if "ratelimit" in error_type or "rate limit" in error_str or "429" in error_str:
        raise RateLimitError(str(error)) from error
    if "authentication" in error_type or "invalid api key" in error_str:
        raise AuthenticationError(str(error)) from error


# =============================================================================
# OpenAI Images
# =============================================================================


# gpt-image-1 sizes; dall-e-3 uses 1792 for the long side
_GPT_IMAGE_SIZES = {"square": "1024x1024", "landscape": "1536x1024", "portrait": "1024x1536"}
_DALLE3_SIZES = {"square": "1024x1024", "landscape": "1792x1024", "portrait": "1024x1792"}

_PURPOSE_HINTS = {
    "background": "suitable as a full-bleed wine label background, subtle enough for text overlay",
    "foreground": "a clear focal illustration for a wine label, isolated subject",
    "decoration": "an ornamental accent for a wine label, clean edges",
}


def orientation_for(aspect: str) -> str:
    """Collapse an aspect ratio to square, landscape or portrait."""
    width, height = (int(part) for part in aspect.split(":"))
    if width == height:
        return "square"
    return "landscape" if width > height else "portrait"


def enhance_image_prompt(spec: ImagePromptSpec) -> str:
    """Add purpose hints and negative prompt to an image prompt."""
    prompt = f"{spec.prompt}. Style: {_PURPOSE_HINTS[spec.purpose]}. No text or lettering."
    if spec.negative_prompt:
        prompt += f" Avoid: {spec.negative_prompt}"
    return prompt


class OpenAIImageAdapter:
    """Image generation through the OpenAI images API.

    Environment:
        OPENAI_API_KEY: API key.
        OPENAI_IMAGE_MODEL: Model name (default gpt-image-1).
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        timeout: float = 120.0,
        client: Any = None,
    ):
        self.model = model or get_environment(EnvVar.OPENAI_IMAGE_MODEL)
        self._client = client or _openai_client(api_key, timeout)
        self._timeout = timeout

    def size_for(self, spec: ImagePromptSpec) -> str:
        sizes = _DALLE3_SIZES if self.model.startswith("dall-e") else _GPT_IMAGE_SIZES
        return sizes[orientation_for(spec.aspect)]

    async def generate(self, spec: ImagePromptSpec) -> GeneratedImage:
        size = self.size_for(spec)
        logger.info(f"Generating image {spec.id} with {self.model} ({size})")
        kwargs: dict[str, Any] = {"model": self.model, "prompt": enhance_image_prompt(spec), "size": size, "n": 1}
        if self.model.startswith("dall-e"):
            kwargs["response_format"] = "b64_json"

        try:
            response = await self._client.images.generate(**kwargs)
        except Exception as e:
            _handle_openai_error(e)
            raise

        if not response.data:
            raise InvalidResponseError(f"Image model returned no data for {spec.id}")
        item = response.data[0]
        if getattr(item, "b64_json", None):
            data = base64.b64decode(item.b64_json)
        elif getattr(item, "url", None):
            async with httpx.AsyncClient(timeout=self._timeout) as http:
                download = await http.get(item.url)
                download.raise_for_status()
                data = download.content
        else:
            raise InvalidResponseError(f"Image model returned neither bytes nor URL for {spec.id}")

        try:
            metadata = detect_image_metadata(data)
        except ImageMetadataError as e:
            raise InvalidResponseError(f"Image model returned unreadable data: {e}") from e

        return GeneratedImage(
            data=data,
            width=metadata.width,
            height=metadata.height,
            format=metadata.format,
            model=self.model,
        )


# =============================================================================
# OpenAI Vision
# =============================================================================


def refine_prompt_input(refine_input: RefineInput) -> dict:
    """Template values of `REFINE_PROMPT` for a refine input."""
    dsl = refine_input.current_dsl
    submission = refine_input.submission.model_dump()
    feedback = ""
    if refine_input.refinement_feedback:
        feedback = f"Reviewer feedback to address:\n{refine_input.refinement_feedback}"
    return dict(
        **submission,
        preview_url=refine_input.preview_url,
        width=dsl.canvas.width,
        height=dsl.canvas.height,
        element_count=len(dsl.elements),
        primary=dsl.palette.primary,
        secondary=dsl.palette.secondary,
        accent=dsl.palette.accent,
        background=dsl.palette.background,
        available_elements=describe_elements(dsl),
        feedback=feedback,
    )


def build_refine_prompt(refine_input: RefineInput) -> str:
    return REFINE_PROMPT.format(**refine_prompt_input(refine_input))


class OpenAIVisionRefiner:
    """Vision-model critique of a rendered label.

    Non-HTTP preview URLs (local files, blob store URLs) are inlined as
    base64 data URLs through ``fetcher``.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        temperature: float = 0.3,
        max_tokens: int = 1000,
        timeout: float = 60.0,
        fetcher: AssetFetcher | None = None,
        client: Any = None,
    ):
        self.model = model or get_environment(EnvVar.OPENAI_VISION_MODEL)
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.fetcher = fetcher
        self._client = client or _openai_client(api_key, timeout)

    async def _image_url(self, preview_url: str) -> str:
        if preview_url.startswith(("http://", "https://", "data:")) or self.fetcher is None:
            return preview_url
        data = await self.fetcher.fetch(preview_url)
        if data is None:
            return preview_url
        content_type = detect_image_metadata(data).content_type
        return f"data:{content_type};base64,{base64.b64encode(data).decode('ascii')}"

    async def propose_edits(self, refine_input: RefineInput) -> RefineOutput:
        prompt = (
            build_refine_prompt(refine_input)
            + "\n\nCurrent DSL:\n"
            + serialize_label_dsl(refine_input.current_dsl)
            + '\n\nRespond with JSON: {"operations": [...], "reasoning": "...", "confidence": 0.0-1.0}'
        )
        image_url = await self._image_url(refine_input.preview_url)
        logger.info(f"Requesting vision critique from {self.model}")

        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                response_format={"type": "json_object"},
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": prompt},
                            {"type": "image_url", "image_url": {"url": image_url, "detail": "high"}},
                        ],
                    }
                ],
            )
        except Exception as e:
            _handle_openai_error(e)
            raise

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise InvalidResponseError("Vision model returned an empty response")

        try:
            output = RefineOutput.model_validate(extract_json(content))
        except JSONExtractionError as e:
            raise InvalidResponseError(f"Vision model returned no JSON: {e}") from e
        except PydanticValidationError as e:
            raise InvalidResponseError(
                f"Vision model returned invalid proposals: {format_validation_error(e)}"
            ) from e

        logger.info(
            f"Vision critique: {len(output.operations)} operations, confidence {output.confidence}"
        )
        return output


__all__ = [
    "ImageModelAdapter",
    "VisionRefiner",
    "Renderer",
    "orientation_for",
    "enhance_image_prompt",
    "OpenAIImageAdapter",
    "refine_prompt_input",
    "build_refine_prompt",
    "OpenAIVisionRefiner",
]
