"""Data models for image storage and step tracking."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from src.dsl import Asset

IMMUTABLE_CACHE_CONTROL = "public, max-age=31536000, immutable"
RENDER_PREVIEW_ASSET_ID = "render-preview"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ImageMetadata:
    """Format and pixel size detected from image bytes."""

    width: int
    height: int
    format: str

    @property
    def content_type(self) -> str:
        return f"image/{self.format}"


@dataclass(frozen=True)
class ImageAsset:
    """A stored image as referenced by a label.

    Identity is the checksum: equal bytes always map to the same url.

    Attributes:
        id: Asset id within the generation.
        url: Public URL of the content-addressed blob.
        width: Pixel width.
        height: Pixel height.
        format: Lower-case format name ('png', 'jpeg', 'webp').
        checksum: SHA-256 hex digest of the bytes.
    """

    id: str
    url: str
    width: int
    height: int
    format: str
    checksum: str

    def to_dsl_asset(self) -> Asset:
        """Convert to a DSL asset entry."""
        return Asset(id=self.id, url=self.url, width=self.width, height=self.height)


@dataclass
class AliasRecord:
    """One ``(generation_id, asset_id)`` pointer to a content-addressed blob.

    Many aliases may point at the same blob.
    """

    generation_id: str
    asset_id: str
    url: str
    width: int
    height: int
    format: str
    checksum: str
    prompt: str | None = None
    model: str | None = None
    seed: str | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_asset(self) -> ImageAsset:
        return ImageAsset(
            id=self.asset_id,
            url=self.url,
            width=self.width,
            height=self.height,
            format=self.format,
            checksum=self.checksum,
        )


@dataclass
class UploadRequest:
    """Input of `upload_image`.

    Attributes:
        generation_id: Owning generation.
        asset_id: Asset id within the generation.
        data: Raw image bytes.
        checksum: Optional precomputed SHA-256 hex digest.
        prompt: Prompt that produced the image, kept for lineage.
        model: Image model name.
        seed: Generation seed.
    """

    generation_id: str
    asset_id: str
    data: bytes
    checksum: str | None = None
    prompt: str | None = None
    model: str | None = None
    seed: str | None = None


class StepStatus(str, Enum):
    """Lifecycle of one pipeline step for one generation."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class StepRecord:
    """Tracked status of one pipeline step."""

    generation_id: str
    step: str
    status: StepStatus = StepStatus.PENDING
    attempts: int = 0
    error: dict[str, Any] | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    updated_at: datetime = field(default_factory=utc_now)


__all__ = [
    "IMMUTABLE_CACHE_CONTROL",
    "RENDER_PREVIEW_ASSET_ID",
    "utc_now",
    "ImageMetadata",
    "ImageAsset",
    "AliasRecord",
    "UploadRequest",
    "StepStatus",
    "StepRecord",
]
