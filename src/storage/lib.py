"""Content-addressable image upload.

Image bytes are stored once under ``content/{sha256}.{format}`` and shared by
every ``(generation_id, asset_id)`` alias that uploads the same bytes. Blobs
are immutable, so their URLs can be cached forever.

Example:
    >>> asset = await upload_image(
    ...     UploadRequest(generation_id="gen-1", asset_id="background", data=png),
    ...     aliases=InMemoryAliasStore(),
    ...     blobs=InMemoryBlobStore(),
    ... )
    >>> asset.url
    'memory://blobs/content/3f2a....png'
"""

import asyncio
import hashlib
import io
import logging
from dataclasses import replace

from PIL import Image, UnidentifiedImageError

from src.errors import ErrorKind, PipelineError, RetryConfig, with_cleanup, with_retry

from .alias import AliasStore
from .blob import BlobExistsError, BlobStore
from .models import (
    IMMUTABLE_CACHE_CONTROL,
    RENDER_PREVIEW_ASSET_ID,
    AliasRecord,
    ImageAsset,
    ImageMetadata,
    UploadRequest,
)

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = frozenset({"png", "jpeg", "webp"})


class ImageMetadataError(ValueError):
    """Bytes are not a readable image in a supported format."""


def compute_checksum(data: bytes) -> str:
    """SHA-256 hex digest of ``data``."""
    return hashlib.sha256(data).hexdigest()


def content_addressable_path(checksum: str, format: str) -> str:
    """Storage path of a blob: ``content/{checksum}.{format}``."""
    return f"content/{checksum}.{format}"


def detect_image_metadata(data: bytes) -> ImageMetadata:
    """Read format and pixel size with Pillow.

    Raises:
        ImageMetadataError: If the bytes are not a supported image.
    """
    try:
        with Image.open(io.BytesIO(data)) as image:
            width, height = image.size
            fmt = (image.format or "").lower()
    except (UnidentifiedImageError, OSError) as e:
        raise ImageMetadataError(f"Invalid image buffer or unsupported format: {e}") from e

    if fmt not in SUPPORTED_FORMATS or not width or not height:
        raise ImageMetadataError(f"Unsupported image format '{fmt or 'unknown'}'")
    return ImageMetadata(width=width, height=height, format=fmt)


async def upload_image(
    request: UploadRequest,
    *,
    aliases: AliasStore,
    blobs: BlobStore,
    retry_config: RetryConfig | None = None,
) -> ImageAsset:
    """Store an image once by content and record its alias.

    Steps:
    1. Detect format and size (one quick retry); unreadable data is a
       ``validation`` error.
    2. Reuse any blob with the same checksum, upserting this alias to it.
    3. Return the existing alias if it already holds the same checksum.
    4. Otherwise write the blob (an existing blob counts as success), resolve
       its URL and upsert the alias. Failures log the orphaned path.

    Raises:
        PipelineError: Classified failure of detection or a store call.
    """
    config = retry_config or RetryConfig()
    context = {
        "generation_id": request.generation_id,
        "asset_id": request.asset_id,
        "data_size": len(request.data),
    }

    detect_retry = replace(config, max_attempts=2)
    try:
        metadata = await with_retry(
            lambda: asyncio.to_thread(detect_image_metadata, request.data),
            detect_retry,
            operation="detect_metadata",
            context=context,
        )
    except Exception as e:
        raise PipelineError(
            f"Image metadata detection failed: {e}",
            kind=ErrorKind.VALIDATION,
            retryable=False,
            context=context,
        ) from e

    checksum = request.checksum or compute_checksum(request.data)
    path = content_addressable_path(checksum, metadata.format)
    context = {**context, "checksum": checksum[:8], "path": path}
    db_context = {**context, "component": "database"}
    blob_context = {**context, "component": "storage"}

    def alias_for(url: str, width: int, height: int, fmt: str) -> AliasRecord:
        return AliasRecord(
            generation_id=request.generation_id,
            asset_id=request.asset_id,
            url=url,
            width=width,
            height=height,
            format=fmt,
            checksum=checksum,
            prompt=request.prompt,
            model=request.model,
            seed=request.seed,
        )

    existing = await with_retry(
        lambda: aliases.find_by_checksum(checksum),
        config,
        operation="check_global_checksum",
        context=db_context,
    )
    if existing is not None:
        logger.info(
            f"Content {checksum[:12]} exists, reusing for "
            f"{request.generation_id}/{request.asset_id}"
        )
        record = alias_for(existing.url, existing.width, existing.height, existing.format)
        await with_retry(
            lambda: aliases.upsert(record),
            config,
            operation="create_alias_record",
            context=db_context,
        )
        return record.to_asset()

    current = await with_retry(
        lambda: aliases.get(request.generation_id, request.asset_id),
        config,
        operation="check_existing_record",
        context=db_context,
    )
    if current is not None and current.checksum == checksum:
        logger.info(f"Alias {request.generation_id}/{request.asset_id} unchanged")
        return current.to_asset()

    async def store() -> ImageAsset:
        async def put() -> None:
            try:
                await blobs.put(
                    path,
                    request.data,
                    content_type=metadata.content_type,
                    cache_control=IMMUTABLE_CACHE_CONTROL,
                )
            except BlobExistsError:
                logger.info(f"Content already stored at {path}, reusing")

        await with_retry(put, config, operation="storage_upload", context=blob_context)

        url = blobs.public_url(path)
        if not url:
            raise PipelineError(
                "Failed to resolve public URL for uploaded image",
                kind=ErrorKind.STORAGE,
                context=context,
            )

        record = alias_for(url, metadata.width, metadata.height, metadata.format)
        await with_retry(
            lambda: aliases.upsert(record),
            config,
            operation="database_upsert",
            context=db_context,
        )
        logger.info(
            f"Image uploaded: {request.generation_id}/{request.asset_id} -> {url} "
            f"({metadata.width}x{metadata.height})"
        )
        return record.to_asset()

    def log_orphan() -> None:
        logger.warning(f"Upload of {path} failed; blob may be orphaned")

    return await with_cleanup(store, [log_orphan], operation="upload_image")


async def upload_rendered_label(
    generation_id: str,
    image_bytes: bytes,
    *,
    aliases: AliasStore,
    blobs: BlobStore,
    retry_config: RetryConfig | None = None,
) -> ImageAsset:
    """Store a rendered preview under the ``render-preview`` asset id."""
    return await upload_image(
        UploadRequest(
            generation_id=generation_id,
            asset_id=RENDER_PREVIEW_ASSET_ID,
            data=image_bytes,
        ),
        aliases=aliases,
        blobs=blobs,
        retry_config=retry_config,
    )


__all__ = [
    "SUPPORTED_FORMATS",
    "ImageMetadataError",
    "compute_checksum",
    "content_addressable_path",
    "detect_image_metadata",
    "upload_image",
    "upload_rendered_label",
]
