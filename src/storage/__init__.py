"""Content-addressable image storage and step tracking.

Provides `upload_image` / `upload_rendered_label` on top of two stores:
an `AliasStore` (SQLite or in-memory) mapping ``(generation_id, asset_id)``
to blobs, and a write-once `BlobStore` (local filesystem or in-memory).

Example:
    >>> from src.storage import LocalBlobStore, SQLiteAliasStore, UploadRequest, upload_image
    >>> aliases = SQLiteAliasStore(get_db_path())
    >>> blobs = LocalBlobStore(get_blob_dir(), get_public_base_url())
    >>> asset = await upload_image(request, aliases=aliases, blobs=blobs)
"""

from .alias import (
    SCHEMA_SQL,
    AliasStore,
    InMemoryAliasStore,
    SQLiteAliasStore,
    StepStore,
)
from .blob import (
    BlobExistsError,
    BlobStore,
    InMemoryBlobStore,
    LocalBlobStore,
    StorageError,
    StoredBlob,
)
from .lib import (
    SUPPORTED_FORMATS,
    ImageMetadataError,
    compute_checksum,
    content_addressable_path,
    detect_image_metadata,
    upload_image,
    upload_rendered_label,
)
from .models import (
    IMMUTABLE_CACHE_CONTROL,
    RENDER_PREVIEW_ASSET_ID,
    AliasRecord,
    ImageAsset,
    ImageMetadata,
    StepRecord,
    StepStatus,
    UploadRequest,
    utc_now,
)

__all__ = [
    # Models
    "ImageAsset",
    "ImageMetadata",
    "AliasRecord",
    "UploadRequest",
    "StepStatus",
    "StepRecord",
    "utc_now",
    "IMMUTABLE_CACHE_CONTROL",
    "RENDER_PREVIEW_ASSET_ID",
    # Alias and step stores
    "SCHEMA_SQL",
    "AliasStore",
    "StepStore",
    "SQLiteAliasStore",
    "InMemoryAliasStore",
    # Blob stores
    "StorageError",
    "BlobExistsError",
    "BlobStore",
    "LocalBlobStore",
    "InMemoryBlobStore",
    "StoredBlob",
    # Upload
    "SUPPORTED_FORMATS",
    "ImageMetadataError",
    "compute_checksum",
    "content_addressable_path",
    "detect_image_metadata",
    "upload_image",
    "upload_rendered_label",
]
