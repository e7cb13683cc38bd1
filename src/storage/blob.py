"""Never-overwrite blob stores for content-addressed images."""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable

from .models import IMMUTABLE_CACHE_CONTROL

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """A blob store operation failed."""


class BlobExistsError(StorageError):
    """The target path already holds a blob."""

    def __init__(self, path: str):
        super().__init__(f"Blob already exists: {path}")
        self.path = path


@runtime_checkable
class BlobStore(Protocol):
    """Write-once object storage addressed by relative paths."""

    async def put(
        self,
        path: str,
        data: bytes,
        *,
        content_type: str,
        cache_control: str = IMMUTABLE_CACHE_CONTROL,
    ) -> None:
        """Store ``data`` at ``path``.

        Raises:
            BlobExistsError: If ``path`` is already taken. Blobs are never
                overwritten.
        """
        ...

    async def get(self, path: str) -> bytes:
        ...

    async def exists(self, path: str) -> bool:
        ...

    def public_url(self, path: str) -> str:
        """Absolute URL under which ``path`` is served."""
        ...


def _check_path(path: str) -> str:
    parts = Path(path).parts
    if not path or Path(path).is_absolute() or ".." in parts:
        raise StorageError(f"Invalid blob path: {path!r}")
    return path


# =============================================================================
# Local Filesystem
# =============================================================================


class LocalBlobStore:
    """Blob store on the local filesystem.

    Files are created exclusively, so concurrent writers of the same path
    never clobber each other.

    Args:
        root: Directory holding the blobs.
        public_base_url: Base URL serving ``root``; ``file://`` URLs when None.
    """

    def __init__(self, root: Path | str, public_base_url: str | None = None):
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None

    def _resolve(self, path: str) -> Path:
        return self.root / _check_path(path)

    def _write_exclusive(self, path: str, data: bytes) -> None:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        try:
            with open(target, "xb") as f:
                f.write(data)
        except FileExistsError as e:
            raise BlobExistsError(path) from e
        except OSError as e:
            raise StorageError(f"Failed to write blob {path}: {e}") from e

    async def put(
        self,
        path: str,
        data: bytes,
        *,
        content_type: str,
        cache_control: str = IMMUTABLE_CACHE_CONTROL,
    ) -> None:
        await asyncio.to_thread(self._write_exclusive, path, data)
        logger.debug(f"Stored blob {path} ({len(data)} bytes, {content_type})")

    async def get(self, path: str) -> bytes:
        target = self._resolve(path)
        try:
            return await asyncio.to_thread(target.read_bytes)
        except FileNotFoundError as e:
            raise StorageError(f"Blob not found: {path}") from e

    async def exists(self, path: str) -> bool:
        return await asyncio.to_thread(self._resolve(path).exists)

    def public_url(self, path: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{_check_path(path)}"
        return self._resolve(path).resolve().as_uri()


# =============================================================================
# In-Memory
# =============================================================================


@dataclass(frozen=True)
class StoredBlob:
    data: bytes
    content_type: str
    cache_control: str


class InMemoryBlobStore:
    """Dictionary-backed blob store that counts physical writes."""

    def __init__(self, public_base_url: str = "memory://blobs"):
        self.public_base_url = public_base_url.rstrip("/")
        self.blobs: dict[str, StoredBlob] = {}
        self.write_count = 0

    async def put(
        self,
        path: str,
        data: bytes,
        *,
        content_type: str,
        cache_control: str = IMMUTABLE_CACHE_CONTROL,
    ) -> None:
        _check_path(path)
        if path in self.blobs:
            raise BlobExistsError(path)
        self.blobs[path] = StoredBlob(bytes(data), content_type, cache_control)
        self.write_count += 1

    async def get(self, path: str) -> bytes:
        try:
            return self.blobs[path].data
        except KeyError as e:
            raise StorageError(f"Blob not found: {path}") from e

    async def exists(self, path: str) -> bool:
        return path in self.blobs

    def public_url(self, path: str) -> str:
        return f"{self.public_base_url}/{_check_path(path)}"


__all__ = [
    "StorageError",
    "BlobExistsError",
    "BlobStore",
    "LocalBlobStore",
    "StoredBlob",
    "InMemoryBlobStore",
]
