"""Tests for content-addressable image storage."""

import asyncio
import logging
from datetime import timezone

import pytest

from src.errors import ErrorKind, PipelineError, RetryConfig

from .alias import InMemoryAliasStore, SQLiteAliasStore
from .blob import BlobExistsError, InMemoryBlobStore, LocalBlobStore, StorageError
from .lib import (
    ImageMetadataError,
    compute_checksum,
    content_addressable_path,
    detect_image_metadata,
    upload_image,
    upload_rendered_label,
)
from .models import (
    IMMUTABLE_CACHE_CONTROL,
    AliasRecord,
    StepRecord,
    StepStatus,
    UploadRequest,
)

FAST_RETRY = RetryConfig(max_attempts=3, base_delay=0.0, jitter=False)


@pytest.fixture
def aliases():
    return InMemoryAliasStore()


@pytest.fixture
def blobs():
    return InMemoryBlobStore()


def alias(generation_id="gen-1", asset_id="background", checksum="c" * 64) -> AliasRecord:
    return AliasRecord(
        generation_id=generation_id,
        asset_id=asset_id,
        url=f"memory://blobs/content/{checksum}.png",
        width=8,
        height=6,
        format="png",
        checksum=checksum,
    )


# =============================================================================
# Helpers
# =============================================================================


class TestChecksumAndPath:
    """Tests for checksum and path helpers."""

    @pytest.mark.unit
    def test_sha256_is_stable(self):
        expected = "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
        assert compute_checksum(b"abc") == expected
        assert compute_checksum(b"abc") == compute_checksum(b"abc")

    @pytest.mark.unit
    def test_content_addressable_path(self):
        assert content_addressable_path("deadbeef", "png") == "content/deadbeef.png"


class TestDetectImageMetadata:
    """Tests for Pillow-based metadata detection."""

    @pytest.mark.unit
    def test_png(self, make_png):
        metadata = detect_image_metadata(make_png(20, 10))
        assert (metadata.width, metadata.height, metadata.format) == (20, 10, "png")
        assert metadata.content_type == "image/png"

    @pytest.mark.unit
    def test_jpeg(self, make_png):
        metadata = detect_image_metadata(make_png(4, 4, fmt="JPEG"))
        assert metadata.format == "jpeg"

    @pytest.mark.unit
    def test_garbage_rejected(self):
        with pytest.raises(ImageMetadataError):
            detect_image_metadata(b"definitely not an image")


# =============================================================================
# Upload
# =============================================================================


class TestUploadImage:
    """Tests for upload_image deduplication and error handling."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_first_upload_writes_blob(self, aliases, blobs, make_png):
        data = make_png(8, 6)
        asset = await upload_image(
            UploadRequest("gen-1", "background", data, prompt="vineyard at dusk"),
            aliases=aliases,
            blobs=blobs,
            retry_config=FAST_RETRY,
        )

        checksum = compute_checksum(data)
        assert asset.id == "background"
        assert asset.checksum == checksum
        assert asset.url == f"memory://blobs/content/{checksum}.png"
        assert (asset.width, asset.height, asset.format) == (8, 6, "png")
        stored = blobs.blobs[f"content/{checksum}.png"]
        assert stored.content_type == "image/png"
        assert stored.cache_control == IMMUTABLE_CACHE_CONTROL
        record = await aliases.get("gen-1", "background")
        assert record.prompt == "vineyard at dusk"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_identical_bytes_share_one_blob(self, aliases, blobs, make_png):
        data = make_png()
        first = await upload_image(
            UploadRequest("gen-1", "background", data), aliases=aliases, blobs=blobs
        )
        second = await upload_image(
            UploadRequest("gen-2", "texture", data), aliases=aliases, blobs=blobs
        )

        assert first.url == second.url
        assert first.checksum == second.checksum
        assert second.id == "texture"
        assert blobs.write_count == 1
        assert (await aliases.get("gen-2", "texture")).url == first.url

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_concurrent_uploads_of_new_content(self, aliases, blobs, make_png):
        data = make_png(5, 5, color=(10, 20, 30))
        first, second = await asyncio.gather(
            upload_image(
                UploadRequest("g1", "bg", data),
                aliases=aliases,
                blobs=blobs,
                retry_config=FAST_RETRY,
            ),
            upload_image(
                UploadRequest("g2", "bg2", data),
                aliases=aliases,
                blobs=blobs,
                retry_config=FAST_RETRY,
            ),
        )

        assert first.url == second.url
        assert first.checksum == second.checksum == compute_checksum(data)
        assert blobs.write_count == 1
        assert len(blobs.blobs) == 1
        assert (await aliases.get("g1", "bg")).url == first.url
        assert (await aliases.get("g2", "bg2")).url == first.url

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_reupload_is_idempotent(self, aliases, blobs, make_png):
        data = make_png()
        request = UploadRequest("gen-1", "background", data)
        first = await upload_image(request, aliases=aliases, blobs=blobs)
        second = await upload_image(request, aliases=aliases, blobs=blobs)
        assert first == second
        assert blobs.write_count == 1
        assert len(await aliases.list_for_generation("gen-1")) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_existing_blob_counts_as_success(self, aliases, blobs, make_png):
        data = make_png()
        checksum = compute_checksum(data)
        await blobs.put(f"content/{checksum}.png", data, content_type="image/png")

        asset = await upload_image(
            UploadRequest("gen-1", "background", data), aliases=aliases, blobs=blobs
        )
        assert asset.checksum == checksum
        assert blobs.write_count == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_provided_checksum_is_used(self, aliases, blobs, make_png):
        asset = await upload_image(
            UploadRequest("gen-1", "background", make_png(), checksum="f" * 64),
            aliases=aliases,
            blobs=blobs,
        )
        assert asset.url.endswith(f"content/{'f' * 64}.png")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unreadable_data_is_validation_error(self, aliases, blobs):
        with pytest.raises(PipelineError) as exc_info:
            await upload_image(
                UploadRequest("gen-1", "background", b"\x00\x01nope"),
                aliases=aliases,
                blobs=blobs,
                retry_config=FAST_RETRY,
            )
        assert exc_info.value.kind == ErrorKind.VALIDATION
        assert exc_info.value.retryable is False
        assert blobs.write_count == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_transient_alias_failure_is_retried(self, blobs, make_png):
        class FlakyAliases(InMemoryAliasStore):
            def __init__(self):
                super().__init__()
                self.failures = 1

            async def upsert(self, record):
                if self.failures:
                    self.failures -= 1
                    raise ConnectionError("connection reset")
                return await super().upsert(record)

        flaky = FlakyAliases()
        asset = await upload_image(
            UploadRequest("gen-1", "background", make_png()),
            aliases=flaky,
            blobs=blobs,
            retry_config=FAST_RETRY,
        )
        assert (await flaky.get("gen-1", "background")).url == asset.url

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_blob_failure_logs_orphan(self, aliases, make_png, caplog):
        class BrokenBlobs(InMemoryBlobStore):
            async def put(self, path, data, *, content_type, cache_control=IMMUTABLE_CACHE_CONTROL):
                raise StorageError("disk full")

        with caplog.at_level(logging.WARNING):
            with pytest.raises(StorageError):
                await upload_image(
                    UploadRequest("gen-1", "background", make_png()),
                    aliases=aliases,
                    blobs=BrokenBlobs(),
                    retry_config=FAST_RETRY,
                )
        assert "orphaned" in caplog.text
        assert await aliases.get("gen-1", "background") is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_rendered_label(self, aliases, blobs, make_png):
        asset = await upload_rendered_label("gen-1", make_png(), aliases=aliases, blobs=blobs)
        assert asset.id == "render-preview"
        assert (await aliases.get("gen-1", "render-preview")) is not None


# =============================================================================
# Stores
# =============================================================================


class TestSQLiteAliasStore:
    """Tests for the SQLite alias and step store."""

    @pytest.fixture
    def store(self, tmp_path):
        store = SQLiteAliasStore(tmp_path / "labels.db")
        store.initialize()
        yield store
        store.close()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_upsert_and_lookup(self, store):
        await store.upsert(alias())
        await store.upsert(alias(generation_id="gen-2"))

        record = await store.get("gen-1", "background")
        assert record.width == 8
        assert (await store.find_by_checksum("c" * 64)) is not None
        assert await store.find_by_checksum("d" * 64) is None
        assert [r.asset_id for r in await store.list_for_generation("gen-2")] == ["background"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_upsert_replaces_on_conflict(self, store):
        await store.upsert(alias(checksum="c" * 64))
        await store.upsert(alias(checksum="e" * 64))

        records = await store.list_for_generation("gen-1")
        assert len(records) == 1
        assert records[0].checksum == "e" * 64

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_steps(self, store):
        await store.save_step(StepRecord("gen-1", "design-scheme"))
        await store.save_step(
            StepRecord(
                "gen-1",
                "design-scheme",
                status=StepStatus.FAILED,
                attempts=1,
                error={"kind": "validation"},
            )
        )

        record = await store.get_step("gen-1", "design-scheme")
        assert record.status == StepStatus.FAILED
        assert record.error == {"kind": "validation"}
        assert len(await store.list_steps("gen-1")) == 1
        assert await store.get_step("gen-1", "render") is None

    @pytest.mark.unit
    def test_timestamps_are_utc(self):
        record = alias()
        step = StepRecord("gen-1", "render")
        assert record.created_at.tzinfo is timezone.utc
        assert record.updated_at.tzinfo is timezone.utc
        assert step.updated_at.tzinfo is timezone.utc


class TestBlobStores:
    """Tests for the write-once blob stores."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_local_exclusive_create(self, tmp_path):
        store = LocalBlobStore(tmp_path, public_base_url="https://cdn.example.com/")
        await store.put("content/a.png", b"one", content_type="image/png")

        with pytest.raises(BlobExistsError):
            await store.put("content/a.png", b"two", content_type="image/png")
        assert await store.get("content/a.png") == b"one"
        assert await store.exists("content/a.png")
        assert store.public_url("content/a.png") == "https://cdn.example.com/content/a.png"

    @pytest.mark.unit
    def test_local_file_url_without_base(self, tmp_path):
        store = LocalBlobStore(tmp_path)
        assert store.public_url("content/a.png").startswith("file://")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_rejects_path_traversal(self, tmp_path):
        store = LocalBlobStore(tmp_path)
        with pytest.raises(StorageError, match="Invalid blob path"):
            await store.put("../escape.png", b"x", content_type="image/png")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_in_memory_counts_writes(self):
        store = InMemoryBlobStore()
        await store.put("content/a.png", b"x", content_type="image/png")
        with pytest.raises(BlobExistsError):
            await store.put("content/a.png", b"x", content_type="image/png")
        assert store.write_count == 1
