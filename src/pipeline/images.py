"""Concurrent image generation and storage."""

import asyncio
import logging

from src.errors import RetryConfig, classify, with_retry
from src.storage import AliasStore, BlobStore, ImageAsset, UploadRequest, upload_image

from .adapters import ImageModelAdapter
from .models import ImageBatchResult, ImageError, ImagePromptSpec

logger = logging.getLogger(__name__)


class ImageGenerationService:
    """Generate images for a batch of prompts and store them by content.

    At most ``max_concurrent`` generations run at once. A failed prompt is
    reported in the batch result and never cancels its siblings.

    Example:
        >>> service = ImageGenerationService(adapter, aliases, blobs)
        >>> batch = await service.generate_and_store("gen-1", prompts)
        >>> [asset.id for asset in batch.assets]
        ['wine_bg_01', 'decor_element_01']
    """

    def __init__(
        self,
        adapter: ImageModelAdapter,
        aliases: AliasStore,
        blobs: BlobStore,
        max_concurrent: int = 3,
        retry_config: RetryConfig | None = None,
    ):
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be >= 1, got {max_concurrent}")
        self.adapter = adapter
        self.aliases = aliases
        self.blobs = blobs
        self.max_concurrent = max_concurrent
        self.retry_config = retry_config or RetryConfig()

    async def generate_one(self, generation_id: str, spec: ImagePromptSpec) -> ImageAsset:
        """Generate and store a single image.

        Raises:
            PipelineError: Classified failure of generation or storage.
        """
        context = {"generation_id": generation_id, "prompt_id": spec.id}
        image = await with_retry(
            lambda: self.adapter.generate(spec),
            self.retry_config,
            operation="image_generate",
            context=context,
        )
        return await upload_image(
            UploadRequest(
                generation_id=generation_id,
                asset_id=spec.id,
                data=image.data,
                prompt=spec.prompt,
                model=image.model,
                seed=image.seed,
            ),
            aliases=self.aliases,
            blobs=self.blobs,
            retry_config=self.retry_config,
        )

    async def generate_and_store(
        self, generation_id: str, specs: list[ImagePromptSpec]
    ) -> ImageBatchResult:
        """Run all prompts with bounded concurrency.

        Assets keep the order of ``specs``; failed prompts are skipped in
        ``assets`` and listed in ``errors``.
        """
        semaphore = asyncio.Semaphore(self.max_concurrent)

        async def run(spec: ImagePromptSpec) -> ImageAsset:
            async with semaphore:
                return await self.generate_one(generation_id, spec)

        outcomes = await asyncio.gather(*(run(spec) for spec in specs), return_exceptions=True)

        result = ImageBatchResult()
        for spec, outcome in zip(specs, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                error = classify(outcome, {"prompt_id": spec.id})
                logger.warning(f"Image {spec.id} failed: {error.message}")
                result.errors.append(ImageError(prompt_id=spec.id, error=error.to_dict()))
            else:
                result.assets.append(outcome)

        logger.info(
            f"Image batch {generation_id}: {len(result.assets)} stored, {len(result.errors)} failed"
        )
        return result


__all__ = ["ImageGenerationService"]
