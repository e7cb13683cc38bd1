"""Pipeline configuration: which LLMs, adapters and stores a run uses.

Example:
    >>> config = create_pipeline_config(use_mocks=True)
    >>> pipeline = LabelPipeline(config)
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from src.config import (
    EnvVar,
    get_blob_dir,
    get_db_path,
    get_environment,
    get_public_base_url,
)
from src.config import use_mocks as resolve_use_mocks
from src.errors import RetryConfig
from src.llm import MockLLMBackend, StructuredLLM, mock_model_configs, model_configs_for
from src.storage import (
    AliasStore,
    BlobStore,
    InMemoryAliasStore,
    InMemoryBlobStore,
    LocalBlobStore,
    SQLiteAliasStore,
    StepStore,
)

from .adapters import (
    ImageModelAdapter,
    OpenAIImageAdapter,
    OpenAIVisionRefiner,
    Renderer,
    VisionRefiner,
)
from .mocks import MockImageAdapter, MockVisionRefiner, mock_llm_responder
from .render import AssetFetcher, HTTPRenderer, PillowRenderer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineConfig:
    """Everything a pipeline run depends on.

    Attributes:
        llm: Structured LLM for the design-scheme, image-prompts,
            detailed-layout and text refine steps.
        image_adapter: Image model used by image-generate.
        renderer: Rasterizer used by render and the refinement loop.
        vision_refiner: Optional vision critic; without one the refine step
            falls back to the text-only LLM.
        aliases: Alias store for generated assets.
        blobs: Blob store for image bytes.
        steps: Step status store; the pipeline tracks steps in memory
            when None.
        retry: Retry policy for storage and LLM calls.
        max_concurrency: Parallel image generations.
        max_iterations: Refinement iterations after the first render.
        mocks: Whether the mock adapters are in use.
    """

    llm: StructuredLLM
    image_adapter: ImageModelAdapter
    renderer: Renderer
    aliases: AliasStore
    blobs: BlobStore
    vision_refiner: VisionRefiner | None = None
    steps: StepStore | None = None
    retry: RetryConfig = field(default_factory=RetryConfig)
    max_concurrency: int = 3
    max_iterations: int = 2
    mocks: bool = False

    def __post_init__(self) -> None:
        if self.max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {self.max_concurrency}")
        if self.max_iterations < 0:
            raise ValueError(f"max_iterations must be >= 0, got {self.max_iterations}")


def create_pipeline_config(
    use_mocks: bool | None = None,
    *,
    provider: str | None = None,
    model: str | None = None,
    persistent: bool | None = None,
    db_path: Path | str | None = None,
    blob_dir: Path | str | None = None,
    renderer_url: str | None = None,
    vision: bool | None = None,
    max_concurrency: int | None = None,
    max_iterations: int | None = None,
    retry: RetryConfig | None = None,
) -> PipelineConfig:
    """Build a `PipelineConfig` from arguments and environment.

    Args:
        use_mocks: Mock LLM, images and vision. Defaults to LABEL_USE_MOCKS,
            else True when no provider key is configured.
        provider: LLM provider for the structured steps.
        model: LLM model for the structured steps.
        persistent: SQLite + filesystem stores instead of in-memory ones.
            Defaults to ``not use_mocks``.
        db_path: SQLite path (LABEL_DB_PATH).
        blob_dir: Blob directory (LABEL_BLOB_DIR).
        renderer_url: Render service (RENDERER_URL); the local Pillow
            renderer is used when unset.
        vision: Use a vision refiner. Defaults to True.
        max_concurrency: Parallel images (IMAGE_MAX_CONCURRENCY).
        max_iterations: Refinement iterations (REFINE_MAX_ITERATIONS).
        retry: Retry policy (RETRY_* variables).
    """
    mocks = resolve_use_mocks(use_mocks)
    persistent = (not mocks) if persistent is None else persistent
    vision = True if vision is None else vision
    retry = retry or RetryConfig.from_environment()

    if persistent:
        aliases: AliasStore = SQLiteAliasStore(get_db_path(db_path))
        aliases.initialize()
        blobs: BlobStore = LocalBlobStore(get_blob_dir(blob_dir), get_public_base_url())
    else:
        aliases = InMemoryAliasStore()
        blobs = InMemoryBlobStore()

    fetcher = AssetFetcher(blobs)
    renderer_url = renderer_url or get_environment(EnvVar.RENDERER_URL)
    renderer: Renderer = HTTPRenderer(renderer_url) if renderer_url else PillowRenderer(fetcher)

    if mocks:
        llm = StructuredLLM(
            model_configs=mock_model_configs(),
            backend_factory=lambda _config: MockLLMBackend(responder=mock_llm_responder),
            retry_config=retry,
        )
        image_adapter: ImageModelAdapter = MockImageAdapter()
        vision_refiner: VisionRefiner | None = MockVisionRefiner() if vision else None
    else:
        llm = StructuredLLM(model_configs=model_configs_for(provider, model), retry_config=retry)
        image_adapter = OpenAIImageAdapter()
        vision_refiner = OpenAIVisionRefiner(fetcher=fetcher) if vision else None

    config = PipelineConfig(
        llm=llm,
        image_adapter=image_adapter,
        renderer=renderer,
        aliases=aliases,
        steps=aliases,
        blobs=blobs,
        vision_refiner=vision_refiner,
        retry=retry,
        max_concurrency=get_environment(EnvVar.IMAGE_MAX_CONCURRENCY, override=max_concurrency),
        max_iterations=get_environment(EnvVar.REFINE_MAX_ITERATIONS, override=max_iterations),
        mocks=mocks,
    )
    logger.info(
        f"Pipeline config: mocks={mocks}, persistent={persistent}, "
        f"renderer={type(renderer).__name__}, vision={vision_refiner is not None}"
    )
    return config


__all__ = ["PipelineConfig", "create_pipeline_config"]
