"""Tests for the label generation pipeline."""

import asyncio
import base64
import io
import json
from types import SimpleNamespace

import httpx
import pytest
from PIL import Image

from src.dsl import DesignScheme, LabelDSL, parse_label_dsl
from src.edits import UpdateElementOperation
from src.errors import ErrorKind, PipelineError, RetryConfig
from src.llm import MockLLMBackend, PipelineStep, StructuredLLM, mock_model_configs
from src.llm.backend import InvalidResponseError, RateLimitError
from src.storage import (
    InMemoryAliasStore,
    InMemoryBlobStore,
    LocalBlobStore,
    SQLiteAliasStore,
    StepStatus,
    detect_image_metadata,
)

from . import steps
from .adapters import (
    OpenAIImageAdapter,
    OpenAIVisionRefiner,
    build_refine_prompt,
    enhance_image_prompt,
    orientation_for,
)
from .config import PipelineConfig, create_pipeline_config
from .images import ImageGenerationService
from .lib import LabelPipeline, StepTracker
from .mocks import (
    MOCK_DESIGN_SCHEME,
    MOCK_IMAGE_PROMPTS,
    MOCK_REFINE_REASONING,
    MockImageAdapter,
    MockVisionRefiner,
    mock_llm_responder,
)
from .models import (
    DesignSchemeOutput,
    DetailedLayoutOutput,
    ImagePromptSpec,
    ImagePromptsOutput,
    LabelStyle,
    RefineInput,
    WineSubmission,
)
from .render import AssetFetcher, HTTPRenderer, PillowRenderer, RenderError

FAST_RETRY = RetryConfig(max_attempts=2, base_delay=0.0, jitter=False)


def mock_llm(backend: MockLLMBackend | None = None) -> StructuredLLM:
    backend = backend or MockLLMBackend(responder=mock_llm_responder)
    return StructuredLLM(
        model_configs=mock_model_configs(),
        backend_factory=lambda _config: backend,
        retry_config=FAST_RETRY,
    )


def prompt_spec(prompt_id: str, aspect: str = "1:1", purpose: str = "decoration") -> ImagePromptSpec:
    return ImagePromptSpec(id=prompt_id, purpose=purpose, prompt=f"Ornament {prompt_id}", aspect=aspect)


def mock_config(**overrides) -> PipelineConfig:
    blobs = overrides.pop("blobs", InMemoryBlobStore())
    aliases = overrides.pop("aliases", InMemoryAliasStore())
    values = dict(
        llm=mock_llm(),
        image_adapter=MockImageAdapter(),
        renderer=PillowRenderer(AssetFetcher(blobs)),
        aliases=aliases,
        blobs=blobs,
        steps=aliases,
        retry=FAST_RETRY,
        mocks=True,
    )
    values.update(overrides)
    return PipelineConfig(**values)


@pytest.fixture
def scheme() -> DesignScheme:
    return DesignSchemeOutput.model_validate(MOCK_DESIGN_SCHEME)


@pytest.fixture
def scheme_with_assets(scheme) -> DesignScheme:
    return DesignScheme.model_validate(
        {
            **scheme.model_dump(),
            "assets": [
                {"id": "background-mock", "type": "image", "url": "memory://blobs/a.png", "width": 384, "height": 256},
                {"id": "decoration-mock", "type": "image", "url": "memory://blobs/b.png", "width": 256, "height": 256},
            ],
        }
    )


# =============================================================================
# Models
# =============================================================================


class TestModels:
    """Tests for step input/output models."""

    @pytest.mark.unit
    def test_submission_requires_four_digit_vintage(self, sample_submission):
        data = {**sample_submission.model_dump(), "vintage": "21"}
        with pytest.raises(ValueError):
            WineSubmission.model_validate(data)

    @pytest.mark.unit
    def test_submission_accepts_camel_case(self):
        submission = WineSubmission.model_validate(
            {
                "producerName": "Domaine Test",
                "wineName": "Blanc",
                "vintage": "2020",
                "variety": "Chardonnay",
                "region": "Burgundy",
                "appellation": "Meursault",
            }
        )
        assert submission.producer_name == "Domaine Test"

    @pytest.mark.unit
    def test_design_scheme_output_rejects_assets(self):
        data = {
            **MOCK_DESIGN_SCHEME,
            "assets": [{"id": "a", "type": "image", "url": "x", "width": 1, "height": 1}],
        }
        with pytest.raises(ValueError, match="assets must be empty"):
            DesignSchemeOutput.model_validate(data)

    @pytest.mark.unit
    def test_image_prompts_count_must_match(self):
        data = {**MOCK_IMAGE_PROMPTS, "expectedPrompts": 3}
        with pytest.raises(ValueError, match="must match"):
            ImagePromptsOutput.model_validate(data)

    @pytest.mark.unit
    def test_image_prompt_ids_unique(self):
        prompt = MOCK_IMAGE_PROMPTS["prompts"][0]
        with pytest.raises(ValueError, match="unique"):
            ImagePromptsOutput.model_validate({"expectedPrompts": 2, "prompts": [prompt, prompt]})

    @pytest.mark.unit
    def test_layout_output_requires_every_asset(self, sample_dsl_data):
        elements = sample_dsl_data["elements"]
        with pytest.raises(ValueError, match="not referenced"):
            DetailedLayoutOutput.model_validate(
                {"elements": elements},
                context={"asset_ids": ["background-texture", "unused"]},
            )

    @pytest.mark.unit
    def test_layout_output_rejects_unknown_asset(self, sample_dsl_data):
        with pytest.raises(ValueError, match="unknown assets"):
            DetailedLayoutOutput.model_validate(
                {"elements": sample_dsl_data["elements"]}, context={"asset_ids": []}
            )

    @pytest.mark.unit
    def test_layout_output_without_context(self, sample_dsl_data):
        output = DetailedLayoutOutput.model_validate({"elements": sample_dsl_data["elements"]})
        assert len(output.elements) == 4

    @pytest.mark.unit
    def test_refine_input_alias(self, sample_submission, sample_dsl):
        refine_input = RefineInput.model_validate(
            {
                "submission": sample_submission.model_dump(),
                "currentDSL": sample_dsl.model_dump(),
                "previewUrl": "https://cdn.example.com/p.png",
            }
        )
        assert refine_input.current_dsl.element_ids() == sample_dsl.element_ids()


# =============================================================================
# Mock Responder
# =============================================================================


class TestMockResponder:
    """Tests for keyword dispatch of the mock LLM."""

    @pytest.mark.unit
    def test_design_scheme_reply(self):
        reply = mock_llm_responder("You are an expert wine label designer creating a design scheme.")
        assert json.loads(reply)["palette"]["primary"] == "#722F37"

    @pytest.mark.unit
    def test_critic_reply_has_no_operations(self):
        reply = json.loads(mock_llm_responder("You are a wine label design critic."))
        assert reply["operations"] == []
        assert reply["reasoning"] == MOCK_REFINE_REASONING

    @pytest.mark.unit
    def test_unrecognized_prompt(self):
        assert mock_llm_responder("hello") == "{}"


# =============================================================================
# LLM Steps
# =============================================================================


class TestLLMSteps:
    """Tests for design-scheme, image-prompts and detailed-layout."""

    @pytest.mark.asyncio
    async def test_design_scheme(self, sample_submission):
        scheme = await steps.design_scheme(mock_llm(), sample_submission, LabelStyle.CLASSIC)
        assert scheme.canvas.width == 750
        assert scheme.palette.primary == "#722F37"
        assert scheme.assets == []

    @pytest.mark.asyncio
    async def test_design_scheme_includes_history(self, sample_submission):
        backend = MockLLMBackend(responder=mock_llm_responder)
        await steps.design_scheme(
            mock_llm(backend), sample_submission, "elegant", historical_examples=[{"style": "old"}]
        )
        assert "Previous designs for reference" in backend.calls[0]
        assert "Chateau Example" in backend.calls[0]

    @pytest.mark.asyncio
    async def test_unknown_style(self, sample_submission):
        with pytest.raises(PipelineError) as exc_info:
            await steps.design_scheme(mock_llm(), sample_submission, "baroque")
        assert exc_info.value.kind == ErrorKind.VALIDATION

    @pytest.mark.asyncio
    async def test_image_prompts(self, scheme, sample_submission):
        output = await steps.image_prompts(mock_llm(), scheme, sample_submission, LabelStyle.MODERN)
        assert [p.id for p in output.prompts] == ["background-mock", "decoration-mock"]
        assert output.prompts[0].aspect == "3:2"

    @pytest.mark.asyncio
    async def test_detailed_layout(self, scheme_with_assets, sample_submission):
        dsl = await steps.detailed_layout(
            mock_llm(), scheme_with_assets, sample_submission, LabelStyle.CLASSIC
        )
        assert isinstance(dsl, LabelDSL)
        assert dsl.palette == scheme_with_assets.palette
        assert dsl.get_element("producer_text").text == "Chateau Example"
        assert dsl.get_element("vintage_text").text == "2021"
        assert {e.asset_id for e in dsl.elements if e.type == "image"} == {
            "background-mock",
            "decoration-mock",
        }

    @pytest.mark.asyncio
    async def test_detailed_layout_requires_assets(self, scheme, sample_submission):
        with pytest.raises(PipelineError) as exc_info:
            await steps.detailed_layout(mock_llm(), scheme, sample_submission, LabelStyle.CLASSIC)
        assert exc_info.value.kind == ErrorKind.VALIDATION
        assert "Invalid input" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_detailed_layout_unrepairable_output(self, scheme_with_assets, sample_submission):
        bad = json.dumps(
            {
                "elements": [
                    {
                        "id": "only",
                        "type": "image",
                        "assetId": "background-mock",
                        "bounds": {"x": 0, "y": 0, "w": 1, "h": 1},
                    }
                ]
            }
        )
        backend = MockLLMBackend([bad, bad])
        with pytest.raises(PipelineError) as exc_info:
            await steps.detailed_layout(
                mock_llm(backend), scheme_with_assets, sample_submission, LabelStyle.CLASSIC
            )
        assert exc_info.value.kind == ErrorKind.VALIDATION
        assert len(backend.calls) == 2


# =============================================================================
# Image Generation
# =============================================================================


class CountingAdapter(MockImageAdapter):
    """Tracks the peak number of concurrent generations."""

    def __init__(self):
        super().__init__(delay=0.01)
        self.active = 0
        self.peak = 0

    async def generate(self, spec):
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            return await super().generate(spec)
        finally:
            self.active -= 1


class TestImageGeneration:
    """Tests for ImageGenerationService and the image-generate step."""

    @pytest.mark.asyncio
    async def test_generates_in_order(self):
        service = ImageGenerationService(
            MockImageAdapter(), InMemoryAliasStore(), InMemoryBlobStore(), retry_config=FAST_RETRY
        )
        specs = [prompt_spec("a", "3:2"), prompt_spec("b"), prompt_spec("c", "2:3")]
        batch = await service.generate_and_store("gen-1", specs)

        assert [asset.id for asset in batch.assets] == ["a", "b", "c"]
        assert (batch.assets[0].width, batch.assets[0].height) == (384, 256)
        assert (batch.assets[2].width, batch.assets[2].height) == (256, 384)
        assert batch.succeeded

    @pytest.mark.asyncio
    async def test_bounded_concurrency(self):
        adapter = CountingAdapter()
        service = ImageGenerationService(
            adapter, InMemoryAliasStore(), InMemoryBlobStore(), max_concurrent=2, retry_config=FAST_RETRY
        )
        await service.generate_and_store("gen-1", [prompt_spec(f"p{i}") for i in range(6)])
        assert adapter.peak <= 2
        assert len(adapter.calls) == 6

    @pytest.mark.asyncio
    async def test_partial_failure(self):
        adapter = MockImageAdapter(fail_ids={"b"})
        service = ImageGenerationService(
            adapter, InMemoryAliasStore(), InMemoryBlobStore(), retry_config=FAST_RETRY
        )
        batch = await service.generate_and_store("gen-1", [prompt_spec("a"), prompt_spec("b")])

        assert [asset.id for asset in batch.assets] == ["a"]
        assert batch.errors[0].prompt_id == "b"
        assert batch.errors[0].error["kind"] == ErrorKind.DATABASE.value
        assert not batch.succeeded

    @pytest.mark.unit
    def test_invalid_concurrency(self):
        with pytest.raises(ValueError):
            ImageGenerationService(MockImageAdapter(), InMemoryAliasStore(), InMemoryBlobStore(), max_concurrent=0)

    @pytest.mark.asyncio
    async def test_step_fails_without_any_image(self):
        service = ImageGenerationService(
            MockImageAdapter(fail_ids={"a"}), InMemoryAliasStore(), InMemoryBlobStore(), retry_config=FAST_RETRY
        )
        with pytest.raises(PipelineError) as exc_info:
            await steps.image_generate(service, "gen-1", [prompt_spec("a")])
        assert exc_info.value.kind == ErrorKind.PROCESSING
        assert "No images" in exc_info.value.message

    @pytest.mark.unit
    def test_attach_assets(self, scheme):
        from src.storage import ImageAsset

        asset = ImageAsset(id="a", url="memory://blobs/x.png", width=4, height=4, format="png", checksum="c" * 64)
        attached = steps.attach_assets(scheme, [asset])
        assert [a.id for a in attached.assets] == ["a"]
        assert scheme.assets == []


# =============================================================================
# Rendering
# =============================================================================


class TestPillowRenderer:
    """Tests for the local Pillow renderer."""

    @pytest.mark.asyncio
    async def test_renders_canvas_size(self, sample_dsl):
        image = await PillowRenderer().render(sample_dsl)
        metadata = detect_image_metadata(image.data)
        assert (metadata.width, metadata.height) == (750, 1000)
        assert image.format == "png"

    @pytest.mark.asyncio
    async def test_scale(self, sample_dsl):
        image = await PillowRenderer(scale=0.5).render(sample_dsl)
        assert (image.width, image.height) == (375, 500)

    @pytest.mark.unit
    def test_invalid_scale(self):
        with pytest.raises(ValueError):
            PillowRenderer(scale=10)

    @pytest.mark.asyncio
    async def test_background_color(self, sample_dsl):
        empty = sample_dsl.model_copy(update={"elements": []})
        image = await PillowRenderer().render(empty)
        with Image.open(io.BytesIO(image.data)) as rendered:
            assert rendered.convert("RGB").getpixel((5, 5)) == (245, 245, 220)

    @pytest.mark.asyncio
    async def test_uses_fetched_asset(self, sample_dsl_data, make_png):
        blobs = InMemoryBlobStore()
        await blobs.put("content/red.png", make_png(color=(255, 0, 0)), content_type="image/png")
        sample_dsl_data["assets"][0]["url"] = blobs.public_url("content/red.png")
        sample_dsl_data["elements"] = sample_dsl_data["elements"][:1]
        sample_dsl_data["elements"][0]["opacity"] = 1.0
        dsl = parse_label_dsl(sample_dsl_data)

        image = await PillowRenderer(AssetFetcher(blobs)).render(dsl)
        with Image.open(io.BytesIO(image.data)) as rendered:
            assert rendered.convert("RGB").getpixel((375, 500)) == (255, 0, 0)


class TestHTTPRenderer:
    """Tests for the render service client."""

    @pytest.mark.unit
    def test_requires_url(self, monkeypatch):
        monkeypatch.delenv("RENDERER_URL", raising=False)
        with pytest.raises(ValueError, match="RENDERER_URL"):
            HTTPRenderer()

    @pytest.mark.asyncio
    async def test_render(self, sample_dsl, make_png):
        png = make_png(20, 30)
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, content=png)

        renderer = HTTPRenderer("http://renderer.test/", transport=httpx.MockTransport(handler))
        image = await renderer.render(sample_dsl)

        assert seen["url"] == "http://renderer.test/render"
        assert seen["body"]["format"] == "png"
        assert seen["body"]["dsl"]["canvas"]["width"] == 750
        assert (image.width, image.height) == (20, 30)

    @pytest.mark.asyncio
    async def test_error_status(self, sample_dsl):
        transport = httpx.MockTransport(lambda request: httpx.Response(500, text="boom"))
        renderer = HTTPRenderer("http://renderer.test", transport=transport)
        with pytest.raises(RenderError) as exc_info:
            await renderer.render(sample_dsl)
        assert exc_info.value.status_code == 500
        assert exc_info.value.response_body == "boom"

    @pytest.mark.asyncio
    async def test_unreadable_image(self, sample_dsl):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, content=b"nope"))
        renderer = HTTPRenderer("http://renderer.test", transport=transport)
        with pytest.raises(RenderError, match="unreadable"):
            await renderer.render(sample_dsl)

    @pytest.mark.asyncio
    async def test_is_available(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200))
        assert await HTTPRenderer("http://renderer.test", transport=transport).is_available()


class TestAssetFetcher:
    """Tests for asset URL resolution."""

    @pytest.mark.asyncio
    async def test_blob_url(self):
        blobs = InMemoryBlobStore()
        await blobs.put("content/a.png", b"bytes", content_type="image/png")
        assert await AssetFetcher(blobs).fetch(blobs.public_url("content/a.png")) == b"bytes"

    @pytest.mark.asyncio
    async def test_file_url(self, tmp_path):
        path = tmp_path / "a.bin"
        path.write_bytes(b"local")
        assert await AssetFetcher().fetch(path.as_uri()) == b"local"

    @pytest.mark.asyncio
    async def test_unknown_scheme(self):
        assert await AssetFetcher().fetch("s3://bucket/key.png") is None


class TestRenderStep:
    """Tests for the render step."""

    @pytest.mark.asyncio
    async def test_stores_preview(self, sample_dsl):
        aliases, blobs = InMemoryAliasStore(), InMemoryBlobStore()
        preview = await steps.render(
            PillowRenderer(), sample_dsl, "gen-1", aliases=aliases, blobs=blobs, retry_config=FAST_RETRY
        )
        assert preview.preview_url.startswith("memory://blobs/content/")
        assert preview.format == "PNG"
        assert (preview.width, preview.height) == (750, 1000)
        assert (await aliases.get("gen-1", "render-preview")).url == preview.preview_url

    @pytest.mark.asyncio
    async def test_server_error_is_retried(self, sample_dsl, make_png):
        png = make_png(20, 30)
        statuses = [500, 200]

        def handler(request: httpx.Request) -> httpx.Response:
            status = statuses.pop(0)
            if status != 200:
                return httpx.Response(status, text="renderer crashed")
            return httpx.Response(200, content=png)

        renderer = HTTPRenderer("http://renderer.test", transport=httpx.MockTransport(handler))
        preview = await steps.render(
            renderer,
            sample_dsl,
            "gen-1",
            aliases=InMemoryAliasStore(),
            blobs=InMemoryBlobStore(),
            retry_config=FAST_RETRY,
        )
        assert statuses == []
        assert (preview.width, preview.height) == (20, 30)

    @pytest.mark.asyncio
    async def test_client_error_fails_fast(self, sample_dsl):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(400, text="bad dsl")

        renderer = HTTPRenderer("http://renderer.test", transport=httpx.MockTransport(handler))
        with pytest.raises(RenderError):
            await steps.render(
                renderer,
                sample_dsl,
                "gen-1",
                aliases=InMemoryAliasStore(),
                blobs=InMemoryBlobStore(),
                retry_config=FAST_RETRY,
            )
        assert len(calls) == 1


# =============================================================================
# Adapters
# =============================================================================


class FakeImages:
    def __init__(self, data=None, error=None):
        self.data = data
        self.error = error
        self.kwargs = None

    async def generate(self, **kwargs):
        self.kwargs = kwargs
        if self.error:
            raise self.error
        return SimpleNamespace(data=self.data)


class FakeCompletions:
    def __init__(self, content):
        self.content = content
        self.kwargs = None

    async def create(self, **kwargs):
        self.kwargs = kwargs
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


class TestAdapters:
    """Tests for the OpenAI image and vision adapters with fake clients."""

    @pytest.mark.unit
    def test_orientation(self):
        assert orientation_for("1:1") == "square"
        assert orientation_for("16:9") == "landscape"
        assert orientation_for("3:4") == "portrait"

    @pytest.mark.unit
    def test_enhance_prompt(self):
        spec = ImagePromptSpec(
            id="bg", purpose="background", prompt="Vineyard", negative_prompt="people", aspect="3:2"
        )
        prompt = enhance_image_prompt(spec)
        assert prompt.startswith("Vineyard.")
        assert "No text or lettering." in prompt
        assert prompt.endswith("Avoid: people")

    @pytest.mark.asyncio
    async def test_image_adapter_decodes_b64(self, make_png):
        images = FakeImages(data=[SimpleNamespace(b64_json=base64.b64encode(make_png(12, 8)).decode())])
        adapter = OpenAIImageAdapter(model="gpt-image-1", client=SimpleNamespace(images=images))
        image = await adapter.generate(prompt_spec("bg", "3:2", "background"))

        assert (image.width, image.height) == (12, 8)
        assert image.model == "gpt-image-1"
        assert images.kwargs["size"] == "1536x1024"
        assert "response_format" not in images.kwargs

    @pytest.mark.unit
    def test_dalle_sizes(self):
        adapter = OpenAIImageAdapter(model="dall-e-3", client=SimpleNamespace(images=FakeImages()))
        assert adapter.size_for(prompt_spec("a", "2:3")) == "1024x1792"

    @pytest.mark.asyncio
    async def test_image_adapter_rate_limit(self):
        images = FakeImages(error=Exception("Error code: 429 - rate limit exceeded"))
        adapter = OpenAIImageAdapter(model="gpt-image-1", client=SimpleNamespace(images=images))
        with pytest.raises(RateLimitError):
            await adapter.generate(prompt_spec("a"))

    @pytest.mark.asyncio
    async def test_image_adapter_empty_response(self):
        adapter = OpenAIImageAdapter(model="gpt-image-1", client=SimpleNamespace(images=FakeImages(data=[])))
        with pytest.raises(InvalidResponseError):
            await adapter.generate(prompt_spec("a"))

    @pytest.mark.asyncio
    async def test_vision_refiner(self, sample_submission, sample_dsl):
        content = json.dumps(
            {
                "operations": [
                    {"type": "update_element", "elementId": "vintage_text", "property": "fontSize", "value": 36}
                ],
                "reasoning": "Vintage is too small",
                "confidence": 0.7,
            }
        )
        completions = FakeCompletions(content)
        client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
        refiner = OpenAIVisionRefiner(model="gpt-4o", client=client)
        refine_input = RefineInput(
            submission=sample_submission, current_dsl=sample_dsl, preview_url="https://cdn.example.com/p.png"
        )

        output = await refiner.propose_edits(refine_input)

        assert output.operations[0].element_id == "vintage_text"
        assert output.confidence == 0.7
        parts = completions.kwargs["messages"][0]["content"]
        assert parts[1]["image_url"] == {"url": "https://cdn.example.com/p.png", "detail": "high"}
        assert completions.kwargs["response_format"] == {"type": "json_object"}

    @pytest.mark.asyncio
    async def test_vision_refiner_inlines_local_preview(self, sample_submission, sample_dsl, make_png):
        blobs = InMemoryBlobStore()
        await blobs.put("content/p.png", make_png(), content_type="image/png")
        completions = FakeCompletions('{"operations": []}')
        client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
        refiner = OpenAIVisionRefiner(model="gpt-4o", client=client, fetcher=AssetFetcher(blobs))
        refine_input = RefineInput(
            submission=sample_submission, current_dsl=sample_dsl, preview_url=blobs.public_url("content/p.png")
        )

        await refiner.propose_edits(refine_input)

        url = completions.kwargs["messages"][0]["content"][1]["image_url"]["url"]
        assert url.startswith("data:image/png;base64,")

    @pytest.mark.asyncio
    async def test_vision_refiner_invalid_reply(self, sample_submission, sample_dsl):
        client = SimpleNamespace(chat=SimpleNamespace(completions=FakeCompletions("not json at all")))
        refiner = OpenAIVisionRefiner(model="gpt-4o", client=client)
        refine_input = RefineInput(
            submission=sample_submission, current_dsl=sample_dsl, preview_url="https://cdn.example.com/p.png"
        )
        with pytest.raises(InvalidResponseError):
            await refiner.propose_edits(refine_input)

    @pytest.mark.unit
    def test_refine_prompt_lists_elements(self, sample_submission, sample_dsl):
        refine_input = RefineInput(
            submission=sample_submission,
            current_dsl=sample_dsl,
            preview_url="https://cdn.example.com/p.png",
            refinement_feedback="Make the vintage bigger",
        )
        prompt = build_refine_prompt(refine_input)
        assert '"producer_text" (type: "text", text: "Chateau Example")' in prompt
        assert "Make the vintage bigger" in prompt


# =============================================================================
# Refine Step
# =============================================================================


class TestRefineStep:
    """Tests for the refine step."""

    @pytest.mark.asyncio
    async def test_text_llm_fallback(self, sample_submission, sample_dsl):
        output = await steps.refine(mock_llm(), sample_submission, sample_dsl, "memory://blobs/p.png")
        assert output.operations == []
        assert output.reasoning == MOCK_REFINE_REASONING

    @pytest.mark.asyncio
    async def test_vision_refiner_preferred(self, sample_submission, sample_dsl):
        backend = MockLLMBackend(responder=mock_llm_responder)
        refiner = MockVisionRefiner(
            [UpdateElementOperation(element_id="producer_text", property="color", value="accent")]
        )
        output = await steps.refine(
            mock_llm(backend), sample_submission, sample_dsl, "memory://blobs/p.png", vision_refiner=refiner
        )
        assert len(output.operations) == 1
        assert backend.calls == []
        assert refiner.inputs[0].preview_url == "memory://blobs/p.png"

    @pytest.mark.asyncio
    async def test_vision_refiner_rate_limit_is_retried(self, sample_submission, sample_dsl):
        class RateLimitedOnce(MockVisionRefiner):
            async def propose_edits(self, refine_input):
                if not self.inputs:
                    self.inputs.append(refine_input)
                    raise RateLimitError("rate limit exceeded (429)")
                return await super().propose_edits(refine_input)

        refiner = RateLimitedOnce(
            [UpdateElementOperation(element_id="producer_text", property="color", value="accent")]
        )
        output = await steps.refine(
            mock_llm(),
            sample_submission,
            sample_dsl,
            "memory://blobs/p.png",
            vision_refiner=refiner,
            retry_config=FAST_RETRY,
        )
        assert len(refiner.inputs) == 2
        assert len(output.operations) == 1

    @pytest.mark.asyncio
    async def test_vision_refiner_invalid_reply_not_retried(self, sample_submission, sample_dsl):
        class InvalidReply(MockVisionRefiner):
            async def propose_edits(self, refine_input):
                self.inputs.append(refine_input)
                raise PipelineError("Vision model returned no JSON", kind=ErrorKind.VALIDATION)

        refiner = InvalidReply()
        with pytest.raises(PipelineError):
            await steps.refine(
                mock_llm(),
                sample_submission,
                sample_dsl,
                "memory://blobs/p.png",
                vision_refiner=refiner,
                retry_config=FAST_RETRY,
            )
        assert len(refiner.inputs) == 1


# =============================================================================
# Configuration
# =============================================================================


class TestPipelineConfig:
    """Tests for create_pipeline_config."""

    @pytest.mark.unit
    def test_mock_defaults(self, monkeypatch):
        monkeypatch.delenv("RENDERER_URL", raising=False)
        config = create_pipeline_config(use_mocks=True)

        assert config.mocks
        assert isinstance(config.aliases, InMemoryAliasStore)
        assert isinstance(config.blobs, InMemoryBlobStore)
        assert isinstance(config.renderer, PillowRenderer)
        assert isinstance(config.image_adapter, MockImageAdapter)
        assert isinstance(config.vision_refiner, MockVisionRefiner)
        assert config.steps is config.aliases

    @pytest.mark.unit
    def test_renderer_url(self):
        config = create_pipeline_config(use_mocks=True, renderer_url="http://renderer.test")
        assert isinstance(config.renderer, HTTPRenderer)

    @pytest.mark.unit
    def test_without_vision(self):
        assert create_pipeline_config(use_mocks=True, vision=False).vision_refiner is None

    @pytest.mark.unit
    def test_persistent_stores(self, tmp_path):
        config = create_pipeline_config(
            use_mocks=True, persistent=True, db_path=tmp_path / "db" / "labels.db", blob_dir=tmp_path / "blobs"
        )
        try:
            assert isinstance(config.aliases, SQLiteAliasStore)
            assert isinstance(config.blobs, LocalBlobStore)
            assert (tmp_path / "db" / "labels.db").exists()
        finally:
            config.aliases.close()

    @pytest.mark.unit
    def test_limits_from_arguments(self):
        config = create_pipeline_config(use_mocks=True, max_concurrency=5, max_iterations=0)
        assert (config.max_concurrency, config.max_iterations) == (5, 0)

    @pytest.mark.unit
    def test_invalid_limits(self):
        with pytest.raises(ValueError):
            mock_config(max_concurrency=0)
        with pytest.raises(ValueError):
            mock_config(max_iterations=-1)


# =============================================================================
# Orchestrator
# =============================================================================


class TestStepTracker:
    """Tests for step status tracking."""

    @pytest.mark.asyncio
    async def test_lifecycle(self):
        tracker = StepTracker("gen-1")
        await tracker.initialize(list(PipelineStep))
        await tracker.start(PipelineStep.RENDER)
        await tracker.fail(PipelineStep.RENDER, PipelineError("down", kind=ErrorKind.NETWORK))
        await tracker.start(PipelineStep.RENDER)
        await tracker.complete(PipelineStep.RENDER)

        record = await tracker.store.get_step("gen-1", PipelineStep.RENDER.value)
        assert record.status == StepStatus.COMPLETED
        assert record.attempts == 2
        assert record.error is None
        assert record.completed_at is not None
        statuses = await tracker.statuses()
        assert statuses[PipelineStep.DESIGN_SCHEME.value] == StepStatus.PENDING


class TestLabelPipeline:
    """End-to-end runs against the mock adapters."""

    @pytest.mark.asyncio
    async def test_full_run(self, sample_submission):
        config = mock_config(vision_refiner=MockVisionRefiner())
        result = await LabelPipeline(config).run(sample_submission, LabelStyle.CLASSIC, "gen-1")

        assert result.generation_id == "gen-1"
        assert [a.id for a in result.assets] == ["background-mock", "decoration-mock"]
        assert result.image_errors == []
        assert result.dsl.get_element("wine_name_text").text == "Reserve Rouge"
        assert result.preview.preview_url.startswith("memory://blobs/content/")
        assert result.refinement.stop_reason.value == "no_operations"

        statuses = {r.step: r.status for r in await config.aliases.list_steps("gen-1")}
        assert statuses == {step.value: StepStatus.COMPLETED for step in PipelineStep}

    @pytest.mark.asyncio
    async def test_refinement_updates_label(self, sample_submission):
        refiner = MockVisionRefiner(
            [UpdateElementOperation(element_id="vintage_text", property="color", value="#722F37")]
        )
        config = mock_config(vision_refiner=refiner, max_iterations=1)
        result = await LabelPipeline(config).run(sample_submission, "classic", "gen-2")

        assert result.dsl.get_element("vintage_text").color == "primary"
        assert result.refinement.applied_edit_count == 1
        assert result.preview.preview_url == result.refinement.preview_url

    @pytest.mark.asyncio
    async def test_text_refine_without_vision(self, sample_submission):
        backend = MockLLMBackend(responder=mock_llm_responder)
        config = mock_config(llm=mock_llm(backend))
        result = await LabelPipeline(config).run(sample_submission, LabelStyle.FUNKY)

        assert result.refinement.stop_reason.value == "no_operations"
        assert any("design critic" in call for call in backend.calls)

    @pytest.mark.asyncio
    async def test_skip_refinement(self, sample_submission):
        config = mock_config()
        result = await LabelPipeline(config).run(sample_submission, "modern", "gen-3", refine=False)
        assert result.refinement is None
        record = await config.aliases.get_step("gen-3", PipelineStep.REFINE.value)
        assert record.status == StepStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_partial_image_failure(self, sample_submission):
        config = mock_config(image_adapter=MockImageAdapter(fail_ids={"decoration-mock"}))
        result = await LabelPipeline(config).run(sample_submission, "elegant", refine=False)

        assert [a.id for a in result.assets] == ["background-mock"]
        assert result.image_errors[0].prompt_id == "decoration-mock"
        assert {e.asset_id for e in result.dsl.elements if e.type == "image"} == {"background-mock"}

    @pytest.mark.asyncio
    async def test_failed_step_is_recorded(self, sample_submission):
        adapter = MockImageAdapter(fail_ids={"background-mock", "decoration-mock"})
        config = mock_config(image_adapter=adapter)

        with pytest.raises(PipelineError) as exc_info:
            await LabelPipeline(config).run(sample_submission, "classic", "gen-4")

        assert exc_info.value.context["step"] == PipelineStep.IMAGE_GENERATE.value
        records = {r.step: r for r in await config.aliases.list_steps("gen-4")}
        assert records["design-scheme"].status == StepStatus.COMPLETED
        assert records["image-generate"].status == StepStatus.FAILED
        assert records["image-generate"].error["kind"] == ErrorKind.PROCESSING.value
        assert records["render"].status == StepStatus.PENDING

    @pytest.mark.asyncio
    async def test_concurrent_runs_are_isolated(self, sample_submission):
        config = mock_config(max_iterations=0)
        pipeline = LabelPipeline(config)
        first, second = await asyncio.gather(
            pipeline.run(sample_submission, "classic", "gen-a"),
            pipeline.run(sample_submission, "classic", "gen-b"),
        )
        assert first.preview.preview_url == second.preview.preview_url
        assert len(await config.aliases.list_steps("gen-a")) == len(PipelineStep)
