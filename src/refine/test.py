"""Tests for the refinement loop."""

import json

import pytest

from src.edits import EditLimits, UpdateElementOperation, UpdatePaletteOperation
from src.errors import ErrorKind, RetryConfig
from src.llm import MockLLMBackend, RateLimitError, StructuredLLM, mock_model_configs
from src.pipeline import (
    MockImageAdapter,
    MockVisionRefiner,
    PillowRenderer,
    PipelineConfig,
    RenderError,
    mock_llm_responder,
)
from src.storage import InMemoryAliasStore, InMemoryBlobStore

from .lib import StopReason, run_refinement

FAST_RETRY = RetryConfig(max_attempts=2, base_delay=0.0, jitter=False)
PREVIEW = "memory://blobs/content/initial.png"


class FailingRefiner:
    def __init__(self):
        self.calls = 0

    async def propose_edits(self, refine_input):
        self.calls += 1
        raise TimeoutError("vision request timed out")


class FailingRenderer:
    def __init__(self):
        self.calls = 0

    async def render(self, dsl):
        self.calls += 1
        raise RenderError("Renderer returned 500", status_code=500)


def make_config(refiner=None, renderer=None, backend=None) -> PipelineConfig:
    backend = backend or MockLLMBackend(responder=mock_llm_responder)
    aliases = InMemoryAliasStore()
    return PipelineConfig(
        llm=StructuredLLM(
            model_configs=mock_model_configs(),
            backend_factory=lambda _config: backend,
            retry_config=FAST_RETRY,
        ),
        image_adapter=MockImageAdapter(),
        renderer=renderer or PillowRenderer(scale=0.2),
        aliases=aliases,
        blobs=InMemoryBlobStore(),
        steps=aliases,
        vision_refiner=refiner,
        retry=FAST_RETRY,
    )


def recolor(element_id: str, role: str) -> UpdateElementOperation:
    return UpdateElementOperation(element_id=element_id, property="color", value=role)


class TestStopReasons:
    """Each way the loop can end."""

    @pytest.mark.asyncio
    async def test_no_operations(self, sample_submission, sample_dsl):
        refiner = MockVisionRefiner()
        result = await run_refinement(sample_submission, sample_dsl, PREVIEW, make_config(refiner))

        assert result.stop_reason == StopReason.NO_OPERATIONS
        assert result.iterations == 1
        assert result.dsl is sample_dsl
        assert result.preview_url == PREVIEW
        assert result.preview is None
        assert result.history[0].confidence == 0.85

    @pytest.mark.asyncio
    async def test_max_iterations(self, sample_submission, sample_dsl):
        refiner = MockVisionRefiner([recolor("producer_text", "accent")])
        result = await run_refinement(
            sample_submission, sample_dsl, PREVIEW, make_config(refiner), max_iterations=2
        )

        assert result.stop_reason == StopReason.MAX_ITERATIONS
        assert result.iterations == 2
        assert result.applied_edit_count == 2
        assert result.dsl.get_element("producer_text").color == "accent"
        assert sample_dsl.get_element("producer_text").color == "primary"
        assert result.preview_url.startswith("memory://blobs/content/")
        assert result.preview.preview_url == result.preview_url
        assert len(refiner.inputs) == 2
        assert refiner.inputs[1].preview_url == result.history[0].preview_url

    @pytest.mark.asyncio
    async def test_zero_iterations(self, sample_submission, sample_dsl):
        refiner = MockVisionRefiner([recolor("producer_text", "accent")])
        result = await run_refinement(
            sample_submission, sample_dsl, PREVIEW, make_config(refiner), max_iterations=0
        )
        assert result.stop_reason == StopReason.MAX_ITERATIONS
        assert result.iterations == 0
        assert refiner.inputs == []

    @pytest.mark.asyncio
    async def test_no_edits(self, sample_submission, sample_dsl):
        refiner = MockVisionRefiner(
            [UpdateElementOperation(element_id="producer_text", property="text", value="New")]
        )
        result = await run_refinement(sample_submission, sample_dsl, PREVIEW, make_config(refiner))

        assert result.stop_reason == StopReason.NO_EDITS
        assert result.history[0].operation_count == 1
        assert result.history[0].edit_count == 0

    @pytest.mark.asyncio
    async def test_nothing_applied(self, sample_submission, sample_dsl):
        refiner = MockVisionRefiner([recolor("background", "accent")])
        result = await run_refinement(sample_submission, sample_dsl, PREVIEW, make_config(refiner))

        assert result.stop_reason == StopReason.NOTHING_APPLIED
        assert result.failed_edit_count == 1
        assert result.applied_edit_count == 0
        assert result.dsl is sample_dsl

    @pytest.mark.asyncio
    async def test_proposal_failed(self, sample_submission, sample_dsl):
        refiner = FailingRefiner()
        result = await run_refinement(sample_submission, sample_dsl, PREVIEW, make_config(refiner))

        assert result.stop_reason == StopReason.PROPOSAL_FAILED
        assert result.history[0].error["kind"] == ErrorKind.NETWORK.value
        assert result.dsl is sample_dsl
        assert refiner.calls == FAST_RETRY.max_attempts

    @pytest.mark.asyncio
    async def test_render_failed_keeps_previous_label(self, sample_submission, sample_dsl):
        renderer = FailingRenderer()
        refiner = MockVisionRefiner([recolor("producer_text", "accent")])
        result = await run_refinement(
            sample_submission, sample_dsl, PREVIEW, make_config(refiner, renderer)
        )

        assert result.stop_reason == StopReason.RENDER_FAILED
        assert result.dsl is sample_dsl
        assert result.preview_url == PREVIEW
        assert result.applied_edit_count == 0
        assert result.history[0].applied == 1
        assert "500" in result.history[0].error["message"]
        assert result.history[0].error["kind"] == ErrorKind.PROCESSING.value
        assert renderer.calls == FAST_RETRY.max_attempts


class TestProposals:
    """Proposal sources and conversion."""

    @pytest.mark.asyncio
    async def test_feedback_reaches_refiner(self, sample_submission, sample_dsl):
        refiner = MockVisionRefiner()
        await run_refinement(
            sample_submission, sample_dsl, PREVIEW, make_config(refiner), feedback="Bigger vintage"
        )
        assert refiner.inputs[0].refinement_feedback == "Bigger vintage"

    @pytest.mark.asyncio
    async def test_text_llm_proposals(self, sample_submission, sample_dsl):
        reply = json.dumps(
            {
                "operations": [
                    {"type": "update_element", "elementId": "year-text", "property": "fontSize", "value": 40}
                ],
                "reasoning": "Vintage should stand out",
                "confidence": 0.6,
            }
        )
        backend = MockLLMBackend([reply])
        result = await run_refinement(
            sample_submission, sample_dsl, PREVIEW, make_config(backend=backend), max_iterations=1
        )

        assert result.stop_reason == StopReason.MAX_ITERATIONS
        assert result.dsl.get_element("vintage_text").font_size == 40
        assert result.history[0].reasoning == "Vintage should stand out"
        assert "design critic" in backend.calls[0]

    @pytest.mark.asyncio
    async def test_palette_operation(self, sample_submission, sample_dsl):
        refiner = MockVisionRefiner([UpdatePaletteOperation(target="primary", value="#2F4F2F")])
        result = await run_refinement(
            sample_submission, sample_dsl, PREVIEW, make_config(refiner), max_iterations=1
        )
        assert result.dsl.get_element("producer_text").color == "accent"

    @pytest.mark.asyncio
    async def test_limits_reject_excess_edits(self, sample_submission, sample_dsl):
        refiner = MockVisionRefiner(
            [recolor("producer_text", "accent"), recolor("vintage_text", "primary")]
        )
        result = await run_refinement(
            sample_submission,
            sample_dsl,
            PREVIEW,
            make_config(refiner),
            max_iterations=1,
            limits=EditLimits(max_edits=1),
        )
        assert result.applied_edit_count == 1
        assert result.rejected_edit_count == 1
        assert result.dsl.get_element("vintage_text").color == "accent"

    @pytest.mark.asyncio
    async def test_rate_limited_refiner_is_retried(self, sample_submission, sample_dsl):
        class RateLimitedOnce(MockVisionRefiner):
            async def propose_edits(self, refine_input):
                if not self.inputs:
                    self.inputs.append(refine_input)
                    raise RateLimitError("rate limit exceeded (429)")
                return await super().propose_edits(refine_input)

        refiner = RateLimitedOnce([recolor("producer_text", "accent")])
        result = await run_refinement(
            sample_submission, sample_dsl, PREVIEW, make_config(refiner), max_iterations=1
        )

        assert len(refiner.inputs) == 2
        assert result.stop_reason == StopReason.MAX_ITERATIONS
        assert result.applied_edit_count == 1
        assert result.dsl.get_element("producer_text").color == "accent"


class TestMalformedProposalValues:
    """Model-supplied values that cannot become edits end the loop cleanly."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "value",
        [{"x": None}, {"x": "left"}, {"w": float("inf")}, {"y": float("nan")}, {"h": [0.2]}],
    )
    async def test_invalid_bounds(self, sample_submission, sample_dsl, value):
        refiner = MockVisionRefiner(
            [UpdateElementOperation(element_id="vintage_text", property="bounds", value=value)]
        )
        result = await run_refinement(sample_submission, sample_dsl, PREVIEW, make_config(refiner))

        assert result.stop_reason == StopReason.NO_EDITS
        assert result.history[0].edit_count == 0
        assert result.dsl is sample_dsl
        assert result.preview_url == PREVIEW

    @pytest.mark.asyncio
    async def test_infinite_font_size_from_llm(self, sample_submission, sample_dsl):
        reply = (
            '{"operations": [{"type": "update_element", "elementId": "vintage_text",'
            ' "property": "fontSize", "value": Infinity}], "reasoning": "Huge", "confidence": 0.4}'
        )
        backend = MockLLMBackend([reply])
        result = await run_refinement(
            sample_submission, sample_dsl, PREVIEW, make_config(backend=backend), max_iterations=1
        )

        assert result.stop_reason == StopReason.NO_EDITS
        assert result.dsl.get_element("vintage_text").font_size == 28

    @pytest.mark.asyncio
    async def test_invalid_value_skipped_alongside_valid_one(self, sample_submission, sample_dsl):
        refiner = MockVisionRefiner(
            [
                UpdateElementOperation(element_id="vintage_text", property="bounds", value={"x": None}),
                recolor("producer_text", "accent"),
            ]
        )
        result = await run_refinement(
            sample_submission, sample_dsl, PREVIEW, make_config(refiner), max_iterations=1
        )

        assert result.stop_reason == StopReason.MAX_ITERATIONS
        assert result.history[0].edit_count == 1
        assert result.dsl.get_element("producer_text").color == "accent"
