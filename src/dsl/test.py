"""Tests for the label DSL model, validation and colour helpers."""

import copy
import json

import pytest

from .color import closest_palette_role, color_distance, hex_to_rgb, normalize_hex_color
from .lib import (
    Asset,
    Bounds,
    DesignScheme,
    ImageElement,
    LabelDSL,
    PaletteRole,
    TextElement,
    design_scheme_to_label_dsl,
)
from .validation import (
    DSLValidationError,
    dsl_to_dict,
    is_valid,
    parse_label_dsl,
    serialize_label_dsl,
    validate_label_dsl,
)

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def minimal_data(sample_dsl_data):
    """DSL with only required fields (no assets/elements, no dpi)."""
    data = copy.deepcopy(sample_dsl_data)
    del data["assets"]
    del data["elements"]
    return data


# =============================================================================
# Parsing and defaults
# =============================================================================


class TestParsing:
    """Tests for parse_label_dsl and default injection."""

    @pytest.mark.unit
    def test_parse_sample(self, sample_dsl_data):
        dsl = parse_label_dsl(sample_dsl_data)
        assert dsl.canvas.width == 750
        assert len(dsl.elements) == 4
        assert isinstance(dsl.elements[0], ImageElement)
        assert isinstance(dsl.elements[1], TextElement)

    @pytest.mark.unit
    def test_defaults_injected(self, minimal_data):
        dsl = parse_label_dsl(minimal_data)
        assert dsl.canvas.dpi == 144
        assert dsl.assets == []
        assert dsl.elements == []

    @pytest.mark.unit
    def test_element_defaults(self, sample_dsl):
        vintage = sample_dsl.get_element("vintage_text")
        assert vintage.align == "left"
        assert vintage.line_height == 1.2
        assert vintage.max_lines == 1
        assert vintage.text_transform == "none"
        background = sample_dsl.get_element("background")
        assert background.opacity == 1.0
        assert background.rotation == 0.0

    @pytest.mark.unit
    def test_parse_json_string(self, sample_dsl_data):
        dsl = parse_label_dsl(json.dumps(sample_dsl_data))
        assert dsl.palette.primary == "#722F37"

    @pytest.mark.unit
    def test_round_trip_minimal(self, minimal_data):
        first = parse_label_dsl(minimal_data)
        second = parse_label_dsl(serialize_label_dsl(first))
        assert second == first
        assert dsl_to_dict(second)["canvas"]["dpi"] == 144

    @pytest.mark.unit
    def test_round_trip_full(self, sample_dsl):
        text = serialize_label_dsl(sample_dsl)
        assert '"assetId"' in text
        assert '"fontSize"' in text
        assert parse_label_dsl(text) == sample_dsl


# =============================================================================
# Structural validation
# =============================================================================


class TestStructuralValidation:
    """Tests for schema-level rejection."""

    @pytest.mark.unit
    def test_invalid_hex_rejected(self, sample_dsl_data):
        sample_dsl_data["palette"]["primary"] = "red"
        with pytest.raises(DSLValidationError) as exc_info:
            parse_label_dsl(sample_dsl_data)
        assert any("palette" in issue.location for issue in exc_info.value.issues)

    @pytest.mark.unit
    def test_bounds_extent_rejected(self, sample_dsl_data):
        sample_dsl_data["elements"][1]["bounds"] = {"x": 0.5, "y": 0.1, "w": 0.6, "h": 0.1}
        with pytest.raises(DSLValidationError, match="x \\+ w"):
            parse_label_dsl(sample_dsl_data)

    @pytest.mark.unit
    def test_bounds_out_of_range_rejected(self):
        with pytest.raises(ValueError):
            Bounds(x=-0.1, y=0, w=0.5, h=0.5)

    @pytest.mark.unit
    def test_bounds_sum_tolerance(self):
        bounds = Bounds(x=0.7, y=0.1, w=0.3, h=0.9)
        assert bounds.x + bounds.w == pytest.approx(1.0)

    @pytest.mark.unit
    def test_z_range(self, sample_dsl_data):
        sample_dsl_data["elements"][1]["z"] = 1001
        with pytest.raises(DSLValidationError):
            parse_label_dsl(sample_dsl_data)

    @pytest.mark.unit
    def test_duplicate_ids_rejected(self, sample_dsl_data):
        sample_dsl_data["elements"][2]["id"] = "producer_text"
        with pytest.raises(DSLValidationError, match="Duplicate element id"):
            parse_label_dsl(sample_dsl_data)

    @pytest.mark.unit
    def test_unknown_element_type_rejected(self, sample_dsl_data):
        sample_dsl_data["elements"][1]["type"] = "video"
        with pytest.raises(DSLValidationError):
            parse_label_dsl(sample_dsl_data)

    @pytest.mark.unit
    def test_max_lines_range(self, sample_dsl_data):
        sample_dsl_data["elements"][1]["maxLines"] = 11
        with pytest.raises(DSLValidationError):
            parse_label_dsl(sample_dsl_data)


# =============================================================================
# Cross-reference validation
# =============================================================================


class TestCrossReferences:
    """Tests for image asset references."""

    @pytest.mark.unit
    def test_missing_asset_rejected(self, sample_dsl_data):
        sample_dsl_data["elements"][0]["assetId"] = "ghost"
        with pytest.raises(DSLValidationError) as exc_info:
            parse_label_dsl(sample_dsl_data)
        issue = exc_info.value.issues[0]
        assert issue.error_type == "missing_asset"
        assert "Asset with id 'ghost' not found" in issue.message

    @pytest.mark.unit
    def test_validate_reports_constructed_value(self, sample_dsl):
        broken = sample_dsl.model_copy(deep=True)
        broken.assets = []
        issues = validate_label_dsl(broken)
        assert [i.location for i in issues] == ["background"]
        assert not is_valid(broken)

    @pytest.mark.unit
    def test_valid_sample(self, sample_dsl):
        assert is_valid(sample_dsl)


# =============================================================================
# Design scheme promotion
# =============================================================================


class TestDesignScheme:
    """Tests for turning a design scheme into a base DSL."""

    @pytest.mark.unit
    def test_promote_with_assets(self, minimal_data):
        scheme = DesignScheme.model_validate(minimal_data)
        asset = Asset(id="hero", url="https://x/y.png", width=10, height=10)
        dsl = design_scheme_to_label_dsl(scheme, [asset])
        assert isinstance(dsl, LabelDSL)
        assert dsl.assets[0].id == "hero"
        assert dsl.elements == []
        assert dsl.palette == scheme.palette


# =============================================================================
# Colour helpers
# =============================================================================


class TestColor:
    """Tests for hex normalization and palette matching."""

    @pytest.mark.unit
    def test_normalize_short_hex(self):
        assert normalize_hex_color("abc") == "#AABBCC"
        assert normalize_hex_color("#d4af37") == "#D4AF37"

    @pytest.mark.unit
    def test_normalize_rejects_garbage(self):
        with pytest.raises(ValueError, match="Invalid hex color"):
            normalize_hex_color("#12345G")

    @pytest.mark.unit
    def test_hex_to_rgb(self):
        assert hex_to_rgb("#FF8000") == (255, 128, 0)

    @pytest.mark.unit
    def test_distance_identity(self):
        assert color_distance("#722F37", "#722F37") == pytest.approx(0.0)
        assert color_distance("#000000", "#FFFFFF") > 90

    @pytest.mark.unit
    def test_closest_role(self, sample_dsl):
        assert closest_palette_role("#D0B040", sample_dsl.palette) == PaletteRole.SECONDARY
        assert closest_palette_role("#700000", sample_dsl.palette) == PaletteRole.PRIMARY
        assert closest_palette_role("#FFFFF0", sample_dsl.palette) == PaletteRole.BACKGROUND

    @pytest.mark.unit
    def test_closest_role_invalid_defaults_primary(self, sample_dsl):
        assert closest_palette_role("not-a-colour", sample_dsl.palette) == PaletteRole.PRIMARY
