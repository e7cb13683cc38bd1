"""Tests for edit validation, clamping, application and proposal conversion."""

import pytest

from src.dsl import Bounds, PaletteRole, is_valid

from .apply import apply_edits, refine_label
from .convert import convert_operations, parse_font_size, resolve_element_id
from .lib import (
    EditLimits,
    MoveEdit,
    RecolorEdit,
    ReorderEdit,
    ResizeEdit,
    UpdateFontSizeEdit,
    clamp_bounds,
    edit_to_dict,
    parse_edit,
    validate_and_clamp_edits,
)
from .operations import UpdatePaletteOperation

IDS = ["background", "producer_text", "vintage_text", "divider"]


# =============================================================================
# Parsing
# =============================================================================


class TestParseEdit:
    """Tests for the edit union."""

    @pytest.mark.unit
    def test_discriminates_on_op(self):
        assert isinstance(parse_edit({"op": "move", "id": "a", "dx": 0, "dy": 0}), MoveEdit)
        assert isinstance(parse_edit({"op": "recolor", "id": "a", "color": "accent"}), RecolorEdit)

    @pytest.mark.unit
    def test_font_size_wire_name(self):
        edit = parse_edit({"op": "update_font_size", "id": "a", "fontSize": 20})
        assert edit.font_size == 20
        assert edit_to_dict(edit)["fontSize"] == 20

    @pytest.mark.unit
    def test_bad_role_rejected(self):
        with pytest.raises(ValueError):
            parse_edit({"op": "recolor", "id": "a", "color": "#FF0000"})


# =============================================================================
# Validation and clamping
# =============================================================================


class TestValidateAndClamp:
    """Tests for validate_and_clamp_edits."""

    @pytest.mark.unit
    def test_move_clamp_example(self):
        result = validate_and_clamp_edits(
            [{"op": "move", "id": "e1", "dx": 0.3, "dy": -0.25}], ["e1"]
        )
        assert len(result.valid_edits) == 1
        assert result.valid_edits[0].dx == 0.2
        assert result.valid_edits[0].dy == -0.2
        assert len(result.clamped_edits) == 1
        assert result.clamped_edits[0].original.dx == 0.3
        assert result.rejected_edits == []

    @pytest.mark.unit
    def test_clamp_preserves_sign_and_magnitude(self):
        raw = [
            {"op": "move", "id": "e1", "dx": -5.0, "dy": 0.1},
            {"op": "resize", "id": "e1", "dw": 0.21, "dh": -0.9},
        ]
        result = validate_and_clamp_edits(raw, ["e1"])
        move, resize = result.valid_edits
        assert (move.dx, move.dy) == (-0.2, 0.1)
        assert (resize.dw, resize.dh) == (0.2, -0.2)
        for edit in result.valid_edits:
            for value in edit.model_dump(include={"dx", "dy", "dw", "dh"}).values():
                assert abs(value) <= 0.2

    @pytest.mark.unit
    def test_within_limits_unchanged(self):
        result = validate_and_clamp_edits([{"op": "move", "id": "e1", "dx": 0.1, "dy": -0.2}], ["e1"])
        assert result.clamped_edits == []
        assert result.valid_edits[0].dx == 0.1

    @pytest.mark.unit
    def test_reorder_z_clamped(self):
        result = validate_and_clamp_edits([{"op": "reorder", "id": "e1", "z": 5000}], ["e1"])
        assert result.valid_edits[0].z == 1000
        assert "Z-index clamped" in result.clamped_edits[0].reason

    @pytest.mark.unit
    def test_evaluates_every_candidate(self):
        raw = [
            {"op": "spin", "id": "e1"},
            {"op": "move", "id": "ghost", "dx": 0, "dy": 0},
            {"op": "recolor", "id": "e1", "color": "accent"},
        ]
        result = validate_and_clamp_edits(raw, ["e1"])
        assert len(result.valid_edits) == 1
        reasons = [r.reason for r in result.rejected_edits]
        assert reasons[0].startswith("Schema validation failed")
        assert reasons[1] == "Element ID 'ghost' does not exist"

    @pytest.mark.unit
    def test_max_edits_counts_accepted(self):
        raw = [
            {"op": "move", "id": "ghost", "dx": 0, "dy": 0},
            {"op": "move", "id": "e1", "dx": 0.1, "dy": 0},
            {"op": "move", "id": "e1", "dx": 0.5, "dy": 0},
            {"op": "move", "id": "e1", "dx": 0.1, "dy": 0},
        ]
        result = validate_and_clamp_edits(raw, ["e1"], EditLimits(max_edits=2))
        assert len(result.valid_edits) == 2
        assert result.rejected_edits[-1].reason == "Exceeded maximum edits limit of 2"

    @pytest.mark.unit
    def test_custom_delta(self):
        result = validate_and_clamp_edits(
            [{"op": "move", "id": "e1", "dx": 0.3, "dy": 0}], ["e1"], EditLimits(max_delta=0.05)
        )
        assert result.valid_edits[0].dx == 0.05

    @pytest.mark.unit
    def test_invalid_limits(self):
        with pytest.raises(ValueError):
            EditLimits(max_delta=-1)


class TestClampBounds:
    """Tests for clamp_bounds."""

    @pytest.mark.unit
    def test_move_stays_on_canvas(self):
        bounds = Bounds(x=0.1, y=0.1, w=0.8, h=0.1)
        moved = clamp_bounds(bounds, MoveEdit(id="a", dx=0.2, dy=-0.2))
        assert moved.x == pytest.approx(0.2)
        assert moved.y == 0.0
        assert moved.x + moved.w <= 1 + 1e-9

    @pytest.mark.unit
    def test_resize_stays_on_canvas(self):
        bounds = Bounds(x=0.7, y=0.5, w=0.2, h=0.2)
        resized = clamp_bounds(bounds, ResizeEdit(id="a", dw=0.2, dh=-0.2))
        assert resized.w == pytest.approx(0.3)
        assert resized.h == 0.0

    @pytest.mark.unit
    def test_idempotent(self):
        bounds = Bounds(x=0.6, y=0.6, w=0.3, h=0.3)
        once = clamp_bounds(bounds, MoveEdit(id="a", dx=0.2, dy=0.2))
        again = clamp_bounds(once, MoveEdit(id="a", dx=0.0, dy=0.0))
        assert again == once

    @pytest.mark.unit
    def test_other_edits_pass_through(self):
        bounds = Bounds(x=0.1, y=0.1, w=0.1, h=0.1)
        assert clamp_bounds(bounds, RecolorEdit(id="a", color="accent")) is bounds


# =============================================================================
# Application
# =============================================================================


class TestApplyEdits:
    """Tests for apply_edits and refine_label."""

    @pytest.mark.unit
    def test_move_applied_and_input_untouched(self, sample_dsl):
        result = apply_edits(sample_dsl, [MoveEdit(id="producer_text", dx=0.2, dy=0.0)])
        assert len(result.applied_edits) == 1
        moved = result.updated_dsl.get_element("producer_text").bounds
        assert moved.x == pytest.approx(0.2)
        assert sample_dsl.get_element("producer_text").bounds.x == 0.1

    @pytest.mark.unit
    def test_bounds_remain_valid(self, sample_dsl):
        edits = [
            MoveEdit(id="vintage_text", dx=0.2, dy=0.2),
            ResizeEdit(id="vintage_text", dw=0.2, dh=0.2),
            MoveEdit(id="divider", dx=-0.2, dy=0.2),
        ]
        result = apply_edits(sample_dsl, edits)
        for element in result.updated_dsl.elements:
            b = element.bounds
            assert 0 <= b.x <= 1 and 0 <= b.y <= 1
            assert b.x + b.w <= 1 + 1e-9
            assert b.y + b.h <= 1 + 1e-9
        assert is_valid(result.updated_dsl)

    @pytest.mark.unit
    def test_recolor_text(self, sample_dsl):
        result = apply_edits(sample_dsl, [{"op": "recolor", "id": "vintage_text", "color": "primary"}])
        assert result.updated_dsl.get_element("vintage_text").color == PaletteRole.PRIMARY

    @pytest.mark.unit
    def test_recolor_image_fails(self, sample_dsl):
        result = apply_edits(sample_dsl, [RecolorEdit(id="background", color="accent")])
        assert result.applied_edits == []
        assert result.failed_edits[0].reason == "Cannot recolor element of type 'image'"
        assert result.updated_dsl == sample_dsl

    @pytest.mark.unit
    def test_font_size_text_only(self, sample_dsl):
        result = apply_edits(
            sample_dsl,
            [
                UpdateFontSizeEdit(id="producer_text", font_size=60),
                UpdateFontSizeEdit(id="divider", font_size=60),
            ],
        )
        assert result.updated_dsl.get_element("producer_text").font_size == 60
        assert len(result.failed_edits) == 1
        assert "shape" in result.failed_edits[0].reason

    @pytest.mark.unit
    def test_reorder_clamped(self, sample_dsl):
        result = apply_edits(sample_dsl, [ReorderEdit(id="divider", z=2000)])
        assert result.updated_dsl.get_element("divider").z == 1000

    @pytest.mark.unit
    def test_unknown_element_fails_and_continues(self, sample_dsl):
        result = apply_edits(
            sample_dsl,
            [MoveEdit(id="ghost", dx=0.1, dy=0.1), ReorderEdit(id="divider", z=20)],
        )
        assert "ghost" in result.failed_edits[0].reason
        assert result.updated_dsl.get_element("divider").z == 20

    @pytest.mark.unit
    def test_refine_label(self, sample_dsl):
        result = refine_label(
            sample_dsl,
            [
                {"op": "move", "id": "vintage_text", "dx": -0.9, "dy": 0},
                {"op": "recolor", "id": "nope", "color": "accent"},
            ],
        )
        assert len(result.validation.rejected_edits) == 1
        assert len(result.application.applied_edits) == 1
        assert result.updated_dsl.get_element("vintage_text").bounds.x == pytest.approx(0.15)


# =============================================================================
# Proposal conversion
# =============================================================================


class TestParseFontSize:
    """Tests for font size hints."""

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "hint,current,expected",
        [
            (18, 20, 18),
            (17.5, 20, 18),
            ("18px", 20, 18),
            ("120%", 20, 24),
            ("larger", 20, 24),
            ("x-small", 16, 10),
            ("XX-Large", 10, 20),
            (500, 20, 200),
            (0, 20, 1),
            ("huge", 20, 20),
            ("", 20, 20),
            (None, 20, 20),
            (float("inf"), 20, 20),
            (float("nan"), 20, 20),
            ("9" * 400, 20, 20),
            ("9" * 400 + "%", 20, 20),
        ],
    )
    def test_hints(self, hint, current, expected):
        assert parse_font_size(hint, current) == expected


class TestResolveElementId:
    """Tests for semantic element id resolution."""

    @pytest.mark.unit
    def test_direct(self, sample_dsl):
        assert resolve_element_id("divider", sample_dsl) == "divider"

    @pytest.mark.unit
    def test_alias(self, sample_dsl):
        assert resolve_element_id("year-text", sample_dsl) == "vintage_text"
        assert resolve_element_id("winery-name", sample_dsl) == "producer_text"

    @pytest.mark.unit
    def test_fuzzy(self, sample_dsl):
        assert resolve_element_id("vintage-year", sample_dsl) == "vintage_text"
        assert resolve_element_id("winery-title", sample_dsl) == "producer_text"

    @pytest.mark.unit
    def test_unknown(self, sample_dsl):
        assert resolve_element_id("ghost", sample_dsl) is None


class TestConvertOperations:
    """Tests for convert_operations."""

    @pytest.mark.unit
    def test_bounds_to_move_and_resize(self, sample_dsl):
        ops = [
            {
                "type": "update_element",
                "elementId": "producer_text",
                "property": "bounds",
                "value": {"x": 0.15, "w": 0.7},
            }
        ]
        move, resize = convert_operations(ops, sample_dsl)
        assert isinstance(move, MoveEdit)
        assert move.dx == pytest.approx(0.05)
        assert move.dy == 0
        assert resize.dw == pytest.approx(-0.1)

    @pytest.mark.unit
    def test_unchanged_bounds_skipped(self, sample_dsl):
        ops = [{"type": "update_element", "elementId": "divider", "property": "bounds", "value": {"x": 0.2}}]
        assert convert_operations(ops, sample_dsl) == []

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "value",
        [{"x": None}, {"x": "left"}, {"y": float("inf")}, {"w": float("nan")}, {"h": {"px": 3}}, {"x": True}],
    )
    def test_invalid_bounds_values_skipped(self, sample_dsl, value):
        ops = [{"type": "update_element", "elementId": "producer_text", "property": "bounds", "value": value}]
        assert convert_operations(ops, sample_dsl) == []

    @pytest.mark.unit
    def test_numeric_strings_in_bounds(self, sample_dsl):
        ops = [{"type": "update_element", "elementId": "producer_text", "property": "bounds", "value": {"y": "0.2"}}]
        (move,) = convert_operations(ops, sample_dsl)
        assert move.dy == pytest.approx(0.1)

    @pytest.mark.unit
    def test_color_hex_and_role(self, sample_dsl):
        ops = [
            {"type": "update_element", "elementId": "year-text", "property": "color", "value": "#D0B040"},
            {"type": "update_element", "elementId": "divider", "property": "color", "value": "accent"},
        ]
        first, second = convert_operations(ops, sample_dsl)
        assert (first.id, first.color) == ("vintage_text", "secondary")
        assert second.color == "accent"

    @pytest.mark.unit
    def test_font_size(self, sample_dsl):
        ops = [
            {"type": "update_element", "elementId": "producer_text", "property": "fontSize", "value": "larger"},
            {"type": "update_element", "elementId": "divider", "property": "fontSize", "value": 20},
        ]
        edits = convert_operations(ops, sample_dsl)
        assert len(edits) == 1
        assert edits[0].font_size == 58

    @pytest.mark.unit
    def test_palette_update(self, sample_dsl):
        op = UpdatePaletteOperation(target="accent", value="#D4AF37")
        edits = convert_operations([op], sample_dsl)
        assert [(e.id, e.color) for e in edits] == [("vintage_text", "secondary")]

    @pytest.mark.unit
    def test_skips_unsupported_and_invalid(self, sample_dsl):
        ops = [
            {"type": "update_element", "elementId": "producer_text", "property": "text", "value": "X"},
            {"type": "update_element", "elementId": "ghost", "property": "fontSize", "value": 20},
            {"type": "add_element"},
        ]
        assert convert_operations(ops, sample_dsl) == []

    @pytest.mark.unit
    def test_converted_edits_apply_within_bounds(self, sample_dsl):
        ops = [{"type": "update_element", "elementId": "vintage_text", "property": "bounds", "value": {"x": 0.95}}]
        edits = convert_operations(ops, sample_dsl)
        result = refine_label(sample_dsl, edits)
        bounds = result.updated_dsl.get_element("vintage_text").bounds
        assert bounds.x == pytest.approx(0.55)
        assert bounds.x + bounds.w <= 1 + 1e-9
