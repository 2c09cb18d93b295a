"""Segment union, patches and graphic parameter schemas."""

import pytest
from pydantic import ValidationError

from rundown_sync.models.graphics import GraphicRef, validate_graphic_params
from rundown_sync.models.segment import (
    HoldSegment,
    LiveSegment,
    SegmentPatch,
    SegmentType,
    TimingMode,
    parse_segment,
    parse_segments,
    segments_to_wire,
    with_changes,
)


class TestSegmentUnion:
    def test_type_selects_model(self):
        seg = parse_segment({"id": "a", "type": "hold", "minDurationSeconds": 10})
        assert isinstance(seg, HoldSegment)
        assert seg.min_duration_seconds == 10

    def test_unknown_type_rejected(self):
        with pytest.raises(ValidationError):
            parse_segment({"id": "a", "type": "interpretive-dance"})

    def test_defaults(self):
        seg = parse_segment({"id": "a", "type": "live"})
        assert seg.name == "New Segment"
        assert seg.duration_seconds is None
        assert seg.buffer_after_seconds == 0
        assert seg.timing_mode == TimingMode.MANUAL
        assert not seg.locked and not seg.optional

    def test_wire_format_is_camel_case(self):
        seg = parse_segment({"id": "a", "type": "video", "duration_seconds": 45, "scene_ref": "Intro"})
        wire = segments_to_wire([seg])[0]
        assert wire["durationSeconds"] == 45
        assert wire["sceneRef"] == "Intro"
        assert wire["type"] == "video"
        assert parse_segments([wire]) == [seg]

    def test_resource_ids_deduplicated_in_order(self):
        seg = parse_segment({"id": "a", "type": "live", "equipmentIds": ["cam2", "cam1", "cam2"]})
        assert seg.equipment_ids == ("cam2", "cam1")
        assert seg.resource_ids("equipment") == ("cam2", "cam1")
        assert seg.resource_ids("talent") == ()

    def test_negative_duration_rejected(self):
        with pytest.raises(ValidationError):
            parse_segment({"id": "a", "type": "live", "durationSeconds": -1})

    def test_hold_bounds_checked(self):
        with pytest.raises(ValidationError):
            parse_segment({"id": "a", "type": "hold", "minDurationSeconds": 60, "maxDurationSeconds": 30})

    def test_segments_are_frozen(self):
        seg = parse_segment({"id": "a", "type": "live"})
        with pytest.raises(ValidationError):
            seg.name = "changed"


class TestWithChanges:
    def test_type_change_switches_model_and_drops_extra_fields(self):
        hold = parse_segment({"id": "a", "type": "hold", "name": "Hold", "maxDurationSeconds": 90})
        live = with_changes(hold, {"type": SegmentType.LIVE})
        assert isinstance(live, LiveSegment)
        assert live.name == "Hold"
        assert not hasattr(live, "max_duration_seconds")

    def test_id_cannot_change(self):
        seg = parse_segment({"id": "a", "type": "live"})
        assert with_changes(seg, {"id": "b", "name": "x"}).id == "a"


class TestSegmentPatch:
    def test_only_set_fields_are_changes(self):
        patch = SegmentPatch.model_validate({"name": "Opener", "durationSeconds": None})
        assert patch.changes() == {"name": "Opener", "duration_seconds": None}

    def test_none_buffer_is_ignored(self):
        patch = SegmentPatch(buffer_after_seconds=None, notes="n")
        assert patch.changes() == {"notes": "n"}

    def test_graphic_is_dumped(self):
        patch = SegmentPatch(graphic_ref=GraphicRef(graphic_id="team-stats", params={"teamSlot": 2}))
        assert patch.changes()["graphic_ref"] == {"graphic_id": "team-stats", "params": {"teamSlot": 2}}


class TestGraphicParams:
    def test_valid_params(self):
        ref = GraphicRef.model_validate(
            {"graphicId": "event-summary", "params": {"summaryMode": "rotation", "summaryRotation": 3}}
        )
        assert ref.params["summaryRotation"] == 3

    def test_unknown_graphic(self):
        with pytest.raises(ValueError, match="Unknown graphic"):
            validate_graphic_params("confetti", {})

    def test_unknown_parameter(self):
        with pytest.raises(ValueError, match="no parameter"):
            validate_graphic_params("logos", {"size": 3})

    def test_required_parameter(self):
        with pytest.raises(ValueError, match="requires parameter 'teamSlot'"):
            validate_graphic_params("team-coaches", {})

    @pytest.mark.parametrize("value", [0, 7, True, "2"])
    def test_number_range_and_kind(self, value):
        with pytest.raises(ValueError):
            validate_graphic_params("team-stats", {"teamSlot": value})

    def test_enum_lists_valid_values(self):
        with pytest.raises(ValueError, match="Valid values: rotation, apparatus"):
            validate_graphic_params("event-summary", {"summaryMode": "team"})

    def test_invalid_params_fail_segment_validation(self):
        with pytest.raises(ValidationError):
            parse_segment({"id": "a", "type": "graphic", "graphicRef": {"graphicId": "hosts", "params": {}}})
