import pytest

from rundown_sync.services.conflict_detector import (
    conflicting_segment_ids,
    find_all_conflicts,
    find_conflicts,
)
from rundown_sync.services.segment_store import compute_start_times


class TestFindConflicts:
    def test_back_to_back_is_not_a_conflict(self, make_segment):
        segs = [
            make_segment("a", durationSeconds=60, equipmentIds=["cam1"]),
            make_segment("b", durationSeconds=30, equipmentIds=["cam1"]),
        ]
        assert find_conflicts(segs, [0, 60], "equipment") == []

    @pytest.mark.parametrize("starts", [[0, 59], [1, 60]])
    def test_one_second_overlap_is_one_conflict(self, make_segment, starts):
        segs = [
            make_segment("a", durationSeconds=60, equipmentIds=["cam1"]),
            make_segment("b", durationSeconds=30, equipmentIds=["cam1"]),
        ]
        conflicts = find_conflicts(segs, starts, "equipment")
        assert len(conflicts) == 1
        assert (conflicts[0].segment1, conflicts[0].segment2) == ("a", "b")

    def test_inserted_segment_conflicts_with_first_only(self, make_segment):
        a = make_segment("A", durationSeconds=60, equipmentIds=["cam1"])
        b = make_segment("B", durationSeconds=30, equipmentIds=["cam1"])
        assert find_conflicts([a, b], compute_start_times([a, b]), "equipment") == []

        c = make_segment("C", durationSeconds=30, equipmentIds=["cam1"])
        conflicts = find_conflicts([a, c, b], [0, 30, 60], "equipment")
        assert [(x.segment1, x.segment2) for x in conflicts] == [("A", "C")]

    def test_untimed_segment_uses_default_window(self, make_segment):
        segs = [
            make_segment("a", talentIds=["host"]),
            make_segment("b", durationSeconds=10, talentIds=["host"]),
        ]
        assert len(find_conflicts(segs, [0, 29], "talent")) == 1
        assert find_conflicts(segs, [0, 30], "talent") == []
        assert find_conflicts(segs, [0, 5], "talent", untimed_window=5) == []

    def test_other_kind_ignored(self, make_segment):
        segs = [
            make_segment("a", durationSeconds=60, talentIds=["x"]),
            make_segment("b", durationSeconds=60, equipmentIds=["x"]),
        ]
        assert find_conflicts(segs, [0, 0], "talent") == []

    def test_sorted_by_resource_then_order(self, make_segment):
        segs = [
            make_segment("a", durationSeconds=60, equipmentIds=["mic", "cam"]),
            make_segment("b", durationSeconds=60, equipmentIds=["mic", "cam"]),
        ]
        conflicts = find_conflicts(segs, [0, 10], "equipment")
        assert [c.resource_id for c in conflicts] == ["cam", "mic"]

    def test_length_mismatch(self, make_segment):
        with pytest.raises(ValueError):
            find_conflicts([make_segment("a")], [], "talent")


class TestAllConflicts:
    def test_both_kinds_and_ids(self, make_segment):
        segs = [
            make_segment("a", durationSeconds=60, talentIds=["host"], equipmentIds=["cam1"]),
            make_segment("b", durationSeconds=60, talentIds=["host"]),
            make_segment("c", durationSeconds=60, equipmentIds=["cam1"]),
        ]
        conflicts = find_all_conflicts(segs, [0, 30, 50])
        assert [c.resource_kind for c in conflicts] == ["talent", "equipment"]
        assert conflicting_segment_ids(conflicts) == {"a", "b", "c"}
        assert conflicts[0].to_dict() == {
            "resourceKind": "talent",
            "resourceId": "host",
            "segment1": "a",
            "segment2": "b",
        }
