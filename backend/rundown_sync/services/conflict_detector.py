"""Resource double-booking checks over segment time windows.

A segment occupies ``[start, start + duration)``. Two segments sharing a
talent or equipment id conflict only when those windows overlap strictly, so
back-to-back segments are fine. Untimed segments get a fixed default width
instead of zero, otherwise they could never conflict.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Literal, Sequence, Set

from rundown_sync.models.segment import Segment


UNTIMED_CONFLICT_WINDOW_SECONDS = 30.0

ResourceKind = Literal["talent", "equipment"]
RESOURCE_KINDS: tuple[ResourceKind, ...] = ("talent", "equipment")


@dataclass(frozen=True)
class Conflict:
    resource_kind: str
    resource_id: str
    segment1: str  # earlier in rundown order
    segment2: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "resourceKind": self.resource_kind,
            "resourceId": self.resource_id,
            "segment1": self.segment1,
            "segment2": self.segment2,
        }


def _window(seg: Segment, untimed_window: float) -> float:
    return seg.duration_seconds if seg.duration_seconds is not None else untimed_window


def find_conflicts(
    segments: Sequence[Segment],
    start_times: Sequence[float],
    resource_kind: ResourceKind,
    untimed_window: float = UNTIMED_CONFLICT_WINDOW_SECONDS,
) -> List[Conflict]:
    if len(start_times) != len(segments):
        raise ValueError("start_times must have one entry per segment")

    by_resource: Dict[str, List[int]] = {}
    for idx, seg in enumerate(segments):
        for rid in seg.resource_ids(resource_kind):
            by_resource.setdefault(rid, []).append(idx)

    conflicts: List[Conflict] = []
    for rid in sorted(by_resource):
        users = by_resource[rid]
        for a_pos, i in enumerate(users):
            start_i = start_times[i]
            end_i = start_i + _window(segments[i], untimed_window)
            for j in users[a_pos + 1:]:
                start_j = start_times[j]
                end_j = start_j + _window(segments[j], untimed_window)
                if start_i < end_j and start_j < end_i:
                    conflicts.append(Conflict(resource_kind, rid, segments[i].id, segments[j].id))
    return conflicts


def find_all_conflicts(
    segments: Sequence[Segment],
    start_times: Sequence[float],
    untimed_window: float = UNTIMED_CONFLICT_WINDOW_SECONDS,
) -> List[Conflict]:
    out: List[Conflict] = []
    for kind in RESOURCE_KINDS:
        out.extend(find_conflicts(segments, start_times, kind, untimed_window))
    return out


def conflicting_segment_ids(conflicts: Sequence[Conflict]) -> Set[str]:
    ids: Set[str] = set()
    for c in conflicts:
        ids.add(c.segment1)
        ids.add(c.segment2)
    return ids
