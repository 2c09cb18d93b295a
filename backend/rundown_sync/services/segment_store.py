"""Ordered segment list plus groups, with the lock and ordering invariants.

List order is the only notion of position. Every mutation except creation
and unlocking refuses to touch a locked segment.
"""

from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from rundown_sync.errors import NotFound, SegmentLocked
from rundown_sync.models.graphics import GraphicRef
from rundown_sync.models.group import GROUP_COLORS, Group
from rundown_sync.models.segment import Segment, SegmentPatch, SegmentType, parse_segment, with_changes


logger = logging.getLogger("rundown_sync.segment_store")

_SEGMENT_ID_RE = re.compile(r"^seg-(\d+)$")


def compute_start_times(segments: Sequence[Segment], exclude_optional: bool = False) -> List[float]:
    """Start offset in seconds of each segment, in list order.

    Untimed segments add nothing to the running total. With exclude_optional,
    optional segments add nothing either, but still get a start time of
    their own.
    """
    starts: List[float] = []
    running = 0.0
    for seg in segments:
        starts.append(running)
        if exclude_optional and seg.optional:
            continue
        running += (seg.duration_seconds or 0) + seg.buffer_after_seconds
    return starts


def total_runtime(segments: Sequence[Segment], exclude_optional: bool = False) -> float:
    total = 0.0
    for seg in segments:
        if exclude_optional and seg.optional:
            continue
        total += (seg.duration_seconds or 0) + seg.buffer_after_seconds
    return total


@dataclass
class BulkResult:
    action: str
    mutated: List[str] = field(default_factory=list)
    skipped_locked: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)

    @property
    def message(self) -> str:
        noun = "segment" if len(self.mutated) == 1 else "segments"
        msg = f"{self.action} {len(self.mutated)} {noun}"
        extras = []
        if self.skipped_locked:
            extras.append(f"{len(self.skipped_locked)} locked skipped")
        if self.missing:
            extras.append(f"{len(self.missing)} not found")
        if extras:
            msg += f" ({', '.join(extras)})"
        return msg

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mutated": len(self.mutated),
            "skippedLocked": len(self.skipped_locked),
            "missing": len(self.missing),
            "message": self.message,
        }


class SegmentStore:
    def __init__(self, segments: Iterable[Segment] = (), groups: Iterable[Group] = ()) -> None:
        self._segments: List[Segment] = list(segments)
        self._groups: List[Group] = list(groups)

    @property
    def segments(self) -> List[Segment]:
        return list(self._segments)

    @property
    def groups(self) -> List[Group]:
        return list(self._groups)

    def replace_state(self, segments: Iterable[Segment], groups: Optional[Iterable[Group]] = None) -> None:
        self._segments = list(segments)
        if groups is not None:
            self._groups = list(groups)

    # lookups

    def index_of(self, segment_id: str) -> int:
        for i, seg in enumerate(self._segments):
            if seg.id == segment_id:
                return i
        raise NotFound(f"Segment {segment_id} not found")

    def get(self, segment_id: str) -> Segment:
        return self._segments[self.index_of(segment_id)]

    def _unlocked_index(self, segment_id: str) -> int:
        idx = self.index_of(segment_id)
        if self._segments[idx].locked:
            raise SegmentLocked(segment_id, f"'{self._segments[idx].name}' is locked")
        return idx

    def new_segment_id(self) -> str:
        used = set()
        for seg in self._segments:
            m = _SEGMENT_ID_RE.match(seg.id)
            if m:
                used.add(int(m.group(1)))
        n = 1
        while n in used:
            n += 1
        return f"seg-{n:03d}"

    def filter_segments(self, segment_type: Optional[str] = None, query: str = "") -> List[Segment]:
        q = (query or "").strip().lower()
        out = []
        for seg in self._segments:
            if segment_type and segment_type != "all" and seg.type != segment_type:
                continue
            if q and q not in seg.name.lower():
                continue
            out.append(seg)
        return out

    # single-segment mutations

    def insert_at(self, index: int, segment: Segment) -> Segment:
        if any(s.id == segment.id for s in self._segments):
            raise ValueError(f"Segment id {segment.id} already exists")
        if segment.group_id is not None and not self._has_group(segment.group_id):
            segment = with_changes(segment, {"group_id": None})
        index = max(0, min(index, len(self._segments)))
        self._segments.insert(index, segment)
        return segment

    def append(self, segment: Segment) -> Segment:
        return self.insert_at(len(self._segments), segment)

    def insert_after(self, anchor_id: Optional[str], segment: Segment) -> Segment:
        if anchor_id is None:
            return self.append(segment)
        return self.insert_at(self.index_of(anchor_id) + 1, segment)

    def duplicate(self, segment_id: str) -> Segment:
        source = self.get(segment_id)
        data = source.model_dump()
        data.update(id=self.new_segment_id(), name=f"{source.name} (copy)", locked=False)
        return self.insert_at(self.index_of(segment_id) + 1, parse_segment(data))

    def remove_by_id(self, segment_id: str) -> Segment:
        idx = self._unlocked_index(segment_id)
        return self._segments.pop(idx)

    def move_range(self, from_index: int, to_index: int) -> None:
        """Move one segment; everything else keeps its relative order."""
        if not 0 <= from_index < len(self._segments):
            raise NotFound(f"No segment at position {from_index}")
        seg = self._segments[from_index]
        if seg.locked:
            raise SegmentLocked(seg.id, f"'{seg.name}' is locked and cannot be moved")
        to_index = max(0, min(to_index, len(self._segments) - 1))
        if to_index == from_index:
            return
        self._segments.pop(from_index)
        self._segments.insert(to_index, seg)

    def move_up(self, segment_id: str) -> None:
        idx = self.index_of(segment_id)
        if idx > 0:
            self.move_range(idx, idx - 1)

    def move_down(self, segment_id: str) -> None:
        idx = self.index_of(segment_id)
        if idx < len(self._segments) - 1:
            self.move_range(idx, idx + 1)

    def update_by_id(self, segment_id: str, patch: SegmentPatch | Dict[str, Any]) -> Segment:
        changes = patch.changes() if isinstance(patch, SegmentPatch) else dict(patch)
        for forbidden in ("id", "locked"):
            changes.pop(forbidden, None)
        idx = self._unlocked_index(segment_id)
        updated = with_changes(self._segments[idx], changes)
        self._segments[idx] = updated
        return updated

    def set_locked(self, segment_id: str, locked: bool) -> Segment:
        idx = self.index_of(segment_id)
        seg = self._segments[idx]
        if seg.locked != locked:
            seg = with_changes(seg, {"locked": locked})
            self._segments[idx] = seg
        return seg

    def assign_group(self, segment_id: str, group_id: Optional[str]) -> Segment:
        if group_id is not None and not self._has_group(group_id):
            raise NotFound(f"Group {group_id} not found")
        idx = self._unlocked_index(segment_id)
        updated = with_changes(self._segments[idx], {"group_id": group_id})
        self._segments[idx] = updated
        return updated

    # bulk mutations

    def _bulk(self, action: str, ids: Iterable[str], fn: Callable[[int], None]) -> BulkResult:
        result = BulkResult(action=action)
        for segment_id in dict.fromkeys(ids):
            try:
                idx = self._unlocked_index(segment_id)
            except SegmentLocked:
                result.skipped_locked.append(segment_id)
                continue
            except NotFound:
                result.missing.append(segment_id)
                continue
            fn(idx)
            result.mutated.append(segment_id)
        if result.skipped_locked:
            logger.debug("%s: skipped locked %s", action, ", ".join(result.skipped_locked))
        return result

    def bulk_delete(self, ids: Iterable[str]) -> BulkResult:
        doomed: set[str] = set()
        result = self._bulk("Deleted", ids, lambda idx: doomed.add(self._segments[idx].id))
        self._segments = [s for s in self._segments if s.id not in doomed]
        return result

    def _bulk_change(self, action: str, ids: Iterable[str], changes: Dict[str, Any]) -> BulkResult:
        def _apply(idx: int) -> None:
            self._segments[idx] = with_changes(self._segments[idx], changes)

        return self._bulk(action, ids, _apply)

    def bulk_edit_type(self, ids: Iterable[str], segment_type: SegmentType | str) -> BulkResult:
        return self._bulk_change("Updated", ids, {"type": SegmentType(segment_type).value})

    def bulk_edit_scene(self, ids: Iterable[str], scene_ref: str) -> BulkResult:
        return self._bulk_change("Updated", ids, {"scene_ref": scene_ref})

    def bulk_edit_graphic(self, ids: Iterable[str], graphic_ref: Optional[GraphicRef]) -> BulkResult:
        return self._bulk_change(
            "Updated", ids, {"graphic_ref": graphic_ref.model_dump() if graphic_ref else None}
        )

    # groups

    def _has_group(self, group_id: str) -> bool:
        return any(g.id == group_id for g in self._groups)

    def get_group(self, group_id: str) -> Group:
        for g in self._groups:
            if g.id == group_id:
                return g
        raise NotFound(f"Group {group_id} not found")

    def create_group(self, name: str, color_id: Optional[str] = None, segment_ids: Iterable[str] = ()) -> Tuple[Group, BulkResult]:
        color = color_id or GROUP_COLORS[len(self._groups) % len(GROUP_COLORS)]
        group = Group(id=f"group-{uuid.uuid4().hex[:8]}", name=name, color_id=color)
        self._groups.append(group)
        return group, self.group_segments(group.id, segment_ids)

    def update_group(self, group_id: str, name: Optional[str] = None, color_id: Optional[str] = None) -> Group:
        group = self.get_group(group_id)
        changes: Dict[str, Any] = {}
        if name is not None:
            changes["name"] = name
        if color_id is not None:
            changes["color_id"] = color_id
        return self._replace_group(group, changes)

    def toggle_group_collapsed(self, group_id: str) -> Group:
        group = self.get_group(group_id)
        return self._replace_group(group, {"collapsed": not group.collapsed})

    def _replace_group(self, group: Group, changes: Dict[str, Any]) -> Group:
        updated = Group.model_validate({**group.model_dump(), **changes})
        self._groups = [updated if g.id == group.id else g for g in self._groups]
        return updated

    def group_segments(self, group_id: str, segment_ids: Iterable[str]) -> BulkResult:
        self.get_group(group_id)
        return self._bulk_change("Grouped", segment_ids, {"group_id": group_id})

    def ungroup_segments(self, segment_ids: Iterable[str]) -> BulkResult:
        return self._bulk_change("Ungrouped", segment_ids, {"group_id": None})

    def delete_group(self, group_id: str) -> int:
        """Drop the group and ungroup its members; returns how many were ungrouped.

        Members are ungrouped even when locked so no segment is left pointing
        at a group that no longer exists.
        """
        self.get_group(group_id)
        self._groups = [g for g in self._groups if g.id != group_id]
        count = 0
        for i, seg in enumerate(self._segments):
            if seg.group_id == group_id:
                self._segments[i] = with_changes(seg, {"group_id": None})
                count += 1
        return count
