from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Dict, Iterable, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator
from pydantic.alias_generators import to_camel

from rundown_sync.models.graphics import GraphicRef


WIRE_CONFIG = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


class SegmentType(str, Enum):
    VIDEO = "video"
    LIVE = "live"
    STATIC = "static"
    BREAK = "break"
    HOLD = "hold"
    GRAPHIC = "graphic"


class TimingMode(str, Enum):
    FIXED = "fixed"
    MANUAL = "manual"
    FOLLOWS_PREVIOUS = "follows-previous"


def _unique_ids(value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, (set, frozenset)):
        value = sorted(value)
    seen: Dict[str, None] = {}
    for item in value:
        seen.setdefault(str(item), None)
    return tuple(seen)


class _SegmentBase(BaseModel):
    model_config = WIRE_CONFIG

    id: str = Field(min_length=1)
    name: str = "New Segment"
    duration_seconds: Optional[float] = Field(default=None, ge=0)  # None = manual/untimed
    buffer_after_seconds: float = Field(default=0, ge=0)
    scene_ref: str = ""
    graphic_ref: Optional[GraphicRef] = None
    timing_mode: TimingMode = TimingMode.MANUAL
    locked: bool = False
    optional: bool = False
    group_id: Optional[str] = None
    talent_ids: Tuple[str, ...] = ()
    equipment_ids: Tuple[str, ...] = ()
    notes: str = ""
    script: str = ""

    @field_validator("talent_ids", "equipment_ids", mode="before")
    @classmethod
    def _dedupe(cls, value: Any) -> Tuple[str, ...]:
        return _unique_ids(value)

    def resource_ids(self, kind: str) -> Tuple[str, ...]:
        return self.talent_ids if kind == "talent" else self.equipment_ids


class VideoSegment(_SegmentBase):
    type: Literal["video"] = "video"


class LiveSegment(_SegmentBase):
    type: Literal["live"] = "live"


class StaticSegment(_SegmentBase):
    type: Literal["static"] = "static"


class BreakSegment(_SegmentBase):
    type: Literal["break"] = "break"


class GraphicSegment(_SegmentBase):
    type: Literal["graphic"] = "graphic"


class HoldSegment(_SegmentBase):
    """Open-ended hold; the timesheet engine warns once max duration is reached."""

    type: Literal["hold"] = "hold"
    min_duration_seconds: Optional[float] = Field(default=None, ge=0)
    max_duration_seconds: Optional[float] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _check_bounds(self) -> "HoldSegment":
        lo, hi = self.min_duration_seconds, self.max_duration_seconds
        if lo is not None and hi is not None and lo > hi:
            raise ValueError("min_duration_seconds must not exceed max_duration_seconds")
        return self


Segment = Annotated[
    Union[VideoSegment, LiveSegment, StaticSegment, BreakSegment, HoldSegment, GraphicSegment],
    Field(discriminator="type"),
]

SEGMENT_ADAPTER: TypeAdapter[Segment] = TypeAdapter(Segment)
SEGMENT_LIST_ADAPTER: TypeAdapter[List[Segment]] = TypeAdapter(List[Segment])


def parse_segment(data: Dict[str, Any]) -> Segment:
    return SEGMENT_ADAPTER.validate_python(data)


def parse_segments(data: Optional[Iterable[Dict[str, Any]]]) -> List[Segment]:
    return SEGMENT_LIST_ADAPTER.validate_python(list(data or []))


def segments_to_wire(segments: Iterable[Segment]) -> List[Dict[str, Any]]:
    return [s.model_dump(mode="json", by_alias=True) for s in segments]


def with_changes(segment: Segment, changes: Dict[str, Any]) -> Segment:
    """Return a re-validated copy of segment with changes applied.

    Going through the adapter lets a ``type`` change land on the matching
    union member; fields the new member does not define are dropped.
    """
    data = segment.model_dump()
    data.update(changes)
    data["id"] = segment.id
    if isinstance(data.get("type"), SegmentType):
        data["type"] = data["type"].value
    return parse_segment(data)


class SegmentPatch(BaseModel):
    """Partial edit; only fields explicitly set are applied."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: Optional[str] = None
    type: Optional[SegmentType] = None
    duration_seconds: Optional[float] = Field(default=None, ge=0)
    buffer_after_seconds: Optional[float] = Field(default=None, ge=0)
    scene_ref: Optional[str] = None
    graphic_ref: Optional[GraphicRef] = None
    timing_mode: Optional[TimingMode] = None
    optional: Optional[bool] = None
    talent_ids: Optional[List[str]] = None
    equipment_ids: Optional[List[str]] = None
    notes: Optional[str] = None
    script: Optional[str] = None
    min_duration_seconds: Optional[float] = Field(default=None, ge=0)
    max_duration_seconds: Optional[float] = Field(default=None, ge=0)

    def changes(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for name in self.model_fields_set:
            value = getattr(self, name)
            if name == "buffer_after_seconds" and value is None:
                continue
            out[name] = value.model_dump() if isinstance(value, BaseModel) else value
        return out
