"""Converts between editor segments and the timesheet engine's segment format.

Editor field       Engine field
scene_ref          obs_scene
graphic_ref        graphic (id) + graphic_data (params)
timing_mode        auto_advance (True only for fixed timing)
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from rundown_sync.models.segment import Segment, TimingMode, parse_segment


_PASSTHROUGH = ("buffer_after_seconds", "locked", "optional", "min_duration_seconds", "max_duration_seconds")


def map_editor_to_engine(segment: Optional[Segment]) -> Optional[Dict[str, Any]]:
    if segment is None:
        return None
    engine: Dict[str, Any] = {
        "id": segment.id,
        "name": segment.name,
        "type": segment.type,
        "duration": segment.duration_seconds,
        "notes": segment.notes or "",
        "obs_scene": segment.scene_ref or None,
        "graphic": segment.graphic_ref.graphic_id if segment.graphic_ref else None,
        "graphic_data": dict(segment.graphic_ref.params) if segment.graphic_ref else {},
        "auto_advance": segment.timing_mode == TimingMode.FIXED,
    }
    for name in _PASSTHROUGH:
        value = getattr(segment, name, None)
        if value is not None:
            engine[name] = value
    return engine


def map_editor_segments_to_engine(segments: Iterable[Segment]) -> List[Dict[str, Any]]:
    return [m for m in (map_editor_to_engine(s) for s in segments) if m is not None]


def map_engine_to_editor(engine: Optional[Dict[str, Any]]) -> Optional[Segment]:
    if not engine:
        return None
    graphic_id = engine.get("graphic")
    data: Dict[str, Any] = {
        "id": engine["id"],
        "name": engine.get("name", ""),
        "type": engine.get("type", "live"),
        "duration_seconds": engine.get("duration"),
        "notes": engine.get("notes") or "",
        "scene_ref": engine.get("obs_scene") or "",
        "graphic_ref": {"graphic_id": graphic_id, "params": engine.get("graphic_data") or {}} if graphic_id else None,
        "timing_mode": TimingMode.FIXED if engine.get("auto_advance") else TimingMode.MANUAL,
    }
    for name in _PASSTHROUGH:
        if engine.get(name) is not None:
            data[name] = engine[name]
    return parse_segment(data)


def map_engine_segments_to_editor(engines: Iterable[Dict[str, Any]]) -> List[Segment]:
    return [s for s in (map_engine_to_editor(e) for e in engines) if s is not None]
