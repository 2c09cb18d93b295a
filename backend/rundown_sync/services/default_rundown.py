"""Rundown written to the shared tree the first time a competition is opened."""

from __future__ import annotations

from typing import Any, Dict, List

from rundown_sync.models.segment import Segment, parse_segments


DEFAULT_SEGMENTS: List[Dict[str, Any]] = [
    {"id": "seg-001", "name": "Show Intro", "type": "video", "durationSeconds": 45,
     "sceneRef": "Starting Soon", "timingMode": "fixed"},
    {"id": "seg-002", "name": "Team Logos", "type": "static", "durationSeconds": 10,
     "sceneRef": "Graphics Fullscreen", "graphicRef": {"graphicId": "logos", "params": {}},
     "timingMode": "fixed"},
    {"id": "seg-003", "name": "UCLA Coaches", "type": "live", "durationSeconds": 15,
     "sceneRef": "Single - Camera 2",
     "graphicRef": {"graphicId": "team-coaches", "params": {"teamSlot": 1}},
     "timingMode": "fixed"},
    {"id": "seg-004", "name": "Oregon Coaches", "type": "live", "durationSeconds": 15,
     "sceneRef": "Single - Camera 3",
     "graphicRef": {"graphicId": "team-coaches", "params": {"teamSlot": 2}},
     "timingMode": "fixed"},
    {"id": "seg-005", "name": "Rotation 1 Summary", "type": "static", "durationSeconds": 20,
     "sceneRef": "Graphics Fullscreen",
     "graphicRef": {"graphicId": "event-summary",
                    "params": {"summaryMode": "rotation", "summaryRotation": 1, "summaryTheme": "espn"}},
     "timingMode": "fixed"},
    {"id": "seg-006", "name": "Floor - Rotation 1", "type": "live", "durationSeconds": None,
     "sceneRef": "Quad View", "graphicRef": {"graphicId": "floor", "params": {}},
     "timingMode": "manual"},
    {"id": "seg-007", "name": "Commercial Break", "type": "break", "durationSeconds": 120,
     "sceneRef": "Starting Soon", "timingMode": "fixed"},
]


def default_segments() -> List[Segment]:
    return parse_segments(DEFAULT_SEGMENTS)
