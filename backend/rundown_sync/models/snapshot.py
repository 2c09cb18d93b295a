from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

from rundown_sync.models.group import Group
from rundown_sync.models.segment import WIRE_CONFIG, Segment


class Snapshot(BaseModel):
    """Frozen copy of ``{segments, groups}`` at one instant."""

    model_config = WIRE_CONFIG

    segments: List[Segment] = Field(default_factory=list)
    groups: List[Group] = Field(default_factory=list)
    description: str = ""
    timestamp: datetime

    @classmethod
    def capture(
        cls,
        segments: Sequence[Segment],
        groups: Sequence[Group],
        description: str,
        timestamp: datetime,
    ) -> "Snapshot":
        return cls(
            segments=[s.model_copy(deep=True) for s in segments],
            groups=[g.model_copy(deep=True) for g in groups],
            description=description,
            timestamp=timestamp,
        )


class HistoryEntry(BaseModel):
    """One semantic action; ``snapshot`` is the state before it was applied."""

    model_config = WIRE_CONFIG

    id: str
    action: str
    details: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime
    actor: str
    snapshot: Optional[Snapshot] = None
