from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from rundown_sync.models.approval import Role
from rundown_sync.models.segment import WIRE_CONFIG


class Selection(BaseModel):
    model_config = WIRE_CONFIG

    single: Optional[str] = None
    multi: List[str] = Field(default_factory=list)


class PresenceRecord(BaseModel):
    model_config = WIRE_CONFIG

    session_id: str
    display_name: str
    role: Role
    joined_at: datetime
    last_activity: datetime
    selection: Selection = Field(default_factory=Selection)

    def is_live(self, now: datetime, liveness_seconds: float) -> bool:
        return (now - self.last_activity).total_seconds() <= liveness_seconds
