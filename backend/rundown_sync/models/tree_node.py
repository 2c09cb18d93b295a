from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional
from sqlmodel import SQLModel, Field


class TreeNode(SQLModel, table=True):
    """One row of the shared rundown tree (a rundown branch or a shallow leaf), stored as JSON."""

    key: str = Field(primary_key=True)
    value_json: Optional[str] = None
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
