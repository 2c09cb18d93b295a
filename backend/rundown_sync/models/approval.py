from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from rundown_sync.models.segment import WIRE_CONFIG


class ApprovalStatus(str, Enum):
    DRAFT = "draft"
    IN_REVIEW = "in-review"
    APPROVED = "approved"
    LOCKED = "locked"


class Role(str, Enum):
    VIEWER = "viewer"
    EDITOR = "editor"
    PRODUCER = "producer"
    OWNER = "owner"


class Action(str, Enum):
    EDIT = "edit"
    LOCK = "lock"
    APPROVE = "approve"


class ApprovalRecord(BaseModel):
    """The approval node as stored alongside the segment list."""

    model_config = WIRE_CONFIG

    status: ApprovalStatus = ApprovalStatus.DRAFT
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None
    rejection_reason: Optional[str] = None
