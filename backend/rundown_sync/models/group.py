from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from rundown_sync.models.segment import WIRE_CONFIG


GROUP_COLORS = ("blue", "purple", "green", "yellow", "orange", "red", "pink", "gray")


class Group(BaseModel):
    """Named, colored bundle of segments. Segments point at it by id only."""

    model_config = WIRE_CONFIG

    id: str = Field(min_length=1)
    name: str = "New Group"
    color_id: str = "blue"
    collapsed: bool = False


def parse_groups(data: Optional[Iterable[Dict[str, Any]]]) -> List[Group]:
    return [Group.model_validate(g) for g in (data or [])]


def groups_to_wire(groups: Iterable[Group]) -> List[Dict[str, Any]]:
    return [g.model_dump(mode="json", by_alias=True) for g in groups]
