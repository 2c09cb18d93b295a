from __future__ import annotations

from dataclasses import dataclass, replace

from rundown_sync.models.approval import Role


@dataclass(frozen=True)
class SessionContext:
    """Who is acting. Passed explicitly to every operation."""

    session_id: str
    display_name: str
    role: Role = Role.VIEWER

    @property
    def actor(self) -> str:
        return self.display_name or self.session_id

    def with_role(self, role: Role | str) -> "SessionContext":
        return replace(self, role=Role(role))
