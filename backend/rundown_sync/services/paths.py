from __future__ import annotations

from dataclasses import dataclass

from rundown_sync.repositories.tree_store import join_path


@dataclass(frozen=True)
class RundownPaths:
    """Where one competition's rundown lives in the shared tree."""

    comp_id: str

    @property
    def root(self) -> str:
        return join_path("competitions", self.comp_id, "production", "rundown")

    @property
    def segments(self) -> str:
        return join_path(self.root, "segments")

    @property
    def groups(self) -> str:
        return join_path(self.root, "groups")

    @property
    def approval(self) -> str:
        return join_path(self.root, "approval")

    @property
    def history(self) -> str:
        return join_path(self.root, "history")

    @property
    def presence(self) -> str:
        return join_path(self.root, "presence")

    def presence_of(self, session_id: str) -> str:
        return join_path(self.presence, session_id)
