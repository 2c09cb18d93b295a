"""Append-only log of semantic rundown actions.

Entries carry the state from *before* the action, so any entry can be used
to go back to how things were right before it happened.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from rundown_sync.errors import NotFound, RundownError
from rundown_sync.models.snapshot import HistoryEntry, Snapshot
from rundown_sync.repositories.tree_store import TreeConnection, join_path
from rundown_sync.services.paths import RundownPaths
from rundown_sync.services.segment_store import SegmentStore


logger = logging.getLogger("rundown_sync.history")

DEFAULT_HISTORY_LIMIT = 100
RESTORE_ACTION = "Restore to previous version"


class HistoryLog:
    def __init__(
        self,
        connection: TreeConnection,
        paths: RundownPaths,
        actor: str,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        retain: int = DEFAULT_HISTORY_LIMIT,
    ) -> None:
        self._connection = connection
        self._paths = paths
        self.actor = actor
        self._clock = clock
        self.retain = retain

    def append(self, action: str, details: Optional[Dict[str, Any]] = None, snapshot: Optional[Snapshot] = None) -> HistoryEntry:
        entry = HistoryEntry(
            id="pending",
            action=action,
            details=details or {},
            timestamp=self._clock(),
            actor=self.actor,
            snapshot=snapshot,
        )
        payload = entry.model_dump(mode="json", by_alias=True, exclude={"id"}, exclude_none=True)
        key = self._connection.push(self._paths.history, payload)
        self._trim()
        return entry.model_copy(update={"id": key})

    def _trim(self) -> None:
        """Drop the oldest entries beyond the retained count."""
        keys = self._connection.keys(self._paths.history)
        if len(keys) <= self.retain:
            return
        doomed = keys[: len(keys) - self.retain]
        self._connection.update(self._paths.history, {k: None for k in doomed})
        logger.debug("Trimmed %d history entries for %s", len(doomed), self._paths.comp_id)

    def _parse(self, key: str, raw: Any) -> Optional[HistoryEntry]:
        if not isinstance(raw, dict):
            return None
        try:
            return HistoryEntry.model_validate({**raw, "id": key})
        except ValidationError:
            logger.warning("Skipping malformed history entry %s", key)
            return None

    def load(self, limit: int = DEFAULT_HISTORY_LIMIT) -> List[HistoryEntry]:
        """Newest first."""
        raw = self._connection.get(self._paths.history) or {}
        entries = [e for e in (self._parse(k, v) for k, v in raw.items()) if e is not None]
        entries.sort(key=lambda e: (e.timestamp, e.id), reverse=True)
        return entries[: max(0, limit)]

    def get(self, entry_id: str) -> HistoryEntry:
        entry = self._parse(entry_id, self._connection.get(join_path(self._paths.history, entry_id)))
        if entry is None:
            raise NotFound(f"History entry {entry_id} not found")
        return entry

    def restore(self, entry: HistoryEntry, store: SegmentStore) -> Dict[str, Any]:
        """Put store back to entry's pre-change state.

        Returns the details for the restore entry, which the caller logs
        (without a snapshot) once the restored state is saved.
        """
        if entry.snapshot is None:
            raise RundownError(f"'{entry.action}' has no saved state to restore")
        snap = entry.snapshot
        store.replace_state(
            [s.model_copy(deep=True) for s in snap.segments],
            [g.model_copy(deep=True) for g in snap.groups],
        )
        logger.info("Restored rundown to before '%s' (%s)", entry.action, entry.id)
        return {
            "restoredEntryId": entry.id,
            "restoredAction": entry.action,
            "restoredFrom": entry.timestamp.isoformat(),
        }
