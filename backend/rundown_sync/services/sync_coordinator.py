"""Reads and writes the shared rundown; the only component doing remote I/O.

Consistency is whole-list last-writer-wins: a remote push replaces local
segments (or groups, or approval) outright, and a publish overwrites the
remote list outright. A failed publish is reported but the local state is
left as the user made it; the next successful write or remote push settles
it.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from pydantic import ValidationError

from rundown_sync.errors import SyncFailure
from rundown_sync.models.approval import ApprovalRecord
from rundown_sync.models.group import Group, groups_to_wire, parse_groups
from rundown_sync.models.segment import Segment, parse_segments, segments_to_wire
from rundown_sync.models.snapshot import Snapshot
from rundown_sync.repositories.tree_store import SubscriptionGroup, TreeConnection
from rundown_sync.services.default_rundown import default_segments
from rundown_sync.services.history_log import HistoryLog
from rundown_sync.services.paths import RundownPaths


logger = logging.getLogger("rundown_sync.sync")

SAVE_ERROR_MESSAGE = "Error saving changes"
INVALID_DATA_MESSAGE = "Received invalid rundown data; keeping local copy"


def _as_list(raw: Any) -> List[Any]:
    # Array-like branches can arrive as {"0": ..., "1": ...}
    if isinstance(raw, dict):
        return [raw[k] for k in sorted(raw, key=lambda k: int(k) if str(k).isdigit() else str(k))]
    return list(raw or [])


class SyncCoordinator:
    def __init__(
        self,
        connection: TreeConnection,
        paths: RundownPaths,
        history: HistoryLog,
        notify: Callable[[str], None] = lambda message: None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        seed: Callable[[], List[Segment]] = default_segments,
    ) -> None:
        self._connection = connection
        self._paths = paths
        self._history = history
        self._notify = notify
        self._clock = clock
        self._seed = seed
        self._seeded = False
        self._known_segments: List[Segment] = []
        self._known_groups: List[Group] = []

    def known_state(self, description: str = "") -> Snapshot:
        """Last state agreed with the remote store."""
        return Snapshot.capture(self._known_segments, self._known_groups, description, self._clock())

    def _fail(self, what: str) -> bool:
        logger.exception("Failed to %s for %s", what, self._paths.comp_id)
        self._notify(SAVE_ERROR_MESSAGE)
        return False

    def publish(
        self,
        segments: Sequence[Segment],
        groups: Optional[Sequence[Group]] = None,
        history_action: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Write the full segment list (and groups when given).

        With history_action, also log an entry carrying the state as it was
        before this write.
        """
        prior = self.known_state(history_action or "") if history_action else None
        try:
            if groups is None:
                self._connection.set(self._paths.segments, segments_to_wire(segments))
            else:
                self._connection.update(
                    self._paths.root,
                    {"segments": segments_to_wire(segments), "groups": groups_to_wire(groups)},
                )
        except SyncFailure:
            return self._fail("publish segments")

        self._known_segments = list(segments)
        if groups is not None:
            self._known_groups = list(groups)

        if history_action:
            self.log(history_action, details, snapshot=prior)
        return True

    def publish_status(self, record: ApprovalRecord, history_action: Optional[str] = None, details: Optional[Dict[str, Any]] = None) -> bool:
        try:
            self._connection.set(self._paths.approval, record.model_dump(mode="json", by_alias=True, exclude_none=True))
        except SyncFailure:
            return self._fail("publish approval status")
        if history_action:
            self.log(history_action, details)
        return True

    def log(self, action: str, details: Optional[Dict[str, Any]] = None, snapshot: Optional[Snapshot] = None) -> bool:
        try:
            self._history.append(action, details, snapshot=snapshot)
        except SyncFailure:
            return self._fail("append history")
        return True

    def subscribe(
        self,
        on_segments: Callable[[List[Segment]], None],
        on_groups: Callable[[List[Group]], None],
        on_status: Callable[[ApprovalRecord], None],
    ) -> SubscriptionGroup:
        handles = SubscriptionGroup()

        def _segments(raw: Any) -> None:
            if raw is None and not self._seeded:
                self._seeded = True
                logger.info("No rundown for %s yet; seeding default segments", self._paths.comp_id)
                try:
                    # The write echoes back through this listener with the seeded list
                    self._connection.set(self._paths.segments, segments_to_wire(self._seed()))
                    return
                except SyncFailure:
                    self._fail("seed default rundown")
            self._seeded = True
            try:
                segments = parse_segments(_as_list(raw))
            except ValidationError:
                logger.exception("Invalid segments pushed for %s", self._paths.comp_id)
                self._notify(INVALID_DATA_MESSAGE)
                return
            self._known_segments = segments
            on_segments(segments)

        def _groups(raw: Any) -> None:
            try:
                groups = parse_groups(_as_list(raw))
            except ValidationError:
                logger.exception("Invalid groups pushed for %s", self._paths.comp_id)
                self._notify(INVALID_DATA_MESSAGE)
                return
            self._known_groups = groups
            on_groups(groups)

        def _status(raw: Any) -> None:
            try:
                record = ApprovalRecord.model_validate(raw) if raw else ApprovalRecord()
            except ValidationError:
                logger.exception("Invalid approval record pushed for %s", self._paths.comp_id)
                self._notify(INVALID_DATA_MESSAGE)
                return
            on_status(record)

        handles.add(self._connection.on_value(self._paths.segments, _segments))
        handles.add(self._connection.on_value(self._paths.groups, _groups))
        handles.add(self._connection.on_value(self._paths.approval, _status))
        return handles
