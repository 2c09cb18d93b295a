from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional

from pydantic import ValidationError

from rundown_sync.models.approval import Role
from rundown_sync.models.presence import PresenceRecord, Selection
from rundown_sync.repositories.tree_store import Subscription, TreeConnection
from rundown_sync.services.context import SessionContext
from rundown_sync.services.paths import RundownPaths


logger = logging.getLogger("rundown_sync.presence")

LIVENESS_WINDOW_SECONDS = 120
HEARTBEAT_INTERVAL_SECONDS = 30


def live_records(raw: Any, now: datetime, liveness_seconds: float = LIVENESS_WINDOW_SECONDS) -> List[PresenceRecord]:
    """Parse a presence branch, dropping malformed and stale records."""
    out: List[PresenceRecord] = []
    if not isinstance(raw, dict):
        return out
    for key, value in raw.items():
        try:
            record = PresenceRecord.model_validate(value)
        except ValidationError:
            logger.warning("Ignoring malformed presence record %s", key)
            continue
        if not record.is_live(now, liveness_seconds):
            logger.debug("Ignoring stale presence record %s", key)
            continue
        out.append(record)
    out.sort(key=lambda r: (r.joined_at, r.session_id))
    return out


class PresenceTracker:
    def __init__(
        self,
        connection: TreeConnection,
        paths: RundownPaths,
        ctx: SessionContext,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        liveness_seconds: float = LIVENESS_WINDOW_SECONDS,
        heartbeat_seconds: float = HEARTBEAT_INTERVAL_SECONDS,
    ) -> None:
        self._connection = connection
        self._paths = paths
        self._clock = clock
        self.liveness_seconds = liveness_seconds
        self.heartbeat_seconds = heartbeat_seconds
        self.record: Optional[PresenceRecord] = None
        self._ctx = ctx
        self._subscription: Optional[Subscription] = None

    @property
    def path(self) -> str:
        return self._paths.presence_of(self._ctx.session_id)

    def connect(self) -> PresenceRecord:
        now = self._clock()
        self.record = PresenceRecord(
            session_id=self._ctx.session_id,
            display_name=self._ctx.display_name,
            role=self._ctx.role,
            joined_at=now,
            last_activity=now,
        )
        # Register first so a dropped client never leaves a record behind
        self._connection.on_disconnect(self.path).remove()
        self._write()
        logger.info("%s joined as %s", self._ctx.actor, self._ctx.role.value)
        return self.record

    def _write(self) -> None:
        if self.record is not None:
            self._connection.set(self.path, self.record.model_dump(mode="json", by_alias=True))

    def announce(
        self,
        selection: Optional[Selection] = None,
        role: Optional[Role] = None,
        force: bool = False,
    ) -> PresenceRecord:
        """Republish on a selection or role change, or once a heartbeat is due."""
        if self.record is None:
            self.connect()
        changes: dict = {}
        if selection is not None and selection != self.record.selection:
            changes["selection"] = selection
        if role is not None and Role(role) != self.record.role:
            changes["role"] = Role(role)
            self._ctx = self._ctx.with_role(role)
        if not changes and not force and not self.heartbeat_due():
            return self.record
        changes["last_activity"] = self._clock()
        self.record = self.record.model_copy(update=changes)
        self._write()
        return self.record

    def is_live(self, now: Optional[datetime] = None) -> bool:
        if self.record is None:
            return False
        return self.record.is_live(now or self._clock(), self.liveness_seconds)

    def heartbeat_due(self, now: Optional[datetime] = None) -> bool:
        if self.record is None:
            return False
        now = now or self._clock()
        return (now - self.record.last_activity).total_seconds() >= self.heartbeat_seconds

    def heartbeat(self) -> bool:
        """Refresh liveness if the interval has passed; True when written."""
        if not self.heartbeat_due():
            return False
        self.announce(force=True)
        return True

    def peers(self) -> List[PresenceRecord]:
        records = live_records(self._connection.get(self._paths.presence), self._clock(), self.liveness_seconds)
        return [r for r in records if r.session_id != self._ctx.session_id]

    def subscribe(self, callback: Callable[[List[PresenceRecord]], None]) -> Subscription:
        def _on_value(raw: Any) -> None:
            callback(live_records(raw, self._clock(), self.liveness_seconds))

        if self._subscription is not None:
            self._subscription.close()
        self._subscription = self._connection.on_value(self._paths.presence, _on_value)
        return self._subscription

    def disconnect(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        if self.record is not None and self._connection.connected:
            self._connection.remove(self.path)
            self._connection.on_disconnect(self.path).cancel()
            logger.info("%s left", self._ctx.actor)
        self.record = None
