"""One collaborator's editing session on one rundown.

Every user action runs the same pipeline: permission check, undo snapshot,
local mutation, publish (with a history entry). Local checks all happen
before anything is written, so a rejected action changes nothing anywhere.
Remote pushes replace local state wholesale.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, TypeVar, Union

from rundown_sync.models.approval import Action, ApprovalRecord, Role
from rundown_sync.models.graphics import GraphicRef
from rundown_sync.models.group import Group, groups_to_wire
from rundown_sync.models.presence import PresenceRecord, Selection
from rundown_sync.models.segment import Segment, SegmentPatch, SegmentType, parse_segment, segments_to_wire
from rundown_sync.models.snapshot import HistoryEntry, Snapshot
from rundown_sync.repositories.tree_store import Subscription, SubscriptionGroup, TreeConnection
from rundown_sync.services.approval_workflow import ApprovalWorkflow
from rundown_sync.services.conflict_detector import (
    UNTIMED_CONFLICT_WINDOW_SECONDS,
    Conflict,
    find_all_conflicts,
)
from rundown_sync.services.context import SessionContext
from rundown_sync.services.history_log import DEFAULT_HISTORY_LIMIT, RESTORE_ACTION, HistoryLog
from rundown_sync.services.paths import RundownPaths
from rundown_sync.services.permissions import can_perform, require
from rundown_sync.services.presence_tracker import (
    HEARTBEAT_INTERVAL_SECONDS,
    LIVENESS_WINDOW_SECONDS,
    PresenceTracker,
)
from rundown_sync.services.segment_mapper import map_editor_segments_to_engine
from rundown_sync.services.segment_store import BulkResult, SegmentStore, compute_start_times, total_runtime
from rundown_sync.services.sync_coordinator import SyncCoordinator
from rundown_sync.services.undo_engine import DEFAULT_UNDO_CAPACITY, UndoEngine


logger = logging.getLogger("rundown_sync.editor")

T = TypeVar("T")


@dataclass
class OperationResult:
    message: str
    data: Any = None
    changed: bool = True
    saved: bool = True


class _NothingChanged(Exception):
    def __init__(self, result: BulkResult) -> None:
        super().__init__(result.message)
        self.result = result


class RundownEditor:
    def __init__(
        self,
        connection: TreeConnection,
        comp_id: str,
        ctx: SessionContext,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        undo_capacity: int = DEFAULT_UNDO_CAPACITY,
        liveness_seconds: float = LIVENESS_WINDOW_SECONDS,
        heartbeat_seconds: float = HEARTBEAT_INTERVAL_SECONDS,
        untimed_window: float = UNTIMED_CONFLICT_WINDOW_SECONDS,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        seed: Optional[Callable[[], List[Segment]]] = None,
    ) -> None:
        self.ctx = ctx
        self.paths = RundownPaths(comp_id)
        self.connection = connection
        self.untimed_window = untimed_window
        self.notifications: List[str] = []
        self._listeners: Dict[int, Callable[[], None]] = {}
        self._next_listener = 0
        self._lock = threading.RLock()
        self._write_lock = threading.RLock()

        self.store = SegmentStore()
        self.workflow = ApprovalWorkflow(clock=clock)
        self.undo_engine = UndoEngine(self.store, capacity=undo_capacity, clock=clock)
        self.history = HistoryLog(connection, self.paths, ctx.actor, clock=clock, retain=history_limit)
        self.presence = PresenceTracker(
            connection, self.paths, ctx, clock=clock,
            liveness_seconds=liveness_seconds, heartbeat_seconds=heartbeat_seconds,
        )
        sync_kwargs: Dict[str, Any] = {"notify": self._notify, "clock": clock}
        if seed is not None:
            sync_kwargs["seed"] = seed
        self.sync = SyncCoordinator(connection, self.paths, self.history, **sync_kwargs)
        self._subscriptions: Optional[SubscriptionGroup] = None

    # lifecycle

    def open(self) -> "RundownEditor":
        if self._subscriptions is None:
            self._subscriptions = self.sync.subscribe(
                self._on_remote_segments, self._on_remote_groups, self._on_remote_status
            )
            self.presence.connect()
        return self

    def close(self) -> None:
        if self._subscriptions is not None:
            self._subscriptions.close()
        self.presence.disconnect()
        self.connection.disconnect()
        self._listeners.clear()

    def __enter__(self) -> "RundownEditor":
        return self.open()

    def __exit__(self, *exc: object) -> None:
        self.close()

    # notifications and change listeners

    def _notify(self, message: str) -> None:
        self.notifications.append(message)

    def drain_notifications(self) -> List[str]:
        out, self.notifications = self.notifications, []
        return out

    def add_listener(self, callback: Callable[[], None]) -> Subscription:
        self._next_listener += 1
        key = self._next_listener
        self._listeners[key] = callback
        return Subscription(lambda: self._listeners.pop(key, None))

    def _changed(self) -> None:
        for callback in list(self._listeners.values()):
            try:
                callback()
            except Exception:
                logger.exception("Change listener failed")

    # remote pushes

    def _on_remote_segments(self, segments: List[Segment]) -> None:
        with self._lock, self.undo_engine.restoring():
            self.store.replace_state(segments)
        self._changed()

    def _on_remote_groups(self, groups: List[Group]) -> None:
        with self._lock, self.undo_engine.restoring():
            self.store.replace_state(self.store.segments, groups)
        self._changed()

    def _on_remote_status(self, record: ApprovalRecord) -> None:
        with self._lock:
            self.workflow.apply_remote(record)
        self._changed()

    # pipeline
    #
    # _lock guards local state and is never held while writing to the tree:
    # tree deliveries take it from the writing thread. _write_lock keeps one
    # session's publishes in the order its changes were made.

    def _commit(
        self,
        description: Union[str, Callable[[T], str]],
        mutate: Callable[[], T],
        include_groups: bool = False,
        record_history: bool = True,
        details: Union[None, Dict[str, Any], Callable[[T], Dict[str, Any]]] = None,
        action: Action = Action.EDIT,
        record_undo: bool = True,
    ) -> tuple[T, bool]:
        with self._write_lock:
            with self._lock:
                require(action, self.ctx.role, self.workflow.status)
                before = self.undo_engine.capture("")
                result = mutate()
                text = description(result) if callable(description) else description
                if callable(details):
                    details = details(result)
                if record_undo:
                    self.undo_engine.push_state(text, snapshot=before.model_copy(update={"description": text}))
                segments = self.store.segments
                groups = self.store.groups if include_groups else None
            saved = self.sync.publish(
                segments,
                groups,
                history_action=text if record_history else None,
                details=details,
            )
        self._changed()
        return result, saved

    def _restore_snapshot(self, snap: Snapshot, description: str) -> bool:
        _, saved = self._commit(
            description,
            lambda: self.store.replace_state(
                [s.model_copy(deep=True) for s in snap.segments],
                [g.model_copy(deep=True) for g in snap.groups],
            ),
            include_groups=True,
            record_history=False,
            record_undo=False,
        )
        return saved

    # segments

    def add_segment(self, data: Optional[Dict[str, Any]] = None, after_id: Optional[str] = None) -> OperationResult:
        """Add a segment after after_id, or at the end.

        Also the entry point for segments proposed by other tools.
        """
        payload: Dict[str, Any] = {"name": "New Segment", "type": SegmentType.LIVE.value}
        payload.update(data or {})
        if not payload.get("id") or any(s.id == payload["id"] for s in self.store.segments):
            payload["id"] = self.store.new_segment_id()
        payload["locked"] = False
        segment = parse_segment(payload)
        if after_id is not None:
            self.store.index_of(after_id)
        seg, saved = self._commit(
            f"Added segment '{segment.name}'",
            lambda: self.store.insert_after(after_id, segment),
            details={"segmentId": segment.id},
        )
        return OperationResult("Segment added", data=seg, saved=saved)

    def duplicate_segment(self, segment_id: str) -> OperationResult:
        source = self.store.get(segment_id)
        seg, saved = self._commit(
            f"Duplicated segment '{source.name}'",
            lambda: self.store.duplicate(segment_id),
            details={"sourceId": segment_id},
        )
        return OperationResult("Segment duplicated", data=seg, saved=saved)

    def update_segment(self, segment_id: str, patch: SegmentPatch | Dict[str, Any]) -> OperationResult:
        if not isinstance(patch, SegmentPatch):
            patch = SegmentPatch.model_validate(patch)
        current = self.store.get(segment_id)
        seg, saved = self._commit(
            f"Edited segment '{current.name}'",
            lambda: self.store.update_by_id(segment_id, patch),
            details={"segmentId": segment_id, "fields": sorted(patch.changes())},
        )
        return OperationResult("Segment saved", data=seg, saved=saved)

    def delete_segment(self, segment_id: str) -> OperationResult:
        current = self.store.get(segment_id)
        seg, saved = self._commit(
            f"Deleted segment '{current.name}'",
            lambda: self.store.remove_by_id(segment_id),
            details={"segmentId": segment_id},
        )
        return OperationResult("Segment deleted", data=seg, saved=saved)

    def move_segment(self, from_index: int, to_index: int) -> OperationResult:
        segments = self.store.segments
        name = segments[from_index].name if 0 <= from_index < len(segments) else "?"
        _, saved = self._commit(
            f"Moved segment '{name}'",
            lambda: self.store.move_range(from_index, to_index),
            details={"fromIndex": from_index, "toIndex": to_index},
        )
        return OperationResult("Segment moved", saved=saved)

    def move_up(self, segment_id: str) -> OperationResult:
        idx = self.store.index_of(segment_id)
        if idx == 0:
            return OperationResult("Segment is already first", changed=False)
        return self.move_segment(idx, idx - 1)

    def move_down(self, segment_id: str) -> OperationResult:
        idx = self.store.index_of(segment_id)
        if idx >= len(self.store.segments) - 1:
            return OperationResult("Segment is already last", changed=False)
        return self.move_segment(idx, idx + 1)

    def set_segment_locked(self, segment_id: str, locked: bool) -> OperationResult:
        current = self.store.get(segment_id)
        verb = "Locked" if locked else "Unlocked"
        seg, saved = self._commit(
            f"{verb} segment '{current.name}'",
            lambda: self.store.set_locked(segment_id, locked),
            details={"segmentId": segment_id},
            action=Action.LOCK,
        )
        return OperationResult(f"Segment {verb.lower()}", data=seg, saved=saved)

    # bulk

    def _bulk(self, run: Callable[[], BulkResult], change: str = "") -> OperationResult:
        """Apply a bulk change; nothing is recorded or published when every target was skipped."""

        def _run() -> BulkResult:
            result = run()
            if not result.mutated:
                raise _NothingChanged(result)
            return result

        try:
            result, saved = self._commit(
                lambda r: f"{r.message}; {change}" if change else r.message,
                _run,
                details=lambda r: {**r.to_dict(), "segmentIds": list(r.mutated)},
            )
        except _NothingChanged as exc:
            return OperationResult(exc.result.message, data=exc.result, changed=False)
        return OperationResult(result.message, data=result, saved=saved)

    def bulk_delete(self, segment_ids: Sequence[str]) -> OperationResult:
        return self._bulk(lambda: self.store.bulk_delete(segment_ids))

    def bulk_edit_type(self, segment_ids: Sequence[str], segment_type: SegmentType | str) -> OperationResult:
        value = SegmentType(segment_type).value
        return self._bulk(lambda: self.store.bulk_edit_type(segment_ids, value), f"type set to {value}")

    def bulk_edit_scene(self, segment_ids: Sequence[str], scene_ref: str) -> OperationResult:
        return self._bulk(lambda: self.store.bulk_edit_scene(segment_ids, scene_ref), f"scene set to '{scene_ref}'")

    def bulk_edit_graphic(self, segment_ids: Sequence[str], graphic_ref: Optional[GraphicRef]) -> OperationResult:
        change = f"graphic set to {graphic_ref.graphic_id}" if graphic_ref else "graphic cleared"
        return self._bulk(lambda: self.store.bulk_edit_graphic(segment_ids, graphic_ref), change)

    # groups

    def create_group(self, name: str, color_id: Optional[str] = None, segment_ids: Sequence[str] = ()) -> OperationResult:
        (group, grouped), saved = self._commit(
            f"Created group '{name}'",
            lambda: self.store.create_group(name, color_id, segment_ids),
            include_groups=True,
        )
        return OperationResult(f"Group created; {grouped.message.lower()}", data=group, saved=saved)

    def update_group(self, group_id: str, name: Optional[str] = None, color_id: Optional[str] = None) -> OperationResult:
        group = self.store.get_group(group_id)
        updated, saved = self._commit(
            f"Edited group '{group.name}'",
            lambda: self.store.update_group(group_id, name=name, color_id=color_id),
            include_groups=True,
        )
        return OperationResult("Group saved", data=updated, saved=saved)

    def toggle_group_collapsed(self, group_id: str) -> OperationResult:
        group = self.store.get_group(group_id)
        updated, saved = self._commit(
            f"Toggled group '{group.name}'",
            lambda: self.store.toggle_group_collapsed(group_id),
            include_groups=True,
            record_history=False,
        )
        return OperationResult("Group collapsed" if updated.collapsed else "Group expanded", data=updated, saved=saved)

    def delete_group(self, group_id: str) -> OperationResult:
        group = self.store.get_group(group_id)
        count, saved = self._commit(
            f"Deleted group '{group.name}'",
            lambda: self.store.delete_group(group_id),
            include_groups=True,
            details={"groupId": group_id},
        )
        return OperationResult(f"Group deleted; {count} segment(s) ungrouped", data=count, saved=saved)

    def assign_group(self, segment_ids: Sequence[str], group_id: Optional[str]) -> OperationResult:
        if group_id is None:
            return self._bulk(lambda: self.store.ungroup_segments(segment_ids))
        group = self.store.get_group(group_id)
        return self._bulk(lambda: self.store.group_segments(group_id, segment_ids), f"group '{group.name}'")

    # undo / redo

    def undo(self) -> OperationResult:
        with self._write_lock:
            with self._lock:
                require(Action.EDIT, self.ctx.role, self.workflow.status)
                snap = self.undo_engine.undo()
            if snap is None:
                return OperationResult("Nothing to undo", changed=False)
            saved = self._restore_snapshot(snap, f"Undo: {snap.description}")
        return OperationResult(f"Undid: {snap.description}", saved=saved)

    def redo(self) -> OperationResult:
        with self._write_lock:
            with self._lock:
                require(Action.EDIT, self.ctx.role, self.workflow.status)
                snap = self.undo_engine.redo()
            if snap is None:
                return OperationResult("Nothing to redo", changed=False)
            saved = self._restore_snapshot(snap, f"Redo: {snap.description}")
        return OperationResult(f"Redid: {snap.description}", saved=saved)

    # history

    def load_history(self, limit: int = DEFAULT_HISTORY_LIMIT) -> List[HistoryEntry]:
        return self.history.load(limit)

    def restore_history(self, entry_id: str) -> OperationResult:
        entry = self.history.get(entry_id)
        with self._write_lock:
            with self._lock:
                require(Action.EDIT, self.ctx.role, self.workflow.status)
                before = self.undo_engine.capture(RESTORE_ACTION)
                details = self.history.restore(entry, self.store)
                self.undo_engine.push_state(RESTORE_ACTION, snapshot=before)
                segments, groups = self.store.segments, self.store.groups
            saved = self.sync.publish(segments, groups)
            if saved:
                self.sync.log(RESTORE_ACTION, details)
        self._changed()
        return OperationResult("Restored to previous version", data=details, saved=saved)

    # approval

    def transition(self, name: str, reason: Optional[str] = None, confirmed: bool = False) -> OperationResult:
        with self._write_lock:
            with self._lock:
                result = self.workflow.transition(name, self.ctx, reason=reason, confirmed=confirmed)
                record = self.workflow.record
            saved = self.sync.publish_status(record, result.history_action, result.details())
        self._changed()
        return OperationResult(result.history_action, data=result, saved=saved)

    # presence

    def select(self, single: Optional[str] = None, multi: Iterable[str] = ()) -> PresenceRecord:
        """Single and multi selection are exclusive; setting one clears the other."""
        multi = list(multi)
        selection = Selection(single=None if multi else single, multi=multi)
        return self.presence.announce(selection=selection)

    def peers(self) -> List[PresenceRecord]:
        return self.presence.peers()

    def set_role(self, role: Role | str) -> None:
        if Role(role) == self.ctx.role:
            return
        self.ctx = self.ctx.with_role(role)
        self.presence.announce(role=self.ctx.role)
        logger.info("%s is now %s", self.ctx.actor, self.ctx.role.value)

    # derived views

    def start_times(self, exclude_optional: bool = False) -> List[float]:
        return compute_start_times(self.store.segments, exclude_optional=exclude_optional)

    def conflicts(self) -> List[Conflict]:
        segments = self.store.segments
        return find_all_conflicts(segments, compute_start_times(segments), self.untimed_window)

    def timesheet(self) -> List[Dict[str, Any]]:
        return map_editor_segments_to_engine(self.store.segments)

    def state(self) -> Dict[str, Any]:
        with self._lock:
            segments = self.store.segments
            status = self.workflow.status
            return {
                "segments": segments_to_wire(segments),
                "groups": groups_to_wire(self.store.groups),
                "approval": self.workflow.record.model_dump(mode="json", by_alias=True),
                "startTimes": compute_start_times(segments),
                "runtimeSeconds": total_runtime(segments),
                "runtimeExcludingOptionalSeconds": total_runtime(segments, exclude_optional=True),
                "conflicts": [c.to_dict() for c in self.conflicts()],
                "canUndo": self.undo_engine.can_undo,
                "canRedo": self.undo_engine.can_redo,
                "undoDescriptions": self.undo_engine.undo_descriptions(),
                "redoDescriptions": self.undo_engine.redo_descriptions(),
                "permissions": {a.value: can_perform(a, self.ctx.role, status).allowed for a in Action},
            }
