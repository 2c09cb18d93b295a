from __future__ import annotations

import logging
from collections import deque
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Deque, Iterator, List, Optional

from rundown_sync.models.snapshot import Snapshot
from rundown_sync.services.segment_store import SegmentStore


logger = logging.getLogger("rundown_sync.undo")

DEFAULT_UNDO_CAPACITY = 25


class UndoEngine:
    """Bounded stacks of whole-state snapshots.

    Restoring a snapshot is itself a mutation; run it inside ``restoring()``
    so that the ``push_state`` calls it triggers are ignored.
    """

    def __init__(
        self,
        store: SegmentStore,
        capacity: int = DEFAULT_UNDO_CAPACITY,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._store = store
        self._clock = clock
        self.capacity = capacity
        self._undo: Deque[Snapshot] = deque(maxlen=capacity)
        self._redo: Deque[Snapshot] = deque(maxlen=capacity)
        self._restoring = 0

    @property
    def is_restoring(self) -> bool:
        return self._restoring > 0

    @contextmanager
    def restoring(self) -> Iterator[None]:
        self._restoring += 1
        try:
            yield
        finally:
            self._restoring -= 1

    def capture(self, description: str) -> Snapshot:
        return Snapshot.capture(self._store.segments, self._store.groups, description, self._clock())

    def push_state(self, description: str, snapshot: Optional[Snapshot] = None) -> Optional[Snapshot]:
        """Record the state to go back to; defaults to the current state."""
        if self.is_restoring:
            return None
        snap = snapshot if snapshot is not None else self.capture(description)
        self._undo.append(snap)
        self._redo.clear()
        return snap

    def undo(self) -> Optional[Snapshot]:
        """Pop the last snapshot, parking the current state on the redo stack."""
        if not self._undo:
            return None
        snap = self._undo.pop()
        self._redo.append(self.capture(snap.description))
        logger.debug("Undo: %s", snap.description)
        return snap

    def redo(self) -> Optional[Snapshot]:
        if not self._redo:
            return None
        snap = self._redo.pop()
        self._undo.append(self.capture(snap.description))
        logger.debug("Redo: %s", snap.description)
        return snap

    @property
    def can_undo(self) -> bool:
        return bool(self._undo)

    @property
    def can_redo(self) -> bool:
        return bool(self._redo)

    def undo_descriptions(self) -> List[str]:
        return [s.description for s in reversed(self._undo)]

    def redo_descriptions(self) -> List[str]:
        return [s.description for s in reversed(self._redo)]
