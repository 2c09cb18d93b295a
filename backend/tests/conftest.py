from datetime import datetime, timedelta, timezone

import pytest

from rundown_sync.models.approval import Role
from rundown_sync.models.segment import parse_segment
from rundown_sync.repositories.tree_store import TreeStore
from rundown_sync.services.context import SessionContext
from rundown_sync.services.rundown_editor import RundownEditor


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start=datetime(2026, 3, 7, 18, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tree():
    return TreeStore()


@pytest.fixture
def make_segment():
    def _make(segment_id, **fields):
        data = {"id": segment_id, "name": fields.pop("name", segment_id), "type": fields.pop("type", "live")}
        data.update(fields)
        return parse_segment(data)

    return _make


@pytest.fixture
def open_editor(tree, clock):
    """Open editing sessions on the shared tree; all are closed after the test."""
    editors = []

    def _open(session_id="s1", role=Role.EDITOR, comp_id="comp-1", display_name=None, seed=None, **kwargs):
        ctx = SessionContext(session_id, display_name or session_id.upper(), Role(role))
        editor = RundownEditor(
            tree.connect(session_id),
            comp_id,
            ctx,
            clock=clock,
            seed=seed or (lambda: []),
            **kwargs,
        )
        editors.append(editor)
        return editor.open()

    yield _open
    for editor in editors:
        editor.close()
