import pytest

from rundown_sync.models.approval import ApprovalStatus
from rundown_sync.services.default_rundown import DEFAULT_SEGMENTS
from rundown_sync.services.history_log import HistoryLog
from rundown_sync.services.paths import RundownPaths
from rundown_sync.services.sync_coordinator import INVALID_DATA_MESSAGE, SAVE_ERROR_MESSAGE, SyncCoordinator


PATHS = RundownPaths("comp-1")


class Recorder:
    def __init__(self):
        self.segments = []
        self.groups = []
        self.statuses = []
        self.notes = []


@pytest.fixture
def recorder():
    return Recorder()


def coordinator(tree, clock, recorder, client="c1", **kwargs):
    conn = tree.connect(client)
    history = HistoryLog(conn, PATHS, client, clock=clock)
    sync = SyncCoordinator(conn, PATHS, history, notify=recorder.notes.append, clock=clock, **kwargs)
    handles = sync.subscribe(recorder.segments.append, recorder.groups.append, recorder.statuses.append)
    return sync, conn, handles


class TestSeeding:
    def test_empty_rundown_seeded_with_defaults(self, tree, clock, recorder):
        coordinator(tree, clock, recorder)
        assert [s.id for s in recorder.segments[-1]] == [d["id"] for d in DEFAULT_SEGMENTS]
        assert len(tree.get(PATHS.segments)) == 7

    def test_existing_rundown_not_reseeded(self, tree, clock, recorder):
        tree.set(PATHS.segments, [{"id": "seg-100", "type": "live"}])
        coordinator(tree, clock, recorder)
        assert [[s.id for s in segs] for segs in recorder.segments] == [["seg-100"]]

    def test_emptied_rundown_stays_empty(self, tree, clock, recorder):
        tree.set(PATHS.segments, [])
        coordinator(tree, clock, recorder)
        assert recorder.segments == [[]]

    def test_default_status_is_draft(self, tree, clock, recorder):
        coordinator(tree, clock, recorder)
        assert recorder.statuses[-1].status == ApprovalStatus.DRAFT


class TestInbound:
    def test_dict_shaped_list_is_ordered_by_index(self, tree, clock, recorder):
        tree.set(PATHS.segments, {"1": {"id": "b", "type": "live"}, "0": {"id": "a", "type": "live"}})
        coordinator(tree, clock, recorder)
        assert [s.id for s in recorder.segments[-1]] == ["a", "b"]

    def test_invalid_push_keeps_local_copy(self, tree, clock, recorder):
        coordinator(tree, clock, recorder, seed=lambda: [])
        tree.set(PATHS.segments, [{"id": "x", "type": "nonsense"}])
        assert recorder.segments == [[]]
        assert recorder.notes == [INVALID_DATA_MESSAGE]


class TestPublish:
    def test_publish_logs_prior_state(self, tree, clock, recorder, make_segment):
        sync, _, _ = coordinator(tree, clock, recorder, seed=lambda: [])
        assert sync.publish([make_segment("a")], history_action="Added segment 'a'")
        entry = sync._history.load()[0]
        assert entry.action == "Added segment 'a'"
        assert entry.snapshot.segments == []

    def test_publish_with_groups_writes_both(self, tree, clock, recorder, make_segment):
        sync, _, _ = coordinator(tree, clock, recorder, seed=lambda: [])
        sync.publish([make_segment("a", groupId="g1")], [])
        assert tree.get(PATHS.segments)[0]["groupId"] == "g1"
        assert recorder.groups[-1] == []

    def test_failed_publish_notifies(self, tree, clock, recorder, make_segment):
        sync, conn, handles = coordinator(tree, clock, recorder, seed=lambda: [])
        conn.disconnect()
        assert not sync.publish([make_segment("a")], history_action="x")
        assert recorder.notes == [SAVE_ERROR_MESSAGE]
        assert tree.get(PATHS.history) is None

    def test_two_clients_converge_last_writer_wins(self, tree, clock, make_segment):
        first, second = Recorder(), Recorder()
        sync1, _, _ = coordinator(tree, clock, first, "c1", seed=lambda: [])
        sync2, _, _ = coordinator(tree, clock, second, "c2")
        sync1.publish([make_segment("a")])
        sync2.publish([make_segment("b")])
        assert [s.id for s in first.segments[-1]] == ["b"]
        assert [s.id for s in second.segments[-1]] == ["b"]
