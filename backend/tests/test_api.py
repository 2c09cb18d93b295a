import pytest
from fastapi.testclient import TestClient

from rundown_sync import deps
from rundown_sync.main import app


BASE = "/rundowns/comp-1"


def who(session_id, role="editor", name=None):
    return {"X-Session-Id": session_id, "X-Display-Name": name or session_id.title(), "X-Role": role}


@pytest.fixture
def client(tree):
    deps.reset(tree)
    yield TestClient(app)
    deps.reset()


class TestReads:
    def test_healthz(self, client):
        assert client.get("/healthz").json() == {"status": "ok"}

    def test_rundown_seeded_on_first_open(self, client):
        body = client.get(BASE, headers=who("alice")).json()
        assert len(body["segments"]) == 7
        assert body["approval"]["status"] == "draft"
        assert body["presence"] == []
        assert body["startTimes"][:3] == [0, 45, 55]

    def test_presence_lists_other_sessions(self, client):
        client.get(BASE, headers=who("alice"))
        client.get(BASE, headers=who("bob", "producer"))
        peers = client.get(f"{BASE}/presence", headers=who("alice")).json()
        assert [(p["sessionId"], p["role"]) for p in peers] == [("bob", "producer")]

    def test_filter_segments(self, client):
        body = client.get(f"{BASE}/segments", params={"type": "break"}, headers=who("alice")).json()
        assert [s["name"] for s in body] == ["Commercial Break"]
        body = client.get(f"{BASE}/segments", params={"q": "coaches"}, headers=who("alice")).json()
        assert len(body) == 2

    def test_timesheet(self, client):
        sheet = client.get(f"{BASE}/timesheet", headers=who("alice")).json()
        assert sheet[1]["graphic"] == "logos"

    def test_session_header_required(self, client):
        assert client.get(BASE).status_code == 422

    def test_unknown_role(self, client):
        assert client.get(BASE, headers=who("alice", "director")).status_code == 422


class TestWrites:
    def test_add_and_edit(self, client):
        resp = client.post(f"{BASE}/segments", json={"segment": {"name": "Anthem", "durationSeconds": 90}, "after_id": "seg-001"}, headers=who("alice"))
        assert resp.status_code == 200
        body = resp.json()
        assert body["message"] == "Segment added"
        assert body["data"]["id"] == "seg-008"

        resp = client.patch(f"{BASE}/segments/seg-008", json={"sceneRef": "Single - Camera 1"}, headers=who("bob"))
        assert resp.json()["data"]["sceneRef"] == "Single - Camera 1"
        segments = client.get(BASE, headers=who("alice")).json()["segments"]
        assert segments[1]["name"] == "Anthem"

    def test_invalid_segment_rejected(self, client):
        resp = client.post(f"{BASE}/segments", json={"segment": {"type": "mystery"}}, headers=who("alice"))
        assert resp.status_code == 422

    def test_viewer_forbidden(self, client):
        resp = client.post(f"{BASE}/segments", json={}, headers=who("vic", "viewer"))
        assert resp.status_code == 403
        assert resp.json()["error"] == "PermissionDenied"

    def test_locked_segment_conflict(self, client):
        assert client.post(f"{BASE}/segments/seg-001/lock", json={"locked": True}, headers=who("pat", "producer")).status_code == 200
        resp = client.patch(f"{BASE}/segments/seg-001", json={"name": "x"}, headers=who("alice"))
        assert resp.status_code == 409
        assert resp.json()["error"] == "SegmentLocked"

    def test_missing_segment(self, client):
        assert client.delete(f"{BASE}/segments/seg-999", headers=who("alice")).status_code == 404

    def test_bulk_delete(self, client):
        client.post(f"{BASE}/segments/seg-002/lock", json={"locked": True}, headers=who("pat", "producer"))
        resp = client.post(
            f"{BASE}/segments/bulk-delete",
            json={"segment_ids": ["seg-001", "seg-002", "seg-003"]},
            headers=who("pat", "producer"),
        )
        assert resp.json()["message"] == "Deleted 2 segments (1 locked skipped)"

    def test_bulk_edit_needs_a_change(self, client):
        resp = client.post(f"{BASE}/segments/bulk-edit", json={"segment_ids": ["seg-001"]}, headers=who("alice"))
        assert resp.status_code == 422
        resp = client.post(f"{BASE}/segments/bulk-edit", json={"segment_ids": ["seg-001"], "type": "hold"}, headers=who("alice"))
        assert resp.json()["data"]["mutated"] == 1

    def test_undo_and_history_restore(self, client):
        client.delete(f"{BASE}/segments/seg-007", headers=who("alice"))
        assert client.post(f"{BASE}/undo", headers=who("alice")).json()["message"] == "Undid: Deleted segment 'Commercial Break'"
        client.delete(f"{BASE}/segments/seg-007", headers=who("alice"))

        history = client.get(f"{BASE}/history", headers=who("alice")).json()
        assert history[0]["action"] == "Deleted segment 'Commercial Break'"
        assert history[0]["restorable"] is True
        assert "snapshot" not in history[0]

        resp = client.post(f"{BASE}/history/{history[0]['id']}/restore", headers=who("alice"))
        assert resp.status_code == 200
        assert len(client.get(BASE, headers=who("alice")).json()["segments"]) == 7


class TestApproval:
    def test_lock_and_unlock(self, client):
        for transition, role in [("submit", "editor"), ("approve", "producer"), ("lock", "producer")]:
            resp = client.post(f"{BASE}/approval/{transition}", json={}, headers=who(role, role))
            assert resp.status_code == 200, resp.json()

        assert client.post(f"{BASE}/segments", json={}, headers=who("owner", "owner")).status_code == 403
        resp = client.post(f"{BASE}/approval/unlock", json={}, headers=who("owner", "owner"))
        assert resp.status_code == 428
        resp = client.post(f"{BASE}/approval/unlock", json={"confirmed": True}, headers=who("owner", "owner"))
        assert resp.json()["data"] == {"previousStatus": "locked", "newStatus": "draft"}

    def test_wrong_state_and_unknown(self, client):
        assert client.post(f"{BASE}/approval/approve", json={}, headers=who("pat", "producer")).status_code == 409
        assert client.post(f"{BASE}/approval/publish", json={}, headers=who("pat", "producer")).status_code == 404

    def test_return_to_draft_path_form(self, client):
        client.post(f"{BASE}/approval/submit", json={}, headers=who("pat", "producer"))
        client.post(f"{BASE}/approval/approve", json={}, headers=who("pat", "producer"))
        resp = client.post(f"{BASE}/approval/return-to-draft", json={}, headers=who("pat", "producer"))
        assert resp.json()["data"]["newStatus"] == "draft"


class TestSessionsAndFeed:
    def test_end_session(self, client):
        client.get(BASE, headers=who("alice"))
        assert client.delete(f"{BASE}/session", headers=who("alice")).json() == {"ok": True}
        assert client.delete(f"{BASE}/session", headers=who("alice")).json() == {"ok": False}

    def test_feed_pushes_changes(self, client):
        with client.websocket_connect(f"{BASE}/ws?session_id=watcher&role=viewer") as ws:
            first = ws.receive_json()
            assert len(first["segments"]) == 7
            client.post(f"{BASE}/segments", json={"segment": {"name": "Late add"}}, headers=who("alice"))
            update = ws.receive_json()
            assert update["segments"][-1]["name"] == "Late add"

    def test_closed_feed_ends_session(self, client, tree):
        watcher = "competitions/comp-1/production/rundown/presence/watcher"
        with client.websocket_connect(f"{BASE}/ws?session_id=watcher&role=viewer") as ws:
            ws.receive_json()
            assert tree.get(watcher)["sessionId"] == "watcher"
        assert tree.get(watcher) is None
        assert deps.close_editor("comp-1", "watcher") is False

    def test_idle_sessions_are_closed(self, client, tree, monkeypatch):
        monkeypatch.setattr(deps.settings, "presence_liveness_seconds", -1)
        presence = "competitions/comp-1/production/rundown/presence"
        client.get(BASE, headers=who("alice"))
        client.get(BASE, headers=who("bob"))
        assert list(tree.get(presence)) == ["bob"]
        assert deps.close_editor("comp-1", "alice") is False
