import logging
import threading

import pytest
from sqlmodel import Session, select

from rundown_sync.errors import SyncFailure
from rundown_sync.models.base import init_db, make_engine
from rundown_sync.models.tree_node import TreeNode
from rundown_sync.repositories.tree_store import TreeStore, join_path, split_path


class TestPaths:
    def test_split_and_join(self):
        assert split_path("/a/b//c/") == ("a", "b", "c")
        assert join_path("a/", "/b", "", "c") == "a/b/c"

    def test_empty_path_rejected(self):
        with pytest.raises(ValueError):
            split_path("/")


class TestReadsAndWrites:
    def test_get_returns_copy(self, tree):
        tree.set("a/b", {"x": [1, 2]})
        value = tree.get("a/b")
        value["x"].append(3)
        assert tree.get("a/b/x") == [1, 2]

    def test_remove_prunes_empty_parents(self, tree):
        tree.set("a/b/c", 1)
        tree.set("a/d", 2)
        tree.remove("a/b/c")
        assert tree.get("a") == {"d": 2}
        tree.set("a/d", None)
        assert tree.get("a") is None

    def test_update_writes_relative_keys_together(self, tree):
        tree.set("r/keep", 1)
        tree.update("r", {"x": 1, "y/z": 2})
        assert tree.get("r") == {"keep": 1, "x": 1, "y": {"z": 2}}

    def test_push_keys_sort_chronologically(self, tree):
        keys = [tree.push("log", {"n": i}) for i in range(5)]
        assert keys == sorted(keys)
        assert len(set(keys)) == 5
        assert tree.get(join_path("log", keys[2])) == {"n": 2}

    def test_keys(self, tree):
        tree.update("log", {"b": 1, "a": 2})
        assert tree.keys("log") == ["a", "b"]
        assert tree.keys("missing") == []

    def test_unrelated_branches_are_shared_between_writes(self, tree):
        tree.set("a/big", {"x": [1, 2, 3]})
        before = tree._root["a"]["big"]
        tree.set("b", 1)
        tree.set("a/other", 2)
        assert tree._root["a"]["big"] is before


class TestSubscriptions:
    def test_initial_and_changed_values_only(self, tree):
        seen = []
        tree.set("a/b", 1)
        sub = tree.on_value("a", seen.append)
        tree.set("a/b", 1)
        tree.set("a/b", 2)
        tree.set("other", 5)
        assert seen == [{"b": 1}, {"b": 2}]
        sub.close()
        sub.close()
        tree.set("a/b", 3)
        assert seen == [{"b": 1}, {"b": 2}]
        assert tree.listener_count() == 0

    def test_parent_write_notifies_child_listener(self, tree):
        seen = []
        tree.on_value("a/b", seen.append)
        tree.set("a", {"b": 7})
        assert seen == [None, 7]

    def test_failing_listener_is_logged(self, tree, caplog):
        seen = []

        def boom(value):
            raise RuntimeError("listener bug")

        tree.on_value("a", boom)
        tree.on_value("a", seen.append)
        with caplog.at_level(logging.ERROR, logger="rundown_sync.tree_store"):
            tree.set("a", 1)
        assert seen == [None, 1]
        assert "Listener on 'a' failed" in caplog.text


    def test_concurrent_writers_deliver_in_write_order(self, tree):
        entered, release = threading.Event(), threading.Event()
        seen = []

        def slow(value):
            if value == "X":
                entered.set()
                release.wait(5)

        tree.set("k", "v0")
        tree.on_value("k", slow)
        tree.on_value("k", seen.append)

        first = threading.Thread(target=tree.set, args=("k", "X"))
        first.start()
        assert entered.wait(5)
        second = threading.Thread(target=tree.set, args=("k", "Y"))
        second.start()
        second.join(0.2)
        release.set()
        first.join(5)
        second.join(5)

        assert tree.get("k") == "Y"
        assert seen[-1] == "Y"
        assert "X" not in seen[seen.index("Y"):]

    def test_write_from_callback_is_not_overtaken(self, tree):
        seen = []

        def seed(value):
            if value is None:
                tree.set("k", "seeded")

        tree.on_value("k", seen.append)
        tree.on_value("k", seed)
        tree.on_value("k", seen.append)
        tree.set("k", "first")
        tree.remove("k")
        assert tree.get("k") == "seeded"
        assert seen[-2:] == ["seeded", "seeded"]


class TestConnections:
    def test_disconnect_runs_registered_removals(self, tree):
        conn = tree.connect("c1")
        conn.set("presence/c1", {"here": True})
        conn.on_disconnect("presence/c1").remove()
        conn.on_value("presence", lambda v: None)
        conn.disconnect()
        conn.disconnect()
        assert tree.get("presence") is None
        assert tree.listener_count() == 0

    def test_cancelled_removal_is_skipped(self, tree):
        conn = tree.connect("c1")
        conn.set("keep", 1)
        handle = conn.on_disconnect("keep")
        handle.remove()
        handle.cancel()
        conn.disconnect()
        assert tree.get("keep") == 1

    def test_disconnected_connection_fails(self, tree):
        conn = tree.connect("c1")
        conn.disconnect()
        with pytest.raises(SyncFailure):
            conn.set("a", 1)


class TestPersistence:
    def test_reload_from_database(self, tmp_path):
        engine = make_engine(tmp_path / "tree.db")
        init_db(engine)
        first = TreeStore(engine)
        first.set("competitions/c1/production/rundown/segments", [{"id": "seg-001"}])
        first.set("scratch/x", 1)
        first.remove("scratch/x")

        second = TreeStore(engine)
        assert second.get("competitions/c1/production/rundown/segments") == [{"id": "seg-001"}]
        assert second.get("scratch") is None

    def test_rundown_branches_are_separate_rows(self, tmp_path):
        engine = make_engine(tmp_path / "tree.db")
        init_db(engine)
        tree = TreeStore(engine)
        base = "competitions/c1/production/rundown"
        tree.set(f"{base}/segments", [{"id": "seg-001"}])
        tree.set(f"{base}/presence/alice", {"role": "editor"})
        tree.set("scratch/x", 1)

        with Session(engine) as session:
            keys = set(session.exec(select(TreeNode.key)))
        assert keys == {f"{base}/segments", f"{base}/presence", "scratch/x"}

        tree.set(f"{base}/presence/bob", {"role": "viewer"})
        tree.remove(f"{base}/segments")
        with Session(engine) as session:
            keys = set(session.exec(select(TreeNode.key)))
            presence = session.get(TreeNode, f"{base}/presence")
        assert keys == {f"{base}/presence", "scratch/x"}
        assert "bob" in presence.value_json

        reloaded = TreeStore(engine)
        assert reloaded.get(f"{base}/presence") == {"alice": {"role": "editor"}, "bob": {"role": "viewer"}}
        assert reloaded.get("scratch/x") == 1
