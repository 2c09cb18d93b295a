"""Shared key-value tree that collaborators read, write and subscribe to.

Paths are slash separated (``competitions/c1/production/rundown/segments``).
Dicts are branches; every other JSON value is a leaf. Writing ``None`` or an
empty dict removes the node and prunes empty parents.

``TreeStore`` is the shared tree. Each client talks to it through its own
``TreeConnection`` so that disconnecting can close that client's listeners
and run the removals it registered with ``on_disconnect``.

Writes never modify a published branch in place: the dicts along each
written path are copied and the new root swapped in, so unrelated branches
are shared between versions. Changes are delivered in write order while the
store lock is held; every write bumps a version and a listener never sees an
older version after a newer one.
"""

from __future__ import annotations

import copy
import itertools
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from rundown_sync.errors import SyncFailure
from rundown_sync.repositories.tree_nodes import TreeNodesRepository


logger = logging.getLogger("rundown_sync.tree_store")

ValueCallback = Callable[[Any], None]

# competitions/<comp>/production/rundown/<branch> is one database row
ROW_DEPTH = 5


def split_path(path: str) -> Tuple[str, ...]:
    parts = tuple(p for p in str(path).strip("/").split("/") if p)
    if not parts:
        raise ValueError("Path must not be empty")
    return parts


def join_path(*parts: str) -> str:
    return "/".join(p.strip("/") for p in parts if p and p.strip("/"))


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, dict) and not value)


def _read(root: Dict[str, Any], parts: Tuple[str, ...]) -> Any:
    node: Any = root
    for part in parts:
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node


def _branch(node: Dict[str, Any], key: str, copied: Set[int]) -> Dict[str, Any]:
    """Child branch of node that is safe to modify in this write."""
    child = node.get(key)
    if isinstance(child, dict) and id(child) in copied:
        return child
    child = dict(child) if isinstance(child, dict) else {}
    copied.add(id(child))
    node[key] = child
    return child


def _write(root: Dict[str, Any], parts: Tuple[str, ...], value: Any, copied: Set[int]) -> None:
    if _is_empty(value):
        _delete(root, parts, copied)
        return
    node = root
    for part in parts[:-1]:
        node = _branch(node, part, copied)
    node[parts[-1]] = value


def _delete(root: Dict[str, Any], parts: Tuple[str, ...], copied: Set[int]) -> None:
    if not isinstance(_read(root, parts[:-1]), dict):
        return
    trail: List[Tuple[Dict[str, Any], str]] = []
    node = root
    for part in parts[:-1]:
        trail.append((node, part))
        node = _branch(node, part, copied)
    node.pop(parts[-1], None)
    # prune branches left empty
    for parent, key in reversed(trail):
        if isinstance(parent.get(key), dict) and not parent[key]:
            del parent[key]


def _related(a: Tuple[str, ...], b: Tuple[str, ...]) -> bool:
    n = min(len(a), len(b))
    return a[:n] == b[:n]


def _rows_under(root: Dict[str, Any], parts: Tuple[str, ...], depth: int) -> Set[Tuple[str, ...]]:
    if len(parts) >= depth:
        return {parts[:depth]}
    node = _read(root, parts)
    if not isinstance(node, dict):
        return {parts}
    rows: Set[Tuple[str, ...]] = set()
    for key in node:
        rows |= _rows_under(root, parts + (key,), depth)
    return rows


def _touched_rows(old: Dict[str, Any], new: Dict[str, Any], parts: Tuple[str, ...], depth: int) -> Set[Tuple[str, ...]]:
    rows = _rows_under(old, parts, depth) | _rows_under(new, parts, depth)
    # a shallow leaf replaced by a branch leaves its own row behind
    for i in range(1, min(len(parts), depth)):
        node = _read(old, parts[:i])
        if node is not None and not isinstance(node, dict):
            rows.add(parts[:i])
    return rows


def _row_value(root: Dict[str, Any], row: Tuple[str, ...], depth: int) -> Any:
    node = _read(root, row)
    if isinstance(node, dict) and len(row) < depth:
        # stored by the deeper rows beneath it
        return None
    return node


class Subscription:
    """Handle for one listener; ``close()`` is safe to call more than once."""

    def __init__(self, on_close: Callable[[], None]) -> None:
        self._on_close = on_close
        self._lock = threading.Lock()
        self.closed = False

    def close(self) -> None:
        with self._lock:
            if self.closed:
                return
            self.closed = True
        self._on_close()

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


class SubscriptionGroup:
    """Owns several subscriptions and closes them together, once."""

    def __init__(self) -> None:
        self._subscriptions: List[Subscription] = []
        self.closed = False

    def add(self, subscription: Subscription) -> Subscription:
        if self.closed:
            subscription.close()
        else:
            self._subscriptions.append(subscription)
        return subscription

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        subs, self._subscriptions = self._subscriptions, []
        for sub in subs:
            sub.close()

    def __enter__(self) -> "SubscriptionGroup":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


@dataclass
class _Listener:
    parts: Tuple[str, ...]
    callback: ValueCallback
    seen: int = -1
    active: bool = True


class TreeStore:
    def __init__(self, engine: Optional[Engine] = None, row_depth: int = ROW_DEPTH) -> None:
        self._lock = threading.RLock()
        self._root: Dict[str, Any] = {}
        self._listeners: Dict[int, _Listener] = {}
        self._ids = itertools.count(1)
        self._push_seq = itertools.count()
        self._version = 0
        self._engine = engine
        self._row_depth = row_depth
        if engine is not None:
            self._load()

    def _load(self) -> None:
        try:
            with Session(self._engine) as session:
                rows = TreeNodesRepository(session).load_all()
        except SQLAlchemyError as exc:
            raise SyncFailure(f"Could not load rundown tree: {exc}") from exc
        root: Dict[str, Any] = {}
        copied = {id(root)}
        for key, value in rows.items():
            _write(root, split_path(key), value, copied)
        self._root = root
        logger.info("Loaded %d tree row(s) from database", len(rows))

    def _persist(self, rows: Dict[str, Any]) -> None:
        if self._engine is None or not rows:
            return
        try:
            with Session(self._engine) as session:
                TreeNodesRepository(session).save_many(rows)
        except SQLAlchemyError as exc:
            raise SyncFailure(f"Could not write {', '.join(rows)}: {exc}") from exc

    # reads

    def get(self, path: str) -> Any:
        parts = split_path(path)
        with self._lock:
            return copy.deepcopy(_read(self._root, parts))

    def keys(self, path: str) -> List[str]:
        """Sorted child keys of the branch at path."""
        parts = split_path(path)
        with self._lock:
            node = _read(self._root, parts)
            return sorted(node) if isinstance(node, dict) else []

    @property
    def version(self) -> int:
        return self._version

    # writes

    def set(self, path: str, value: Any) -> None:
        parts = split_path(path)
        self._apply([(parts, copy.deepcopy(value))])

    def update(self, path: str, partial: Dict[str, Any]) -> None:
        """Write several children of path at once; keys may be relative paths."""
        base = split_path(path)
        writes = [(base + split_path(k), copy.deepcopy(v)) for k, v in partial.items()]
        if writes:
            self._apply(writes)

    def remove(self, path: str) -> None:
        self._apply([(split_path(path), None)])

    def push(self, path: str, value: Any) -> str:
        """Append under path with a generated, chronologically sortable key."""
        key = f"{int(time.time() * 1000):013d}{next(self._push_seq) % 1_000_000:06d}"
        self.set(join_path(path, key), value)
        return key

    def _apply(self, writes: List[Tuple[Tuple[str, ...], Any]]) -> None:
        with self._lock:
            old = self._root
            new = dict(old)
            copied = {id(new)}
            for parts, value in writes:
                _write(new, parts, value, copied)

            rows: Set[Tuple[str, ...]] = set()
            for parts, _ in writes:
                rows |= _touched_rows(old, new, parts, self._row_depth)
            self._persist({"/".join(row): _row_value(new, row, self._row_depth) for row in sorted(rows)})

            self._root = new
            self._version += 1
            version = self._version
            listeners = [
                l for l in list(self._listeners.values())
                if any(_related(l.parts, parts) for parts, _ in writes)
            ]
            for listener in listeners:
                value = _read(new, listener.parts)
                if value != _read(old, listener.parts):
                    self._deliver(listener, copy.deepcopy(value), version)

    # subscriptions

    def on_value(self, path: str, callback: ValueCallback) -> Subscription:
        """Call back now with the current value and again on every change."""
        parts = split_path(path)
        listener = _Listener(parts=parts, callback=callback)

        def _unsubscribe() -> None:
            with self._lock:
                listener.active = False
                self._listeners.pop(listener_id, None)

        with self._lock:
            listener_id = next(self._ids)
            self._listeners[listener_id] = listener
            sub = Subscription(_unsubscribe)
            self._deliver(listener, copy.deepcopy(_read(self._root, parts)), self._version)
        return sub

    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    def _deliver(self, listener: _Listener, value: Any, version: int) -> None:
        # a write made from inside a callback may already have delivered newer data
        if not listener.active or version <= listener.seen:
            return
        listener.seen = version
        try:
            listener.callback(value)
        except Exception:
            logger.exception("Listener on '%s' failed", "/".join(listener.parts))

    def connect(self, client_id: str) -> "TreeConnection":
        return TreeConnection(self, client_id)


class OnDisconnect:
    def __init__(self, connection: "TreeConnection", path: str) -> None:
        self._connection = connection
        self._path = path

    def remove(self) -> None:
        self._connection._pending_removals[self._path] = None

    def cancel(self) -> None:
        self._connection._pending_removals.pop(self._path, None)


class TreeConnection:
    """One client's view of the shared tree."""

    def __init__(self, store: TreeStore, client_id: str) -> None:
        self.store = store
        self.client_id = client_id
        self.connected = True
        self._subscriptions = SubscriptionGroup()
        self._pending_removals: Dict[str, None] = {}

    def _check(self) -> None:
        if not self.connected:
            raise SyncFailure(f"Client {self.client_id} is disconnected")

    def get(self, path: str) -> Any:
        self._check()
        return self.store.get(path)

    def keys(self, path: str) -> List[str]:
        self._check()
        return self.store.keys(path)

    def set(self, path: str, value: Any) -> None:
        self._check()
        self.store.set(path, value)

    def update(self, path: str, partial: Dict[str, Any]) -> None:
        self._check()
        self.store.update(path, partial)

    def remove(self, path: str) -> None:
        self._check()
        self.store.remove(path)

    def push(self, path: str, value: Any) -> str:
        self._check()
        return self.store.push(path, value)

    def on_value(self, path: str, callback: ValueCallback) -> Subscription:
        self._check()
        return self._subscriptions.add(self.store.on_value(path, callback))

    def on_disconnect(self, path: str) -> OnDisconnect:
        return OnDisconnect(self, path)

    def disconnect(self) -> None:
        if not self.connected:
            return
        self.connected = False
        self._subscriptions.close()
        removals, self._pending_removals = list(self._pending_removals), {}
        for path in removals:
            try:
                self.store.remove(path)
            except SyncFailure:
                logger.exception("On-disconnect removal of '%s' failed", path)
        logger.info("Client %s disconnected", self.client_id)
