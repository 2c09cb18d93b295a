from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional, Tuple

from fastapi import Depends, Header, HTTPException

from rundown_sync.config import Settings
from rundown_sync.models.approval import Role
from rundown_sync.models.base import engine, init_db
from rundown_sync.repositories.tree_store import TreeStore
from rundown_sync.services.context import SessionContext
from rundown_sync.services.rundown_editor import RundownEditor


logger = logging.getLogger("rundown_sync.deps")

settings = Settings()

_lock = threading.Lock()
_tree: Optional[TreeStore] = None
_editors: Dict[Tuple[str, str], RundownEditor] = {}
# open live feeds per session
_feeds: Dict[Tuple[str, str], int] = {}


def get_tree_store() -> TreeStore:
    global _tree
    with _lock:
        if _tree is None:
            if settings.persist_tree:
                init_db()
                _tree = TreeStore(engine)
            else:
                _tree = TreeStore()
        return _tree


def session_context(
    x_session_id: str = Header(...),
    x_display_name: str = Header(""),
    x_role: str = Header(Role.VIEWER.value),
) -> SessionContext:
    try:
        role = Role(x_role.lower())
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Unknown role '{x_role}'")
    return SessionContext(session_id=x_session_id, display_name=x_display_name or x_session_id, role=role)


def _take_idle(keep: Tuple[str, str]) -> List[RundownEditor]:
    """Unregister sessions with no open feed whose presence has gone stale."""
    idle = [
        key for key, editor in _editors.items()
        if key != keep and not _feeds.get(key) and not editor.presence.is_live()
    ]
    return [_editors.pop(key) for key in idle]


def open_editor(comp_id: str, ctx: SessionContext, tree: TreeStore, feed: bool = False) -> RundownEditor:
    """The caller's editing session on comp_id, opened on first use.

    With feed=True the session stays open until release_feed is called for
    every feed attached this way.
    """
    key = (comp_id, ctx.session_id)
    created = False
    with _lock:
        idle = _take_idle(key)
        editor = _editors.get(key)
        if editor is None:
            editor = RundownEditor(
                tree.connect(ctx.session_id),
                comp_id,
                ctx,
                undo_capacity=settings.undo_capacity,
                liveness_seconds=settings.presence_liveness_seconds,
                heartbeat_seconds=settings.presence_heartbeat_seconds,
                untimed_window=settings.untimed_conflict_window_seconds,
                history_limit=settings.history_limit,
            ).open()
            _editors[key] = editor
            created = True
        if feed:
            _feeds[key] = _feeds.get(key, 0) + 1
    for stale in idle:
        logger.info("Closing idle session %s", stale.ctx.actor)
        stale.close()
    if not created:
        editor.set_role(ctx.role)
        editor.presence.heartbeat()
    return editor


def get_editor(
    comp_id: str,
    ctx: SessionContext = Depends(session_context),
    tree: TreeStore = Depends(get_tree_store),
) -> RundownEditor:
    return open_editor(comp_id, ctx, tree)


def release_feed(comp_id: str, session_id: str) -> bool:
    """Detach one feed; the session is closed once its last feed is gone."""
    key = (comp_id, session_id)
    with _lock:
        remaining = _feeds.get(key, 0) - 1
        if remaining > 0:
            _feeds[key] = remaining
            return False
        _feeds.pop(key, None)
        editor = _editors.pop(key, None)
    if editor is None:
        return False
    editor.close()
    return True


def close_editor(comp_id: str, session_id: str) -> bool:
    with _lock:
        _feeds.pop((comp_id, session_id), None)
        editor = _editors.pop((comp_id, session_id), None)
    if editor is None:
        return False
    editor.close()
    return True


def reset(tree: Optional[TreeStore] = None) -> None:
    """Close every session and swap in tree (or a fresh one on next use)."""
    global _tree
    with _lock:
        editors = list(_editors.values())
        _editors.clear()
        _feeds.clear()
        _tree = tree
    for editor in editors:
        editor.close()
