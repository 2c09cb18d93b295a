from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import anyio
from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field

from rundown_sync.deps import close_editor, get_editor, get_tree_store, open_editor, release_feed, session_context
from rundown_sync.models.graphics import GraphicRef
from rundown_sync.models.segment import SegmentPatch, SegmentType, segments_to_wire
from rundown_sync.services.approval_workflow import TRANSITIONS, TransitionResult
from rundown_sync.services.rundown_editor import OperationResult, RundownEditor
from rundown_sync.services.segment_store import BulkResult

logger = logging.getLogger("rundown_sync.api")


router = APIRouter(prefix="/rundowns/{comp_id}", tags=["rundowns"])


class AddSegmentRequest(BaseModel):
    segment: Dict[str, Any] = Field(default_factory=dict)
    after_id: Optional[str] = None


class MoveRequest(BaseModel):
    from_index: int
    to_index: int


class LockRequest(BaseModel):
    locked: bool = True


class SegmentIdsRequest(BaseModel):
    segment_ids: List[str]


class BulkEditRequest(BaseModel):
    segment_ids: List[str]
    type: Optional[SegmentType] = None
    scene_ref: Optional[str] = None
    graphic_ref: Optional[GraphicRef] = None
    clear_graphic: bool = False


class CreateGroupRequest(BaseModel):
    name: str
    color_id: Optional[str] = None
    segment_ids: List[str] = Field(default_factory=list)


class UpdateGroupRequest(BaseModel):
    name: Optional[str] = None
    color_id: Optional[str] = None
    toggle_collapsed: bool = False


class TransitionRequest(BaseModel):
    reason: Optional[str] = None
    confirmed: bool = False


class PresenceRequest(BaseModel):
    single: Optional[str] = None
    multi: List[str] = Field(default_factory=list)


def _dump(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json", by_alias=True)
    if isinstance(data, BulkResult):
        return data.to_dict()
    if isinstance(data, TransitionResult):
        return data.details()
    if isinstance(data, list):
        return [_dump(d) for d in data]
    return data


def _respond(editor: RundownEditor, result: OperationResult) -> Dict[str, Any]:
    return {
        "message": result.message,
        "changed": result.changed,
        "saved": result.saved,
        "data": _dump(result.data),
        "notifications": editor.drain_notifications(),
    }


# reads

@router.get("")
def read_rundown(editor: RundownEditor = Depends(get_editor)) -> Dict[str, Any]:
    state = editor.state()
    state["presence"] = _dump(editor.peers())
    state["notifications"] = editor.drain_notifications()
    return state


@router.get("/segments")
def list_segments(
    type: Optional[str] = Query(None),
    q: str = Query(""),
    editor: RundownEditor = Depends(get_editor),
) -> List[Dict[str, Any]]:
    return segments_to_wire(editor.store.filter_segments(type, q))


@router.get("/timesheet")
def read_timesheet(editor: RundownEditor = Depends(get_editor)) -> List[Dict[str, Any]]:
    return editor.timesheet()


# segments

@router.post("/segments")
def add_segment(body: AddSegmentRequest, editor: RundownEditor = Depends(get_editor)) -> Dict[str, Any]:
    return _respond(editor, editor.add_segment(body.segment, after_id=body.after_id))


@router.post("/segments/move")
def move_segment(body: MoveRequest, editor: RundownEditor = Depends(get_editor)) -> Dict[str, Any]:
    return _respond(editor, editor.move_segment(body.from_index, body.to_index))


@router.post("/segments/bulk-delete")
def bulk_delete(body: SegmentIdsRequest, editor: RundownEditor = Depends(get_editor)) -> Dict[str, Any]:
    return _respond(editor, editor.bulk_delete(body.segment_ids))


@router.post("/segments/bulk-edit")
def bulk_edit(body: BulkEditRequest, editor: RundownEditor = Depends(get_editor)) -> Dict[str, Any]:
    if body.type is not None:
        result = editor.bulk_edit_type(body.segment_ids, body.type)
    elif body.scene_ref is not None:
        result = editor.bulk_edit_scene(body.segment_ids, body.scene_ref)
    elif body.graphic_ref is not None or body.clear_graphic:
        result = editor.bulk_edit_graphic(body.segment_ids, body.graphic_ref)
    else:
        raise HTTPException(status_code=422, detail="Nothing to change")
    return _respond(editor, result)


@router.post("/segments/{segment_id}/duplicate")
def duplicate_segment(segment_id: str, editor: RundownEditor = Depends(get_editor)) -> Dict[str, Any]:
    return _respond(editor, editor.duplicate_segment(segment_id))


@router.post("/segments/{segment_id}/move-up")
def move_segment_up(segment_id: str, editor: RundownEditor = Depends(get_editor)) -> Dict[str, Any]:
    return _respond(editor, editor.move_up(segment_id))


@router.post("/segments/{segment_id}/move-down")
def move_segment_down(segment_id: str, editor: RundownEditor = Depends(get_editor)) -> Dict[str, Any]:
    return _respond(editor, editor.move_down(segment_id))


@router.patch("/segments/{segment_id}")
def update_segment(segment_id: str, body: SegmentPatch, editor: RundownEditor = Depends(get_editor)) -> Dict[str, Any]:
    return _respond(editor, editor.update_segment(segment_id, body))


@router.delete("/segments/{segment_id}")
def delete_segment(segment_id: str, editor: RundownEditor = Depends(get_editor)) -> Dict[str, Any]:
    return _respond(editor, editor.delete_segment(segment_id))


@router.post("/segments/{segment_id}/lock")
def lock_segment(segment_id: str, body: LockRequest, editor: RundownEditor = Depends(get_editor)) -> Dict[str, Any]:
    return _respond(editor, editor.set_segment_locked(segment_id, body.locked))


# groups

@router.post("/groups")
def create_group(body: CreateGroupRequest, editor: RundownEditor = Depends(get_editor)) -> Dict[str, Any]:
    return _respond(editor, editor.create_group(body.name, body.color_id, body.segment_ids))


@router.patch("/groups/{group_id}")
def update_group(group_id: str, body: UpdateGroupRequest, editor: RundownEditor = Depends(get_editor)) -> Dict[str, Any]:
    if body.toggle_collapsed:
        return _respond(editor, editor.toggle_group_collapsed(group_id))
    return _respond(editor, editor.update_group(group_id, name=body.name, color_id=body.color_id))


@router.delete("/groups/{group_id}")
def delete_group(group_id: str, editor: RundownEditor = Depends(get_editor)) -> Dict[str, Any]:
    return _respond(editor, editor.delete_group(group_id))


@router.post("/groups/{group_id}/segments")
def group_segments(group_id: str, body: SegmentIdsRequest, editor: RundownEditor = Depends(get_editor)) -> Dict[str, Any]:
    return _respond(editor, editor.assign_group(body.segment_ids, group_id))


@router.post("/ungroup")
def ungroup_segments(body: SegmentIdsRequest, editor: RundownEditor = Depends(get_editor)) -> Dict[str, Any]:
    return _respond(editor, editor.assign_group(body.segment_ids, None))


# undo / history

@router.post("/undo")
def undo(editor: RundownEditor = Depends(get_editor)) -> Dict[str, Any]:
    return _respond(editor, editor.undo())


@router.post("/redo")
def redo(editor: RundownEditor = Depends(get_editor)) -> Dict[str, Any]:
    return _respond(editor, editor.redo())


@router.get("/history")
def read_history(limit: int = Query(100, ge=1, le=1000), editor: RundownEditor = Depends(get_editor)) -> List[Dict[str, Any]]:
    return [
        e.model_dump(mode="json", by_alias=True, exclude={"snapshot"}) | {"restorable": e.snapshot is not None}
        for e in editor.load_history(limit)
    ]


@router.post("/history/{entry_id}/restore")
def restore_history(entry_id: str, editor: RundownEditor = Depends(get_editor)) -> Dict[str, Any]:
    return _respond(editor, editor.restore_history(entry_id))


# approval

@router.post("/approval/{transition}")
def approval_transition(transition: str, body: TransitionRequest, editor: RundownEditor = Depends(get_editor)) -> Dict[str, Any]:
    name = transition.replace("-", "_")
    if name not in TRANSITIONS:
        raise HTTPException(status_code=404, detail=f"Unknown transition '{transition}'")
    return _respond(editor, editor.transition(name, reason=body.reason, confirmed=body.confirmed))


# presence

@router.get("/presence")
def read_presence(editor: RundownEditor = Depends(get_editor)) -> List[Dict[str, Any]]:
    return _dump(editor.peers())


@router.post("/presence")
def update_presence(body: PresenceRequest, editor: RundownEditor = Depends(get_editor)) -> Dict[str, Any]:
    return _dump(editor.select(body.single, body.multi))


@router.delete("/session")
def end_session(comp_id: str, ctx=Depends(session_context)) -> Dict[str, bool]:
    return {"ok": close_editor(comp_id, ctx.session_id)}


# live feed

def _queue_put_safe(q: asyncio.Queue, data: Dict[str, Any]) -> None:
    try:
        q.put_nowait(data)
    except asyncio.QueueFull:
        # drop if consumer is slow
        pass


@router.websocket("/ws")
async def rundown_feed(
    websocket: WebSocket,
    comp_id: str,
    session_id: str = Query(...),
    display_name: str = Query(""),
    role: str = Query("viewer"),
) -> None:
    """Push the full rundown state whenever it changes.

    Incoming messages are only used as activity for presence.
    """
    await websocket.accept()
    try:
        ctx = session_context(session_id, display_name, role)
    except HTTPException as exc:
        await websocket.close(code=1008, reason=str(exc.detail))
        return
    tree = await run_in_threadpool(get_tree_store)
    editor = await run_in_threadpool(open_editor, comp_id, ctx, tree, feed=True)
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue(maxsize=64)

    def _on_change() -> None:
        loop.call_soon_threadsafe(_queue_put_safe, queue, editor.state())

    subscription = editor.add_listener(_on_change)
    receiver: Optional[asyncio.Future] = None
    try:
        await websocket.send_json(editor.state())
        receiver = asyncio.ensure_future(websocket.receive_text())
        while True:
            sender = asyncio.ensure_future(queue.get())
            done, _ = await asyncio.wait({receiver, sender}, return_when=asyncio.FIRST_COMPLETED)
            if sender in done:
                await websocket.send_json(sender.result())
            else:
                sender.cancel()
            if receiver in done:
                receiver.result()
                await run_in_threadpool(editor.presence.heartbeat)
                receiver = asyncio.ensure_future(websocket.receive_text())
    except WebSocketDisconnect:
        logger.info("Feed closed for %s on %s", ctx.actor, comp_id)
    finally:
        if receiver is not None:
            receiver.cancel()
        subscription.close()
        # runs even when the feed task is being cancelled
        with anyio.CancelScope(shield=True):
            await run_in_threadpool(release_feed, comp_id, ctx.session_id)
