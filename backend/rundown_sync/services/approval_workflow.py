"""Rundown-level approval state machine.

draft -> in-review -> approved -> locked, with reject / return-to-draft /
unlock edges back to draft. Permission is checked before the state, so a
role that can never perform a transition is told so regardless of status.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from rundown_sync.errors import ConfirmationRequired, InvalidTransition, PermissionDenied
from rundown_sync.models.approval import Action, ApprovalRecord, ApprovalStatus, Role
from rundown_sync.services.context import SessionContext
from rundown_sync.services.permissions import can_perform, has_capability


logger = logging.getLogger("rundown_sync.approval")


@dataclass(frozen=True)
class _Edge:
    source: ApprovalStatus
    target: ApprovalStatus
    action: Optional[Action]  # None: owner only
    wrong_state_message: str
    history_action: str


TRANSITIONS: Dict[str, _Edge] = {
    "submit": _Edge(
        ApprovalStatus.DRAFT, ApprovalStatus.IN_REVIEW, Action.EDIT,
        "Only draft rundowns can be submitted for review", "Submitted for review",
    ),
    "approve": _Edge(
        ApprovalStatus.IN_REVIEW, ApprovalStatus.APPROVED, Action.APPROVE,
        "Only rundowns in review can be approved", "Approved rundown",
    ),
    "reject": _Edge(
        ApprovalStatus.IN_REVIEW, ApprovalStatus.DRAFT, Action.APPROVE,
        "Only rundowns in review can be rejected", "Rejected rundown",
    ),
    "lock": _Edge(
        ApprovalStatus.APPROVED, ApprovalStatus.LOCKED, Action.LOCK,
        "Only approved rundowns can be locked", "Locked rundown",
    ),
    "return_to_draft": _Edge(
        ApprovalStatus.APPROVED, ApprovalStatus.DRAFT, Action.APPROVE,
        "Only approved rundowns can be returned to draft", "Returned to draft",
    ),
    "unlock": _Edge(
        ApprovalStatus.LOCKED, ApprovalStatus.DRAFT, None,
        "Only locked rundowns can be unlocked", "Unlocked rundown",
    ),
}


@dataclass(frozen=True)
class TransitionResult:
    transition: str
    previous_status: ApprovalStatus
    new_status: ApprovalStatus
    history_action: str
    reason: Optional[str] = None

    def details(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "previousStatus": self.previous_status.value,
            "newStatus": self.new_status.value,
        }
        if self.reason:
            out["reason"] = self.reason
        return out


class ApprovalWorkflow:
    def __init__(
        self,
        record: Optional[ApprovalRecord] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.record = record or ApprovalRecord()
        self._clock = clock

    @property
    def status(self) -> ApprovalStatus:
        return self.record.status

    def apply_remote(self, record: Optional[ApprovalRecord]) -> None:
        self.record = record or ApprovalRecord()

    def check(self, transition: str, ctx: SessionContext, reason: Optional[str] = None, confirmed: bool = False) -> _Edge:
        """Raise if ctx may not run transition now; returns the edge otherwise."""
        edge = TRANSITIONS.get(transition)
        if edge is None:
            raise InvalidTransition(f"Unknown transition '{transition}'")

        if edge.action is None:
            if ctx.role != Role.OWNER:
                raise PermissionDenied("Only the owner can unlock a locked rundown")
        elif not has_capability(ctx.role, edge.action):
            raise PermissionDenied(can_perform(edge.action, ctx.role, self.status).reason)

        if self.status != edge.source:
            raise InvalidTransition(edge.wrong_state_message)

        if edge.action is not None:
            decision = can_perform(edge.action, ctx.role, self.status)
            if not decision.allowed:
                raise PermissionDenied(decision.reason)

        if transition == "reject" and not (reason or "").strip():
            raise InvalidTransition("A reason is required to reject a rundown")
        if transition == "unlock" and not confirmed:
            raise ConfirmationRequired("Unlocking returns the rundown to draft; confirm to continue")
        return edge

    def transition(self, transition: str, ctx: SessionContext, reason: Optional[str] = None, confirmed: bool = False) -> TransitionResult:
        edge = self.check(transition, ctx, reason=reason, confirmed=confirmed)
        previous = self.status
        clean_reason = (reason or "").strip() or None
        self.record = ApprovalRecord(
            status=edge.target,
            updated_at=self._clock(),
            updated_by=ctx.actor,
            rejection_reason=clean_reason if transition == "reject" else None,
        )
        logger.info("Rundown %s -> %s by %s", previous.value, edge.target.value, ctx.actor)
        return TransitionResult(
            transition=transition,
            previous_status=previous,
            new_status=edge.target,
            history_action=edge.history_action,
            reason=clean_reason,
        )

    def submit(self, ctx: SessionContext) -> TransitionResult:
        return self.transition("submit", ctx)

    def approve(self, ctx: SessionContext) -> TransitionResult:
        return self.transition("approve", ctx)

    def reject(self, ctx: SessionContext, reason: str) -> TransitionResult:
        return self.transition("reject", ctx, reason=reason)

    def lock(self, ctx: SessionContext) -> TransitionResult:
        return self.transition("lock", ctx)

    def return_to_draft(self, ctx: SessionContext) -> TransitionResult:
        return self.transition("return_to_draft", ctx)

    def unlock(self, ctx: SessionContext, confirmed: bool = False) -> TransitionResult:
        return self.transition("unlock", ctx, confirmed=confirmed)
