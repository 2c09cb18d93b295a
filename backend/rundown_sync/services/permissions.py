from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, FrozenSet

from rundown_sync.errors import PermissionDenied
from rundown_sync.models.approval import Action, ApprovalStatus, Role


ROLE_CAPABILITIES: Dict[Role, FrozenSet[Action]] = {
    Role.VIEWER: frozenset(),
    Role.EDITOR: frozenset({Action.EDIT}),
    Role.PRODUCER: frozenset({Action.EDIT, Action.LOCK, Action.APPROVE}),
    Role.OWNER: frozenset({Action.EDIT, Action.LOCK, Action.APPROVE}),
}


@dataclass(frozen=True)
class PermissionDecision:
    allowed: bool
    reason: str = ""

    def __bool__(self) -> bool:
        return self.allowed


def can_perform(action: Action | str, role: Role | str, status: ApprovalStatus | str) -> PermissionDecision:
    action, role, status = Action(action), Role(role), ApprovalStatus(status)
    caps = ROLE_CAPABILITIES[role]

    if action not in caps:
        if role == Role.VIEWER:
            return PermissionDecision(False, "Viewers cannot make changes to the rundown")
        return PermissionDecision(False, f"The {role.value} role cannot {action.value} the rundown")

    if action == Action.EDIT:
        if status == ApprovalStatus.LOCKED:
            return PermissionDecision(False, "Rundown is locked and cannot be edited")
        if status == ApprovalStatus.APPROVED and role != Role.OWNER:
            return PermissionDecision(False, "Rundown is approved; only the owner can edit it")
        if status == ApprovalStatus.IN_REVIEW and Action.LOCK not in caps:
            return PermissionDecision(False, "Rundown is in review; only producers and owners can edit it")

    return PermissionDecision(True)


def require(action: Action | str, role: Role | str, status: ApprovalStatus | str) -> None:
    decision = can_perform(action, role, status)
    if not decision.allowed:
        raise PermissionDenied(decision.reason)


def has_capability(role: Role | str, action: Action | str) -> bool:
    return Action(action) in ROLE_CAPABILITIES[Role(role)]
