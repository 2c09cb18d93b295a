"""Error taxonomy for rundown operations.

Every error here is recoverable: operations raise them before any remote
write happens, and the API layer turns them into user-facing messages.
"""

from __future__ import annotations


class RundownError(Exception):
    """Base class; ``message`` is what the user sees."""

    status_code: int = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class PermissionDenied(RundownError):
    status_code = 403


class SegmentLocked(RundownError):
    status_code = 409

    def __init__(self, segment_id: str, message: str | None = None) -> None:
        super().__init__(message or f"Segment {segment_id} is locked")
        self.segment_id = segment_id


class InvalidTransition(RundownError):
    status_code = 409


class ConfirmationRequired(RundownError):
    status_code = 428


class NotFound(RundownError):
    status_code = 404


class SyncFailure(RundownError):
    status_code = 502
