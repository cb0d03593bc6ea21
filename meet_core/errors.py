"""
meet_core.errors: exception taxonomy
=====================================

Every error a caller can recover from by re-fetching state derives from
``MeetCoreError``. ``kind`` is stable and machine readable; ``status_code``
is the HTTP status a transport layer should map it to.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class MeetCoreError(Exception):
    """Base exception for all meet_core errors."""

    kind = "error"
    status_code = 500

    def __init__(self, message: Optional[str] = None, **context: Any):
        self.message = message or self.__class__.__doc__ or self.kind
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"kind": self.kind, "message": self.message}
        if self.context:
            payload["context"] = dict(self.context)
        return payload


class ValidationError(MeetCoreError):
    """Malformed input."""

    kind = "validation"
    status_code = 400


class NotFoundError(MeetCoreError):
    """Unknown athlete entry, lift, attempt or group."""

    kind = "not_found"
    status_code = 404


class SequenceError(MeetCoreError):
    """Previous attempt is still open."""

    kind = "sequence"
    status_code = 409


class MissingWeightError(MeetCoreError):
    """No weight has been declared for this attempt."""

    kind = "missing_weight"
    status_code = 409


class DuplicateVoteError(MeetCoreError):
    """This judge position has already voted on the attempt."""

    kind = "duplicate_vote"
    status_code = 409


class AlreadyDecidedError(MeetCoreError):
    """Already decided, refresh."""

    kind = "already_decided"
    status_code = 409


class AttemptAlreadyDecidedError(AlreadyDecidedError):
    """Voting on this attempt is closed, refresh."""

    kind = "attempt_already_decided"


class StorageError(MeetCoreError):
    """Store unavailable; nothing was applied."""

    kind = "storage"
    status_code = 503


__all__ = [
    "MeetCoreError",
    "ValidationError",
    "NotFoundError",
    "SequenceError",
    "MissingWeightError",
    "DuplicateVoteError",
    "AlreadyDecidedError",
    "AttemptAlreadyDecidedError",
    "StorageError",
]
