"""Type definitions for attempt state, ballots and broadcast payloads."""
from __future__ import annotations

from typing import List, Literal, Optional, TypedDict

AttemptStatus = Literal["PENDING", "VALID", "INVALID"]
Result = Literal["VALID", "INVALID"]
JudgePosition = Literal["HEAD", "LEFT", "RIGHT"]
ReasonCode = Literal["ROM", "DESCENT", "OTHER", "FORCED"]

# How an attempt left PENDING. Stored on the attempt row so the Decision can
# be derived without a separate table.
DecisionTrigger = Literal["majority", "forced", "override", "judge"]

EventType = Literal[
    "ballot-cast",
    "decision-reached",
    "forced-invalid",
    "administrative-decision",
    "turn-advanced",
    "weight-declared",
    "timer-started",
    "timer-stopped",
    "timer-reset",
]

TimerState = Literal["idle", "running", "paused"]

PENDING: AttemptStatus = "PENDING"
VALID: Result = "VALID"
INVALID: Result = "INVALID"

JUDGE_POSITIONS: tuple[JudgePosition, ...] = ("HEAD", "LEFT", "RIGHT")
BALLOT_REASONS: frozenset[str] = frozenset({"ROM", "DESCENT", "OTHER"})
FORCED_REASON: ReasonCode = "FORCED"

ROUNDS = 3
EXTRA_ATTEMPT_NO = 4


class EventPayload(TypedDict, total=False):
    """
    Wire shape of one broadcast event.

    Common keys are always present; the rest depend on ``type``.
    """
    # Common
    type: str
    groupId: str
    liftId: str
    seq: int
    timestampMs: int

    # ballot-cast
    attemptId: Optional[int]
    judgePosition: Optional[str]
    valid: Optional[bool]
    counted: Optional[bool]
    votes: Optional[dict[str, Optional[bool]]]
    votesReceived: Optional[int]

    # decision-reached / forced-invalid / administrative-decision
    result: Optional[str]
    trigger: Optional[str]
    reasons: Optional[List[str]]

    # turn-advanced
    round: Optional[int]
    currentEntryId: Optional[str]
    completed: Optional[bool]

    # weight-declared
    entryId: Optional[str]
    attemptNo: Optional[int]
    weightKg: Optional[float]

    # timer-*
    seconds: Optional[int]
    remaining: Optional[float]
    endsAtMs: Optional[int]


class ScheduleSnapshot(TypedDict):
    """Transport form of ``Schedule``."""
    groupId: str
    liftId: str
    round: int
    currentEntryId: Optional[str]
    orderedPending: List[str]
    order: List[str]
    completed: bool
    version: int
