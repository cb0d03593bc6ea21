"""Domain records shared by the ledger, tracker, aggregator and stores.

All records are frozen; stores hand out fresh instances and writers build new
ones with ``dataclasses.replace`` rather than mutating what they were given.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from .types import (
    AttemptStatus,
    DecisionTrigger,
    JudgePosition,
    JUDGE_POSITIONS,
    ReasonCode,
    Result,
    ScheduleSnapshot,
    TimerState,
)


@dataclass(frozen=True)
class Lift:
    id: str
    name: str
    # position in the meet programme (squat before bench, ...)
    sequence: int = 0


@dataclass(frozen=True)
class AthleteEntry:
    id: str
    group_id: str
    name: str
    lift_ids: tuple[str, ...]
    sex: Optional[str] = None
    bodyweight_kg: Optional[float] = None
    weight_category: Optional[str] = None

    def competes_in(self, lift_id: str) -> bool:
        return lift_id in self.lift_ids


@dataclass(frozen=True)
class Attempt:
    id: int
    entry_id: str
    lift_id: str
    attempt_no: int
    weight_kg: Optional[float]
    status: AttemptStatus = "PENDING"
    decided_by: Optional[DecisionTrigger] = None

    @property
    def is_pending(self) -> bool:
        return self.status == "PENDING"

    @property
    def has_weight(self) -> bool:
        return self.weight_kg is not None


@dataclass(frozen=True)
class RoundState:
    """Singleton per (group, lift); ``version`` increments on every change."""

    group_id: str
    lift_id: str
    round: int = 1
    current_entry_id: Optional[str] = None
    completed: bool = False
    version: int = 0
    last_decided_attempt_id: Optional[int] = None

    @property
    def phase(self) -> str:
        if self.completed:
            return "GROUP_COMPLETE"
        if self.current_entry_id is None:
            return "NO_ATHLETE"
        return "ATHLETE_ON_PLATFORM"


@dataclass(frozen=True)
class Ballot:
    attempt_id: int
    position: JudgePosition
    valid: bool
    reason: Optional[ReasonCode] = None
    # False for a ballot that arrived after the majority was reached.
    counted: bool = True


@dataclass(frozen=True)
class Decision:
    attempt_id: int
    result: Result
    trigger: DecisionTrigger
    reasons: tuple[str, ...] = ()
    ballots: tuple[Ballot, ...] = ()

    @property
    def forced(self) -> bool:
        return self.trigger == "forced"

    def votes(self) -> dict[str, Optional[bool]]:
        by_position = {b.position: b.valid for b in self.ballots}
        return {p: by_position.get(p) for p in JUDGE_POSITIONS}


@dataclass(frozen=True)
class AuditRecord:
    action: str
    attempt_id: Optional[int]
    actor: str
    detail: dict = field(default_factory=dict)
    created_at_ms: int = 0


@dataclass(frozen=True)
class BallotReceipt:
    accepted: bool
    counted: bool
    votes_received: int
    decision: Optional[Decision] = None


@dataclass(frozen=True)
class VoteStatus:
    attempt_id: int
    positions: tuple[str, ...]
    votes_received: int
    decision: Optional[Decision] = None


@dataclass(frozen=True)
class Schedule:
    group_id: str
    lift_id: str
    round: int
    current_entry_id: Optional[str]
    ordered_pending: tuple[str, ...]
    order: tuple[str, ...]
    completed: bool
    version: int

    def to_dict(self) -> ScheduleSnapshot:
        return {
            "groupId": self.group_id,
            "liftId": self.lift_id,
            "round": self.round,
            "currentEntryId": self.current_entry_id,
            "orderedPending": list(self.ordered_pending),
            "order": list(self.order),
            "completed": self.completed,
            "version": self.version,
        }


@dataclass(frozen=True)
class TimerSnapshot:
    state: TimerState
    preset_sec: int
    remaining: Optional[float]
    ends_at_ms: Optional[int]


@dataclass(frozen=True)
class CurrentAttempt:
    """Everything a reconnecting client needs to redraw the platform."""

    group_id: str
    lift: Lift
    round: int
    completed: bool
    entry: Optional[AthleteEntry]
    attempt: Optional[Attempt]
    ballots: dict[str, Optional[bool]]
    last_decision: Optional[Decision]
    timer: TimerSnapshot


@dataclass(frozen=True)
class BoardRow:
    entry: AthleteEntry
    attempts: dict[int, Attempt]

    def attempt(self, attempt_no: int) -> Optional[Attempt]:
        return self.attempts.get(attempt_no)


@dataclass(frozen=True)
class GroupBoard:
    """Director's view of one group on one lift: every athlete, every attempt."""

    group_id: str
    lift: Lift
    state: RoundState
    rows: tuple[BoardRow, ...]

    def row(self, entry_id: str) -> Optional[BoardRow]:
        for row in self.rows:
            if row.entry.id == entry_id:
                return row
        return None
