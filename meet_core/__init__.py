from .config import EngineConfig
from .engine import MeetEngine
from .errors import (
    AlreadyDecidedError,
    AttemptAlreadyDecidedError,
    DuplicateVoteError,
    MeetCoreError,
    MissingWeightError,
    NotFoundError,
    SequenceError,
    StorageError,
    ValidationError,
)
from .models import (
    Attempt,
    AthleteEntry,
    AuditRecord,
    Ballot,
    BallotReceipt,
    BoardRow,
    CurrentAttempt,
    Decision,
    GroupBoard,
    Lift,
    RoundState,
    Schedule,
    TimerSnapshot,
    VoteStatus,
)
from .notifier import Broadcaster, Event, InProcessHub, Subscription
from .ordering import Contender, build_contenders, next_up, rank, rank_ids
from .storage import MeetStore, MemoryStore, SqlStore
from .types import EventPayload, ScheduleSnapshot
from .validation import InputSanitizer, parse_timer_preset
from .voting import decision_for, tally

__all__ = [
    "EngineConfig",
    "MeetEngine",
    "MeetCoreError",
    "ValidationError",
    "NotFoundError",
    "SequenceError",
    "MissingWeightError",
    "DuplicateVoteError",
    "AlreadyDecidedError",
    "AttemptAlreadyDecidedError",
    "StorageError",
    "Attempt",
    "AthleteEntry",
    "AuditRecord",
    "Ballot",
    "BallotReceipt",
    "BoardRow",
    "CurrentAttempt",
    "Decision",
    "GroupBoard",
    "Lift",
    "RoundState",
    "Schedule",
    "TimerSnapshot",
    "VoteStatus",
    "Broadcaster",
    "Event",
    "InProcessHub",
    "Subscription",
    "Contender",
    "build_contenders",
    "next_up",
    "rank",
    "rank_ids",
    "MeetStore",
    "MemoryStore",
    "SqlStore",
    "EventPayload",
    "ScheduleSnapshot",
    "InputSanitizer",
    "parse_timer_preset",
    "decision_for",
    "tally",
]
