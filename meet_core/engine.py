"""Live attempt progression & judgment engine (public entry point).

``MeetEngine`` exposes the operations judge, director and display clients
call. Each write runs as one transition:

1. validate the command (pydantic models in ``validation``),
2. take the lock of the (group, lift) it touches, one lock per pair, so
   groups on different platforms never contend,
3. apply ledger / aggregator / override changes and re-run the tracker
   inside ``store.atomic()``: the attempt status and the round pointer are
   committed together or not at all,
4. after commit, publish the collected events, best effort.

Losing a race surfaces as ``AlreadyDecidedError``; callers refresh with
``get_schedule`` / ``current_attempt`` and never retry automatically.
"""
from __future__ import annotations

import itertools
import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Iterator, Optional

from .attempts import AttemptLedger
from .config import EngineConfig
from .errors import NotFoundError
from .models import (
    Attempt,
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
from .notifier import Broadcaster, Event, InProcessHub, Subscription, Topic
from .override import AdministrativeOverride
from .storage import MeetStore, MemoryStore
from .timer import Countdown
from .tracker import RoundTracker
from .types import JUDGE_POSITIONS, EventType
from .validation import (
    BallotCmd,
    DeclareWeightCmd,
    ExtraAttemptCmd,
    ForceInvalidCmd,
    JudgeCmd,
    OverrideCmd,
    TimerCmd,
    WeightEditCmd,
    validate_command,
)
from .voting import VoteAggregator, decision_for

logger = logging.getLogger(__name__)


class KeyedLocks:
    """One lock per (group, lift); the registry lock only guards creation."""

    def __init__(self) -> None:
        self._init_lock = threading.Lock()
        self._locks: dict[Topic, threading.Lock] = {}

    def get(self, key: Topic) -> threading.Lock:
        with self._init_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock


@dataclass
class _Transition:
    topic: Topic
    events: list[Event] = field(default_factory=list)
    on_commit: list[Callable[[], None]] = field(default_factory=list)


class MeetEngine:
    def __init__(
        self,
        store: Optional[MeetStore] = None,
        config: Optional[EngineConfig] = None,
        broadcaster: Optional[Broadcaster] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or EngineConfig()
        self.store: MeetStore = store if store is not None else MemoryStore()
        self.hub = (
            broadcaster
            if broadcaster is not None
            else InProcessHub(self.config.subscriber_queue_size)
        )
        self._clock = clock
        self.ledger = AttemptLedger(self.store, self.config)
        self.tracker = RoundTracker(self.store, self.ledger)
        self.aggregator = VoteAggregator(self.store, self.ledger)
        self.admin = AdministrativeOverride(self.store, self.ledger, self._now_ms)
        self._locks = KeyedLocks()
        self._timers: dict[Topic, Countdown] = {}
        self._timers_lock = threading.Lock()
        self._seq = itertools.count(1)

    # ----- plumbing -------------------------------------------------------

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _event(self, type_: EventType, topic: Topic, **data) -> Event:
        return Event(
            type=type_,
            group_id=topic[0],
            lift_id=topic[1],
            data=data,
            seq=next(self._seq),
            timestamp_ms=self._now_ms(),
        )

    def _publish(self, events: list[Event]) -> None:
        for event in events:
            try:
                self.hub.publish(event)
            except Exception:
                logger.error("Broadcast error (non-fatal) for %s", event.type, exc_info=True)

    @contextmanager
    def _transition(self, topic: Topic) -> Iterator[_Transition]:
        tx = _Transition(topic)
        with self._locks.get(topic):
            with self.store.atomic():
                yield tx
            for callback in tx.on_commit:
                callback()
            self._publish(tx.events)

    def _attempt_topic(self, attempt_id: int) -> Topic:
        attempt = self.ledger.attempt(attempt_id)
        entry = self.ledger.entry(attempt.entry_id)
        return (entry.group_id, attempt.lift_id)

    def _timer(self, topic: Topic) -> Countdown:
        with self._timers_lock:
            timer = self._timers.get(topic)
            if timer is None:
                timer = self._timers[topic] = Countdown(self.config.timer_preset_sec)
            return timer

    def _advance(self, tx: _Transition, decided_attempt_id: Optional[int] = None) -> RoundState:
        group_id, lift_id = tx.topic
        outcome = self.tracker.recompute(group_id, lift_id, decided_attempt_id=decided_attempt_id)
        if outcome.turn_changed:
            state = outcome.state
            tx.events.append(
                self._event(
                    "turn-advanced",
                    tx.topic,
                    round=state.round,
                    currentEntryId=state.current_entry_id,
                    completed=state.completed,
                )
            )
            timer = self._timer(tx.topic)
            tx.events.append(self._event("timer-reset", tx.topic, seconds=timer.preset_sec))
            tx.on_commit.append(timer.reset)
        return outcome.state

    def _reorder_if_idle(self, tx: _Transition) -> None:
        """Re-run the tracker unless judging has begun on the current attempt."""
        state = self.store.get_round_state(*tx.topic)
        if state is None:
            return
        if state.current_entry_id is not None:
            current = self.store.find_attempt(state.current_entry_id, tx.topic[1], state.round)
            if current is not None and self.store.list_ballots(current.id):
                return
        self._advance(tx)

    def _decision_event(self, type_: EventType, tx: _Transition, decision: Decision) -> Event:
        return self._event(
            type_,
            tx.topic,
            attemptId=decision.attempt_id,
            result=decision.result,
            trigger=decision.trigger,
            reasons=list(decision.reasons),
            votes=decision.votes(),
        )

    def _ensure_state(self, group_id: str, lift_id: str) -> RoundState:
        self.ledger.lift(lift_id)
        state = self.store.get_round_state(group_id, lift_id)
        if state is not None:
            return state
        with self._transition((group_id, lift_id)) as tx:
            state = self.store.get_round_state(group_id, lift_id)
            if state is None:
                if not self.store.list_entries(group_id, lift_id):
                    raise NotFoundError(
                        f"unknown group {group_id} for {lift_id}", group_id=group_id, lift_id=lift_id
                    )
                state = self._advance(tx)
        return state

    # ----- reads ----------------------------------------------------------

    def get_schedule(self, group_id: str, lift_id: str) -> Schedule:
        """Round, current athlete and bar order. Creates the round state on first access."""
        return self.tracker.schedule(self._ensure_state(group_id, lift_id))

    def current_attempt(self, group_id: str, lift_id: str) -> CurrentAttempt:
        """Pull view used by clients to resynchronize after missed events."""
        state = self._ensure_state(group_id, lift_id)
        lift = self.ledger.lift(lift_id)
        entry = attempt = None
        votes: dict[str, Optional[bool]] = {p: None for p in JUDGE_POSITIONS}
        if state.current_entry_id is not None:
            entry = self.store.get_entry(state.current_entry_id)
            attempt = self.store.find_attempt(state.current_entry_id, lift_id, state.round)
        if attempt is not None:
            for ballot in self.store.list_ballots(attempt.id):
                votes[ballot.position] = ballot.valid
        last_decision = None
        if state.last_decided_attempt_id is not None:
            last = self.store.get_attempt(state.last_decided_attempt_id)
            if last is not None:
                last_decision = decision_for(last, self.store.list_ballots(last.id))
        return CurrentAttempt(
            group_id=group_id,
            lift=lift,
            round=state.round,
            completed=state.completed,
            entry=entry,
            attempt=attempt,
            ballots=votes,
            last_decision=last_decision,
            timer=self._timer((group_id, lift_id)).snapshot(self._now_ms()),
        )

    def list_lifts(self) -> list[Lift]:
        return self.store.list_lifts()

    def group_board(self, group_id: str, lift_id: str) -> GroupBoard:
        """Every athlete of the group in bar order, with all their attempts on the lift."""
        state = self._ensure_state(group_id, lift_id)
        entries = {e.id: e for e in self.store.list_entries(group_id, lift_id)}
        attempts: dict[str, dict[int, Attempt]] = {entry_id: {} for entry_id in entries}
        for attempt in self.store.list_attempts(group_id, lift_id):
            attempts.setdefault(attempt.entry_id, {})[attempt.attempt_no] = attempt
        order = self.tracker.schedule(state).order
        rows = tuple(
            BoardRow(entry=entries[entry_id], attempts=dict(sorted(attempts[entry_id].items())))
            for entry_id in order
            if entry_id in entries
        )
        return GroupBoard(group_id=group_id, lift=self.ledger.lift(lift_id), state=state, rows=rows)

    def get_vote_status(self, attempt_id: int) -> VoteStatus:
        attempt = self.ledger.attempt(attempt_id)
        ballots = self.store.list_ballots(attempt_id)
        return VoteStatus(
            attempt_id=attempt_id,
            positions=tuple(b.position for b in ballots),
            votes_received=len(ballots),
            decision=decision_for(attempt, ballots),
        )

    def audit_trail(self, attempt_id: Optional[int] = None):
        return self.store.list_audit(attempt_id)

    def subscribe(self, group_id: str, lift_id: str) -> Subscription:
        subscribe = getattr(self.hub, "subscribe", None)
        if subscribe is None:
            raise TypeError(f"{type(self.hub).__name__} does not support in-process subscriptions")
        return subscribe(group_id, lift_id)

    # ----- attempt ledger -------------------------------------------------

    def declare_weight(
        self, entry_id: str, lift_id: str, attempt_no: int, weight_kg: Optional[float]
    ) -> Attempt:
        cmd = validate_command(
            DeclareWeightCmd,
            entryId=entry_id,
            liftId=lift_id,
            attemptNo=attempt_no,
            weightKg=weight_kg,
        )
        entry = self.ledger.entry(cmd.entryId)
        with self._transition((entry.group_id, cmd.liftId)) as tx:
            attempt = self.ledger.declare_weight(
                cmd.entryId, cmd.liftId, cmd.attemptNo, cmd.weightKg
            )
            tx.events.append(
                self._event(
                    "weight-declared",
                    tx.topic,
                    attemptId=attempt.id,
                    entryId=attempt.entry_id,
                    attemptNo=attempt.attempt_no,
                    weightKg=attempt.weight_kg,
                )
            )
            self._reorder_if_idle(tx)
        return attempt

    def judge(self, attempt_id: int, result: str) -> Decision:
        """Decide an attempt directly (director's judge-and-advance)."""
        cmd = validate_command(JudgeCmd, attemptId=attempt_id, result=result)
        with self._transition(self._attempt_topic(cmd.attemptId)) as tx:
            attempt = self.ledger.judge(cmd.attemptId, cmd.result, decided_by="judge")
            decision = decision_for(attempt, self.store.list_ballots(attempt.id))
            tx.events.append(self._decision_event("decision-reached", tx, decision))
            self._advance(tx, decided_attempt_id=attempt.id)
        return decision

    # ----- judges ---------------------------------------------------------

    def cast_ballot(
        self, attempt_id: int, judge_position: str, valid: bool, reason: Optional[str] = None
    ) -> BallotReceipt:
        cmd = validate_command(
            BallotCmd, attemptId=attempt_id, judgePosition=judge_position, valid=valid, reason=reason
        )
        with self._transition(self._attempt_topic(cmd.attemptId)) as tx:
            attempt = self.ledger.attempt(cmd.attemptId)
            receipt = self.aggregator.cast(
                attempt, cmd.judgePosition, cmd.valid, cmd.reason
            )
            votes = {p: None for p in JUDGE_POSITIONS}
            for ballot in self.store.list_ballots(attempt.id):
                votes[ballot.position] = ballot.valid
            tx.events.append(
                self._event(
                    "ballot-cast",
                    tx.topic,
                    attemptId=attempt.id,
                    judgePosition=cmd.judgePosition,
                    valid=cmd.valid,
                    counted=receipt.counted,
                    votes=votes,
                    votesReceived=receipt.votes_received,
                )
            )
            if receipt.counted and receipt.decision is not None:
                tx.events.append(self._decision_event("decision-reached", tx, receipt.decision))
                self._advance(tx, decided_attempt_id=attempt.id)
        return receipt

    def force_invalid(self, attempt_id: int, judge_position: str = "HEAD") -> Decision:
        cmd = validate_command(ForceInvalidCmd, attemptId=attempt_id, judgePosition=judge_position)
        with self._transition(self._attempt_topic(cmd.attemptId)) as tx:
            attempt = self.ledger.attempt(cmd.attemptId)
            state = self.store.get_round_state(*tx.topic)
            decision, changed = self.aggregator.force_invalid(attempt, state)
            if changed:
                tx.events.append(self._decision_event("forced-invalid", tx, decision))
                self._advance(tx, decided_attempt_id=attempt.id)
        return decision

    # ----- director -------------------------------------------------------

    def override_result(
        self, attempt_id: int, result: str, *, correction: bool = False, actor: str = "director"
    ) -> Decision:
        cmd = validate_command(
            OverrideCmd, attemptId=attempt_id, result=result, correction=correction, actor=actor
        )
        with self._transition(self._attempt_topic(cmd.attemptId)) as tx:
            was_pending = self.ledger.attempt(cmd.attemptId).is_pending
            attempt = self.admin.override_result(
                cmd.attemptId, cmd.result, correction=cmd.correction, actor=cmd.actor
            )
            decision = decision_for(attempt, self.store.list_ballots(attempt.id))
            tx.events.append(self._decision_event("administrative-decision", tx, decision))
            self._advance(tx, decided_attempt_id=attempt.id if was_pending else None)
        return decision

    def edit_weight(self, attempt_id: int, weight_kg: float, *, actor: str = "director") -> Attempt:
        cmd = validate_command(WeightEditCmd, attemptId=attempt_id, weightKg=weight_kg, actor=actor)
        with self._transition(self._attempt_topic(cmd.attemptId)) as tx:
            attempt = self.admin.edit_weight(cmd.attemptId, cmd.weightKg, actor=cmd.actor)
            tx.events.append(
                self._event(
                    "weight-declared",
                    tx.topic,
                    attemptId=attempt.id,
                    entryId=attempt.entry_id,
                    attemptNo=attempt.attempt_no,
                    weightKg=attempt.weight_kg,
                )
            )
            self._reorder_if_idle(tx)
        return attempt

    def grant_extra_attempt(
        self, entry_id: str, lift_id: str, weight_kg: float, *, actor: str = "director"
    ) -> Attempt:
        cmd = validate_command(
            ExtraAttemptCmd, entryId=entry_id, liftId=lift_id, weightKg=weight_kg, actor=actor
        )
        entry = self.ledger.entry(cmd.entryId)
        with self._transition((entry.group_id, cmd.liftId)) as tx:
            attempt = self.admin.grant_extra_attempt(
                cmd.entryId, cmd.liftId, cmd.weightKg, actor=cmd.actor
            )
            tx.events.append(
                self._event(
                    "weight-declared",
                    tx.topic,
                    attemptId=attempt.id,
                    entryId=attempt.entry_id,
                    attemptNo=attempt.attempt_no,
                    weightKg=attempt.weight_kg,
                )
            )
        return attempt

    # ----- head judge countdown -------------------------------------------

    def _timer_command(
        self, type_: str, group_id: str, lift_id: str, seconds: Optional[int], judge_position: str
    ) -> TimerSnapshot:
        cmd = validate_command(
            TimerCmd,
            type=type_,
            groupId=group_id,
            liftId=lift_id,
            seconds=seconds,
            judgePosition=judge_position,
        )
        self.ledger.lift(cmd.liftId)
        topic = (cmd.groupId, cmd.liftId)
        timer = self._timer(topic)
        with self._locks.get(topic):
            now = self._now_ms()
            if cmd.type == "START_TIMER":
                timer.start(now, cmd.seconds)
                event = self._event(
                    "timer-started",
                    topic,
                    seconds=cmd.seconds or timer.preset_sec,
                    remaining=timer.remaining(now),
                    endsAtMs=timer.ends_at_ms,
                )
            elif cmd.type == "STOP_TIMER":
                timer.stop(now)
                event = self._event("timer-stopped", topic, remaining=timer.remaining(now))
            else:
                timer.reset()
                event = self._event("timer-reset", topic, seconds=timer.preset_sec)
            snapshot = timer.snapshot(now)
            self._publish([event])
        return snapshot

    def start_timer(
        self, group_id: str, lift_id: str, seconds: Optional[int] = None, judge_position: str = "HEAD"
    ) -> TimerSnapshot:
        return self._timer_command("START_TIMER", group_id, lift_id, seconds, judge_position)

    def stop_timer(self, group_id: str, lift_id: str, judge_position: str = "HEAD") -> TimerSnapshot:
        return self._timer_command("STOP_TIMER", group_id, lift_id, None, judge_position)

    def reset_timer(self, group_id: str, lift_id: str, judge_position: str = "HEAD") -> TimerSnapshot:
        return self._timer_command("RESET_TIMER", group_id, lift_id, None, judge_position)
