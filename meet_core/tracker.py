"""Round/turn tracker: one state machine per (group, lift).

States::

    NO_ATHLETE ──▶ ATHLETE_ON_PLATFORM(round, entry) ──┐
                         ▲                             │ attempt decided
                         └─────────── recompute ◀──────┘
                                          │ round 3 done
                                          ▼
                                    GROUP_COMPLETE

``recompute`` reads persisted attempts, asks the ordering engine for the head
of the order, opens the next round when nobody is owed an attempt, and
persists the result with a compare-and-set on ``RoundState.version``. It is
idempotent: with no attempt change in between, a second call writes nothing
and returns the same current athlete.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Optional

from .attempts import AttemptLedger
from .errors import AlreadyDecidedError
from .models import AthleteEntry, RoundState, Schedule
from .ordering import Contender, build_contenders, next_up, rank
from .storage import MeetStore
from .types import ROUNDS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrackerOutcome:
    state: RoundState
    previous: Optional[RoundState]
    changed: bool
    order: tuple[Contender, ...]

    @property
    def turn_changed(self) -> bool:
        """True when the platform changed hands, the round moved or the group finished."""
        if self.previous is None:
            return self.state.current_entry_id is not None or self.state.completed
        return (
            self.previous.current_entry_id != self.state.current_entry_id
            or self.previous.round != self.state.round
            or self.previous.completed != self.state.completed
        )


def _same_turn(a: RoundState, b: RoundState) -> bool:
    return (
        a.round == b.round
        and a.current_entry_id == b.current_entry_id
        and a.completed == b.completed
        and a.last_decided_attempt_id == b.last_decided_attempt_id
    )


class RoundTracker:
    def __init__(self, store: MeetStore, ledger: AttemptLedger) -> None:
        self.store = store
        self.ledger = ledger

    def _contenders(self, group_id: str, lift_id: str) -> tuple[list[AthleteEntry], list[Contender]]:
        entries = self.store.list_entries(group_id, lift_id)
        return entries, build_contenders(entries, self.store.list_attempts(group_id, lift_id))

    def recompute(
        self, group_id: str, lift_id: str, *, decided_attempt_id: Optional[int] = None
    ) -> TrackerOutcome:
        """Re-evaluate who is on the platform and persist it.

        Must run under the (group, lift) lock and inside ``store.atomic()``.

        Raises:
            AlreadyDecidedError: another process moved the round state first
        """
        previous = self.store.get_round_state(group_id, lift_id)
        base = previous or RoundState(group_id=group_id, lift_id=lift_id)
        entries, contenders = self._contenders(group_id, lift_id)

        round_no = base.round
        up: Optional[Contender] = None
        completed = False
        if entries:
            while True:
                up = next_up(contenders, round_no)
                if up is not None:
                    break
                if round_no >= ROUNDS:
                    completed = True
                    break
                round_no += 1
                if self.ledger.open_round(entries, lift_id, round_no):
                    entries, contenders = self._contenders(group_id, lift_id)

        candidate = replace(
            base,
            round=round_no,
            current_entry_id=up.entry_id if up is not None else None,
            completed=completed,
            last_decided_attempt_id=(
                decided_attempt_id
                if decided_attempt_id is not None
                else base.last_decided_attempt_id
            ),
        )
        order = tuple(rank(contenders, round_no))

        if previous is not None and _same_turn(previous, candidate):
            logger.debug("Recompute no-op for %s/%s", group_id, lift_id)
            return TrackerOutcome(state=previous, previous=previous, changed=False, order=order)

        new_state = replace(candidate, version=base.version + 1)
        expected = previous.version if previous is not None else None
        if not self.store.save_round_state(new_state, expected):
            logger.warning("Round state for %s/%s changed concurrently", group_id, lift_id)
            raise AlreadyDecidedError(
                "round state changed concurrently, refresh", group_id=group_id, lift_id=lift_id
            )

        outcome = TrackerOutcome(state=new_state, previous=previous, changed=True, order=order)
        if outcome.turn_changed:
            if new_state.completed:
                logger.info("Group %s completed %s", group_id, lift_id)
            else:
                logger.info(
                    "Now on platform %s/%s: round %d, entry %s",
                    group_id,
                    lift_id,
                    new_state.round,
                    new_state.current_entry_id,
                )
        return outcome

    def schedule(self, state: RoundState) -> Schedule:
        """Read-only bar order for the stored round; never writes."""
        _, contenders = self._contenders(state.group_id, state.lift_id)
        order = rank(contenders, state.round)
        return Schedule(
            group_id=state.group_id,
            lift_id=state.lift_id,
            round=state.round,
            current_entry_id=state.current_entry_id,
            ordered_pending=tuple(c.entry_id for c in order if c.owes(state.round)),
            order=tuple(c.entry_id for c in order),
            completed=state.completed,
            version=state.version,
        )
