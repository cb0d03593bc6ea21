"""Bar-order engine (who takes the platform next).

Single source of truth for attempt order across tracker, displays and API:
- Athletes still owed an attempt in the active round always come first.
- Within a round: declared weight ascending (0 kg is the lowest value),
  undeclared last; equal bar weight puts the heavier athlete first.
- Athletes done with the active round follow, reshuffled by their next
  round's declared weight; undeclared ones keep their slot.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional, Sequence

from .models import Attempt, AthleteEntry
from .types import ROUNDS


@dataclass(frozen=True)
class Contender:
    entry_id: str
    bodyweight_kg: Optional[float] = None
    attempts: Mapping[int, Attempt] = field(default_factory=dict)

    def attempt(self, attempt_no: int) -> Optional[Attempt]:
        return self.attempts.get(attempt_no)

    def weight_for(self, attempt_no: int) -> Optional[float]:
        attempt = self.attempts.get(attempt_no)
        return attempt.weight_kg if attempt is not None else None

    def owes(self, attempt_no: int) -> bool:
        """True while this athlete still has to take attempt ``attempt_no``."""
        attempt = self.attempts.get(attempt_no)
        return attempt is None or attempt.is_pending


def build_contenders(
    entries: Iterable[AthleteEntry], attempts: Iterable[Attempt]
) -> list[Contender]:
    by_entry: dict[str, dict[int, Attempt]] = {}
    for attempt in attempts:
        by_entry.setdefault(attempt.entry_id, {})[attempt.attempt_no] = attempt
    return [
        Contender(
            entry_id=entry.id,
            bodyweight_kg=entry.bodyweight_kg,
            attempts=by_entry.get(entry.id, {}),
        )
        for entry in entries
    ]


def _sort_key(contender: Contender, attempt_no: int) -> tuple[int, float, float, str]:
    weight = contender.weight_for(attempt_no)
    # Entry id keeps the order total when weight and bodyweight both tie.
    return (
        0 if weight is not None else 1,
        weight if weight is not None else 0.0,
        -(contender.bodyweight_kg or 0.0),
        contender.entry_id,
    )


def _reshuffle_for_next_round(done: list[Contender], next_round: int) -> list[Contender]:
    if next_round > ROUNDS:
        return done
    slots = [i for i, c in enumerate(done) if c.weight_for(next_round) is not None]
    movers = sorted((done[i] for i in slots), key=lambda c: _sort_key(c, next_round))
    reordered = list(done)
    for slot, contender in zip(slots, movers):
        reordered[slot] = contender
    return reordered


def rank(contenders: Sequence[Contender], round_no: int) -> list[Contender]:
    """Total, deterministic bar order for ``round_no``.

    Pure function: no I/O, input is not mutated.
    """
    owing = [c for c in contenders if c.owes(round_no)]
    done = [c for c in contenders if not c.owes(round_no)]
    owing.sort(key=lambda c: _sort_key(c, round_no))
    done.sort(key=lambda c: _sort_key(c, round_no))
    return owing + _reshuffle_for_next_round(done, round_no + 1)


def next_up(contenders: Sequence[Contender], round_no: int) -> Optional[Contender]:
    order = rank(contenders, round_no)
    if order and order[0].owes(round_no):
        return order[0]
    return None


def rank_ids(contenders: Sequence[Contender], round_no: int) -> list[str]:
    return [c.entry_id for c in rank(contenders, round_no)]
