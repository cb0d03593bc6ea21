"""Attempt ledger: declared weights and PENDING → VALID/INVALID transitions.

Every status write is a compare-and-set against PENDING, so of several
actors racing to decide one attempt exactly one succeeds and the others get
``AlreadyDecidedError``. The ledger never locks; the engine holds the
per-(group, lift) lock and the store transaction around these calls.
"""
from __future__ import annotations

import logging
from typing import Optional

from .config import EngineConfig
from .errors import (
    AlreadyDecidedError,
    MissingWeightError,
    NotFoundError,
    SequenceError,
    ValidationError,
)
from .models import Attempt, AthleteEntry, Lift
from .storage import MeetStore
from .types import EXTRA_ATTEMPT_NO, PENDING, ROUNDS, DecisionTrigger, Result

logger = logging.getLogger(__name__)


class AttemptLedger:
    def __init__(self, store: MeetStore, config: EngineConfig) -> None:
        self.store = store
        self.config = config

    # ----- lookups --------------------------------------------------------

    def entry(self, entry_id: str) -> AthleteEntry:
        entry = self.store.get_entry(entry_id)
        if entry is None:
            raise NotFoundError(f"unknown athlete entry {entry_id}", entry_id=entry_id)
        return entry

    def lift(self, lift_id: str) -> Lift:
        lift = self.store.get_lift(lift_id)
        if lift is None:
            raise NotFoundError(f"unknown lift {lift_id}", lift_id=lift_id)
        return lift

    def attempt(self, attempt_id: int) -> Attempt:
        attempt = self.store.get_attempt(attempt_id)
        if attempt is None:
            raise NotFoundError(f"unknown attempt {attempt_id}", attempt_id=attempt_id)
        return attempt

    def check_weight(self, weight_kg: Optional[float]) -> float:
        if weight_kg is None:
            raise ValidationError("weightKg is required")
        if weight_kg < 0:
            raise ValidationError("weightKg cannot be negative", weight_kg=weight_kg)
        if weight_kg == 0 and not self.config.allow_zero_weight:
            raise ValidationError("0 kg is not allowed for this competition")
        if weight_kg > self.config.max_weight_kg:
            raise ValidationError(
                f"weightKg above {self.config.max_weight_kg:g}", weight_kg=weight_kg
            )
        return float(weight_kg)

    # ----- declarations ---------------------------------------------------

    def declare_weight(
        self, entry_id: str, lift_id: str, attempt_no: int, weight_kg: Optional[float]
    ) -> Attempt:
        """Create or update the declared weight of attempt ``attempt_no``.

        Raises:
            NotFoundError: unknown entry or lift
            ValidationError: bad attempt number, weight, or lift not contested
            SequenceError: previous attempt missing or still PENDING
            AlreadyDecidedError: this attempt has already been judged
        """
        if not 1 <= attempt_no <= ROUNDS:
            raise ValidationError(f"attemptNo must be between 1 and {ROUNDS}")
        entry = self.entry(entry_id)
        self.lift(lift_id)
        if not entry.competes_in(lift_id):
            raise ValidationError(
                f"entry {entry_id} is not registered for {lift_id}",
                entry_id=entry_id,
                lift_id=lift_id,
            )
        weight = self.check_weight(weight_kg)

        if attempt_no > 1:
            prior = self.store.find_attempt(entry_id, lift_id, attempt_no - 1)
            if prior is None or prior.is_pending:
                raise SequenceError(
                    f"attempt {attempt_no - 1} is still open",
                    entry_id=entry_id,
                    lift_id=lift_id,
                    attempt_no=attempt_no,
                )

        existing = self.store.find_attempt(entry_id, lift_id, attempt_no)
        if existing is None:
            attempt = self.store.insert_attempt(entry_id, lift_id, attempt_no, weight)
        elif not existing.is_pending:
            raise AlreadyDecidedError(
                f"attempt {attempt_no} is already {existing.status}", attempt_id=existing.id
            )
        else:
            attempt = self.store.update_attempt_weight(existing.id, weight)
        logger.debug(
            "Declared %s kg for %s %s attempt %d", weight, entry_id, lift_id, attempt_no
        )
        return attempt

    def open_round(self, entries: list[AthleteEntry], lift_id: str, round_no: int) -> list[Attempt]:
        """Create missing attempt rows for ``round_no``.

        The new row carries the previous declared weight until the director
        declares another one.
        """
        created = []
        for entry in entries:
            if self.store.find_attempt(entry.id, lift_id, round_no) is not None:
                continue
            prior = self.store.find_attempt(entry.id, lift_id, round_no - 1)
            if prior is None or prior.is_pending:
                continue
            created.append(self.store.insert_attempt(entry.id, lift_id, round_no, prior.weight_kg))
        if created:
            logger.debug("Opened round %d of %s for %d athlete(s)", round_no, lift_id, len(created))
        return created

    def set_weight(self, attempt_id: int, weight_kg: Optional[float]) -> tuple[Attempt, Attempt]:
        """Administrative weight edit; no sequence check. Returns (before, after)."""
        before = self.attempt(attempt_id)
        weight = self.check_weight(weight_kg)
        return before, self.store.update_attempt_weight(attempt_id, weight)

    def add_extra_attempt(self, entry_id: str, lift_id: str, weight_kg: float) -> Attempt:
        entry = self.entry(entry_id)
        self.lift(lift_id)
        if not entry.competes_in(lift_id):
            raise ValidationError(f"entry {entry_id} is not registered for {lift_id}")
        weight = self.check_weight(weight_kg)
        last = self.store.find_attempt(entry_id, lift_id, ROUNDS)
        if last is None or last.is_pending:
            raise SequenceError(f"attempt {ROUNDS} is still open", entry_id=entry_id)
        if self.store.find_attempt(entry_id, lift_id, EXTRA_ATTEMPT_NO) is not None:
            raise ValidationError("an extra attempt was already granted", entry_id=entry_id)
        return self.store.insert_attempt(entry_id, lift_id, EXTRA_ATTEMPT_NO, weight)

    # ----- judging --------------------------------------------------------

    def judge(self, attempt_id: int, result: Result, decided_by: DecisionTrigger = "judge") -> Attempt:
        """Move a PENDING attempt to ``result``.

        Raises:
            NotFoundError: unknown attempt
            AlreadyDecidedError: the attempt left PENDING before this call
            MissingWeightError: nothing declared yet
        """
        if result not in ("VALID", "INVALID"):
            raise ValidationError(f"result must be VALID or INVALID, got {result}")
        attempt = self.attempt(attempt_id)
        if not attempt.is_pending:
            raise AlreadyDecidedError(
                f"attempt {attempt_id} is already {attempt.status}", attempt_id=attempt_id
            )
        if not attempt.has_weight:
            raise MissingWeightError(
                f"attempt {attempt_id} has no declared weight", attempt_id=attempt_id
            )
        if not self.store.compare_and_set_status(attempt_id, PENDING, result, decided_by):
            logger.warning("Lost decision race on attempt %s (%s)", attempt_id, decided_by)
            raise AlreadyDecidedError(
                f"attempt {attempt_id} was decided concurrently", attempt_id=attempt_id
            )
        return self.attempt(attempt_id)

    def force(self, attempt_id: int, result: Result, decided_by: DecisionTrigger) -> Attempt:
        """Unconditional status write for head-judge and director corrections."""
        if not self.attempt(attempt_id).has_weight:
            raise MissingWeightError(
                f"attempt {attempt_id} has no declared weight", attempt_id=attempt_id
            )
        return self.store.force_status(attempt_id, result, decided_by)
