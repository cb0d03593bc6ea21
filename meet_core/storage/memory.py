"""In-process store.

Rows live in dicts behind a short internal lock. ``atomic()`` records an undo
action for every write made by the current thread and replays them in
reverse if the block raises, so a failed transition leaves nothing behind.
Attempt ids come from a counter that is not rolled back, like a database
sequence.
"""
from __future__ import annotations

import itertools
import logging
import threading
from contextlib import contextmanager
from dataclasses import replace
from typing import Any, Callable, Iterator, Optional

from ..errors import StorageError
from ..models import Attempt, AthleteEntry, AuditRecord, Ballot, Lift, RoundState
from ..types import JUDGE_POSITIONS, AttemptStatus, DecisionTrigger

logger = logging.getLogger(__name__)

_MISSING = object()


class MemoryStore:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._local = threading.local()
        self._ids = itertools.count(1)
        self._audit_ids = itertools.count(1)
        self._lifts: dict[str, Lift] = {}
        self._entries: dict[str, AthleteEntry] = {}
        self._attempts: dict[int, Attempt] = {}
        self._attempt_keys: dict[tuple[str, str, int], int] = {}
        self._round_states: dict[tuple[str, str], RoundState] = {}
        self._ballots: dict[tuple[int, str], Ballot] = {}
        self._audit: dict[int, AuditRecord] = {}

    # ----- transactions ---------------------------------------------------

    @contextmanager
    def atomic(self) -> Iterator[None]:
        if getattr(self._local, "undo", None) is not None:
            # Joined an outer transaction.
            yield
            return
        self._local.undo = []
        try:
            yield
        except BaseException:
            undo = self._local.undo
            with self._lock:
                for action in reversed(undo):
                    action()
            logger.debug("Rolled back %d write(s)", len(undo))
            raise
        finally:
            self._local.undo = None

    def _put(self, table: dict, key: Any, value: Any) -> None:
        previous = table.get(key, _MISSING)
        table[key] = value
        undo: Optional[list[Callable[[], None]]] = getattr(self._local, "undo", None)
        if undo is not None:
            undo.append(lambda: self._restore(table, key, previous))

    @staticmethod
    def _restore(table: dict, key: Any, previous: Any) -> None:
        if previous is _MISSING:
            table.pop(key, None)
        else:
            table[key] = previous

    # ----- reference data -------------------------------------------------

    def add_lift(self, lift: Lift) -> Lift:
        with self._lock:
            self._put(self._lifts, lift.id, lift)
        return lift

    def get_lift(self, lift_id: str) -> Optional[Lift]:
        with self._lock:
            return self._lifts.get(lift_id)

    def list_lifts(self) -> list[Lift]:
        with self._lock:
            return sorted(self._lifts.values(), key=lambda lift: (lift.sequence, lift.id))

    def add_entry(self, entry: AthleteEntry) -> AthleteEntry:
        with self._lock:
            self._put(self._entries, entry.id, entry)
        return entry

    def get_entry(self, entry_id: str) -> Optional[AthleteEntry]:
        with self._lock:
            return self._entries.get(entry_id)

    def list_entries(self, group_id: str, lift_id: str) -> list[AthleteEntry]:
        with self._lock:
            return [
                e
                for e in self._entries.values()
                if e.group_id == group_id and e.competes_in(lift_id)
            ]

    # ----- attempts -------------------------------------------------------

    def get_attempt(self, attempt_id: int) -> Optional[Attempt]:
        with self._lock:
            return self._attempts.get(attempt_id)

    def find_attempt(self, entry_id: str, lift_id: str, attempt_no: int) -> Optional[Attempt]:
        with self._lock:
            attempt_id = self._attempt_keys.get((entry_id, lift_id, attempt_no))
            return self._attempts.get(attempt_id) if attempt_id is not None else None

    def list_attempts(self, group_id: str, lift_id: str) -> list[Attempt]:
        with self._lock:
            entry_ids = {e.id for e in self._entries.values() if e.group_id == group_id}
            return [
                a
                for a in self._attempts.values()
                if a.lift_id == lift_id and a.entry_id in entry_ids
            ]

    def insert_attempt(
        self, entry_id: str, lift_id: str, attempt_no: int, weight_kg: Optional[float]
    ) -> Attempt:
        key = (entry_id, lift_id, attempt_no)
        with self._lock:
            if key in self._attempt_keys:
                raise StorageError(
                    "attempt already exists",
                    entry_id=entry_id,
                    lift_id=lift_id,
                    attempt_no=attempt_no,
                )
            attempt = Attempt(
                id=next(self._ids),
                entry_id=entry_id,
                lift_id=lift_id,
                attempt_no=attempt_no,
                weight_kg=weight_kg,
            )
            self._put(self._attempts, attempt.id, attempt)
            self._put(self._attempt_keys, key, attempt.id)
        return attempt

    def _require_attempt(self, attempt_id: int) -> Attempt:
        attempt = self._attempts.get(attempt_id)
        if attempt is None:
            raise StorageError("attempt row vanished", attempt_id=attempt_id)
        return attempt

    def update_attempt_weight(self, attempt_id: int, weight_kg: Optional[float]) -> Attempt:
        with self._lock:
            updated = replace(self._require_attempt(attempt_id), weight_kg=weight_kg)
            self._put(self._attempts, attempt_id, updated)
        return updated

    def compare_and_set_status(
        self,
        attempt_id: int,
        expected: AttemptStatus,
        status: AttemptStatus,
        decided_by: Optional[DecisionTrigger],
    ) -> bool:
        with self._lock:
            current = self._require_attempt(attempt_id)
            if current.status != expected:
                return False
            self._put(
                self._attempts,
                attempt_id,
                replace(current, status=status, decided_by=decided_by),
            )
            return True

    def force_status(
        self, attempt_id: int, status: AttemptStatus, decided_by: Optional[DecisionTrigger]
    ) -> Attempt:
        with self._lock:
            updated = replace(
                self._require_attempt(attempt_id), status=status, decided_by=decided_by
            )
            self._put(self._attempts, attempt_id, updated)
        return updated

    # ----- round state ----------------------------------------------------

    def get_round_state(self, group_id: str, lift_id: str) -> Optional[RoundState]:
        with self._lock:
            return self._round_states.get((group_id, lift_id))

    def save_round_state(self, state: RoundState, expected_version: Optional[int]) -> bool:
        key = (state.group_id, state.lift_id)
        with self._lock:
            current = self._round_states.get(key)
            if expected_version is None:
                if current is not None:
                    return False
            elif current is None or current.version != expected_version:
                return False
            self._put(self._round_states, key, state)
            return True

    # ----- ballots --------------------------------------------------------

    def list_ballots(self, attempt_id: int) -> list[Ballot]:
        with self._lock:
            return [
                self._ballots[(attempt_id, p)]
                for p in JUDGE_POSITIONS
                if (attempt_id, p) in self._ballots
            ]

    def insert_ballot(self, ballot: Ballot) -> bool:
        key = (ballot.attempt_id, ballot.position)
        with self._lock:
            if key in self._ballots:
                return False
            self._put(self._ballots, key, ballot)
            return True

    # ----- audit ----------------------------------------------------------

    def record_audit(self, record: AuditRecord) -> None:
        with self._lock:
            self._put(self._audit, next(self._audit_ids), record)

    def list_audit(self, attempt_id: Optional[int] = None) -> list[AuditRecord]:
        with self._lock:
            records = [self._audit[k] for k in sorted(self._audit)]
        if attempt_id is None:
            return records
        return [r for r in records if r.attempt_id == attempt_id]
