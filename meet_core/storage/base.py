"""Persistence contract consumed by the engine."""
from __future__ import annotations

from typing import ContextManager, Optional, Protocol

from ..models import Attempt, AthleteEntry, AuditRecord, Ballot, Lift, RoundState
from ..types import AttemptStatus, DecisionTrigger


class MeetStore(Protocol):
    """Row-level access to lifts, entries, attempts, round state and ballots.

    Implementations must give read-after-write consistency for a single row
    and raise ``StorageError`` when the backend fails. Writes made inside
    ``atomic()`` are applied together or not at all.
    """

    def atomic(self) -> ContextManager[None]:
        ...

    # Reference data (owned by registration / weigh-in collaborators)
    def add_lift(self, lift: Lift) -> Lift:
        ...

    def get_lift(self, lift_id: str) -> Optional[Lift]:
        ...

    def list_lifts(self) -> list[Lift]:
        """Lifts in meet order (``sequence``, then id)."""
        ...

    def add_entry(self, entry: AthleteEntry) -> AthleteEntry:
        ...

    def get_entry(self, entry_id: str) -> Optional[AthleteEntry]:
        ...

    def list_entries(self, group_id: str, lift_id: str) -> list[AthleteEntry]:
        ...

    # Attempts
    def get_attempt(self, attempt_id: int) -> Optional[Attempt]:
        ...

    def find_attempt(self, entry_id: str, lift_id: str, attempt_no: int) -> Optional[Attempt]:
        ...

    def list_attempts(self, group_id: str, lift_id: str) -> list[Attempt]:
        ...

    def insert_attempt(
        self, entry_id: str, lift_id: str, attempt_no: int, weight_kg: Optional[float]
    ) -> Attempt:
        ...

    def update_attempt_weight(self, attempt_id: int, weight_kg: Optional[float]) -> Attempt:
        ...

    def compare_and_set_status(
        self,
        attempt_id: int,
        expected: AttemptStatus,
        status: AttemptStatus,
        decided_by: Optional[DecisionTrigger],
    ) -> bool:
        """Write ``status`` only if the row still holds ``expected``."""
        ...

    def force_status(
        self, attempt_id: int, status: AttemptStatus, decided_by: Optional[DecisionTrigger]
    ) -> Attempt:
        ...

    # Round state
    def get_round_state(self, group_id: str, lift_id: str) -> Optional[RoundState]:
        ...

    def save_round_state(self, state: RoundState, expected_version: Optional[int]) -> bool:
        """Insert (``expected_version is None``) or compare-and-set on version."""
        ...

    # Ballots
    def list_ballots(self, attempt_id: int) -> list[Ballot]:
        ...

    def insert_ballot(self, ballot: Ballot) -> bool:
        """False when this judge position already has a ballot on the attempt."""
        ...

    # Audit trail for administrative actions
    def record_audit(self, record: AuditRecord) -> None:
        ...

    def list_audit(self, attempt_id: Optional[int] = None) -> list[AuditRecord]:
        ...
