"""Director channel: decide or correct attempts without judge ballots.

Every action here is written to the audit trail and logged at warning,
since it is the only way an attempt can leave the PENDING → decided rule.
"""
from __future__ import annotations

import logging
from typing import Callable, Optional

from .attempts import AttemptLedger
from .errors import AlreadyDecidedError
from .models import Attempt, AuditRecord
from .storage import MeetStore
from .types import Result

logger = logging.getLogger(__name__)


class AdministrativeOverride:
    def __init__(self, store: MeetStore, ledger: AttemptLedger, clock_ms: Callable[[], int]) -> None:
        self.store = store
        self.ledger = ledger
        self.clock_ms = clock_ms

    def _audit(self, action: str, attempt_id: Optional[int], actor: str, **detail) -> None:
        self.store.record_audit(
            AuditRecord(
                action=action,
                attempt_id=attempt_id,
                actor=actor,
                detail=detail,
                created_at_ms=self.clock_ms(),
            )
        )

    def override_result(
        self, attempt_id: int, result: Result, *, correction: bool = False, actor: str = "director"
    ) -> Attempt:
        """Set the final result directly.

        A PENDING attempt is decided with the same compare-and-set as judge
        voting, so whichever writer lands first wins. With ``correction`` the
        director may rewrite an attempt that was already decided.

        Raises:
            AlreadyDecidedError: the attempt is decided and this is not a correction
        """
        before = self.ledger.attempt(attempt_id)
        if before.is_pending:
            after = self.ledger.judge(attempt_id, result, decided_by="override")
            self._audit("override_result", attempt_id, actor, result=result)
            logger.warning("Administrative decision on attempt %s: %s by %s", attempt_id, result, actor)
            return after

        if not correction:
            raise AlreadyDecidedError(
                f"attempt {attempt_id} is already {before.status}, refresh", attempt_id=attempt_id
            )
        after = self.ledger.force(attempt_id, result, "override")
        self._audit(
            "correct_result",
            attempt_id,
            actor,
            before=before.status,
            before_trigger=before.decided_by,
            result=result,
        )
        logger.warning(
            "Administrative correction on attempt %s: %s -> %s by %s",
            attempt_id,
            before.status,
            result,
            actor,
        )
        return after

    def edit_weight(self, attempt_id: int, weight_kg: float, *, actor: str = "director") -> Attempt:
        before, after = self.ledger.set_weight(attempt_id, weight_kg)
        self._audit(
            "edit_weight", attempt_id, actor, before=before.weight_kg, after=after.weight_kg
        )
        logger.warning(
            "Weight edit on attempt %s: %s -> %s kg by %s",
            attempt_id,
            before.weight_kg,
            after.weight_kg,
            actor,
        )
        return after

    def grant_extra_attempt(
        self, entry_id: str, lift_id: str, weight_kg: float, *, actor: str = "director"
    ) -> Attempt:
        attempt = self.ledger.add_extra_attempt(entry_id, lift_id, weight_kg)
        self._audit(
            "grant_extra_attempt",
            attempt.id,
            actor,
            entry_id=entry_id,
            lift_id=lift_id,
            weight_kg=weight_kg,
        )
        logger.warning("Extra attempt granted to %s on %s by %s", entry_id, lift_id, actor)
        return attempt
