"""Three-judge vote aggregation.

The decision rule is a pure function over the ballots cast so far
(``tally``): two matching lights decide, whatever the third judge does.
``VoteAggregator`` applies that rule against the store:

- one ballot per judge position, a second one is a ``DuplicateVoteError``;
- the moment a majority exists the attempt is judged (trigger ``majority``);
- a ballot from the remaining judge after a majority is kept for the audit
  trail with ``counted=False`` and does not change the result;
- the head judge's force-invalid decides INVALID/FORCED over any ballots,
  and may still overturn a majority while that attempt is the last one
  decided on the platform;
- ballots on an attempt closed by force-invalid or by the director raise
  ``AttemptAlreadyDecidedError``.
"""
from __future__ import annotations

import logging
from typing import Iterable, Optional

from .attempts import AttemptLedger
from .errors import AttemptAlreadyDecidedError, DuplicateVoteError, MissingWeightError
from .models import Attempt, Ballot, BallotReceipt, Decision, RoundState
from .storage import MeetStore
from .types import FORCED_REASON, INVALID, VALID, JudgePosition, ReasonCode, Result

logger = logging.getLogger(__name__)

MAJORITY = 2


def tally(ballots: Iterable[Ballot]) -> Optional[Result]:
    """VALID or INVALID once two counted ballots agree, else None."""
    valid = invalid = 0
    for ballot in ballots:
        if not ballot.counted:
            continue
        if ballot.valid:
            valid += 1
        else:
            invalid += 1
    if valid >= MAJORITY:
        return VALID
    if invalid >= MAJORITY:
        return INVALID
    return None


def decision_for(attempt: Attempt, ballots: Iterable[Ballot]) -> Optional[Decision]:
    """Derive the Decision from a decided attempt row and its ballots."""
    if attempt.is_pending:
        return None
    return _decision(attempt, ballots)


def _decision(attempt: Attempt, ballots: Iterable[Ballot]) -> Decision:
    ballots = tuple(ballots)
    trigger = attempt.decided_by or "judge"
    if trigger == "forced":
        reasons: tuple[str, ...] = (FORCED_REASON,)
    elif attempt.status == INVALID:
        seen: dict[str, None] = {}
        for b in ballots:
            if b.counted and not b.valid and b.reason:
                seen.setdefault(b.reason, None)
        reasons = tuple(seen)
    else:
        reasons = ()
    return Decision(
        attempt_id=attempt.id,
        result=INVALID if attempt.status == INVALID else VALID,
        trigger=trigger,
        reasons=reasons,
        ballots=ballots,
    )


class VoteAggregator:
    def __init__(self, store: MeetStore, ledger: AttemptLedger) -> None:
        self.store = store
        self.ledger = ledger

    def cast(
        self,
        attempt: Attempt,
        position: JudgePosition,
        valid: bool,
        reason: Optional[ReasonCode] = None,
    ) -> BallotReceipt:
        """Record one ballot and decide the attempt if a majority now exists.

        Raises:
            DuplicateVoteError: this position already voted on the attempt
            AttemptAlreadyDecidedError: voting was closed by force or override
            MissingWeightError: nothing declared to vote on
        """
        ballots = self.store.list_ballots(attempt.id)
        if any(b.position == position for b in ballots):
            raise DuplicateVoteError(
                f"Judge {position} has already voted for this attempt",
                attempt_id=attempt.id,
                position=position,
            )

        if not attempt.is_pending:
            if attempt.decided_by != "majority":
                raise AttemptAlreadyDecidedError(
                    f"attempt {attempt.id} is already {attempt.status}, refresh",
                    attempt_id=attempt.id,
                )
            late = Ballot(attempt.id, position, valid, reason, counted=False)
            if not self.store.insert_ballot(late):
                raise DuplicateVoteError(
                    f"Judge {position} has already voted for this attempt",
                    attempt_id=attempt.id,
                )
            ballots = self.store.list_ballots(attempt.id)
            logger.debug("Late ballot %s on attempt %s kept for audit", position, attempt.id)
            return BallotReceipt(
                accepted=True,
                counted=False,
                votes_received=len(ballots),
                decision=decision_for(attempt, ballots),
            )

        if not attempt.has_weight:
            raise MissingWeightError(
                f"attempt {attempt.id} has no declared weight", attempt_id=attempt.id
            )
        if not self.store.insert_ballot(Ballot(attempt.id, position, valid, reason)):
            raise DuplicateVoteError(
                f"Judge {position} has already voted for this attempt", attempt_id=attempt.id
            )
        ballots = self.store.list_ballots(attempt.id)
        logger.debug(
            "Vote received: %s = %s for attempt %s (%d/3)",
            position,
            VALID if valid else INVALID,
            attempt.id,
            len(ballots),
        )

        result = tally(ballots)
        if result is None:
            return BallotReceipt(accepted=True, counted=True, votes_received=len(ballots))

        decided = self.ledger.judge(attempt.id, result, decided_by="majority")
        decision = decision_for(decided, ballots)
        logger.info("Attempt %s decided %s by majority", attempt.id, result)
        return BallotReceipt(
            accepted=True, counted=True, votes_received=len(ballots), decision=decision
        )

    def force_invalid(self, attempt: Attempt, state: Optional[RoundState]) -> tuple[Decision, bool]:
        """HEAD judge's red button. Returns (decision, changed).

        Raises:
            AttemptAlreadyDecidedError: decided by the director, or a later
                attempt has already been decided on this platform
        """
        if attempt.decided_by == "forced":
            return _decision(attempt, self.store.list_ballots(attempt.id)), False

        if attempt.is_pending:
            decided = self.ledger.judge(attempt.id, INVALID, decided_by="forced")
        elif (
            attempt.decided_by == "majority"
            and state is not None
            and state.last_decided_attempt_id == attempt.id
        ):
            logger.warning(
                "HEAD judge overturned %s majority on attempt %s", attempt.status, attempt.id
            )
            decided = self.ledger.force(attempt.id, INVALID, "forced")
        else:
            raise AttemptAlreadyDecidedError(
                f"attempt {attempt.id} is already {attempt.status}, refresh",
                attempt_id=attempt.id,
            )
        logger.warning("HEAD JUDGE FORCE INVALID for attempt %s", attempt.id)
        return _decision(decided, self.store.list_ballots(attempt.id)), True
