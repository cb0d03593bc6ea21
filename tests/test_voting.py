from meet_core import Attempt, Ballot, decision_for, tally


def _ballots(*votes, attempt_id=1):
    positions = ("HEAD", "LEFT", "RIGHT")
    return [
        Ballot(attempt_id, positions[i], valid, None if valid else "OTHER")
        for i, valid in enumerate(votes)
    ]


def test_tally_needs_two_matching_ballots():
    assert tally([]) is None
    assert tally(_ballots(True)) is None
    assert tally(_ballots(True, False)) is None
    assert tally(_ballots(True, True)) == "VALID"
    assert tally(_ballots(False, False)) == "INVALID"
    assert tally(_ballots(True, False, False)) == "INVALID"
    assert tally(_ballots(False, True, True)) == "VALID"


def test_tally_ignores_uncounted_ballots():
    ballots = _ballots(True, True) + [Ballot(1, "RIGHT", False, "ROM", counted=False)]
    assert tally(ballots) == "VALID"
    assert tally([Ballot(1, "HEAD", False, counted=False), Ballot(1, "LEFT", False)]) is None


def test_decision_for_pending_attempt_is_none():
    attempt = Attempt(1, "e1", "squat", 1, 100.0)
    assert decision_for(attempt, _ballots(True)) is None


def test_decision_for_invalid_majority_collects_reasons_once():
    attempt = Attempt(1, "e1", "squat", 1, 100.0, "INVALID", "majority")
    ballots = [
        Ballot(1, "HEAD", False, "ROM"),
        Ballot(1, "LEFT", False, "ROM"),
        Ballot(1, "RIGHT", False, "DESCENT", counted=False),
    ]
    decision = decision_for(attempt, ballots)
    assert decision.result == "INVALID"
    assert decision.trigger == "majority"
    assert decision.reasons == ("ROM",)
    assert decision.votes() == {"HEAD": False, "LEFT": False, "RIGHT": False}


def test_decision_for_forced_attempt_reports_forced_reason():
    attempt = Attempt(1, "e1", "squat", 1, 100.0, "INVALID", "forced")
    decision = decision_for(attempt, _ballots(True, True))
    assert decision.forced
    assert decision.reasons == ("FORCED",)
    assert decision.votes() == {"HEAD": True, "LEFT": True, "RIGHT": None}
