from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor

from conftest import attempt_of, declare_round_one
from meet_core import AlreadyDecidedError


def _race(*actions):
    barrier = threading.Barrier(len(actions))

    def run(action):
        barrier.wait()
        try:
            return action()
        except AlreadyDecidedError as exc:
            return exc

    with ThreadPoolExecutor(max_workers=len(actions)) as pool:
        return list(pool.map(run, actions))


def test_judge_force_and_override_race_has_one_winner(engine):
    declare_round_one(engine)
    engine.get_schedule("A", "squat")
    attempt_id = attempt_of(engine, "e2", 1).id

    results = _race(
        lambda: engine.judge(attempt_id, "VALID"),
        lambda: engine.force_invalid(attempt_id),
        lambda: engine.override_result(attempt_id, "VALID"),
    )
    winners = [r for r in results if not isinstance(r, Exception)]
    assert len(winners) == 1
    final = attempt_of(engine, "e2", 1)
    assert final.decided_by == winners[0].trigger
    assert final.status == winners[0].result
    assert engine.get_schedule("A", "squat").current_entry_id == "e3"


def test_three_simultaneous_ballots_decide_once(engine):
    declare_round_one(engine)
    engine.get_schedule("A", "squat")
    sub = engine.subscribe("A", "squat")
    attempt_id = attempt_of(engine, "e2", 1).id

    receipts = _race(
        lambda: engine.cast_ballot(attempt_id, "HEAD", True),
        lambda: engine.cast_ballot(attempt_id, "LEFT", True),
        lambda: engine.cast_ballot(attempt_id, "RIGHT", True),
    )
    assert len([r for r in receipts if r.counted and r.decision is not None]) == 1
    assert len([r for r in receipts if not r.counted]) == 1
    events = sub.drain()
    assert [e.type for e in events].count("decision-reached") == 1
    assert [e.type for e in events].count("turn-advanced") == 1
    assert engine.get_vote_status(attempt_id).votes_received == 3


def test_concurrent_first_access_creates_one_round_state(engine):
    declare_round_one(engine)
    schedules = _race(*[lambda: engine.get_schedule("A", "squat")] * 4)
    assert {s.version for s in schedules} == {1}
    assert {s.current_entry_id for s in schedules} == {"e2"}


def test_each_platform_has_its_own_lock(engine):
    assert engine._locks.get(("A", "squat")) is engine._locks.get(("A", "squat"))
    assert engine._locks.get(("A", "squat")) is not engine._locks.get(("B", "squat"))
