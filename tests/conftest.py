from __future__ import annotations

import pytest

from meet_core import AthleteEntry, InProcessHub, Lift, MeetEngine, MemoryStore


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def seed(store) -> None:
    """Group A on the squat platform: three athletes, Dora also benches."""
    store.add_lift(Lift("squat", "Squat", 1))
    store.add_lift(Lift("bench", "Bench Press", 2))
    store.add_entry(AthleteEntry("e1", "A", "Ana", ("squat",), "F", 60.0, "-63"))
    store.add_entry(AthleteEntry("e2", "A", "Bea", ("squat",), "F", 70.0, "-72"))
    store.add_entry(AthleteEntry("e3", "A", "Cara", ("squat",), "F", 65.0, "-72"))
    store.add_entry(AthleteEntry("e4", "B", "Dora", ("squat", "bench"), "F", 80.0, "-84"))


def declare_round_one(engine: MeetEngine) -> None:
    engine.declare_weight("e1", "squat", 1, 100)
    engine.declare_weight("e2", "squat", 1, 90)
    engine.declare_weight("e3", "squat", 1, 100)


def attempt_of(engine: MeetEngine, entry_id: str, attempt_no: int, lift_id: str = "squat"):
    return engine.store.find_attempt(entry_id, lift_id, attempt_no)


def judge_current(engine: MeetEngine, result: str = "VALID", group_id: str = "A"):
    schedule = engine.get_schedule(group_id, "squat")
    attempt = attempt_of(engine, schedule.current_entry_id, schedule.round)
    return engine.judge(attempt.id, result)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def hub():
    return InProcessHub(queue_size=64)


@pytest.fixture
def engine(clock, hub):
    store = MemoryStore()
    seed(store)
    return MeetEngine(store, broadcaster=hub, clock=clock)
