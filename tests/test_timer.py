import pytest

from conftest import attempt_of, declare_round_one
from meet_core import NotFoundError, ValidationError
from meet_core.timer import Countdown


def test_countdown_runs_pauses_and_resumes():
    timer = Countdown(60)
    assert timer.remaining(0) == 60.0
    timer.start(1_000)
    assert timer.state == "running"
    assert timer.ends_at_ms == 61_000
    assert timer.remaining(31_000) == 30.0
    timer.stop(31_000)
    assert timer.state == "paused"
    assert timer.remaining(999_000) == 30.0
    timer.start(100_000)
    assert timer.ends_at_ms == 130_000
    assert timer.remaining(200_000) == 0.0
    timer.reset()
    assert timer.snapshot(0).remaining == 60.0


def test_head_judge_controls_the_platform_countdown(engine, clock):
    engine.get_schedule("A", "squat")
    sub = engine.subscribe("A", "squat")
    started = engine.start_timer("A", "squat")
    assert started.state == "running"
    assert started.remaining == 60.0

    clock.advance(15)
    assert engine.current_attempt("A", "squat").timer.remaining == 45.0
    stopped = engine.stop_timer("A", "squat")
    assert stopped.state == "paused"
    assert stopped.remaining == 45.0

    clock.advance(100)
    restarted = engine.start_timer("A", "squat")
    assert restarted.remaining == 45.0

    reset = engine.reset_timer("A", "squat")
    assert reset.state == "idle"
    assert reset.remaining == 60.0
    assert [e.type for e in sub.drain()] == [
        "timer-started",
        "timer-stopped",
        "timer-started",
        "timer-reset",
    ]


def test_custom_length_and_permissions(engine):
    assert engine.start_timer("A", "squat", seconds=90).remaining == 90.0
    with pytest.raises(ValidationError):
        engine.start_timer("A", "squat", judge_position="LEFT")
    with pytest.raises(ValidationError):
        engine.start_timer("A", "squat", seconds=0)
    with pytest.raises(NotFoundError):
        engine.start_timer("A", "deadlift")


def test_timer_resets_when_next_athlete_is_called(engine, clock):
    declare_round_one(engine)
    engine.get_schedule("A", "squat")
    engine.start_timer("A", "squat")
    clock.advance(20)
    assert engine.current_attempt("A", "squat").timer.remaining == 40.0

    engine.judge(attempt_of(engine, "e2", 1).id, "VALID")
    timer = engine.current_attempt("A", "squat").timer
    assert timer.state == "idle"
    assert timer.remaining == 60.0


def test_custom_length_applies_to_one_run_only():
    timer = Countdown(60)
    timer.start(0, seconds=90)
    assert timer.ends_at_ms == 90_000
    assert timer.preset_sec == 60
    timer.stop(30_000)
    timer.start(40_000)
    assert timer.remaining(40_000) == 60.0
    timer.reset()
    assert timer.preset_sec == 60
    assert timer.remaining(0) == 60.0


def test_next_athlete_gets_the_preset_after_a_custom_run(engine, clock):
    declare_round_one(engine)
    engine.get_schedule("A", "squat")
    assert engine.start_timer("A", "squat", seconds=90).remaining == 90.0
    clock.advance(10)

    engine.judge(attempt_of(engine, "e2", 1).id, "VALID")
    timer = engine.current_attempt("A", "squat").timer
    assert timer.state == "idle"
    assert timer.remaining == 60.0
    assert engine.reset_timer("A", "squat").remaining == 60.0
