from __future__ import annotations

import pytest

from conftest import attempt_of, declare_round_one, judge_current, seed
from meet_core import (
    Ballot,
    EngineConfig,
    Lift,
    MeetEngine,
    RoundState,
    SqlStore,
    StorageError,
    ValidationError,
)


class FlakySqlStore(SqlStore):
    fail_round_state = False

    def save_round_state(self, state, expected_version):
        if self.fail_round_state:
            raise StorageError("round_states unavailable")
        return super().save_round_state(state, expected_version)


class StaleReadSqlStore(SqlStore):
    """Lets another process write between the existence check and the insert."""

    rival_write = None

    def _row_exists(self, s, row_type, key):
        if self.rival_write is None:
            return super()._row_exists(s, row_type, key)
        write, self.rival_write = self.rival_write, None
        write()
        return False


@pytest.fixture
def sql_engine(clock, hub):
    store = FlakySqlStore.from_url("sqlite://")
    seed(store)
    return MeetEngine(store, broadcaster=hub, clock=clock)


def test_majority_and_late_ballot_persist(sql_engine):
    declare_round_one(sql_engine)
    assert sql_engine.get_schedule("A", "squat").current_entry_id == "e2"
    attempt = attempt_of(sql_engine, "e2", 1)
    sql_engine.cast_ballot(attempt.id, "HEAD", True)
    receipt = sql_engine.cast_ballot(attempt.id, "LEFT", True)
    assert receipt.decision.result == "VALID"
    late = sql_engine.cast_ballot(attempt.id, "RIGHT", False)
    assert not late.counted

    stored = attempt_of(sql_engine, "e2", 1)
    assert stored.status == "VALID"
    assert stored.decided_by == "majority"
    ballots = sql_engine.store.list_ballots(attempt.id)
    assert [(b.position, b.counted) for b in ballots] == [
        ("HEAD", True),
        ("LEFT", True),
        ("RIGHT", False),
    ]
    assert ballots[2].reason == "OTHER"
    assert sql_engine.get_schedule("A", "squat").current_entry_id == "e3"


def test_rollback_restores_attempt_and_ballots(sql_engine):
    declare_round_one(sql_engine)
    sql_engine.get_schedule("A", "squat")
    attempt = attempt_of(sql_engine, "e2", 1)
    sql_engine.cast_ballot(attempt.id, "HEAD", True)

    sql_engine.store.fail_round_state = True
    with pytest.raises(StorageError):
        sql_engine.cast_ballot(attempt.id, "LEFT", True)
    sql_engine.store.fail_round_state = False

    assert attempt_of(sql_engine, "e2", 1).is_pending
    assert [b.position for b in sql_engine.store.list_ballots(attempt.id)] == ["HEAD"]
    assert sql_engine.get_schedule("A", "squat").version == 1


def test_full_group_runs_to_completion(sql_engine):
    declare_round_one(sql_engine)
    for _ in range(9):
        judge_current(sql_engine)
    schedule = sql_engine.get_schedule("A", "squat")
    assert schedule.completed
    assert schedule.current_entry_id is None
    extra = sql_engine.grant_extra_attempt("e3", "squat", 130)
    assert extra.attempt_no == 4
    record = sql_engine.audit_trail(extra.id)[0]
    assert record.detail["weight_kg"] == 130


def test_compare_and_set_guards(sql_engine):
    store = sql_engine.store
    attempt = store.insert_attempt("e1", "squat", 1, 100)
    assert store.compare_and_set_status(attempt.id, "PENDING", "VALID", "judge")
    assert not store.compare_and_set_status(attempt.id, "PENDING", "INVALID", "judge")
    assert store.get_attempt(attempt.id).status == "VALID"

    state = RoundState("A", "squat", version=1)
    assert store.save_round_state(state, None)
    assert not store.save_round_state(state, None)
    assert store.save_round_state(RoundState("A", "squat", round=2, version=2), 1)
    assert not store.save_round_state(RoundState("A", "squat", round=3, version=3), 1)
    assert store.get_round_state("A", "squat").round == 2


def test_duplicate_attempt_slot_is_a_storage_error(sql_engine):
    sql_engine.store.insert_attempt("e1", "squat", 1, 100)
    with pytest.raises(StorageError):
        sql_engine.store.insert_attempt("e1", "squat", 1, 105)


def test_from_config_requires_database_url():
    with pytest.raises(ValidationError):
        SqlStore.from_config(EngineConfig())
    store = SqlStore.from_config(EngineConfig(database_url="sqlite://"))
    assert store.engine.dialect.name == "sqlite"


def test_lift_order_and_group_board_persist(sql_engine):
    sql_engine.store.add_lift(Lift("pullup", "Pull-Up", 0))
    assert [(lift.id, lift.sequence) for lift in sql_engine.list_lifts()] == [
        ("pullup", 0),
        ("squat", 1),
        ("bench", 2),
    ]

    declare_round_one(sql_engine)
    judge_current(sql_engine, "INVALID")
    board = sql_engine.group_board("A", "squat")
    assert [row.entry.id for row in board.rows] == ["e3", "e1", "e2"]
    assert board.row("e2").attempt(1).status == "INVALID"
    assert board.row("e1").attempt(1).weight_kg == 100
    assert board.state.version == sql_engine.get_schedule("A", "squat").version


@pytest.fixture
def racing_stores(tmp_path):
    url = f"sqlite:///{tmp_path / 'meet.db'}"
    mine = StaleReadSqlStore.from_url(url)
    seed(mine)
    theirs = SqlStore.from_url(url)
    return mine, theirs


def test_ballot_insert_race_reports_duplicate_instead_of_failing(racing_stores):
    mine, theirs = racing_stores
    attempt = mine.insert_attempt("e2", "squat", 1, 90)
    mine.rival_write = lambda: theirs.insert_ballot(Ballot(attempt.id, "LEFT", True))

    with mine.atomic():
        assert not mine.insert_ballot(Ballot(attempt.id, "LEFT", False, "ROM"))
        # the transaction survives the lost race
        assert mine.insert_ballot(Ballot(attempt.id, "RIGHT", True))

    assert [(b.position, b.valid) for b in theirs.list_ballots(attempt.id)] == [
        ("LEFT", True),
        ("RIGHT", True),
    ]


def test_round_state_insert_race_loses_compare_and_set(racing_stores):
    mine, theirs = racing_stores
    mine.rival_write = lambda: theirs.save_round_state(
        RoundState("A", "squat", current_entry_id="e1", version=1), None
    )

    assert not mine.save_round_state(RoundState("A", "squat", current_entry_id="e2", version=1), None)
    assert theirs.get_round_state("A", "squat").current_entry_id == "e1"
    assert mine.get_round_state("A", "squat").version == 1
