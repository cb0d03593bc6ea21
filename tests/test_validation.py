import pytest

from meet_core import EngineConfig, InputSanitizer, ValidationError, parse_timer_preset
from meet_core.validation import (
    BallotCmd,
    DeclareWeightCmd,
    JudgeCmd,
    OverrideCmd,
    TimerCmd,
    validate_command,
)


def test_parse_timer_preset_handles_valid_and_invalid():
    assert parse_timer_preset("01:00") == 60
    assert parse_timer_preset("1:30") == 90
    assert parse_timer_preset("00:00") == 0
    assert parse_timer_preset(None) is None
    assert parse_timer_preset("invalid") is None
    assert parse_timer_preset("01:75") is None


def test_invalid_ballot_without_reason_defaults_to_other():
    cmd = validate_command(BallotCmd, attemptId=1, judgePosition=" right ", valid=False)
    assert cmd.judgePosition == "RIGHT"
    assert cmd.reason == "OTHER"
    cmd = validate_command(BallotCmd, attemptId=1, judgePosition="HEAD", valid=True)
    assert cmd.reason is None


def test_validation_error_names_the_field():
    with pytest.raises(ValidationError) as exc:
        validate_command(DeclareWeightCmd, entryId="e1", liftId="squat", attemptNo=1, weightKg=-1)
    assert exc.value.message.startswith("weightKg")
    assert exc.value.status_code == 400
    assert exc.value.to_dict()["context"] == {"command": "DeclareWeightCmd"}


def test_commands_reject_unknown_fields():
    with pytest.raises(ValidationError):
        validate_command(TimerCmd, groupId="A", liftId="squat", type="START_TIMER", boxId=1)
    with pytest.raises(ValidationError):
        validate_command(TimerCmd, groupId="A", liftId="squat", type="PAUSE")


def test_override_actor_is_sanitized():
    cmd = validate_command(OverrideCmd, attemptId=3, result="valid", actor="  Jury\0 ")
    assert cmd.result == "VALID"
    assert cmd.actor == "Jury"
    assert InputSanitizer.sanitize_string("x" * 300, 10) == "x" * 10


def test_engine_config_defaults_and_env():
    config = EngineConfig()
    assert config.rounds == 3
    assert config.timer_preset_sec == 60
    assert config.allow_zero_weight

    config = EngineConfig.from_env(
        environ={
            "MEET_CORE_ALLOW_ZERO_WEIGHT": "no",
            "MEET_CORE_TIMER_PRESET": "2:5",
            "MEET_CORE_DATABASE_URL": "sqlite://",
            "OTHER": "ignored",
        }
    )
    assert not config.allow_zero_weight
    assert config.timer_preset == "02:05"
    assert config.timer_preset_sec == 125
    assert config.database_url == "sqlite://"


def test_engine_config_rejects_bad_values():
    with pytest.raises(ValidationError):
        EngineConfig.from_env(environ={"MEET_CORE_TIMER_PRESET": "soon"})
    with pytest.raises(ValidationError):
        EngineConfig.from_env(environ={"MEET_CORE_ROUNDS": "4"})


def test_positions_reasons_and_results_are_closed_sets():
    cmd = validate_command(BallotCmd, attemptId=1, judgePosition="left", valid=False, reason=" rom ")
    assert (cmd.judgePosition, cmd.reason) == ("LEFT", "ROM")
    assert validate_command(JudgeCmd, attemptId=1, result=" invalid ").result == "INVALID"

    with pytest.raises(ValidationError):
        validate_command(BallotCmd, attemptId=1, judgePosition="CENTER", valid=True)
    with pytest.raises(ValidationError):
        validate_command(BallotCmd, attemptId=1, judgePosition="LEFT", valid=False, reason="FORCED")
    with pytest.raises(ValidationError):
        validate_command(BallotCmd, attemptId=1, judgePosition="LEFT", valid=False, reason=3)
    with pytest.raises(ValidationError):
        validate_command(JudgeCmd, attemptId=1, result="PENDING")
    with pytest.raises(ValidationError):
        validate_command(OverrideCmd, attemptId=1, result=None)
