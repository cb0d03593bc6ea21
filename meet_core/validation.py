"""
Input validation schemas using Pydantic v2
Validates every write command before it reaches the ledger
"""

import logging
import math
from typing import Optional, Self, Type, TypeVar

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    field_validator,
    model_validator,
)
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError
from .types import (
    BALLOT_REASONS,
    FORCED_REASON,
    JUDGE_POSITIONS,
    ROUNDS,
    JudgePosition,
    ReasonCode,
    Result,
)

logger = logging.getLogger(__name__)

_ID_FIELD = dict(min_length=1, max_length=64)


def _upper(v):
    return v.strip().upper() if isinstance(v, str) else v


def _check_weight(v: Optional[float]) -> Optional[float]:
    if v is None:
        return v
    if not math.isfinite(v):
        raise ValueError("weightKg must be a finite number")
    if v < 0:
        raise ValueError("weightKg cannot be negative")
    return v


class _Cmd(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid", frozen=True)


class DeclareWeightCmd(_Cmd):
    entryId: str = Field(..., **_ID_FIELD, description="Athlete entry id")
    liftId: str = Field(..., **_ID_FIELD, description="Lift id")
    attemptNo: int = Field(..., ge=1, le=ROUNDS, description="Attempt number (1-3)")
    weightKg: Optional[float] = Field(None, description="Declared bar weight in kg")

    @field_validator("weightKg")
    @classmethod
    def validate_weight(cls, v: Optional[float]) -> Optional[float]:
        return _check_weight(v)

    @model_validator(mode="after")
    def require_weight(self) -> Self:
        if self.weightKg is None:
            raise ValueError("weightKg is required")
        return self


class BallotCmd(_Cmd):
    attemptId: int = Field(..., ge=1, description="Attempt being judged")
    judgePosition: JudgePosition = Field(..., description="HEAD, LEFT or RIGHT")
    valid: bool
    reason: Optional[ReasonCode] = Field(
        None, validate_default=True, description="Reason code when invalid"
    )

    @field_validator("judgePosition", mode="before")
    @classmethod
    def validate_position(cls, v):
        v = _upper(v)
        if v not in JUDGE_POSITIONS:
            raise ValueError(f"judgePosition must be one of {JUDGE_POSITIONS}, got {v}")
        return v

    @field_validator("reason", mode="before")
    @classmethod
    def validate_reason(cls, v, info: ValidationInfo):
        valid = info.data.get("valid")
        if v is None:
            # Red light without a reason card.
            return None if valid else "OTHER"
        if valid:
            raise ValueError("reason is only allowed on an invalid ballot")
        v = _upper(v)
        if v == FORCED_REASON:
            raise ValueError("FORCED is reserved for the head judge force-invalid action")
        if v not in BALLOT_REASONS:
            raise ValueError(f"reason must be one of {sorted(BALLOT_REASONS)}, got {v}")
        return v


class ForceInvalidCmd(_Cmd):
    attemptId: int = Field(..., ge=1)
    judgePosition: str = "HEAD"

    @field_validator("judgePosition")
    @classmethod
    def head_only(cls, v: str) -> str:
        v = v.strip().upper()
        if v != "HEAD":
            raise ValueError("only the HEAD judge may force an invalid result")
        return v


class OverrideCmd(_Cmd):
    attemptId: int = Field(..., ge=1)
    result: Result
    correction: bool = False
    actor: str = Field("director", min_length=1, max_length=120)

    @field_validator("result", mode="before")
    @classmethod
    def validate_result(cls, v):
        v = _upper(v)
        if v not in ("VALID", "INVALID"):
            raise ValueError(f"result must be VALID or INVALID, got {v}")
        return v

    @field_validator("actor")
    @classmethod
    def clean_actor(cls, v: str) -> str:
        return InputSanitizer.sanitize_string(v, 120)


class JudgeCmd(_Cmd):
    attemptId: int = Field(..., ge=1)
    result: Result

    @field_validator("result", mode="before")
    @classmethod
    def validate_result(cls, v):
        v = _upper(v)
        if v not in ("VALID", "INVALID"):
            raise ValueError(f"result must be VALID or INVALID, got {v}")
        return v


class WeightEditCmd(_Cmd):
    attemptId: int = Field(..., ge=1)
    weightKg: float
    actor: str = Field("director", min_length=1, max_length=120)

    @field_validator("weightKg")
    @classmethod
    def validate_weight(cls, v: float) -> float:
        return _check_weight(v)


class ExtraAttemptCmd(_Cmd):
    entryId: str = Field(..., **_ID_FIELD)
    liftId: str = Field(..., **_ID_FIELD)
    weightKg: float
    actor: str = Field("director", min_length=1, max_length=120)

    @field_validator("weightKg")
    @classmethod
    def validate_weight(cls, v: float) -> float:
        return _check_weight(v)


class TimerCmd(_Cmd):
    groupId: str = Field(..., **_ID_FIELD)
    liftId: str = Field(..., **_ID_FIELD)
    type: str = Field(..., min_length=1, max_length=20)
    seconds: Optional[int] = Field(None, ge=1, le=3600, description="Countdown length")
    judgePosition: str = "HEAD"

    @field_validator("type")
    @classmethod
    def validate_type(cls, v: str) -> str:
        allowed_types = {"START_TIMER", "STOP_TIMER", "RESET_TIMER"}
        if v not in allowed_types:
            raise ValueError(f"type must be one of {allowed_types}, got {v}")
        return v

    @field_validator("judgePosition")
    @classmethod
    def head_only(cls, v: str) -> str:
        v = v.strip().upper()
        if v != "HEAD":
            raise ValueError("the countdown belongs to the HEAD judge")
        return v


def parse_timer_preset(preset: str | None) -> int | None:
    """Parse timer preset string (MM:SS format) to total seconds.

    Examples:
        - "01:00" → 60
        - "1:30" → 90
        - "" → None
        - "invalid" → None
    """
    if not preset:
        return None
    try:
        minutes, seconds = (preset or "").split(":")
        mins = int(minutes or 0)
        secs = int(seconds or 0)
    except ValueError:
        return None
    if mins < 0 or secs < 0 or secs > 59:
        return None
    return mins * 60 + secs


class InputSanitizer:
    """Utility class for input sanitization"""

    @staticmethod
    def sanitize_string(value: str, max_length: int = 255) -> str:
        """Strip whitespace and null bytes, then cap the length."""
        if not isinstance(value, str):
            return str(value)[:max_length]
        value = value.strip().replace("\0", "")
        return value[:max_length]


_C = TypeVar("_C", bound=BaseModel)


def validate_command(model: Type[_C], **fields) -> _C:
    """
    Build a command model, mapping pydantic failures to ``ValidationError``.

    Raises:
        ValidationError: first failing field and its message
    """
    try:
        return model(**fields)
    except PydanticValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        loc = ".".join(str(part) for part in first.get("loc", ())) or model.__name__
        msg = first.get("msg", str(e))
        logger.warning("Command validation failed for %s: %s: %s", model.__name__, loc, msg)
        raise ValidationError(f"{loc}: {msg}", command=model.__name__) from e


__all__ = [
    "DeclareWeightCmd",
    "BallotCmd",
    "ForceInvalidCmd",
    "OverrideCmd",
    "JudgeCmd",
    "WeightEditCmd",
    "ExtraAttemptCmd",
    "TimerCmd",
    "InputSanitizer",
    "parse_timer_preset",
    "validate_command",
]
