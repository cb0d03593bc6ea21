"""Engine configuration.

Values come from code or from ``MEET_CORE_*`` environment variables::

    MEET_CORE_ALLOW_ZERO_WEIGHT=0
    MEET_CORE_TIMER_PRESET=01:00
    MEET_CORE_DATABASE_URL=postgresql+psycopg://...
"""
from __future__ import annotations

import logging
import os
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .types import ROUNDS
from .validation import parse_timer_preset, validate_command

logger = logging.getLogger(__name__)

_TRUE = {"1", "true", "yes", "y", "on"}
_FALSE = {"0", "false", "no", "n", "off", ""}


class EngineConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    rounds: int = Field(ROUNDS, description="Attempts per athlete per lift")
    allow_zero_weight: bool = Field(
        True, description="Accept 0 kg as a declared weight (withdrawal or bodyweight-only marker)"
    )
    max_weight_kg: float = Field(1000.0, gt=0, description="Sanity cap on declared weights")
    timer_preset: str = Field("01:00", max_length=20, description="Default countdown (MM:SS)")
    subscriber_queue_size: int = Field(256, ge=1, le=100_000)
    database_url: Optional[str] = None

    @field_validator("rounds")
    @classmethod
    def validate_rounds(cls, v: int) -> int:
        if v != ROUNDS:
            raise ValueError(f"rounds is fixed at {ROUNDS}")
        return v

    @field_validator("timer_preset")
    @classmethod
    def validate_timer_preset(cls, v: str) -> str:
        """Normalize MM:SS to zero-padded form (5:00 → 05:00)."""
        seconds = parse_timer_preset(v.strip())
        if seconds is None:
            raise ValueError("timer_preset must be MM:SS format with valid numbers")
        return f"{seconds // 60:02d}:{seconds % 60:02d}"

    @property
    def timer_preset_sec(self) -> int:
        return parse_timer_preset(self.timer_preset) or 0

    @classmethod
    def from_env(cls, prefix: str = "MEET_CORE_", environ=None) -> "EngineConfig":
        env = os.environ if environ is None else environ
        values: dict = {}
        for name in cls.model_fields:
            raw = env.get(f"{prefix}{name.upper()}")
            if raw is None:
                continue
            if name == "allow_zero_weight":
                lowered = raw.strip().lower()
                if lowered in _TRUE:
                    values[name] = True
                elif lowered in _FALSE:
                    values[name] = False
                else:
                    values[name] = raw
            else:
                values[name] = raw
        config = validate_command(cls, **values)
        logger.debug("Loaded engine config from environment: %s", sorted(values))
        return config
