"""Advisory countdown owned by the head judge's client.

The countdown never touches the state machine. While running it is kept as
an absolute end time so every client derives the same remaining seconds;
while paused or idle the remaining seconds are stored instead.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .models import TimerSnapshot
from .types import TimerState


@dataclass
class Countdown:
    preset_sec: int
    state: TimerState = "idle"
    ends_at_ms: Optional[int] = None
    remaining_sec: Optional[float] = None

    def remaining(self, now_ms: int) -> float:
        if self.ends_at_ms is not None:
            return max(0.0, (self.ends_at_ms - now_ms) / 1000.0)
        if self.remaining_sec is not None:
            return max(0.0, self.remaining_sec)
        return float(self.preset_sec)

    def start(self, now_ms: int, seconds: Optional[int] = None) -> None:
        """Start or resume. ``seconds`` restarts this run only; reset goes back to the preset."""
        if seconds is not None:
            self.ends_at_ms = None
            self.remaining_sec = float(seconds)
        remaining = self.remaining(now_ms)
        self.state = "running"
        self.remaining_sec = remaining
        self.ends_at_ms = int(now_ms + remaining * 1000.0)

    def stop(self, now_ms: int) -> None:
        self.remaining_sec = self.remaining(now_ms)
        self.ends_at_ms = None
        self.state = "paused"

    def reset(self) -> None:
        self.state = "idle"
        self.ends_at_ms = None
        self.remaining_sec = float(self.preset_sec)

    def snapshot(self, now_ms: int) -> TimerSnapshot:
        return TimerSnapshot(
            state=self.state,
            preset_sec=self.preset_sec,
            remaining=self.remaining(now_ms),
            ends_at_ms=self.ends_at_ms,
        )
