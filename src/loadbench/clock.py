from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol
import time

from loadbench.invariants import never


class Clock(Protocol):
    def get_mark(self) -> int:
        """Return the current monotonic mark in milliseconds."""


@dataclass(frozen=True)
class MonotonicClock:
    """Wall-clock implementation used by the CLI."""

    def get_mark(self) -> int:
        return time.monotonic_ns() // 1_000_000


@dataclass
class ManualClock:
    """Deterministic clock that only moves when advanced."""

    current: int = 0

    def __post_init__(self) -> None:
        self.current = int(self.current)
        if self.current < 0:
            never("invalid manual clock start", current=self.current)

    def advance(self, ms: int) -> None:
        ms_value = int(ms)
        if ms_value < 0:
            never("manual clock cannot go backwards", ms=ms)
        self.current += ms_value

    def get_mark(self) -> int:
        return self.current
