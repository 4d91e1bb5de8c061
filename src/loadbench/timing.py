from __future__ import annotations

from dataclasses import dataclass, field

from loadbench.clock import Clock

READ_PHASE = "read"
SYNTAX_PHASE = "syntax"
SEMANTIC_PHASE = "semantic1"
SEMANTIC_REPEAT_PHASE = "semantic2"
COMPLETION_PHASE = "completion"


@dataclass
class TimingChain:
    """Named phase durations of one file, each measured from the previous checkpoint."""

    started_at: int
    cursor: int | None = None
    phases: dict[str, int] = field(default_factory=dict)

    @property
    def last_mark(self) -> int:
        return self.started_at if self.cursor is None else self.cursor

    @property
    def elapsed(self) -> int:
        return self.last_mark - self.started_at

    def get(self, name: str) -> int | None:
        return self.phases.get(name)


def record_phase(chain: TimingChain, name: str, clock: Clock) -> int:
    now = clock.get_mark()
    delta = now - chain.last_mark
    chain.phases[name] = delta
    chain.cursor = now
    return delta
