"""Console progress output.

Every line is prefixed with the milliseconds elapsed since the previous line.
Small files are reported in throttled batches; large files report every chunk.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

import typer

from loadbench.clock import Clock
from loadbench.context import ChunkContext
from loadbench.planner import ChunkPlan
from loadbench.timing import (
    COMPLETION_PHASE,
    READ_PHASE,
    SEMANTIC_PHASE,
    SEMANTIC_REPEAT_PHASE,
    SYNTAX_PHASE,
)

if TYPE_CHECKING:
    from loadbench.driver import FileRecord

_PREFIX_WIDTH = 6
_QUIET_PREFIX_MS = 400
_COMPLETION_NAMES_SHOWN = 3
_CHUNK_INDENT = " " * 17
_CONTEXT_INDENT = " " * 8


def _dim(text: str) -> str:
    return typer.style(text, fg=typer.colors.BRIGHT_BLACK)


def format_size(size: int, suffix: str = "") -> str:
    """Render ``size`` with its last three digits in blue for quick scanning."""
    digits = str(size)
    head = typer.style(digits[:-3], fg=typer.colors.CYAN) if len(digits) > 3 else ""
    tail = typer.style(digits[-3:], fg=typer.colors.BLUE)
    unit = typer.style(suffix, fg=typer.colors.CYAN) if suffix else ""
    return head + tail + unit


def _phase(record: FileRecord, name: str) -> str:
    value = record.timing.get(name)
    return "-" if value is None else str(value)


def short_name(path: str, project_root: str) -> str:
    try:
        relative = os.path.relpath(path, project_root)
    except ValueError:
        return path
    return path if relative.startswith("..") else relative


def head_text(record: FileRecord, project_root: str) -> str:
    return (
        f"{record.index}) {short_name(record.path, project_root)}"
        f" {READ_PHASE}:{_phase(record, READ_PHASE)}"
    )


def tail_text(
    record: FileRecord, *, syntactic_each_step: bool, semantic_each_step: bool
) -> str:
    parts: list[str] = []
    if syntactic_each_step:
        parts.append(f" syntax:{_phase(record, SYNTAX_PHASE)}")
    if semantic_each_step:
        parts.append(
            f" sem:{_phase(record, SEMANTIC_PHASE)}/{_phase(record, SEMANTIC_REPEAT_PHASE)}"
        )
    parts.append(f" comp:{_phase(record, COMPLETION_PHASE)}")
    completions = record.completions
    if completions is not None and completions.entries:
        shown = ",".join(
            entry.name for entry in completions.entries[:_COMPLETION_NAMES_SHOWN]
        )
        parts.append(
            typer.style(
                f"~{len(completions.entries)}*{shown}", fg=typer.colors.GREEN
            )
        )
    return "".join(parts)


def chunk_text(plan: ChunkPlan, text_length: int, tail: str) -> str:
    size = format_size(round(plan.length / 1000), "K")
    end_marker = "/end" if plan.end >= text_length else ""
    forced_marker = _dim("!") if plan.forced else ""
    return f"{_CHUNK_INDENT}+{size}{end_marker}{forced_marker} ...{tail}"


def context_text(context: ChunkContext) -> str:
    first_number = (
        f"L{context.first_line_number} " if context.first_line_number else ""
    )
    line = (
        f"{_CONTEXT_INDENT}{first_number} {_dim(context.first_line)}  ... "
        f"{_dim(context.last_line)}"
    )
    if context.last_line_number and context.first_line_number:
        span = format_size(context.last_line_number - context.first_line_number)
        line += f" L{context.last_line_number}{_dim('+')}{span} "
    return line


@dataclass
class ConsoleReporter:
    """Timestamped console output with batching of fast small-file reports."""

    clock: Clock
    interval_ms: int = 200
    slow_file_ms: int = 600
    echo: Callable[[str], None] = typer.echo
    last_printed_at: int | None = None
    withheld: int = 0

    def log_timed(self, *parts: str) -> None:
        now = self.clock.get_mark()
        if self.last_printed_at is None:
            prefix = "start".rjust(_PREFIX_WIDTH)
        else:
            passed = now - self.last_printed_at
            prefix = str(passed).rjust(_PREFIX_WIDTH)
            if passed <= _QUIET_PREFIX_MS:
                prefix = _dim(prefix)
        self.last_printed_at = now
        line = " ".join([prefix, *parts])
        self.echo(line)

    def report_small(self, record: FileRecord, summary: str) -> FileRecord | None:
        """Print ``summary`` now, or withhold it and hand ``record`` back.

        The summary is printed when the previous line is older than the
        interval or when this file alone was slow. A printed summary carries
        the number of summaries withheld before it.
        """
        finished_at = record.timing.last_mark
        since_print = (
            finished_at - self.last_printed_at
            if self.last_printed_at is not None
            else finished_at
        )
        if since_print > self.interval_ms or record.timing.elapsed > self.slow_file_ms:
            self._print_summary(summary)
            return None
        self.withheld += 1
        return record

    def flush(self, summary: str | None) -> None:
        if summary is None:
            return
        # The flushed summary was already counted when it was withheld.
        self.withheld = max(0, self.withheld - 1)
        self._print_summary(summary)

    def _print_summary(self, summary: str) -> None:
        if self.withheld:
            summary += _dim(f" (+{self.withheld} more)")
        self.withheld = 0
        self.log_timed(summary)
