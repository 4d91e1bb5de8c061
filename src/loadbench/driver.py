"""Replays files into an analysis session and times every step.

Files are loaded strictly one after another. A file at or under the large-size
threshold is handed to the service whole; a larger one is appended chunk by
chunk, with a full query round after every chunk.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable

from loadbench.clock import Clock
from loadbench.config import LoadSettings
from loadbench.context import extract_chunk_context, resolve_line_numbers
from loadbench.discovery import file_size, read_file
from loadbench.host import AnalysisSession, CompletionInfo, Diagnostic
from loadbench.planner import ChunkPlan, plan_chunk
from loadbench.reporting import (
    ConsoleReporter,
    chunk_text,
    context_text,
    format_size,
    head_text,
    tail_text,
)
from loadbench.snapshots import Snapshot, SnapshotStore
from loadbench.timing import (
    COMPLETION_PHASE,
    READ_PHASE,
    SEMANTIC_PHASE,
    SEMANTIC_REPEAT_PHASE,
    SYNTAX_PHASE,
    TimingChain,
    record_phase,
)


class LoadState(str, Enum):
    UNLOADED = "unloaded"
    SIZING = "sizing"
    SMALL_LOAD = "small_load"
    LARGE_LOAD_LOOP = "large_load_loop"
    DONE = "done"


@dataclass
class FileRecord:
    index: int
    path: str
    timing: TimingChain
    size: int = 0
    text: str | None = None
    snapshot: Snapshot | None = None
    state: LoadState = LoadState.UNLOADED
    chunks: list[ChunkPlan] = field(default_factory=list)
    syntactic_diagnostics: list[Diagnostic] | None = None
    semantic_diagnostics: list[Diagnostic] | None = None
    semantic_diagnostics_repeat: list[Diagnostic] | None = None
    completions: CompletionInfo | None = None


@dataclass(frozen=True)
class LoadSummary:
    files: int
    large_files: int
    chunks: int
    elapsed_ms: int


class IncrementalLoadDriver:
    def __init__(
        self,
        *,
        settings: LoadSettings,
        store: SnapshotStore,
        session: AnalysisSession,
        reporter: ConsoleReporter,
        clock: Clock,
        size_fn: Callable[[str], int] = file_size,
        read_fn: Callable[[str], str] = read_file,
    ) -> None:
        self.settings = settings
        self.store = store
        self.session = session
        self.reporter = reporter
        self.clock = clock
        self._size_fn = size_fn
        self._read_fn = read_fn
        self._project_root = store.get_current_directory()
        self._large_files = 0
        self._chunks = 0

    def run(self, paths: Iterable[str]) -> LoadSummary:
        started_at = self.clock.get_mark()
        previous: FileRecord | None = None
        files = 0
        for index, path in enumerate(paths):
            previous = self.load_next_file(index, path, previous)
            files += 1
        if previous is not None:
            self.reporter.flush(self.summary_text(previous))
        return LoadSummary(
            files=files,
            large_files=self._large_files,
            chunks=self._chunks,
            elapsed_ms=self.clock.get_mark() - started_at,
        )

    def load_next_file(
        self, index: int, path: str, previous: FileRecord | None
    ) -> FileRecord | None:
        """Load one file; return its record when its report was withheld."""
        record = FileRecord(
            index=index,
            path=path,
            timing=TimingChain(started_at=self.clock.get_mark()),
        )
        record.state = LoadState.SIZING
        record.size = self._size_fn(path)
        if record.size > self.settings.large_size_threshold:
            # Keep the withheld small-file report ahead of the large file's lines.
            if previous is not None:
                self.reporter.flush(self.summary_text(previous))
            self.load_large_file(record)
            return None
        self.load_small_file(record)
        return self.reporter.report_small(record, self.summary_text(record))

    def load_small_file(self, record: FileRecord) -> None:
        record.state = LoadState.SMALL_LOAD
        record.text = self._read_fn(record.path)
        record_phase(record.timing, READ_PHASE, self.clock)
        record.snapshot = self.store.load_whole(record.path, record.text)
        self.revalidate(record)
        record.state = LoadState.DONE

    def load_large_file(self, record: FileRecord) -> None:
        record.state = LoadState.LARGE_LOAD_LOOP
        self._large_files += 1
        text = self._read_fn(record.path)
        record.text = text
        record_phase(record.timing, READ_PHASE, self.clock)
        self.reporter.log_timed(
            head_text(record, self._project_root),
            format_size(round(record.size / 1000), "K"),
        )
        while True:
            add_start = record.snapshot.get_length() if record.snapshot else 0
            plan = plan_chunk(text, add_start, self.settings.batch_size)
            chunk = text[plan.start : plan.end]
            record.snapshot = self.store.append(record.path, chunk)
            record.chunks.append(plan)
            self._chunks += 1
            self.revalidate(record)
            self.reporter.log_timed(self._chunk_report(record, plan, chunk))
            if plan.end >= len(text):
                break
        record.state = LoadState.DONE

    def revalidate(self, record: FileRecord) -> None:
        """One round of analysis queries against the file's current snapshot."""
        path = record.path
        if self.settings.request_syntactic_diagnostics_each_step:
            record.syntactic_diagnostics = self.session.get_syntactic_diagnostics(path)
            record_phase(record.timing, SYNTAX_PHASE, self.clock)
        if self.settings.request_semantic_diagnostics_each_step:
            record.semantic_diagnostics = self.session.get_semantic_diagnostics(path)
            record_phase(record.timing, SEMANTIC_PHASE, self.clock)
            record.semantic_diagnostics_repeat = self.session.get_semantic_diagnostics(path)
            record_phase(record.timing, SEMANTIC_REPEAT_PHASE, self.clock)
        snapshot_length = record.snapshot.get_length() if record.snapshot else 0
        record.completions = self.session.get_completions_at_position(
            path, snapshot_length // 2, {}
        )
        record_phase(record.timing, COMPLETION_PHASE, self.clock)

    def summary_text(self, record: FileRecord) -> str:
        return head_text(record, self._project_root) + self._tail(record)

    def _tail(self, record: FileRecord) -> str:
        return tail_text(
            record,
            syntactic_each_step=self.settings.request_syntactic_diagnostics_each_step,
            semantic_each_step=self.settings.request_semantic_diagnostics_each_step,
        )

    def _chunk_report(self, record: FileRecord, plan: ChunkPlan, chunk: str) -> str:
        line = chunk_text(plan, len(record.text or ""), self._tail(record))
        context = extract_chunk_context(
            chunk, plan.start, self.settings.context_code_quote_length
        )
        if context is None:
            return line
        context = resolve_line_numbers(context, self.session, record.path)
        return line + "\n" + context_text(context)
