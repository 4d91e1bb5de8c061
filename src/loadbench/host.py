"""Boundary types between the load driver and an analysis service.

The service is a black box that pulls file text from a host (the snapshot
store) and answers diagnostics and completion queries. These protocols name
the calls the driver makes and the values it keeps; everything else about a
service is its own business.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Mapping, Protocol

from loadbench.positions import LineAndCharacter

if TYPE_CHECKING:
    from loadbench.snapshots import Snapshot


@dataclass(frozen=True)
class CompilationSettings:
    default_lib: str = "builtins"
    check_unresolved_names: bool = True
    complete_keywords: bool = True


@dataclass(frozen=True)
class Diagnostic:
    start: int
    length: int
    message: str
    category: str = "error"
    code: str = ""


@dataclass(frozen=True)
class CompletionEntry:
    name: str
    kind: str = "name"


@dataclass(frozen=True)
class CompletionInfo:
    entries: tuple[CompletionEntry, ...] = field(default_factory=tuple)
    is_incomplete: bool = False


class AnalysisHost(Protocol):
    def get_compilation_settings(self) -> CompilationSettings: ...

    def get_script_file_names(self) -> list[str]: ...

    def get_script_version(self, path: str) -> str: ...

    def get_script_snapshot(self, path: str) -> Snapshot | None: ...

    def get_current_directory(self) -> str: ...

    def get_default_lib_file_name(self, settings: CompilationSettings) -> str: ...


class SourceFile(Protocol):
    def get_line_and_character_of_position(self, offset: int) -> LineAndCharacter: ...


class Program(Protocol):
    def get_source_file(self, path: str) -> SourceFile | None: ...


class AnalysisSession(Protocol):
    def get_syntactic_diagnostics(self, path: str) -> list[Diagnostic]: ...

    def get_semantic_diagnostics(self, path: str) -> list[Diagnostic]: ...

    def get_completions_at_position(
        self,
        path: str,
        offset: int,
        options: Mapping[str, object],
    ) -> CompletionInfo | None: ...

    def get_program(self) -> Program | None: ...

    def close(self) -> None: ...


class AnalysisService(Protocol):
    @property
    def location(self) -> str:
        """Where the analysis library lives (printed at startup)."""

    def create_session(self, host: AnalysisHost) -> AnalysisSession: ...
