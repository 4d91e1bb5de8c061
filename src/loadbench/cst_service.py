"""Bundled in-process analysis service built on libcst.

It pulls text from the host the same way an external service would: on every
query it compares the host's script version with the one it analyzed last and
rebuilds what changed. Parse results, scope analysis and line maps are cached
per version, so a repeated query against an unchanged snapshot is a cache hit.
"""

from __future__ import annotations

from dataclasses import dataclass
import importlib
import keyword
from pathlib import Path
import re
from typing import Mapping

import libcst as cst
from libcst.metadata import MetadataWrapper, PositionProvider, ScopeProvider

from loadbench.host import (
    AnalysisHost,
    CompletionEntry,
    CompletionInfo,
    Diagnostic,
)
from loadbench.positions import LineAndCharacter, LineMap
from loadbench.snapshots import Snapshot

_IDENTIFIER_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_IDENTIFIER_TAIL_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*\Z")
_PREFIX_WINDOW = 256
_MODULE_DUNDERS = frozenset(
    {
        "__annotations__",
        "__builtins__",
        "__doc__",
        "__file__",
        "__loader__",
        "__name__",
        "__package__",
        "__path__",
        "__spec__",
    }
)


def default_project_root() -> Path:
    """Directory of the installed libcst package, the default replay target."""
    return Path(cst.__file__).resolve().parent


def _lib_names(module_name: str) -> frozenset[str]:
    module = importlib.import_module(module_name)
    return frozenset(dir(module)) | _MODULE_DUNDERS


@dataclass
class _FileState:
    version: str
    snapshot: Snapshot
    line_map: LineMap
    parsed: bool = False
    module: cst.Module | None = None
    parse_error: Diagnostic | None = None
    unresolved: list[Diagnostic] | None = None
    names: frozenset[str] | None = None


class CstSourceFile:
    def __init__(self, line_map: LineMap) -> None:
        self._line_map = line_map

    def get_line_and_character_of_position(self, offset: int) -> LineAndCharacter:
        return self._line_map.position_of(offset)

    def get_encoded_position(self, offset: int, encoding: str) -> LineAndCharacter:
        return self._line_map.encoded_position(offset, encoding)


class CstProgram:
    def __init__(self, session: CstSession) -> None:
        self._session = session

    def get_source_file(self, path: str) -> CstSourceFile | None:
        state = self._session._state(path)
        if state is None:
            return None
        return CstSourceFile(state.line_map)


class CstSession:
    def __init__(self, host: AnalysisHost) -> None:
        self._host = host
        self._settings = host.get_compilation_settings()
        self._lib_names = _lib_names(host.get_default_lib_file_name(self._settings))
        self._files: dict[str, _FileState] = {}

    def _state(self, path: str) -> _FileState | None:
        version = self._host.get_script_version(path)
        if not version:
            return None
        state = self._files.get(path)
        if state is not None and state.version == version:
            return state
        snapshot = self._host.get_script_snapshot(path)
        if snapshot is None:
            return None
        if state is None:
            line_map = LineMap.from_text(snapshot.text)
        else:
            line_map = state.line_map
            change = snapshot.get_change_range(state.snapshot)
            if change is None:
                line_map = LineMap.from_text(snapshot.text)
            else:
                line_map.extend(snapshot.text, change.span_start)
        state = _FileState(version=version, snapshot=snapshot, line_map=line_map)
        self._files[path] = state
        return state

    def _require(self, path: str) -> _FileState:
        state = self._state(path)
        if state is None:
            raise KeyError(f"no snapshot for {path}")
        return state

    def current_snapshot(self, path: str) -> Snapshot:
        return self._require(path).snapshot

    def current_version(self, path: str) -> str:
        return self._require(path).version

    def _parse(self, state: _FileState) -> cst.Module | None:
        if not state.parsed:
            state.parsed = True
            try:
                state.module = cst.parse_module(state.snapshot.text)
            except cst.ParserSyntaxError as exc:
                start = state.line_map.offset_of(exc.raw_line - 1, exc.raw_column)
                state.parse_error = Diagnostic(
                    start=start, length=0, message=exc.message, code="syntax"
                )
        return state.module

    def _analyze(self, state: _FileState) -> None:
        module = self._parse(state)
        if module is None:
            state.unresolved = []
            state.names = frozenset(_IDENTIFIER_RE.findall(state.snapshot.text))
            return
        wrapper = MetadataWrapper(module, unsafe_skip_copy=True)
        scopes = wrapper.resolve(ScopeProvider)
        positions = wrapper.resolve(PositionProvider)
        unique_scopes = {id(scope): scope for scope in scopes.values() if scope is not None}
        names: set[str] = set()
        unresolved: list[Diagnostic] = []
        for scope in unique_scopes.values():
            names.update(assignment.name for assignment in scope.assignments)
            for access in scope.accesses:
                node = access.node
                if access.referents or not isinstance(node, cst.Name):
                    continue
                if node.value in self._lib_names:
                    continue
                code_range = positions[node]
                unresolved.append(
                    Diagnostic(
                        start=state.line_map.offset_of(
                            code_range.start.line - 1, code_range.start.column
                        ),
                        length=len(node.value),
                        message=f"name '{node.value}' is not defined",
                        code="undefined-name",
                    )
                )
        unresolved.sort(key=lambda diagnostic: (diagnostic.start, diagnostic.message))
        state.unresolved = unresolved
        state.names = frozenset(names)

    def get_syntactic_diagnostics(self, path: str) -> list[Diagnostic]:
        state = self._require(path)
        self._parse(state)
        return [state.parse_error] if state.parse_error is not None else []

    def get_semantic_diagnostics(self, path: str) -> list[Diagnostic]:
        state = self._require(path)
        if not self._settings.check_unresolved_names:
            return []
        if state.unresolved is None:
            self._analyze(state)
        return list(state.unresolved or [])

    def get_completions_at_position(
        self, path: str, offset: int, options: Mapping[str, object]
    ) -> CompletionInfo:
        state = self._require(path)
        if state.names is None:
            self._analyze(state)
        text = state.snapshot.text
        offset = max(0, min(offset, len(text)))
        match = _IDENTIFIER_TAIL_RE.search(text, max(0, offset - _PREFIX_WINDOW), offset)
        prefix = match.group(0) if match else ""
        include_keywords = bool(
            options.get("include_keywords", self._settings.complete_keywords)
        )
        groups: list[tuple[str, frozenset[str]]] = [
            ("name", state.names or frozenset()),
            ("builtin", self._lib_names),
        ]
        if include_keywords:
            groups.append(("keyword", frozenset(keyword.kwlist)))
        seen: set[str] = set()
        entries: list[CompletionEntry] = []
        for kind, candidates in groups:
            for name in sorted(candidates):
                if name in seen or name == prefix or not name.startswith(prefix):
                    continue
                seen.add(name)
                entries.append(CompletionEntry(name=name, kind=kind))
        return CompletionInfo(entries=tuple(entries))

    def get_program(self) -> CstProgram:
        return CstProgram(self)

    def close(self) -> None:
        self._files.clear()


class CstAnalysisService:
    @property
    def location(self) -> str:
        return str(default_project_root())

    def create_session(self, host: AnalysisHost) -> CstSession:
        return CstSession(host)
