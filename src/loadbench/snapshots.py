"""Versioned, append-only text snapshots and the host view over them."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from loadbench.host import CompilationSettings
from loadbench.invariants import never


@dataclass(frozen=True)
class ChangeRange:
    """Delta between two versions of a file: the span replaced and its new length."""

    span_start: int
    span_length: int
    new_length: int


@dataclass(frozen=True)
class Snapshot:
    text: str
    version: int = 0

    def get_text(self, start: int, end: int) -> str:
        return self.text[start:end]

    def get_length(self) -> int:
        return len(self.text)

    def get_change_range(self, old: Snapshot) -> ChangeRange | None:
        """Describe what was appended since ``old``.

        Only appends ever happen, so the replaced span is always empty and
        starts at the old length. ``None`` means ``old`` is not an earlier
        version of this text and the caller has to rescan everything.
        """
        old_length = old.get_length()
        if old.version >= self.version or old_length >= len(self.text):
            return None
        if not self.text.startswith(old.text):
            return None
        return ChangeRange(
            span_start=old_length,
            span_length=0,
            new_length=len(self.text) - old_length,
        )

    def appended(self, chunk: str) -> Snapshot:
        return Snapshot(text=self.text + chunk, version=self.version + 1)


class SnapshotStore:
    """Current snapshot per file, exposed to the analysis service as its host.

    The driver is the only writer. The service reads through the host methods
    and sees each file's text grow one version at a time.
    """

    def __init__(
        self,
        project_root: Path | str,
        *,
        settings: CompilationSettings | None = None,
    ) -> None:
        self._project_root = str(project_root)
        self._settings = settings or CompilationSettings()
        self._scripts: dict[str, Snapshot] = {}

    def load_whole(self, path: str, text: str) -> Snapshot:
        if path in self._scripts:
            never("file already has a snapshot", path=path)
        snapshot = Snapshot(text=text, version=0)
        self._scripts[path] = snapshot
        return snapshot

    def append(self, path: str, chunk_text: str) -> Snapshot:
        if not chunk_text:
            never("empty chunk appended", path=path)
        previous = self._scripts.get(path)
        if previous is None:
            snapshot = Snapshot(text=chunk_text, version=0)
        else:
            snapshot = previous.appended(chunk_text)
        self._scripts[path] = snapshot
        return snapshot

    def query_snapshot(self, path: str) -> Snapshot | None:
        return self._scripts.get(path)

    # Analysis host capability set.

    def get_compilation_settings(self) -> CompilationSettings:
        return self._settings

    def get_script_file_names(self) -> list[str]:
        return list(self._scripts)

    def get_script_version(self, path: str) -> str:
        snapshot = self._scripts.get(path)
        if snapshot is None:
            return ""
        return str(snapshot.version)

    def get_script_snapshot(self, path: str) -> Snapshot | None:
        return self._scripts.get(path)

    def get_current_directory(self) -> str:
        return self._project_root

    def get_default_lib_file_name(self, settings: CompilationSettings) -> str:
        return settings.default_lib
