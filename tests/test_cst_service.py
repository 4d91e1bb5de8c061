from __future__ import annotations

from pathlib import Path

import pytest

from loadbench.cst_service import CstAnalysisService, CstSession
from loadbench.host import CompilationSettings
from loadbench.snapshots import SnapshotStore


def _session(tmp_path: Path, settings: CompilationSettings | None = None) -> tuple[SnapshotStore, CstSession]:
    store = SnapshotStore(tmp_path, settings=settings)
    return store, CstAnalysisService().create_session(store)


def test_unresolved_names_are_reported(tmp_path: Path) -> None:
    store, session = _session(tmp_path)
    path = str(tmp_path / "a.py")
    store.load_whole(path, "x = 1\nprint(x, y)\n")
    diagnostics = session.get_semantic_diagnostics(path)
    assert [(d.start, d.length, d.message) for d in diagnostics] == [
        (15, 1, "name 'y' is not defined")
    ]
    repeat = session.get_semantic_diagnostics(path)
    assert repeat == diagnostics
    assert repeat is not diagnostics
    assert session.get_syntactic_diagnostics(path) == []


def test_syntax_errors_are_reported(tmp_path: Path) -> None:
    store, session = _session(tmp_path)
    path = str(tmp_path / "a.py")
    store.load_whole(path, "x = 1\ndef f(:\n")
    diagnostics = session.get_syntactic_diagnostics(path)
    assert len(diagnostics) == 1
    assert diagnostics[0].code == "syntax"
    assert diagnostics[0].start >= 6
    assert session.get_semantic_diagnostics(path) == []


def test_name_check_can_be_disabled(tmp_path: Path) -> None:
    store, session = _session(
        tmp_path, CompilationSettings(check_unresolved_names=False)
    )
    path = str(tmp_path / "a.py")
    store.load_whole(path, "print(y)\n")
    assert session.get_semantic_diagnostics(path) == []


def test_completions_follow_the_identifier_prefix(tmp_path: Path) -> None:
    store, session = _session(tmp_path)
    path = str(tmp_path / "a.py")
    text = "alpha_value = 1\nalpha_other = 2\nal"
    store.load_whole(path, text)
    info = session.get_completions_at_position(path, len(text), {})
    assert [(entry.name, entry.kind) for entry in info.entries] == [
        ("alpha_other", "name"),
        ("alpha_value", "name"),
        ("all", "builtin"),
    ]


def test_keyword_completions_are_optional(tmp_path: Path) -> None:
    store, session = _session(tmp_path)
    path = str(tmp_path / "a.py")
    store.load_whole(path, "whi")
    info = session.get_completions_at_position(path, 3, {})
    assert [(entry.name, entry.kind) for entry in info.entries] == [("while", "keyword")]
    info = session.get_completions_at_position(path, 3, {"include_keywords": False})
    assert info.entries == ()


def test_unparsable_text_still_completes_known_identifiers(tmp_path: Path) -> None:
    store, session = _session(tmp_path)
    path = str(tmp_path / "a.py")
    store.load_whole(path, "zeta_total = (\n")
    info = session.get_completions_at_position(path, 100, {})
    assert info.entries[0].name == "zeta_total"


def test_appended_chunks_are_picked_up_incrementally(tmp_path: Path) -> None:
    store, session = _session(tmp_path)
    path = str(tmp_path / "a.py")
    store.append(path, "x = 1\n")
    assert session.get_semantic_diagnostics(path) == []
    assert session.current_version(path) == "0"

    store.append(path, "print(y)\n")
    diagnostics = session.get_semantic_diagnostics(path)
    assert [d.start for d in diagnostics] == [12]
    assert session.current_version(path) == "1"
    source_file = session.get_program().get_source_file(path)
    assert source_file is not None
    position = source_file.get_line_and_character_of_position(12)
    assert (position.line, position.character) == (1, 6)


def test_unknown_files(tmp_path: Path) -> None:
    _, session = _session(tmp_path)
    path = str(tmp_path / "missing.py")
    assert session.get_program().get_source_file(path) is None
    with pytest.raises(KeyError):
        session.get_semantic_diagnostics(path)


def test_service_location_is_the_libcst_package() -> None:
    assert Path(CstAnalysisService().location).name == "libcst"
