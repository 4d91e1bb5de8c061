from __future__ import annotations

import pytest

from loadbench.exceptions import NeverThrown
from loadbench.host import CompilationSettings
from loadbench.snapshots import ChangeRange, Snapshot, SnapshotStore


def test_appends_grow_one_version_at_a_time() -> None:
    store = SnapshotStore("/project")
    first = store.append("/project/a.ts", "abc")
    second = store.append("/project/a.ts", "defg")
    third = store.append("/project/a.ts", "h")
    assert [first.version, second.version, third.version] == [0, 1, 2]
    assert third.text == "abcdefgh"
    assert store.query_snapshot("/project/a.ts") is third
    assert first.text == "abc"


def test_change_range_describes_a_pure_append() -> None:
    store = SnapshotStore("/project")
    old = store.append("/project/a.ts", "function f() {\n")
    new = store.append("/project/a.ts", "}\n")
    assert new.get_change_range(old) == ChangeRange(span_start=15, span_length=0, new_length=2)


def test_change_range_across_several_appends() -> None:
    store = SnapshotStore("/project")
    old = store.append("/project/a.ts", "ab")
    store.append("/project/a.ts", "cd")
    new = store.append("/project/a.ts", "efg")
    change = new.get_change_range(old)
    assert change == ChangeRange(span_start=2, span_length=0, new_length=5)
    assert new.get_text(change.span_start, change.span_start + change.new_length) == "cdefg"


def test_change_range_is_unknown_for_unrelated_snapshots() -> None:
    newer = Snapshot(text="abcdef", version=3)
    assert newer.get_change_range(Snapshot(text="abcdef", version=3)) is None
    assert newer.get_change_range(Snapshot(text="abcdefgh", version=1)) is None
    assert newer.get_change_range(Snapshot(text="xyz", version=1)) is None


def test_load_whole_creates_version_zero() -> None:
    store = SnapshotStore("/project")
    snapshot = store.load_whole("/project/small.py", "x = 1\n")
    assert snapshot == Snapshot(text="x = 1\n", version=0)
    assert store.get_script_version("/project/small.py") == "0"


def test_load_whole_accepts_empty_text() -> None:
    store = SnapshotStore("/project")
    snapshot = store.load_whole("/project/empty.py", "")
    assert snapshot.get_length() == 0
    assert snapshot.version == 0


def test_empty_chunk_is_a_contract_violation() -> None:
    store = SnapshotStore("/project")
    store.append("/project/a.ts", "abc")
    with pytest.raises(NeverThrown):
        store.append("/project/a.ts", "")
    assert store.get_script_version("/project/a.ts") == "0"


def test_loading_a_file_twice_is_a_contract_violation() -> None:
    store = SnapshotStore("/project")
    store.load_whole("/project/a.py", "a")
    with pytest.raises(NeverThrown):
        store.load_whole("/project/a.py", "b")


def test_host_capabilities_expose_the_store() -> None:
    settings = CompilationSettings(default_lib="typing")
    store = SnapshotStore("/project", settings=settings)
    store.load_whole("/project/a.py", "a")
    store.append("/project/b.py", "b")
    store.append("/project/b.py", "c")
    assert sorted(store.get_script_file_names()) == ["/project/a.py", "/project/b.py"]
    assert store.get_script_version("/project/b.py") == "1"
    assert store.get_script_version("/project/missing.py") == ""
    assert store.get_script_snapshot("/project/missing.py") is None
    assert store.get_script_snapshot("/project/b.py").text == "bc"
    assert store.get_current_directory() == "/project"
    assert store.get_compilation_settings() is settings
    assert store.get_default_lib_file_name(settings) == "typing"
