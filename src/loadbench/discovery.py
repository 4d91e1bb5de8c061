from __future__ import annotations

from pathlib import Path
from typing import Iterable


def _matches(path: Path, extensions: tuple[str, ...]) -> bool:
    # Compound extensions such as ".d.ts" rule out Path.suffix.
    return path.name.endswith(extensions)


def enumerate_files(
    root: Path,
    extensions: Iterable[str],
    exclude_dirs: Iterable[str] = (),
) -> list[str]:
    """Absolute paths of files under ``root`` with one of ``extensions``, sorted."""
    suffixes = tuple(extensions)
    excluded = set(exclude_dirs)
    out: list[str] = []
    root = root.resolve()
    for candidate in sorted(root.rglob("*")):
        relative_parts = candidate.relative_to(root).parts
        if excluded & set(relative_parts[:-1]):
            continue
        if not candidate.is_file() or not _matches(candidate, suffixes):
            continue
        out.append(str(candidate))
    return out


def file_size(path: str) -> int:
    return Path(path).stat().st_size


def read_file(path: str) -> str:
    # Line endings stay as they are on disk.
    with open(path, encoding="utf-8", errors="replace", newline="") as handle:
        return handle.read()
