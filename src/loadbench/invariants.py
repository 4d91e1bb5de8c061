"""Invariant markers for loadbench."""

from __future__ import annotations

from typing import NoReturn

from loadbench.exceptions import NeverThrown


def never(reason: str = "", **env: object) -> NoReturn:
    """Mark a code path as unreachable.

    Reaching it means a caller broke a contract (an empty chunk, a planner cut
    that does not move forward). It is never recovered from.
    """
    raise NeverThrown(reason or "never() marker reached", env=env)
