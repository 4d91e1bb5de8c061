from __future__ import annotations

import pytest

from loadbench import NeverThrown, never


def test_never_raises_with_env() -> None:
    with pytest.raises(NeverThrown) as exc_info:
        never("chunk plan makes no progress", start=3, end=3)
    assert exc_info.value.env == {"start": 3, "end": 3}
    assert str(exc_info.value) == "chunk plan makes no progress (start=3, end=3)"


def test_never_without_reason() -> None:
    with pytest.raises(NeverThrown, match="never\\(\\) marker reached"):
        never()
