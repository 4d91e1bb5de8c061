"""Exception types shared across loadbench."""

from __future__ import annotations


class NeverThrown(RuntimeError):
    """Raised when a code path that must be unreachable is reached.

    The optional env payload records the values that broke the contract; it is
    metadata for the failure report only.
    """

    def __init__(self, message: str, *, env: dict[str, object] | None = None):
        super().__init__(message)
        self.env = dict(env or {})

    def __str__(self) -> str:
        message = super().__str__()
        if not self.env:
            return message
        details = ", ".join(f"{key}={value!r}" for key, value in self.env.items())
        return f"{message} ({details})"
