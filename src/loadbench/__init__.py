"""loadbench package root."""

from loadbench.exceptions import NeverThrown
from loadbench.invariants import never

__all__ = ["__version__", "NeverThrown", "never"]

__version__ = "0.1.0"
