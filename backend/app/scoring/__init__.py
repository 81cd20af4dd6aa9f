"""Cricket scoring: ball ledger, innings aggregation and match phases."""

from . import cricket, innings, ledger
from .errors import ScoringError

__all__ = [
    "cricket",
    "innings",
    "ledger",
    "ScoringError",
]
