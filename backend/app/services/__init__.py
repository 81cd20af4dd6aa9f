"""Internal application services."""

from .match_locks import MatchLockRegistry, match_locks
from .standings import net_run_rate, recompute_standings

__all__ = [
    "MatchLockRegistry",
    "match_locks",
    "net_run_rate",
    "recompute_standings",
]
