"""Client-side orchestration of city intelligence sessions

This package provides:
- IntelligenceState and the pure event reducer
- Derived progress values and selectors
- The optimistic update ledger
- Versioned persistence of completed cities (memory and SQLite)
- IntelligenceClient: one session composing all of the above with the stream
"""

from .client import IntelligenceClient
from .optimistic import OptimisticLedger, OptimisticSnapshot, new_snapshot_id
from .persistence import (
    CACHE_VERSION,
    CacheError,
    CacheStore,
    MemoryCacheStore,
    SQLiteCacheStore,
    pack_snapshot,
    unpack_snapshot,
)
from .progress import (
    ProgressSummary,
    agent_counts,
    city_progress,
    completed_cities,
    is_city_processing,
    overall_progress,
    round_half_up,
    summarize,
)
from .reducer import reduce, reduce_all
from .state import IntelligenceState, initial_state_for

__all__ = [
    # Client
    "IntelligenceClient",
    # State
    "IntelligenceState",
    "initial_state_for",
    "reduce",
    "reduce_all",
    # Progress
    "ProgressSummary",
    "agent_counts",
    "city_progress",
    "completed_cities",
    "is_city_processing",
    "overall_progress",
    "round_half_up",
    "summarize",
    # Optimistic updates
    "OptimisticLedger",
    "OptimisticSnapshot",
    "new_snapshot_id",
    # Persistence
    "CACHE_VERSION",
    "CacheError",
    "CacheStore",
    "MemoryCacheStore",
    "SQLiteCacheStore",
    "pack_snapshot",
    "unpack_snapshot",
]
