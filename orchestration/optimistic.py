"""Optimistic update ledger

Speculative edits to a city record while a server round-trip is pending:

    state, snapshot_id = ledger.apply(state, "paris", {"quality": 90})
    ...
    state = ledger.rollback(state, snapshot_id)   # server said no
    ledger.confirm(snapshot_id)                   # server said yes

Each apply() saves a deep copy of the pre-edit record under its own id.
Edits are independent and last-writer-wins: rolling back one edit restores
the record exactly as it was before *that* edit, overwriting any later
edit to the same city. There is no nested undo stack.
"""

import random
import string
import time
from datetime import datetime
from typing import Any

import structlog
from pydantic import BaseModel, Field, ValidationError

from intelligence import CityIntelligence, utcnow

from .state import IntelligenceState

logger = structlog.get_logger(__name__)

# Fields an optimistic edit may not touch
_PROTECTED_FIELDS = frozenset({"city_id"})


class OptimisticSnapshot(BaseModel):
    """Pre-edit copy of a city record, consumed by rollback or confirm."""

    id: str
    city_id: str
    previous: CityIntelligence
    timestamp: datetime = Field(default_factory=utcnow)


def new_snapshot_id() -> str:
    """Unique id of the form optimistic-<epoch ms>-<random suffix>."""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=10))
    return f"optimistic-{int(time.time() * 1000)}-{suffix}"


class OptimisticLedger:
    """Side ledger of pending speculative edits, keyed by snapshot id."""

    def __init__(self) -> None:
        self._snapshots: dict[str, OptimisticSnapshot] = {}

    def __len__(self) -> int:
        return len(self._snapshots)

    def __contains__(self, snapshot_id: str) -> bool:
        return snapshot_id in self._snapshots

    @property
    def pending(self) -> list[OptimisticSnapshot]:
        return list(self._snapshots.values())

    def apply(
        self,
        state: IntelligenceState,
        city_id: str,
        partial: dict[str, Any],
    ) -> tuple[IntelligenceState, str]:
        """Shallow-merge `partial` into a city record, remembering the old record.

        For a city that is not in the state this is a no-op that still
        returns a fresh id (rollback/confirm on it do nothing).

        Raises:
            ValueError: `partial` names a field CityIntelligence does not have,
                tries to change city_id, or carries a value that fails validation
        """
        unknown = set(partial) - set(CityIntelligence.model_fields)
        if unknown:
            raise ValueError(f"Unknown CityIntelligence fields: {', '.join(sorted(unknown))}")
        protected = set(partial) & _PROTECTED_FIELDS
        if protected:
            raise ValueError(f"Fields cannot be changed optimistically: {', '.join(sorted(protected))}")

        snapshot_id = new_snapshot_id()
        current = state.city_intelligence.get(city_id)
        if current is None:
            logger.warning("optimistic.city_not_found", city_id=city_id, snapshot_id=snapshot_id)
            return state, snapshot_id

        try:
            updated = CityIntelligence.model_validate({**current.model_dump(), **partial})
        except ValidationError as e:
            raise ValueError(f"Invalid optimistic update for {city_id}: {e}") from e

        self._snapshots[snapshot_id] = OptimisticSnapshot(
            id=snapshot_id,
            city_id=city_id,
            previous=current.model_copy(deep=True),
        )
        logger.debug("optimistic.applied", city_id=city_id, snapshot_id=snapshot_id, fields=sorted(partial))
        return state.model_copy(
            update={"city_intelligence": {**state.city_intelligence, city_id: updated}}
        ), snapshot_id

    def rollback(self, state: IntelligenceState, snapshot_id: str) -> IntelligenceState:
        """Restore the pre-edit record verbatim and discard the snapshot."""
        snapshot = self._snapshots.pop(snapshot_id, None)
        if snapshot is None:
            logger.debug("optimistic.rollback_unknown", snapshot_id=snapshot_id)
            return state

        logger.info("optimistic.rolled_back", city_id=snapshot.city_id, snapshot_id=snapshot_id)
        return state.model_copy(
            update={
                "city_intelligence": {
                    **state.city_intelligence,
                    snapshot.city_id: snapshot.previous.model_copy(deep=True),
                }
            }
        )

    def confirm(self, snapshot_id: str) -> None:
        """Discard the snapshot; the live record keeps the edit."""
        if self._snapshots.pop(snapshot_id, None) is not None:
            logger.debug("optimistic.confirmed", snapshot_id=snapshot_id)

    def clear(self) -> None:
        self._snapshots.clear()
