"""Versioned cache of completed city intelligence

Only records with status == complete survive a restart. The cache is a
single versioned snapshot:

    {"version": 2, "cityIntelligence": {"paris": {...camelCase record...}}}

A snapshot with another version, or one that no longer validates, is wiped
rather than migrated.

Adapters:
- MemoryCacheStore: in-process dict, for tests and ephemeral sessions
- SQLiteCacheStore: Burr AsyncSQLitePersister rows in a local SQLite file, newest wins
"""

import os
from typing import Any, Mapping, Protocol

import aiosqlite
import structlog
from burr.core import State
from burr.integrations.persisters.b_aiosqlite import AsyncSQLitePersister
from pydantic import ValidationError

from intelligence import CityIntelligence, CityStatus

logger = structlog.get_logger(__name__)

CACHE_VERSION = 2

# Key of the snapshot inside the persisted Burr state
SNAPSHOT_KEY = "snapshot"


class CacheError(ValueError):
    """Persisted snapshot is unreadable or from another version."""


class CacheStore(Protocol):
    """Async load/save/clear of the completed-city cache."""

    async def load(self) -> dict[str, CityIntelligence]: ...

    async def save(self, cities: Mapping[str, CityIntelligence]) -> None: ...

    async def clear(self) -> None: ...


# ============================================================================
# Snapshot Packing
# ============================================================================


def pack_snapshot(
    cities: Mapping[str, CityIntelligence],
    version: int = CACHE_VERSION,
) -> dict[str, Any]:
    """JSON-ready snapshot of the complete records in `cities`."""
    return {
        "version": version,
        "cityIntelligence": {
            city_id: city.to_payload()
            for city_id, city in cities.items()
            if city.status == CityStatus.COMPLETE
        },
    }


def unpack_snapshot(raw: Any, version: int = CACHE_VERSION) -> dict[str, CityIntelligence]:
    """Validate a persisted snapshot back into records.

    Raises:
        CacheError: wrong version, wrong shape, or a record that fails validation
    """
    if not isinstance(raw, dict):
        raise CacheError(f"Snapshot must be an object, got {type(raw).__name__}")
    if raw.get("version") != version:
        raise CacheError(f"Snapshot version {raw.get('version')!r} != {version}")

    records = raw.get("cityIntelligence")
    if not isinstance(records, dict):
        raise CacheError("Snapshot has no cityIntelligence object")

    try:
        cities = {city_id: CityIntelligence.model_validate(record) for city_id, record in records.items()}
    except ValidationError as e:
        raise CacheError(f"Snapshot record failed validation: {e.error_count()} errors") from e

    # Anything that is not complete should never have been written
    return {city_id: city for city_id, city in cities.items() if city.status == CityStatus.COMPLETE}


# ============================================================================
# Adapters
# ============================================================================


class MemoryCacheStore:
    """CacheStore backed by a packed snapshot held in memory."""

    def __init__(self, raw: Any = None, version: int = CACHE_VERSION):
        self.raw = raw
        self.version = version

    async def load(self) -> dict[str, CityIntelligence]:
        if self.raw is None:
            return {}
        try:
            return unpack_snapshot(self.raw, self.version)
        except CacheError as e:
            logger.warning("cache.wiped", store="memory", reason=str(e))
            self.raw = None
            return {}

    async def save(self, cities: Mapping[str, CityIntelligence]) -> None:
        self.raw = pack_snapshot(cities, self.version)

    async def clear(self) -> None:
        self.raw = None


class SQLiteCacheStore:
    """CacheStore persisted through Burr's AsyncSQLitePersister.

    Snapshots live under one (partition_key, app_id) and are numbered by an
    increasing sequence_id. A save writes the next row before deleting the
    older ones, so between saves the table holds a single row.

    Args:
        db_path: Path to SQLite database file
        table_name: Table name for state storage
        partition_key: Partition the snapshot is stored under
        app_id: Application identifier within the partition
        version: Snapshot version written and accepted
    """

    def __init__(
        self,
        db_path: str = "./intelligence_cache.db",
        table_name: str = "city_intelligence_cache",
        partition_key: str = "city_intelligence",
        app_id: str = "ROOT",
        version: int = CACHE_VERSION,
    ):
        self.db_path = db_path
        self.table_name = table_name
        self.partition_key = partition_key
        self.app_id = app_id
        self.version = version
        self._persister: AsyncSQLitePersister | None = None

    async def _open(self) -> AsyncSQLitePersister:
        if self._persister is None:
            self._persister = await AsyncSQLitePersister.from_values(
                db_path=self.db_path,
                table_name=self.table_name,
            )
            await self._persister.initialize()
        return self._persister

    async def load(self) -> dict[str, CityIntelligence]:
        persister = await self._open()
        sequence_id = await self._latest_sequence_id()
        if sequence_id is None:
            return {}
        cached_state = await persister.load(
            partition_key=self.partition_key,
            app_id=self.app_id,
            sequence_id=sequence_id,
        )
        if cached_state is None:
            return {}

        state_obj = cached_state.get("state")
        state_dict = state_obj.get_all() if hasattr(state_obj, "get_all") else dict(state_obj or {})
        try:
            cities = unpack_snapshot(state_dict.get(SNAPSHOT_KEY), self.version)
        except CacheError as e:
            logger.warning("cache.wiped", store="sqlite", db_path=self.db_path, reason=str(e))
            await self.clear()
            return {}

        logger.info("cache.loaded", store="sqlite", cities=len(cities), sequence_id=sequence_id)
        return cities

    async def save(self, cities: Mapping[str, CityIntelligence]) -> None:
        """Write a new snapshot row, then drop the older ones.

        An interrupted save leaves either the previous row alone or both
        rows, and load() always reads the newest.
        """
        persister = await self._open()
        snapshot = pack_snapshot(cities, self.version)
        latest = await self._latest_sequence_id()
        sequence_id = 0 if latest is None else latest + 1
        await persister.save(
            partition_key=self.partition_key,
            app_id=self.app_id,
            sequence_id=sequence_id,
            position="city_complete",
            state=State({SNAPSHOT_KEY: snapshot}),
            status="completed",
        )
        await self._delete_rows(before=sequence_id)
        logger.debug("cache.saved", store="sqlite", cities=len(snapshot["cityIntelligence"]), sequence_id=sequence_id)

    async def clear(self) -> None:
        await self._open()
        deleted = await self._delete_rows()
        logger.info("cache.cleared", store="sqlite", deleted=deleted)

    async def aclose(self) -> None:
        """Cleanup persister connection."""
        if self._persister is not None:
            await self._persister.cleanup()
            self._persister = None

    async def _latest_sequence_id(self) -> int | None:
        if not os.path.exists(self.db_path):
            return None
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                f"SELECT MAX(sequence_id) FROM {self.table_name} WHERE partition_key = ? AND app_id = ?",
                (self.partition_key, self.app_id),
            )
            row = await cursor.fetchone()
        return row[0] if row else None

    async def _delete_rows(self, before: int | None = None) -> int:
        """Delete snapshot rows, all of them or only those older than `before`."""
        if not os.path.exists(self.db_path):
            return 0
        query = f"DELETE FROM {self.table_name} WHERE partition_key = ? AND app_id = ?"
        params: tuple = (self.partition_key, self.app_id)
        if before is not None:
            query += " AND sequence_id < ?"
            params += (before,)
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(query, params)
            await db.commit()
            return cursor.rowcount
