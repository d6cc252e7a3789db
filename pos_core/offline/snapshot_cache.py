# =============================================================================
# pos_core/offline/snapshot_cache.py
# Time-Bounded Snapshot Cache for Read Entities
# =============================================================================
"""
SnapshotCache - last known-good server reads, kept for offline display.

Features:
- One blob per key: {"value": ..., "fetched_at": <epoch seconds>}
- Fixed TTL window; expired entries are evicted on read, never served
- Whole-entry replacement on put (no field merging)
- Passive: never touches the network

read_through() is the caller-side fetch helper: serve the cache while the
remote authority is unreachable, refresh it after every successful live
read, and fall back to it when a live read raises.
"""

from __future__ import annotations
import json
import sqlite3
import time
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, Tuple, TypeVar
import logging

from pos_core.errors import PersistenceError
from pos_core.offline.device_storage import DeviceStorage
from pos_core.offline.mutation_store import to_jsonable

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TTL_SECONDS = 24 * 60 * 60


@dataclass(frozen=True)
class SnapshotEntry(Generic[T]):
    """A cached read-model."""
    value: T
    fetched_at: float

    def age(self, now: float) -> float:
        return now - self.fetched_at

    def is_valid(self, now: float, ttl: float) -> bool:
        return now - self.fetched_at < ttl


class SnapshotCache:
    """
    Persistent, TTL-bounded cache of remote read data.

    Usage:
        cache = SnapshotCache(storage)
        cache.put("menu", items)
        items = cache.get("menu")   # None once 24h have passed
    """

    DEFAULT_NAMESPACE = "offline_snapshot"

    def __init__(
        self,
        storage: DeviceStorage,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        namespace: str = DEFAULT_NAMESPACE,
        clock: Callable[[], float] = time.time,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._storage = storage
        self.ttl_seconds = ttl_seconds
        self.namespace = namespace
        self._clock = clock

    def _storage_key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def _load_entry(self, key: str) -> Optional[SnapshotEntry]:
        storage_key = self._storage_key(key)
        try:
            blob = self._storage.get(storage_key)
        except (sqlite3.Error, OSError) as e:
            raise PersistenceError(
                f"Failed to read snapshot '{key}': {e}",
                key=storage_key,
                operation="read",
            ) from e

        if blob is None:
            return None

        try:
            raw = json.loads(blob)
            return SnapshotEntry(value=raw["value"], fetched_at=float(raw["fetched_at"]))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Evicting corrupt snapshot '{key}': {e}")
            self._delete(key)
            return None

    def _delete(self, key: str) -> bool:
        storage_key = self._storage_key(key)
        try:
            return self._storage.delete(storage_key)
        except (sqlite3.Error, OSError) as e:
            raise PersistenceError(
                f"Failed to evict snapshot '{key}': {e}",
                key=storage_key,
                operation="delete",
            ) from e

    def put(self, key: str, value: Any) -> SnapshotEntry:
        """Replace the entry for key and stamp it with the current time."""
        entry = SnapshotEntry(value=to_jsonable(value), fetched_at=self._clock())
        storage_key = self._storage_key(key)

        try:
            blob = json.dumps(
                {"value": entry.value, "fetched_at": entry.fetched_at},
                allow_nan=False,
            )
        except (TypeError, ValueError) as e:
            raise PersistenceError(
                f"Failed to serialize snapshot '{key}': {e}",
                key=storage_key,
                operation="put",
            ) from e

        try:
            self._storage.set(storage_key, blob)
        except (sqlite3.Error, OSError) as e:
            raise PersistenceError(
                f"Failed to write snapshot '{key}': {e}",
                key=storage_key,
                operation="put",
            ) from e

        logger.debug(f"Cached snapshot '{key}'")
        return entry

    def get_entry(self, key: str) -> Optional[SnapshotEntry]:
        """Valid entry for key, evicting it first if it has expired."""
        entry = self._load_entry(key)
        if entry is None:
            return None
        if not entry.is_valid(self._clock(), self.ttl_seconds):
            self._delete(key)
            logger.debug(f"Snapshot '{key}' expired and was evicted")
            return None
        return entry

    def get(self, key: str) -> Optional[Any]:
        entry = self.get_entry(key)
        return entry.value if entry is not None else None

    def get_age(self, key: str) -> Optional[float]:
        """Seconds since the entry was captured, or None if absent/expired."""
        entry = self.get_entry(key)
        return entry.age(self._clock()) if entry is not None else None

    def purge_expired(self, key: str) -> bool:
        """Evict key if its entry has expired. Returns True if evicted."""
        entry = self._load_entry(key)
        if entry is None or entry.is_valid(self._clock(), self.ttl_seconds):
            return False
        return self._delete(key)

    def purge_all_expired(self) -> int:
        prefix = self._storage_key("")
        return sum(
            1 for storage_key in self._storage.keys(prefix)
            if self.purge_expired(storage_key[len(prefix):])
        )

    def clear_all(self) -> int:
        """Remove every snapshot in this namespace."""
        prefix = self._storage_key("")
        removed = 0
        for storage_key in self._storage.keys(prefix):
            if self._delete(storage_key[len(prefix):]):
                removed += 1
        logger.info(f"Cleared {removed} cached snapshots")
        return removed


def read_through(
    cache: SnapshotCache,
    key: str,
    fetch: Callable[[], T],
    connectivity: Any = None,
) -> Tuple[T, bool]:
    """
    Fetch live data, falling back to the snapshot cache.

    Args:
        cache: Snapshot cache to consult and refresh
        key: Snapshot key
        fetch: Zero-argument callable performing the live read
        connectivity: Object exposing is_reachable; None means assume reachable

    Returns:
        (value, from_cache)

    Raises:
        Whatever fetch() raised, when no valid snapshot exists to fall back on
    """
    reachable = connectivity is None or connectivity.is_reachable

    if not reachable:
        cached = cache.get_entry(key)
        if cached is not None:
            logger.info(f"Offline, serving cached '{key}'")
            return cached.value, True

    try:
        value = fetch()
    except Exception as e:
        cached = cache.get_entry(key)
        if cached is None:
            raise
        logger.warning(f"Live fetch of '{key}' failed ({e}), serving cached copy")
        return cached.value, True

    try:
        cache.put(key, value)
    except PersistenceError as e:
        logger.warning(f"Could not cache '{key}': {e}")

    return value, False
