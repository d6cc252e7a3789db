# =============================================================================
# pos_core/offline/device_storage.py
# Durable Keyed Storage on the Local Device
# =============================================================================
"""
DeviceStorage - string blobs under string keys that survive process restarts.

The mutation store and the snapshot cache both persist through this
interface, one blob per key. Two implementations:

- SQLiteDeviceStorage: a single key/value table in a local SQLite file
- MemoryDeviceStorage: a dict, for tests and ephemeral sessions

Implementations raise their native errors (sqlite3.Error, OSError);
callers translate them into PersistenceError.
"""

from __future__ import annotations
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Protocol, runtime_checkable
import logging

logger = logging.getLogger(__name__)


@runtime_checkable
class DeviceStorage(Protocol):
    """Minimal keyed persistence contract."""

    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def delete(self, key: str) -> bool:
        ...

    def keys(self, prefix: str = "") -> List[str]:
        ...


class MemoryDeviceStorage:
    """Dict-backed storage. Survives store re-instantiation, not the process."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise TypeError(f"DeviceStorage values must be str, got {type(value).__name__}")
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def keys(self, prefix: str = "") -> List[str]:
        with self._lock:
            return sorted(k for k in self._data if k.startswith(prefix))


class SQLiteDeviceStorage:
    """
    SQLite-backed key/value storage.

    Connections are thread-local so blocking writes can be pushed to worker
    threads; every write commits before returning.
    """

    DEFAULT_TABLE = "device_storage"

    def __init__(self, db_path: Path, table: str = DEFAULT_TABLE):
        """
        Initialize device storage.

        Args:
            db_path: Path to SQLite database file
            table: Name of the key/value table
        """
        self.db_path = Path(db_path)
        self.table = table
        self._local = threading.local()
        self._connections: List[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()
        self._initialized = False
        self._init_lock = threading.Lock()
        self._ensure_directory()

    def _ensure_directory(self) -> None:
        """Ensure database directory exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if getattr(self._local, "connection", None) is None:
            self._local.connection = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
            )
            self._local.connection.row_factory = sqlite3.Row
            with self._connections_lock:
                self._connections.append(self._local.connection)
        return self._local.connection

    @contextmanager
    def transaction(self):
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def initialize(self) -> None:
        """Create the key/value table if needed."""
        with self._init_lock:
            if self._initialized:
                return
            with self.transaction() as conn:
                conn.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS {self.table} (
                        key TEXT PRIMARY KEY,
                        value TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                    """
                )
            self._initialized = True
            logger.info(f"Device storage initialized at: {self.db_path}")

    def get(self, key: str) -> Optional[str]:
        self.initialize()
        row = self._get_connection().execute(
            f"SELECT value FROM {self.table} WHERE key = ?",
            [key]
        ).fetchone()
        return row["value"] if row else None

    def set(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise TypeError(f"DeviceStorage values must be str, got {type(value).__name__}")
        self.initialize()
        with self.transaction() as conn:
            conn.execute(
                f"""
                INSERT OR REPLACE INTO {self.table} (key, value, updated_at)
                VALUES (?, ?, ?)
                """,
                [key, value, datetime.now().isoformat()]
            )

    def delete(self, key: str) -> bool:
        self.initialize()
        with self.transaction() as conn:
            cursor = conn.execute(f"DELETE FROM {self.table} WHERE key = ?", [key])
            return cursor.rowcount > 0

    def keys(self, prefix: str = "") -> List[str]:
        self.initialize()
        # Escape LIKE wildcards so prefixes are matched literally
        escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        rows = self._get_connection().execute(
            f"SELECT key FROM {self.table} WHERE key LIKE ? ESCAPE '\\' ORDER BY key",
            [f"{escaped}%"]
        ).fetchall()
        return [row["key"] for row in rows]

    def close(self) -> None:
        """Close every connection opened by any thread."""
        with self._connections_lock:
            connections, self._connections = self._connections, []
        for connection in connections:
            connection.close()
        self._local = threading.local()
