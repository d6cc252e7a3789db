# =============================================================================
# tests/conftest.py
# Pytest Configuration and Fixtures
# =============================================================================

import sqlite3
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import pytest

from pos_core.config import OfflineSettings
from pos_core.offline import (
    ConnectionManager,
    MemoryDeviceStorage,
    SQLiteDeviceStorage,
    build_offline_runtime,
)


# =============================================================================
# TEST DOUBLES
# =============================================================================

class ManualClock:
    """Epoch-seconds clock that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FailingDeviceStorage(MemoryDeviceStorage):
    """Memory storage whose writes (and optionally reads) fail."""

    def __init__(self, initial: Optional[Dict[str, str]] = None, fail_reads: bool = False):
        super().__init__(initial)
        self.fail_writes = True
        self.fail_reads = fail_reads

    def get(self, key: str) -> Optional[str]:
        if self.fail_reads:
            raise sqlite3.OperationalError("disk I/O error")
        return super().get(key)

    def set(self, key: str, value: str) -> None:
        if self.fail_writes:
            raise sqlite3.OperationalError("database or disk is full")
        super().set(key, value)


class RecordingConsumer:
    """
    Consumer that records payloads and answers from a script.

    Each entry of `results` is used once, in order; the last one repeats.
    An entry may be a bool or an exception instance to raise.
    """

    def __init__(self, *results: Any):
        self.results: List[Any] = list(results) or [True]
        self.calls: List[Any] = []

    def _next(self) -> Any:
        if len(self.results) > 1:
            return self.results.pop(0)
        return self.results[0]

    async def __call__(self, payload: Any) -> bool:
        self.calls.append(payload)
        result = self._next()
        if isinstance(result, Exception):
            raise result
        return result


# =============================================================================
# STORAGE FIXTURES
# =============================================================================

@pytest.fixture
def memory_storage():
    """Fresh in-memory device storage"""
    return MemoryDeviceStorage()


@pytest.fixture
def sqlite_storage(tmp_path):
    """SQLite device storage in a temporary directory"""
    storage = SQLiteDeviceStorage(tmp_path / "device.db")
    yield storage
    storage.close()


@pytest.fixture
def failing_storage():
    """Storage that rejects every write"""
    return FailingDeviceStorage()


@pytest.fixture
def clock():
    """Controllable clock for TTL tests"""
    return ManualClock()


# =============================================================================
# RUNTIME FIXTURES
# =============================================================================

@pytest.fixture
def offline_settings(tmp_path):
    """Settings pointing at a temporary database"""
    return OfflineSettings(db_path=tmp_path / "pos_offline.db")


@pytest.fixture
def connectivity():
    """Connectivity observer that starts online and never probes"""
    return ConnectionManager(initially_reachable=True)


@pytest.fixture
def runtime(offline_settings, memory_storage, connectivity):
    """Offline runtime over memory storage"""
    runtime = build_offline_runtime(
        settings=offline_settings,
        storage=memory_storage,
        connectivity=connectivity,
    )
    yield runtime
    runtime.close()


# =============================================================================
# MOCK FIXTURES
# =============================================================================

@pytest.fixture
def mock_streamlit(monkeypatch):
    """Mock Streamlit in every pos_core module that renders or reads secrets"""
    import pos_core.config
    import pos_core.errors.handlers
    import pos_core.ui.offline_indicator

    mock_st = MagicMock()
    mock_st.session_state = {}
    mock_st.secrets = {}
    mock_st.button.return_value = False
    mock_st.columns.side_effect = lambda widths: [MagicMock() for _ in range(
        widths if isinstance(widths, int) else len(widths)
    )]

    for module in (
        pos_core.config,
        pos_core.errors.handlers,
        pos_core.ui.offline_indicator,
    ):
        monkeypatch.setattr(module, "st", mock_st)

    yield mock_st


@pytest.fixture
def mock_supabase():
    """Mock Supabase client"""
    mock_client = MagicMock()
    mock_client.rpc.return_value.execute.return_value.data = 42
    mock_client.table.return_value.insert.return_value.execute.return_value.data = [
        {"id": "order-1", "order_number": 42}
    ]
    mock_client.table.return_value.update.return_value.eq.return_value.execute.return_value.data = [
        {"id": "order-1"}
    ]
    mock_client.table.return_value.select.return_value.eq.return_value.eq.return_value \
        .order.return_value.execute.return_value.data = []
    mock_client.table.return_value.select.return_value.eq.return_value \
        .order.return_value.execute.return_value.data = []
    return mock_client


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def sample_order(**overrides) -> Dict[str, Any]:
    """Order as submitted from the new-order screen"""
    order = {
        "event_id": "evt-1",
        "waiter_id": "waiter-7",
        "tenant_id": "tenant-1",
        "table_number": "T12",
        "guest_name": "Ada",
        "cart": [
            {"id": "menu-1", "price": 12.5, "quantity": 2, "station_type": "kitchen"},
            {"id": "menu-2", "price": 4.0, "quantity": 1, "station_type": "bar"},
        ],
    }
    order.update(overrides)
    return order


@pytest.fixture
def make_consumer():
    """Factory for scripted consumers"""
    return RecordingConsumer


@pytest.fixture
def make_order():
    """Factory for sample orders"""
    return sample_order
