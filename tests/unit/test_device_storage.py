# =============================================================================
# tests/unit/test_device_storage.py
# Unit Tests for Device Storage Backends
# =============================================================================

import sqlite3
import threading

import pytest

from pos_core.offline import DeviceStorage, MemoryDeviceStorage, SQLiteDeviceStorage


@pytest.fixture(params=["memory", "sqlite"])
def storage(request, tmp_path):
    if request.param == "memory":
        yield MemoryDeviceStorage()
    else:
        backend = SQLiteDeviceStorage(tmp_path / "storage.db")
        yield backend
        backend.close()


class TestDeviceStorageContract:
    """Behaviour shared by every backend"""

    def test_satisfies_protocol(self, storage):
        assert isinstance(storage, DeviceStorage)

    def test_missing_key_is_none(self, storage):
        assert storage.get("nope") is None

    def test_set_then_get(self, storage):
        storage.set("queue", '[{"id": "a"}]')
        assert storage.get("queue") == '[{"id": "a"}]'

    def test_set_replaces_whole_value(self, storage):
        storage.set("queue", "first")
        storage.set("queue", "second")
        assert storage.get("queue") == "second"

    def test_delete_reports_presence(self, storage):
        storage.set("queue", "x")
        assert storage.delete("queue") is True
        assert storage.delete("queue") is False
        assert storage.get("queue") is None

    def test_rejects_non_string_values(self, storage):
        with pytest.raises(TypeError):
            storage.set("queue", {"id": "a"})

    def test_keys_filters_by_prefix(self, storage):
        storage.set("offline_snapshot:menu", "1")
        storage.set("offline_snapshot:orders", "2")
        storage.set("offline_request_queue", "3")

        assert storage.keys("offline_snapshot:") == [
            "offline_snapshot:menu",
            "offline_snapshot:orders",
        ]
        assert len(storage.keys()) == 3


class TestSQLiteDeviceStorage:
    """SQLite specifics"""

    def test_values_survive_reopen(self, tmp_path):
        """A new instance on the same file sees earlier writes"""
        path = tmp_path / "nested" / "device.db"
        first = SQLiteDeviceStorage(path)
        first.set("queue", "persisted")
        first.close()

        second = SQLiteDeviceStorage(path)
        assert second.get("queue") == "persisted"
        second.close()

    def test_prefix_wildcards_are_literal(self, sqlite_storage):
        sqlite_storage.set("a_b:1", "x")
        sqlite_storage.set("axb:1", "y")
        sqlite_storage.set("a%:1", "z")

        assert sqlite_storage.keys("a_b") == ["a_b:1"]
        assert sqlite_storage.keys("a%") == ["a%:1"]

    def test_close_releases_every_thread_connection(self, tmp_path):
        """Connections opened by worker threads are closed too"""
        backend = SQLiteDeviceStorage(tmp_path / "device.db")
        backend.set("queue", "main")
        connections = [backend._get_connection()]

        def worker():
            backend.get("queue")
            connections.append(backend._get_connection())

        threads = [threading.Thread(target=worker) for _ in range(3)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len({id(connection) for connection in connections}) == 4
        backend.close()

        for connection in connections:
            with pytest.raises(sqlite3.ProgrammingError):
                connection.execute("SELECT 1")

    def test_usable_after_close(self, tmp_path):
        backend = SQLiteDeviceStorage(tmp_path / "device.db")
        backend.set("queue", "kept")
        backend.close()

        assert backend.get("queue") == "kept"
        backend.close()
