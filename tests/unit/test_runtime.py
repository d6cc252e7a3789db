# =============================================================================
# tests/unit/test_runtime.py
# Unit Tests for the Offline Runtime Composition
# =============================================================================

import asyncio

import pytest

from pos_core.config import OfflineSettings
from pos_core.offline import (
    ConnectionManager,
    MutationKind,
    SQLiteDeviceStorage,
    build_offline_runtime,
)


class TestBuild:

    def test_defaults_use_sqlite_at_settings_path(self, offline_settings):
        runtime = build_offline_runtime(settings=offline_settings, probe=lambda: True)

        assert isinstance(runtime.storage, SQLiteDeviceStorage)
        assert runtime.storage.db_path == offline_settings.db_path
        assert runtime.coordinator.max_retries == 3
        assert len(runtime.registry) == 0

        runtime.connectivity.check_connection()
        assert runtime.connectivity.is_reachable
        runtime.close()

    def test_settings_flow_into_components(self, tmp_path, memory_storage):
        settings = OfflineSettings(
            db_path=tmp_path / "pos.db",
            max_retries=5,
            snapshot_ttl_seconds=60,
            dead_letter_enabled=False,
        )
        runtime = build_offline_runtime(settings=settings, storage=memory_storage)

        assert runtime.coordinator.max_retries == 5
        assert runtime.snapshots.ttl_seconds == 60
        assert runtime.coordinator._dead_letters is None
        runtime.close()

    def test_registry_is_shared_with_coordinator(self, runtime, make_consumer):
        consumer = make_consumer(True)
        runtime.registry.register("create", consumer)
        runtime.run_blocking(runtime.enqueue("create", {"n": 1}))

        outcome = runtime.sync_now()

        assert runtime.coordinator.registry is runtime.registry
        assert outcome.processed_count == 1
        assert consumer.calls == [{"n": 1}]


class TestBlockingFacade:
    """Synchronous entry points used by the Streamlit script thread"""

    def test_sync_now_from_sync_code(self, runtime, make_consumer):
        consumer = make_consumer(True)
        runtime.coordinator.register_consumer(MutationKind.CREATE, consumer)
        runtime.run_blocking(runtime.enqueue(MutationKind.CREATE, {"n": 1}))
        assert runtime.pending_count() == 1

        outcome = runtime.sync_now()

        assert outcome.processed_count == 1
        assert runtime.pending_count() == 0
        assert consumer.calls == [{"n": 1}]

    def test_dead_letter_round_trip(self, runtime, make_consumer):
        runtime.coordinator.register_consumer("create", make_consumer(False, False, False, True))
        mutation_id = runtime.run_blocking(runtime.enqueue("create", {"n": 1}))

        for _ in range(runtime.settings.max_retries):
            runtime.sync_now()
        assert runtime.dead_letter_count() == 1
        assert runtime.pending_count() == 0

        runtime.run_blocking(runtime.retry_dead_letter(mutation_id))
        assert runtime.pending_count() == 1
        assert runtime.sync_now().processed_count == 1

    def test_discard_dead_letter(self, runtime):
        mutation_id = runtime.run_blocking(runtime.enqueue("refund", {}))
        for _ in range(runtime.settings.max_retries):
            runtime.sync_now()

        letters = runtime.run_blocking(runtime.list_dead_letters())
        assert [letter.id for letter in letters] == [mutation_id]
        assert runtime.run_blocking(runtime.discard_dead_letter(mutation_id)) is True
        assert runtime.dead_letter_count() == 0


class TestSyncOnReconnect:

    @pytest.mark.asyncio
    async def test_reconnect_inside_loop_schedules_pass(self, offline_settings, memory_storage, make_consumer):
        connectivity = ConnectionManager(initially_reachable=False)
        runtime = build_offline_runtime(
            settings=offline_settings,
            storage=memory_storage,
            connectivity=connectivity,
        )
        consumer = make_consumer(True)
        runtime.coordinator.register_consumer("create", consumer)
        runtime.sync_on_reconnect()
        await runtime.enqueue("create", {"n": 1})

        connectivity.set_reachable(True)
        for _ in range(50):
            if runtime.pending_count() == 0:
                break
            await asyncio.sleep(0.01)

        assert consumer.calls == [{"n": 1}]
        assert runtime.pending_count() == 0
        runtime.close()

    def test_reconnect_from_sync_code_uses_runtime_loop(self, offline_settings, memory_storage, make_consumer):
        connectivity = ConnectionManager(initially_reachable=False)
        runtime = build_offline_runtime(
            settings=offline_settings,
            storage=memory_storage,
            connectivity=connectivity,
        )
        runtime.coordinator.register_consumer("create", make_consumer(True))
        runtime.sync_on_reconnect()
        runtime.run_blocking(runtime.enqueue("create", {"n": 1}))

        connectivity.set_reachable(True)
        # Waits behind the reconnect pass on the runtime loop
        runtime.run_blocking(runtime.coordinator.run_sync_pass())

        assert runtime.pending_count() == 0
        runtime.close()
