# =============================================================================
# tests/integration/test_offline_scenarios.py
# End-to-End Offline Order Taking Scenarios
# =============================================================================

import pytest

from pos_core.offline import (
    ConnectionManager,
    SnapshotCache,
    build_offline_runtime,
)
from pos_core.services import OrderService, SupabaseOrderGateway

pytestmark = pytest.mark.integration

HOUR = 60 * 60


def _runtime(settings, storage, reachable):
    return build_offline_runtime(
        settings=settings,
        storage=storage,
        connectivity=ConnectionManager(initially_reachable=reachable),
    )


class TestOfflineOrderSyncedAfterRestart:
    """An order taken offline survives a restart and syncs on reconnect"""

    @pytest.mark.asyncio
    async def test_order_reaches_remote_after_reconnect(
        self, offline_settings, sqlite_storage, mock_supabase, make_order
    ):
        runtime = _runtime(offline_settings, sqlite_storage, reachable=False)
        service = OrderService(runtime, SupabaseOrderGateway(mock_supabase))

        result = await service.submit_order(make_order(table_number="T12"))
        assert result.data["queued"] is True
        assert runtime.pending_count() == 1
        mock_supabase.rpc.assert_not_called()
        runtime.close()

        # Process restart: new runtime over the same device storage
        restarted = _runtime(offline_settings, sqlite_storage, reachable=False)
        gateway = SupabaseOrderGateway(mock_supabase)
        gateway.register_consumers(restarted.coordinator)
        assert restarted.pending_count() == 1

        restarted.connectivity.set_reachable(True)
        outcome = await restarted.sync()

        assert (outcome.processed_count, outcome.failed_count) == (1, 0)
        assert restarted.pending_count() == 0
        mock_supabase.rpc.assert_called_once_with("generate_order_number", {"_event_id": "evt-1"})
        order_row = mock_supabase.table.return_value.insert.call_args_list[0].args[0]
        assert order_row["table_number"] == "T12"
        restarted.close()

    @pytest.mark.asyncio
    async def test_manual_sync_with_generic_consumer(
        self, offline_settings, memory_storage, make_consumer
    ):
        runtime = _runtime(offline_settings, memory_storage, reachable=False)
        consumer = make_consumer(True)
        runtime.coordinator.register_consumer("create", consumer)

        await runtime.enqueue("create", {"table": "T12", "items": [{"id": "menu-1"}]})
        assert runtime.pending_count() == 1

        runtime.connectivity.set_reachable(True)
        outcome = await runtime.sync()

        assert outcome.to_dict() == {"processed": 1, "failed": 0, "dropped": 0}
        assert runtime.pending_count() == 0
        assert consumer.calls == [{"table": "T12", "items": [{"id": "menu-1"}]}]
        runtime.close()


class TestPersistentRemoteRejection:
    """Records that keep failing are retired after the retry budget"""

    @pytest.mark.asyncio
    async def test_three_failing_records_over_three_passes(
        self, offline_settings, memory_storage, make_consumer
    ):
        runtime = _runtime(offline_settings, memory_storage, reachable=True)
        runtime.coordinator.register_consumer("create", make_consumer(False))
        ids = [await runtime.enqueue("create", {"n": n}) for n in range(3)]

        first = await runtime.sync()
        assert runtime.pending_count() == 3
        assert [r.attempts for r in await runtime.store.list_pending()] == [1, 1, 1]

        outcomes = [first, await runtime.sync(), await runtime.sync()]

        assert runtime.pending_count() == 0
        assert sum(o.failed_count for o in outcomes) == 9
        assert sum(o.processed_count for o in outcomes) == 0
        assert set(outcomes[-1].dropped_ids) == set(ids)
        assert runtime.dead_letter_count() == 3

        # A further pass has nothing left to do
        assert (await runtime.sync()).to_dict() == {"processed": 0, "failed": 0, "dropped": 0}
        runtime.close()


class TestMenuSnapshotWhileOffline:
    """Read data stays available offline within the TTL"""

    def test_menu_served_offline_within_ttl(self, memory_storage, clock):
        items = [{"id": "menu-1", "name": "Burger"}, {"id": "menu-2", "name": "Fries"}]
        cache = SnapshotCache(memory_storage, ttl_seconds=24 * HOUR, clock=clock)
        cache.put("menu", items)
        connectivity = ConnectionManager(initially_reachable=True)

        connectivity.set_reachable(False)
        clock.advance(1 * HOUR)

        assert connectivity.is_offline
        assert cache.get("menu") == items

        clock.advance(24 * HOUR)
        assert cache.get("menu") is None

    def test_order_service_menu_offline(self, runtime, mock_supabase):
        mock_supabase.table.return_value.select.return_value.eq.return_value.eq.return_value \
            .order.return_value.execute.return_value.data = [{"id": "menu-1"}]
        service = OrderService(runtime, SupabaseOrderGateway(mock_supabase))

        assert service.fetch_menu("evt-1").metadata["from_cache"] is False

        runtime.connectivity.set_reachable(False)
        mock_supabase.table.side_effect = ConnectionError("offline")
        result = service.fetch_menu("evt-1")

        assert result.data == [{"id": "menu-1"}]
        assert result.metadata["from_cache"] is True
