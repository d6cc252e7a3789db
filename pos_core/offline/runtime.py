# =============================================================================
# pos_core/offline/runtime.py
# Explicit Composition of the Offline Subsystem
# =============================================================================
"""
OfflineRuntime - builds every offline component once and hands out the
references. Construct it at process start (the Streamlit app keeps it in
st.cache_resource) and pass it to whatever needs the queue.

Usage:
    runtime = build_offline_runtime()
    runtime.coordinator.register_consumer("create", gateway.create_order)

    mutation_id = await runtime.enqueue("create", order)
    outcome = runtime.sync_now()          # from synchronous UI code
"""

from __future__ import annotations
import asyncio
import threading
from dataclasses import dataclass, field
from typing import Any, Awaitable, List, Optional, Set, TypeVar, Union
import logging

from pos_core.config import OfflineSettings, load_settings
from pos_core.offline.connection_manager import ConnectionManager, ConnectionState, Probe, tcp_probe
from pos_core.offline.consumers import ConsumerRegistry, MutationKind
from pos_core.offline.device_storage import DeviceStorage, SQLiteDeviceStorage
from pos_core.offline.mutation_store import DeadLetter, DeadLetterStore, MutationStore
from pos_core.offline.snapshot_cache import SnapshotCache
from pos_core.offline.sync_coordinator import SyncCoordinator, SyncOutcome

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _log_failed_pass(future) -> None:
    if future.cancelled():
        return
    error = future.exception()
    if error is not None:
        logger.error(f"Background sync pass failed: {error}", exc_info=error)


@dataclass
class OfflineRuntime:
    """Wired offline components for one process."""
    settings: OfflineSettings
    storage: DeviceStorage
    connectivity: ConnectionManager
    store: MutationStore
    dead_letters: DeadLetterStore
    snapshots: SnapshotCache
    registry: ConsumerRegistry
    coordinator: SyncCoordinator
    _background_tasks: Set[asyncio.Task] = field(default_factory=set, repr=False)
    _loop: Optional[asyncio.AbstractEventLoop] = field(default=None, repr=False)
    _loop_thread: Optional[threading.Thread] = field(default=None, repr=False)
    _loop_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        """Event loop owned by the runtime, started on first use."""
        with self._loop_lock:
            if self._loop is None or self._loop.is_closed():
                loop = asyncio.new_event_loop()
                thread = threading.Thread(
                    target=loop.run_forever,
                    daemon=True,
                    name="OfflineRuntimeLoop",
                )
                thread.start()
                self._loop, self._loop_thread = loop, thread
            return self._loop

    def run_blocking(self, coro: Awaitable[T]) -> T:
        """
        Run a coroutine to completion from synchronous code.

        Every blocking call goes through the runtime's own loop, so store
        and sync locks are only ever awaited on one loop even when the
        Streamlit script thread and the monitor thread both trigger work.
        """
        return asyncio.run_coroutine_threadsafe(coro, self._get_loop()).result()

    def close(self) -> None:
        """Stop the runtime loop and connection monitoring."""
        self.connectivity.stop_monitoring()
        with self._loop_lock:
            loop, thread = self._loop, self._loop_thread
            self._loop = self._loop_thread = None
        if loop is not None:
            loop.call_soon_threadsafe(loop.stop)
            if thread is not None:
                thread.join(timeout=5)
            loop.close()

    async def enqueue(self, kind: Union[str, MutationKind], payload: Any) -> str:
        return await self.store.enqueue(kind, payload)

    def pending_count(self) -> int:
        return self.store.pending_count()

    def dead_letter_count(self) -> int:
        return self.dead_letters.count()

    async def sync(self) -> SyncOutcome:
        return await self.coordinator.run_sync_pass()

    def sync_now(self) -> SyncOutcome:
        """Manual sync trigger for synchronous callers."""
        return self.run_blocking(self.sync())

    async def list_dead_letters(self) -> List[DeadLetter]:
        return await self.dead_letters.list()

    async def retry_dead_letter(self, mutation_id: str) -> str:
        return await self.dead_letters.retry(mutation_id, self.store)

    async def discard_dead_letter(self, mutation_id: str) -> bool:
        return await self.dead_letters.discard(mutation_id)

    def sync_on_reconnect(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """
        Run a sync pass whenever connectivity transitions back to ONLINE.

        The pass is scheduled, not awaited: on the running loop when the
        transition is reported from inside one, otherwise on `loop` or the
        runtime's own loop.

        Args:
            loop: Event loop to schedule the pass on when the transition is
                reported from another thread (e.g. the monitor thread)
        """
        def _trigger(state: ConnectionState) -> None:
            try:
                running = asyncio.get_running_loop()
            except RuntimeError:
                running = None

            if running is not None and loop in (None, running):
                task = running.create_task(self.sync())
                self._background_tasks.add(task)
                task.add_done_callback(self._background_tasks.discard)
                task.add_done_callback(_log_failed_pass)
            else:
                future = asyncio.run_coroutine_threadsafe(self.sync(), loop or self._get_loop())
                future.add_done_callback(_log_failed_pass)

        self.connectivity.on_reconnect(_trigger)
        logger.info("Sync on reconnect enabled")


def build_offline_runtime(
    settings: Optional[OfflineSettings] = None,
    storage: Optional[DeviceStorage] = None,
    connectivity: Optional[ConnectionManager] = None,
    probe: Optional[Probe] = None,
) -> OfflineRuntime:
    """
    Construct the offline subsystem.

    Args:
        settings: Settings to use (default: load_settings())
        storage: Device storage (default: SQLite at settings.db_path)
        connectivity: Connectivity observer (default: probes settings.remote_url)
        probe: Probe for the default observer

    Returns:
        OfflineRuntime with an empty consumer registry
    """
    settings = settings or load_settings()
    storage = storage or SQLiteDeviceStorage(settings.db_path)

    if connectivity is None:
        connectivity = ConnectionManager(
            probe=probe or tcp_probe(settings.remote_url, timeout=settings.probe_timeout)
        )

    store = MutationStore(storage, key=settings.queue_key)
    dead_letters = DeadLetterStore(storage, key=settings.dead_letter_key)
    snapshots = SnapshotCache(
        storage,
        ttl_seconds=settings.snapshot_ttl_seconds,
        namespace=settings.snapshot_namespace,
    )
    registry = ConsumerRegistry()
    coordinator = SyncCoordinator(
        store,
        registry=registry,
        max_retries=settings.max_retries,
        dead_letters=dead_letters if settings.dead_letter_enabled else None,
    )

    logger.info(
        f"Offline runtime ready (max_retries={settings.max_retries}, "
        f"dead_letters={'on' if settings.dead_letter_enabled else 'off'})"
    )
    return OfflineRuntime(
        settings=settings,
        storage=storage,
        connectivity=connectivity,
        store=store,
        dead_letters=dead_letters,
        snapshots=snapshots,
        registry=registry,
        coordinator=coordinator,
    )
