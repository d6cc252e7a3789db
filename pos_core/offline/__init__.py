# =============================================================================
# pos_core/offline/__init__.py
# Offline Mutation Queue and Synchronization
# =============================================================================
"""
Offline-tolerant order taking for the POS client.

While the remote authority is unreachable, state-changing actions are
queued durably on the device and replayed once a sync pass is triggered.
Read data (menu, open orders) is served from a time-bounded snapshot cache.

Architecture:
------------
    Producer (OrderService)
        │ enqueue(kind, payload)
        ▼
    MutationStore ──(exhausted)──► DeadLetterStore
        │ list_pending / remove / increment_attempts
        ▼
    SyncCoordinator ── resolve(kind) ──► ConsumerRegistry ──► consumer ──► Supabase
        │
        ▼
    SyncOutcome ──► observers (offline indicator)

    ConnectionManager: reachability flag + reconnect notifications
    SnapshotCache:     last known-good reads, 24h TTL
    DeviceStorage:     SQLite key/value blobs shared by both stores

Usage:
------
from pos_core.offline import build_offline_runtime, MutationKind

runtime = build_offline_runtime()
runtime.coordinator.register_consumer(MutationKind.CREATE, create_order)
await runtime.enqueue(MutationKind.CREATE, {"table_number": "T12", "cart": [...]})
outcome = await runtime.sync()
"""

from pos_core.offline.device_storage import (
    DeviceStorage,
    MemoryDeviceStorage,
    SQLiteDeviceStorage,
)

from pos_core.offline.connection_manager import (
    ConnectionManager,
    ConnectionState,
    ConnectionStatus,
    tcp_probe,
)

from pos_core.offline.consumers import (
    ConsumerRegistry,
    MutationConsumer,
    MutationKind,
    normalize_kind,
)

from pos_core.offline.mutation_store import (
    DeadLetter,
    DeadLetterStore,
    MutationRecord,
    MutationStore,
    records_to_dataframe,
    to_jsonable,
)

from pos_core.offline.snapshot_cache import (
    SnapshotCache,
    SnapshotEntry,
    read_through,
)

from pos_core.offline.sync_coordinator import (
    SyncCoordinator,
    SyncOutcome,
    SyncState,
)

from pos_core.offline.runtime import (
    OfflineRuntime,
    build_offline_runtime,
)

__all__ = [
    # Device storage
    "DeviceStorage",
    "MemoryDeviceStorage",
    "SQLiteDeviceStorage",
    # Connectivity
    "ConnectionManager",
    "ConnectionState",
    "ConnectionStatus",
    "tcp_probe",
    # Producer/consumer contract
    "ConsumerRegistry",
    "MutationConsumer",
    "MutationKind",
    "normalize_kind",
    # Durable queue
    "DeadLetter",
    "DeadLetterStore",
    "MutationRecord",
    "MutationStore",
    "records_to_dataframe",
    "to_jsonable",
    # Snapshot cache
    "SnapshotCache",
    "SnapshotEntry",
    "read_through",
    # Sync
    "SyncCoordinator",
    "SyncOutcome",
    "SyncState",
    # Composition
    "OfflineRuntime",
    "build_offline_runtime",
]
