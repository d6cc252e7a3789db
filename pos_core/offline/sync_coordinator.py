# =============================================================================
# pos_core/offline/sync_coordinator.py
# Draining the Offline Queue Against Registered Consumers
# =============================================================================
"""
SyncCoordinator - runs sync passes over the durable mutation store.

One pass:
1. Snapshot the pending list (empty -> SyncOutcome(0, 0), no consumer calls)
2. Dispatch every record to its kind's consumer concurrently
3. Successes are removed from the store
4. Failures get attempts + 1; at max_retries the record leaves the queue
   and goes to the dead-letter store (or is dropped when that is disabled)
5. Report SyncOutcome(processed_count, failed_count)

Passes are serialised: a second trigger waits for the running pass and
then works on a fresh snapshot, so no record is dispatched twice at once.
Dispatch order within a pass is not guaranteed. Callers must not queue a
mutation that depends on another still-pending one.
"""

from __future__ import annotations
import asyncio
import inspect
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, Union
import logging

from pos_core.errors import ApplyError, MutationNotFoundError, UnregisteredConsumerError
from pos_core.offline.consumers import ConsumerRegistry, MutationConsumer, MutationKind
from pos_core.offline.mutation_store import DeadLetterStore, MutationRecord, MutationStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3


@dataclass(frozen=True)
class SyncOutcome:
    """Aggregate result of one sync pass."""
    processed_count: int = 0
    failed_count: int = 0
    dropped_ids: Tuple[str, ...] = ()
    errors: Dict[str, str] = field(default_factory=dict)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def succeeded(self) -> bool:
        return self.failed_count == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed_count,
            "failed": self.failed_count,
            "dropped": len(self.dropped_ids),
        }


@dataclass
class SyncState:
    """Current sync state."""
    is_syncing: bool = False
    last_sync: Optional[datetime] = None
    last_outcome: Optional[SyncOutcome] = None
    total_processed: int = 0
    total_failed: int = 0
    total_dropped: int = 0


@dataclass(frozen=True)
class _Attempt:
    record: MutationRecord
    succeeded: bool
    error: Optional[str] = None


class SyncCoordinator:
    """
    Orchestrates sync passes.

    Usage:
        coordinator = SyncCoordinator(store, dead_letters=dead_letters)
        coordinator.register_consumer(MutationKind.CREATE, gateway.create_order)
        outcome = await coordinator.run_sync_pass()
    """

    def __init__(
        self,
        store: MutationStore,
        registry: Optional[ConsumerRegistry] = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        dead_letters: Optional[DeadLetterStore] = None,
    ):
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")

        self._store = store
        self._registry = registry if registry is not None else ConsumerRegistry()
        self._dead_letters = dead_letters
        self.max_retries = max_retries

        self._pass_lock = asyncio.Lock()
        self._state = SyncState()
        self._callbacks: List[Callable[[SyncState], None]] = []
        self._outcome_listeners: List[Callable[[SyncOutcome], None]] = []

    @property
    def registry(self) -> ConsumerRegistry:
        return self._registry

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_syncing(self) -> bool:
        return self._state.is_syncing

    def register_consumer(
        self,
        kind: Union[str, MutationKind],
        consumer: MutationConsumer,
        replace: bool = False,
    ) -> None:
        """Bind the consumer that applies mutations of this kind."""
        self._registry.register(kind, consumer, replace=replace)

    # =========================================================================
    # SYNC PASS
    # =========================================================================

    async def run_sync_pass(self) -> SyncOutcome:
        """
        Drain the pending queue once.

        Raises:
            PersistenceError: if the store cannot be read or updated; per-record
                apply failures never raise
        """
        async with self._pass_lock:
            started_at = datetime.now()
            self._state.is_syncing = True
            self._state.last_sync = started_at
            self._notify_callbacks()

            try:
                outcome = await self._run_pass(started_at)
            except Exception:
                self._state.is_syncing = False
                self._notify_callbacks()
                raise

            self._state.is_syncing = False
            self._state.last_outcome = outcome
            self._state.total_processed += outcome.processed_count
            self._state.total_failed += outcome.failed_count
            self._state.total_dropped += len(outcome.dropped_ids)
            self._notify_callbacks()
            self._publish(outcome)
            return outcome

    async def _run_pass(self, started_at: datetime) -> SyncOutcome:
        pending = await self._store.list_pending()
        if not pending:
            return SyncOutcome(started_at=started_at, finished_at=datetime.now())

        logger.info(f"Syncing {len(pending)} queued mutations")
        attempts = await asyncio.gather(*(self._apply(record) for record in pending))

        processed = 0
        failed = 0
        dropped: List[str] = []
        errors: Dict[str, str] = {}

        for attempt in attempts:
            record = attempt.record
            if attempt.succeeded:
                await self._store.remove(record.id)
                processed += 1
                continue

            failed += 1
            errors[record.id] = attempt.error or "consumer reported failure"
            if await self._record_failure(record, errors[record.id]):
                dropped.append(record.id)

        logger.info(f"Sync complete: {processed} success, {failed} failed, {len(dropped)} dropped")
        return SyncOutcome(
            processed_count=processed,
            failed_count=failed,
            dropped_ids=tuple(dropped),
            errors=errors,
            started_at=started_at,
            finished_at=datetime.now(),
        )

    async def _apply(self, record: MutationRecord) -> _Attempt:
        """Run one consumer call, turning every failure into an _Attempt."""
        try:
            consumer = self._registry.resolve(record.kind)
        except UnregisteredConsumerError as e:
            logger.warning(f"Mutation {record.id}: {e.message}")
            return _Attempt(record, False, e.message)

        try:
            result = consumer(record.payload)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            error = ApplyError(str(e) or type(e).__name__, mutation_id=record.id, kind=record.kind)
            logger.warning(f"Mutation {record.id} ({record.kind}) failed: {error.message}")
            return _Attempt(record, False, error.message)

        if not result:
            logger.warning(f"Mutation {record.id} ({record.kind}) rejected by consumer")
            return _Attempt(record, False, "consumer reported failure")

        return _Attempt(record, True)

    async def _record_failure(self, record: MutationRecord, error: str) -> bool:
        """Count the failure; returns True if the record left the queue."""
        try:
            attempts = await self._store.increment_attempts(record.id)
        except MutationNotFoundError:
            # Cleared by a producer while the attempt was in flight
            logger.info(f"Mutation {record.id} vanished during sync, skipping")
            return False

        if attempts < self.max_retries:
            return False

        exhausted = await self._store.get(record.id)
        if self._dead_letters is not None and exhausted is not None:
            await self._dead_letters.add(exhausted, error)
        else:
            logger.warning(
                f"Dropping {record.kind} mutation {record.id} after {attempts} failed attempts"
            )
        await self._store.remove(record.id)
        return True

    # =========================================================================
    # OBSERVERS
    # =========================================================================

    def register_callback(self, callback: Callable[[SyncState], None]) -> None:
        """Register a callback for sync state changes (pass start and end)."""
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_callback(self, callback: Callable[[SyncState], None]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def add_outcome_listener(self, listener: Callable[[SyncOutcome], None]) -> None:
        """Register a listener receiving the aggregate of every pass."""
        if listener not in self._outcome_listeners:
            self._outcome_listeners.append(listener)

    def remove_outcome_listener(self, listener: Callable[[SyncOutcome], None]) -> None:
        if listener in self._outcome_listeners:
            self._outcome_listeners.remove(listener)

    def _notify_callbacks(self) -> None:
        for callback in list(self._callbacks):
            try:
                callback(self._state)
            except Exception as e:
                logger.error(f"Error in sync callback: {e}", exc_info=True)

    def _publish(self, outcome: SyncOutcome) -> None:
        for listener in list(self._outcome_listeners):
            try:
                listener(outcome)
            except Exception as e:
                logger.error(f"Error in sync outcome listener: {e}", exc_info=True)

    def get_status_display(self) -> Dict[str, Any]:
        """Get sync status for UI display."""
        last = self._state.last_outcome
        return {
            "is_syncing": self._state.is_syncing,
            "last_sync": self._state.last_sync.isoformat() if self._state.last_sync else None,
            "last_outcome": last.to_dict() if last else None,
            "pending_count": self._store.pending_count(),
            "total_processed": self._state.total_processed,
            "total_failed": self._state.total_failed,
            "total_dropped": self._state.total_dropped,
        }
