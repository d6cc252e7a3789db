# =============================================================================
# pos_core/offline/mutation_store.py
# Durable Store for Pending Mutations
# =============================================================================
"""
MutationStore - ordered, keyed, restart-surviving queue of pending mutations.

The whole record list lives in one JSON blob under a single storage key:

    [{"id": ..., "enqueued_at": ..., "kind": ..., "payload": ..., "attempts": 0}, ...]

Every mutating call rewrites that blob before returning, under one
asyncio lock, so an enqueue racing a remove cannot lose either update.
The in-memory view is loaded lazily on first access and only replaced
after a successful write. Storage and serialisation failures surface
as PersistenceError.

DeadLetterStore keeps records that exhausted their retry budget under a
second key, so they can be retried or discarded by hand.
"""

from __future__ import annotations
import asyncio
import copy
import json
import math
import sqlite3
import uuid
from dataclasses import dataclass, replace
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Generic, Iterable, List, Optional, TypeVar, Union
import logging

import numpy as np
import pandas as pd

from pos_core.errors import MutationNotFoundError, PersistenceError
from pos_core.offline.consumers import MutationKind, normalize_kind
from pos_core.offline.device_storage import DeviceStorage

logger = logging.getLogger(__name__)

STORAGE_ERRORS = (sqlite3.Error, OSError)

T = TypeVar("T")


def to_jsonable(value: Any) -> Any:
    """
    Coerce numpy/pandas/datetime values into plain JSON types.

    Unknown objects are returned untouched so json.dumps can reject them.
    """
    if value is None or value is pd.NaT or value is pd.NA:
        return None
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, np.ndarray):
        return [to_jsonable(v) for v in value.tolist()]
    if isinstance(value, Enum):
        return to_jsonable(value.value)
    if isinstance(value, (bool, np.bool_)):
        return bool(value)
    if isinstance(value, np.integer):
        return int(value)
    if isinstance(value, (float, np.floating, Decimal)):
        number = float(value)
        return None if math.isnan(number) else number
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


@dataclass(frozen=True)
class MutationRecord:
    """One pending state-changing intent."""
    id: str
    enqueued_at: datetime
    kind: str
    payload: Any
    attempts: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "enqueued_at": self.enqueued_at.isoformat(),
            "kind": self.kind,
            "payload": self.payload,
            "attempts": self.attempts,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> MutationRecord:
        return cls(
            id=str(data["id"]),
            enqueued_at=datetime.fromisoformat(data["enqueued_at"]),
            kind=str(data["kind"]),
            payload=data.get("payload"),
            attempts=int(data.get("attempts", 0)),
        )


@dataclass(frozen=True)
class DeadLetter:
    """A record set aside after exhausting its retry budget."""
    record: MutationRecord
    dead_lettered_at: datetime
    last_error: Optional[str] = None

    @property
    def id(self) -> str:
        return self.record.id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record": self.record.to_dict(),
            "dead_lettered_at": self.dead_lettered_at.isoformat(),
            "last_error": self.last_error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> DeadLetter:
        return cls(
            record=MutationRecord.from_dict(data["record"]),
            dead_lettered_at=datetime.fromisoformat(data["dead_lettered_at"]),
            last_error=data.get("last_error"),
        )


class _PersistedList(Generic[T]):
    """Lazily loaded list mirrored to one storage blob."""

    def __init__(self, storage: DeviceStorage, key: str):
        self._storage = storage
        self._key = key
        self._items: Optional[List[T]] = None
        self._lock = asyncio.Lock()

    @property
    def key(self) -> str:
        return self._key

    def _decode_item(self, data: Dict[str, Any]) -> T:
        raise NotImplementedError

    def _encode_item(self, item: T) -> Dict[str, Any]:
        raise NotImplementedError

    def _item_id(self, item: T) -> str:
        raise NotImplementedError

    def _read(self) -> List[T]:
        """Blocking read + decode of the persisted blob."""
        try:
            blob = self._storage.get(self._key)
        except STORAGE_ERRORS as e:
            raise PersistenceError(
                f"Failed to read '{self._key}' from device storage: {e}",
                key=self._key,
                operation="read",
            ) from e

        if not blob:
            return []

        try:
            raw = json.loads(blob)
            if not isinstance(raw, list):
                raise ValueError(f"expected a JSON list, got {type(raw).__name__}")
            return [self._decode_item(entry) for entry in raw]
        except (ValueError, KeyError, TypeError) as e:
            raise PersistenceError(
                f"Persisted blob '{self._key}' is corrupt: {e}",
                key=self._key,
                operation="decode",
                recoverable=False,
            ) from e

    async def _ensure_loaded(self) -> List[T]:
        if self._items is None:
            items = await asyncio.to_thread(self._read)
            if self._items is None:
                self._items = items
                logger.debug(f"Loaded {len(items)} entries from '{self._key}'")
        return self._items

    def _ensure_loaded_sync(self) -> List[T]:
        if self._items is None:
            items = self._read()
            # A write on the runtime loop may have landed during the read
            if self._items is None:
                self._items = items
        return self._items

    async def _persist(self, items: List[T], operation: str) -> None:
        """Write the full list, then swap it in as the in-memory view."""
        try:
            blob = json.dumps(
                [self._encode_item(item) for item in items],
                allow_nan=False,
            )
        except (TypeError, ValueError) as e:
            raise PersistenceError(
                f"Failed to serialize '{self._key}' during {operation}: {e}",
                key=self._key,
                operation=operation,
            ) from e

        try:
            await asyncio.to_thread(self._storage.set, self._key, blob)
        except STORAGE_ERRORS as e:
            raise PersistenceError(
                f"Failed to write '{self._key}' during {operation}: {e}",
                key=self._key,
                operation=operation,
            ) from e

        self._items = items

    def _index_of(self, items: List[T], item_id: str) -> int:
        for index, item in enumerate(items):
            if self._item_id(item) == item_id:
                return index
        return -1


class MutationStore(_PersistedList[MutationRecord]):
    """
    Durable queue of pending mutations.

    Usage:
        store = MutationStore(storage)
        mutation_id = await store.enqueue("create", {"table": "T12", "items": [...]})
        pending = await store.list_pending()
    """

    DEFAULT_KEY = "offline_request_queue"

    def __init__(self, storage: DeviceStorage, key: str = DEFAULT_KEY):
        super().__init__(storage, key)

    def _decode_item(self, data: Dict[str, Any]) -> MutationRecord:
        return MutationRecord.from_dict(data)

    def _encode_item(self, item: MutationRecord) -> Dict[str, Any]:
        return item.to_dict()

    def _item_id(self, item: MutationRecord) -> str:
        return item.id

    async def enqueue(self, kind: Union[str, MutationKind], payload: Any) -> str:
        """
        Persist a new mutation and return its id.

        Raises:
            PersistenceError: if the record could not be written; nothing
                is queued in that case.
        """
        record = MutationRecord(
            id=uuid.uuid4().hex,
            enqueued_at=datetime.now(),
            kind=normalize_kind(kind),
            payload=to_jsonable(payload),
            attempts=0,
        )

        async with self._lock:
            records = await self._ensure_loaded()
            await self._persist([*records, record], operation="enqueue")

        logger.info(f"Queued {record.kind} mutation {record.id}")
        return record.id

    async def requeue(self, record: MutationRecord) -> str:
        """Put an existing record back at the tail with attempts reset."""
        async with self._lock:
            records = await self._ensure_loaded()
            if self._index_of(records, record.id) >= 0:
                raise PersistenceError(
                    f"Mutation {record.id} is already queued",
                    key=self._key,
                    operation="requeue",
                )
            await self._persist([*records, replace(record, attempts=0)], operation="requeue")

        logger.info(f"Requeued {record.kind} mutation {record.id}")
        return record.id

    async def list_pending(self) -> List[MutationRecord]:
        """Pending records in enqueue order. Payloads are copies."""
        async with self._lock:
            records = await self._ensure_loaded()
            return [replace(r, payload=copy.deepcopy(r.payload)) for r in records]

    async def get(self, mutation_id: str) -> Optional[MutationRecord]:
        async with self._lock:
            records = await self._ensure_loaded()
            index = self._index_of(records, mutation_id)
            return records[index] if index >= 0 else None

    async def remove(self, mutation_id: str) -> bool:
        """Remove a record. Returns False if it was not queued."""
        async with self._lock:
            records = await self._ensure_loaded()
            index = self._index_of(records, mutation_id)
            if index < 0:
                return False
            await self._persist(records[:index] + records[index + 1:], operation="remove")
        return True

    async def increment_attempts(self, mutation_id: str) -> int:
        """
        Record one more failed apply attempt.

        Returns:
            The new attempt count

        Raises:
            MutationNotFoundError: if the record is not queued
        """
        async with self._lock:
            records = await self._ensure_loaded()
            index = self._index_of(records, mutation_id)
            if index < 0:
                raise MutationNotFoundError(mutation_id)

            updated = replace(records[index], attempts=records[index].attempts + 1)
            new_records = list(records)
            new_records[index] = updated
            await self._persist(new_records, operation="increment_attempts")
        return updated.attempts

    async def clear(self) -> None:
        """Drop every pending record."""
        async with self._lock:
            try:
                await asyncio.to_thread(self._storage.delete, self._key)
            except STORAGE_ERRORS as e:
                raise PersistenceError(
                    f"Failed to clear '{self._key}': {e}",
                    key=self._key,
                    operation="clear",
                ) from e
            self._items = []
        logger.info("Cleared offline mutation queue")

    def pending_count(self) -> int:
        """Queue length for UI polling."""
        return len(self._ensure_loaded_sync())


class DeadLetterStore(_PersistedList[DeadLetter]):
    """Durable list of mutations that exhausted their retries."""

    DEFAULT_KEY = "offline_dead_letters"

    def __init__(self, storage: DeviceStorage, key: str = DEFAULT_KEY):
        super().__init__(storage, key)

    def _decode_item(self, data: Dict[str, Any]) -> DeadLetter:
        return DeadLetter.from_dict(data)

    def _encode_item(self, item: DeadLetter) -> Dict[str, Any]:
        return item.to_dict()

    def _item_id(self, item: DeadLetter) -> str:
        return item.id

    async def add(self, record: MutationRecord, error: Optional[str] = None) -> DeadLetter:
        letter = DeadLetter(
            record=record,
            dead_lettered_at=datetime.now(),
            last_error=error,
        )
        async with self._lock:
            letters = await self._ensure_loaded()
            kept = [item for item in letters if item.id != record.id]
            await self._persist([*kept, letter], operation="dead_letter")

        logger.warning(
            f"Dead-lettered {record.kind} mutation {record.id} "
            f"after {record.attempts} attempts: {error}"
        )
        return letter

    async def list(self) -> List[DeadLetter]:
        async with self._lock:
            return list(await self._ensure_loaded())

    async def get(self, mutation_id: str) -> Optional[DeadLetter]:
        async with self._lock:
            letters = await self._ensure_loaded()
            index = self._index_of(letters, mutation_id)
            return letters[index] if index >= 0 else None

    async def discard(self, mutation_id: str) -> bool:
        async with self._lock:
            letters = await self._ensure_loaded()
            index = self._index_of(letters, mutation_id)
            if index < 0:
                return False
            await self._persist(letters[:index] + letters[index + 1:], operation="discard")

        logger.info(f"Discarded dead-lettered mutation {mutation_id}")
        return True

    async def retry(self, mutation_id: str, store: MutationStore) -> str:
        """
        Move a dead letter back into the pending store with attempts reset.

        The record is requeued before it is removed here, so a failure in
        between leaves a duplicate rather than losing the mutation.
        """
        letter = await self.get(mutation_id)
        if letter is None:
            raise MutationNotFoundError(mutation_id)

        await store.requeue(letter.record)
        await self.discard(mutation_id)
        return mutation_id

    async def clear(self) -> None:
        async with self._lock:
            await self._persist([], operation="clear")

    def count(self) -> int:
        return len(self._ensure_loaded_sync())


def records_to_dataframe(items: Iterable[Union[MutationRecord, DeadLetter]]) -> pd.DataFrame:
    """Tabulate pending records or dead letters for display."""
    rows = []
    for item in items:
        record = item.record if isinstance(item, DeadLetter) else item
        row = {
            "id": record.id,
            "kind": record.kind,
            "enqueued_at": record.enqueued_at,
            "attempts": record.attempts,
            "payload": json.dumps(record.payload, default=str),
        }
        if isinstance(item, DeadLetter):
            row["dead_lettered_at"] = item.dead_lettered_at
            row["last_error"] = item.last_error
        rows.append(row)

    columns = ["id", "kind", "enqueued_at", "attempts", "payload"]
    if any("dead_lettered_at" in row for row in rows):
        columns += ["dead_lettered_at", "last_error"]
    return pd.DataFrame(rows, columns=columns)
