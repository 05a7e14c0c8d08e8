"""Persisted queue of mutations waiting to be replayed remotely."""

from __future__ import annotations

import json
import logging
from typing import Any

from src.store.base import LocalStore
from src.sync.models import OperationKind, PendingOperation, RecordType

logger = logging.getLogger(__name__)

PENDING_KEY = "pendingSync"


class PendingQueue:
    """FIFO queue of PendingOperations, mirrored into a LocalStore key.

    Every change rewrites the whole persisted value, so the stored queue
    always matches what is in memory.
    """

    def __init__(self, store: LocalStore, key: str = PENDING_KEY) -> None:
        self.store = store
        self.key = key
        self._operations: list[PendingOperation] = []

    def __len__(self) -> int:
        return len(self._operations)

    async def load(self) -> None:
        """Load the queue from the store, skipping unreadable entries."""
        raw = await self.store.get(self.key)
        operations: list[PendingOperation] = []
        if raw:
            try:
                entries = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning("Pending queue in local store is corrupt, starting empty")
                entries = []
            for entry in entries if isinstance(entries, list) else []:
                try:
                    operations.append(PendingOperation.from_dict(entry))
                except (KeyError, TypeError, ValueError) as e:
                    logger.warning(f"Dropping unreadable pending operation: {e}")
        self._operations = operations

    async def _persist(self) -> None:
        await self.store.set(
            self.key, json.dumps([op.to_dict() for op in self._operations])
        )

    def all(self) -> list[PendingOperation]:
        return list(self._operations)

    def for_type(self, record_type: RecordType) -> list[PendingOperation]:
        """Operations for one record type in replay order."""
        return sorted(
            (op for op in self._operations if op.record_type == record_type),
            key=lambda op: op.enqueued_at,
        )

    def counts(self) -> dict[str, int]:
        return {
            record_type.value: len(self.for_type(record_type))
            for record_type in RecordType
        }

    def find_create(
        self, record_type: RecordType, local_id: str
    ) -> PendingOperation | None:
        for op in self._operations:
            if (
                op.kind == OperationKind.CREATE
                and op.record_type == record_type
                and op.local_id == local_id
            ):
                return op
        return None

    def pending_create_ids(self, record_type: RecordType) -> set[str]:
        return {
            op.local_id
            for op in self._operations
            if op.kind == OperationKind.CREATE and op.record_type == record_type
        }

    async def enqueue(self, operation: PendingOperation) -> None:
        self._operations.append(operation)
        await self._persist()
        logger.info(
            f"Queued {operation.kind.value} for {operation.record_type.value} "
            f"{operation.local_id} ({len(self._operations)} pending)"
        )

    async def remove(self, op_id: str) -> bool:
        """Remove exactly one operation. Returns False if it was not queued."""
        for index, op in enumerate(self._operations):
            if op.op_id == op_id:
                del self._operations[index]
                await self._persist()
                return True
        return False

    async def fold_into_create(
        self, record_type: RecordType, local_id: str, fields: dict[str, Any]
    ) -> bool:
        """Merge fields into the still-pending create for a record.

        Returns:
            True if a pending create was found and updated.
        """
        operation = self.find_create(record_type, local_id)
        if operation is None:
            return False
        operation.payload = {**operation.payload, **fields}
        await self._persist()
        return True

    async def drop_for_record(self, record_type: RecordType, local_id: str) -> int:
        """Remove every queued operation for a record; returns how many."""
        kept = [
            op
            for op in self._operations
            if not (op.record_type == record_type and op.local_id == local_id)
        ]
        removed = len(self._operations) - len(kept)
        if removed:
            self._operations = kept
            await self._persist()
        return removed
