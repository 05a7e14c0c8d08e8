"""In-memory record sets mirrored into the local store."""

from __future__ import annotations

import json
import logging

from src.store.base import LocalStore
from src.sync.models import Record, RecordType

logger = logging.getLogger(__name__)


class RecordCache:
    """Canonical per-type record sets with write-through to a LocalStore.

    Insertion order is preserved, so listings come back in creation order.
    """

    def __init__(self, store: LocalStore) -> None:
        self.store = store
        self._records: dict[RecordType, dict[str, Record]] = {
            record_type: {} for record_type in RecordType
        }

    async def load(self) -> None:
        """Load every record type's cached set from the store."""
        for record_type in RecordType:
            self._records[record_type] = await self._load_type(record_type)

    async def _load_type(self, record_type: RecordType) -> dict[str, Record]:
        raw = await self.store.get(record_type.cache_key)
        records: dict[str, Record] = {}
        if not raw:
            return records
        try:
            entries = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"{record_type.cache_key} in local store is corrupt, ignoring")
            return records
        for entry in entries if isinstance(entries, list) else []:
            try:
                record = Record.from_dict(entry)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Dropping unreadable cached {record_type.value}: {e}")
                continue
            records[record.id] = record
        return records

    async def persist(self, record_type: RecordType) -> None:
        """Write one record type's full set to the store."""
        await self.store.set(
            record_type.cache_key,
            json.dumps([record.to_dict() for record in self._records[record_type].values()]),
        )

    def list(self, record_type: RecordType) -> list[Record]:
        return list(self._records[record_type].values())

    def get(self, record_type: RecordType, record_id: str) -> Record | None:
        records = self._records[record_type]
        record = records.get(record_id)
        if record is not None:
            return record
        # Records fetched from the server are keyed by server id, but callers
        # may still hold a remote id for a record created on this client.
        for candidate in records.values():
            if candidate.remote_id == record_id:
                return candidate
        return None

    async def put(self, record: Record) -> None:
        self._records[record.record_type][record.id] = record
        await self.persist(record.record_type)

    async def discard(self, record_type: RecordType, record_id: str) -> Record | None:
        record = self._records[record_type].pop(record_id, None)
        if record is not None:
            await self.persist(record_type)
        return record

    async def replace(self, record_type: RecordType, records: list[Record]) -> None:
        """Replace a record type's whole set (used after a remote refresh)."""
        self._records[record_type] = {record.id: record for record in records}
        await self.persist(record_type)
