"""Local-first sync engine.

SyncEngine is the single authority for reading and writing records. Every
mutation lands in memory and in the local store first; the remote API is
then tried, and writes that cannot reach it are queued and replayed once
connectivity returns.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import string
import time
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypeVar

from src.store.fallback import FallbackStore
from src.sync import events
from src.sync.cache import RecordCache
from src.sync.duplicates import compute_fingerprint, find_duplicate
from src.sync.errors import NetworkError, NotFoundError, StorageError, ValidationError
from src.sync.events import EventBus
from src.sync.models import (
    ConnectivityState,
    OperationKind,
    PendingOperation,
    Record,
    RecordType,
    ReplaySummary,
    generate_local_id,
    utcnow,
)
from src.sync.queue import PendingQueue

if TYPE_CHECKING:
    from src.api.client import RemoteAPI
    from src.store.base import LocalStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

USER_ID_KEY = "userId"
LAST_SYNC_KEY = "lastSync"


def generate_guest_id() -> str:
    """Guest user id in the form guest_<millis>_<9 random chars>."""
    alphabet = string.digits + string.ascii_lowercase
    suffix = "".join(secrets.choice(alphabet) for _ in range(9))
    return f"guest_{int(time.time() * 1000)}_{suffix}"


def _remote_id_of(data: dict[str, Any]) -> str | None:
    remote_id = data.get("_id", data.get("id"))
    return str(remote_id) if remote_id is not None else None


@dataclass(eq=False)
class _RefreshWatch:
    """Local changes made while a refresh of one record type is in flight."""

    touched: set[str] = field(default_factory=set)  # local ids
    deleted: set[str] = field(default_factory=set)  # remote ids


class SyncEngine:
    """Mediates every create/update/delete between memory, LocalStore and RemoteAPI.

    Args:
        api: Remote API client.
        store: Durable local key-value store.
        event_bus: Bus used for change/replay/connectivity notifications.
    """

    def __init__(
        self,
        api: RemoteAPI,
        store: LocalStore,
        event_bus: EventBus | None = None,
    ) -> None:
        self.api = api
        self.events = event_bus or EventBus()
        self.store = FallbackStore(store, on_failure=self._on_storage_failure)
        self.cache = RecordCache(self.store)
        self.queue = PendingQueue(self.store)
        self.state = ConnectivityState.UNKNOWN
        self.last_replay: ReplaySummary | None = None

        self._listed: set[RecordType] = set()
        self._in_flight: set[tuple[RecordType, str]] = set()
        self._replay_locks = {record_type: asyncio.Lock() for record_type in RecordType}
        self._tasks: set[asyncio.Task] = set()
        self._refresh_watches: dict[RecordType, list[_RefreshWatch]] = {
            record_type: [] for record_type in RecordType
        }

    # Lifecycle

    async def initialize(self) -> None:
        """Load cached state, then check connectivity and replay the queue.

        Cached records are announced with a ``loaded`` change event before any
        network I/O, so subscribers can render immediately. An unreachable
        backend only leaves the engine offline; it never raises.
        """
        await self.store.initialize()
        await self.cache.load()
        await self.queue.load()
        self._listed.clear()
        await self._resolve_user_id()

        for record_type in RecordType:
            self.events.publish(
                events.CHANGE,
                {
                    "record_type": record_type.value,
                    "action": "loaded",
                    "records": [r.to_dict() for r in self.cache.list(record_type)],
                },
            )
        logger.info(
            f"Loaded {sum(len(self.cache.list(rt)) for rt in RecordType)} cached records "
            f"and {len(self.queue)} pending operations"
        )

        await self.check_health()

    async def _resolve_user_id(self) -> None:
        if getattr(self.api, "user_id", None):
            return
        user_id = await self.store.get(USER_ID_KEY)
        if not user_id:
            user_id = generate_guest_id()
            await self.store.set(USER_ID_KEY, user_id)
        self.api.user_id = user_id

    async def close(self) -> None:
        """Cancel background work and release the API client and store."""
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        await self.api.close()
        await self.store.close()

    async def wait_idle(self) -> None:
        """Wait until every background task started by the engine finishes."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # Connectivity

    def _set_state(self, state: ConnectivityState) -> ConnectivityState:
        previous = self.state
        if previous != state:
            self.state = state
            logger.info(f"Connectivity {previous.value} -> {state.value}")
            self.events.publish(
                events.CONNECTIVITY,
                {"state": state.value, "previous": previous.value},
            )
        return previous

    async def check_health(self) -> bool:
        """Check the backend; coming online triggers a replay of the queue."""
        try:
            await self.api.check_health()
        except (NetworkError, ValidationError) as e:
            logger.warning(f"Health check failed: {e}")
            self._set_state(ConnectivityState.OFFLINE)
            return False

        previous = self._set_state(ConnectivityState.ONLINE)
        if previous != ConnectivityState.ONLINE and len(self.queue):
            await self.replay_pending()
        return True

    async def handle_online(self) -> ReplaySummary | None:
        """Network-available event: go online and replay pending work."""
        previous = self._set_state(ConnectivityState.ONLINE)
        if previous == ConnectivityState.ONLINE:
            return None
        self._notify("info", "Back online, syncing pending changes")
        return await self.replay_pending()

    def handle_offline(self) -> None:
        """Network-lost event."""
        if self._set_state(ConnectivityState.OFFLINE) != ConnectivityState.OFFLINE:
            self._notify("info", "You are offline. Changes will sync when you reconnect.")

    async def _call_remote(self, call: Callable[[], Awaitable[T]]) -> T:
        """Run one API call and update connectivity from its outcome."""
        try:
            result = await call()
        except NetworkError:
            self._set_state(ConnectivityState.OFFLINE)
            raise
        except ValidationError:
            # A rejection still proves the backend is reachable.
            self._set_state(ConnectivityState.ONLINE)
            raise
        previous = self._set_state(ConnectivityState.ONLINE)
        if previous == ConnectivityState.OFFLINE and len(self.queue):
            self._spawn(self.replay_pending())
        return result

    # Notifications

    def _notify(self, level: str, message: str) -> None:
        self.events.publish(events.NOTIFICATION, {"level": level, "message": message})

    def _emit_change(self, record: Record, action: str) -> None:
        self.events.publish(
            events.CHANGE,
            {
                "record_type": record.record_type.value,
                "action": action,
                "record": record.to_dict(),
            },
        )

    def _on_storage_failure(self, error: StorageError) -> None:
        self._notify(
            "warning",
            f"Local storage is unavailable ({error}). Changes are kept in memory "
            "for this session only.",
        )

    def _note_touched(self, record_type: RecordType, local_id: str) -> None:
        for watch in self._refresh_watches[record_type]:
            watch.touched.add(local_id)

    def _note_deleted(
        self, record_type: RecordType, local_id: str, remote_id: str | None
    ) -> None:
        for watch in self._refresh_watches[record_type]:
            watch.touched.discard(local_id)
            if remote_id:
                watch.deleted.add(remote_id)

    # Reads

    def list(self, record_type: RecordType | str) -> list[Record]:
        """Return the in-memory records of one type.

        The first call per type while online also starts a background
        refresh from the remote API.
        """
        record_type = RecordType(record_type)
        if self.state == ConnectivityState.ONLINE and record_type not in self._listed:
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                pass
            else:
                self._listed.add(record_type)
                self._spawn(self._background_refresh(record_type))
        return self.cache.list(record_type)

    def get(self, record_type: RecordType | str, record_id: str) -> Record:
        record_type = RecordType(record_type)
        record = self.cache.get(record_type, record_id)
        if record is None:
            raise NotFoundError(record_type.value, record_id)
        return record

    def pending(self) -> list[PendingOperation]:
        return self.queue.all()

    def find_duplicate(self, fields: dict[str, Any]) -> Record | None:
        """Find an existing application that ``fields`` would duplicate."""
        return find_duplicate(fields, self.cache.list(RecordType.APPLICATION))

    async def _background_refresh(self, record_type: RecordType) -> None:
        try:
            await self.refresh(record_type)
        except (NetworkError, ValidationError) as e:
            logger.warning(f"Background refresh of {record_type.value}s failed: {e}")
            self._listed.discard(record_type)

    async def refresh(self, record_type: RecordType | str) -> list[Record]:
        """Replace the cached set with the server's, keeping unsynced local work.

        Records that only exist as pending creates are unioned back in, records
        with a queued update keep their local version, and records with a
        queued delete stay removed. Changes made locally while the fetch was
        in flight win over the server snapshot the same way.
        """
        record_type = RecordType(record_type)
        watch = _RefreshWatch()
        self._refresh_watches[record_type].append(watch)
        try:
            payloads = await self._call_remote(lambda: self.api.list_records(record_type))
        finally:
            self._refresh_watches[record_type].remove(watch)

        existing = {r.remote_id: r for r in self.cache.list(record_type) if r.remote_id}
        pending_ops = self.queue.for_type(record_type)
        kept_ids = watch.touched | {
            op.local_id for op in pending_ops if op.kind == OperationKind.UPDATE
        }
        deleted_remote_ids = watch.deleted | {
            op.remote_id for op in pending_ops if op.kind == OperationKind.DELETE
        }

        merged: dict[str, Record] = {}
        for payload in payloads:
            try:
                remote = Record.from_remote(record_type, payload)
            except ValueError as e:
                logger.warning(f"Skipping server {record_type.value}: {e}")
                continue
            if remote.remote_id in deleted_remote_ids:
                continue
            local = existing.get(remote.remote_id)
            if local is not None:
                if local.id in kept_ids:
                    merged[local.id] = local
                    continue
                remote.id = local.id
                remote.created_at = local.created_at
            merged[remote.id] = remote

        unsynced = self.queue.pending_create_ids(record_type) | {
            local_id for rt, local_id in self._in_flight if rt == record_type
        }
        for record in self.cache.list(record_type):
            if record.id in watch.touched or (
                record.remote_id is None and record.id in unsynced
            ):
                merged.setdefault(record.id, record)

        records = list(merged.values())
        await self.cache.replace(record_type, records)
        self.events.publish(
            events.CHANGE,
            {
                "record_type": record_type.value,
                "action": "refreshed",
                "records": [r.to_dict() for r in records],
            },
        )
        logger.info(f"Refreshed {len(records)} {record_type.value}s from server")
        return records

    # Writes

    async def create(
        self,
        record_type: RecordType | str,
        fields: dict[str, Any],
        *,
        background: bool = False,
    ) -> Record:
        """Create a record locally, then try to create it remotely.

        Args:
            record_type: Collection for the new record.
            fields: Domain attributes.
            background: Return the local record immediately and report the
                remote outcome through events only.

        Returns:
            The record; ``remote_id`` is set when the remote create succeeded.

        Raises:
            ValidationError: The server rejected the record (not in background
                mode). The record is removed locally before raising.
        """
        record_type = RecordType(record_type)
        now = utcnow()
        record = Record(
            id=generate_local_id(),
            record_type=record_type,
            fields={k: v for k, v in fields.items() if k not in {"id", "_id"}},
            created_at=now,
            updated_at=now,
        )
        await self.cache.put(record)
        self._note_touched(record_type, record.id)
        self._emit_change(record, "created")

        if background:
            self._spawn(self._create_in_background(record))
            return record
        return await self._push_create(record)

    async def _create_in_background(self, record: Record) -> None:
        try:
            await self._push_create(record)
        except ValidationError as e:
            self.events.publish(
                events.SYNC_REJECTED,
                {
                    "record_type": record.record_type.value,
                    "record": record.to_dict(),
                    "error": str(e),
                },
            )

    async def _push_create(self, record: Record) -> Record:
        record_type = record.record_type
        if self.state == ConnectivityState.OFFLINE:
            await self._enqueue_create(record)
            return record

        key = (record_type, record.id)
        sent = record.to_remote_payload()
        self._in_flight.add(key)
        try:
            data = await self._call_remote(lambda: self.api.create_record(record_type, sent))
        except NetworkError as e:
            logger.info(f"Saving {record_type.value} {record.id} locally: {e}")
            if self.cache.get(record_type, record.id) is not None:
                await self._enqueue_create(record)
            return record
        except ValidationError as e:
            await self._reject(record, e)
            raise
        finally:
            self._in_flight.discard(key)

        remote_id = _remote_id_of(data)
        if remote_id is None:
            logger.warning(f"Server response for {record_type.value} has no id, queueing")
            await self._enqueue_create(record)
            return record

        await self._after_remote_create(record, remote_id, sent)
        return record

    async def _after_remote_create(
        self, record: Record, remote_id: str, sent: dict[str, Any]
    ) -> None:
        """Attach the server id, then catch up with local changes made meanwhile."""
        record.remote_id = remote_id
        try:
            if self.cache.get(record.record_type, record.id) is None:
                # Deleted locally while the create was in flight.
                self._note_deleted(record.record_type, record.id, remote_id)
                await self._push_delete(record)
                return

            await self.cache.persist(record.record_type)
            self._note_touched(record.record_type, record.id)
            self._emit_change(record, "synced")
            logger.info(f"Synced {record.record_type.value} {record.id} as {remote_id}")

            current = record.to_remote_payload()
            if current != sent:
                await self._push_update(record, current)
        except ValidationError as e:
            # The create itself succeeded; only the catch-up call was refused.
            logger.error(f"Follow-up sync for {record.record_type.value} {record.id} failed: {e}")

    async def _enqueue_create(self, record: Record) -> None:
        if self.queue.find_create(record.record_type, record.id) is not None:
            return
        await self.queue.enqueue(
            PendingOperation(
                kind=OperationKind.CREATE,
                record_type=record.record_type,
                local_id=record.id,
                payload=record.to_remote_payload(),
            )
        )
        self._notify("info", f"{record.record_type.value.title()} saved locally, will sync later")

    async def _reject(self, record: Record, error: ValidationError) -> None:
        """Roll a rejected create back out of memory and the local store."""
        await self.cache.discard(record.record_type, record.id)
        await self.queue.drop_for_record(record.record_type, record.id)
        self._emit_change(record, "removed")
        self._notify("error", f"{record.record_type.value.title()} rejected: {error}")

    async def update(
        self,
        record_type: RecordType | str,
        record_id: str,
        fields: dict[str, Any],
    ) -> Record:
        """Merge fields into a record locally, then push them remotely.

        Raises:
            NotFoundError: The id is unknown.
            ValidationError: The server rejected the change (the local edit
                is kept; nothing is queued).
        """
        record_type = RecordType(record_type)
        record = self.get(record_type, record_id)
        changes = {k: v for k, v in fields.items() if k not in {"id", "_id"}}
        record.fields = {**record.fields, **changes}
        record.updated_at = utcnow()
        await self.cache.persist(record_type)
        self._note_touched(record_type, record.id)
        self._emit_change(record, "updated")

        if record.remote_id is None:
            if await self.queue.fold_into_create(record_type, record.id, changes):
                return record
            if (record_type, record.id) in self._in_flight:
                # Caught up once the in-flight create returns.
                return record
            await self._enqueue_create(record)
            return record

        await self._push_update(record, changes)
        return record

    async def _push_update(self, record: Record, changes: dict[str, Any]) -> None:
        record_type = record.record_type
        has_pending = any(op.local_id == record.id for op in self.queue.for_type(record_type))
        if self.state == ConnectivityState.OFFLINE or has_pending:
            await self._enqueue_update(record)
            return
        try:
            await self._call_remote(
                lambda: self.api.update_record(record_type, record.remote_id, changes)
            )
        except NetworkError as e:
            logger.info(f"Saving {record_type.value} {record.id} update locally: {e}")
            await self._enqueue_update(record)
        except ValidationError as e:
            self._notify("error", f"{record_type.value.title()} update rejected: {e}")
            raise

    async def _enqueue_update(self, record: Record) -> None:
        await self.queue.enqueue(
            PendingOperation(
                kind=OperationKind.UPDATE,
                record_type=record.record_type,
                local_id=record.id,
                payload=record.to_remote_payload(),
                remote_id=record.remote_id,
            )
        )
        self._notify("info", f"{record.record_type.value.title()} update saved locally")

    async def delete(self, record_type: RecordType | str, record_id: str) -> None:
        """Remove a record locally, then remotely if it was ever synced.

        Raises:
            NotFoundError: The id is unknown.
            ValidationError: The server refused the delete; the record is
                restored locally.
        """
        record_type = RecordType(record_type)
        record = self.get(record_type, record_id)
        await self.cache.discard(record_type, record.id)
        self._note_deleted(record_type, record.id, record.remote_id)
        self._emit_change(record, "removed")

        dropped = await self.queue.drop_for_record(record_type, record.id)
        if record.remote_id is None:
            if dropped:
                logger.info(f"Dropped {dropped} pending operation(s) for {record.id}")
            return

        try:
            await self._push_delete(record)
        except ValidationError:
            await self.cache.put(record)
            self._note_touched(record_type, record.id)
            self._emit_change(record, "restored")
            raise

    async def _push_delete(self, record: Record) -> None:
        record_type = record.record_type
        if self.state == ConnectivityState.OFFLINE:
            await self._enqueue_delete(record)
            return
        try:
            await self._call_remote(
                lambda: self.api.delete_record(record_type, record.remote_id)
            )
        except NetworkError as e:
            logger.info(f"Saving {record_type.value} {record.id} delete locally: {e}")
            await self._enqueue_delete(record)
        except ValidationError as e:
            if e.status_code == 404:
                return
            self._notify("error", f"{record_type.value.title()} delete rejected: {e}")
            raise

    async def _enqueue_delete(self, record: Record) -> None:
        await self.queue.enqueue(
            PendingOperation(
                kind=OperationKind.DELETE,
                record_type=record.record_type,
                local_id=record.id,
                remote_id=record.remote_id,
            )
        )

    # Replay

    async def replay_pending(self) -> ReplaySummary:
        """Replay queued operations, FIFO per record type.

        Record types replay concurrently. A network failure stops that type's
        sub-queue for this pass; a rejected operation is dropped. A type that
        is already replaying is skipped.
        """
        results = await asyncio.gather(
            *(self._replay_type(record_type) for record_type in RecordType)
        )
        succeeded = sum(result[0] for result in results)
        failed = sum(result[1] for result in results)
        rejected = sum(result[2] for result in results)
        summary = ReplaySummary(
            succeeded=succeeded,
            failed=failed,
            rejected=rejected,
            remaining=len(self.queue),
        )
        self.last_replay = summary
        if succeeded or failed:
            logger.info(
                f"Replay finished: {succeeded} succeeded, {failed} failed, "
                f"{summary.remaining} pending"
            )
            self.events.publish(events.REPLAY_COMPLETE, summary.to_dict())
        return summary

    async def _replay_type(self, record_type: RecordType) -> tuple[int, int, int]:
        lock = self._replay_locks[record_type]
        if lock.locked():
            return 0, 0, 0

        succeeded = failed = rejected = 0
        async with lock:
            while True:
                operations = self.queue.for_type(record_type)
                if not operations:
                    break
                operation = operations[0]
                try:
                    await self._replay_operation(operation)
                except NetworkError as e:
                    logger.warning(
                        f"Replay of {record_type.value}s paused at "
                        f"{operation.kind.value} {operation.local_id}: {e}"
                    )
                    failed += 1
                    break
                except ValidationError as e:
                    logger.error(
                        f"Server rejected queued {operation.kind.value} for "
                        f"{record_type.value} {operation.local_id}: {e}"
                    )
                    await self._drop_rejected(operation, e)
                    failed += 1
                    rejected += 1
                    continue
                succeeded += 1
        return succeeded, failed, rejected

    async def _replay_operation(self, operation: PendingOperation) -> None:
        record_type = operation.record_type
        if operation.kind == OperationKind.CREATE:
            record = self.cache.get(record_type, operation.local_id)
            if record is None:
                await self.queue.remove(operation.op_id)
                return
            sent = dict(operation.payload)
            key = (record_type, record.id)
            self._in_flight.add(key)
            try:
                data = await self._call_remote(
                    lambda: self.api.create_record(record_type, sent)
                )
            finally:
                self._in_flight.discard(key)
            remote_id = _remote_id_of(data)
            if remote_id is None:
                raise NetworkError(f"Server response for {record_type.value} has no id")
            await self.queue.remove(operation.op_id)
            await self._after_remote_create(record, remote_id, sent)
            return

        if operation.kind == OperationKind.UPDATE:
            await self._call_remote(
                lambda: self.api.update_record(
                    record_type, operation.remote_id, operation.payload
                )
            )
            self._note_touched(record_type, operation.local_id)
        else:
            try:
                await self._call_remote(
                    lambda: self.api.delete_record(record_type, operation.remote_id)
                )
            except ValidationError as e:
                if e.status_code != 404:
                    raise
            self._note_deleted(record_type, operation.local_id, operation.remote_id)
        await self.queue.remove(operation.op_id)

    async def _drop_rejected(self, operation: PendingOperation, error: ValidationError) -> None:
        await self.queue.remove(operation.op_id)
        if operation.kind == OperationKind.CREATE:
            record = self.cache.get(operation.record_type, operation.local_id)
            if record is not None:
                await self._reject(record, error)
                return
        self._notify(
            "error",
            f"Queued {operation.kind.value} for {operation.record_type.value} rejected: {error}",
        )

    # Bulk paths

    async def push_all(self) -> dict[str, Any]:
        """Send every cached record to POST /api/sync in one request."""

        def serialize(record_type: RecordType) -> list[dict[str, Any]]:
            items = []
            for record in self.cache.list(record_type):
                item = {**record.to_remote_payload(), "id": record.id}
                if record.remote_id:
                    item["_id"] = record.remote_id
                items.append(item)
            return items

        result = await self._call_remote(
            lambda: self.api.bulk_sync(
                applications=serialize(RecordType.APPLICATION),
                contacts=serialize(RecordType.CONTACT),
                resumes=serialize(RecordType.RESUME),
            )
        )
        last_sync = str(result.get("lastSync") or utcnow().isoformat())
        await self.store.set(LAST_SYNC_KEY, last_sync)
        logger.info(f"Bulk sync complete at {last_sync}")
        return result

    async def import_records(
        self,
        record_type: RecordType | str,
        items: list[dict[str, Any]],
    ) -> list[Record]:
        """Ingest records produced outside the engine (e.g. the browser extension).

        Items whose id is already known, or that duplicate an existing or
        earlier application, are skipped.

        Returns:
            The records that were created.
        """
        record_type = RecordType(record_type)
        created: list[Record] = []
        seen: set[str] = set()
        skipped = 0
        for item in items:
            item_id = item.get("_id", item.get("id"))
            if item_id is not None and self.cache.get(record_type, str(item_id)):
                skipped += 1
                continue
            fields = {k: v for k, v in item.items() if k not in {"id", "_id"}}
            if record_type == RecordType.APPLICATION:
                fingerprint = compute_fingerprint(fields)
                if fingerprint in seen or self.find_duplicate(fields) is not None:
                    skipped += 1
                    continue
                seen.add(fingerprint)
            try:
                created.append(await self.create(record_type, fields))
            except ValidationError as e:
                logger.warning(f"Imported {record_type.value} rejected: {e}")
                skipped += 1
        logger.info(f"Imported {len(created)} {record_type.value}s, skipped {skipped}")
        return created
