"""Data models for the sync layer."""

from __future__ import annotations

import secrets
import string
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

_BASE36 = string.digits + string.ascii_lowercase


class RecordType(str, Enum):
    """Kind of record tracked by the sync layer."""

    APPLICATION = "application"
    CONTACT = "contact"
    RESUME = "resume"

    @property
    def endpoint(self) -> str:
        """Collection path on the remote API, e.g. '/applications'."""
        return f"/{self.value}s"

    @property
    def cache_key(self) -> str:
        """LocalStore key holding the cached record set."""
        return f"{self.value}Cache"


class OperationKind(str, Enum):
    """Kind of queued mutation."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class ConnectivityState(str, Enum):
    """The engine's belief about whether the remote API is reachable."""

    UNKNOWN = "unknown"
    ONLINE = "online"
    OFFLINE = "offline"


def utcnow() -> datetime:
    return datetime.now(UTC)


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def generate_local_id() -> str:
    """Generate a locally unique id: base-36 milliseconds plus 9 random chars."""
    millis = _to_base36(int(time.time() * 1000))
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"{millis}{suffix}"


def _parse_datetime(value: str | datetime | None) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


@dataclass
class Record:
    """A tracked domain entity (application, contact or resume).

    Attributes:
        id: Client-generated identifier, assigned before any network call.
        record_type: Which collection the record belongs to.
        fields: Domain attributes; opaque to the sync layer.
        created_at: When the record was created locally.
        updated_at: When the record was last changed locally.
        remote_id: Server-assigned identifier, None while pending sync.
    """

    id: str
    record_type: RecordType
    fields: dict[str, Any]
    created_at: datetime
    updated_at: datetime
    remote_id: str | None = None

    @property
    def synced(self) -> bool:
        return self.remote_id is not None

    def to_dict(self) -> dict:
        """Serialize the record to a dictionary.

        Returns:
            Dictionary representation of the record.
        """
        return {
            "id": self.id,
            "record_type": self.record_type.value,
            "fields": dict(self.fields),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "remote_id": self.remote_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Record:
        """Deserialize a record from a dictionary.

        Args:
            data: Dictionary containing record data.

        Returns:
            Record instance.
        """
        now = utcnow()
        return cls(
            id=str(data["id"]),
            record_type=RecordType(data["record_type"]),
            fields=dict(data.get("fields") or {}),
            created_at=_parse_datetime(data.get("created_at")) or now,
            updated_at=_parse_datetime(data.get("updated_at")) or now,
            remote_id=data.get("remote_id"),
        )

    @classmethod
    def from_remote(cls, record_type: RecordType, data: dict) -> Record:
        """Build a record from a server payload.

        The server id (``_id`` or ``id``) becomes both the local and the
        remote id, since the record was never created on this client.
        """
        payload = dict(data)
        server_id = payload.pop("_id", None)
        plain_id = payload.pop("id", None)
        remote_id = server_id if server_id is not None else plain_id
        if remote_id is None:
            raise ValueError(f"Server {record_type.value} payload has no id")
        payload.pop("__v", None)
        created = _parse_datetime(payload.pop("createdAt", None)) or utcnow()
        updated = _parse_datetime(payload.pop("updatedAt", None)) or created
        return cls(
            id=str(remote_id),
            record_type=record_type,
            fields=payload,
            created_at=created,
            updated_at=updated,
            remote_id=str(remote_id),
        )

    def to_remote_payload(self) -> dict[str, Any]:
        """Fields sent to the server; client ids are never included."""
        payload = {
            key: value
            for key, value in self.fields.items()
            if key not in {"id", "_id"}
        }
        return payload


@dataclass
class PendingOperation:
    """A queued mutation awaiting remote replay.

    Attributes:
        kind: create, update or delete.
        record_type: Collection the target record belongs to.
        local_id: Client-generated id of the target record.
        payload: Full record fields for create/update, empty for delete.
        remote_id: Server id targeted by update/delete.
        enqueued_at: Queue time; replay runs in this order per record type.
        op_id: Identifies this queue entry.
    """

    kind: OperationKind
    record_type: RecordType
    local_id: str
    payload: dict[str, Any] = field(default_factory=dict)
    remote_id: str | None = None
    enqueued_at: datetime = field(default_factory=utcnow)
    op_id: str = field(default_factory=generate_local_id)

    def __post_init__(self) -> None:
        if self.kind in (OperationKind.UPDATE, OperationKind.DELETE) and not self.remote_id:
            raise ValueError(f"{self.kind.value} operations require a remote_id")

    def to_dict(self) -> dict:
        return {
            "op_id": self.op_id,
            "kind": self.kind.value,
            "record_type": self.record_type.value,
            "local_id": self.local_id,
            "payload": dict(self.payload),
            "remote_id": self.remote_id,
            "enqueued_at": self.enqueued_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> PendingOperation:
        return cls(
            op_id=data["op_id"],
            kind=OperationKind(data["kind"]),
            record_type=RecordType(data["record_type"]),
            local_id=str(data["local_id"]),
            payload=dict(data.get("payload") or {}),
            remote_id=data.get("remote_id"),
            enqueued_at=_parse_datetime(data.get("enqueued_at")) or utcnow(),
        )


@dataclass(frozen=True)
class ReplaySummary:
    """Outcome of one replay pass.

    ``failed`` counts every operation that did not succeed; ``rejected`` is
    the subset the server refused, which were dropped from the queue.
    """

    succeeded: int
    failed: int
    rejected: int = 0
    remaining: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "succeeded": self.succeeded,
            "failed": self.failed,
            "rejected": self.rejected,
            "remaining": self.remaining,
        }
