"""Local-first sync layer for tracker records.

This module keeps applications, contacts and resumes usable offline and
mirrors them to the backend whenever it is reachable.

Public API:
- SyncEngine: Single authority for reading and writing records
- ReplayScheduler: Periodic background replay of queued writes
- EventBus: Subscription point for change and sync notifications
- Record, PendingOperation, RecordType, OperationKind, ConnectivityState
- SyncError, NetworkError, ValidationError, NotFoundError, StorageError
"""

from src.sync.engine import SyncEngine
from src.sync.errors import (
    NetworkError,
    NotFoundError,
    StorageError,
    SyncError,
    ValidationError,
)
from src.sync.events import EventBus
from src.sync.models import (
    ConnectivityState,
    OperationKind,
    PendingOperation,
    Record,
    RecordType,
    ReplaySummary,
)
from src.sync.scheduler import ReplayScheduler

__all__ = [
    "SyncEngine",
    "ReplayScheduler",
    "EventBus",
    "Record",
    "PendingOperation",
    "RecordType",
    "OperationKind",
    "ConnectivityState",
    "ReplaySummary",
    "SyncError",
    "NetworkError",
    "ValidationError",
    "NotFoundError",
    "StorageError",
]
