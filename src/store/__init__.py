"""Durable local key-value stores.

Public API:
- LocalStore: Protocol every backend implements
- MemoryStore: In-memory store with optional quota
- JsonFileStore: Single JSON file on disk
- SqliteStore: aiosqlite-backed table
- create_store: Build the backend selected in Settings
"""

from src.config.settings import Settings, StoreBackend
from src.store.base import LocalStore
from src.store.json_file import JsonFileStore
from src.store.memory import MemoryStore
from src.store.sqlite import SqliteStore


def create_store(settings: Settings) -> LocalStore:
    """Build the local store configured by ``settings.store_backend``."""
    if settings.store_backend == StoreBackend.MEMORY:
        return MemoryStore()
    if settings.store_backend == StoreBackend.SQLITE:
        return SqliteStore(settings.store_path)
    return JsonFileStore(settings.store_path)


__all__ = [
    "LocalStore",
    "MemoryStore",
    "JsonFileStore",
    "SqliteStore",
    "create_store",
]
