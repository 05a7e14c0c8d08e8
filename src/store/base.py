"""LocalStore interface shared by every backend."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class LocalStore(Protocol):
    """Durable string key-value store (a localStorage equivalent).

    Implementations raise ``StorageError`` when a read or write fails.
    """

    async def initialize(self) -> None: ...

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def remove(self, key: str) -> None: ...

    async def close(self) -> None: ...
