"""In-memory LocalStore, used for tests and ephemeral sessions."""

from __future__ import annotations

from src.sync.errors import StorageError


class MemoryStore:
    """Dict-backed store with an optional size quota.

    Args:
        max_bytes: When set, writes that would grow the total size of all
            values past this many bytes fail like a full browser quota.
    """

    def __init__(self, max_bytes: int | None = None) -> None:
        self.max_bytes = max_bytes
        self._data: dict[str, str] = {}

    async def initialize(self) -> None:
        return None

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        if self.max_bytes is not None:
            current = sum(
                len(item.encode("utf-8"))
                for name, item in self._data.items()
                if name != key
            )
            if current + len(value.encode("utf-8")) > self.max_bytes:
                raise StorageError(f"Quota exceeded writing '{key}'")
        self._data[key] = value

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    async def close(self) -> None:
        return None

    def keys(self) -> list[str]:
        return sorted(self._data)
