"""Store wrapper that degrades to memory-only after a storage failure."""

from __future__ import annotations

import logging
from collections.abc import Callable

from src.store.base import LocalStore
from src.sync.errors import StorageError

logger = logging.getLogger(__name__)


class FallbackStore:
    """Wrap a LocalStore so a read or write failure never propagates.

    After the first ``StorageError`` the wrapped store is no longer touched
    for the rest of the session; reads then return None and writes are
    dropped, and callers keep working from their in-memory state.
    """

    def __init__(
        self,
        store: LocalStore,
        on_failure: Callable[[StorageError], None] | None = None,
    ) -> None:
        self.store = store
        self.on_failure = on_failure
        self.available = True

    def _disable(self, error: StorageError) -> None:
        if not self.available:
            return
        self.available = False
        logger.warning(f"Local storage unavailable, continuing in memory only: {error}")
        if self.on_failure is not None:
            self.on_failure(error)

    async def initialize(self) -> None:
        try:
            await self.store.initialize()
        except StorageError as e:
            self._disable(e)

    async def get(self, key: str) -> str | None:
        if not self.available:
            return None
        try:
            return await self.store.get(key)
        except StorageError as e:
            self._disable(e)
            return None

    async def set(self, key: str, value: str) -> None:
        if not self.available:
            return
        try:
            await self.store.set(key, value)
        except StorageError as e:
            self._disable(e)

    async def remove(self, key: str) -> None:
        if not self.available:
            return
        try:
            await self.store.remove(key)
        except StorageError as e:
            self._disable(e)

    async def close(self) -> None:
        await self.store.close()
