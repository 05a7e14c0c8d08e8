"""JSON-file backed LocalStore."""

from __future__ import annotations

import json
import os
from pathlib import Path

from src.sync.errors import StorageError


class JsonFileStore:
    """A simple JSON-backed key-value store.

    The whole file is rewritten on every change. Writes go to a temporary
    sibling first and are moved into place, so a crash mid-write leaves the
    previous contents intact.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._data: dict[str, str] = {}
        self._loaded = False

    async def initialize(self) -> None:
        """Load the store from disk (no-op if missing)."""
        self._data = self._load()
        self._loaded = True

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Failed to read local store {self.path}: {e}", e) from e
        if not isinstance(raw, dict):
            return {}
        return {str(key): value for key, value in raw.items() if isinstance(value, str)}

    def _save(self) -> None:
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(
                json.dumps(self._data, indent=2, sort_keys=True) + "\n",
                encoding="utf-8",
            )
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise StorageError(f"Failed to write local store {self.path}: {e}", e) from e

    async def get(self, key: str) -> str | None:
        if not self._loaded:
            await self.initialize()
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        if not self._loaded:
            await self.initialize()
        previous = self._data.get(key)
        self._data[key] = value
        try:
            self._save()
        except StorageError:
            if previous is None:
                self._data.pop(key, None)
            else:
                self._data[key] = previous
            raise

    async def remove(self, key: str) -> None:
        if not self._loaded:
            await self.initialize()
        if key not in self._data:
            return
        previous = self._data.pop(key)
        try:
            self._save()
        except StorageError:
            self._data[key] = previous
            raise

    async def close(self) -> None:
        return None
