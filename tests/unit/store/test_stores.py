"""Tests for the LocalStore backends."""

import json

import pytest

from src.config.settings import Settings
from src.store import JsonFileStore, LocalStore, MemoryStore, SqliteStore, create_store
from src.store.fallback import FallbackStore
from src.sync.errors import StorageError


@pytest.fixture(params=["memory", "json", "sqlite"])
async def store(request, tmp_path):
    """Each backend, initialized and closed around the test."""
    if request.param == "memory":
        backend = MemoryStore()
    elif request.param == "json":
        backend = JsonFileStore(tmp_path / "store.json")
    else:
        backend = SqliteStore(tmp_path / "store.db")
    await backend.initialize()
    yield backend
    await backend.close()


class TestKeyValueContract:
    """Behaviour shared by every backend."""

    async def test_missing_key_is_none(self, store):
        """get should return None for a missing key."""
        assert await store.get("pendingSync") is None

    async def test_set_then_get(self, store):
        """get should return what set stored."""
        await store.set("applicationCache", "[]")
        assert await store.get("applicationCache") == "[]"

    async def test_set_overwrites(self, store):
        """set should replace an existing value."""
        await store.set("userId", "guest_1")
        await store.set("userId", "guest_2")
        assert await store.get("userId") == "guest_2"

    async def test_remove(self, store):
        """remove should delete a key and ignore missing ones."""
        await store.set("lastSync", "2025-03-01")
        await store.remove("lastSync")
        await store.remove("never-set")
        assert await store.get("lastSync") is None

    async def test_implements_protocol(self, store):
        """Every backend should satisfy the LocalStore protocol."""
        assert isinstance(store, LocalStore)


class TestDurability:
    """File-backed stores survive a reopen."""

    async def test_json_store_persists(self, tmp_path):
        """JsonFileStore should read back what an earlier instance wrote."""
        path = tmp_path / "nested" / "store.json"
        first = JsonFileStore(path)
        await first.set("contactCache", '[{"id": "a"}]')

        second = JsonFileStore(path)
        await second.initialize()

        assert await second.get("contactCache") == '[{"id": "a"}]'
        assert json.loads(path.read_text(encoding="utf-8")) == {
            "contactCache": '[{"id": "a"}]'
        }

    async def test_sqlite_store_persists(self, tmp_path):
        """SqliteStore should read back what an earlier instance wrote."""
        path = tmp_path / "store.db"
        first = SqliteStore(path)
        await first.initialize()
        await first.set("pendingSync", "[]")
        await first.close()

        second = SqliteStore(path)
        await second.initialize()
        try:
            assert await second.get("pendingSync") == "[]"
            assert await second.keys() == ["pendingSync"]
        finally:
            await second.close()

    async def test_json_store_rejects_corrupt_file(self, tmp_path):
        """A corrupt JSON file should raise StorageError."""
        path = tmp_path / "store.json"
        path.write_text("{oops", encoding="utf-8")

        with pytest.raises(StorageError):
            await JsonFileStore(path).initialize()


class TestMemoryQuota:
    """MemoryStore can simulate a full browser quota."""

    async def test_write_over_quota_raises(self):
        """A write past the quota should raise and store nothing."""
        store = MemoryStore(max_bytes=10)
        await store.set("a", "12345")

        with pytest.raises(StorageError):
            await store.set("b", "123456")
        assert await store.get("b") is None

    async def test_overwrite_counts_replaced_value_once(self):
        """Overwriting a key should not count the old value."""
        store = MemoryStore(max_bytes=10)
        await store.set("a", "1234567890")
        await store.set("a", "0987654321")
        assert await store.get("a") == "0987654321"


class TestFallbackStore:
    """FallbackStore degrades to memory-only on the first failure."""

    async def test_failure_disables_store_and_reports_once(self):
        """The first failure should disable the store and report once."""
        failures = []
        store = FallbackStore(MemoryStore(max_bytes=5), on_failure=failures.append)

        await store.set("a", "123")
        await store.set("b", "123456")
        await store.set("c", "1")

        assert store.available is False
        assert len(failures) == 1
        assert isinstance(failures[0], StorageError)
        assert await store.get("a") is None


def test_create_store_selects_backend(tmp_path):
    """create_store should build the configured backend."""
    settings = Settings(_env_file=None, store_backend="sqlite", store_path=tmp_path / "s.db")
    assert isinstance(create_store(settings), SqliteStore)

    settings = Settings(_env_file=None, store_backend="memory")
    assert isinstance(create_store(settings), MemoryStore)

    settings = Settings(_env_file=None, store_path=tmp_path / "s.json")
    assert isinstance(create_store(settings), JsonFileStore)


class TestFailedWrites:
    """A failed write leaves the in-memory view matching the disk."""

    async def test_json_remove_restores_key_when_save_fails(self, tmp_path, monkeypatch):
        """remove should keep the key when the file cannot be rewritten."""
        store = JsonFileStore(tmp_path / "store.json")
        await store.set("userId", "guest_1")

        def fail_replace(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr("src.store.json_file.os.replace", fail_replace)

        with pytest.raises(StorageError):
            await store.remove("userId")
        assert await store.get("userId") == "guest_1"

    async def test_sqlite_keys_wraps_database_errors(self, tmp_path):
        """keys should raise StorageError when the table is unreadable."""
        import aiosqlite

        path = tmp_path / "store.db"
        store = SqliteStore(path)
        await store.initialize()
        async with aiosqlite.connect(path) as other:
            await other.execute("DROP TABLE local_store")
            await other.commit()

        try:
            with pytest.raises(StorageError):
                await store.keys()
        finally:
            await store.close()
