"""Pytest configuration and shared fixtures."""

import pytest

from src.utils.logging import reset_logging


@pytest.fixture(autouse=True)
def _reset_logging():
    """Keep handlers installed by configure_logging from leaking between tests."""
    yield
    reset_logging()


@pytest.fixture
def sample_application() -> dict:
    """Sample application fields for testing."""
    return {
        "jobTitle": "Eng",
        "company": "Acme",
        "status": "Applied",
        "applicationDate": "2025-03-01",
        "jobUrl": "https://boards.greenhouse.io/acme/jobs/123",
    }


@pytest.fixture
def sample_contact() -> dict:
    """Sample contact fields for testing."""
    return {
        "name": "Dana Recruiter",
        "company": "Acme",
        "relationship": "Recruiter",
        "email": "dana@example.com",
    }


class FakeRemoteAPI:
    """In-memory stand-in for RemoteAPI with scriptable failures.

    Set ``offline`` to make every call raise NetworkError, or ``reject`` to a
    predicate ``(method, record_type, payload) -> bool`` to answer with a 400.
    """

    def __init__(self) -> None:
        self.user_id = "test-user"
        self.offline = False
        self.reject = None
        self.calls: list[tuple] = []
        self.records: dict[str, dict[str, dict]] = {
            "application": {},
            "contact": {},
            "resume": {},
        }
        self.bulk_payloads: list[dict] = []
        self._next_id = 1
        self.closed = False

    def _check(self, method, record_type=None, payload=None) -> None:
        from src.sync.errors import NetworkError, ValidationError

        self.calls.append((method, getattr(record_type, "value", record_type), payload))
        if self.offline:
            raise NetworkError("connection refused")
        if self.reject is not None and self.reject(method, record_type, payload):
            raise ValidationError("Failed to create application", status_code=400)

    def methods(self) -> list[str]:
        return [call[0] for call in self.calls]

    async def check_health(self) -> dict:
        self._check("HEALTH")
        return {"status": "OK"}

    async def list_records(self, record_type) -> list[dict]:
        self._check("LIST", record_type)
        return [dict(item) for item in self.records[record_type.value].values()]

    async def create_record(self, record_type, payload: dict) -> dict:
        self._check("POST", record_type, dict(payload))
        remote_id = f"srv{self._next_id}"
        self._next_id += 1
        stored = {**payload, "_id": remote_id}
        self.records[record_type.value][remote_id] = stored
        return dict(stored)

    async def update_record(self, record_type, remote_id: str, fields: dict) -> dict:
        from src.sync.errors import ValidationError

        self._check("PUT", record_type, dict(fields))
        if remote_id not in self.records[record_type.value]:
            raise ValidationError("Application not found", status_code=404)
        self.records[record_type.value][remote_id].update(fields)
        return dict(self.records[record_type.value][remote_id])

    async def delete_record(self, record_type, remote_id: str) -> None:
        from src.sync.errors import ValidationError

        self._check("DELETE", record_type, {"_id": remote_id})
        if self.records[record_type.value].pop(remote_id, None) is None:
            raise ValidationError("Application not found", status_code=404)

    async def bulk_sync(self, *, applications, contacts, resumes) -> dict:
        payload = {"applications": applications, "contacts": contacts, "resumes": resumes}
        self._check("SYNC", None, payload)
        self.bulk_payloads.append(payload)
        return {"message": "Data synced successfully", "lastSync": "2025-03-01T00:00:00"}

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_api() -> FakeRemoteAPI:
    """A reachable fake backend."""
    return FakeRemoteAPI()


@pytest.fixture
def memory_store():
    """An empty in-memory local store."""
    from src.store.memory import MemoryStore

    return MemoryStore()


@pytest.fixture
async def engine(fake_api, memory_store):
    """An initialized engine talking to the fake backend."""
    from src.sync.engine import SyncEngine

    sync_engine = SyncEngine(fake_api, memory_store)
    await sync_engine.initialize()
    yield sync_engine
    await sync_engine.wait_idle()
    await sync_engine.close()
