"""Tests for the RemoteAPI HTTP client."""

import json

import httpx
import pytest

from src.api.client import RemoteAPI
from src.sync.errors import NetworkError, ValidationError
from src.sync.models import RecordType


class Backend:
    """Scripted httpx handler: pops one response (or exception) per request."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        outcome = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _client(backend: Backend, **kwargs) -> RemoteAPI:
    kwargs.setdefault("retry_delay", 0)
    return RemoteAPI(
        "http://tracker.test/",
        user_id="user-1",
        transport=httpx.MockTransport(backend),
        **kwargs,
    )


class TestRequests:
    """Test request construction and response decoding."""

    async def test_create_posts_json_with_user_header(self):
        """create_record should POST clean JSON with the user header."""
        backend = Backend(httpx.Response(201, json={"_id": "srv1", "jobTitle": "Eng"}))
        api = _client(backend)

        data = await api.create_record(
            RecordType.APPLICATION, {"id": "local", "jobTitle": "Eng"}
        )

        [request] = backend.requests
        assert request.method == "POST"
        assert str(request.url) == "http://tracker.test/api/applications"
        assert request.headers["x-user-id"] == "user-1"
        assert json.loads(request.content) == {"jobTitle": "Eng"}
        assert data == {"_id": "srv1", "jobTitle": "Eng"}
        await api.close()

    async def test_update_and_delete_target_the_remote_id(self):
        """update and delete should target the server id."""
        backend = Backend(httpx.Response(200, json={"_id": "c1", "name": "Dana"}))
        api = _client(backend)

        await api.update_record(RecordType.CONTACT, "c1", {"name": "Dana"})
        await api.delete_record(RecordType.CONTACT, "c1")

        assert [(r.method, r.url.path) for r in backend.requests] == [
            ("PUT", "/api/contacts/c1"),
            ("DELETE", "/api/contacts/c1"),
        ]
        await api.close()

    async def test_list_unwraps_data_envelope(self):
        """list_records should unwrap a data envelope and skip non-objects."""
        backend = Backend(httpx.Response(200, json={"data": [{"_id": "r1"}, "junk"]}))
        api = _client(backend)

        assert await api.list_records(RecordType.RESUME) == [{"_id": "r1"}]
        await api.close()

    async def test_list_rejects_non_list_body(self):
        """list_records should reject a body that is not a list."""
        api = _client(Backend(httpx.Response(200, json={"message": "nope"})))

        with pytest.raises(ValidationError):
            await api.list_records(RecordType.CONTACT)
        await api.close()

    async def test_no_user_header_without_user_id(self):
        """No x-user-id header should be sent without a user id."""
        backend = Backend(httpx.Response(200, json={"status": "OK"}))
        api = _client(backend)
        api.user_id = None

        await api.check_health()

        assert "x-user-id" not in backend.requests[0].headers
        await api.close()

    async def test_bulk_sync(self):
        """bulk_sync should POST all three collections to /api/sync."""
        backend = Backend(httpx.Response(200, json={"message": "Data synced successfully"}))
        api = _client(backend)

        result = await api.bulk_sync(applications=[{"id": "a"}], contacts=[], resumes=[])

        assert backend.requests[0].url.path == "/api/sync"
        assert json.loads(backend.requests[0].content) == {
            "applications": [{"id": "a"}],
            "contacts": [],
            "resumes": [],
        }
        assert result["message"] == "Data synced successfully"
        await api.close()


class TestRetryAndClassification:
    """Test retry policy and error classification."""

    async def test_connection_error_retried_then_network_error(self):
        """Connection errors should be retried, then raise NetworkError."""
        backend = Backend(httpx.ConnectError("connection refused"))
        api = _client(backend)

        with pytest.raises(NetworkError, match="after 3 attempts"):
            await api.create_record(RecordType.CONTACT, {"name": "Dana"})

        assert len(backend.requests) == 3
        await api.close()

    async def test_transient_failure_then_success(self):
        """A transient failure followed by success should return the body."""
        backend = Backend(
            httpx.ConnectError("connection refused"),
            httpx.Response(503),
            httpx.Response(201, json={"_id": "srv1"}),
        )
        api = _client(backend)

        assert await api.create_record(RecordType.CONTACT, {"name": "Dana"}) == {"_id": "srv1"}
        assert len(backend.requests) == 3
        await api.close()

    async def test_client_error_is_not_retried(self):
        """A 400 should raise ValidationError without retrying."""
        backend = Backend(
            httpx.Response(400, json={"error": "Failed to create application", "details": "x"})
        )
        api = _client(backend)

        with pytest.raises(ValidationError) as exc_info:
            await api.create_record(RecordType.APPLICATION, {})

        assert exc_info.value.status_code == 400
        assert exc_info.value.details == "x"
        assert "Failed to create application" in str(exc_info.value)
        assert len(backend.requests) == 1
        await api.close()

    async def test_not_found_is_a_validation_error(self):
        """A 404 should raise ValidationError with its status."""
        api = _client(Backend(httpx.Response(404, json={"error": "Application not found"})))

        with pytest.raises(ValidationError) as exc_info:
            await api.delete_record(RecordType.APPLICATION, "gone")

        assert exc_info.value.status_code == 404
        await api.close()

    async def test_server_errors_become_network_errors(self):
        """Repeated 5xx responses should raise NetworkError."""
        backend = Backend(httpx.Response(500, json={"error": "boom"}))
        api = _client(backend, retry_attempts=2)

        with pytest.raises(NetworkError):
            await api.list_records(RecordType.APPLICATION)

        assert len(backend.requests) == 2
        await api.close()

    async def test_backoff_is_linear(self, monkeypatch):
        """Retry delays should grow linearly with the attempt."""
        delays = []

        async def fake_sleep(delay):
            delays.append(delay)

        monkeypatch.setattr("src.api.client.asyncio.sleep", fake_sleep)
        api = _client(Backend(httpx.ConnectError("down")), retry_delay=1.0)

        with pytest.raises(NetworkError):
            await api.check_health()

        assert delays == [1.0, 2.0]
        await api.close()

    async def test_unhealthy_status_raises_network_error(self):
        """A health status other than OK should raise NetworkError."""
        api = _client(Backend(httpx.Response(200, json={"status": "DEGRADED"})))

        with pytest.raises(NetworkError):
            await api.check_health()
        await api.close()


def test_from_settings():
    """from_settings should copy the connection settings."""
    from src.config.settings import Settings

    settings = Settings(
        _env_file=None,
        api_base_url="https://tracker.example.com",
        user_id="u-7",
        retry_attempts=5,
        retry_delay=0.5,
    )

    api = RemoteAPI.from_settings(settings)

    assert api.base_url == "https://tracker.example.com"
    assert api.user_id == "u-7"
    assert api.retry_attempts == 5
    assert api.retry_delay == 0.5
