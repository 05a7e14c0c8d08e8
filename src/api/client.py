"""HTTP client for the tracker backend.

Every call goes through one retry-and-classify helper:
- connection failures, timeouts, 429 and 5xx responses are retried with a
  linearly increasing delay, and become ``NetworkError`` once attempts run out
- other 4xx responses raise ``ValidationError`` immediately
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from src.sync.errors import NetworkError, ValidationError
from src.sync.models import RecordType

logger = logging.getLogger(__name__)

RETRY_STATUS_CODES = {429, 500, 502, 503, 504}


def _unwrap(data: Any) -> Any:
    """Accept both bare payloads and ``{"data": ...}`` envelopes."""
    if isinstance(data, dict) and "_id" not in data and "id" not in data:
        inner = data.get("data")
        if isinstance(inner, (dict, list)):
            return inner
    return data


def _error_message(response: httpx.Response) -> tuple[str, Any]:
    try:
        body = response.json() if response.text else {}
    except ValueError:
        return f"HTTP {response.status_code}", response.text[:200]
    if isinstance(body, dict):
        message = body.get("error") or body.get("message")
        if message:
            return str(message), body.get("details")
    return f"HTTP {response.status_code}", body


class RemoteAPI:
    """Async JSON client for the ``/api`` CRUD endpoints.

    Args:
        base_url: Backend origin; ``/api`` is appended to every path.
        user_id: Value for the ``x-user-id`` header.
        timeout: Per-attempt timeout in seconds.
        retry_attempts: Attempts per request.
        retry_delay: Base delay; attempt N waits ``N * retry_delay`` seconds.
        transport: Optional httpx transport (used by tests).
    """

    def __init__(
        self,
        base_url: str,
        *,
        user_id: str | None = None,
        timeout: float = 15.0,
        retry_attempts: int = 3,
        retry_delay: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if retry_attempts < 1:
            raise ValueError("retry_attempts must be >= 1")
        self.base_url = base_url.rstrip("/")
        self.user_id = user_id
        self.timeout = timeout
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self._client = httpx.AsyncClient(
            base_url=f"{self.base_url}/api",
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Any, *, user_id: str | None = None) -> RemoteAPI:
        return cls(
            settings.api_base_url,
            user_id=user_id or settings.user_id,
            timeout=settings.request_timeout,
            retry_attempts=settings.retry_attempts,
            retry_delay=settings.retry_delay,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self.user_id:
            headers["x-user-id"] = self.user_id
        return headers

    async def request(
        self,
        method: str,
        path: str,
        json: Any = None,
    ) -> Any:
        """Execute a request with retry, returning the decoded JSON body.

        Raises:
            NetworkError: The backend could not be reached after all attempts.
            ValidationError: The backend rejected the request (4xx).
        """
        last_error: Exception | None = None
        for attempt in range(1, self.retry_attempts + 1):
            try:
                logger.debug(f"API request (attempt {attempt}): {method} {path}")
                # wait_for cancels the in-flight call if the transport ignores
                # its own timeout.
                response = await asyncio.wait_for(
                    self._client.request(
                        method, path, json=json, headers=self._headers()
                    ),
                    timeout=self.timeout,
                )
            except (httpx.RequestError, asyncio.TimeoutError) as e:
                last_error = e
                reason = str(e) or type(e).__name__
            else:
                if response.is_success:
                    return self._decode(response)
                if response.status_code not in RETRY_STATUS_CODES:
                    message, details = _error_message(response)
                    logger.error(
                        f"API rejected {method} {path}: "
                        f"{response.status_code} {message}"
                    )
                    raise ValidationError(
                        message,
                        status_code=response.status_code,
                        details=details,
                    )
                reason = f"HTTP {response.status_code}"
                last_error = None

            if attempt < self.retry_attempts:
                delay = self.retry_delay * attempt
                logger.warning(
                    f"API attempt {attempt} failed for {method} {path} "
                    f"({reason}), retrying in {delay}s"
                )
                await asyncio.sleep(delay)
            else:
                logger.warning(
                    f"All {self.retry_attempts} attempts failed for {method} {path}: {reason}"
                )
                raise NetworkError(
                    f"{method} {path} failed after {self.retry_attempts} attempts: {reason}",
                    last_error,
                ) from last_error

        raise NetworkError(f"{method} {path} failed", last_error)

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {"message": response.text}

    # Connectivity

    async def check_health(self) -> dict[str, Any]:
        """GET /api/health; raises NetworkError unless the status is OK."""
        data = await self.request("GET", "/health")
        status = data.get("status") if isinstance(data, dict) else None
        if str(status).upper() != "OK":
            raise NetworkError(f"Health check reported status {status!r}")
        return data

    # Collections

    async def list_records(self, record_type: RecordType) -> list[dict[str, Any]]:
        data = _unwrap(await self.request("GET", record_type.endpoint))
        if not isinstance(data, list):
            raise ValidationError(
                f"Expected a list of {record_type.value}s, got {type(data).__name__}"
            )
        return [item for item in data if isinstance(item, dict)]

    async def create_record(
        self, record_type: RecordType, payload: dict[str, Any]
    ) -> dict[str, Any]:
        clean = {key: value for key, value in payload.items() if key not in {"id", "_id"}}
        data = _unwrap(await self.request("POST", record_type.endpoint, json=clean))
        return data if isinstance(data, dict) else {}

    async def update_record(
        self, record_type: RecordType, remote_id: str, fields: dict[str, Any]
    ) -> dict[str, Any]:
        clean = {key: value for key, value in fields.items() if key not in {"id", "_id"}}
        data = _unwrap(
            await self.request("PUT", f"{record_type.endpoint}/{remote_id}", json=clean)
        )
        return data if isinstance(data, dict) else {}

    async def delete_record(self, record_type: RecordType, remote_id: str) -> None:
        await self.request("DELETE", f"{record_type.endpoint}/{remote_id}")

    async def bulk_sync(
        self,
        *,
        applications: list[dict[str, Any]],
        contacts: list[dict[str, Any]],
        resumes: list[dict[str, Any]],
    ) -> dict[str, Any]:
        """POST /api/sync: replace all of the user's records on the server."""
        data = await self.request(
            "POST",
            "/sync",
            json={
                "applications": applications,
                "contacts": contacts,
                "resumes": resumes,
            },
        )
        return data if isinstance(data, dict) else {}
