"""Salesforce REST API client implementing RemoteClient.

Key implementation details:
- One httpx.AsyncClient per call, bearer token auth (token refresh is handled
  by whoever provisions SALESFORCE_ACCESS_TOKEN)
- Connection failures are retried with tenacity exponential backoff; a request
  that reached Salesforce is never re-sent, so creates cannot be doubled
- Upsert/external-id values are interpolated verbatim: callers URL-encode them
- Error bodies ``[{"errorCode": ..., "message": ...}]`` become RemoteAPIError
"""

from __future__ import annotations

import time
from typing import Any

import httpx
import structlog
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.objectsync.core.monitoring import observe_remote_request
from src.objectsync.remote.client import (
    HTTP_MULTIPLE_CHOICES,
    RemoteClient,
    RemoteResponse,
)
from src.objectsync.remote.exceptions import RemoteAPIError, RemoteNotAuthorizedError

logger = structlog.get_logger(__name__)


class SalesforceClient(RemoteClient):
    """Async client for the Salesforce sObject REST API.

    Args:
        instance_url: Org instance URL, e.g. ``https://example.my.salesforce.com``.
        access_token: OAuth access token.
        api_version: REST API version segment, e.g. ``v59.0``.
        timeout: Per-request timeout in seconds.
        max_retries: Attempts for connection failures.
        transport: Optional httpx transport (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        instance_url: str,
        access_token: str,
        api_version: str = "v59.0",
        timeout: float = 30.0,
        max_retries: int = 3,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._instance_url = instance_url.rstrip("/")
        self._access_token = access_token
        self._base_path = f"/services/data/{api_version}/sobjects"
        self._timeout = timeout
        self._max_retries = max(1, max_retries)
        self._transport = transport
        self.last_response: RemoteResponse | None = None

    def is_authorized(self) -> bool:
        return bool(self._instance_url and self._access_token)

    def _client(self) -> httpx.AsyncClient:
        """Create a new httpx client bound to the org instance."""
        return httpx.AsyncClient(
            base_url=self._instance_url,
            headers={
                "Authorization": f"Bearer {self._access_token}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            timeout=self._timeout,
            transport=self._transport,
        )

    async def _send(
        self,
        operation: str,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
    ) -> RemoteResponse:
        """Issue one request and decode it into a RemoteResponse.

        Raises:
            RemoteNotAuthorizedError: On HTTP 401.
            RemoteAPIError: On any other HTTP status >= 400 or transport failure.
        """
        url = f"{self._base_path}{path}"
        start_time = time.perf_counter()
        try:
            async with self._client() as client:
                async for attempt in AsyncRetrying(
                    stop=stop_after_attempt(self._max_retries),
                    wait=wait_exponential(multiplier=1, min=1, max=10),
                    retry=retry_if_exception_type(httpx.ConnectError),
                    reraise=True,
                ):
                    with attempt:
                        response = await client.request(method, url, json=json)
        except httpx.HTTPError as exc:
            observe_remote_request(operation, 0, time.perf_counter() - start_time)
            logger.error("salesforce.transport_error", operation=operation, error=str(exc))
            raise RemoteAPIError(operation, 0, str(exc)) from exc

        observe_remote_request(operation, response.status_code, time.perf_counter() - start_time)

        body: Any = None
        if response.content:
            try:
                body = response.json()
            except ValueError:
                body = response.text

        if response.status_code >= 400:
            error_code, message = _parse_error(body)
            logger.warning(
                "salesforce.request_failed",
                operation=operation,
                status_code=response.status_code,
                error_code=error_code,
            )
            exc_class = RemoteNotAuthorizedError if response.status_code == 401 else RemoteAPIError
            raise exc_class(
                operation,
                response.status_code,
                message,
                error_code=error_code,
                response=body,
            )

        if response.status_code == HTTP_MULTIPLE_CHOICES:
            result = RemoteResponse(
                code=response.status_code,
                data={"matches": body if isinstance(body, list) else []},
                error="MULTIPLE_CHOICES",
            )
        else:
            result = RemoteResponse(
                code=response.status_code,
                data=body if isinstance(body, dict) else {},
            )
        self.last_response = result
        return result

    async def create(self, object_type: str, fields: dict[str, Any]) -> RemoteResponse:
        response = await self._send("create", "POST", f"/{object_type}/", json=fields)
        logger.info("salesforce.created", object_type=object_type, remote_id=response.data.get("id"))
        return response

    async def update(
        self, object_type: str, remote_id: str, fields: dict[str, Any]
    ) -> RemoteResponse:
        return await self._send("update", "PATCH", f"/{object_type}/{remote_id}", json=fields)

    async def upsert(
        self,
        object_type: str,
        key_field: str,
        key_value: str,
        fields: dict[str, Any],
    ) -> RemoteResponse:
        # The key field cannot also appear in the body of an upsert request
        body = {k: v for k, v in fields.items() if k != key_field}
        return await self._send(
            "upsert", "PATCH", f"/{object_type}/{key_field}/{key_value}", json=body
        )

    async def delete(self, object_type: str, remote_id: str) -> RemoteResponse:
        return await self._send("delete", "DELETE", f"/{object_type}/{remote_id}")

    async def read(
        self, object_type: str, remote_id: str, options: dict[str, Any] | None = None
    ) -> RemoteResponse:
        return await self._send("read", "GET", f"/{object_type}/{remote_id}")

    async def read_by_external_id(
        self,
        object_type: str,
        key_field: str,
        key_value: str,
        options: dict[str, Any] | None = None,
    ) -> RemoteResponse:
        return await self._send(
            "read_by_external_id", "GET", f"/{object_type}/{key_field}/{key_value}"
        )


def _parse_error(body: Any) -> tuple[str | None, str]:
    """Extract (errorCode, message) from a Salesforce error body."""
    if isinstance(body, list) and body and isinstance(body[0], dict):
        first = body[0]
        return first.get("errorCode"), str(first.get("message", ""))
    if isinstance(body, dict):
        return body.get("errorCode") or body.get("error"), str(
            body.get("message") or body.get("error_description") or ""
        )
    return None, str(body or "")
