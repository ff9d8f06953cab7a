"""Shared HTTP plumbing for the story server clients."""

from __future__ import annotations

from typing import Any

import httpx

from storyclient.common.config import get_settings
from storyclient.common.errors import (
    AuthError,
    NetworkError,
    NotFoundError,
    ServerError,
    StoryClientError,
    ValidationError,
)
from storyclient.common.logging import get_logger

logger = get_logger(__name__)

JSON_HEADERS = {
    "Content-Type": "application/json",
    "Accept": "application/json",
}


def _error_message(response: httpx.Response) -> str:
    """Best human-readable message from an error response."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in ("message", "detail", "error"):
            if body.get(key):
                return str(body[key])
    text = response.text.strip()
    if text:
        return text[:200]
    return f"HTTP {response.status_code} {response.reason_phrase}"


def translate_status(response: httpx.Response) -> StoryClientError:
    """Map a non-2xx response onto the client error taxonomy."""
    status = response.status_code
    message = _error_message(response)
    if status in (401, 403):
        return AuthError(message, status_code=status)
    if status == 404:
        return NotFoundError(message, status_code=status)
    if status in (408, 429):
        return NetworkError(message, status_code=status)
    if status < 500:
        return ValidationError(message, status_code=status)
    return ServerError(message, status_code=status)


class BaseApiClient:
    """Async JSON client wrapper around ``httpx.AsyncClient``.

    The underlying client is created lazily on first use and shared by all
    requests until :meth:`close`.
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self.timeout = timeout or settings.request_timeout_seconds
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def connect(self) -> None:
        """Open the HTTP connection pool."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )
            logger.debug("api_client_opened", base_url=self.base_url)

    async def close(self) -> None:
        """Close the HTTP connection pool."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.debug("api_client_closed", base_url=self.base_url)

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        route: str,
        credential: str | None = None,
        json_body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Send one request and return the decoded JSON object.

        ``route`` is a stable name used for logging in place of the path,
        which may embed a credential.

        Raises:
            AuthError, NotFoundError, ValidationError: on 4xx responses
            NetworkError: on transport failures, timeouts, 408 and 429
            ServerError: on 5xx responses or a body that is not a JSON object
        """
        if self._client is None:
            await self.connect()

        headers = dict(JSON_HEADERS)
        if credential:
            headers["Authorization"] = f"Bearer {credential}"

        logger.debug("api_request", method=method, route=route)
        try:
            response = await self._client.request(
                method,
                path,
                headers=headers,
                json=json_body,
                params=params,
            )
        except httpx.TimeoutException as e:
            logger.warning("api_request_timeout", route=route)
            raise NetworkError(f"{route} timed out") from e
        except httpx.RequestError as e:
            logger.warning("api_transport_error", route=route, error=str(e))
            raise NetworkError(f"{route} failed: {e}") from e

        if response.is_error:
            error = translate_status(response)
            logger.warning(
                "api_request_failed",
                route=route,
                status_code=response.status_code,
                error_type=type(error).__name__,
            )
            raise error

        try:
            data = response.json()
        except ValueError as e:
            raise ServerError(
                f"{route} returned a non-JSON body", status_code=response.status_code
            ) from e
        if not isinstance(data, dict):
            raise ServerError(
                f"{route} returned {type(data).__name__}, expected an object",
                status_code=response.status_code,
            )

        logger.debug("api_response", route=route, status_code=response.status_code)
        return data
