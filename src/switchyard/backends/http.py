"""Generic JSON-over-HTTP backend callable using httpx."""

import json
from collections.abc import AsyncIterator, Mapping
from typing import Any

import httpx

from switchyard.backends.base import (
    BackendConnectionError,
    BackendError,
    BackendRateLimitError,
    BackendSpec,
    BackendStatusError,
    BackendTimeoutError,
    BackendUnavailableError,
)
from switchyard.utils.logging import get_logger

logger = get_logger(__name__)


class HTTPBackend:
    """Backend callable posting the request payload as JSON to one endpoint.

    Request construction and response parsing are left to the caller: the
    payload is sent as-is and the decoded JSON body is returned. What this
    class does own is translating transport failures and error statuses into
    the ``BackendError`` hierarchy, so the router can classify them.

    Args:
        name: Backend name used in errors and logs.
        base_url: Base URL of the API server.
        path: Path the payload is posted to.
        api_key: Optional bearer token.
        timeout: Request timeout in seconds.
        connect_timeout: Connection timeout in seconds.
        transport: Optional httpx transport, mainly for tests.
    """

    def __init__(
        self,
        name: str,
        base_url: str,
        path: str = "/v1/chat/completions",
        api_key: str | None = None,
        timeout: float = 60.0,
        connect_timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.name = name
        self.base_url = base_url.rstrip("/")
        self.path = path

        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout, connect=connect_timeout),
            headers=headers,
            transport=transport,
        )

    def as_spec(self, model: str = "") -> BackendSpec:
        """Wrap this backend in a BackendSpec for the fallback service."""
        return BackendSpec(name=self.name, call=self, model=model)

    async def __call__(self, request: Any) -> Any:
        """Post the request and return the decoded JSON response.

        Raises:
            BackendError: If the request fails.
        """
        try:
            logger.debug(
                "http_backend_request",
                backend=self.name,
                path=self.path,
                model=request.get("model") if isinstance(request, Mapping) else None,
            )
            response = await self._client.post(self.path, json=request)
        except httpx.HTTPError as e:
            raise self._translate_transport_error(e) from e

        self._raise_for_status(response.status_code, response.headers, response.content)
        return response.json()

    async def stream(self, request: Any) -> AsyncIterator[bytes]:
        """Post the request and yield the raw response body chunks.

        Raises:
            BackendError: If the request fails before or while streaming.
        """
        try:
            async with self._client.stream("POST", self.path, json=request) as response:
                if response.status_code >= 400:
                    body = await response.aread()
                    self._raise_for_status(response.status_code, response.headers, body)
                async for chunk in response.aiter_bytes():
                    yield chunk
        except httpx.HTTPError as e:
            raise self._translate_transport_error(e) from e

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    def _translate_transport_error(self, error: httpx.HTTPError) -> BackendError:
        if isinstance(error, httpx.TimeoutException):
            logger.error("http_backend_timeout", backend=self.name, error=str(error))
            return BackendTimeoutError(
                f"Request timed out: {error}", backend_name=self.name
            )
        if isinstance(error, httpx.ConnectError):
            logger.error(
                "http_backend_connection_error", backend=self.name, error=str(error)
            )
            return BackendConnectionError(
                f"Failed to connect: {error}", backend_name=self.name
            )
        logger.error("http_backend_http_error", backend=self.name, error=str(error))
        return BackendError(f"Request failed: {error}", backend_name=self.name)

    def _raise_for_status(
        self, status_code: int, headers: httpx.Headers, body: bytes
    ) -> None:
        if status_code < 400:
            return

        if status_code == 429:
            raise BackendRateLimitError(
                "Rate limit exceeded (429)",
                retry_after=parse_retry_after(headers),
                backend_name=self.name,
            )

        message = f"API error ({status_code}): {_error_message(body)}"
        if status_code >= 500:
            raise BackendUnavailableError(
                message, status_code=status_code, backend_name=self.name
            )
        raise BackendStatusError(message, status_code=status_code, backend_name=self.name)


def parse_retry_after(headers: httpx.Headers) -> float | None:
    """Parse a Retry-After header given in seconds.

    Returns:
        Retry delay in seconds, or None if the header is missing or not numeric.
    """
    retry_after = headers.get("Retry-After")
    if retry_after is None:
        return None
    try:
        return float(retry_after)
    except ValueError:
        return None


def _error_message(body: bytes) -> str:
    text = body.decode(errors="replace")
    try:
        payload = json.loads(text)
    except ValueError:
        return text
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and "message" in error:
            return str(error["message"])
        if isinstance(error, str):
            return error
    return text
