"""
HttpTransport - thin async HTTP layer producing classifiable errors.

Every failure leaves this module as a RemoteError subclass carrying the
status, the API error code and the Retry-After hint, which is all the retry
layer needs to decide what to do.
"""

from typing import Any, Awaitable, Callable

import httpx
from loguru import logger

from notion_access.services.errors import (
    NetworkError,
    RateLimitError,
    RemoteError,
    RequestTimeoutError,
)


def _parse_retry_after(value: str | None) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _network_code(error: httpx.RequestError) -> str:
    text = str(error).lower()
    if "name or service not known" in text or "nodename nor servname" in text:
        return "ENOTFOUND"
    if "temporary failure in name resolution" in text:
        return "EAI_AGAIN"
    return "ECONNRESET"


class HttpTransport:
    """
    Async JSON client for one API base URL.

    Usage:
        transport = HttpTransport("https://api.notion.com/v1", token=token)
        operation = transport.operation("GET", f"/pages/{page_id}")
        result = await fetcher.fetch(ResourceType.PAGE, [page_id], operation)
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = 30.0,
        headers: dict[str, str] | None = None,
        service_id: str = "notion",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.service_id = service_id
        self._timeout = timeout
        self._headers = dict(headers or {})
        if token:
            self._headers["Authorization"] = f"Bearer {token}"
        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._headers,
                timeout=httpx.Timeout(self._timeout),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._http_client

    async def request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json_data: dict[str, Any] | None = None,
    ) -> Any:
        """
        Execute a request and decode the JSON body.

        Raises:
            RateLimitError: On HTTP 429
            RemoteError: On any other HTTP error status
            RequestTimeoutError: If the request times out
            NetworkError: On connection-level failures
        """
        client = await self._get_http_client()

        try:
            response = await client.request(
                method=method,
                url=path,
                params=params,
                json=json_data,
            )
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(self.service_id, self._timeout) from e
        except httpx.RequestError as e:
            raise NetworkError(
                f"{method} {path} failed: {e}",
                code=_network_code(e),
                service_id=self.service_id,
            ) from e

        if response.is_error:
            raise self._error_from_response(response)

        if not response.content:
            return None
        return response.json()

    def operation(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json_data: dict[str, Any] | None = None,
    ) -> Callable[[], Awaitable[Any]]:
        """Bind a request into a zero-argument operation."""

        async def run() -> Any:
            return await self.request(method, path, params=params, json_data=json_data)

        return run

    async def get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        return await self.request("GET", path, params=params)

    def _error_from_response(self, response: httpx.Response) -> RemoteError:
        retry_after = _parse_retry_after(response.headers.get("retry-after"))
        code: str | None = None
        message = response.text[:200]

        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            code = body.get("code")
            message = body.get("message") or message

        if response.status_code == 429:
            error: RemoteError = RateLimitError(self.service_id, retry_after)
        else:
            error = RemoteError(
                f"HTTP {response.status_code}: {message}",
                status=response.status_code,
                code=code,
                retry_after=retry_after,
                service_id=self.service_id,
            )

        logger.debug(
            f"[HttpTransport] {response.request.method} {response.request.url} "
            f"-> {response.status_code} ({code or 'no code'})"
        )
        return error

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> "HttpTransport":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
