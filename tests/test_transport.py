"""Tests for the HTTP transport error mapping."""

import httpx
import pytest

from notion_access.services.errors import (
    NetworkError,
    RateLimitError,
    RemoteError,
    RequestTimeoutError,
)
from notion_access.services.retry import is_retryable_error
from notion_access.services.transport import HttpTransport


def make_transport(handler) -> HttpTransport:
    return HttpTransport(
        "https://api.example.com/v1",
        token="secret",
        headers={"Notion-Version": "2022-06-28"},
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_successful_request_returns_json() -> None:
    """Test JSON bodies are decoded and auth headers sent."""
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers["Authorization"]
        seen["version"] = request.headers["Notion-Version"]
        seen["url"] = str(request.url)
        return httpx.Response(200, json={"object": "page", "id": "p1"})

    async with make_transport(handler) as transport:
        data = await transport.get("/pages/p1", params={"filter": "x"})

    assert data == {"object": "page", "id": "p1"}
    assert seen["auth"] == "Bearer secret"
    assert seen["version"] == "2022-06-28"
    assert seen["url"] == "https://api.example.com/v1/pages/p1?filter=x"


@pytest.mark.asyncio
async def test_error_body_becomes_remote_error() -> None:
    """Test API error bodies fill status, code and message."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            404,
            json={"object": "error", "status": 404, "code": "object_not_found", "message": "Not here"},
        )

    transport = make_transport(handler)
    with pytest.raises(RemoteError) as exc_info:
        await transport.get("/pages/missing")
    await transport.close()

    error = exc_info.value
    assert error.status == 404
    assert error.code == "object_not_found"
    assert "Not here" in str(error)
    assert not is_retryable_error(error)


@pytest.mark.asyncio
async def test_rate_limit_carries_retry_after() -> None:
    """Test 429 responses become RateLimitError with the hint."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            429,
            headers={"Retry-After": "7"},
            json={"object": "error", "status": 429, "code": "rate_limited", "message": "slow down"},
        )

    transport = make_transport(handler)
    with pytest.raises(RateLimitError) as exc_info:
        await transport.request("POST", "/search", json_data={"query": "x"})
    await transport.close()

    assert exc_info.value.retry_after == 7.0
    assert exc_info.value.status == 429
    assert is_retryable_error(exc_info.value)


@pytest.mark.asyncio
async def test_non_json_error_body() -> None:
    """Test a plain-text 502 still maps to a retryable RemoteError."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="Bad Gateway")

    transport = make_transport(handler)
    with pytest.raises(RemoteError) as exc_info:
        await transport.get("/users")
    await transport.close()

    assert exc_info.value.status == 502
    assert exc_info.value.code is None
    assert is_retryable_error(exc_info.value)


@pytest.mark.asyncio
async def test_timeout_maps_to_request_timeout_error() -> None:
    """Test httpx timeouts become RequestTimeoutError."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    transport = make_transport(handler)
    with pytest.raises(RequestTimeoutError) as exc_info:
        await transport.get("/blocks/b1")
    await transport.close()

    assert exc_info.value.code == "ETIMEDOUT"
    assert exc_info.value.status is None
    assert is_retryable_error(exc_info.value)


@pytest.mark.asyncio
async def test_connect_error_maps_to_network_error() -> None:
    """Test connection failures become NetworkError."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection reset", request=request)

    transport = make_transport(handler)
    with pytest.raises(NetworkError) as exc_info:
        await transport.get("/blocks/b1")
    await transport.close()

    assert exc_info.value.code == "ECONNRESET"
    assert is_retryable_error(exc_info.value)


@pytest.mark.asyncio
async def test_operation_binds_request() -> None:
    """Test operation() returns a reusable zero-argument coroutine factory."""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.method)
        return httpx.Response(200, json={"ok": True})

    transport = make_transport(handler)
    operation = transport.operation("PATCH", "/pages/p1", json_data={"archived": True})

    assert await operation() == {"ok": True}
    assert await operation() == {"ok": True}
    assert calls == ["PATCH", "PATCH"]
    await transport.close()


@pytest.mark.asyncio
async def test_empty_body_returns_none() -> None:
    """Test responses without content decode to None."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(204)

    transport = make_transport(handler)
    assert await transport.request("DELETE", "/blocks/b1") is None
    await transport.close()
