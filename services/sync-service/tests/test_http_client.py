import httpx
import pytest
from http_client import CORRELATION_ID_HEADER, ResilientHttpClient


@pytest.mark.anyio
async def test_resilient_http_client_successful_get_injects_request_id() -> None:
    captured_headers: dict[str, str] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured_headers.update(request.headers)
        return httpx.Response(200, json={"files": []})

    client = ResilientHttpClient(max_attempts=1, backoff_factor=0, transport=httpx.MockTransport(handler))

    response, metrics = await client.get("https://example.org/drive/v3/files", request_id="req-123")

    assert response.status_code == 200
    assert response.json() == {"files": []}
    assert captured_headers.get(CORRELATION_ID_HEADER) == "req-123"
    assert metrics.attempts == 1
    assert metrics.latency_ms >= 0


@pytest.mark.anyio
async def test_resilient_http_client_retries_idempotent_method_on_retryable_status() -> None:
    call_count = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal call_count
        call_count += 1
        if call_count < 2:
            return httpx.Response(503, json={"error": "temporary"})
        return httpx.Response(200, json={"id": "file-1"})

    client = ResilientHttpClient(max_attempts=3, backoff_factor=0, transport=httpx.MockTransport(handler))

    response, metrics = await client.patch("https://example.org/upload/drive/v3/files/file-1", content=b"{}")

    assert response.status_code == 200
    assert metrics.attempts == 2


@pytest.mark.anyio
async def test_resilient_http_client_never_replays_post() -> None:
    call_count = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal call_count
        call_count += 1
        return httpx.Response(503, json={"error": "temporary"})

    client = ResilientHttpClient(max_attempts=3, backoff_factor=0, transport=httpx.MockTransport(handler))

    with pytest.raises(httpx.HTTPStatusError):
        await client.post("https://example.org/upload/drive/v3/files", content=b"body")

    assert call_count == 1


@pytest.mark.anyio
async def test_resilient_http_client_does_not_retry_client_errors() -> None:
    call_count = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal call_count
        call_count += 1
        return httpx.Response(404, json={"error": "not found"})

    client = ResilientHttpClient(max_attempts=3, backoff_factor=0, transport=httpx.MockTransport(handler))

    with pytest.raises(httpx.HTTPStatusError) as excinfo:
        await client.get("https://example.org/drive/v3/files/missing")

    assert excinfo.value.response.status_code == 404
    assert call_count == 1


@pytest.mark.anyio
async def test_resilient_http_client_raises_after_request_errors() -> None:
    call_count = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal call_count
        call_count += 1
        raise httpx.ConnectError("boom", request=request)

    client = ResilientHttpClient(max_attempts=2, backoff_factor=0, transport=httpx.MockTransport(handler))

    with pytest.raises(httpx.RequestError):
        await client.get("https://example.org/fail", request_id="req-789")

    assert call_count == 2
