"""Tests for the analytics API client."""

import json

import httpx
import pytest

from codemie_sync.api.client import AnalyticsApiClient
from codemie_sync.errors import SyncApiError

pytestmark = pytest.mark.unit

BASE_URL = "https://codemie.example.com/api/"


def make_client(handler, **kwargs):
    return AnalyticsApiClient(
        base_url=BASE_URL,
        client_type="codemie-cli",
        version="1.2.3",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_post_metrics_with_cookies():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={"accepted": 2})

    client = make_client(handler, cookies="session=abc; csrf=xyz")
    result = await client.post_metrics({"metrics": [], "recordIds": ["r1", "r2"]})

    assert result == {"accepted": 2}
    [request] = requests
    assert str(request.url) == "https://codemie.example.com/api/v1/metrics"
    assert request.headers["Cookie"] == "session=abc; csrf=xyz"
    assert request.headers["X-CodeMie-Client"] == "codemie-cli"
    assert request.headers["X-CodeMie-CLI"] == "codemie-cli/1.2.3"
    assert "X-API-Key" not in request.headers
    assert json.loads(request.content)["recordIds"] == ["r1", "r2"]


@pytest.mark.asyncio
async def test_api_key_replaces_cookies():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(204)

    client = make_client(handler, cookies="session=abc", api_key="dev-key")
    assert await client.post_metrics({}) == {}

    headers = requests[0].headers
    assert headers["X-API-Key"] == "dev-key"
    assert headers["user-id"] == "dev-user"
    assert "Cookie" not in headers


@pytest.mark.asyncio
async def test_conversation_history_endpoint():
    urls = []

    def handler(request):
        urls.append(str(request.url))
        return httpx.Response(200, json=[1, 2])

    client = make_client(handler, cookies="c=1")
    result = await client.post_conversation_history("conv-9", {"messages": []})

    assert urls == ["https://codemie.example.com/api/v1/conversations/conv-9/history"]
    assert result == {"data": [1, 2]}


@pytest.mark.asyncio
async def test_http_error_raises_sync_api_error():
    client = make_client(lambda request: httpx.Response(503, text="unavailable"))

    with pytest.raises(SyncApiError) as exc_info:
        await client.post_metrics({})

    assert exc_info.value.status_code == 503


@pytest.mark.asyncio
async def test_transport_error_raises_sync_api_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(SyncApiError, match="connection refused") as exc_info:
        await make_client(handler).post_metrics({})

    assert exc_info.value.status_code is None
