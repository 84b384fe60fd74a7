"""Tests for the default httpx transport in callfabric."""

import json

import httpx
import pytest

from callfabric.exceptions import CallFabricError, NetworkError, RequestTimeoutError
from callfabric.transport import HttpxTransport
from callfabric.types import RequestOptions


@pytest.fixture
def transport(settings):
    """Fixture for an HttpxTransport owning its httpx client."""
    return HttpxTransport(settings)


@pytest.mark.asyncio
async def test_sends_request_and_returns_response(transport, httpx_mock, settings):
    """Test that the request is sent as built and the response returned."""
    httpx_mock.add_response(
        method="POST",
        url="https://api.example.com/items",
        status_code=201,
        json={"id": 1},
    )

    response = await transport(
        "https://api.example.com/items",
        RequestOptions(method="POST", headers={"X-Trace": "1"}, body={"name": "a"}),
    )

    assert response.status_code == 201
    assert response.json() == {"id": 1}
    sent = httpx_mock.get_request()
    assert sent.headers["X-Trace"] == "1"
    assert sent.headers["User-Agent"] == settings.user_agent
    assert json.loads(sent.content) == {"name": "a"}


@pytest.mark.asyncio
async def test_error_status_is_returned_not_raised(transport, httpx_mock):
    """Test that non-2xx responses are handed back to the caller."""
    httpx_mock.add_response(status_code=503)

    response = await transport("https://api.example.com/items", RequestOptions())

    assert response.status_code == 503


@pytest.mark.asyncio
async def test_timeout_maps_to_request_timeout_error(transport, httpx_mock):
    """Test that httpx timeouts raise RequestTimeoutError."""
    httpx_mock.add_exception(httpx.ReadTimeout("Read timed out"))

    with pytest.raises(RequestTimeoutError) as exc_info:
        await transport("https://api.example.com/slow", RequestOptions())

    assert str(exc_info.value.request.url) == "https://api.example.com/slow"


@pytest.mark.asyncio
async def test_connect_error_maps_to_network_error(transport, httpx_mock):
    """Test that httpx network failures raise NetworkError."""
    httpx_mock.add_exception(httpx.ConnectError("Connection refused"))

    with pytest.raises(NetworkError, match="Connection refused"):
        await transport("https://api.example.com/items", RequestOptions())


@pytest.mark.asyncio
async def test_other_request_errors_map_to_base_error(transport, httpx_mock):
    """Test that remaining httpx request errors raise CallFabricError."""
    httpx_mock.add_exception(httpx.UnsupportedProtocol("Unsupported scheme"))

    with pytest.raises(CallFabricError) as exc_info:
        await transport("https://api.example.com/items", RequestOptions())

    assert not isinstance(exc_info.value, (NetworkError, RequestTimeoutError))


@pytest.mark.asyncio
async def test_injected_client_is_not_closed(settings):
    """Test that aclose leaves a caller-provided httpx client open."""
    http_client = httpx.AsyncClient()
    transport = HttpxTransport(settings, http_client=http_client)

    await transport.aclose()

    assert transport.http_client is http_client
    assert not http_client.is_closed
    await http_client.aclose()


@pytest.mark.asyncio
async def test_owned_client_is_closed(settings):
    """Test that aclose closes the httpx client the transport created."""
    transport = HttpxTransport(settings)

    await transport.aclose()

    assert transport.http_client.is_closed
