"""Tests for fetch middleware composition in callfabric."""

import httpx
import pytest

from callfabric.client import CallClient
from callfabric.middlewares import MiddlewareContext, compose_middlewares_from_list
from callfabric.plugins import Plugin
from callfabric.types import CallOptions, RequestOptions


def tagging_middleware(log, name):
    """Builds a middleware that logs its name before delegating."""

    def middleware(ctx):
        inner = ctx.transport

        async def transport(url, request):
            log.append(name)
            return await inner(url, request)

        return transport

    return middleware


def test_compose_empty_list_returns_none():
    """Test that composing no middlewares yields None."""
    assert compose_middlewares_from_list([]) is None
    assert compose_middlewares_from_list([None, None]) is None


@pytest.mark.asyncio
async def test_last_registered_is_outermost():
    """Test that the last registered middleware runs first."""
    log = []

    async def base_transport(url, request):
        log.append("transport")
        return httpx.Response(204)

    composed = compose_middlewares_from_list(
        [tagging_middleware(log, "first"), None, tagging_middleware(log, "second")]
    )
    context = MiddlewareContext(
        options=CallOptions(), request=RequestOptions(), transport=base_transport
    )

    response = await composed(context)("https://api.example.com", RequestOptions())

    assert response.status_code == 204
    assert log == ["second", "first", "transport"]


@pytest.mark.asyncio
async def test_plugin_base_instance_order(settings, fake_transport):
    """Test that instance middleware wraps base middleware, which wraps plugins."""
    log = []
    plugin = Plugin(
        id="mw",
        name="Middleware plugin",
        middlewares={"fetch_middleware": tagging_middleware(log, "plugin")},
    )
    client = CallClient(
        transport=fake_transport,
        settings=settings,
        plugins=[plugin],
        fetch_middleware=tagging_middleware(log, "base"),
    )

    await client.call(
        "https://api.example.com/a", fetch_middleware=tagging_middleware(log, "instance")
    )

    assert log == ["instance", "base", "plugin"]
    assert len(fake_transport.calls) == 1


@pytest.mark.asyncio
async def test_middleware_can_short_circuit(settings, fake_transport):
    """Test that a middleware may answer without calling the transport."""

    def offline(ctx):
        async def transport(url, request):
            return httpx.Response(200, json={"source": "offline"})

        return transport

    client = CallClient(
        transport=fake_transport, settings=settings, fetch_middleware=offline
    )

    result = await client.call("https://api.example.com/a")

    assert result.data == {"source": "offline"}
    assert fake_transport.calls == []


@pytest.mark.asyncio
async def test_middleware_sees_request_context(settings, fake_transport):
    """Test that middlewares receive the call options and request."""
    seen = {}

    def inspecting(ctx):
        seen["full_url"] = ctx.options.full_url
        seen["method"] = ctx.request.method
        return ctx.transport

    client = CallClient(transport=fake_transport, settings=settings)

    await client.call("@patch/items/1", base_url="https://api.example.com", fetch_middleware=inspecting)

    assert seen == {"full_url": "https://api.example.com/items/1", "method": "PATCH"}
