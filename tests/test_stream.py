"""Tests for upload and download progress reporting in callfabric."""

import httpx
import pytest

from callfabric.client import CallClient
from callfabric.stream import calculate_progress


class ConsumingTransport:
    """Reads the whole request body before answering, like a real transport."""

    def __init__(self, response_content: bytes = b'{"ok": true}'):
        self.response_content = response_content
        self.received = b""

    async def __call__(self, url, request):
        body = request.body
        if hasattr(body, "__aiter__"):
            async for chunk in body:
                self.received += chunk
        elif body is not None:
            self.received = body.encode() if isinstance(body, str) else body
        return httpx.Response(
            200,
            content=self.response_content,
            headers={"Content-Type": "application/json"},
            request=httpx.Request(request.method or "GET", url),
        )


@pytest.mark.parametrize(
    "transferred, total, expected",
    [(0, 100, 0), (50, 100, 50), (1, 3, 33), (100, 100, 100), (10, 0, 0)],
)
def test_calculate_progress(transferred, total, expected):
    """Test progress percentages, including an unknown total size."""
    assert calculate_progress(transferred, total) == expected


@pytest.mark.asyncio
async def test_request_stream_reports_upload_progress(settings):
    """Test that a string body is streamed and each chunk reported."""
    transport = ConsumingTransport()
    events = []
    client = CallClient(transport=transport, settings=settings)
    body = "x" * 100

    result = await client.call(
        "https://api.example.com/upload",
        method="POST",
        body=body,
        on_request_stream=lambda ctx: events.append(ctx.event),
    )

    assert result.error is None
    assert transport.received == body.encode()
    assert len(events) == 1
    assert events[0].total_bytes == 100
    assert events[0].transferred_bytes == 100
    assert events[0].progress == 100


@pytest.mark.asyncio
async def test_request_body_untouched_without_stream_hook(settings):
    """Test that bodies are sent as-is when no request stream hook is set."""
    transport = ConsumingTransport()
    client = CallClient(transport=transport, settings=settings)

    await client.call("https://api.example.com/upload", method="POST", body="plain")

    assert transport.received == b"plain"


@pytest.mark.asyncio
async def test_response_stream_reports_download_progress(settings):
    """Test that response chunks are reported and the data still parsed."""
    content = b'{"items": [' + b",".join([b"1"] * 40000) + b"]}"
    transport = ConsumingTransport(response_content=content)
    events = []
    client = CallClient(transport=transport, settings=settings)

    result = await client.call(
        "https://api.example.com/download",
        on_response_stream=lambda ctx: events.append(ctx.event),
    )

    assert len(result.data["items"]) == 40000
    assert len(events) == 2
    assert events[-1].transferred_bytes == len(content)
    assert events[-1].total_bytes == len(content)
    assert events[-1].progress == 100
    assert b"".join(event.chunk for event in events) == content
