"""Upload and download progress reporting.

When ``on_request_stream`` is set, a string or bytes request body is sent as
an async stream of chunks and the hook fires once per chunk. When
``on_response_stream`` is set, the hook fires once per chunk of the response
body.
"""

from collections.abc import AsyncIterator

import httpx
from pydantic import BaseModel

from .hooks import RequestContext, RequestStreamContext, ResponseStreamContext, trigger

CHUNK_SIZE = 64 * 1024


class StreamProgressEvent(BaseModel):
    """Progress of a request or response body transfer.

    Attributes:
        chunk: The bytes transferred by this step.
        total_bytes: The expected body size, 0 when unknown.
        transferred_bytes: The bytes transferred so far.
        progress: Percentage done, rounded, 0 when the size is unknown.
    """

    chunk: bytes
    total_bytes: int
    transferred_bytes: int
    progress: int


def calculate_progress(transferred_bytes: int, total_bytes: int) -> int:
    if total_bytes <= 0:
        return 0
    return round(transferred_bytes / total_bytes * 100)


def _iter_chunks(content: bytes, chunk_size: int = CHUNK_SIZE):
    for start in range(0, len(content), chunk_size):
        yield content[start : start + chunk_size]


async def to_streamable_request(context: RequestContext) -> None:
    """Replaces a str or bytes body by a progress-reporting async stream."""
    options = context.options
    request = context.request
    if options.on_request_stream is None or not isinstance(request.body, (str, bytes)):
        return

    content = request.body.encode() if isinstance(request.body, str) else request.body
    total_bytes = len(content)

    async def body_stream() -> AsyncIterator[bytes]:
        transferred_bytes = 0
        for chunk in _iter_chunks(content):
            transferred_bytes += len(chunk)
            event = StreamProgressEvent(
                chunk=chunk,
                total_bytes=total_bytes,
                transferred_bytes=transferred_bytes,
                progress=calculate_progress(transferred_bytes, total_bytes),
            )
            await trigger(
                options.on_request_stream,
                RequestStreamContext(**dict(context), event=event),
            )
            yield chunk

    headers = dict(request.headers or {})
    headers["Content-Length"] = str(total_bytes)
    request.headers = headers
    request.body = body_stream()


async def to_streamable_response(
    context: RequestContext, response: httpx.Response
) -> httpx.Response:
    """Reports the download progress of ``response`` through ``on_response_stream``."""
    options = context.options
    if options.on_response_stream is None:
        return response

    content = await response.aread()
    header_length = response.headers.get("content-length")
    total_bytes = int(header_length) if header_length else len(content)

    transferred_bytes = 0
    for chunk in _iter_chunks(content):
        transferred_bytes += len(chunk)
        event = StreamProgressEvent(
            chunk=chunk,
            total_bytes=total_bytes,
            transferred_bytes=transferred_bytes,
            progress=calculate_progress(transferred_bytes, total_bytes),
        )
        await trigger(
            options.on_response_stream,
            ResponseStreamContext(**dict(context), event=event, response=response),
        )

    return response
