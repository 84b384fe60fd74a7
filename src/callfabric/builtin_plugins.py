# callfabric/builtin_plugins.py
"""Ready-made plugins shipped with callfabric.

* :func:`logger_plugin` logs the lifecycle of every call through loguru.
* :func:`caching_plugin` serves repeated successful GET calls from an
  in-memory ``cachetools.TTLCache``.
"""

import hashlib
from typing import Literal

import httpx
from cachetools import TTLCache  # type: ignore[import-untyped]
from pydantic import BaseModel

from .hooks import (
    ErrorContext,
    RequestContext,
    RetryContext,
    SuccessContext,
)
from .log_config import logger
from .middlewares import MiddlewareContext
from .plugins import Plugin
from .types import RequestOptions, Transport


def logger_plugin(
    *, enabled: bool = True, mode: Literal["basic", "verbose"] = "basic"
) -> Plugin:
    """Creates a plugin logging requests, successes, errors and retries.

    Args:
        enabled: When False the plugin registers no hooks.
        mode: ``"verbose"`` also logs request headers and response data.
    """
    verbose = mode == "verbose"

    def on_request(ctx: RequestContext) -> None:
        logger.info(f"Request being sent to: {ctx.options.full_url}")
        if verbose:
            logger.debug(f"Request headers: {ctx.request.headers}")

    def on_success(ctx: SuccessContext) -> None:
        logger.success(
            f"Request succeeded: {ctx.options.full_url} ({ctx.response.status_code})"
        )
        if verbose:
            logger.debug(f"Response data: {ctx.data!r}")

    def on_error(ctx: ErrorContext) -> None:
        status = f" ({ctx.response.status_code})" if ctx.response is not None else ""
        logger.error(
            f"Request to {ctx.options.full_url} failed{status}: "
            f"{ctx.error.name}: {ctx.error.message}"
        )
        if verbose and ctx.error.error_data is not False:
            logger.debug(f"Error data: {ctx.error.error_data!r}")

    def on_retry(ctx: RetryContext) -> None:
        logger.warning(
            f"Retrying request to {ctx.options.full_url} "
            f"(attempt {ctx.retry_attempt_count})"
        )

    hooks = (
        {
            "on_request": on_request,
            "on_success": on_success,
            "on_error": on_error,
            "on_retry": on_retry,
        }
        if enabled
        else None
    )

    return Plugin(
        id="callfabric-logger",
        name="Logger",
        version="0.1.0",
        description="Logs the lifecycle of every call",
        hooks=hooks,
    )


class CachingOptions(BaseModel):
    """Per-call options understood by :func:`caching_plugin`."""

    cache_policy: Literal["on", "off"] | None = None


def _cache_key(method: str, url: str) -> str:
    return hashlib.md5(f"{method.upper()}|{url}".encode()).hexdigest()


def caching_plugin(
    *,
    cache_lifetime: float = 300,
    cache_policy: Literal["on", "off"] = "on",
    max_size: int = 128,
) -> Plugin:
    """Creates a plugin caching successful GET responses in memory.

    The cache is shared by every call using the returned plugin. A call may
    pass ``cache_policy="off"`` to bypass it.

    Args:
        cache_lifetime: Seconds a cached response stays valid.
        cache_policy: The default policy for calls that do not set one.
        max_size: Maximum number of cached responses.
    """
    cache: TTLCache[str, tuple[int, dict[str, str], bytes]] = TTLCache(
        maxsize=max_size, ttl=cache_lifetime
    )
    logger.debug(
        f"Response caching plugin created. Max size: {max_size}, TTL: {cache_lifetime}s"
    )

    def fetch_middleware(context: MiddlewareContext) -> Transport:
        policy = getattr(context.options, "cache_policy", None) or cache_policy
        transport = context.transport
        if policy == "off":
            return transport

        async def cached_transport(url: str, request: RequestOptions) -> httpx.Response:
            method = (request.method or "GET").upper()
            if method != "GET":
                return await transport(url, request)

            key = _cache_key(method, url)
            cached = cache.get(key)
            if cached is not None:
                logger.debug(f"Cache hit for key: {key}")
                status_code, headers, content = cached
                return httpx.Response(
                    status_code,
                    headers=headers,
                    content=content,
                    request=httpx.Request(method, url),
                )

            response = await transport(url, request)
            if response.is_success:
                await response.aread()
                # The stored body is already decoded
                headers = {
                    name: value
                    for name, value in response.headers.items()
                    if name not in ("content-encoding", "content-length")
                }
                cache[key] = (response.status_code, headers, response.content)
                logger.debug(f"Cached response for key: {key}")
            return response

        return cached_transport

    return Plugin(
        id="callfabric-caching",
        name="Caching",
        version="0.1.0",
        description="Serves repeated GET calls from an in-memory TTL cache",
        define_extra_options=CachingOptions,
        middlewares={"fetch_middleware": fetch_middleware},
    )
