# callfabric/types.py
"""Core type definitions and data structures for the callfabric framework.

This module defines the request options sent to a transport, the call
options steering the orchestration pipeline, and type aliases for the
transport, middleware and hook callables.
"""

from collections.abc import Awaitable, Callable
from typing import Any, Literal

import httpx
from pydantic import BaseModel, ConfigDict, Field

from .cancellation import CancelToken


class RequestOptions(BaseModel):
    """The parts of a call that describe the outgoing request itself."""

    method: str | None = None
    headers: dict[str, str] | Callable[..., Any] | None = None
    body: Any = None
    signal: CancelToken | None = None

    model_config = ConfigDict(extra="allow", arbitrary_types_allowed=True)

    def to_httpx_kwargs(self, url: str) -> dict[str, Any]:
        """Returns the keyword arguments describing this request to httpx."""
        body = self.body
        content = None
        json_data = None
        if isinstance(body, (dict, list)):
            json_data = body
        elif isinstance(body, BaseModel):
            json_data = body.model_dump(mode="json")
        elif body is not None:
            content = body

        return {
            "method": self.method or "GET",
            "url": url,
            "headers": self.headers if isinstance(self.headers, dict) else None,
            "content": content,
            "json": json_data,
        }

    def build_request(self, url: str) -> httpx.Request:
        """Builds an httpx.Request object from the stored data."""
        return httpx.Request(**self.to_httpx_kwargs(url))


FETCH_SPECIFIC_KEYS = frozenset(RequestOptions.model_fields)


Transport = Callable[[str, RequestOptions], Awaitable[httpx.Response]]
"""Type alias for a transport function.

A transport receives the full URL and the request options of a call and
returns the raw ``httpx.Response``. The default transport is
:class:`callfabric.transport.HttpxTransport`.
"""

Middleware = Callable[[Any], Transport]
"""Type alias for a fetch middleware.

A middleware receives a :class:`callfabric.middlewares.MiddlewareContext`
(the request context plus the currently resolved ``transport``) and returns
the transport to use instead. It may wrap the given transport or replace it
entirely.
"""

Hook = Callable[[Any], Awaitable[None] | None]
"""Type alias for a lifecycle hook.

Hooks receive the context object of their event (see
:mod:`callfabric.hooks`) and may be plain or coroutine functions. A hook may
mutate ``context.options`` and ``context.request`` during the request
phase; its return value is ignored.
"""

HookOrHooks = Hook | list[Hook] | None


class HookOptions(BaseModel):
    """Lifecycle hooks of a call, each a single hook or a list of hooks."""

    on_request: HookOrHooks = None
    on_request_ready: HookOrHooks = None
    on_request_error: HookOrHooks = None
    on_request_stream: HookOrHooks = None
    on_response: HookOrHooks = None
    on_response_error: HookOrHooks = None
    on_response_stream: HookOrHooks = None
    on_retry: HookOrHooks = None
    on_success: HookOrHooks = None
    on_validation_error: HookOrHooks = None
    on_error: HookOrHooks = None


class MiddlewareOptions(BaseModel):
    fetch_middleware: Middleware | None = None


class DedupeOptions(BaseModel):
    """Deduplication settings; strategy, key and scope key may be callables
    over the request context."""

    dedupe_strategy: Literal["cancel", "defer", "none"] | Callable[..., str] = "cancel"
    dedupe_key: str | Callable[..., str | None] | None = None
    dedupe_cache_scope: Literal["local", "global"] = "local"
    dedupe_cache_scope_key: str | Callable[..., str] = "default"


class RetryConfig(BaseModel):
    """Grouped retry settings, used for any flat ``retry_*`` option left unset."""

    attempts: int | None = None
    strategy: Literal["linear", "exponential"] | None = None
    delay: float | Callable[[int], float] | None = None
    max_delay: float | None = None
    condition: Callable[..., Any] | None = None
    methods: list[str] | None = None
    status_codes: list[int] | None = None


class RetryOptions(BaseModel):
    retry: RetryConfig | None = None
    retry_attempts: int | None = None
    retry_strategy: Literal["linear", "exponential"] | None = None
    retry_delay: float | Callable[[int], float] | None = None
    retry_max_delay: float | None = None
    retry_condition: Callable[..., Any] | None = None
    retry_methods: list[str] | None = None
    retry_status_codes: list[int] | None = None
    retry_attempt_count: int | None = None


class ResultOptions(BaseModel):
    result_mode: Literal["all", "only_data"] = "all"
    throw_on_error: bool | Callable[..., bool] = False
    response_type: Literal["json", "text", "bytes"] | None = None
    response_parser: Callable[[str], Any] | None = None
    default_http_error_message: str | Callable[..., str | None] | None = None


class SchemaOptions(BaseModel):
    schema_: Any = Field(default=None, alias="schema")
    schema_config: Any = None


class CallOptions(
    HookOptions,
    MiddlewareOptions,
    DedupeOptions,
    RetryOptions,
    ResultOptions,
    SchemaOptions,
):
    """The effective, merged options of a single call.

    Options unknown to the pipeline (for example those declared by a plugin's
    ``define_extra_options``) are kept as extra attributes.
    """

    base_url: str = ""
    timeout: float | None = None
    auth: Any = None
    params: dict[str, Any] | list[Any] | tuple[Any, ...] | None = None
    query: dict[str, Any] | None = None
    meta: dict[str, Any] | None = None
    plugins: list[Any] | Callable[..., list[Any]] | None = None
    transport: Transport | None = None
    body_serializer: Callable[[Any], str] | None = None
    skip_auto_merge_for: Literal["all", "options", "request"] | None = None
    hooks_execution_mode: Literal["parallel", "sequential"] = "parallel"
    hooks_registration_order: Literal["plugins_first", "main_first"] = "plugins_first"

    full_url: str | None = None
    init_url: str | None = None
    init_url_normalized: str | None = None

    model_config = ConfigDict(
        extra="allow", arbitrary_types_allowed=True, populate_by_name=True
    )

