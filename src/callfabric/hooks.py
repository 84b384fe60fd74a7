"""Lifecycle hook contexts and composition.

Every lifecycle event of a call may have several handlers, coming from
plugins and from the client and call configuration. They are composed into a
single coroutine function per event with :func:`compose_hooks_from_list`, and
the pipeline then fires that one callable with the event's context:

* :class:`RequestContext` -- ``on_request`` and ``on_request_ready``.
* :class:`SuccessContext` -- ``on_success``.
* :class:`ResponseContext` -- ``on_response``, for successes and HTTP errors.
* :class:`ErrorContext` -- ``on_error``, ``on_request_error``,
  ``on_response_error`` and ``on_validation_error``.
* :class:`RetryContext` -- ``on_retry``.
* :class:`RequestStreamContext` / :class:`ResponseStreamContext` --
  ``on_request_stream`` and ``on_response_stream``.
"""

import asyncio
import inspect
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, Literal

import httpx
from pydantic import BaseModel, ConfigDict, Field

from .log_config import logger
from .result import CallResult, ErrorDetails, resolve_error_result
from .types import CallOptions, RequestOptions

HOOK_NAMES = (
    "on_error",
    "on_request",
    "on_request_error",
    "on_request_ready",
    "on_request_stream",
    "on_response",
    "on_response_error",
    "on_response_stream",
    "on_retry",
    "on_success",
    "on_validation_error",
)


class RequestContext(BaseModel):
    """State of a call, shared by every hook.

    Attributes:
        base_config: The client-wide configuration.
        config: The per-call configuration as passed to the call.
        options: The merged call options. Mutable during the request phase.
        request: The merged request options. Mutable during the request phase.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    base_config: dict[str, Any] = Field(default_factory=dict)
    config: dict[str, Any] = Field(default_factory=dict)
    options: CallOptions
    request: RequestOptions


class SuccessContext(RequestContext):
    data: Any = None
    response: httpx.Response


class ResponseContext(RequestContext):
    data: Any = None
    error: ErrorDetails | None = None
    response: httpx.Response | None = None


class ErrorContext(RequestContext):
    error: ErrorDetails
    response: httpx.Response | None = None


class RetryContext(ErrorContext):
    retry_attempt_count: int


class RequestStreamContext(RequestContext):
    event: Any
    http_request: httpx.Request | None = None


class ResponseStreamContext(RequestContext):
    event: Any
    response: httpx.Response


class HookInfo(BaseModel):
    """How errors raised by hooks in the error path are handled."""

    result_mode: Literal["all", "only_data"] = "all"
    should_throw_on_error: bool = False


async def _run_hook(hook: Callable[[Any], Any], context: Any) -> None:
    result = hook(context)
    if inspect.isawaitable(result):
        await result


def compose_hooks_from_list(
    hooks: Sequence[Callable[[Any], Any] | None],
    hooks_execution_mode: Literal["parallel", "sequential"] = "parallel",
) -> Callable[[Any], Awaitable[None]]:
    """Composes several handlers of one event into a single coroutine function.

    In ``"parallel"`` mode all handlers start together and the composed hook
    completes when every one of them has finished; the first failure is then
    raised. In ``"sequential"`` mode handlers run one after another and a
    failure stops the remaining ones.
    """
    hook_list = [hook for hook in hooks if hook is not None]

    async def composed_hook(context: Any) -> None:
        if hooks_execution_mode == "sequential":
            for hook in hook_list:
                await _run_hook(hook, context)
            return

        results = await asyncio.gather(
            *(_run_hook(hook, context) for hook in hook_list),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result

    return composed_hook


def trigger(hook: Callable[[Any], Any] | None, context: Any) -> Awaitable[None] | None:
    """Starts a composed hook if it is set, returning the awaitable to wait on."""
    if hook is None:
        return None
    return _run_hook(hook, context)


async def execute_hooks(*invocations: Awaitable[None] | None) -> None:
    """Waits for hook invocations started with :func:`trigger`."""
    pending = [invocation for invocation in invocations if invocation is not None]
    if pending:
        await asyncio.gather(*pending)


async def execute_hooks_in_catch_block(
    invocations: Sequence[Awaitable[None] | None], hook_info: HookInfo
) -> tuple[bool, CallResult | Any]:
    """Runs the hooks of the error path.

    A hook failure replaces the error being handled: it is raised when the
    call throws on error, and otherwise returned as the call's result.

    Returns:
        ``(failed, error_result)``; ``error_result`` is the result built from
        the hook failure, or None when every hook succeeded.
    """
    try:
        await execute_hooks(*invocations)
        return False, None
    except Exception as hook_error:
        if hook_info.should_throw_on_error:
            raise
        logger.warning(f"Hook failed while handling an error: {hook_error!r}")
        _, _, error_result = resolve_error_result(
            hook_error, result_mode=hook_info.result_mode
        )
        return True, error_result
