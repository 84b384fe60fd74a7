"""Deduplication of concurrent identical calls.

Calls are identified by a dedupe key: the ``dedupe_key`` option, or a hash of
the method, full URL, body and headers. While a call is in flight, its
record (cancel token plus response future) is kept in a scope:

* ``"local"`` -- the calling client's own scope;
* ``"global"`` -- a named scope of a :class:`DedupeRegistry`, shared by every
  client holding that registry.

A new call with the key of an in-flight record then follows the
``dedupe_strategy``:

* ``"cancel"`` -- the previous call is cancelled and the new one proceeds;
* ``"defer"`` -- the new call waits for the previous call's response;
* ``"none"`` -- no deduplication.
"""

import asyncio
from typing import Any

import httpx

from .cancellation import CancelToken, race_with_token
from .exceptions import ConfigurationError, RequestAbortedError
from .hooks import RequestContext
from .log_config import logger
from .types import CallOptions, RequestOptions, Transport
from .utils import deterministic_hash

DEDUPE_STRATEGIES = ("cancel", "defer", "none")

# Minimal scheduling delay before looking up in-flight records, so calls
# fired in the same event loop iteration see each other.
DEDUPE_DELAY = 0.001


class DedupeRecord:
    """An in-flight call: its cancel token and the future of its response."""

    def __init__(self, token: CancelToken, response_future: asyncio.Future):
        self.token = token
        self.response_future = response_future


DedupeScope = dict[str, DedupeRecord]


class DedupeRegistry:
    """Holds the named global dedupe scopes shared between clients."""

    def __init__(self) -> None:
        self._scopes: dict[str, DedupeScope] = {}

    def get_scope(self, scope_key: str) -> DedupeScope:
        """Returns the scope named ``scope_key``, creating it on first use."""
        if scope_key not in self._scopes:
            self._scopes[scope_key] = {}
        return self._scopes[scope_key]

    def clear(self) -> None:
        self._scopes.clear()


default_registry = DedupeRegistry()


def _resolve(value: Any, context: RequestContext) -> Any:
    return value(context) if callable(value) else value


def get_default_dedupe_key(context: RequestContext) -> str:
    request = context.request
    headers = request.headers if isinstance(request.headers, dict) else None
    return deterministic_hash(
        {
            "body": request.body,
            "full_url": context.options.full_url,
            "headers": headers,
            "method": request.method,
        }
    )


def _retrieve_exception(future: asyncio.Future) -> None:
    # Mark the outcome as retrieved when no caller awaits the future
    if not future.cancelled():
        future.exception()


class DedupeHandler:
    """Applies the dedupe strategy of a single call.

    Use :meth:`create`, which resolves the strategy and key, waits the
    scheduling delay, then looks up any in-flight record and registers the
    call's own record in one step.
    """

    def __init__(
        self,
        *,
        strategy: str,
        dedupe_key: str | None,
        scope: DedupeScope | None,
        prev_record: DedupeRecord | None,
        own_record: DedupeRecord | None,
        context: RequestContext,
    ):
        self.strategy = strategy
        self.dedupe_key = dedupe_key
        self._scope = scope
        self._prev_record = prev_record
        self._own_record = own_record
        self._context = context

    @classmethod
    async def create(
        cls,
        context: RequestContext,
        *,
        local_scope: DedupeScope,
        registry: DedupeRegistry,
        own_token: CancelToken,
    ) -> "DedupeHandler":
        """Resolves strategy, key and scope of a call and registers it.

        Raises:
            ConfigurationError: If the resolved strategy is unknown.
        """
        options = context.options
        strategy = _resolve(options.dedupe_strategy, context)
        if strategy not in DEDUPE_STRATEGIES:
            raise ConfigurationError(f"Invalid dedupe strategy: {strategy!r}")

        dedupe_key = None
        if strategy in ("cancel", "defer"):
            if options.dedupe_key is not None:
                dedupe_key = _resolve(options.dedupe_key, context)
            else:
                dedupe_key = get_default_dedupe_key(context)

        if dedupe_key is None:
            return cls(
                strategy=strategy,
                dedupe_key=None,
                scope=None,
                prev_record=None,
                own_record=None,
                context=context,
            )

        if options.dedupe_cache_scope == "global":
            scope_key = _resolve(options.dedupe_cache_scope_key, context) or "default"
            scope = registry.get_scope(scope_key)
        else:
            scope = local_scope

        await asyncio.sleep(DEDUPE_DELAY)

        prev_record = scope.get(dedupe_key)
        if strategy == "defer" and prev_record is not None:
            # Waiters join the in-flight record; only its dispatcher publishes
            own_record = None
        else:
            response_future = asyncio.get_running_loop().create_future()
            response_future.add_done_callback(_retrieve_exception)
            own_record = DedupeRecord(own_token, response_future)
            scope[dedupe_key] = own_record

        logger.debug(
            f"Dedupe strategy '{strategy}' with key '{dedupe_key}' "
            f"(in-flight duplicate: {prev_record is not None})"
        )

        return cls(
            strategy=strategy,
            dedupe_key=dedupe_key,
            scope=scope,
            prev_record=prev_record,
            own_record=own_record,
            context=context,
        )

    def get_abort_error_message(self) -> str:
        options = self._context.options
        if options.dedupe_key is not None:
            return (
                "Duplicate request detected - Aborted previous request with key "
                f"'{self.dedupe_key}'"
            )
        return (
            "Duplicate request detected - Aborted previous request to "
            f"'{options.full_url}'"
        )

    def handle_cancel_strategy(self) -> None:
        """Cancels the in-flight duplicate when the strategy is ``"cancel"``."""
        if self._prev_record is None or self.strategy != "cancel":
            return

        message = self.get_abort_error_message()
        logger.warning(message)
        self._prev_record.token.cancel(RequestAbortedError(message))

    async def handle_defer_strategy(
        self,
        *,
        transport: Transport,
        options: CallOptions,
        request: RequestOptions,
    ) -> httpx.Response:
        """Obtains the response of the call.

        Under ``"defer"`` with an in-flight duplicate, waits for that call's
        response (racing it against this call's own token) without publishing
        anything. Otherwise invokes the transport, racing it against the
        call's token, and publishes the outcome to every deferred waiter.
        """
        token = request.signal
        prev_record = self._prev_record

        if prev_record is not None and self.strategy == "defer":
            logger.debug(f"Deferring to in-flight request '{self.dedupe_key}'")
            return await race_with_token(
                asyncio.shield(prev_record.response_future), token
            )

        full_url = options.full_url
        logger.debug(f"Dispatching {request.method} {full_url}")
        invocation = transport(full_url, request)
        try:
            response = (
                await race_with_token(invocation, token)
                if token is not None
                else await invocation
            )
        except Exception as e:
            self._publish(error=e)
            raise
        self._publish(result=response)
        return response

    def _publish(self, *, result: Any = None, error: BaseException | None = None) -> None:
        if self._own_record is None:
            return
        future = self._own_record.response_future
        if future.done():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(result)

    def remove_from_cache(self) -> None:
        """Removes the call's record, if the scope still holds it.

        Waiters still deferring to a dispatcher that never got a response
        are released with an abandonment error. Deferred waiters hold no
        record of their own, so this is a no-op for them.
        """
        if self._own_record is None or self._scope is None:
            return

        if self._scope.get(self.dedupe_key) is self._own_record:
            del self._scope[self.dedupe_key]

        self._publish(
            error=RequestAbortedError(
                f"Deduplicated request '{self.dedupe_key}' was abandoned"
            )
        )
