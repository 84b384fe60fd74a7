"""Fetch middleware composition.

A middleware receives a :class:`MiddlewareContext` and returns the transport
function to use in place of ``context.transport``. Middlewares from plugins,
the client and the call are chained so that the last registered one is the
outermost wrapper.
"""

from collections.abc import Sequence

from .hooks import RequestContext
from .types import Middleware, Transport


class MiddlewareContext(RequestContext):
    transport: Transport


def compose_middlewares_from_list(
    middlewares: Sequence[Middleware | None],
) -> Middleware | None:
    """Chains middlewares into one; returns None when there are none."""
    composed: Middleware | None = None

    for current in middlewares:
        if current is None:
            continue

        previous = composed
        if previous is None:
            composed = current
            continue

        composed = _chain(previous, current)

    return composed


def _chain(previous: Middleware, current: Middleware) -> Middleware:
    def chained(context: MiddlewareContext) -> Transport:
        inner_transport = previous(context)
        return current(context.model_copy(update={"transport": inner_transport}))

    return chained


def get_transport(
    *,
    transport: Transport,
    fetch_middleware: Middleware | None,
    context: RequestContext,
) -> Transport:
    """Resolves the transport of a call through its composed middleware."""
    if fetch_middleware is None:
        return transport

    middleware_context = MiddlewareContext(**dict(context), transport=transport)
    return fetch_middleware(middleware_context)

