"""Cooperative cancellation tokens for calls.

Every call owns a :class:`CancelToken`. Deduplication cancels it, callers can
pass their own token as the ``signal`` request option, and a timeout token is
created when a ``timeout`` is configured. The three are OR-combined with
:meth:`CancelToken.any` and the transport call is raced against the result.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from .exceptions import RequestAbortedError, RequestTimeoutError

T = TypeVar("T")


class CancelToken:
    """A one-shot cancellation flag carrying the reason it was cancelled."""

    def __init__(self) -> None:
        self._reason: BaseException | None = None
        self._callbacks: list[Callable[[BaseException], Any]] = []
        self._waiters: list[asyncio.Future] = []
        self._timer: asyncio.TimerHandle | None = None
        self._sources: list[CancelToken] = []

    @property
    def cancelled(self) -> bool:
        return self._reason is not None

    @property
    def reason(self) -> BaseException | None:
        return self._reason

    def cancel(self, reason: BaseException | str | None = None) -> None:
        """Cancels the token. Cancelling an already cancelled token is a no-op.

        Args:
            reason: The exception later raised by whoever observes the
                cancellation. Strings and ``None`` are wrapped in
                :class:`RequestAbortedError`.
        """
        if self._reason is not None:
            return
        if not isinstance(reason, BaseException):
            reason = (
                RequestAbortedError(reason) if reason else RequestAbortedError()
            )
        self._reason = reason

        for waiter in self._waiters:
            if not waiter.done():
                waiter.set_result(None)
        self._waiters.clear()

        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback(reason)

    def add_callback(self, callback: Callable[[BaseException], Any]) -> None:
        """Registers ``callback(reason)``; runs immediately if already cancelled."""
        if self._reason is not None:
            callback(self._reason)
            return
        self._callbacks.append(callback)

    def remove_callback(self, callback: Callable[[BaseException], Any]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def raise_if_cancelled(self) -> None:
        if self._reason is not None:
            raise self._reason

    async def wait(self) -> BaseException:
        """Blocks until the token is cancelled and returns the reason."""
        if self._reason is None:
            waiter = asyncio.get_running_loop().create_future()
            self._waiters.append(waiter)
            try:
                await waiter
            finally:
                if waiter in self._waiters:
                    self._waiters.remove(waiter)
        return self._reason

    def dispose(self) -> None:
        """Stops a pending timeout timer and detaches from the tokens it follows."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        for source in self._sources:
            source.remove_callback(self.cancel)
        self._sources.clear()

    @classmethod
    def any(cls, *tokens: "CancelToken | None") -> "CancelToken":
        """Returns a token cancelled as soon as any of ``tokens`` is cancelled."""
        combined = cls()
        for token in tokens:
            if token is None:
                continue
            token.add_callback(combined.cancel)
            combined._sources.append(token)
        return combined

    @classmethod
    def timeout(cls, seconds: float) -> "CancelToken":
        """Returns a token that cancels itself with a timeout error after ``seconds``."""
        token = cls()
        loop = asyncio.get_running_loop()
        token._timer = loop.call_later(
            seconds,
            token.cancel,
            RequestTimeoutError(f"Request timed out after {seconds}s"),
        )
        return token


async def race_with_token(awaitable: Awaitable[T], token: CancelToken) -> T:
    """Awaits ``awaitable`` unless ``token`` is cancelled first.

    When the token wins, the pending operation is cancelled and the token's
    reason is raised.
    """
    if token.cancelled:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise token.reason

    task = asyncio.ensure_future(awaitable)
    cancel_waiter = asyncio.ensure_future(token.wait())
    try:
        done, _ = await asyncio.wait(
            {task, cancel_waiter}, return_when=asyncio.FIRST_COMPLETED
        )
    except asyncio.CancelledError:
        task.cancel()
        cancel_waiter.cancel()
        raise

    if task in done:
        cancel_waiter.cancel()
        return task.result()

    task.cancel()
    try:
        await task
    except (asyncio.CancelledError, Exception):
        # Abandoned operation, outcome discarded
        pass
    raise token.reason
