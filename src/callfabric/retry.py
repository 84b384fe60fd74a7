# callfabric/retry.py
"""Retry policy for failed calls.

A failed call qualifies for a retry when all of the following hold:

* the current attempt (starting at 1) does not exceed ``retry_attempts``;
* ``retry_condition(error_context)`` is true;
* the call was not cancelled (a timeout still allows a retry);
* the request method is in ``retry_methods`` (an empty list allows any);
* when there is a response, its status is in ``retry_status_codes`` (an
  empty list allows any).

A retry re-enters the call entry point with ``retry_attempt_count``
incremented, after a delay computed with tenacity's wait strategies.
"""

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from typing import Any

from tenacity import RetryCallState, wait_exponential, wait_fixed

from .config import ClientSettings
from .exceptions import ConfigurationError, RequestTimeoutError
from .hooks import (
    ErrorContext,
    HookInfo,
    RetryContext,
    execute_hooks_in_catch_block,
    trigger,
)
from .log_config import logger


class RetryManager:
    """Evaluates and performs the retry of one failed call attempt.

    Every retry setting resolves from the flat ``retry_*`` option, then from
    the grouped ``retry`` option, then from the client settings.

    Attributes:
        error_context: The context of the failure being handled.
        current_attempt_count: The attempt number of the failed call.
    """

    def __init__(self, error_context: ErrorContext, settings: ClientSettings):
        self.error_context = error_context
        self.settings = settings
        self.current_attempt_count = error_context.options.retry_attempt_count or 1

    def _resolve(self, name: str) -> Any:
        options = self.error_context.options
        value = getattr(options, f"retry_{name}")
        if value is None and options.retry is not None:
            value = getattr(options.retry, name)
        if value is None:
            value = getattr(self.settings, f"retry_{name}", None)
        return value

    def get_delay(self) -> float:
        """Returns the delay in seconds before the next attempt.

        Raises:
            ConfigurationError: If the retry strategy is unknown.
        """
        strategy = self._resolve("strategy")
        delay = self._resolve("delay")
        if callable(delay):
            delay = delay(self.current_attempt_count)

        if strategy == "exponential":
            wait = wait_exponential(multiplier=delay, max=self._resolve("max_delay"))
        elif strategy == "linear":
            wait = wait_fixed(delay)
        else:
            raise ConfigurationError(f"Invalid retry strategy: {strategy!r}")

        retry_state = RetryCallState(retry_object=None, fn=None, args=(), kwargs={})
        retry_state.attempt_number = self.current_attempt_count
        return wait(retry_state)

    async def should_attempt_retry(self) -> bool:
        context = self.error_context
        token = context.request.signal
        if (
            token is not None
            and token.cancelled
            and not isinstance(token.reason, RequestTimeoutError)
        ):
            return False

        max_attempts = self._resolve("attempts") or 0
        if self.current_attempt_count > max_attempts:
            return False

        condition = self._resolve("condition")
        if condition is not None:
            outcome = condition(context)
            if inspect.isawaitable(outcome):
                outcome = await outcome
            if not outcome:
                return False

        retry_methods = {method.upper() for method in self._resolve("methods") or []}
        method = (context.request.method or "").upper()
        if retry_methods and method and method not in retry_methods:
            return False

        retry_status_codes = set(self._resolve("status_codes") or [])
        if (
            context.response is not None
            and retry_status_codes
            and context.response.status_code not in retry_status_codes
        ):
            return False

        return True

    async def handle_retry(
        self,
        *,
        call: Callable[..., Awaitable[Any]],
        init_url: str,
        config: dict[str, Any],
        hook_info: HookInfo,
    ) -> Any:
        """Fires ``on_retry``, waits the delay and re-invokes the call.

        Returns:
            The result of the retried call, or the error result of a failing
            ``on_retry`` hook (which abandons the retry).
        """
        context = self.error_context
        retry_context = RetryContext(
            **dict(context), retry_attempt_count=self.current_attempt_count
        )

        hook_failed, hook_error_result = await execute_hooks_in_catch_block(
            [trigger(context.options.on_retry, retry_context)], hook_info
        )
        if hook_failed:
            logger.warning(
                f"Retry of {context.options.full_url} abandoned after on_retry failed"
            )
            return hook_error_result

        delay = self.get_delay()
        logger.info(
            f"Retrying {context.request.method} {context.options.full_url} "
            f"(attempt {self.current_attempt_count}) in {delay:.2f}s "
            f"after {context.error.name}: {context.error.message}"
        )
        if delay > 0:
            await asyncio.sleep(delay)

        return await call(
            init_url,
            **{**config, "retry_attempt_count": self.current_attempt_count + 1},
        )
