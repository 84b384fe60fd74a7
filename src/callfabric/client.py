"""The call client: the request orchestration pipeline of callfabric.

This module provides the CallClient class. Every call made through it flows
through the same fixed sequence of stages:

1. configuration merge (settings defaults, client config, call config);
2. plugin setup, hook and middleware composition;
3. deduplication against in-flight identical calls;
4. ``on_request`` hooks, then schema validation of the request side;
5. ``on_request_ready`` hooks, then the transport (through middlewares);
6. response parsing and validation, then ``on_success``/``on_response``;
7. on failure: error hooks, retry qualification and the error result.
"""

from collections.abc import Callable, Mapping
from typing import Any, Self

import httpx
import pydantic

from .cancellation import CancelToken
from .config import ClientSettings, get_settings
from .dedupe import DedupeHandler, DedupeRegistry, DedupeScope, default_registry
from .exceptions import (
    ConfigurationError,
    HTTPError,
    RequestAbortedError,
    RequestTimeoutError,
    ValidationError,
)
from .hooks import (
    ErrorContext,
    HookInfo,
    RequestContext,
    ResponseContext,
    SuccessContext,
    execute_hooks,
    execute_hooks_in_catch_block,
    trigger,
)
from .log_config import logger
from .middlewares import get_transport
from .plugins import PluginSetupContext, initialize_plugins
from .result import (
    resolve_error_result,
    resolve_response_data,
    resolve_success_result,
)
from .retry import RetryManager
from .stream import to_streamable_request, to_streamable_response
from .transport import HttpxTransport
from .types import CallOptions, RequestOptions
from .url import get_full_and_normalized_url
from .utils import (
    get_body,
    get_headers,
    get_method,
    get_resolved_headers,
    split_config,
)
from .validation import (
    handle_config_validation,
    handle_schema_validation,
    merge_schema_tables,
)


def _drop_none(mapping: Mapping[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in mapping.items() if value is not None}


class _CallState:
    """Everything the pipeline stages of one call attempt share."""

    def __init__(
        self,
        *,
        init_url: str,
        config: dict[str, Any],
        extra_config: dict[str, Any],
        base_extra_config: dict[str, Any],
        route_schema_key: str,
        context: RequestContext,
        dedupe: DedupeHandler,
        timeout_token: CancelToken | None,
        signal: CancelToken,
    ):
        self.init_url = init_url
        self.config = config
        self.extra_config = extra_config
        self.base_extra_config = base_extra_config
        self.route_schema_key = route_schema_key
        self.context = context
        self.dedupe = dedupe
        self.timeout_token = timeout_token
        self.signal = signal

    @property
    def options(self) -> CallOptions:
        return self.context.options

    @property
    def request(self) -> RequestOptions:
        return self.context.request


class CallClient:
    """Asynchronous, policy-composing request client.

    A client holds a base configuration applied to every call, a local
    dedupe scope, and a default transport. Per-call configuration is given
    as keyword arguments to :meth:`call`; request options (``method``,
    ``headers``, ``body``, ``signal``) and call options share the same
    namespace.

    Example:
        Typical usage::

            async with CallClient(base_url="https://api.example.com") as client:
                result = await client.call("/users/:id", params={"id": 1})
                if result.error is None:
                    print(result.data)

    Attributes:
        _base_config: The base configuration, or a callable producing it.
        _settings: Settings providing defaults for every option.
        _dedupe_registry: Registry holding the global dedupe scopes.
        _local_dedupe_scope: This client's own dedupe scope.
        _default_transport: Transport used when no ``transport`` option is set.
    """

    def __init__(
        self,
        base_config: Mapping[str, Any] | Callable[..., Mapping[str, Any]] | None = None,
        *,
        settings: ClientSettings | None = None,
        dedupe_registry: DedupeRegistry | None = None,
        http_client: httpx.AsyncClient | None = None,
        **base_options: Any,
    ):
        """Initialize the CallClient.

        Args:
            base_config: Client-wide configuration, or a callable receiving
                ``init_url``, ``options`` and ``request`` (the call's extra
                and request options) and returning it.
            settings: Settings providing option defaults. Defaults to
                :func:`callfabric.config.get_settings`.
            dedupe_registry: Registry for the ``"global"`` dedupe scope.
                Defaults to the module-level registry.
            http_client: Optional pre-configured httpx.AsyncClient for the
                default transport.
            **base_options: Further client-wide options, merged over a
                mapping ``base_config``.

        Raises:
            ConfigurationError: If keyword options are combined with a
                callable ``base_config``.
        """
        if callable(base_config):
            if base_options:
                raise ConfigurationError(
                    "Keyword options cannot be combined with a callable base_config"
                )
            self._base_config = base_config
        else:
            self._base_config = {**(base_config or {}), **base_options}

        self._settings = settings or get_settings()
        self._dedupe_registry = dedupe_registry or default_registry
        self._local_dedupe_scope: DedupeScope = {}
        self._default_transport = HttpxTransport(self._settings, http_client=http_client)

        logger.debug("CallClient initialized.")

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    def _resolve_base_config(
        self,
        init_url: str,
        extra_config: dict[str, Any],
        request_config: dict[str, Any],
    ) -> dict[str, Any]:
        if callable(self._base_config):
            resolved = self._base_config(
                init_url=init_url, options=extra_config, request=request_config
            )
            return dict(resolved or {})
        return dict(self._base_config)

    def _merge_config(
        self, init_url: str, base_config: dict[str, Any], config: dict[str, Any]
    ) -> tuple[CallOptions, RequestOptions]:
        """Merges settings defaults, base and call configuration.

        Raises:
            ConfigurationError: If the merged options fail validation.
        """
        base_request_config, base_extra_config = split_config(base_config)
        request_config, extra_config = split_config(config)

        skip_auto_merge_for = base_extra_config.get("skip_auto_merge_for")
        merge_options = skip_auto_merge_for not in ("all", "options")
        merge_request = skip_auto_merge_for not in ("all", "request")

        merged_options = {
            **self._settings.option_defaults(),
            **_drop_none(base_extra_config),
        }
        if merge_options:
            merged_options.update(_drop_none(extra_config))
        if extra_config.get("retry_attempt_count") is not None:
            # Retry bookkeeping, never subject to skip_auto_merge_for
            merged_options["retry_attempt_count"] = extra_config["retry_attempt_count"]

        merged_request = dict(base_request_config)
        if merge_request:
            merged_request.update(_drop_none(request_config))
        merged_request["headers"] = get_resolved_headers(
            base_headers=base_request_config.get("headers"),
            headers=request_config.get("headers") if merge_request else None,
        )
        merged_request["method"] = get_method(
            init_url=init_url, method=merged_request.get("method")
        )

        try:
            options = CallOptions(**merged_options)
            request = RequestOptions(**merged_request)
        except pydantic.ValidationError as e:
            raise ConfigurationError(f"Invalid call configuration: {e}") from e
        return options, request

    async def _prepare(self, init_url: str, config: dict[str, Any]) -> _CallState:
        """Resolves configuration and plugins, and registers the call for dedupe.

        Errors raised here (including plugin setup errors) propagate unchanged.
        """
        request_config, extra_config = split_config(config)
        base_config = self._resolve_base_config(init_url, extra_config, request_config)
        _, base_extra_config = split_config(base_config)

        options, request = self._merge_config(init_url, base_config, config)

        resolution = await initialize_plugins(
            PluginSetupContext(
                base_config=base_config,
                config=config,
                options=options,
                request=request,
                init_url=init_url,
            )
        )
        options = resolution.options
        request = resolution.request

        full_url, normalized_init_url = get_full_and_normalized_url(
            base_url=options.base_url,
            init_url=resolution.init_url,
            params=options.params,
            query=options.query,
        )
        options = options.model_copy(
            update={
                **resolution.hooks,
                **resolution.middlewares,
                "full_url": full_url,
                "init_url": resolution.init_url,
                "init_url_normalized": normalized_init_url,
            }
        )

        base_extra_config = {
            **base_extra_config,
            "schema": merge_schema_tables(
                base_extra_config.get("schema"), resolution.schemas
            ),
        }

        context = RequestContext(
            base_config=base_config, config=config, options=options, request=request
        )

        own_token = CancelToken()
        dedupe = await DedupeHandler.create(
            context,
            local_scope=self._local_dedupe_scope,
            registry=self._dedupe_registry,
            own_token=own_token,
        )

        timeout_token = CancelToken.timeout(options.timeout) if options.timeout else None
        signal = CancelToken.any(timeout_token, request.signal, own_token)
        request.signal = signal

        return _CallState(
            init_url=init_url,
            config=config,
            extra_config=extra_config,
            base_extra_config=base_extra_config,
            route_schema_key=resolution.current_route_schema_key,
            context=context,
            dedupe=dedupe,
            timeout_token=timeout_token,
            signal=signal,
        )

    async def call(self, init_url: str | httpx.URL, /, **config: Any) -> Any:
        """Performs a call through the full orchestration pipeline.

        Args:
            init_url: The URL or route key, e.g. ``"/users/:id"`` or
                ``"@post/users"``.
            **config: Per-call options and request options.

        Returns:
            A :class:`callfabric.result.CallResult` in ``"all"`` result mode,
            or only the data in ``"only_data"`` mode. Failures are returned
            as error results unless ``throw_on_error`` applies.

        Raises:
            CallFabricError: When ``throw_on_error`` applies, or for setup
                errors such as an invalid configuration.
        """
        init_url = str(init_url)
        state = await self._prepare(init_url, config)
        try:
            return await self._dispatch(state)
        except Exception as error:
            return await self._handle_error(error, state)
        finally:
            state.dedupe.remove_from_cache()
            if state.timeout_token is not None:
                state.timeout_token.dispose()
            state.signal.dispose()

    async def __call__(self, init_url: str | httpx.URL, /, **config: Any) -> Any:
        return await self.call(init_url, **config)

    async def _dispatch(self, state: _CallState) -> Any:
        context = state.context
        options = state.options
        request = state.request

        state.dedupe.handle_cancel_strategy()

        await execute_hooks(trigger(options.on_request, context))

        validation = await handle_config_validation(
            base_extra_options=state.base_extra_config,
            extra_options=state.extra_config,
            current_route_schema_key=state.route_schema_key,
            options=options,
            request=request,
        )
        resolved_schema = validation["resolved_schema"]
        resolved_schema_config = validation["resolved_schema_config"]

        for name, value in validation["extra_options_validation_result"].items():
            setattr(options, name, value)

        request_result = validation["request_options_validation_result"]
        body = request_result.get("body")
        headers = request_result.get("headers")
        request.body = get_body(
            body=body, body_serializer=options.body_serializer, resolved_headers=headers
        )
        request.headers = await get_headers(
            auth=options.auth, body=body, resolved_headers=headers
        )
        request.method = get_method(
            init_url=options.init_url, method=request_result.get("method")
        )

        await execute_hooks(trigger(options.on_request_ready, context))

        transport = get_transport(
            transport=options.transport or self._default_transport,
            fetch_middleware=options.fetch_middleware,
            context=context,
        )

        await to_streamable_request(context)
        response = await state.dedupe.handle_defer_strategy(
            transport=transport, options=options, request=request
        )
        response = await to_streamable_response(context, response)

        if not response.is_success:
            error_data = await resolve_response_data(
                response, options.response_type, options.response_parser
            )
            valid_error_data = await handle_schema_validation(
                resolved_schema,
                "error_data",
                input_value=error_data,
                response=response,
                schema_config=resolved_schema_config,
            )
            # Error handling, retries included, happens in _handle_error
            raise HTTPError(
                error_data=valid_error_data,
                response=response,
                default_message=options.default_http_error_message,
            )

        success_data = await resolve_response_data(
            response, options.response_type, options.response_parser
        )
        valid_success_data = await handle_schema_validation(
            resolved_schema,
            "data",
            input_value=success_data,
            response=response,
            schema_config=resolved_schema_config,
        )

        success_context = SuccessContext(
            **dict(context), data=valid_success_data, response=response
        )
        await execute_hooks(
            trigger(options.on_success, success_context),
            trigger(
                options.on_response,
                ResponseContext(
                    **dict(context), data=valid_success_data, error=None, response=response
                ),
            ),
        )

        return resolve_success_result(
            success_context.data, response=response, result_mode=options.result_mode
        )

    async def _handle_error(self, error: Exception, state: _CallState) -> Any:
        options = state.options

        error_details, response, error_result = resolve_error_result(
            error, result_mode=options.result_mode
        )
        error_context = ErrorContext(
            **dict(state.context), error=error_details, response=response
        )

        throw_on_error = options.throw_on_error
        should_throw_on_error = bool(
            throw_on_error(error_context) if callable(throw_on_error) else throw_on_error
        )
        hook_info = HookInfo(
            result_mode=options.result_mode, should_throw_on_error=should_throw_on_error
        )

        if isinstance(error, ValidationError):
            invocations = [
                trigger(options.on_validation_error, error_context),
                trigger(options.on_error, error_context),
            ]
        elif isinstance(error, HTTPError):
            invocations = [
                trigger(options.on_response_error, error_context),
                trigger(options.on_error, error_context),
                trigger(
                    options.on_response,
                    ResponseContext(
                        **dict(state.context),
                        data=None,
                        error=error_details,
                        response=response,
                    ),
                ),
            ]
        else:
            if isinstance(error, (RequestAbortedError, RequestTimeoutError)) and not (
                should_throw_on_error
            ):
                logger.error(f"{type(error).__name__}: {error_details.message}")
            invocations = [
                trigger(options.on_request_error, error_context),
                trigger(options.on_error, error_context),
            ]

        hook_failed, hook_error_result = await execute_hooks_in_catch_block(
            invocations, hook_info
        )
        if hook_failed:
            return hook_error_result

        retry_manager = RetryManager(error_context, self._settings)
        if await retry_manager.should_attempt_retry():
            # The retried call registers its own dedupe record
            state.dedupe.remove_from_cache()
            return await retry_manager.handle_retry(
                call=self.call,
                init_url=state.init_url,
                config=state.config,
                hook_info=hook_info,
            )

        if should_throw_on_error:
            raise error

        return error_result

    async def aclose(self) -> None:
        """Close the default transport's HTTP client, if this client created it."""
        logger.info(f"CallClient.aclose() called. Client ID: {id(self)}.")
        await self._default_transport.aclose()

    async def __aenter__(self) -> Self:
        """Enter the async context manager.

        Returns:
            Self: The client instance for use in async context.
        """
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object | None,
    ) -> None:
        """Exit the async context manager and clean up resources."""
        await self.aclose()


def create_client(
    base_config: Mapping[str, Any] | Callable[..., Mapping[str, Any]] | None = None,
    **kwargs: Any,
) -> CallClient:
    """Creates a :class:`CallClient`; a shorthand mirroring its constructor."""
    return CallClient(base_config, **kwargs)
