"""Plugins: reusable bundles of setup logic, hooks, middlewares and schemas.

Plugins are resolved at call time. Each plugin's ``setup`` runs in
registration order and may patch the call (its URL, options or request);
later plugins observe earlier patches. Plugin hooks and middlewares are
registered alongside those of the client and the call.
"""

import inspect
from collections.abc import Callable, Mapping
from typing import Any

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from .exceptions import ConfigurationError
from .hooks import HOOK_NAMES, RequestContext, compose_hooks_from_list
from .log_config import logger
from .middlewares import compose_middlewares_from_list
from .types import CallOptions, RequestOptions
from .utils import to_list
from .validation import SchemaTable, get_current_route_schema_key_and_main_url

MIDDLEWARE_NAMES = ("fetch_middleware",)


class PluginSetupContext(RequestContext):
    init_url: str


class PluginInitResult(BaseModel):
    """A patch returned by a plugin's ``setup``.

    Attributes:
        init_url: Replaces the URL of the call.
        options: Merged over the call options.
        request: Merged over the request options.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    init_url: str | None = None
    options: dict[str, Any] | None = None
    request: dict[str, Any] | None = None


class Plugin(BaseModel):
    """A plugin definition.

    Attributes:
        id: Unique identifier of the plugin.
        name: Human readable name.
        version: Optional version string.
        description: Optional one-line description.
        define_extra_options: A pydantic model describing the extra call
            options the plugin understands. Extra options are validated
            against it and its defaults are filled in.
        hooks: A mapping of hook name to hook (or list of hooks), or a sync
            or async callable receiving the setup context and returning one.
        middlewares: A mapping holding ``fetch_middleware``, or a sync or
            async callable receiving the setup context and returning one.
        setup: A sync or async callable receiving the
            :class:`PluginSetupContext` and optionally returning a
            :class:`PluginInitResult` (or an equivalent mapping).
        schema_: Route schemas contributed by the plugin.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, populate_by_name=True)

    id: str
    name: str
    version: str | None = None
    description: str | None = None
    define_extra_options: type[BaseModel] | None = None
    hooks: Mapping[str, Any] | BaseModel | Callable[..., Any] | None = None
    middlewares: Mapping[str, Any] | BaseModel | Callable[..., Any] | None = None
    setup: Callable[..., Any] | None = None
    schema_: SchemaTable | None = Field(default=None, alias="schema")


class PluginResolution(BaseModel):
    """Everything plugin resolution produces for one call."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    current_route_schema_key: str
    init_url: str
    options: CallOptions
    request: RequestOptions
    hooks: dict[str, Callable[..., Any]] = Field(default_factory=dict)
    middlewares: dict[str, Callable[..., Any]] = Field(default_factory=dict)
    schemas: list[SchemaTable] = Field(default_factory=list)


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _as_mapping(value: Any) -> dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, BaseModel):
        return {name: item for name, item in value if item is not None}
    return {name: item for name, item in dict(value).items() if item is not None}


def _translate_option_keys(patch: Mapping[str, Any]) -> dict[str, Any]:
    # Aliased fields are stored under their attribute name
    return {("schema_" if key == "schema" else key): value for key, value in patch.items()}


def get_resolved_plugins(
    *, base_config: Mapping[str, Any], options: CallOptions
) -> list[Plugin]:
    """Returns the plugins active for a call.

    ``plugins`` may be a list, or a callable receiving ``base_plugins=`` (the
    client's plugin list) and returning the list to use.
    """
    plugins = options.plugins
    if callable(plugins):
        return list(plugins(base_plugins=list(base_config.get("plugins") or [])))
    return list(plugins or [])


def apply_extra_options(plugin: Plugin, options: CallOptions) -> CallOptions:
    """Validates the extra options a plugin declares and fills in defaults.

    Raises:
        ConfigurationError: If the extra options fail validation.
    """
    if plugin.define_extra_options is None:
        return options

    extra = dict(options.model_extra or {})
    try:
        validated = plugin.define_extra_options.model_validate(extra)
    except pydantic.ValidationError as e:
        raise ConfigurationError(
            f"Invalid options for plugin '{plugin.id}': {e}"
        ) from e

    return options.model_copy(
        update={name: getattr(validated, name) for name in type(validated).model_fields}
    )


def _coerce_init_result(result: Any) -> PluginInitResult | None:
    if result is None:
        return None
    if isinstance(result, PluginInitResult):
        return result
    if isinstance(result, Mapping):
        return PluginInitResult(**result)
    return None


async def initialize_plugins(context: PluginSetupContext) -> PluginResolution:
    """Runs plugin setup and assembles the hooks and middlewares of a call.

    Setup errors are not caught: they abort the call before any dispatch.

    Args:
        context: The setup context holding the client configuration, the call
            configuration, the merged options and request, and the URL.

    Returns:
        The resolved route key, URL, options and request, the composed hooks
        and middleware, and the schemas plugins contribute.
    """
    base_config = context.base_config
    config = context.config

    current_route_schema_key, init_url = get_current_route_schema_key_and_main_url(
        base_extra_options=base_config, extra_options=config, init_url=context.init_url
    )
    options = context.options
    request = context.request

    plugin_hooks: dict[str, list[Any]] = {name: [] for name in HOOK_NAMES}
    plugin_middlewares: dict[str, list[Any]] = {name: [] for name in MIDDLEWARE_NAMES}
    schemas: list[SchemaTable] = []

    for plugin in get_resolved_plugins(base_config=base_config, options=options):
        options = apply_extra_options(plugin, options)

        setup_context = PluginSetupContext(
            base_config=base_config,
            config=config,
            options=options,
            request=request,
            init_url=init_url,
        )

        if plugin.setup is not None:
            logger.debug(f"Running setup of plugin '{plugin.id}'")
            init_result = _coerce_init_result(
                await _maybe_await(plugin.setup(setup_context))
            )
            if init_result is not None:
                if init_result.init_url is not None:
                    current_route_schema_key, init_url = (
                        get_current_route_schema_key_and_main_url(
                            base_extra_options=base_config,
                            extra_options=config,
                            init_url=str(init_result.init_url),
                        )
                    )
                if init_result.request:
                    request = request.model_copy(update=init_result.request)
                if init_result.options:
                    options = options.model_copy(
                        update=_translate_option_keys(init_result.options)
                    )

        hooks = plugin.hooks
        if callable(hooks):
            hooks = await _maybe_await(hooks(setup_context))
        for name, hook in _as_mapping(hooks).items():
            if name not in plugin_hooks:
                raise ConfigurationError(
                    f"Plugin '{plugin.id}' declares an unknown hook '{name}'"
                )
            plugin_hooks[name].extend(to_list(hook))

        middlewares = plugin.middlewares
        if callable(middlewares):
            middlewares = await _maybe_await(middlewares(setup_context))
        for name, middleware in _as_mapping(middlewares).items():
            if name not in plugin_middlewares:
                raise ConfigurationError(
                    f"Plugin '{plugin.id}' declares an unknown middleware '{name}'"
                )
            plugin_middlewares[name].append(middleware)

        if plugin.schema_ is not None:
            schemas.append(plugin.schema_)

    resolved_hooks: dict[str, Any] = {}
    for name in HOOK_NAMES:
        main_hooks = _get_main_hooks(name, base_config, config, options)
        if options.hooks_registration_order == "main_first":
            hook_list = [*main_hooks, *plugin_hooks[name]]
        else:
            hook_list = [*plugin_hooks[name], *main_hooks]
        if hook_list:
            resolved_hooks[name] = compose_hooks_from_list(
                hook_list, options.hooks_execution_mode
            )

    resolved_middlewares: dict[str, Any] = {}
    for name in MIDDLEWARE_NAMES:
        middleware_list = [
            *plugin_middlewares[name],
            base_config.get(name),
            config.get(name),
        ]
        composed = compose_middlewares_from_list(middleware_list)
        if composed is not None:
            resolved_middlewares[name] = composed

    logger.debug(
        f"Resolved hooks {sorted(resolved_hooks)} for route '{current_route_schema_key}'"
    )

    return PluginResolution(
        current_route_schema_key=current_route_schema_key,
        init_url=init_url,
        options=options,
        request=request,
        hooks=resolved_hooks,
        middlewares=resolved_middlewares,
        schemas=schemas,
    )


def _get_main_hooks(
    name: str,
    base_config: Mapping[str, Any],
    config: Mapping[str, Any],
    options: CallOptions,
) -> list[Any]:
    base_hook = base_config.get(name)
    instance_hook = config.get(name)

    # A base list is extended by the instance hook instead of being replaced
    if isinstance(base_hook, list) and instance_hook:
        return [*base_hook, *to_list(instance_hook)]
    return to_list(getattr(options, name))
