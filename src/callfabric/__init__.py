"""Callfabric: asynchronous, policy-composing request orchestration.

This package wraps a single primitive, "send this request, get that
response", in a configurable pipeline: layered configuration, plugins,
lifecycle hooks, transport middlewares, request deduplication, retries,
route-scoped schema validation and a uniform success/error result.

The transport itself is pluggable; the default one delegates to
``httpx.AsyncClient``.
"""

__version__ = "0.1.0"

# Import core modules for easy access
from . import (
    auth,
    builtin_plugins,
    cancellation,
    client,
    config,
    dedupe,
    exceptions,
    hooks,
    log_config,
    middlewares,
    plugins,
    result,
    retry,
    stream,
    transport,
    types,
    url,
    utils,
    validation,
)
from .builtin_plugins import caching_plugin, logger_plugin
from .cancellation import CancelToken
from .client import CallClient, create_client
from .config import ClientSettings, get_settings
from .dedupe import DedupeRegistry
from .exceptions import (
    CallFabricError,
    ConfigurationError,
    HTTPError,
    NetworkError,
    RequestAbortedError,
    RequestTimeoutError,
    ValidationError,
)
from .plugins import Plugin, PluginInitResult
from .result import CallResult, ErrorDetails
from .transport import HttpxTransport
from .types import CallOptions, RequestOptions, RetryConfig
from .validation import (
    RouteSchema,
    SchemaConfig,
    SchemaResult,
    SchemaTable,
    ValidationIssue,
    define_schema,
)

__all__ = [
    "__version__",
    "auth",
    "builtin_plugins",
    "cancellation",
    "client",
    "config",
    "dedupe",
    "exceptions",
    "hooks",
    "log_config",
    "middlewares",
    "plugins",
    "result",
    "retry",
    "stream",
    "transport",
    "types",
    "url",
    "utils",
    "validation",
    "CallClient",
    "CallFabricError",
    "CallOptions",
    "CallResult",
    "CancelToken",
    "ClientSettings",
    "ConfigurationError",
    "DedupeRegistry",
    "ErrorDetails",
    "HTTPError",
    "HttpxTransport",
    "NetworkError",
    "Plugin",
    "PluginInitResult",
    "RequestAbortedError",
    "RequestOptions",
    "RequestTimeoutError",
    "RetryConfig",
    "RouteSchema",
    "SchemaConfig",
    "SchemaResult",
    "SchemaTable",
    "ValidationError",
    "ValidationIssue",
    "caching_plugin",
    "create_client",
    "define_schema",
    "get_settings",
    "logger_plugin",
]
