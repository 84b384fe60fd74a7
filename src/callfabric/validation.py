"""Route-scoped schema validation.

A client may carry a :class:`SchemaTable` mapping route keys to
:class:`RouteSchema` bundles. Each bundle field holds a validator, which is
any of:

* a pydantic model class or a :class:`pydantic.TypeAdapter`;
* an object with a ``validate(value)`` method returning a
  :class:`SchemaResult` (or a mapping with ``value``/``issues`` keys),
  synchronously or as an awaitable;
* a plain callable (sync or async) returning the validated value, whose
  raised exceptions are reported as issues.
"""

import asyncio
import inspect
from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

import httpx
import pydantic
from pydantic import BaseModel, ConfigDict, Field

from .exceptions import ValidationError
from .log_config import logger
from .url import extract_method_from_url, normalize_url

FALLBACK_ROUTE_KEY = "@default"

EXTRA_OPTIONS_TO_VALIDATE = ("meta", "params", "query", "auth")
REQUEST_OPTIONS_TO_VALIDATE = ("body", "headers", "method")


class ValidationIssue(BaseModel):
    """A single problem reported by a validator."""

    message: str
    path: list[Any] | None = None


class SchemaResult(BaseModel):
    """The outcome of a validator following the standard validation contract.

    ``issues`` being set (even to an empty list) means validation failed.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    value: Any = None
    issues: list[ValidationIssue] | None = None


@runtime_checkable
class StandardSchema(Protocol):
    """Protocol for validator objects exposing ``validate(value)``."""

    def validate(self, value: Any) -> Any: ...


class RouteSchema(BaseModel):
    """Validators for the parts of a single route's calls."""

    model_config = ConfigDict(arbitrary_types_allowed=True, extra="forbid")

    auth: Any = None
    body: Any = None
    data: Any = None
    error_data: Any = None
    headers: Any = None
    meta: Any = None
    method: Any = None
    params: Any = None
    query: Any = None


class SchemaConfig(BaseModel):
    """Controls how a schema table is looked up and applied.

    Attributes:
        base_url: Stripped from call URLs to obtain the route key.
        prefix: Stripped from call URLs to obtain the route key, and replaced
            by ``base_url`` in the URL actually requested.
        strict: Reject calls whose route has no entry of its own.
        disable_runtime_validation: Skip validation entirely, or per field
            when given a mapping such as ``{"body": True}``.
        disable_runtime_validation_transform: Validate, but keep the
            original value instead of the validator's output.
    """

    base_url: str = ""
    prefix: str = ""
    strict: bool = False
    disable_runtime_validation: bool | dict[str, bool] = False
    disable_runtime_validation_transform: bool | dict[str, bool] = False


class SchemaTable(BaseModel):
    """The static route table of a client."""

    routes: dict[str, RouteSchema] = Field(default_factory=dict)
    config: SchemaConfig | None = None


def define_schema(
    routes: Mapping[str, RouteSchema | Mapping[str, Any]],
    config: SchemaConfig | Mapping[str, Any] | None = None,
) -> SchemaTable:
    """Builds a :class:`SchemaTable`, accepting plain mappings for convenience."""
    return SchemaTable.model_validate({"routes": dict(routes), "config": config})


def _issues_from_pydantic(error: pydantic.ValidationError) -> list[ValidationIssue]:
    return [
        ValidationIssue(message=detail["msg"], path=list(detail["loc"]) or None)
        for detail in error.errors()
    ]


def _issues_from_exception(error: Exception) -> list[ValidationIssue]:
    if isinstance(error, pydantic.ValidationError):
        return _issues_from_pydantic(error)
    return [ValidationIssue(message=str(error) or type(error).__name__)]


def _coerce_result(result: Any) -> SchemaResult:
    if isinstance(result, SchemaResult):
        return result
    if isinstance(result, Mapping):
        return SchemaResult(value=result.get("value"), issues=result.get("issues"))
    return SchemaResult(
        value=getattr(result, "value", None), issues=getattr(result, "issues", None)
    )


async def run_validator(validator: Any, value: Any) -> SchemaResult:
    """Runs any supported validator and normalizes its outcome."""
    if isinstance(validator, type) and issubclass(validator, BaseModel):
        try:
            return SchemaResult(value=validator.model_validate(value))
        except pydantic.ValidationError as e:
            return SchemaResult(issues=_issues_from_pydantic(e))

    if isinstance(validator, pydantic.TypeAdapter):
        try:
            return SchemaResult(value=validator.validate_python(value))
        except pydantic.ValidationError as e:
            return SchemaResult(issues=_issues_from_pydantic(e))

    if isinstance(validator, StandardSchema):
        result = validator.validate(value)
        if inspect.isawaitable(result):
            result = await result
        return _coerce_result(result)

    if callable(validator):
        try:
            result = validator(value)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            return SchemaResult(issues=_issues_from_exception(e))
        return SchemaResult(value=result)

    raise TypeError(f"Unsupported validator type: {type(validator).__name__}")


def _is_flag_set(flag: bool | Mapping[str, bool] | None, schema_name: str) -> bool:
    if isinstance(flag, Mapping):
        return flag.get(schema_name) is True
    return flag is True


async def handle_schema_validation(
    schema: RouteSchema | None,
    schema_name: str,
    *,
    input_value: Any,
    schema_config: SchemaConfig | None = None,
    response: httpx.Response | None = None,
) -> Any:
    """Validates ``input_value`` with the ``schema_name`` validator of ``schema``.

    Returns:
        The validator's output, or ``input_value`` itself when there is no
        validator, validation is disabled, or its transform is disabled.

    Raises:
        ValidationError: If the validator reports issues.
    """
    if schema_config is not None and _is_flag_set(
        schema_config.disable_runtime_validation, schema_name
    ):
        return input_value

    validator = getattr(schema, schema_name, None) if schema is not None else None
    if validator is None:
        return input_value

    result = await run_validator(validator, input_value)

    if result.issues is not None:
        logger.debug(f"Validation of '{schema_name}' failed: {result.issues}")
        raise ValidationError(
            issue_cause=schema_name, issues=result.issues, response=response
        )

    if schema_config is not None and _is_flag_set(
        schema_config.disable_runtime_validation_transform, schema_name
    ):
        return input_value

    return result.value


def _defined_fields(schema: RouteSchema) -> dict[str, Any]:
    return {
        name: getattr(schema, name)
        for name in RouteSchema.model_fields
        if getattr(schema, name) is not None
    }


def _schema_table(base_extra_options: Mapping[str, Any]) -> SchemaTable | None:
    return base_extra_options.get("schema")


def get_resolved_schema(
    *,
    base_extra_options: Mapping[str, Any],
    extra_options: Mapping[str, Any],
    current_route_schema_key: str,
) -> tuple[RouteSchema | None, RouteSchema | None]:
    """Finds the schema bundle that applies to the current call.

    Returns:
        ``(current_route_schema, resolved_schema)``: the route's own entry,
        if any, and the bundle actually used (route entry merged over the
        fallback entry, or the instance ``schema`` option).
    """
    table = _schema_table(base_extra_options)
    routes = table.routes if table is not None else {}

    fallback_route_schema = routes.get(FALLBACK_ROUTE_KEY)
    current_route_schema = routes.get(current_route_schema_key)

    resolved_route_schema = None
    if fallback_route_schema is not None or current_route_schema is not None:
        merged = {}
        if fallback_route_schema is not None:
            merged.update(_defined_fields(fallback_route_schema))
        if current_route_schema is not None:
            merged.update(_defined_fields(current_route_schema))
        resolved_route_schema = RouteSchema(**merged)

    instance_schema = extra_options.get("schema")
    if callable(instance_schema):
        resolved_schema = instance_schema(
            base_schema_routes=routes,
            current_route_schema=resolved_route_schema or RouteSchema(),
            current_route_schema_key=current_route_schema_key,
        )
    elif instance_schema is not None:
        resolved_schema = instance_schema
    else:
        resolved_schema = resolved_route_schema

    if isinstance(resolved_schema, Mapping):
        resolved_schema = RouteSchema(**resolved_schema)

    return current_route_schema, resolved_schema


def get_resolved_schema_config(
    *, base_extra_options: Mapping[str, Any], extra_options: Mapping[str, Any]
) -> SchemaConfig | None:
    table = _schema_table(base_extra_options)
    base_schema_config = table.config if table is not None else None

    schema_config = extra_options.get("schema_config")
    if callable(schema_config):
        schema_config = schema_config(
            base_schema_config=base_schema_config or SchemaConfig()
        )
    elif schema_config is None:
        schema_config = base_schema_config

    if isinstance(schema_config, Mapping):
        schema_config = SchemaConfig(**schema_config)
    return schema_config


async def handle_config_validation(
    *,
    base_extra_options: Mapping[str, Any],
    extra_options: Mapping[str, Any],
    current_route_schema_key: str,
    options: Any,
    request: Any,
) -> dict[str, Any]:
    """Validates the option side and the request side of a call before dispatch.

    Args:
        base_extra_options: The client-wide options, holding the schema table.
        extra_options: The per-call options, possibly holding ``schema`` and
            ``schema_config`` overrides.
        current_route_schema_key: The route key of the call.
        options: The merged call options (read by attribute).
        request: The merged request options (read by attribute).

    Returns:
        A mapping with ``extra_options_validation_result``,
        ``request_options_validation_result``, ``resolved_schema`` and
        ``resolved_schema_config``. The two validation results only hold
        the fields whose validated value is not None.

    Raises:
        ValidationError: On validation issues, or when strict mode finds no
            route entry for the call.
    """
    current_route_schema, resolved_schema = get_resolved_schema(
        base_extra_options=base_extra_options,
        extra_options=extra_options,
        current_route_schema_key=current_route_schema_key,
    )
    resolved_schema_config = get_resolved_schema_config(
        base_extra_options=base_extra_options, extra_options=extra_options
    )

    if (
        resolved_schema_config is not None
        and resolved_schema_config.strict
        and current_route_schema is None
    ):
        raise ValidationError(
            issue_cause="schema_config-(strict)",
            issues=[
                ValidationIssue(
                    message=f"Strict Mode - No schema found for route '{current_route_schema_key}'"
                )
            ],
        )

    async def validate_fields(source: Any, names: tuple[str, ...]) -> dict[str, Any]:
        results = await asyncio.gather(
            *(
                handle_schema_validation(
                    resolved_schema,
                    name,
                    input_value=getattr(source, name, None),
                    schema_config=resolved_schema_config,
                )
                for name in names
            )
        )
        return {
            name: value for name, value in zip(names, results) if value is not None
        }

    extra_result, request_result = await asyncio.gather(
        validate_fields(options, EXTRA_OPTIONS_TO_VALIDATE),
        validate_fields(request, REQUEST_OPTIONS_TO_VALIDATE),
    )

    return {
        "extra_options_validation_result": extra_result,
        "request_options_validation_result": request_result,
        "resolved_schema": resolved_schema,
        "resolved_schema_config": resolved_schema_config,
    }


def _remove_leading_slash(value: str) -> str:
    return value[1:] if value.startswith("/") else value


def _merge_url_parts(method: str | None, path: str) -> str:
    if method:
        return f"@{method}/{_remove_leading_slash(path)}"
    return path


def get_current_route_schema_key_and_main_url(
    *,
    base_extra_options: Mapping[str, Any],
    extra_options: Mapping[str, Any],
    init_url: str,
) -> tuple[str, str]:
    """Derives the route key used for schema lookup and the URL to request.

    A configured ``prefix`` is stripped from the route key and replaced by
    the configured ``base_url`` in the requested URL; a configured
    ``base_url`` at the start of the URL is stripped from the route key.

    Returns:
        ``(current_route_schema_key, main_init_url)``.
    """
    schema_config = get_resolved_schema_config(
        base_extra_options=base_extra_options, extra_options=extra_options
    )

    current_route_schema_key = init_url
    main_init_url = init_url

    if schema_config is None:
        return current_route_schema_key, main_init_url

    method_from_url = extract_method_from_url(init_url)
    path_without_method = _remove_leading_slash(
        normalize_url(init_url, retain_leading_slash=False)
    )

    prefix = _remove_leading_slash(schema_config.prefix) if schema_config.prefix else ""

    if prefix and path_without_method.startswith(prefix):
        rest_of_path = path_without_method[len(prefix) :]
        current_route_schema_key = _merge_url_parts(method_from_url, rest_of_path)

        path_with_replaced_prefix = path_without_method.replace(
            prefix, schema_config.base_url, 1
        )
        main_init_url = _merge_url_parts(method_from_url, path_with_replaced_prefix)

    if schema_config.base_url and path_without_method.startswith(
        schema_config.base_url
    ):
        rest_of_path = path_without_method[len(schema_config.base_url) :]
        current_route_schema_key = _merge_url_parts(method_from_url, rest_of_path)

    return current_route_schema_key, main_init_url


def merge_schema_tables(
    table: SchemaTable | None, plugin_tables: list[SchemaTable]
) -> SchemaTable | None:
    """Merges plugin-declared route tables under the client's own table.

    Client entries win over plugin entries for the same route key, and the
    client's config wins over any plugin config.
    """
    if not plugin_tables:
        return table

    routes: dict[str, RouteSchema] = {}
    config: SchemaConfig | None = None
    for plugin_table in plugin_tables:
        routes.update(plugin_table.routes)
        config = plugin_table.config or config

    if table is not None:
        routes.update(table.routes)
        config = table.config or config

    return SchemaTable(routes=routes, config=config)

