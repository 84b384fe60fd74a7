"""Tests for route-scoped schema validation in callfabric."""

import pytest
from pydantic import BaseModel, TypeAdapter

from callfabric.client import CallClient
from callfabric.exceptions import ValidationError
from callfabric.validation import (
    RouteSchema,
    SchemaConfig,
    SchemaResult,
    SchemaTable,
    ValidationIssue,
    define_schema,
    get_current_route_schema_key_and_main_url,
    handle_schema_validation,
    merge_schema_tables,
    run_validator,
)


class User(BaseModel):
    name: str


class NonEmpty:
    """A validator following the standard validation contract."""

    def validate(self, value):
        if not value:
            return SchemaResult(issues=[ValidationIssue(message="must not be empty")])
        return SchemaResult(value=value)


@pytest.fixture
def users_schema():
    """Fixture for a schema table with a POST /users route."""
    return define_schema(
        {
            "@post/users": RouteSchema(body=User, data=User),
            "/users": RouteSchema(data=TypeAdapter(list[User])),
        }
    )


@pytest.mark.asyncio
async def test_run_validator_with_model_class():
    """Test validation with a pydantic model class."""
    result = await run_validator(User, {"name": "Ada"})
    assert result.issues is None
    assert result.value == User(name="Ada")

    failed = await run_validator(User, {"name": 3})
    assert failed.issues[0].path == ["name"]


@pytest.mark.asyncio
async def test_run_validator_with_type_adapter():
    """Test validation with a pydantic TypeAdapter."""
    result = await run_validator(TypeAdapter(list[int]), ["1", 2])
    assert result.value == [1, 2]


@pytest.mark.asyncio
async def test_run_validator_with_standard_schema():
    """Test validation with an object exposing validate()."""
    assert (await run_validator(NonEmpty(), "x")).value == "x"
    assert (await run_validator(NonEmpty(), "")).issues[0].message == "must not be empty"


@pytest.mark.asyncio
async def test_run_validator_with_async_callable():
    """Test that callable validators may be async and report raised errors."""

    async def upper(value):
        if not isinstance(value, str):
            raise TypeError("expected a string")
        return value.upper()

    assert (await run_validator(upper, "abc")).value == "ABC"
    assert (await run_validator(upper, 1)).issues[0].message == "expected a string"


@pytest.mark.asyncio
async def test_handle_schema_validation_raises_with_cause():
    """Test that validation issues raise a ValidationError naming the field."""
    with pytest.raises(ValidationError) as exc_info:
        await handle_schema_validation(
            RouteSchema(meta=NonEmpty()), "meta", input_value={}
        )

    assert exc_info.value.issue_cause == "meta"
    assert "must not be empty" in exc_info.value.message


@pytest.mark.asyncio
async def test_body_validation_fails_before_dispatch(
    settings, fake_transport, users_schema
):
    """Test that a failing body validator prevents any dispatch."""
    client = CallClient(
        base_url="https://api.example.com",
        transport=fake_transport,
        settings=settings,
        schema=users_schema,
    )

    result = await client.call("@post/users", body={"name": 42})

    assert result.error.kind == "validation"
    assert result.error.original_error.issue_cause == "body"
    assert isinstance(result.error.error_data, list)
    assert fake_transport.calls == []


@pytest.mark.asyncio
async def test_body_validation_can_be_disabled(settings, make_transport, users_schema):
    """Test that disable_runtime_validation skips the listed fields."""
    transport = make_transport((200, {"name": "Ada"}))
    client = CallClient(
        base_url="https://api.example.com",
        transport=transport,
        settings=settings,
        schema=users_schema,
    )

    result = await client.call(
        "@post/users",
        body={"name": 42},
        schema_config=SchemaConfig(disable_runtime_validation={"body": True}),
    )

    assert result.error is None
    assert transport.calls[0].body == '{"name": 42}'


@pytest.mark.asyncio
async def test_validated_body_is_sent(settings, make_transport, users_schema):
    """Test that the validator's output is what gets serialized."""
    transport = make_transport((200, {"name": "Ada"}))
    client = CallClient(
        base_url="https://api.example.com",
        transport=transport,
        settings=settings,
        schema=users_schema,
    )

    result = await client.call("@post/users", body={"name": "Ada"})

    assert transport.calls[0].body == '{"name": "Ada"}'
    assert result.data == User(name="Ada")


@pytest.mark.asyncio
async def test_response_data_is_transformed(settings, make_transport, users_schema):
    """Test that response data is returned as the validator's output."""
    transport = make_transport((200, [{"name": "Ada"}, {"name": "Grace"}]))
    client = CallClient(
        base_url="https://api.example.com",
        transport=transport,
        settings=settings,
        schema=users_schema,
    )

    result = await client.call("/users")

    assert result.data == [User(name="Ada"), User(name="Grace")]


@pytest.mark.asyncio
async def test_disabled_transform_keeps_raw_data(settings, make_transport, users_schema):
    """Test that disable_runtime_validation_transform validates but keeps input."""
    transport = make_transport((200, [{"name": "Ada"}]))
    client = CallClient(
        base_url="https://api.example.com",
        transport=transport,
        settings=settings,
        schema=users_schema,
    )

    result = await client.call(
        "/users",
        schema_config=SchemaConfig(disable_runtime_validation_transform=True),
    )

    assert result.data == [{"name": "Ada"}]


@pytest.mark.asyncio
async def test_error_data_validation(settings, make_transport):
    """Test that HTTP error bodies are validated with error_data."""

    class Problem(BaseModel):
        code: int

    transport = make_transport((422, {"code": "invalid"}))
    client = CallClient(
        transport=transport,
        settings=settings,
        schema=define_schema({"https://api.example.com/a": RouteSchema(error_data=Problem)}),
    )

    result = await client.call("https://api.example.com/a")

    assert result.error.kind == "validation"
    assert result.error.original_error.issue_cause == "error_data"
    assert result.response.status_code == 422


@pytest.mark.asyncio
async def test_fallback_entry_applies(settings, make_transport):
    """Test that the @default entry fills fields the route does not define."""
    transport = make_transport((200, {"name": 1}))
    client = CallClient(
        transport=transport,
        settings=settings,
        schema=define_schema(
            {
                "@default": {"data": User},
                "https://api.example.com/a": {"method": str},
            }
        ),
    )

    result = await client.call("https://api.example.com/a")

    assert result.error.kind == "validation"
    assert result.error.original_error.issue_cause == "data"


@pytest.mark.asyncio
async def test_strict_mode_rejects_unknown_route(settings, fake_transport):
    """Test that strict mode rejects routes covered only by the fallback."""
    client = CallClient(
        base_url="https://api.example.com",
        transport=fake_transport,
        settings=settings,
        schema=define_schema(
            {"@default": RouteSchema(data=dict), "/known": RouteSchema()},
            config=SchemaConfig(strict=True),
        ),
    )

    result = await client.call("/unknown")
    known = await client.call("/known")

    assert result.error.kind == "validation"
    assert result.error.original_error.issue_cause == "schema_config-(strict)"
    assert known.error is None
    assert len(fake_transport.calls) == 1


@pytest.mark.asyncio
async def test_instance_schema_callable(settings, make_transport, users_schema):
    """Test that a per-call schema callable can extend the route schema."""
    transport = make_transport((200, [{"name": "Ada"}]))
    client = CallClient(
        base_url="https://api.example.com",
        transport=transport,
        settings=settings,
        schema=users_schema,
    )

    def without_data(base_schema_routes, current_route_schema, current_route_schema_key):
        assert current_route_schema_key == "/users"
        return current_route_schema.model_copy(update={"data": None})

    result = await client.call("/users", schema=without_data)

    assert result.data == [{"name": "Ada"}]


def test_prefix_is_replaced_by_base_url():
    """Test route key and URL derivation with a prefix."""
    table = define_schema({}, config=SchemaConfig(prefix="/api", base_url="https://x.test"))

    key, url = get_current_route_schema_key_and_main_url(
        base_extra_options={"schema": table}, extra_options={}, init_url="@get/api/users"
    )

    assert key == "@get/users"
    assert url == "@get/https://x.test/users"


def test_base_url_is_stripped_from_route_key():
    """Test that a configured base URL is removed from the route key."""
    table = define_schema({}, config=SchemaConfig(base_url="https://x.test"))

    key, url = get_current_route_schema_key_and_main_url(
        base_extra_options={"schema": table},
        extra_options={},
        init_url="https://x.test/users",
    )

    assert key == "/users"
    assert url == "https://x.test/users"


def test_merge_schema_tables_prefers_client_entries():
    """Test that client entries win over plugin entries for the same key."""
    client_route = RouteSchema(data=int)
    plugin_route = RouteSchema(data=str)
    other_route = RouteSchema(body=str)

    merged = merge_schema_tables(
        SchemaTable(routes={"/a": client_route}),
        [SchemaTable(routes={"/a": plugin_route, "/b": other_route})],
    )

    assert merged.routes["/a"] is client_route
    assert merged.routes["/b"] is other_route
    assert merge_schema_tables(None, []) is None
