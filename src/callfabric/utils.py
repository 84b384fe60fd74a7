# callfabric/utils.py
import hashlib
import json
from collections.abc import Callable, Mapping
from typing import Any

import httpx
from pydantic import BaseModel

from .auth import get_auth_header
from .types import FETCH_SPECIFIC_KEYS
from .url import extract_method_from_url, to_query_string

DEFAULT_METHOD = "GET"


def split_config(config: Mapping[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
    """Splits a flat config into ``(request_options, extra_options)``."""
    request_options = {k: v for k, v in config.items() if k in FETCH_SPECIFIC_KEYS}
    extra_options = {k: v for k, v in config.items() if k not in FETCH_SPECIFIC_KEYS}
    return request_options, extra_options


def objectify_headers(headers: Any) -> dict[str, str]:
    if not headers:
        return {}
    if isinstance(headers, httpx.Headers):
        return dict(headers.items())
    return dict(headers)


def get_resolved_headers(*, base_headers: Any, headers: Any) -> dict[str, str]:
    """Resolves the ``headers`` option against the base headers.

    ``headers`` may be a mapping, which replaces the base headers, or a
    callable receiving ``base_headers=`` and returning the mapping to use.
    """
    if callable(headers):
        resolved = headers(base_headers=objectify_headers(base_headers))
    else:
        resolved = headers if headers is not None else base_headers
    return objectify_headers(resolved)


def is_query_string(value: Any) -> bool:
    return isinstance(value, str) and "=" in value


def is_valid_json_string(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    try:
        json.loads(value)
    except ValueError:
        return False
    return True


def is_serializable_object(value: Any) -> bool:
    return isinstance(value, (dict, list, tuple, BaseModel))


def _to_jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return value


def default_body_serializer(body: Any) -> str:
    return json.dumps(_to_jsonable(body))


def _detect_content_type_header(body: Any) -> dict[str, str] | None:
    if is_query_string(body):
        return {"Content-Type": "application/x-www-form-urlencoded"}
    if is_serializable_object(body) or is_valid_json_string(body):
        return {"Accept": "application/json", "Content-Type": "application/json"}
    return None


async def get_headers(
    *, auth: Any, body: Any, resolved_headers: Any
) -> dict[str, str]:
    """Builds the final header mapping of a request.

    The authorization header comes first so explicit headers can override it.
    A content type is detected from the body when none is set.
    """
    auth_header = await get_auth_header(auth)
    headers = objectify_headers(resolved_headers)

    has_content_type = any(key.lower() == "content-type" for key in headers)
    if not has_content_type:
        content_type_header = _detect_content_type_header(body)
        if content_type_header:
            headers.update(content_type_header)

    return {**(auth_header or {}), **headers}


def get_body(
    *,
    body: Any,
    body_serializer: Callable[[Any], str] | None,
    resolved_headers: Any,
) -> Any:
    """Serializes structured bodies according to the request content type."""
    headers = httpx.Headers(objectify_headers(resolved_headers))
    content_type = headers.get("content-type")

    if content_type is None and is_serializable_object(body):
        serializer = body_serializer or default_body_serializer
        return serializer(body)

    if content_type == "application/x-www-form-urlencoded" and is_serializable_object(
        body
    ):
        return to_query_string(_to_jsonable(body))

    return body


def get_method(*, init_url: str | None, method: str | None) -> str:
    """Explicit method, then the route key's ``@<method>/`` prefix, then GET."""
    if method:
        return method.upper()
    method_from_url = extract_method_from_url(init_url)
    if method_from_url:
        return method_from_url.upper()
    return DEFAULT_METHOD


def deterministic_hash(value: Any) -> str:
    """Returns a stable md5 digest of a JSON-serializable value.

    Mapping keys are sorted so equal values hash equally regardless of
    insertion order.
    """
    serialized = json.dumps(value, sort_keys=True, default=str)
    return hashlib.md5(serialized.encode()).hexdigest()


def to_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]
