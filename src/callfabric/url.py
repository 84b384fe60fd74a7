# callfabric/url.py
"""URL helpers: method-prefixed route keys, path params and query strings."""

from collections.abc import Mapping, Sequence
from typing import Any

import httpx

ROUTE_KEY_METHODS = ("delete", "get", "patch", "post", "put")

Params = Mapping[str, Any] | Sequence[Any]
Query = Mapping[str, Any]


def extract_method_from_url(init_url: str | None) -> str | None:
    """Extracts the method from a method-prefixed route key.

    ``"@get/users"`` gives ``"get"``; ``"/users"`` and ``"@invalid/users"`` give None.
    """
    if not init_url or not init_url.startswith("@"):
        return None

    method = init_url[1:].split("/", 1)[0]
    if method not in ROUTE_KEY_METHODS:
        return None
    return method


def normalize_url(init_url: str, *, retain_leading_slash: bool = True) -> str:
    """Strips a ``@<method>/`` prefix from a route key."""
    method_from_url = extract_method_from_url(init_url)
    if method_from_url is None:
        return init_url

    path = init_url[len(f"@{method_from_url}/") :]
    if not retain_leading_slash or path.startswith("http"):
        return path
    return f"/{path}"


def _is_placeholder(part: str) -> bool:
    return part.startswith(":") or (part.startswith("{") and part.endswith("}"))


def merge_url_with_params(url: str, params: Params | None) -> str:
    """Substitutes ``:name`` and ``{name}`` placeholders in ``url``.

    A mapping substitutes by name; a list or tuple substitutes positionally in
    the order the placeholders appear.
    """
    if not params:
        return url

    new_url = url

    if isinstance(params, (list, tuple)):
        placeholders = [part for part in url.split("/") if _is_placeholder(part)]
        for placeholder, value in zip(placeholders, params):
            new_url = new_url.replace(placeholder, str(value), 1)
        return new_url

    for key, value in params.items():
        new_url = new_url.replace(f":{key}", str(value), 1)
        new_url = new_url.replace(f"{{{key}}}", str(value), 1)
    return new_url


def _stringify_query_value(value: Any) -> Any:
    # Keep the lowercase JSON spelling for booleans
    if isinstance(value, bool):
        return str(value).lower()
    return value


def to_query_string(query: Query | None) -> str:
    if not query:
        return ""
    cleaned = {
        key: _stringify_query_value(value)
        for key, value in query.items()
        if value is not None
    }
    return str(httpx.QueryParams(cleaned))


def merge_url_with_query(url: str, query: Query | None) -> str:
    query_string = to_query_string(query)
    if not query_string:
        return url

    if url.endswith("?"):
        return f"{url}{query_string}"
    if "?" in url:
        return f"{url}&{query_string}"
    return f"{url}?{query_string}"


def get_full_and_normalized_url(
    *,
    base_url: str | None,
    init_url: str,
    params: Params | None = None,
    query: Query | None = None,
) -> tuple[str, str]:
    """Builds the final request URL.

    Returns:
        A ``(full_url, normalized_init_url)`` tuple. The base URL is only
        prepended to relative URLs.
    """
    normalized_init_url = normalize_url(init_url)
    url = merge_url_with_query(
        merge_url_with_params(normalized_init_url, params), query
    )

    if base_url and not url.startswith("http"):
        return f"{base_url}{url}", normalized_init_url
    return url, normalized_init_url
