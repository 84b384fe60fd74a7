# callfabric/result.py
"""Response parsing and construction of the uniform call result."""

import inspect
import json
import re
from collections.abc import Callable
from typing import Any, Literal

import httpx
from pydantic import BaseModel, ConfigDict

from .exceptions import CallFabricError, HTTPError, ValidationError

ResponseType = Literal["json", "text", "bytes"]
ResultMode = Literal["all", "only_data"]

_JSON_CONTENT_TYPE = re.compile(r"^application/(?:[\w!#$%&*.^`~-]*\+)?json$", re.I)
_TEXT_CONTENT_TYPES = {
    "image/svg",
    "application/xml",
    "application/xhtml",
    "application/html",
}


class ErrorDetails(BaseModel):
    """The tagged error variant of a :class:`CallResult`.

    Attributes:
        kind: ``"http"`` for non-2xx responses, ``"validation"`` for schema
            failures and ``"generic"`` for everything else.
        name: The class name of the original error, e.g. ``"HTTPError"``.
        message: A human readable message.
        error_data: The parsed error body for HTTP errors, the issue list for
            validation errors, and ``False`` otherwise.
        original_error: The exception that was caught.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    kind: Literal["http", "validation", "generic"]
    name: str
    message: str
    error_data: Any = False
    original_error: BaseException


class CallResult(BaseModel):
    """The full outcome of a call: exactly one of ``data`` and ``error`` is set."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    data: Any = None
    error: ErrorDetails | None = None
    response: httpx.Response | None = None


def detect_response_type(response: httpx.Response) -> ResponseType:
    content_type = response.headers.get("content-type")
    if not content_type:
        return "json"

    content_type = content_type.split(";")[0].strip()
    if _JSON_CONTENT_TYPE.match(content_type):
        return "json"
    if content_type in _TEXT_CONTENT_TYPES or content_type.startswith("text/"):
        return "text"
    return "bytes"


async def resolve_response_data(
    response: httpx.Response,
    response_type: ResponseType | None = None,
    parser: Callable[[str], Any] | None = None,
) -> Any:
    """Reads and parses a response body.

    Args:
        response: The response to read.
        response_type: ``"json"``, ``"text"`` or ``"bytes"``; detected from
            the ``Content-Type`` header when None.
        parser: The JSON parser (sync or async), ``json.loads`` by default.

    Returns:
        The parsed body. An empty body yields None whatever the type.

    Raises:
        ValueError: If ``response_type`` is not a known type.
    """
    selected_type = response_type or detect_response_type(response)
    if selected_type not in ("json", "text", "bytes"):
        raise ValueError(f"Invalid response type: {response_type}")

    content = await response.aread()
    if not content:
        return None

    if selected_type == "bytes":
        return content
    if selected_type == "text":
        return response.text

    result = (parser or json.loads)(response.text)
    if inspect.isawaitable(result):
        result = await result
    return result


def resolve_success_result(
    data: Any, *, response: httpx.Response, result_mode: ResultMode
) -> CallResult | Any:
    result = CallResult(data=data, error=None, response=response)
    if result_mode == "only_data":
        return result.data
    return result


def get_error_details(error: BaseException) -> tuple[ErrorDetails, httpx.Response | None]:
    """Classifies a caught error into the tagged error variant."""
    if isinstance(error, HTTPError):
        return (
            ErrorDetails(
                kind="http",
                name=type(error).__name__,
                message=error.message,
                error_data=error.error_data,
                original_error=error,
            ),
            error.response,
        )

    if isinstance(error, ValidationError):
        return (
            ErrorDetails(
                kind="validation",
                name=type(error).__name__,
                message=error.message,
                error_data=error.error_data,
                original_error=error,
            ),
            error.response,
        )

    message = error.message if isinstance(error, CallFabricError) else str(error)
    return (
        ErrorDetails(
            kind="generic",
            name=type(error).__name__,
            message=message,
            error_data=False,
            original_error=error,
        ),
        None,
    )


def resolve_error_result(
    error: BaseException, *, result_mode: ResultMode
) -> tuple[ErrorDetails, httpx.Response | None, CallResult | Any]:
    """Builds the error result of a failed call.

    Returns:
        ``(error_details, response, result)``, where ``result`` is the
        :class:`CallResult` in ``"all"`` mode and None in ``"only_data"`` mode.
    """
    details, response = get_error_details(error)
    result = CallResult(data=None, error=details, response=response)
    if result_mode == "only_data":
        return details, response, result.data
    return details, response, result
