"""Custom exception classes for the callfabric library."""

from collections.abc import Callable, Sequence
from typing import Any

import httpx

DEFAULT_HTTP_ERROR_MESSAGE = "Request failed unexpectedly"


class CallFabricError(Exception):
    """Base exception class for all callfabric errors."""

    def __init__(
        self,
        message: str,
        *,
        response: httpx.Response | None = None,
        request: httpx.Request | None = None,
    ):
        """
        Args:
            message: Human readable description of the failure.
            response: The response that caused the failure, when one was received.
            request: The request that failed, when no response exists.
        """
        super().__init__(message)
        self.message = message
        self.response = response
        self.request = request

    def __str__(self) -> str:
        if self.response is not None:
            url_info = "N/A"
            try:
                url_info = str(self.response.request.url)
            except RuntimeError:
                # Responses built without a request raise on `.request`
                pass
            return (
                f"{self.message} (Status: {self.response.status_code}, URL: {url_info})"
            )
        if isinstance(self.request, httpx.Request):
            return f"{self.message} (URL: {self.request.url})"
        return self.message


class HTTPError(CallFabricError):
    """Represents a non-2xx response returned by the transport.

    The message is taken from ``error_data["message"]`` when the parsed error
    body carries one, then from ``default_message`` (a string or a callable
    receiving ``error_data`` and ``response``), then from the response reason
    phrase.
    """

    def __init__(
        self,
        *,
        error_data: Any,
        response: httpx.Response,
        default_message: str | Callable[..., str | None] | None = None,
    ):
        resolved_default_message = (
            default_message(error_data=error_data, response=response)
            if callable(default_message)
            else default_message
        )
        selected_default_message = (
            resolved_default_message
            or response.reason_phrase
            or DEFAULT_HTTP_ERROR_MESSAGE
        )

        message = selected_default_message
        if isinstance(error_data, dict) and isinstance(error_data.get("message"), str):
            message = error_data["message"]

        super().__init__(message, response=response)
        self.error_data = error_data


def _prettify_path(path: Sequence[Any] | None) -> str:
    if not path:
        return ""
    return " → at " + ".".join(str(segment) for segment in path)


def prettify_validation_issues(issues: Sequence[Any]) -> str:
    """Joins validation issues into a single human readable message."""
    return " | ".join(
        f"✖ {issue.message}{_prettify_path(issue.path)}" for issue in issues
    )


class ValidationError(CallFabricError):
    """Represents a schema validation failure, request side or response side.

    Attributes:
        error_data: The list of issues reported by the validator.
        issue_cause: The name of the field whose validator failed, or
            ``"schema_config-(strict)"`` when strict mode rejected the route.
    """

    def __init__(
        self,
        *,
        issue_cause: str,
        issues: Sequence[Any],
        response: httpx.Response | None = None,
    ):
        super().__init__(prettify_validation_issues(issues), response=response)
        self.error_data = list(issues)
        self.issue_cause = issue_cause


class RequestAbortedError(CallFabricError):
    """Raised when a call is cancelled, either by the caller or by deduplication."""

    def __init__(self, message: str = "The operation was aborted"):
        super().__init__(message)


class RequestTimeoutError(CallFabricError):
    """Represents a request timeout error.

    Raised when the call's timeout token fires, or when the default transport
    reports an ``httpx.TimeoutException``.
    """

    def __init__(self, message: str, *, request: httpx.Request | None = None):
        super().__init__(message, request=request, response=None)


class NetworkError(CallFabricError):
    """Represents a network connection error (DNS failure, connection refused, ...)."""

    def __init__(self, message: str, *, request: httpx.Request | None = None):
        super().__init__(message, request=request, response=None)


class ConfigurationError(CallFabricError):
    """Represents an error in the library's configuration."""

    def __init__(self, message: str):
        super().__init__(message, response=None)
