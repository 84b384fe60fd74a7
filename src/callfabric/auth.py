"""Authorization header construction for the ``auth`` option.

The ``auth`` option accepts either a bare token (a string, or a sync/async
getter returning one), which is sent as a Bearer token, or one of the
strategy objects defined here.
"""

import asyncio
import base64
import inspect
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from .log_config import logger

AuthValue = str | None | Awaitable[str | None] | Callable[[], Any]


async def resolve_auth_value(value: AuthValue) -> str | None:
    """Resolves a value that may be a plain string, an awaitable or a getter."""
    if callable(value):
        value = value()
    if inspect.isawaitable(value):
        value = await value
    return value


class AuthStrategy(Protocol):
    """Protocol for objects that build the ``Authorization`` header of a call."""

    async def async_authorization_header(self) -> dict[str, str] | None:
        """Returns ``{"Authorization": ...}``, or None when no value is available."""
        ...


class BearerAuth:
    """Sends ``Authorization: Bearer <value>``."""

    def __init__(self, value: AuthValue):
        self.value = value

    async def async_authorization_header(self) -> dict[str, str] | None:
        value = await resolve_auth_value(self.value)
        if value is None:
            return None
        return {"Authorization": f"Bearer {value}"}


class TokenAuth:
    """Sends ``Authorization: Token <value>``."""

    def __init__(self, value: AuthValue):
        self.value = value

    async def async_authorization_header(self) -> dict[str, str] | None:
        value = await resolve_auth_value(self.value)
        if value is None:
            return None
        return {"Authorization": f"Token {value}"}


class BasicAuth:
    """Sends ``Authorization: Basic <base64(username:password)>``.

    Attributes:
        username: The username, or a (possibly async) getter returning it.
        password: The password, or a (possibly async) getter returning it.
    """

    def __init__(self, username: AuthValue, password: AuthValue):
        self.username = username
        self.password = password

    async def async_authorization_header(self) -> dict[str, str] | None:
        username, password = await asyncio.gather(
            resolve_auth_value(self.username), resolve_auth_value(self.password)
        )
        if username is None or password is None:
            return None
        credentials = base64.b64encode(f"{username}:{password}".encode()).decode()
        return {"Authorization": f"Basic {credentials}"}


class CustomAuth:
    """Sends ``Authorization: <prefix> <value>`` for arbitrary schemes."""

    def __init__(self, prefix: AuthValue, value: AuthValue):
        self.prefix = prefix
        self.value = value

    async def async_authorization_header(self) -> dict[str, str] | None:
        prefix, value = await asyncio.gather(
            resolve_auth_value(self.prefix), resolve_auth_value(self.value)
        )
        if value is None:
            return None
        return {"Authorization": f"{prefix} {value}"}


async def get_auth_header(auth: Any) -> dict[str, str] | None:
    """Builds the authorization header mapping for the ``auth`` option.

    Args:
        auth: None, a bare token (string, awaitable or getter) or an object
            implementing :class:`AuthStrategy`.

    Returns:
        A single-entry header mapping, or None when there is nothing to send.
    """
    if auth is None:
        return None

    if hasattr(auth, "async_authorization_header"):
        logger.trace(f"Building authorization header with {type(auth).__name__}")
        return await auth.async_authorization_header()

    return await BearerAuth(auth).async_authorization_header()
