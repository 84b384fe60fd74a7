"""The default transport, sending requests with an ``httpx.AsyncClient``."""

import ssl

import certifi
import httpx

from .config import ClientSettings, get_settings
from .exceptions import CallFabricError, NetworkError, RequestTimeoutError
from .log_config import logger
from .types import RequestOptions


class HttpxTransport:
    """Sends call requests through an ``httpx.AsyncClient``.

    Attributes:
        _settings: Settings providing the timeout and user agent.
        _http_client: The underlying httpx.AsyncClient.
        _should_close_client: Flag indicating if this instance owns the _http_client.
    """

    def __init__(
        self,
        settings: ClientSettings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self._settings = settings or get_settings()
        self._should_close_client = http_client is None
        self._http_client = http_client or self._create_default_http_client()

    def _create_default_http_client(self) -> httpx.AsyncClient:
        """Builds the owned httpx.AsyncClient from the client settings."""
        try:
            ssl_context = ssl.create_default_context(cafile=certifi.where())
            verify_ssl = ssl_context
            logger.debug("Using certifi SSL context.")
        except Exception:
            verify_ssl = True
            logger.warning(
                "certifi not found or failed to load. Using default SSL verification."
            )

        return httpx.AsyncClient(
            timeout=self._settings.request_timeout,
            verify=verify_ssl,
            headers={"User-Agent": self._settings.user_agent},
        )

    @property
    def http_client(self) -> httpx.AsyncClient:
        return self._http_client

    async def __call__(self, url: str, request: RequestOptions) -> httpx.Response:
        """Sends the request and returns the response, whatever its status.

        Raises:
            RequestTimeoutError: If httpx reports a timeout.
            NetworkError: If httpx reports a network failure.
            CallFabricError: For any other httpx request error.
        """
        http_request = self._http_client.build_request(**request.to_httpx_kwargs(url))

        logger.trace(
            f"Sending {http_request.method} {http_request.url} "
            f"headers={dict(http_request.headers)}"
        )
        try:
            response = await self._http_client.send(http_request)
        except httpx.TimeoutException as e:
            logger.error(f"Request timed out: {http_request.url}")
            raise RequestTimeoutError(
                "Request timed out", request=http_request
            ) from e
        except httpx.NetworkError as e:
            logger.error(f"Network error occurred for {http_request.url}: {e}")
            raise NetworkError(
                f"Network error for {http_request.url}: {e}", request=http_request
            ) from e
        except httpx.RequestError as e:
            logger.error(f"HTTP request error for {http_request.url}: {e}")
            raise CallFabricError(
                f"HTTP request error for {http_request.url}: {e}", request=http_request
            ) from e

        logger.debug(f"Received {response.status_code} from {http_request.url}")
        return response

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this transport created it."""
        if self._should_close_client and not self._http_client.is_closed:
            await self._http_client.aclose()
            logger.debug("HttpxTransport closed its httpx.AsyncClient.")
