"""Token refresh exchange for the authenticated request client.

Provides the ``RefreshExchanger`` capability the client depends on, the
validation applied to every refresh result, and an httpx-backed exchanger
that talks to a JSON refresh endpoint.
"""

import json
import logging
from typing import Any, Awaitable, Callable, Mapping, Optional, Protocol, Union

import httpx

from .exceptions import InvalidResponseError, RefreshExchangeError
from .models import TokenPair
from .network_error_handler import NetworkErrorHandler

logger = logging.getLogger(__name__)

TokenRefreshFn = Callable[[Optional[str]], Awaitable[Any]]


class RefreshExchanger(Protocol):
    """Trades a refresh token for a new access/refresh token pair."""

    async def refresh(self, refresh_token: Optional[str]) -> TokenPair: ...


RefreshApi = Union[RefreshExchanger, TokenRefreshFn]


def resolve_refresh_fn(refresh_api: RefreshApi) -> TokenRefreshFn:
    """Accept either an exchanger object or a bare async callable."""
    refresh = getattr(refresh_api, "refresh", None)
    if callable(refresh):
        return refresh
    if callable(refresh_api):
        return refresh_api
    raise TypeError(
        f"refresh_api must be callable or provide refresh(), got {type(refresh_api).__name__}"
    )


def _first_present(data: Mapping[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        value = data.get(key)
        if value:
            return str(value)
    return None


def parse_token_pair(result: Any) -> TokenPair:
    """Validate a refresh result and normalize it to a ``TokenPair``.

    Accepts a ``TokenPair`` or a mapping using either snake_case or camelCase
    keys. Both tokens must be present and non-empty.

    Raises:
        InvalidResponseError: If either token is missing
    """
    if isinstance(result, TokenPair):
        access_token, refresh_token = result.access_token, result.refresh_token
    elif isinstance(result, Mapping):
        access_token = _first_present(result, "access_token", "accessToken")
        refresh_token = _first_present(result, "refresh_token", "refreshToken")
    else:
        raise InvalidResponseError(
            f"Refresh returned {type(result).__name__}, expected a token pair"
        )

    if not access_token or not refresh_token:
        raise InvalidResponseError(
            "Refresh response is missing access_token/refresh_token "
            "(or accessToken/refreshToken)"
        )
    return TokenPair(access_token=access_token, refresh_token=refresh_token)


class HttpRefreshExchanger:
    """Refresh exchanger that POSTs the refresh token to a JSON endpoint."""

    def __init__(
        self,
        base_url: str,
        refresh_path: str = "/api/auth/refresh",
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize HTTP refresh exchanger.

        Args:
            base_url: Server base URL
            refresh_path: Path of the refresh endpoint
            timeout: Request timeout in seconds
            transport: Optional httpx transport override
        """
        path = refresh_path if refresh_path.startswith("/") else f"/{refresh_path}"
        self.refresh_url = f"{base_url.rstrip('/')}{path}"
        self._timeout = timeout
        self._transport = transport
        self._session: Optional[httpx.AsyncClient] = None
        self._network_error_handler = NetworkErrorHandler()

    @property
    def session(self) -> httpx.AsyncClient:
        if self._session is None or self._session.is_closed:
            self._session = httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
                headers={"Content-Type": "application/json"},
            )
        return self._session

    async def refresh(self, refresh_token: Optional[str]) -> TokenPair:
        """Exchange ``refresh_token`` for a new token pair.

        Raises:
            RefreshExchangeError: If the endpoint answers with a non-2xx status
            InvalidResponseError: If the response lacks one of the tokens
            NetworkError: If the endpoint cannot be reached
        """
        try:
            response = await self.session.post(
                self.refresh_url, json={"refreshToken": refresh_token}
            )
        except httpx.TransportError as e:
            self._network_error_handler.classify_network_error(e)

        try:
            data = response.json()
        except (json.JSONDecodeError, ValueError):
            data = None

        if not response.is_success:
            message = None
            if isinstance(data, dict):
                message = data.get("message") or data.get("error")
            raise RefreshExchangeError(
                message
                or f"Token refresh failed: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )

        if not isinstance(data, dict):
            raise InvalidResponseError("Refresh response body is not a JSON object")

        logger.debug("Refresh endpoint returned a new token pair")
        return parse_token_pair(data)

    async def close(self) -> None:
        if self._session and not self._session.is_closed:
            await self._session.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
