"""Authenticated Request Client.

Injects bearer credentials into every request, recognizes 401 responses and
hands them to the refresh coordinator, which performs one shared token
refresh and replays the parked requests with the new credentials.
"""

import logging
from typing import Any, Dict, Mapping, Optional

import httpx

from ..config import RequestClientConfig
from .exceptions import HTTPStatusError, UnauthorizedError
from .models import RequestInfo, RequestSpec, Response
from .network_error_handler import NetworkErrorHandler
from .refresh_client import RefreshApi, resolve_refresh_fn
from .refresh_coordinator import RefreshCoordinator, RefreshState

logger = logging.getLogger(__name__)


def inject_token(
    headers: Optional[Mapping[str, str]], access_token: Optional[str]
) -> Dict[str, str]:
    """Return a copy of ``headers`` carrying ``access_token`` as a bearer credential.

    Any caller-supplied Authorization header is replaced when a token is
    present; without a token the headers pass through unchanged.
    """
    result = dict(headers or {})
    if not access_token:
        return result

    for key in [k for k in result if k.lower() == "authorization"]:
        del result[key]
    result["Authorization"] = f"Bearer {access_token}"
    return result


def build_url(base_url: str, url: str) -> str:
    """Join ``url`` onto ``base_url`` unless it is already absolute."""
    if url.startswith(("http://", "https://")):
        return url
    if not url:
        return base_url
    return f"{base_url.rstrip('/')}/{url.lstrip('/')}"


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def build_query_params(params: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Stringify query parameter values, dropping the ones set to None.

    List and tuple values become repeated keys.
    """
    query: Dict[str, Any] = {}
    for key, value in (params or {}).items():
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            query[key] = [_stringify(item) for item in value if item is not None]
        else:
            query[key] = _stringify(value)
    return query


def decode_body(response: httpx.Response) -> Any:
    """Decode a response body as JSON when possible, else as text."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


class RequestClient:
    """Asynchronous HTTP client with bearer token injection and 401 recovery."""

    def __init__(
        self,
        config: RequestClientConfig,
        storage,
        refresh_api: RefreshApi,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize request client.

        Args:
            config: Immutable client configuration
            storage: Credential store implementing ``TokenStorage``
            refresh_api: Refresh exchanger object or async refresh callable
            transport: Optional httpx transport override
        """
        self.config = config
        self._storage = storage
        self._refresh_fn = resolve_refresh_fn(refresh_api)
        self._transport = transport
        self._session: Optional[httpx.AsyncClient] = None
        self._network_error_handler = NetworkErrorHandler()
        self._coordinator = RefreshCoordinator(
            storage=storage,
            refresh_fn=self._refresh_fn,
            replay=self._replay,
            refresh_timeout=config.refresh_timeout,
        )

    @property
    def storage(self):
        return self._storage

    @property
    def refresh_state(self) -> RefreshState:
        return self._coordinator.state

    @property
    def refresh_count(self) -> int:
        """Number of refresh exchanges this client has started."""
        return self._coordinator.refresh_count

    @property
    def session(self) -> httpx.AsyncClient:
        """Get or create HTTP session."""
        if self._session is None or self._session.is_closed:
            self._session = httpx.AsyncClient(
                timeout=httpx.Timeout(self.config.request_timeout),
                transport=self._transport,
                follow_redirects=True,
            )
        return self._session

    async def request(
        self,
        url: str,
        method: str = "GET",
        headers: Optional[Mapping[str, str]] = None,
        params: Optional[Mapping[str, Any]] = None,
        data: Any = None,
    ) -> Any:
        """Send an authenticated request.

        Args:
            url: Path relative to the base URL, or an absolute URL
            method: One of GET, POST, PUT, PATCH, DELETE
            headers: Extra request headers
            params: Query parameters; None values are omitted
            data: Request body, ignored for GET and DELETE

        Returns:
            The decoded body when ``return_data_only`` is set, else a ``Response``

        Raises:
            NetworkError: If the transport cannot complete the exchange
            UnauthorizedError: If the request is rejected again after a refresh
            AuthRefreshFailedError: If the token refresh fails
            HTTPStatusError: If ``raise_for_status`` is set and the status is 4xx/5xx
            ValueError: If the method is not supported
        """
        spec = RequestSpec(
            url=url, method=method, headers=headers, params=params, data=data
        )
        return await self.send(spec)

    async def send(self, spec: RequestSpec) -> Any:
        """Send a prepared ``RequestSpec``; see ``request``."""
        access_token = await self._storage.get_access_token()
        response = await self._execute(spec, access_token)

        if response.status_code == 401:
            logger.debug(f"Received 401 for {spec.method} {spec.url}, awaiting refresh")
            return await self._coordinator.submit(spec, sent_token=access_token)

        return self._finalize(spec, response)

    async def get(self, url: str, **kwargs) -> Any:
        return await self.request(url, "GET", **kwargs)

    async def post(self, url: str, **kwargs) -> Any:
        return await self.request(url, "POST", **kwargs)

    async def put(self, url: str, **kwargs) -> Any:
        return await self.request(url, "PUT", **kwargs)

    async def patch(self, url: str, **kwargs) -> Any:
        return await self.request(url, "PATCH", **kwargs)

    async def delete(self, url: str, **kwargs) -> Any:
        return await self.request(url, "DELETE", **kwargs)

    async def _replay(self, spec: RequestSpec, access_token: str) -> Any:
        response = await self._execute(spec, access_token)
        if response.status_code == 401:
            raise UnauthorizedError(
                f"{spec.method} {spec.url} was rejected again after token refresh"
            )
        return self._finalize(spec, response)

    async def _execute(
        self, spec: RequestSpec, access_token: Optional[str]
    ) -> httpx.Response:
        resolved_url = build_url(self.config.base_url, spec.url)
        headers = inject_token(spec.headers, access_token)

        body: Dict[str, Any] = {}
        if spec.sends_body:
            if isinstance(spec.data, (bytes, str)):
                body["content"] = spec.data
            else:
                body["json"] = spec.data

        try:
            response = await self.session.request(
                spec.method,
                resolved_url,
                params=build_query_params(spec.params),
                headers=headers,
                **body,
            )
        except httpx.TransportError as e:
            self._network_error_handler.classify_network_error(e)

        if self.config.log_requests:
            logger.info(f"{spec.method} {resolved_url} -> {response.status_code}")
        return response

    def _finalize(self, spec: RequestSpec, response: httpx.Response) -> Any:
        envelope = Response(
            status=response.status_code,
            status_text=response.reason_phrase,
            headers=dict(response.headers.items()),
            data=decode_body(response),
            config=RequestInfo(
                base_url=self.config.base_url,
                url=spec.url,
                method=spec.method,
                resolved_url=str(response.request.url),
            ),
        )

        if self.config.raise_for_status and response.status_code >= 400:
            detail = envelope.data
            if isinstance(detail, dict):
                detail = detail.get("detail") or detail.get("message") or detail
            raise HTTPStatusError(
                f"HTTP {response.status_code}: {detail}",
                status_code=response.status_code,
                response=envelope,
            )

        if self.config.return_data_only:
            return envelope.data
        return envelope

    async def close(self) -> None:
        """Cancel any in-flight refresh and close the HTTP session."""
        await self._coordinator.close()
        if self._session and not self._session.is_closed:
            await self._session.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def __del__(self):
        session = getattr(self, "_session", None)
        if session and not session.is_closed:
            # Cannot use await in __del__, so we'll just log a warning
            logger.warning("RequestClient was not properly closed")


def create_request_client(
    base_url: str,
    storage,
    refresh_api: RefreshApi,
    return_data_only: bool = True,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    **options,
) -> RequestClient:
    """Build a ``RequestClient`` from keyword configuration.

    Extra ``options`` are ``RequestClientConfig`` fields such as
    ``request_timeout`` or ``refresh_timeout``.
    """
    config = RequestClientConfig(
        base_url=base_url, return_data_only=return_data_only, **options
    )
    return RequestClient(config, storage, refresh_api, transport=transport)
