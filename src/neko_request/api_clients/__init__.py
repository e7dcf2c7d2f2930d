"""API Client Abstractions for authenticated HTTP requests.

Provides the request client with bearer token injection, single-flight token
refresh and replay, plus the refresh exchanger it depends on.
"""

from .base_client import (
    RequestClient,
    create_request_client,
    inject_token,
)
from .exceptions import (
    AuthRefreshFailedError,
    DNSResolutionError,
    ErrorKind,
    HTTPStatusError,
    InvalidResponseError,
    NetworkConnectionError,
    NetworkError,
    NetworkTimeoutError,
    RefreshExchangeError,
    RequestClientError,
    SSLCertificateError,
    UnauthorizedError,
)
from .models import RequestInfo, RequestSpec, Response, TokenPair
from .refresh_client import (
    HttpRefreshExchanger,
    RefreshExchanger,
    TokenRefreshFn,
    parse_token_pair,
)
from .refresh_coordinator import RefreshState

__all__ = [
    # Request client
    "RequestClient",
    "create_request_client",
    "inject_token",
    "RefreshState",
    # Models
    "RequestSpec",
    "RequestInfo",
    "Response",
    "TokenPair",
    # Refresh exchange
    "RefreshExchanger",
    "TokenRefreshFn",
    "HttpRefreshExchanger",
    "parse_token_pair",
    # Errors
    "ErrorKind",
    "RequestClientError",
    "NetworkError",
    "NetworkConnectionError",
    "NetworkTimeoutError",
    "DNSResolutionError",
    "SSLCertificateError",
    "UnauthorizedError",
    "AuthRefreshFailedError",
    "InvalidResponseError",
    "RefreshExchangeError",
    "HTTPStatusError",
]
