"""Exception classes for the authenticated request client."""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Category of failure delivered to a caller of ``RequestClient.request``."""

    NETWORK = "network"
    UNAUTHORIZED = "unauthorized"
    AUTH_REFRESH_FAILED = "auth_refresh_failed"
    INVALID_RESPONSE = "invalid_response"
    HTTP_STATUS = "http_status"


class RequestClientError(Exception):
    """Base exception for request client errors."""

    kind: ErrorKind = ErrorKind.NETWORK

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.cause = cause

    def __str__(self):
        if self.cause is not None and str(self.cause):
            return f"{self.message}: {self.cause}"
        return self.message


class NetworkError(RequestClientError):
    """Exception raised when the transport could not complete the exchange."""

    kind = ErrorKind.NETWORK

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        user_guidance: Optional[str] = None,
    ):
        super().__init__(message, cause=cause)
        self.user_guidance = user_guidance or ""


class NetworkConnectionError(NetworkError):
    """Exception raised for connection-related network failures."""

    pass


class NetworkTimeoutError(NetworkError):
    """Exception raised for timeout-related network failures."""

    pass


class DNSResolutionError(NetworkError):
    """Exception raised for DNS resolution failures."""

    pass


class SSLCertificateError(NetworkError):
    """Exception raised for SSL certificate verification failures."""

    pass


class UnauthorizedError(RequestClientError):
    """Exception raised when a request is rejected with 401 after its replay."""

    kind = ErrorKind.UNAUTHORIZED

    def __init__(self, message: str = "Unauthorized", cause=None):
        super().__init__(message, status_code=401, cause=cause)


class AuthRefreshFailedError(RequestClientError):
    """Exception raised for every queued request when the token refresh fails."""

    kind = ErrorKind.AUTH_REFRESH_FAILED


class InvalidResponseError(RequestClientError):
    """Exception raised when a refresh response lacks one of the new tokens."""

    kind = ErrorKind.INVALID_RESPONSE


class RefreshExchangeError(RequestClientError):
    """Exception raised when the refresh endpoint rejects the exchange."""

    kind = ErrorKind.AUTH_REFRESH_FAILED


class HTTPStatusError(RequestClientError):
    """Exception raised for 4xx/5xx responses when status checking is enabled."""

    kind = ErrorKind.HTTP_STATUS

    def __init__(self, message: str, status_code: int, response=None):
        super().__init__(message, status_code=status_code)
        self.response = response
