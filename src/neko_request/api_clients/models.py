"""Data models shared by the request client and its collaborators."""

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

SUPPORTED_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")
BODYLESS_METHODS = ("GET", "DELETE")


@dataclass(frozen=True)
class TokenPair:
    """Access/refresh token pair produced by a refresh exchange."""

    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class RequestSpec:
    """Caller-submitted description of one request.

    Kept verbatim so a parked request can be rebuilt and replayed
    with fresh credentials.
    """

    url: str
    method: str = "GET"
    headers: Optional[Mapping[str, str]] = None
    params: Optional[Mapping[str, Any]] = None
    data: Any = None

    def __post_init__(self):
        method = self.method.upper()
        if method not in SUPPORTED_METHODS:
            raise ValueError(
                f"Unsupported HTTP method '{self.method}', expected one of {SUPPORTED_METHODS}"
            )
        object.__setattr__(self, "method", method)

    @property
    def sends_body(self) -> bool:
        return self.method not in BODYLESS_METHODS and self.data is not None


@dataclass(frozen=True)
class RequestInfo:
    """Where a request was actually sent."""

    base_url: str
    url: str
    method: str
    resolved_url: str


@dataclass
class Response:
    """Full response envelope returned when ``return_data_only`` is off."""

    status: int
    status_text: str
    headers: Dict[str, str]
    data: Any
    config: RequestInfo

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 400

    def to_dict(self) -> Dict[str, Any]:
        """Plain-dict view of the envelope, as shown by the request lab."""
        return {
            "status": self.status,
            "statusText": self.status_text,
            "headers": dict(self.headers),
            "data": self.data,
            "config": {
                "baseURL": self.config.base_url,
                "url": self.config.url,
                "method": self.config.method,
            },
        }
