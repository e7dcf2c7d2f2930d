"""Network Error Handler for the authenticated request client.

Classifies transport-level failures raised by httpx into the client's
``NetworkError`` family and attaches user guidance for each failure mode.
Transport failures are never retried here; they are surfaced to the caller.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, NoReturn, Optional, cast

import httpx

from .exceptions import (
    DNSResolutionError,
    NetworkConnectionError,
    NetworkError,
    NetworkTimeoutError,
    SSLCertificateError,
)

logger = logging.getLogger(__name__)


@dataclass
class UserGuidance:
    """User guidance information for network errors."""

    error_type: str
    troubleshooting_steps: List[str]
    contact_info: Optional[str] = None
    additional_notes: List[str] = field(default_factory=list)

    def format_for_console(self) -> str:
        """Format guidance for rich console output."""
        content = []
        content.append(f"[bold red]Error Type:[/bold red] {self.error_type}")
        content.append("")
        content.append("[bold yellow]Troubleshooting Steps:[/bold yellow]")

        for i, step in enumerate(self.troubleshooting_steps, 1):
            content.append(f"{i}. {step}")

        if self.additional_notes:
            content.append("")
            content.append("[bold blue]Additional Notes:[/bold blue]")
            for note in self.additional_notes:
                content.append(f"• {note}")

        if self.contact_info:
            content.append("")
            content.append(f"[bold green]Support:[/bold green] {self.contact_info}")

        return "\n".join(content)


class UserGuidanceProvider:
    """Provides user guidance for different network error scenarios."""

    def __init__(self):
        self._guidance_mapping = {
            NetworkConnectionError: self._get_connection_error_guidance,
            DNSResolutionError: self._get_dns_resolution_guidance,
            SSLCertificateError: self._get_ssl_certificate_guidance,
            NetworkTimeoutError: self._get_timeout_guidance,
        }

    def get_guidance(self, error: Exception) -> UserGuidance:
        """Get user guidance for a specific error."""
        guidance_func = self._guidance_mapping.get(
            type(error), self._get_generic_guidance
        )
        return cast(UserGuidance, guidance_func(error))

    def _get_connection_error_guidance(self, error: Exception) -> UserGuidance:
        return UserGuidance(
            error_type="Network Connection Error",
            troubleshooting_steps=[
                "Check if the API server is running and accessible",
                "Verify the base URL is correct",
                "Check your firewall settings",
                "Verify network connectivity to the server",
            ],
            additional_notes=[
                "This error typically indicates the server is not reachable",
            ],
        )

    def _get_dns_resolution_guidance(self, error: Exception) -> UserGuidance:
        return UserGuidance(
            error_type="DNS Resolution Error",
            troubleshooting_steps=[
                "Check your internet connection",
                "Verify the server hostname is correct",
                "Try using an IP address instead of hostname",
                "Check your DNS server settings",
            ],
            additional_notes=[
                "This error means your computer cannot find the server address",
                "DNS resolution issues are often temporary",
            ],
        )

    def _get_ssl_certificate_guidance(self, error: Exception) -> UserGuidance:
        return UserGuidance(
            error_type="SSL Certificate Error",
            troubleshooting_steps=[
                "Check if the server certificate is valid and not expired",
                "Verify the server hostname matches the certificate",
                "Check if you need to update your certificate store",
            ],
            contact_info="Contact your system administrator for certificate issues",
            additional_notes=[
                "Do not disable certificate verification without proper security review",
            ],
        )

    def _get_timeout_guidance(self, error: Exception) -> UserGuidance:
        return UserGuidance(
            error_type="Network Timeout Error",
            troubleshooting_steps=[
                "Check your network connection speed and stability",
                "Try again - this may be a temporary issue",
                "Check if the server is under heavy load",
                "Consider increasing request_timeout if problem persists",
            ],
            additional_notes=[
                "Timeout errors are often temporary",
            ],
        )

    def _get_generic_guidance(self, error: Exception) -> UserGuidance:
        return UserGuidance(
            error_type="Unknown Network Error",
            troubleshooting_steps=[
                "Check your network connection",
                "Verify the server is accessible",
                "Try again in a few minutes",
            ],
        )


class NetworkErrorHandler:
    """Classifies httpx transport failures into ``NetworkError`` subclasses."""

    def __init__(self):
        self.guidance_provider = UserGuidanceProvider()
        self._dns_error_patterns = [
            r"name.*resolution.*failed",
            r"name.*or.*service.*not.*known",
            r"nodename.*nor.*servname.*provided",
            r"temporary.*failure.*in.*name.*resolution",
            r"getaddrinfo.*failed",
        ]
        self._connection_error_patterns = [
            r"connection.*refused",
            r"connection.*reset",
            r"network.*is.*unreachable",
            r"no.*route.*to.*host",
        ]
        self._ssl_error_patterns = [
            r"ssl.*certificate.*verification.*failed",
            r"certificate.*verify.*failed",
            r"ssl.*handshake.*failed",
            r"bad.*certificate",
        ]

    def classify_network_error(self, error: Exception) -> NoReturn:
        """Classify a transport error and raise the matching ``NetworkError``.

        Args:
            error: The original httpx exception

        Raises:
            NetworkError subclass chosen from the error type and message
        """
        error_message = str(error).lower()

        if isinstance(error, httpx.TimeoutException):
            self._raise_with_guidance(
                NetworkTimeoutError(
                    "Connection timed out"
                    if isinstance(error, httpx.ConnectTimeout)
                    else "Request timed out",
                    cause=error,
                )
            )

        if isinstance(error, httpx.ConnectError):
            if self._matches(self._dns_error_patterns, error_message):
                self._raise_with_guidance(
                    DNSResolutionError(
                        "Cannot resolve server address. Check your internet connection and base URL.",
                        cause=error,
                    )
                )
            if self._matches(self._ssl_error_patterns, error_message):
                self._raise_with_guidance(
                    SSLCertificateError(
                        "SSL certificate verification failed", cause=error
                    )
                )
            if self._matches(self._connection_error_patterns, error_message):
                self._raise_with_guidance(
                    NetworkConnectionError(
                        "Cannot connect to server. Check if server is running and accessible.",
                        cause=error,
                    )
                )
            self._raise_with_guidance(
                NetworkConnectionError("Connection failed", cause=error)
            )

        if isinstance(error, httpx.TransportError):
            self._raise_with_guidance(
                NetworkConnectionError("Network error", cause=error)
            )

        # Unknown error - raise generic network error
        self._raise_with_guidance(
            NetworkError("Unknown network error", cause=error)
        )

    def _matches(self, patterns: List[str], error_message: str) -> bool:
        return any(re.search(pattern, error_message) for pattern in patterns)

    def _raise_with_guidance(self, network_error: NetworkError) -> NoReturn:
        guidance = self.guidance_provider.get_guidance(network_error)
        network_error.user_guidance = guidance.format_for_console()
        logger.debug(f"Classified transport failure as {type(network_error).__name__}")
        raise network_error from network_error.cause
