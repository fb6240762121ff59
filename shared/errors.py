"""
Shared error handling for the TMDB Proxy.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error envelope returned to proxy callers."""

    success: bool = False
    status_code: int
    status_message: str


class ProxyError(Exception):
    """Base exception for proxy failures."""

    status_code: int = 500

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        *,
        status_code: Optional[int] = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            status_code=self.status_code,
            status_message=self.message,
        )


class UpstreamTimeoutError(ProxyError):
    """The upstream did not answer before the request timeout."""

    status_code = 504

    def __init__(
        self,
        message: str = "Gateway Timeout: upstream request timeout",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__("UPSTREAM_TIMEOUT", message, details)


class UpstreamUnavailableError(ProxyError):
    """The upstream could not be reached (DNS, connect, TLS, protocol)."""

    status_code = 502

    def __init__(
        self,
        message: str = "Gateway Error: unable to connect to upstream",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__("UPSTREAM_UNAVAILABLE", message, details)


class MalformedUpstreamBodyError(ProxyError):
    """A cacheable upstream response did not carry a JSON body."""

    status_code = 502

    def __init__(
        self,
        message: str = "Gateway Error: upstream returned a malformed body",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__("MALFORMED_UPSTREAM_BODY", message, details)
