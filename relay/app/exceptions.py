"""Custom exceptions for the relay application."""

from typing import Mapping, Optional


class RelayException(Exception):
    """Base class for relay exceptions with HTTP status code.

    Subclasses define their status_code; the application turns them into
    plain-text responses carrying ``message`` and ``headers``.
    """
    status_code: int = 500

    def __init__(
        self,
        message: str = "Relay error",
        headers: Optional[Mapping[str, str]] = None,
    ):
        self.message = message
        self.headers = dict(headers or {})
        super().__init__(message)


class MissingTargetError(RelayException):
    """Raised when the request does not name an upstream host.

    Maps to HTTP 400 Bad Request.
    """
    status_code = 400

    def __init__(self, message: str = "Target is required"):
        super().__init__(message)


class RateLimitExceededError(RelayException):
    """Raised when a client exhausted its requests for the current window.

    Maps to HTTP 429 Too Many Requests.
    """
    status_code = 429

    def __init__(self, client_id: Optional[str] = None):
        self.client_id = client_id
        super().__init__("Rate Limit Exceeded")


class UpstreamError(RelayException):
    """Raised when the upstream cannot be reached or answers garbage.

    Maps to HTTP 502 Bad Gateway.
    """
    status_code = 502

    def __init__(
        self,
        host: str,
        detail: str = "",
        headers: Optional[Mapping[str, str]] = None,
    ):
        self.host = host
        self.detail = detail
        super().__init__(f"Bad Gateway: upstream {host} is unavailable", headers=headers)


class ResponseWriteError(Exception):
    """Raised when response bytes cannot be delivered to the caller.

    Not an HTTP response: by the time it happens the status line may
    already be on the wire, so the stream is aborted instead.
    """
