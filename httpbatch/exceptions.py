"""Exception hierarchy for the HTTP client."""

from __future__ import annotations


class HTTPClientError(Exception):
    """Base exception for HTTP client errors."""
    pass


class ConfigurationError(HTTPClientError, ValueError):
    """Invalid option, raised when options are built, never mid-request."""
    pass


class TransportError(HTTPClientError):
    """Misuse of a transport handle (e.g. executing a closed one).

    Network failures are not raised; they are reported on the Response
    through error_code, error_message and is_timeout.
    """

    def __init__(self, message: str, original_error: Exception | None = None):
        super().__init__(message)
        self.original_error = original_error


class DecodeError(HTTPClientError):
    """Response content could not be decompressed or parsed."""

    def __init__(self, message: str, original_error: Exception | None = None):
        super().__init__(message)
        self.original_error = original_error
