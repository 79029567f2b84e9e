"""Transport layer implementations."""

from .base import (
    BaseTransport,
    HeaderSink,
    ProgressSink,
    Transport,
    TransportHandle,
    TransportOption,
    UploadFile,
)
from .curl_transport import CURL_AVAILABLE, CurlTransport
from .httpx_transport import HTTPX_AVAILABLE, HttpxTransport


def default_transport() -> BaseTransport:
    """Return the best available transport.

    curl_cffi is preferred; httpx is used when curl_cffi is not installed.

    Raises:
        ImportError: If neither library is installed.
    """
    if CURL_AVAILABLE:
        return CurlTransport()
    if HTTPX_AVAILABLE:
        return HttpxTransport()
    raise ImportError(
        "No transport library available. "
        "Install with: pip install curl_cffi (or pip install httpx)"
    )


__all__ = [
    "BaseTransport",
    "CURL_AVAILABLE",
    "CurlTransport",
    "HTTPX_AVAILABLE",
    "HeaderSink",
    "HttpxTransport",
    "ProgressSink",
    "Transport",
    "TransportHandle",
    "TransportOption",
    "UploadFile",
    "default_transport",
]
