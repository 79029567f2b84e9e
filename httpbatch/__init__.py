"""HTTP client engine with automatic retry and concurrent batches.

This package provides an HTTP client built on reusable transport handles
(curl_cffi, with an httpx fallback) with:

- Layered options: client defaults merged with per-request options
- Automatic retry of timeouts and transient status codes, with backoff
- Bounded-concurrency batches that keep results in request order and
  retry only the failed requests
- Optional cookie persistence shared by all requests
- Transparent gzip decoding and JSON parsing
- Verbose per-attempt tracing

Basic usage:

    # Simple request
    from httpbatch import HttpClient

    client = HttpClient()
    response = client.get("https://example.com", query={"q": "python"})
    print(response.status_code, response.text)

    # JSON body, retried up to 5 times
    response = client.post(
        "https://api.example.com/items",
        body='{"name": "widget"}',
        max_retry=5,
    )
    data = response.to_structured()

    # Batch of requests, three in flight at a time
    with HttpClient.create(concurrency=3) as client:
        for url in urls:
            client.add_request("GET", url)
        for response in client.send():
            print(response.options.url, response.status_code)

    # Download to a file
    client.download("https://example.com/big.iso", "/tmp/big.iso")
"""

from .batch import BatchScheduler
from .client import HttpClient
from .config import VERSION, Options, merge_options
from .exceptions import (
    ConfigurationError,
    DecodeError,
    HTTPClientError,
    TransportError,
)
from .models import Headers, Response
from .request import Request
from .retry import RETRYABLE_STATUS_CODES, backoff_timeout, should_retry
from .safety import CookieJar
from .transport import (
    CurlTransport,
    HttpxTransport,
    TransportOption,
    UploadFile,
    default_transport,
)

__version__ = VERSION

__all__ = [
    # Main client
    "HttpClient",
    "BatchScheduler",
    "Request",
    # Configuration
    "Options",
    "merge_options",
    "UploadFile",
    # Models
    "Headers",
    "Response",
    # Exceptions
    "HTTPClientError",
    "ConfigurationError",
    "TransportError",
    "DecodeError",
    # Retry policy
    "RETRYABLE_STATUS_CODES",
    "should_retry",
    "backoff_timeout",
    # Transports
    "CurlTransport",
    "HttpxTransport",
    "TransportOption",
    "default_transport",
    # Safety primitives
    "CookieJar",
    # Version
    "__version__",
]
