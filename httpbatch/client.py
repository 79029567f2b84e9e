"""HTTP client with automatic retry and bounded-concurrency batches."""

from __future__ import annotations

import threading
from typing import Any, Callable, Iterator, Mapping, TextIO

from ._debug import DebugInfo, DebugOutput
from .batch import BatchScheduler
from .config import Options
from .exceptions import TransportError
from .models import Response
from .request import Request
from .retry import MAX_RETRY_ROUNDS, backoff_timeout
from .safety import CookieJar
from .transport import BaseTransport, TransportOption, default_transport


class HttpClient:
    """HTTP client running single requests and concurrent batches.

    Every call merges its options over the client defaults. Failed attempts
    are retried while the retry policy allows it, with a shorter timeout on
    each retry. Single requests use a dedicated transport handle; batches
    use a pool of handles owned by the batch scheduler.

    Examples:
        # Simple usage
        client = HttpClient({"base_url": "https://api.example.com"})
        response = client.get("/items", query={"page": 2})

        # With cookie persistence
        client = HttpClient(persist_cookies=True)
        client.post("https://example.com/login", body={"user": "..."})
        client.get("https://example.com/dashboard")  # Cookies sent

        # Batch of requests, three at a time, results in order
        client = HttpClient.create(concurrency=3)
        for url in urls:
            client.add_request("GET", url)
        for response in client.send():
            print(response.status_code)
    """

    def __init__(
        self,
        options: Mapping[str, Any] | None = None,
        concurrency: int = 6,
        transport: BaseTransport | None = None,
        persist_cookies: bool = False,
        verbose: bool = False,
        debug_output: TextIO | None = None,
        debug_callback: Callable[[DebugInfo], None] | None = None,
    ):
        """Initialize HttpClient.

        Args:
            options: Default options merged under every request.
            concurrency: Maximum requests in flight during send().
            transport: Transport to use (curl_cffi, else httpx, if None).
            persist_cookies: Share a CookieJar across requests unless the
                options already name one.
            verbose: Print every attempt to debug_output.
            debug_output: Stream for verbose output (defaults to stderr).
            debug_callback: Called with a DebugInfo for every attempt.

        Raises:
            ConfigurationError: If the default options are invalid.
        """
        self._options = dict(options or {})
        if persist_cookies and self._options.get("cookie_jar") is None:
            self._options["cookie_jar"] = CookieJar()
        # Fail early on invalid defaults
        Options.from_mapping(self._options)

        self._transport = transport or default_transport()
        self._debug = DebugOutput(
            enabled=verbose or debug_callback is not None,
            output=debug_output,
            callback=debug_callback,
        )
        self._batch = BatchScheduler(
            self._transport,
            self._options,
            concurrency=concurrency,
            debug=self._debug,
        )

        # Handle of single requests, created on first use
        self._request: Request | None = None
        self._request_lock = threading.Lock()

        self._last_response: Response | None = None
        self._closed = False

    @classmethod
    def create(
        cls,
        options: Mapping[str, Any] | None = None,
        concurrency: int = 6,
        **kwargs: Any,
    ) -> "HttpClient":
        """Create a client; concurrency below 1 is raised to 1."""
        return cls(options, concurrency=max(1, concurrency), **kwargs)

    # ========== Single Requests ==========

    def request(self, method: str, url: str, **options: Any) -> Response:
        """Make an HTTP request, retrying it while the retry policy allows.

        Args:
            method: HTTP method (GET, POST, PUT, DELETE, etc.).
            url: Request URL, absolute or relative to the base_url option.
            **options: Per-request options (see Options).

        Returns:
            Response of the last attempt. Network failures are reported on
            it, not raised.

        Raises:
            ConfigurationError: If the options are invalid.
            TransportError: If the client is closed.
        """
        self._check_open()
        options["method"] = method
        options["url"] = url
        built = Options.merge(self._options, options)

        with self._request_lock:
            request = self._get_request()
            for _ in range(MAX_RETRY_ROUNDS + 1):
                request.reset()
                request.apply_options(built)
                response = request.execute()

                will_retry = request.can_retry()
                if self._debug.enabled:
                    self._debug.log_attempt(DebugInfo.from_attempt(request, response, will_retry))
                if not will_retry:
                    break

                # Next attempt: bumped counter and a shorter timeout
                options["retry_count"] = built.retry_count + 1
                options["timeout"] = backoff_timeout(options["retry_count"], built.timeout)
                built = Options.merge(self._options, options)

            request.finalize(response)

        self._last_response = response
        return response

    def get(self, url: str, query: Mapping[str, Any] | None = None, **options: Any) -> Response:
        """Make a GET request."""
        if query is not None:
            options["query"] = query
        return self.request("GET", url, **options)

    def post(self, url: str, body: Any = None, **options: Any) -> Response:
        """Make a POST request."""
        return self.request("POST", url, body=body, **options)

    def put(self, url: str, body: Any = None, **options: Any) -> Response:
        """Make a PUT request."""
        return self.request("PUT", url, body=body, **options)

    def patch(self, url: str, body: Any = None, **options: Any) -> Response:
        """Make a PATCH request."""
        return self.request("PATCH", url, body=body, **options)

    def delete(self, url: str, body: Any = None, **options: Any) -> Response:
        """Make a DELETE request."""
        return self.request("DELETE", url, body=body, **options)

    def head(self, url: str, **options: Any) -> Response:
        """Make a HEAD request."""
        return self.request("HEAD", url, **options)

    def download(self, url: str, filename: str, **options: Any) -> Response:
        """Download a URL into a file.

        The body is streamed to the file instead of memory, so the response
        has no content. The timeout defaults to none.

        Args:
            url: Request URL.
            filename: Destination path, truncated on every attempt.
            **options: Per-request options (see Options).
        """
        options.setdefault("timeout", 0)
        method = options.pop("method", "GET")
        destination = open(filename, "wb")
        try:
            curl_options = dict(options.get("curl_options") or {})
            curl_options[TransportOption.WRITEDATA] = destination
            options["curl_options"] = curl_options
            return self.request(method, url, **options)
        finally:
            if not destination.closed:
                destination.close()

    # ========== Batches ==========

    def add_request(self, method: str, url: str, **options: Any) -> None:
        """Queue a request for the next send().

        Raises:
            ConfigurationError: If the options are invalid.
        """
        self._check_open()
        self._batch.enqueue(method, url, **options)

    def send(self) -> Iterator[Response]:
        """Run every queued request; yields responses in the order they were added."""
        self._check_open()
        return self._batch.run_all()

    @property
    def pending(self) -> int:
        """Number of queued requests."""
        return len(self._batch)

    # ========== Helper Methods ==========

    @property
    def last_response(self) -> Response | None:
        """Get the last single-request response."""
        return self._last_response

    @property
    def cookie_jar(self) -> CookieJar | None:
        """The cookie jar shared by default, if any."""
        return self._options.get("cookie_jar")

    @property
    def transport(self) -> BaseTransport:
        return self._transport

    def _get_request(self) -> Request:
        if self._request is None:
            self._request = Request(self._transport)
        return self._request

    def _check_open(self) -> None:
        if self._closed:
            raise TransportError("Client is closed")

    # ========== Context Managers ==========

    def close(self) -> None:
        """Close client and release every handle."""
        if not self._closed:
            if self._request is not None:
                self._request.close()
                self._request = None
            self._batch.close()
            self._closed = True

    def __enter__(self) -> "HttpClient":
        return self

    def __exit__(self, *args) -> None:
        self.close()
