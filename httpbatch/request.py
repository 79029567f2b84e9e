"""Transport handle wrapper: one reusable handle and the options applied to it."""

from __future__ import annotations

import threading
from typing import Any, Callable

from .config import Options, _is_stream
from .exceptions import TransportError
from .models import Response
from .retry import backoff_timeout, should_retry
from .transport.base import ERROR_TIMEOUT, INFO_FIELDS, BaseTransport, TransportHandle, TransportOption

Opt = TransportOption


class HeaderBuffer:
    """Header sink accumulating the raw response header lines of one attempt."""

    def __init__(self) -> None:
        self._lines: list[str] = []
        self._lock = threading.Lock()

    def on_header(self, line: str) -> None:
        with self._lock:
            self._lines.append(line)

    @property
    def lines(self) -> list[str]:
        with self._lock:
            return list(self._lines)

    def clear(self) -> None:
        with self._lock:
            self._lines = []


class CallbackProgress:
    """Progress sink forwarding to a user callback."""

    def __init__(self, callback: Callable[[int, int, int, int], Any]):
        self.callback = callback

    def on_progress(self, download_total: int, downloaded: int, upload_total: int, uploaded: int) -> None:
        self.callback(download_total, downloaded, upload_total, uploaded)


class Request:
    """Wrapper owning one reusable transport handle.

    The handle is created lazily by the first reset() and reset in place on
    later ones, so a wrapper can serve any number of requests in turn. Each
    request goes through reset(), apply_options(), execute() and finally
    finalize().

    Example:
        request = Request(transport)
        request.reset()
        request.apply_options(Options(url="https://example.com"))
        response = request.execute()
        request.finalize(response)
    """

    def __init__(self, transport: BaseTransport, options: Options | None = None):
        self.transport = transport
        self._options = options or Options()
        self._handle: TransportHandle | None = None
        self._headers = HeaderBuffer()

    def __repr__(self) -> str:
        return f"<Request {self._options.method} {self._options.url}>"

    @property
    def handle(self) -> TransportHandle | None:
        return self._handle

    @property
    def options(self) -> Options:
        return self._options

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def reset(self) -> None:
        """Return the handle to a clean state, creating it on first use."""
        if self._handle is None:
            self._handle = self.transport.create()
        else:
            self.transport.reset(self._handle)
        self._headers.clear()

    def apply_options(self, options: Options) -> None:
        """Translate options into transport settings on the handle.

        Raw curl_options are applied after every derived setting and win
        over them. Settings whose value is None are not applied.

        Args:
            options: Options of the next attempt.
        """
        if self._handle is None:
            self.reset()
        self._options = options
        for option, value in self._settings(options).items():
            if value is None:
                continue
            self.transport.set_option(self._handle, option, value)

    def _settings(self, options: Options) -> dict[Any, Any]:
        settings: dict[Any, Any] = {
            Opt.URL: options.build_full_url(),
            Opt.TCP_NODELAY: True,
            Opt.AUTOREFERER: True,
            Opt.FOLLOWLOCATION: True,
            Opt.MAXREDIRS: options.max_redirects,
            Opt.TIMEOUT: options.timeout,
            Opt.SSL_VERIFYPEER: options.verify_peer,
            Opt.SSL_VERIFYHOST: 2 if options.verify_host else 0,
            Opt.CAINFO: options.cafile,
            Opt.USERAGENT: options.user_agent,
            Opt.REFERER: options.referer,
            Opt.PROXY: options.proxy,
            Opt.HEADERFUNCTION: self._headers,
            Opt.HTTPHEADER: options.header_lines() or None,
            Opt.COOKIE: self._cookie_header(options),
        }
        if options.auth_basic:
            settings[Opt.USERPWD] = "{}:{}".format(*options.auth_basic)

        method = options.method
        if method == "GET":
            settings[Opt.HTTPGET] = True
        elif method == "POST":
            settings[Opt.POST] = True
        elif method == "HEAD":
            settings[Opt.NOBODY] = True
        else:
            settings[Opt.CUSTOMREQUEST] = method

        if method != "GET" and options.body is not None:
            if _is_stream(options.body):
                settings[Opt.READDATA] = options.body
            else:
                settings[Opt.POSTFIELDS] = options.encode_body()

        if options.on_progress is not None:
            settings[Opt.PROGRESSFUNCTION] = CallbackProgress(options.on_progress)

        settings.update(options.curl_options)
        return settings

    @staticmethod
    def _cookie_header(options: Options) -> str | None:
        pairs: list[str] = []
        if options.cookie_jar is not None:
            for raw in options.cookie_jar.get_cookies():
                pair = raw.split(";", 1)[0].strip()
                if pair:
                    pairs.append(pair)
        pairs.extend(f"{name}={value}" for name, value in options.cookies.items())
        return "; ".join(pairs) or None

    def execute(self, from_concurrent_round: bool = False) -> Response:
        """Run the request and wrap the outcome in a Response.

        Args:
            from_concurrent_round: Fetch the result of a finished concurrent
                round instead of performing the request now.

        Raises:
            TransportError: If the handle is closed or the transport failed
                unexpectedly. Network failures are reported on the response.
        """
        if self._handle is None:
            raise TransportError("Request has no transport handle, call reset() first")
        if from_concurrent_round:
            content = self.transport.multi_get_result(self._handle)
        else:
            try:
                content = self.transport.execute(self._handle)
            except TransportError:
                raise
            except Exception as e:
                raise TransportError(
                    f"Request failed: {type(e).__name__}: {e}",
                    original_error=e,
                ) from e
        return Response(self, content, self._headers.lines, diagnostics=self.diagnostics())

    def finalize(self, response: Response | None = None) -> None:
        """Clean up after the last attempt of a request.

        Saves Set-Cookie values into the cookie jar and closes the download
        destination and stream body, if any, so no file stays open while the
        handle is reused.
        """
        options = self._options
        if response is not None and options.cookie_jar is not None:
            options.cookie_jar.save_cookies(response.header("Set-Cookie"))

        writer = options.curl_options.pop(Opt.WRITEDATA, None)
        if writer is not None and hasattr(writer, "close"):
            writer.close()
        if _is_stream(options.body) and hasattr(options.body, "close"):
            options.body.close()
            options.body = None

    def close(self) -> None:
        """Finalize and release the handle. Safe to call more than once."""
        self.finalize()
        if self._handle is not None:
            self.transport.close(self._handle)
            self._handle = None

    # -------------------------------------------------------------------------
    # Retry
    # -------------------------------------------------------------------------

    def can_retry(self) -> bool:
        """Check if the last attempt should be sent again."""
        error_code = self.error_code()
        return should_retry(
            error_code,
            self.status_code(),
            error_code == ERROR_TIMEOUT,
            self._options.retry_count,
            self._options.max_retry,
        )

    def prepare_retry(self) -> None:
        """Bump the retry counter and back off the timeout before resubmitting."""
        options = self._options
        options.inc_retry_count()
        options.timeout = backoff_timeout(options.retry_count, options.timeout)
        if Opt.TIMEOUT not in options.curl_options:
            self.transport.set_option(self._handle, Opt.TIMEOUT, options.timeout)
        self._headers.clear()

    # -------------------------------------------------------------------------
    # Diagnostics
    # -------------------------------------------------------------------------

    def status_code(self) -> int:
        return int(self.get_info("http_code") or 0)

    def error_code(self) -> int:
        if self._handle is None:
            return 0
        return self.transport.errno(self._handle)

    def error_message(self) -> str:
        if self._handle is None:
            return ""
        return self.transport.error_string(self._handle)

    def get_info(self, field: str) -> Any:
        if self._handle is None:
            return None
        return self.transport.get_info(self._handle, field)

    def diagnostics(self) -> dict[str, Any]:
        """Snapshot of the last attempt: transport info plus error and retry state."""
        info: dict[str, Any] = {}
        for field in INFO_FIELDS:
            value = self.get_info(field)
            if value is not None:
                info[field] = value
        info["error_code"] = self.error_code()
        info["error"] = self.error_message()
        info["http_method"] = self._options.method
        info["retry_count"] = self._options.retry_count
        return info
