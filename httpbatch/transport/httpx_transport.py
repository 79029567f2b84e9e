"""httpx transport, used when curl_cffi is not installed."""

from __future__ import annotations

import ssl
import time
import warnings
from contextlib import ExitStack
from typing import Any

from .base import (
    BaseTransport,
    ERROR_COULDNT_CONNECT,
    ERROR_COULDNT_RESOLVE_PROXY,
    ERROR_OK,
    ERROR_RECV,
    ERROR_TIMEOUT,
    ERROR_TOO_MANY_REDIRECTS,
    ERROR_UNSUPPORTED_PROTOCOL,
    Transfer,
    TransportHandle,
    TransportOption,
    UploadFile,
    form_fields,
    is_multipart,
)

# Fallback to httpx
try:
    import httpx

    HTTPX_AVAILABLE = True
except ImportError:
    HTTPX_AVAILABLE = False
    httpx = None

Opt = TransportOption


class _NativeClient:
    """httpx.Client cache of one handle.

    TLS, proxy and redirect limits are client-level settings in httpx, so the
    client is rebuilt only when one of them changes.
    """

    def __init__(self) -> None:
        self.client: Any = None
        self.key: tuple | None = None

    def get(self, key: tuple, factory: Any) -> Any:
        if self.client is None or self.key != key:
            self.close()
            self.client = factory()
            self.key = key
        return self.client

    def close(self) -> None:
        if self.client is not None:
            self.client.close()
            self.client = None
            self.key = None


class HttpxTransport(BaseTransport):
    """Transport using httpx.

    Response bodies are read raw (not decoded) so Content-Encoding handling
    stays with the Response. Status and header lines are synthesized for
    every redirect hop in the same shape libcurl reports them.
    """

    name = "httpx"

    def __init__(self, transport: Any = None):
        """Initialize httpx transport.

        Args:
            transport: Optional httpx transport (e.g. httpx.MockTransport).
        """
        if not HTTPX_AVAILABLE:
            raise ImportError(
                "httpx is required for HttpxTransport. "
                "Install with: pip install httpx"
            )
        self._transport = transport

    def _create_native(self) -> Any:
        return _NativeClient()

    def _close_native(self, native: Any) -> None:
        native.close()

    def _client(self, native: _NativeClient, options: dict[Any, Any]) -> Any:
        verify_peer = bool(options.get(Opt.SSL_VERIFYPEER, True))
        verify_host = bool(options.get(Opt.SSL_VERIFYHOST, 2))
        cafile = options.get(Opt.CAINFO)
        proxy = options.get(Opt.PROXY)
        max_redirects = int(options.get(Opt.MAXREDIRS, 20))
        key = (verify_peer, verify_host, cafile, proxy, max_redirects)

        def factory() -> Any:
            kwargs: dict[str, Any] = {"max_redirects": max_redirects}
            if self._transport is not None:
                kwargs["transport"] = self._transport
            else:
                kwargs["verify"] = self._ssl_context(verify_peer, verify_host, cafile)
                if proxy:
                    kwargs["proxy"] = proxy
            return httpx.Client(**kwargs)

        return native.get(key, factory)

    @staticmethod
    def _ssl_context(verify_peer: bool, verify_host: bool, cafile: str | None) -> Any:
        if not verify_peer:
            return False
        context = ssl.create_default_context(cafile=cafile)
        if not verify_host:
            context.check_hostname = False
        return context

    @staticmethod
    def _method(options: dict[Any, Any]) -> str:
        if options.get(Opt.CUSTOMREQUEST):
            return str(options[Opt.CUSTOMREQUEST]).upper()
        if options.get(Opt.NOBODY):
            return "HEAD"
        if options.get(Opt.POST):
            return "POST"
        return "GET"

    @staticmethod
    def _headers(options: dict[Any, Any], multipart: bool) -> list[tuple[str, str]]:
        headers: list[tuple[str, str]] = []
        for line in options.get(Opt.HTTPHEADER) or []:
            name, _, value = line.partition(":")
            name, value = name.strip(), value.strip()
            # httpx writes its own multipart header carrying the boundary
            if multipart and name.lower() == "content-type":
                continue
            headers.append((name, value))
        names = {name.lower() for name, _ in headers}
        extra = (
            ("User-Agent", options.get(Opt.USERAGENT)),
            ("Referer", options.get(Opt.REFERER)),
            ("Cookie", options.get(Opt.COOKIE)),
        )
        for name, value in extra:
            if value and name.lower() not in names:
                headers.append((name, value))
        if "accept-encoding" not in names:
            headers.append(("Accept-Encoding", "identity"))
        return headers

    def _perform(self, handle: TransportHandle, transfer: Transfer) -> None:
        options = handle.options
        unsupported = [key for key in options if not isinstance(key, TransportOption)]
        if unsupported:
            warnings.warn(
                f"Raw transport options are not supported by httpx and were ignored: {unsupported}",
                UserWarning,
                stacklevel=2,
            )

        client = self._client(handle.native, options)
        body = transfer.body
        multipart = is_multipart(body)
        timeout = options.get(Opt.TIMEOUT) or None
        userpwd = options.get(Opt.USERPWD)
        auth = tuple(userpwd.split(":", 1)) if userpwd else None

        start_time = time.monotonic()
        redirect_count = 0
        with ExitStack() as stack:
            kwargs: dict[str, Any] = {
                "headers": self._headers(options, multipart),
                "timeout": timeout,
                "follow_redirects": bool(options.get(Opt.FOLLOWLOCATION)),
            }
            if auth is not None:
                kwargs["auth"] = auth
            if multipart:
                # Plain fields are parts without a filename so httpx encodes
                # multipart even when the form carries no file.
                kwargs["files"] = [
                    (name, (value.name, stack.enter_context(open(value.path, "rb")), value.mime_type))
                    if isinstance(value, UploadFile)
                    else (name, (None, str(value).encode()))
                    for name, value in form_fields(body)
                ]
            elif body is not None:
                kwargs["content"] = body

            try:
                response = stack.enter_context(
                    client.stream(self._method(options), options[Opt.URL], **kwargs)
                )
                for hop in [*response.history, response]:
                    self._emit_headers(hop, transfer)
                redirect_count = len(response.history)
                # iter_raw() refuses responses httpx has already read (as
                # httpx.MockTransport does); the stream itself replays them.
                for chunk in response.stream:
                    transfer.on_body(chunk)
            except httpx.HTTPError as e:
                handle.errno = self._error_code(e)
                handle.error = f"{type(e).__name__}: {e}"
                handle.info = {
                    "http_code": 0,
                    "effective_url": options[Opt.URL],
                    "total_time": time.monotonic() - start_time,
                }
                return

        handle.errno = ERROR_OK
        handle.info = {
            "http_code": response.status_code,
            "effective_url": str(response.url),
            "content_type": response.headers.get("content-type"),
            "redirect_count": redirect_count,
            "total_time": time.monotonic() - start_time,
            "size_download": transfer.downloaded,
            "size_upload": transfer.upload_total,
        }

    @staticmethod
    def _emit_headers(response: Any, transfer: Transfer) -> None:
        transfer.on_header(
            f"{response.http_version} {response.status_code} {response.reason_phrase}\r\n"
        )
        for name, value in response.headers.raw:
            transfer.on_header(name + b": " + value + b"\r\n")
        transfer.on_header("\r\n")

    @staticmethod
    def _error_code(error: Exception) -> int:
        if isinstance(error, httpx.TimeoutException):
            return ERROR_TIMEOUT
        if isinstance(error, httpx.TooManyRedirects):
            return ERROR_TOO_MANY_REDIRECTS
        if isinstance(error, httpx.ProxyError):
            return ERROR_COULDNT_RESOLVE_PROXY
        if isinstance(error, httpx.ConnectError):
            return ERROR_COULDNT_CONNECT
        if isinstance(error, httpx.UnsupportedProtocol):
            return ERROR_UNSUPPORTED_PROTOCOL
        return ERROR_RECV
