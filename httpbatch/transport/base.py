"""Transport primitive interface shared by the curl_cffi and httpx transports.

A transport hands out reusable handles. Callers configure a handle with
set_option(), run it with execute() (or through the multi_* functions for a
concurrent round) and then read the outcome with errno(), error_string() and
get_info(). Network failures never raise; they are recorded on the handle.
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from io import BytesIO
from typing import Any, Mapping, Protocol, runtime_checkable

from ..exceptions import TransportError

# Error codes, numbered like libcurl's CURLcode.
ERROR_OK = 0
ERROR_UNSUPPORTED_PROTOCOL = 1
ERROR_COULDNT_RESOLVE_PROXY = 5
ERROR_COULDNT_RESOLVE_HOST = 6
ERROR_COULDNT_CONNECT = 7
ERROR_TIMEOUT = 28
ERROR_BAD_FUNCTION_ARGUMENT = 43
ERROR_TOO_MANY_REDIRECTS = 47
ERROR_SEND = 55
ERROR_RECV = 56

MULTI_OK = 0
MULTI_BAD_HANDLE = 1
POLL_ERROR = -1

# Transfer details collected after each execution.
INFO_FIELDS = (
    "http_code",
    "effective_url",
    "content_type",
    "redirect_count",
    "total_time",
    "namelookup_time",
    "connect_time",
    "starttransfer_time",
    "redirect_time",
    "size_download",
    "size_upload",
    "primary_ip",
)


class TransportOption(str, Enum):
    """Transport-neutral option names, modelled on libcurl's CURLOPT_*."""

    URL = "url"
    HTTPGET = "httpget"
    POST = "post"
    NOBODY = "nobody"
    CUSTOMREQUEST = "customrequest"
    HTTPHEADER = "httpheader"
    COOKIE = "cookie"
    USERPWD = "userpwd"
    USERAGENT = "useragent"
    REFERER = "referer"
    PROXY = "proxy"
    FOLLOWLOCATION = "followlocation"
    AUTOREFERER = "autoreferer"
    MAXREDIRS = "maxredirs"
    TIMEOUT = "timeout"
    SSL_VERIFYPEER = "ssl_verifypeer"
    SSL_VERIFYHOST = "ssl_verifyhost"
    CAINFO = "cainfo"
    TCP_NODELAY = "tcp_nodelay"
    POSTFIELDS = "postfields"
    READDATA = "readdata"
    WRITEDATA = "writedata"
    HEADERFUNCTION = "headerfunction"
    PROGRESSFUNCTION = "progressfunction"


@dataclass(frozen=True)
class UploadFile:
    """File part of a multipart form body.

    Attributes:
        path: Local path of the file to upload.
        filename: Filename reported to the server (defaults to the basename).
        mime_type: Content type of the part.
    """

    path: str
    filename: str | None = None
    mime_type: str | None = None

    @property
    def name(self) -> str:
        return self.filename or os.path.basename(self.path)


def is_multipart(body: Any) -> bool:
    """Check if a body is a set of form fields the transport must encode.

    Bodies that were not serialized to text or bytes beforehand (a mapping
    or a sequence of (name, value) pairs) go out as multipart/form-data.
    """
    return isinstance(body, (Mapping, list, tuple))


def form_fields(body: Mapping[str, Any] | Any) -> list[tuple[str, Any]]:
    """Return the (name, value) pairs of a multipart body, in order."""
    items = body.items() if isinstance(body, Mapping) else body
    return [(str(name), value) for name, value in items]


@runtime_checkable
class HeaderSink(Protocol):
    """Receives raw response header lines, status lines included."""

    def on_header(self, line: str) -> None:
        ...


@runtime_checkable
class ProgressSink(Protocol):
    """Receives transfer progress as (download_total, downloaded, upload_total, uploaded)."""

    def on_progress(self, download_total: int, downloaded: int, upload_total: int, uploaded: int) -> None:
        ...


class TransportHandle:
    """One reusable native handle plus the state of its last execution.

    Attributes:
        native: The library object (curl_cffi.Curl, httpx.Client, ...).
        options: Options set since the last reset.
        errno: Error code of the last execution, ERROR_OK on success.
        error: Error message of the last execution.
        info: Transfer details of the last execution.
        result: Body of the last execution, None on failure or when the body
                went to a WRITEDATA destination.
        exception: Unexpected exception raised while executing, if any.
    """

    def __init__(self, native: Any = None):
        self.native = native
        self.options: dict[Any, Any] = {}
        self.errno = ERROR_OK
        self.error = ""
        self.info: dict[str, Any] = {}
        self.result: bytes | None = None
        self.exception: BaseException | None = None
        self.closed = False

    def clear(self) -> None:
        """Forget options and execution state."""
        self.options = {}
        self.begin()

    def begin(self) -> None:
        """Forget the state of the previous execution."""
        self.errno = ERROR_OK
        self.error = ""
        self.info = {}
        self.result = None
        self.exception = None


@dataclass
class MultiHandle:
    """A set of handles executing concurrently."""

    executor: ThreadPoolExecutor
    futures: dict[TransportHandle, Future] = field(default_factory=dict)
    closed: bool = False


class Transfer:
    """Per-execution sink plumbing handed to BaseTransport._perform().

    Holds the request body to send and tracks Content-Length and received
    bytes so progress can be reported from the body callback.
    """

    def __init__(
        self,
        writer: Any,
        body: Any = None,
        header_sink: HeaderSink | None = None,
        progress: ProgressSink | None = None,
    ):
        self.writer = writer
        self.body = body
        self.header_sink = header_sink
        self.progress = progress
        self.upload_total = len(body) if isinstance(body, (bytes, str)) else 0
        self.expected = 0
        self.downloaded = 0

    def on_header(self, line: bytes | str) -> int:
        text = line.decode("iso-8859-1") if isinstance(line, bytes) else line
        stripped = text.strip()
        if stripped.startswith("HTTP/"):
            self.expected = 0
        elif stripped.lower().startswith("content-length:"):
            value = stripped.split(":", 1)[1].strip()
            self.expected = int(value) if value.isdigit() else 0
        if self.header_sink is not None:
            self.header_sink.on_header(text)
        return len(line)

    def on_body(self, chunk: bytes) -> int:
        self.writer.write(chunk)
        self.downloaded += len(chunk)
        if self.progress is not None:
            self.progress.on_progress(
                self.expected, self.downloaded, self.upload_total, self.upload_total
            )
        return len(chunk)


@runtime_checkable
class Transport(Protocol):
    """Protocol defining the transport primitive."""

    name: str

    def create(self) -> TransportHandle:
        ...

    def reset(self, handle: TransportHandle) -> None:
        ...

    def set_option(self, handle: TransportHandle, option: Any, value: Any) -> None:
        ...

    def execute(self, handle: TransportHandle) -> bytes | None:
        ...

    def get_info(self, handle: TransportHandle, field: str) -> Any:
        ...

    def errno(self, handle: TransportHandle) -> int:
        ...

    def error_string(self, handle: TransportHandle) -> str:
        ...

    def close(self, handle: TransportHandle) -> None:
        ...

    def multi_create(self, max_workers: int = 6) -> MultiHandle:
        ...

    def multi_add(self, mh: MultiHandle, handle: TransportHandle) -> None:
        ...

    def multi_remove(self, mh: MultiHandle, handle: TransportHandle) -> None:
        ...

    def multi_exec(self, mh: MultiHandle) -> tuple[int, int]:
        ...

    def multi_poll(self, mh: MultiHandle, timeout: float) -> int:
        ...

    def multi_get_result(self, handle: TransportHandle) -> bytes | None:
        ...

    def multi_close(self, mh: MultiHandle) -> None:
        ...


class BaseTransport(ABC):
    """Abstract base class for transport implementations.

    Subclasses provide the native handle lifecycle and _perform(); the base
    class stores options, buffers bodies, reports progress and runs the
    concurrent variant on a thread pool.
    """

    name = "base"

    # -------------------------------------------------------------------------
    # Native handle hooks
    # -------------------------------------------------------------------------

    @abstractmethod
    def _create_native(self) -> Any:
        raise NotImplementedError

    def _reset_native(self, native: Any) -> None:
        """Return a native handle to its pristine state."""
        pass

    def _close_native(self, native: Any) -> None:
        """Release a native handle."""
        pass

    @abstractmethod
    def _perform(self, handle: TransportHandle, transfer: Transfer) -> None:
        """Run one request described by handle.options.

        Must feed header lines and body chunks to the transfer and record
        errno, error and info on the handle instead of raising for network
        failures.
        """
        raise NotImplementedError

    # -------------------------------------------------------------------------
    # Single handle
    # -------------------------------------------------------------------------

    def create(self) -> TransportHandle:
        return TransportHandle(self._create_native())

    def reset(self, handle: TransportHandle) -> None:
        self._check_open(handle)
        self._reset_native(handle.native)
        handle.clear()

    def set_option(self, handle: TransportHandle, option: Any, value: Any) -> None:
        self._check_open(handle)
        handle.options[option] = value

    def execute(self, handle: TransportHandle) -> bytes | None:
        """Run the handle synchronously and return the body (None on failure)."""
        self._check_open(handle)
        self._run(handle)
        return handle.result

    def get_info(self, handle: TransportHandle, field: str) -> Any:
        return handle.info.get(field)

    def errno(self, handle: TransportHandle) -> int:
        return handle.errno

    def error_string(self, handle: TransportHandle) -> str:
        return handle.error

    def close(self, handle: TransportHandle) -> None:
        if handle.native is not None:
            self._close_native(handle.native)
            handle.native = None
        handle.closed = True

    # -------------------------------------------------------------------------
    # Concurrent variant
    # -------------------------------------------------------------------------

    def multi_create(self, max_workers: int = 6) -> MultiHandle:
        return MultiHandle(
            executor=ThreadPoolExecutor(
                max_workers=max(1, max_workers),
                thread_name_prefix=f"httpbatch-{self.name}",
            )
        )

    def multi_add(self, mh: MultiHandle, handle: TransportHandle) -> None:
        if mh.closed:
            raise TransportError("Multi handle is closed")
        self._check_open(handle)
        handle.begin()
        mh.futures[handle] = mh.executor.submit(self._run, handle)

    def multi_remove(self, mh: MultiHandle, handle: TransportHandle) -> None:
        mh.futures.pop(handle, None)

    def multi_exec(self, mh: MultiHandle) -> tuple[int, int]:
        """Return (status, number of handles still running)."""
        if mh.closed:
            return MULTI_BAD_HANDLE, 0
        active = sum(1 for future in mh.futures.values() if not future.done())
        return MULTI_OK, active

    def multi_poll(self, mh: MultiHandle, timeout: float) -> int:
        """Wait up to timeout seconds for any running handle to finish."""
        if mh.closed:
            return POLL_ERROR
        pending = [future for future in mh.futures.values() if not future.done()]
        if pending:
            wait(pending, timeout=timeout, return_when=FIRST_COMPLETED)
        return MULTI_OK

    def multi_get_result(self, handle: TransportHandle) -> bytes | None:
        """Return the body of a handle from a round, None on failure.

        An unexpected exception inside the round is already recorded on the
        handle as errno/error, so it only fails that handle.
        """
        return handle.result

    def multi_close(self, mh: MultiHandle) -> None:
        if not mh.closed:
            mh.executor.shutdown(wait=True)
            mh.futures.clear()
            mh.closed = True

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _check_open(self, handle: TransportHandle) -> None:
        if handle.closed:
            raise TransportError("Transport handle is closed")

    def _run(self, handle: TransportHandle) -> None:
        handle.begin()
        options = handle.options
        buffer: BytesIO | None = None
        writer = options.get(TransportOption.WRITEDATA)
        if writer is None:
            buffer = BytesIO()
            writer = buffer
        elif hasattr(writer, "seekable") and writer.seekable():
            writer.seek(0)
            writer.truncate()

        transfer = Transfer(
            writer,
            body=self._request_body(handle),
            header_sink=options.get(TransportOption.HEADERFUNCTION),
            progress=options.get(TransportOption.PROGRESSFUNCTION),
        )
        try:
            self._perform(handle, transfer)
        except Exception as e:
            handle.exception = e
            handle.errno = ERROR_BAD_FUNCTION_ARGUMENT
            handle.error = f"{type(e).__name__}: {e}"
            raise
        if buffer is not None and handle.errno == ERROR_OK:
            handle.result = buffer.getvalue()

    def _request_body(self, handle: TransportHandle) -> Any:
        """Return the body to send: READDATA contents or POSTFIELDS."""
        stream = handle.options.get(TransportOption.READDATA)
        if stream is not None:
            if hasattr(stream, "seekable") and stream.seekable():
                stream.seek(0)
            return stream.read()
        return handle.options.get(TransportOption.POSTFIELDS)
