"""Response model and header parsing."""

from __future__ import annotations

import json
import threading
from typing import TYPE_CHECKING, Any, Iterable

from .exceptions import DecodeError
from .transport.base import ERROR_TIMEOUT

if TYPE_CHECKING:
    from .config import Options
    from .request import Request

try:
    import zlib

    GZIP_AVAILABLE = True
except ImportError:
    zlib = None
    GZIP_AVAILABLE = False


class Headers:
    """Case-insensitive multi-valued header map fed with raw header lines.

    The original spelling of each name is kept for display. A status line
    ("HTTP/...") starts a new header block, which happens once per redirect
    hop: everything captured so far is dropped except Set-Cookie, so cookies
    set by intermediate hops survive.
    """

    def __init__(self) -> None:
        self._values: dict[str, list[str]] = {}
        self._names: dict[str, str] = {}

    @classmethod
    def from_lines(cls, lines: Iterable[str]) -> "Headers":
        headers = cls()
        for line in lines:
            headers.feed(line)
        return headers

    def feed(self, line: str) -> None:
        """Consume one raw header line."""
        line = line.strip("\r\n")
        if not line:
            return
        if line.startswith("HTTP/"):
            cookie_name = self._names.get("set-cookie")
            if cookie_name is not None:
                self._values = {cookie_name: self._values[cookie_name]}
                self._names = {"set-cookie": cookie_name}
            else:
                self._values = {}
                self._names = {}
        elif ":" in line:
            name, value = line.split(":", 1)
            self.add(name, value.strip(" \t"))

    def add(self, name: str, value: str) -> None:
        key = name.lower()
        if key not in self._names:
            self._names[key] = name
            self._values[name] = []
        self._values[self._names[key]].append(value)

    def get(self, name: str) -> list[str]:
        """Return all values of a header (case-insensitive), or []."""
        original = self._names.get(name.lower())
        if original is None:
            return []
        return list(self._values[original])

    def get_line(self, name: str) -> str:
        """Return all values of a header joined with ", "."""
        return ", ".join(self.get(name))

    def to_dict(self) -> dict[str, list[str]]:
        return {name: list(values) for name, values in self._values.items()}

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._names

    def __len__(self) -> int:
        return len(self._values)


class Response:
    """Outcome of one completed request attempt.

    Status, error and timing details are merged into the info map on first
    access and cached. The handle wrapper passes a snapshot of them taken
    when the attempt completed, so a response stays valid after its handle
    has been reused for another request.

    Attributes:
        id: Identifier of the transport handle that produced the response.
        request: The handle wrapper that produced the response.
        options: The options the attempt was executed with.
    """

    def __init__(
        self,
        request: Request,
        content: bytes | str | None,
        header_lines: Iterable[str] = (),
        diagnostics: dict[str, Any] | None = None,
    ):
        self.request = request
        self.options: Options = request.options
        self.id = id(request.handle)
        self._content = content
        self._decoded: bytes | str | None = None
        self._is_gzipped: bool | None = None
        self._headers = Headers.from_lines(header_lines)
        self._diagnostics = diagnostics
        self._info: dict[str, Any] | None = None
        self._info_lock = threading.Lock()

    def __repr__(self) -> str:
        return f"<Response [{self.status_code}] {self.info('effective_url', self.options.url)}>"

    # -------------------------------------------------------------------------
    # Status and errors
    # -------------------------------------------------------------------------

    @property
    def status_code(self) -> int:
        return int(self.info("http_code") or 0)

    @property
    def error_code(self) -> int:
        return int(self.info("error_code") or 0)

    @property
    def error_message(self) -> str:
        return self.info("error") or ""

    @property
    def is_timeout(self) -> bool:
        return self.error_code == ERROR_TIMEOUT

    @property
    def ok(self) -> bool:
        """Check if the attempt completed with a 2xx status."""
        return self.error_code == 0 and 200 <= self.status_code < 300

    def info(self, key: str | None = None, default: Any = None) -> Any:
        """Return transfer details.

        The map holds http_code, error_code, error, http_method and
        retry_count plus whatever the transport reports (effective_url,
        redirect_count, total_time, size_download, ...).

        Args:
            key: A single field to return, or None for the whole map.
            default: Returned when key is missing.
        """
        if self._info is None:
            with self._info_lock:
                if self._info is None:
                    info: dict[str, Any] = {
                        "http_code": 0,
                        "error_code": 0,
                        "error": "",
                        "http_method": self.options.method,
                        "retry_count": self.options.retry_count,
                    }
                    if self._diagnostics is None:
                        self._diagnostics = self.request.diagnostics()
                    info.update(self._diagnostics)
                    self._info = info
        if key is None:
            return dict(self._info)
        return self._info.get(key, default)

    # -------------------------------------------------------------------------
    # Headers
    # -------------------------------------------------------------------------

    def header(self, name: str) -> list[str]:
        """Return every value of a response header (case-insensitive)."""
        return self._headers.get(name)

    def header_line(self, name: str) -> str:
        """Return a response header as one comma-separated line."""
        return self._headers.get_line(name)

    @property
    def headers(self) -> dict[str, list[str]]:
        """All response headers of the final hop, plus earlier Set-Cookies."""
        return self._headers.to_dict()

    # -------------------------------------------------------------------------
    # Content
    # -------------------------------------------------------------------------

    @property
    def is_gzipped(self) -> bool:
        if self._is_gzipped is None:
            encoding = self._headers.get("Content-Encoding")
            self._is_gzipped = bool(encoding) and encoding[0].strip().lower() == "gzip"
        return self._is_gzipped

    def content(self) -> bytes | str | None:
        """Return the response body, gunzipped when the server gzipped it.

        Returns None when the attempt failed or the body was written to a
        download destination.

        Raises:
            DecodeError: If the gzip stream is corrupt.
        """
        if self._content is None or not (self.is_gzipped and GZIP_AVAILABLE):
            return self._content
        if self._decoded is None:
            self._decoded = self._uncompress(self._content)
        return self._decoded

    def set_content(self, content: bytes | str | None, is_gzip: bool = False) -> None:
        """Replace the body, e.g. with a file written by a download.

        Decompression of a gzip body is deferred until the next read.
        """
        self._content = content
        self._decoded = None
        self._is_gzipped = is_gzip

    @property
    def text(self) -> str:
        """Decode content as UTF-8 text."""
        content = self.content()
        if content is None:
            return ""
        if isinstance(content, str):
            return content
        return content.decode("utf-8", errors="replace")

    def to_structured(self) -> Any:
        """Parse the body as JSON.

        Returns:
            The parsed value, or {} when there is no textual body.

        Raises:
            DecodeError: If the body is not valid JSON.
        """
        if not isinstance(self._content, (str, bytes)):
            return {}
        content = self.content()
        try:
            return json.loads(content)
        except ValueError as e:
            raise DecodeError(f"Failed to decode JSON: {e}", original_error=e) from e

    @staticmethod
    def _uncompress(data: bytes | str) -> bytes:
        if isinstance(data, str):
            data = data.encode("latin-1")
        try:
            return zlib.decompress(data, 16 + zlib.MAX_WBITS)
        except zlib.error as e:
            raise DecodeError(f"Failed to inflate data: {e}", original_error=e) from e
