"""Shared test fixtures and configuration."""

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Generator

import pytest

from httpbatch import CookieJar, HttpClient, Options
from httpbatch.transport import BaseTransport, TransportOption
from httpbatch.transport.base import Transfer, TransportHandle


# ============== Fake Transport ==============

@dataclass
class FakeReply:
    """Scripted outcome of one perform."""

    status: int = 200
    headers: list[tuple[str, str]] = field(default_factory=list)
    body: bytes = b""
    errno: int = 0
    error: str = ""
    delay: float = 0.0
    # Header blocks of earlier redirect hops, status line first
    redirects: list[list[str]] = field(default_factory=list)


@dataclass
class FakeCall:
    """What a perform was asked to do."""

    options: dict[Any, Any]
    body: Any

    @property
    def url(self) -> str:
        return self.options[TransportOption.URL]


class Script:
    """Thread-safe responder replaying replies per URL.

    Each URL gets its list of replies in turn; the last one repeats.
    """

    def __init__(self, replies: dict[str, list[FakeReply]] | None = None, default: FakeReply | None = None):
        self._replies = {url: list(items) for url, items in (replies or {}).items()}
        self._default = default or FakeReply()
        self._lock = threading.Lock()

    def __call__(self, options: dict[Any, Any]) -> FakeReply:
        url = options[TransportOption.URL]
        with self._lock:
            items = self._replies.get(url)
            if not items:
                return self._default
            if len(items) > 1:
                return items.pop(0)
            return items[0]


class FakeTransport(BaseTransport):
    """In-memory transport replaying FakeReply objects.

    Records every perform and the highest number of performs running at
    the same time.
    """

    name = "fake"

    def __init__(self, responder: Callable[[dict[Any, Any]], FakeReply] | None = None):
        self.responder = responder or Script()
        self.calls: list[FakeCall] = []
        self.created = 0
        self.resets = 0
        self.closed_handles = 0
        self.max_in_flight = 0
        self._in_flight = 0
        self._lock = threading.Lock()

    def _create_native(self) -> Any:
        self.created += 1
        return object()

    def _reset_native(self, native: Any) -> None:
        self.resets += 1

    def _close_native(self, native: Any) -> None:
        self.closed_handles += 1

    def _perform(self, handle: TransportHandle, transfer: Transfer) -> None:
        with self._lock:
            self._in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self._in_flight)
            self.calls.append(FakeCall(options=dict(handle.options), body=transfer.body))
        try:
            reply = self.responder(handle.options)
            if reply.delay:
                time.sleep(reply.delay)

            url = handle.options[TransportOption.URL]
            if reply.errno:
                handle.errno = reply.errno
                handle.error = reply.error
                handle.info = {"http_code": 0, "effective_url": url}
                return

            for block in reply.redirects:
                for line in block:
                    transfer.on_header(line + "\r\n")
                transfer.on_header("\r\n")
            transfer.on_header(f"HTTP/1.1 {reply.status} Status\r\n")
            for name, value in reply.headers:
                transfer.on_header(f"{name}: {value}\r\n")
            transfer.on_header("\r\n")
            if reply.body:
                transfer.on_body(reply.body)

            handle.info = {
                "http_code": reply.status,
                "effective_url": url,
                "redirect_count": len(reply.redirects),
                "total_time": reply.delay,
                "size_download": transfer.downloaded,
            }
        finally:
            with self._lock:
                self._in_flight -= 1

    def urls(self) -> list[str]:
        return [call.url for call in self.calls]


# ============== Transport Fixtures ==============

@pytest.fixture
def fake_transport() -> FakeTransport:
    """Fake transport answering 200 with an empty body."""
    return FakeTransport()


# ============== Configuration Fixtures ==============

@pytest.fixture
def default_options() -> Options:
    """Default request options."""
    return Options(url="https://example.com/")


@pytest.fixture
def cookie_jar() -> CookieJar:
    """Empty cookie jar."""
    return CookieJar()


@pytest.fixture
def ca_file(tmp_path) -> str:
    """Existing (dummy) CA bundle path."""
    path = tmp_path / "ca.pem"
    path.write_text("-----BEGIN CERTIFICATE-----\n")
    return str(path)


# ============== Client Fixtures ==============

@pytest.fixture
def client(fake_transport: FakeTransport) -> Generator[HttpClient, None, None]:
    """HttpClient on the fake transport."""
    client = HttpClient(transport=fake_transport)
    yield client
    client.close()


# ============== URL Fixtures ==============

@pytest.fixture
def test_urls() -> list[str]:
    """List of test URLs."""
    return [f"https://example.com/page{i}" for i in range(1, 8)]
