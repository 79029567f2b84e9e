"""Debug/verbose mode for HttpClient."""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Callable, TextIO

if TYPE_CHECKING:
    from .models import Response
    from .request import Request


@dataclass
class DebugInfo:
    """Debug information for one request attempt.

    Captures the details needed to follow a request through its retries,
    including headers, cookies, proxy, timing and the retry decision.
    """

    # Request info
    timestamp: datetime
    method: str
    url: str
    retry_count: int = 0
    slot: int | None = None  # batch slot, None for standalone requests

    # Backend info
    backend: str = "base"

    # Request details
    request_headers: dict[str, str] = field(default_factory=dict)
    cookies_sent: dict[str, str] = field(default_factory=dict)
    proxy_used: str | None = None
    timeout: float = 0

    # Response details
    final_url: str | None = None
    status_code: int | None = None
    response_headers: dict[str, str] = field(default_factory=dict)
    content_length: int = 0
    elapsed: float = 0.0

    # Error info
    error: str | None = None
    will_retry: bool = False

    @classmethod
    def from_attempt(
        cls,
        request: Request,
        response: Response,
        will_retry: bool = False,
        slot: int | None = None,
    ) -> "DebugInfo":
        """Build debug info from a finished attempt."""
        options = response.options
        return cls(
            timestamp=datetime.now(),
            method=options.method,
            url=options.build_full_url(),
            retry_count=options.retry_count,
            slot=slot,
            backend=request.transport.name,
            request_headers=dict(options.headers),
            cookies_sent=dict(options.cookies),
            proxy_used=options.proxy,
            timeout=options.timeout,
            final_url=response.info("effective_url"),
            status_code=response.status_code,
            response_headers={
                name: ", ".join(values) for name, values in response.headers.items()
            },
            content_length=int(response.info("size_download") or 0),
            elapsed=float(response.info("total_time") or 0.0),
            error=response.error_message or None,
            will_retry=will_retry,
        )


class DebugOutput:
    """Handles verbose output formatting and dispatch."""

    def __init__(
        self,
        enabled: bool = False,
        output: TextIO | None = None,
        callback: Callable[[DebugInfo], None] | None = None,
    ):
        """Initialize debug output handler.

        Args:
            enabled: Whether verbose output is enabled.
            output: Output stream (defaults to stderr).
            callback: Optional callback for programmatic capture.
        """
        self.enabled = enabled
        self.output = output or sys.stderr
        self.callback = callback

    def log_attempt(self, info: DebugInfo) -> None:
        """Log debug info for one attempt.

        Args:
            info: Debug information to log.
        """
        if not self.enabled:
            return

        # Call user callback if set
        if self.callback:
            self.callback(info)

        self._print_formatted(info)

    def _print_formatted(self, info: DebugInfo) -> None:
        out = self.output
        sep = "=" * 80

        # Header
        out.write(f"\n{sep}\n")
        out.write(f"[{info.timestamp.strftime('%Y-%m-%d %H:%M:%S')}] ")
        out.write(f"{info.method} {info.url}\n")
        out.write(f"{sep}\n")

        parts = [f"Backend: {info.backend}", f"Retry: {info.retry_count}"]
        if info.slot is not None:
            parts.append(f"Slot: {info.slot}")
        parts.append(f"Timeout: {info.timeout or 'none'}")
        out.write(" | ".join(parts) + "\n")

        if info.request_headers:
            out.write("\n> Request Headers:\n")
            for header, value in info.request_headers.items():
                # Truncate long values
                if len(value) > 80:
                    value = value[:77] + "..."
                out.write(f"  {header}: {value}\n")

        if info.cookies_sent:
            cookies_str = "; ".join(f"{k}={v}" for k, v in info.cookies_sent.items())
            if len(cookies_str) > 100:
                cookies_str = cookies_str[:97] + "..."
            out.write(f"\n> Cookies Sent: {cookies_str}\n")

        if info.proxy_used:
            out.write(f"> Proxy: {self._mask_proxy_password(info.proxy_used)}\n")

        # Response section
        out.write("\n" + "-" * 80 + "\n")

        if info.error:
            out.write(f"< ERROR: {info.error}\n")
        if info.status_code:
            out.write(f"< HTTP {info.status_code}")
            if info.elapsed:
                out.write(f"  [{info.elapsed:.3f}s]")
            out.write("\n")

            if info.final_url and info.final_url != info.url:
                out.write(f"< Redirected to: {info.final_url}\n")

            if info.response_headers:
                out.write("\n< Response Headers:\n")
                for header, value in info.response_headers.items():
                    if len(value) > 80:
                        value = value[:77] + "..."
                    out.write(f"  {header}: {value}\n")

            if info.content_length:
                out.write(f"\n< Content Length: {info.content_length:,} bytes\n")

        if info.will_retry:
            out.write("< Retrying\n")

        out.write(f"{sep}\n")
        out.flush()

    def _mask_proxy_password(self, proxy_url: str) -> str:
        """Mask password in proxy URL for display.

        Args:
            proxy_url: Proxy URL that may contain credentials.

        Returns:
            URL with password masked.
        """
        if "@" not in proxy_url:
            return proxy_url

        if "://" in proxy_url:
            protocol, rest = proxy_url.split("://", 1)
        else:
            protocol, rest = "", proxy_url

        creds, host = rest.rsplit("@", 1)
        if ":" in creds:
            user, _ = creds.split(":", 1)
            creds = f"{user}:****"
        rest = f"{creds}@{host}"

        if protocol:
            return f"{protocol}://{rest}"
        return rest
