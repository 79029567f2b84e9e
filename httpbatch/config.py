"""Request options: defaults, validation, merging and body encoding."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, fields
from typing import TYPE_CHECKING, Any, Callable, Mapping
from urllib.parse import urlencode

from .exceptions import ConfigurationError
from .models import GZIP_AVAILABLE
from .transport.base import UploadFile, form_fields

if TYPE_CHECKING:
    from .safety import CookieJar

VERSION = "0.1.0"
DEFAULT_USER_AGENT = f"HttpBatch/v{VERSION}"

TYPE_URL_ENCODED = "application/x-www-form-urlencoded"
TYPE_FORM_DATA = "multipart/form-data"
TYPE_TEXT = "text/plain"
TYPE_JSON = "application/json"
TYPE_XML = "application/xml"
TYPE_BINARY = "application/octet-stream"

# Options merged key by key instead of replaced.
MAP_OPTIONS = ("query", "headers", "cookies", "curl_options")

MAX_RETRY_COUNT = 50


def _is_stream(value: Any) -> bool:
    return hasattr(value, "read") and callable(value.read)


def _set_header(headers: dict[str, str], name: str, value: str | None) -> None:
    """Set or remove a header, replacing any existing spelling of the name."""
    for key in [k for k in headers if k.lower() == name.lower()]:
        del headers[key]
    if value is not None:
        headers[name] = value


def _get_header(headers: Mapping[str, str], name: str) -> str | None:
    for key, value in headers.items():
        if key.lower() == name.lower():
            return value
    return None


def _has_header(headers: Mapping[str, str], name: str) -> bool:
    return _get_header(headers, name) is not None


def infer_content_type(body: Any) -> str | None:
    """Guess the content type of a request body.

    Args:
        body: The request body.

    Returns:
        A content type, or None when the body type says nothing about it.
    """
    if isinstance(body, Mapping) or isinstance(body, (list, tuple)):
        if isinstance(body, Mapping):
            values = list(body.values())
        else:
            # (name, value) pairs or bare values
            values = [
                item[1] if isinstance(item, (list, tuple)) and len(item) == 2 else item
                for item in body
            ]
        if any(isinstance(value, UploadFile) for value in values):
            return TYPE_FORM_DATA
        return TYPE_URL_ENCODED
    if _is_stream(body):
        return TYPE_BINARY
    if isinstance(body, (str, bytes)):
        text = body.decode("latin-1") if isinstance(body, bytes) else body
        if text.startswith("{") and text.endswith("}"):
            return TYPE_JSON
        if text.startswith("<") and text.endswith(">"):
            return TYPE_XML
        return TYPE_TEXT
    return None


def merge_options(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Merge two option mappings.

    Map-valued options (query, headers, cookies, curl_options) are combined
    with the override winning on key collision. Every other option takes the
    override value unless it is missing or None.

    Args:
        base: Options to merge into (client defaults).
        override: Options to merge from (per-call options).

    Returns:
        A new option mapping.
    """
    result = dict(override)
    for key, value in base.items():
        if key in MAP_OPTIONS:
            result[key] = {**(value or {}), **(override.get(key) or {})}
        elif override.get(key) is None:
            result[key] = value
    return result


@dataclass
class Options:
    """Configuration of one request attempt.

    Built fresh per attempt, usually with Options.merge(). Validation runs in
    __post_init__, so invalid values fail before anything touches the network.

    Attributes:
        url: Request URL, absolute or relative to base_url.
        method: HTTP method, upper-cased.
        base_url: Prefix for URLs that are not absolute.
        query: Query string parameters appended to the URL.
        body: Request body (mapping, list, str, bytes or a readable stream).
        content_type: Body content type; inferred from the body when None.
        headers: Request headers.
        cookies: Request cookies (name to value).
        user_agent: User-Agent header value.
        referer: Referer header value.
        auth_basic: (username, password) pair for basic auth.
        auth_bearer: Bearer token sent in the Authorization header.
        proxy: Proxy address, e.g. "http://127.0.0.1:8080".
        on_progress: Callable receiving (download_total, downloaded,
                     upload_total, uploaded).
        timeout: Total timeout in seconds, 0 for none.
        max_redirects: Maximum number of redirects to follow.
        max_retry: Maximum number of retries.
        retry_count: Retries already performed for this request.
        verify_peer: Whether to verify the peer certificate.
        verify_host: Whether to verify the certificate host name.
        cafile: Path of a CA bundle.
        accept_gzip: Whether to ask for and decode gzip responses.
        cookie_jar: Shared cookie jar, read before and updated after a request.
        curl_options: Raw transport options applied after every derived one.
    """

    url: str | None = None
    method: str = "GET"
    base_url: str | None = None
    query: dict[str, Any] = field(default_factory=dict)
    body: Any = None
    content_type: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    cookies: dict[str, str] = field(default_factory=dict)
    user_agent: str | None = DEFAULT_USER_AGENT
    referer: str | None = None
    auth_basic: tuple[str, str] | None = None
    auth_bearer: str | None = None
    proxy: str | None = None
    on_progress: Callable[[int, int, int, int], Any] | None = None
    timeout: float = 5
    max_redirects: int = 5
    max_retry: int = 3
    retry_count: int = 0
    verify_peer: bool = True
    verify_host: bool = True
    cafile: str | None = None
    accept_gzip: bool = True
    cookie_jar: CookieJar | None = None
    curl_options: dict[Any, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate values and derive headers."""
        self.method = self.method.upper()
        self.query = dict(self.query or {})
        self.headers = dict(self.headers or {})
        self.cookies = dict(self.cookies or {})
        self.curl_options = dict(self.curl_options or {})

        if self.timeout < 0:
            raise ConfigurationError("timeout must be >= 0")
        if self.max_redirects < 0:
            raise ConfigurationError("max_redirects must be >= 0")
        if self.auth_basic:
            if isinstance(self.auth_basic, str) or len(self.auth_basic) != 2:
                raise ConfigurationError("auth_basic must be a (username, password) pair")
            self.auth_basic = (str(self.auth_basic[0]), str(self.auth_basic[1]))
        else:
            self.auth_basic = None
        if self.cafile and not os.path.isfile(self.cafile):
            raise ConfigurationError(f"cafile is not a file: {self.cafile}")

        self.max_retry = max(0, self.max_retry)
        self.retry_count = min(MAX_RETRY_COUNT, max(0, self.retry_count))
        self.accept_gzip = bool(self.accept_gzip) and GZIP_AVAILABLE

        if self.content_type is None:
            self.content_type = (
                _get_header(self.headers, "Content-Type") or infer_content_type(self.body)
            )
        if self.content_type is not None:
            _set_header(self.headers, "Content-Type", self.content_type)
        if self.auth_bearer is not None:
            _set_header(self.headers, "Authorization", f"Bearer {self.auth_bearer}")
        # Expose only one encoding, some servers mess up when more are provided
        if self.accept_gzip and not _has_header(self.headers, "Accept-Encoding"):
            self.headers["Accept-Encoding"] = "gzip"

    @classmethod
    def keys(cls) -> tuple[str, ...]:
        """Names of all supported options."""
        return tuple(f.name for f in fields(cls))

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any]) -> "Options":
        """Build options from a mapping, rejecting unknown keys.

        Raises:
            ConfigurationError: On unknown keys or invalid values.
        """
        supported = cls.keys()
        for key in options:
            if key not in supported:
                raise ConfigurationError(f"Unsupported option: {key}")
        return cls(**{k: v for k, v in options.items() if v is not None})

    @classmethod
    def merge(cls, base: Mapping[str, Any], override: Mapping[str, Any]) -> "Options":
        """Merge client defaults with per-call options and build the result."""
        return cls.from_mapping(merge_options(base, override))

    def to_dict(self) -> dict[str, Any]:
        """Return every option as a mapping."""
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def build_full_url(self) -> str:
        """Return the URL with the base URL and query string applied."""
        url = self.url or ""
        if self.base_url and not url.startswith("http"):
            url = self.base_url + url
        if self.query:
            link = "&" if "?" in url else "?"
            url += link + urlencode(self.query, doseq=True)
        return url

    def encode_body(self) -> Any:
        """Serialize a mapping or list body according to the content type.

        Other bodies (str, bytes, streams) are returned unchanged. A mapping
        or list body with any other content type becomes a list of
        (name, value) form fields that the transport sends as multipart.
        """
        if not isinstance(self.body, (Mapping, list, tuple)):
            return self.body
        if self.content_type in (TYPE_URL_ENCODED, None):
            return urlencode(self.body, doseq=True)
        if self.content_type == TYPE_JSON:
            return json.dumps(self.body, ensure_ascii=False, separators=(",", ":"))
        return form_fields(self.body)

    def header_lines(self) -> list[str]:
        """Headers formatted as "Name: value" lines."""
        return [f"{name}: {value}" for name, value in self.headers.items()]

    def get_curl_option(self, option: Any, default: Any = None) -> Any:
        return self.curl_options.get(option, default)

    def set_curl_option(self, option: Any, value: Any) -> None:
        self.curl_options[option] = value

    def inc_retry_count(self) -> None:
        self.retry_count = min(MAX_RETRY_COUNT, self.retry_count + 1)
