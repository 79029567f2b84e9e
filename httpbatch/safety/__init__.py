"""Thread-safe shared state."""

from .cookie_store import CookieJar

__all__ = ["CookieJar"]
