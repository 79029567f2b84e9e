"""Thread-safe cookie storage."""

from __future__ import annotations

import threading
from typing import Iterable, Iterator


class CookieJar:
    """Thread-safe, append-only store of raw Set-Cookie values.

    Values are kept in insertion order and stored once; adding a value that
    is already present does nothing. Batch slots finalize concurrently with
    standalone requests, so every access goes through one lock.

    Example:
        jar = CookieJar()
        jar.add_cookie("session=abc; Path=/; HttpOnly")
        jar.get_cookies()  # ["session=abc; Path=/; HttpOnly"]
    """

    def __init__(self, cookies: Iterable[str] | None = None):
        """Initialize cookie jar.

        Args:
            cookies: Raw Set-Cookie values to start with.
        """
        self._cookies: list[str] = []
        self._thread_lock = threading.Lock()
        if cookies:
            self.save_cookies(cookies)

    def add_cookie(self, cookie: str) -> bool:
        """Add a raw Set-Cookie value (thread-safe).

        Returns:
            True if the value was added, False if it was already stored.
        """
        with self._thread_lock:
            if cookie in self._cookies:
                return False
            self._cookies.append(cookie)
            return True

    def save_cookies(self, cookies: Iterable[str]) -> None:
        """Add several raw Set-Cookie values, skipping duplicates."""
        with self._thread_lock:
            for cookie in cookies:
                if cookie not in self._cookies:
                    self._cookies.append(cookie)

    def get_cookies(self) -> list[str]:
        """Get a copy of every stored value, oldest first."""
        with self._thread_lock:
            return list(self._cookies)

    def clear(self) -> None:
        """Clear all cookies."""
        with self._thread_lock:
            self._cookies.clear()

    def __iter__(self) -> Iterator[str]:
        return iter(self.get_cookies())

    def __len__(self) -> int:
        """Return total number of cookies."""
        with self._thread_lock:
            return len(self._cookies)

    def __bool__(self) -> bool:
        return len(self) > 0
