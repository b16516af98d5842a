"""Boundary to the hosting environment (browser shell, desktop app, CLI).

The core never reads ``location`` or rewrites history by itself. It asks the
environment for the current location when told to look for a callback, and
it hands navigation requests to the environment instead of performing them.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable
from urllib.parse import urlsplit, urlunsplit


@runtime_checkable
class Environment(Protocol):
    def current_location(self) -> str:
        """Return the current location (URL or query string) as an opaque string."""
        ...

    def navigate(self, url: str) -> None:
        """Send the user agent to *url* (full-page redirect, popup, browser tab…)."""
        ...

    def clear_callback(self) -> None:
        """Drop callback parameters from the location once they were consumed."""
        ...


class MemoryEnvironment:
    """Environment that keeps its location in memory and records navigations.

    Suitable for headless hosts that receive the callback out of band (e.g. a
    loopback HTTP server) and for tests.
    """

    def __init__(self, location: str = "") -> None:
        self.location = location
        self.navigations: list[str] = []

    def current_location(self) -> str:
        return self.location

    def navigate(self, url: str) -> None:
        self.navigations.append(url)

    def clear_callback(self) -> None:
        parts = urlsplit(self.location)
        self.location = urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))
