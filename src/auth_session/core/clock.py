"""Clock abstraction for testable expiry decisions.

Every time-based decision in :mod:`auth_session` (token expiry, transaction
TTLs, consumed-callback bookkeeping) goes through an injected ``Clock``
instead of calling ``time.time()`` directly, so tests can freeze or advance
time deterministically.

Example
-------
>>> from auth_session.core.clock import default_clock
>>> isinstance(default_clock(), float)
True
"""

from __future__ import annotations

import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Callable protocol returning *seconds* since the UNIX epoch."""

    def __call__(self) -> float: ...


def default_clock() -> float:
    """Wall-clock time from ``time.time()``."""
    return time.time()


class ManualClock:
    """Clock that only moves when told to.

    Handy for hosts that replay recorded sessions and for tests that need to
    cross an expiry boundary without sleeping.
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = float(start)

    def __call__(self) -> float:
        return self._now

    def advance(self, seconds: float) -> float:
        """Move the clock forward by *seconds* and return the new time."""
        self._now += seconds
        return self._now

    def set(self, now: float) -> None:
        self._now = float(now)
