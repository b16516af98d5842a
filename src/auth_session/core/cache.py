"""TokenCache – token material keyed by session id.

The cache never performs network calls, redirects or implicit expiry: a
record stays until it is replaced or invalidated, and staleness is computed
on demand by :meth:`TokenCache.is_expired`.

Records are frozen dataclasses, so handing them out never exposes a mutable
reference to cached state. Writes for a session are serialised by the
session state machine; the cache itself only guarantees that concurrent reads
and invalidations are safe.
"""

from __future__ import annotations

import logging

from auth_session.core.clock import Clock, default_clock
from auth_session.core.models import TokenRecord
from auth_session.core.store import AuthStore, MemoryAuthStore

_LOG = logging.getLogger("auth-session.core.cache")


class TokenCache:
    """Thin façade over the token section of an :class:`AuthStore`."""

    def __init__(self, store: AuthStore | None = None, *, clock: Clock = default_clock) -> None:
        self.store: AuthStore = store if store is not None else MemoryAuthStore(clock=clock)
        self._clock = clock

    def put(self, session_id: str, record: TokenRecord) -> None:
        if not isinstance(record, TokenRecord):
            raise TypeError(f"expected TokenRecord, got {type(record).__name__}")
        self.store.save_tokens(session_id, record)
        _LOG.debug("Cached token for session=%s**** (ttl %ss)", session_id[:8], record.ttl)

    def get(self, session_id: str) -> TokenRecord | None:
        return self.store.load_tokens(session_id)

    def invalidate(self, session_id: str) -> None:
        self.store.delete_tokens(session_id)
        _LOG.debug("Invalidated token for session=%s****", session_id[:8])

    def is_expired(self, record: TokenRecord, clock_skew_tolerance: float = 0.0) -> bool:
        """``now + clock_skew_tolerance >= expires_at``."""
        return self._clock() + clock_skew_tolerance >= record.expires_at
