"""Session settings loaded from environment variables.

=====================================  ====================================
Variable                               Meaning (default)
=====================================  ====================================
``AUTH_SESSION_ID``                    stable session id (random per process)
``AUTH_SESSION_CLOCK_SKEW``            expiry tolerance in seconds (60)
``AUTH_SESSION_STORAGE``               ``memory`` or ``disk`` (memory)
``AUTH_SESSION_STORAGE_DIR``           disk storage base dir (~/.auth-session)
=====================================  ====================================

A durable store only helps across restarts when ``AUTH_SESSION_ID`` is set,
since tokens are keyed by session id.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal

from auth_session.core.clock import Clock, default_clock
from auth_session.core.store import AuthStore, DiskAuthStore, MemoryAuthStore
from auth_session.utils.environment import env_float, env_str

logger = logging.getLogger("auth-session.config")

StorageKind = Literal["memory", "disk"]


@dataclass(frozen=True)
class SessionSettings:
    session_id: str | None = None
    clock_skew_tolerance: float = 60.0
    storage: StorageKind = "memory"
    storage_dir: str | None = None

    @classmethod
    def from_env(cls) -> "SessionSettings":
        storage = (env_str("AUTH_SESSION_STORAGE") or "memory").lower()
        if storage not in ("memory", "disk"):
            logger.warning("Unknown AUTH_SESSION_STORAGE=%r; falling back to memory", storage)
            storage = "memory"
        settings = cls(
            session_id=env_str("AUTH_SESSION_ID"),
            clock_skew_tolerance=env_float("AUTH_SESSION_CLOCK_SKEW", 60.0),
            storage=storage,  # type: ignore[arg-type]
            storage_dir=env_str("AUTH_SESSION_STORAGE_DIR"),
        )
        if settings.storage == "disk" and not settings.session_id:
            logger.warning(
                "AUTH_SESSION_STORAGE=disk without AUTH_SESSION_ID – "
                "stored tokens cannot be found again after a restart."
            )
        return settings

    def build_store(self, *, clock: Clock = default_clock) -> AuthStore:
        if self.storage == "disk":
            return DiskAuthStore(self.storage_dir, clock=clock)
        return MemoryAuthStore(clock=clock)
