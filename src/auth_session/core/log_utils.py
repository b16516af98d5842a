"""Structured logging helpers for the session core.

Only a fixed whitelist of *non-sensitive* attributes is ever attached to log
records:

- ``session_id``     – first 8 characters only
- ``provider``       – name of the ProviderAdapter in use (``oidc``, ``auth0``…)
- ``correlation_id`` – set by the loopback HTTP layer, when there is one

Tokens, codes, verifiers and ``state`` values are never attached.

Usage
-----
>>> from auth_session.core.log_utils import get_auth_logger
>>> log = get_auth_logger(session_id="3f2c9a1e77d04b6c", provider="oidc")
>>> log.info("login started")  # doctest: +SKIP
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, MutableMapping

_SESSION_ID_KEEP = 8


class _AuthLoggerAdapter(logging.LoggerAdapter):
    """Inject whitelisted session context into log records."""

    extra_keys = ("session_id", "provider", "correlation_id")

    def __init__(self, logger: logging.Logger, extra: Mapping[str, Any] | None = None):
        extra_clean: MutableMapping[str, Any] = {}
        for k in self.extra_keys:
            if not extra or extra.get(k) is None:
                continue
            if k == "session_id":
                extra_clean[k] = str(extra[k])[:_SESSION_ID_KEEP]
            else:
                extra_clean[k] = extra[k]
        super().__init__(logger, extra_clean)

    def process(self, msg: str, kwargs: MutableMapping[str, Any]):
        if kwargs.get("extra") is None:
            kwargs["extra"] = {}
        # call-site extras win
        for k, v in self.extra.items():
            kwargs["extra"].setdefault(k, v)
        return msg, kwargs


def get_auth_logger(
    *,
    base_logger_name: str = "auth-session.core",
    session_id: str | None = None,
    provider: str | None = None,
    correlation_id: str | None = None,
) -> logging.LoggerAdapter:
    """Return a LoggerAdapter pre-filled with session context."""
    return _AuthLoggerAdapter(
        logging.getLogger(base_logger_name),
        {
            "session_id": session_id,
            "provider": provider,
            "correlation_id": correlation_id,
        },
    )
