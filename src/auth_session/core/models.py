"""Typed, immutable records shared by the session core and provider adapters."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping
from urllib.parse import parse_qsl, urlsplit

from auth_session.core.clock import Clock, default_clock
from auth_session.core.errors import AuthError


class SessionState(str, enum.Enum):
    """Authentication state of the single session owned by a manager."""

    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    PENDING_CALLBACK = "pending_callback"
    AUTHENTICATED = "authenticated"
    REFRESHING = "refreshing"
    LOGGING_OUT = "logging_out"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class TokenRecord:
    """Snapshot of the token material returned by an identity provider."""

    access_token: str
    expires_at: int
    issued_at: int
    refresh_token: str | None = None
    id_token: str | None = None

    @property
    def ttl(self) -> int:
        """Seconds between *issued_at* and *expires_at*."""
        return self.expires_at - self.issued_at

    def __repr__(self) -> str:
        # token material must never end up in logs via repr()
        return (
            f"TokenRecord(expires_at={self.expires_at}, issued_at={self.issued_at}, "
            f"refresh_token={'set' if self.refresh_token else None}, "
            f"id_token={'set' if self.id_token else None})"
        )


@dataclass(frozen=True, slots=True)
class Identity:
    """Who is logged in. Replaced wholesale on refresh, never mutated."""

    subject: str
    claims: Mapping[str, Any] = field(default_factory=dict)
    expires_at: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "claims", MappingProxyType(dict(self.claims)))

    def get(self, claim: str, default: Any = None) -> Any:
        return self.claims.get(claim, default)


@dataclass(frozen=True, slots=True)
class Session:
    """Last committed view of the authentication session."""

    session_id: str
    state: SessionState = SessionState.UNAUTHENTICATED
    identity: Identity | None = None
    last_error: AuthError | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.state in (SessionState.AUTHENTICATED, SessionState.REFRESHING)


@dataclass(frozen=True, slots=True)
class LoginParams:
    """Per-call overrides for starting a login."""

    redirect_uri: str | None = None
    scope: str | None = None
    prompt: str | None = None
    login_hint: str | None = None
    extra: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class NavigationRequest:
    """A navigation the core asks the hosting environment to perform."""

    url: str
    reason: str = "login"


@dataclass(frozen=True, slots=True)
class CallbackContext:
    """One-time data carried by the return trip from the identity provider."""

    query: Mapping[str, str] = field(default_factory=dict)
    state: str | None = None
    code: str | None = None
    error: str | None = None
    error_description: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "query", MappingProxyType(dict(self.query)))

    @classmethod
    def from_query(cls, query: Mapping[str, str]) -> "CallbackContext":
        return cls(
            query=query,
            state=query.get("state") or None,
            code=query.get("code") or None,
            error=query.get("error") or None,
            error_description=query.get("error_description") or None,
        )

    @classmethod
    def from_url(cls, location: str) -> "CallbackContext":
        """Parse a full URL, a ``?query`` string or a bare query string."""
        raw = location or ""
        if "://" in raw or raw.startswith("/"):
            raw = urlsplit(raw).query
        raw = raw.lstrip("?")
        # first occurrence wins, mirroring how providers emit a single value
        query: dict[str, str] = {}
        for key, value in parse_qsl(raw, keep_blank_values=True):
            query.setdefault(key, value)
        return cls.from_query(query)

    @property
    def is_callback(self) -> bool:
        """True when the location looks like a provider return trip."""
        return bool(self.state) and bool(self.code or self.error)


@dataclass(frozen=True, slots=True)
class AuthTxnRecord:
    """Pending authorization request, persisted until its callback arrives."""

    auth_txn_id: str
    client_id: str
    redirect_uri: str
    code_verifier: str
    code_challenge: str
    scope: str = "openid"
    nonce: str | None = None
    created_at: int = field(default_factory=lambda: int(default_clock()))
    # stale after 15 minutes by default
    ttl_seconds: int = 900

    def is_expired(self, *, clock: Clock = default_clock) -> bool:
        """Return *True* if the transaction exceeded its TTL."""
        return (clock() - self.created_at) > self.ttl_seconds
