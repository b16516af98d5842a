"""Deterministic in-process provider for tests and offline development.

``MockProvider`` behaves like a redirect-based identity provider without any
network: ``initiate_login`` returns a navigation to a fake authorize URL,
``complete_callback`` hands out scripted :class:`TokenRecord` values and every
call is counted so tests can assert how often the backend was hit.

Failures are scripted per method with :meth:`MockProvider.fail_next`.
``hold`` lets a test park a call inside the adapter (to provoke races) until
the matching :class:`threading.Event` is set.
"""

from __future__ import annotations

import threading
from collections import Counter, deque
from typing import Iterable
from urllib.parse import urlencode

from auth_session.core.clock import Clock, default_clock
from auth_session.core.errors import AuthError, ErrorKind
from auth_session.core.models import (
    CallbackContext,
    Identity,
    LoginParams,
    NavigationRequest,
    TokenRecord,
)
from auth_session.providers.base import LoginOutcome


class MockProvider:
    """Scriptable :class:`~auth_session.providers.base.ProviderAdapter`."""

    name = "mock"

    def __init__(
        self,
        *,
        tokens: Iterable[TokenRecord] = (),
        refresh_tokens: Iterable[TokenRecord] = (),
        identity: Identity | None = None,
        popup: bool = False,
        authorize_url: str = "https://idp.example.test/authorize",
        token_lifetime: int = 3600,
        clock: Clock = default_clock,
    ) -> None:
        self.tokens: deque[TokenRecord] = deque(tokens)
        self.refresh_tokens: deque[TokenRecord] = deque(refresh_tokens)
        self.identity = identity
        self.popup = popup
        self.authorize_url = authorize_url
        self.token_lifetime = token_lifetime
        self.clock = clock

        self.calls: Counter[str] = Counter()
        self.exchanged_codes: list[str] = []
        self.logged_out: list[TokenRecord] = []
        self.hold: dict[str, threading.Event] = {}
        self.entered: dict[str, threading.Event] = {}
        self._failures: dict[str, deque[BaseException]] = {}
        self._lock = threading.Lock()
        self._issued = 0

    # ------------------------------------------------------------------ #
    # Scripting helpers                                                  #
    # ------------------------------------------------------------------ #
    def fail_next(self, method: str, error: BaseException) -> None:
        """Make the next call to *method* raise *error*."""
        self._failures.setdefault(method, deque()).append(error)

    def block(self, method: str) -> threading.Event:
        """Park calls to *method* until the returned event is set."""
        release = threading.Event()
        self.hold[method] = release
        self.entered[method] = threading.Event()
        return release

    def _enter(self, method: str) -> None:
        with self._lock:
            self.calls[method] += 1
            pending = self._failures.get(method)
            error = pending.popleft() if pending else None
        if method in self.hold:
            self.entered[method].set()
            self.hold[method].wait(timeout=10)
        if error is not None:
            raise error

    def _mint(self, prefix: str) -> TokenRecord:
        with self._lock:
            self._issued += 1
            n = self._issued
        now = int(self.clock())
        return TokenRecord(
            access_token=f"{prefix}-{n}",
            refresh_token=f"refresh-{n}",
            issued_at=now,
            expires_at=now + self.token_lifetime,
        )

    # ------------------------------------------------------------------ #
    # ProviderAdapter                                                    #
    # ------------------------------------------------------------------ #
    def initiate_login(self, params: LoginParams) -> LoginOutcome:
        self._enter("initiate_login")
        if self.popup:
            return self.tokens.popleft() if self.tokens else self._mint("access")
        query = {"response_type": "code", "state": f"mock-state-{self.calls['initiate_login']}"}
        if params.redirect_uri:
            query["redirect_uri"] = params.redirect_uri
        if params.scope:
            query["scope"] = params.scope
        return NavigationRequest(url=f"{self.authorize_url}?{urlencode(query)}")

    def complete_callback(self, context: CallbackContext) -> TokenRecord:
        self._enter("complete_callback")
        with self._lock:
            if context.code in self.exchanged_codes:
                raise AuthError(ErrorKind.DUPLICATE_CALLBACK, "code already exchanged")
            self.exchanged_codes.append(context.code or "")
        return self.tokens.popleft() if self.tokens else self._mint("access")

    def refresh(self, record: TokenRecord) -> TokenRecord:
        self._enter("refresh")
        if not record.refresh_token:
            raise AuthError(ErrorKind.REFRESH_UNAVAILABLE, "no refresh token")
        return self.refresh_tokens.popleft() if self.refresh_tokens else self._mint("refreshed")

    def logout(self, record: TokenRecord) -> NavigationRequest | None:
        self._enter("logout")
        self.logged_out.append(record)
        return None

    def fetch_identity(self, record: TokenRecord) -> Identity:
        self._enter("fetch_identity")
        if self.identity is not None:
            return Identity(
                subject=self.identity.subject,
                claims=self.identity.claims,
                expires_at=record.expires_at,
            )
        return Identity(subject="mock|user", claims={"sub": "mock|user"}, expires_at=record.expires_at)
