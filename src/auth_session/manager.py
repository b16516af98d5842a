"""AuthSessionManager – the public façade applications talk to.

The manager owns exactly one :class:`SessionStateMachine` and one
ProviderAdapter. It adds three things on top of the machine:

* environment plumbing – reading the current location when asked to look
  for a callback, performing requested navigations, clearing consumed
  callback parameters;
* side-effect-free read accessors;
* a guard that turns every call made after :meth:`dispose` into
  ``CANCELLED`` (mutations) or an empty answer (reads).

Typical redirect flow::

    manager = AuthSessionManager(adapter, environment=env)
    manager.handle_environment_callback()   # safe to call on every start-up
    if not manager.is_authenticated():
        manager.login()                     # env.navigate(authorize_url)
    ...
    token = manager.get_access_token().unwrap()
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from auth_session.config import SessionSettings
from auth_session.core.cache import TokenCache
from auth_session.core.clock import Clock, default_clock
from auth_session.core.environment import Environment
from auth_session.core.errors import AuthResult, ErrorKind
from auth_session.core.machine import SessionStateMachine
from auth_session.core.models import (
    CallbackContext,
    Identity,
    LoginParams,
    NavigationRequest,
    Session,
    SessionState,
    TokenRecord,
)

if TYPE_CHECKING:  # pragma: no cover
    from auth_session.providers.base import ProviderAdapter

logger = logging.getLogger("auth-session.manager")


def _not_ready() -> AuthResult[Any]:
    return AuthResult.failure(ErrorKind.CANCELLED, "session manager is not initialized or was disposed")


class AuthSessionManager:
    """Stable API over one authentication session."""

    def __init__(
        self,
        adapter: "ProviderAdapter",
        *,
        cache: TokenCache | None = None,
        environment: Environment | None = None,
        settings: SessionSettings | None = None,
        clock: Clock = default_clock,
    ) -> None:
        self.settings = settings or SessionSettings()
        self.adapter = adapter
        self.environment = environment
        self.cache = cache or TokenCache(self.settings.build_store(clock=clock), clock=clock)
        self._machine: SessionStateMachine | None = SessionStateMachine(
            adapter,
            self.cache,
            session_id=self.settings.session_id,
            clock=clock,
            clock_skew_tolerance=self.settings.clock_skew_tolerance,
        )

    @classmethod
    def from_env(
        cls,
        *,
        environment: Environment | None = None,
        clock: Clock = default_clock,
    ) -> "AuthSessionManager":
        """Build settings, storage and the provider adapter from environment variables."""
        from auth_session.providers import build_adapter_from_env

        settings = SessionSettings.from_env()
        store = settings.build_store(clock=clock)
        adapter = build_adapter_from_env(store, clock=clock)
        logger.info("Auth session manager using provider %s", getattr(adapter, "name", "?"))
        return cls(
            adapter,
            cache=TokenCache(store, clock=clock),
            environment=environment,
            settings=settings,
            clock=clock,
        )

    # ------------------------------------------------------------------ #
    # Mutations                                                          #
    # ------------------------------------------------------------------ #
    def login(self, params: LoginParams | None = None) -> AuthResult[NavigationRequest | Identity]:
        machine = self._machine
        if machine is None:
            return _not_ready()
        result = machine.login(params)
        if result.ok and isinstance(result.value, NavigationRequest):
            self._navigate(result.value)
        return result

    def handle_environment_callback(self, location: str | None = None) -> AuthResult[Identity]:
        """Complete a pending login if *location* (or the environment's) carries a callback.

        Returns a successful empty result when there is nothing to handle, so
        it can be called unconditionally on start-up.
        """
        machine = self._machine
        if machine is None:
            return _not_ready()

        from_environment = location is None
        if from_environment:
            if self.environment is None:
                return AuthResult.success(None)
            location = self.environment.current_location()

        context = CallbackContext.from_url(location or "")
        if not context.is_callback:
            return AuthResult.success(None)

        result = machine.handle_callback(context)
        if from_environment and self.environment is not None:
            self.environment.clear_callback()
        return result

    def complete_callback(self, context: CallbackContext) -> AuthResult[Identity]:
        """Complete a login from an already extracted :class:`CallbackContext`."""
        machine = self._machine
        if machine is None:
            return _not_ready()
        return machine.handle_callback(context)

    def refresh(self) -> AuthResult[TokenRecord]:
        machine = self._machine
        if machine is None:
            return _not_ready()
        return machine.refresh()

    def restore_session(self) -> AuthResult[Identity]:
        """Re-hydrate a session from token material left in durable storage."""
        machine = self._machine
        if machine is None:
            return _not_ready()
        return machine.restore()

    def logout(self) -> AuthResult[NavigationRequest]:
        machine = self._machine
        if machine is None:
            return _not_ready()
        result = machine.logout()
        if result.ok and isinstance(result.value, NavigationRequest):
            self._navigate(result.value)
        return result

    def get_access_token(self) -> AuthResult[str]:
        """Return a valid access token, transparently refreshing an expired one."""
        machine = self._machine
        if machine is None:
            return _not_ready()
        return machine.get_access_token()

    # ------------------------------------------------------------------ #
    # Reads                                                              #
    # ------------------------------------------------------------------ #
    def get_identity(self) -> Identity | None:
        machine = self._machine
        return machine.get_identity() if machine is not None else None

    def is_authenticated(self) -> bool:
        machine = self._machine
        return machine.is_authenticated() if machine is not None else False

    @property
    def session(self) -> Session | None:
        machine = self._machine
        return machine.session if machine is not None else None

    @property
    def state(self) -> SessionState | None:
        machine = self._machine
        return machine.state if machine is not None else None

    # ------------------------------------------------------------------ #
    # Lifecycle                                                          #
    # ------------------------------------------------------------------ #
    def dispose(self) -> None:
        machine, self._machine = self._machine, None
        if machine is None:
            return
        machine.dispose()
        close = getattr(self.adapter, "close", None)
        if callable(close):
            close()
        logger.debug("Auth session manager disposed")

    def __enter__(self) -> "AuthSessionManager":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.dispose()

    def _navigate(self, navigation: NavigationRequest) -> None:
        if self.environment is not None:
            self.environment.navigate(navigation.url)
