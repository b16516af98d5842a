"""SessionStateMachine – authentication state transitions for one session.

Transitions
-----------
======================  =====================  ==============================
From                    Event                  To
======================  =====================  ==============================
Unauthenticated/Failed  login()                Authenticating
Authenticating          callback               PendingCallback → Authenticated
                                               or Failed
Authenticated           refresh()              Refreshing → Authenticated, or
                                               Unauthenticated on failure
any                     logout()               LoggingOut → Unauthenticated
any                     dispose()              terminal
======================  =====================  ==============================

Serialisation
-------------
At most one mutating operation runs per session. The running operation owns
the single in-flight slot and publishes its outcome through a
:class:`concurrent.futures.Future`. A caller that arrives while the slot is
taken either

* is rejected with ``OPERATION_IN_PROGRESS`` (``login``),
* joins the in-flight operation when it asks for the same thing (same
  callback ``state``, refresh, logout) and receives the very same result, or
* waits for the slot to free up and then runs (everything else).

Read accessors never touch the slot; they read the last committed
:class:`~auth_session.core.models.Session` snapshot, which is replaced
wholesale on every commit.

Nothing here retries. Adapter failures are converted into
:class:`~auth_session.core.errors.AuthResult` failures and the session is
always left in a resting state (``Failed`` or ``Unauthenticated``).
"""

from __future__ import annotations

import enum
import logging
import threading
import uuid
from concurrent.futures import Future
from dataclasses import replace
from typing import TYPE_CHECKING, Any, Callable, TypeVar

from auth_session.core.cache import TokenCache
from auth_session.core.clock import Clock, default_clock
from auth_session.core.errors import AuthError, AuthResult, ErrorKind
from auth_session.core.log_utils import get_auth_logger
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

T = TypeVar("T")

_CALLBACK_ACCEPTING = frozenset(
    {SessionState.UNAUTHENTICATED, SessionState.AUTHENTICATING, SessionState.FAILED}
)
_TRANSIENT = frozenset(
    {SessionState.PENDING_CALLBACK, SessionState.REFRESHING, SessionState.LOGGING_OUT}
)


class _Op(str, enum.Enum):
    LOGIN = "login"
    CALLBACK = "callback"
    REFRESH = "refresh"
    LOGOUT = "logout"
    RESTORE = "restore"


class _Operation:
    __slots__ = ("kind", "key", "future")

    def __init__(self, kind: _Op, key: str | None) -> None:
        self.kind = kind
        self.key = key
        self.future: Future[AuthResult[Any]] = Future()


class SessionStateMachine:
    """Owns the :class:`Session` and drives a shared ProviderAdapter."""

    def __init__(
        self,
        adapter: "ProviderAdapter",
        cache: TokenCache,
        *,
        session_id: str | None = None,
        clock: Clock = default_clock,
        clock_skew_tolerance: float = 60.0,
    ) -> None:
        self.adapter = adapter
        self.cache = cache
        self.clock = clock
        self.clock_skew_tolerance = clock_skew_tolerance
        self._session = Session(session_id=session_id or uuid.uuid4().hex)
        self._cond = threading.Condition()
        self._inflight: _Operation | None = None
        self._disposed = False
        # state values of callbacks already handed to the adapter, kept for
        # the lifetime of the machine
        self._consumed: set[str] = set()
        self._log = get_auth_logger(
            base_logger_name="auth-session.core.machine",
            session_id=self._session.session_id,
            provider=getattr(adapter, "name", type(adapter).__name__),
        )

    # ------------------------------------------------------------------ #
    # Read accessors (lock-free)                                         #
    # ------------------------------------------------------------------ #
    @property
    def session(self) -> Session:
        return self._session

    @property
    def session_id(self) -> str:
        return self._session.session_id

    @property
    def state(self) -> SessionState:
        return self._session.state

    @property
    def disposed(self) -> bool:
        return self._disposed

    def is_authenticated(self) -> bool:
        return not self._disposed and self._session.is_authenticated

    def get_identity(self) -> Identity | None:
        session = self._session
        if self._disposed or not session.is_authenticated:
            return None
        return session.identity

    # ------------------------------------------------------------------ #
    # Mutating operations                                                #
    # ------------------------------------------------------------------ #
    def login(self, params: LoginParams | None = None) -> AuthResult[NavigationRequest | Identity]:
        """Start a login; a redirect flow returns the navigation to perform."""
        params = params or LoginParams()

        def gate() -> AuthResult | None:
            state = self._session.state
            if state in (SessionState.AUTHENTICATING, SessionState.PENDING_CALLBACK):
                return AuthResult.failure(
                    ErrorKind.OPERATION_IN_PROGRESS, "a login is already in progress"
                )
            if state in (SessionState.AUTHENTICATED, SessionState.REFRESHING):
                return AuthResult.failure(
                    ErrorKind.INITIATION_FAILED, "session already authenticated; log out first"
                )
            self._commit(state=SessionState.AUTHENTICATING, identity=None, last_error=None)
            return None

        return self._run(_Op.LOGIN, lambda: self._do_login(params), gate=gate, reject_when_busy=True)

    def handle_callback(self, context: CallbackContext) -> AuthResult[Identity]:
        """Complete a login from the provider's return trip, at most once per ``state``."""
        if not context.state or not (context.code or context.error):
            return AuthResult.failure(ErrorKind.CALLBACK_INVALID, "callback is missing code or state")

        key = context.state
        previous: list[SessionState] = []

        def gate() -> AuthResult | None:
            if key in self._consumed:
                return AuthResult.failure(
                    ErrorKind.DUPLICATE_CALLBACK, "callback state was already consumed"
                )
            state = self._session.state
            if state not in _CALLBACK_ACCEPTING:
                return AuthResult.failure(
                    ErrorKind.CALLBACK_INVALID, f"cannot accept a callback while {state.value}"
                )
            self._consumed.add(key)
            previous.append(state)
            self._commit(state=SessionState.PENDING_CALLBACK, last_error=None)
            return None

        return self._run(
            _Op.CALLBACK, lambda: self._do_callback(context, previous[0]), key=key, gate=gate
        )

    def refresh(self, *, only_if_expired: bool = False) -> AuthResult[TokenRecord]:
        """Silently renew the cached token.

        With *only_if_expired* the cache is re-checked once the refresh slot is
        held, so callers racing on an expired token trigger a single refresh.
        """

        def gate() -> AuthResult | None:
            if self._session.state is not SessionState.AUTHENTICATED:
                return AuthResult.failure(
                    ErrorKind.NOT_AUTHENTICATED, "no authenticated session to refresh"
                )
            self._commit(state=SessionState.REFRESHING)
            return None

        return self._run(_Op.REFRESH, lambda: self._do_refresh(only_if_expired), gate=gate)

    def logout(self) -> AuthResult[NavigationRequest]:
        """Always ends ``Unauthenticated`` with no cached token.

        A failed remote logout is reported in ``warnings``, never as an error.
        """

        def gate() -> AuthResult | None:
            self._commit(state=SessionState.LOGGING_OUT)
            return None

        return self._run(_Op.LOGOUT, self._do_logout, gate=gate)

    def restore(self) -> AuthResult[Identity]:
        """Resume an authenticated session from token material already cached."""

        def gate() -> AuthResult | None:
            state = self._session.state
            if state is SessionState.AUTHENTICATED:
                return AuthResult.success(self._session.identity)
            if state not in (SessionState.UNAUTHENTICATED, SessionState.FAILED):
                return AuthResult.failure(
                    ErrorKind.OPERATION_IN_PROGRESS, f"cannot restore while {state.value}"
                )
            return None

        return self._run(_Op.RESTORE, self._do_restore, gate=gate)

    def get_access_token(self) -> AuthResult[str]:
        """Return a non-expired access token, refreshing first when needed."""
        if self._disposed:
            return self._cancelled()
        if not self._session.is_authenticated:
            return AuthResult.failure(ErrorKind.NOT_AUTHENTICATED, "not authenticated")

        record, _ = self._call(ErrorKind.STORAGE_FAILED, self.cache.get, self.session_id)
        if record is not None and not self.cache.is_expired(record, self.clock_skew_tolerance):
            return AuthResult.success(record.access_token)

        self._log.debug("Access token expired or missing; refreshing")
        refreshed = self.refresh(only_if_expired=True)
        if not refreshed.ok:
            return AuthResult.failure(refreshed.error)
        return AuthResult.success(refreshed.value.access_token)

    def dispose(self) -> None:
        """Tear down: queued callers settle ``CANCELLED``, running results are discarded."""
        with self._cond:
            if self._disposed:
                return
            self._disposed = True
            self._consumed.clear()
            self._cond.notify_all()
        self._log.debug("Session machine disposed")

    # ------------------------------------------------------------------ #
    # Operation bodies (run outside the lock, inside the in-flight slot) #
    # ------------------------------------------------------------------ #
    def _do_login(self, params: LoginParams) -> AuthResult:
        outcome, err = self._call(ErrorKind.INITIATION_FAILED, self.adapter.initiate_login, params)
        if err is not None:
            return self._fail(err, SessionState.FAILED)

        if isinstance(outcome, NavigationRequest):
            with self._cond:
                if self._disposed:
                    self._commit(state=SessionState.UNAUTHENTICATED)
                    return self._cancelled()
            self._log.info("Login redirect requested")
            return AuthResult.success(outcome)

        if isinstance(outcome, TokenRecord):
            return self._establish(outcome, failure_state=SessionState.FAILED)

        return self._fail(
            AuthError(
                ErrorKind.INITIATION_FAILED,
                f"unsupported login outcome {type(outcome).__name__}",
            ),
            SessionState.FAILED,
        )

    def _do_callback(self, context: CallbackContext, previous: SessionState) -> AuthResult:
        if context.error:
            detail = context.error
            if context.error_description:
                detail = f"{detail}: {context.error_description}"
            return self._fail(
                AuthError(ErrorKind.CALLBACK_INVALID, f"provider returned {detail}"),
                SessionState.FAILED,
            )

        record, err = self._call(ErrorKind.EXCHANGE_FAILED, self.adapter.complete_callback, context)
        if err is not None:
            if err.kind is ErrorKind.DUPLICATE_CALLBACK:
                # the adapter recognised a replay; nothing changed
                with self._cond:
                    self._commit(state=previous)
                return AuthResult.failure(err)
            return self._fail(err, SessionState.FAILED)
        if not isinstance(record, TokenRecord):
            return self._fail(
                AuthError(ErrorKind.EXCHANGE_FAILED, "adapter returned no token record"),
                SessionState.FAILED,
            )
        self._log.info("Authorization code exchanged (token ttl %ss)", record.ttl)
        return self._establish(record, failure_state=SessionState.FAILED)

    def _do_refresh(self, only_if_expired: bool) -> AuthResult:
        current, err = self._call(ErrorKind.STORAGE_FAILED, self.cache.get, self.session_id)
        if err is not None:
            return self._fail(err, SessionState.UNAUTHENTICATED)
        if current is None:
            return self._fail(
                AuthError(ErrorKind.REFRESH_UNAVAILABLE, "no cached token to refresh"),
                SessionState.UNAUTHENTICATED,
            )
        if only_if_expired and not self.cache.is_expired(current, self.clock_skew_tolerance):
            # someone else refreshed while we queued
            with self._cond:
                self._commit(state=SessionState.AUTHENTICATED)
            return AuthResult.success(current)

        record, err = self._call(ErrorKind.REFRESH_FAILED, self.adapter.refresh, current)
        if err is not None:
            return self._fail(err, SessionState.UNAUTHENTICATED)
        if not isinstance(record, TokenRecord):
            return self._fail(
                AuthError(ErrorKind.REFRESH_FAILED, "adapter returned no token record"),
                SessionState.UNAUTHENTICATED,
            )

        established = self._establish(record, failure_state=SessionState.UNAUTHENTICATED)
        if not established.ok:
            return established
        self._log.info("Access token refreshed (ttl %ss)", record.ttl)
        return AuthResult.success(record)

    def _do_logout(self) -> AuthResult:
        sid = self.session_id
        warnings: list[AuthError] = []
        navigation: NavigationRequest | None = None
        try:
            record, err = self._call(ErrorKind.STORAGE_FAILED, self.cache.get, sid)
            if err is not None:
                warnings.append(err)
            if record is not None:
                outcome, err = self._call(ErrorKind.LOGOUT_REMOTE_FAILED, self.adapter.logout, record)
                if err is not None:
                    if err.kind is not ErrorKind.LOGOUT_REMOTE_FAILED:
                        err = AuthError(ErrorKind.LOGOUT_REMOTE_FAILED, str(err), cause=err)
                    self._log.warning("Remote logout failed; local session cleared anyway")
                    warnings.append(err)
                elif isinstance(outcome, NavigationRequest):
                    navigation = outcome
        finally:
            try:
                err = self._discard_tokens(sid)
                if err is not None:
                    warnings.append(err)
            finally:
                with self._cond:
                    self._commit(state=SessionState.UNAUTHENTICATED, identity=None, last_error=None)
                    disposed = self._disposed

        if disposed:
            return self._cancelled()
        self._log.info("Logged out")
        return AuthResult.success(navigation, warnings=tuple(warnings))

    def _do_restore(self) -> AuthResult:
        record, err = self._call(ErrorKind.STORAGE_FAILED, self.cache.get, self.session_id)
        if err is not None:
            return AuthResult.failure(err)
        if record is None:
            return AuthResult.failure(ErrorKind.NOT_AUTHENTICATED, "no stored token to restore")

        if self.cache.is_expired(record, self.clock_skew_tolerance):
            with self._cond:
                self._commit(state=SessionState.REFRESHING)
            record, err = self._call(ErrorKind.REFRESH_FAILED, self.adapter.refresh, record)
            if err is not None:
                return self._fail(err, SessionState.UNAUTHENTICATED)
            if not isinstance(record, TokenRecord):
                return self._fail(
                    AuthError(ErrorKind.REFRESH_FAILED, "adapter returned no token record"),
                    SessionState.UNAUTHENTICATED,
                )
        return self._establish(record, failure_state=SessionState.UNAUTHENTICATED)

    # ------------------------------------------------------------------ #
    # Internals                                                          #
    # ------------------------------------------------------------------ #
    def _run(
        self,
        kind: _Op,
        body: Callable[[], AuthResult],
        *,
        key: str | None = None,
        gate: Callable[[], AuthResult | None] | None = None,
        reject_when_busy: bool = False,
    ) -> AuthResult:
        follower: _Operation | None = None
        with self._cond:
            while True:
                if self._disposed:
                    return self._cancelled()
                current = self._inflight
                if current is None:
                    if gate is not None:
                        early = gate()
                        if early is not None:
                            return early
                    op = _Operation(kind, key)
                    self._inflight = op
                    break
                if reject_when_busy:
                    return AuthResult.failure(
                        ErrorKind.OPERATION_IN_PROGRESS,
                        f"{current.kind.value} already in progress",
                    )
                if current.kind is kind and current.key == key:
                    follower = current
                    break
                self._cond.wait()

        if follower is not None:
            self._log.debug("Joining in-flight %s", kind.value)
            return follower.future.result()

        try:
            result = body()
        except BaseException as exc:
            with self._cond:
                if self._session.state in _TRANSIENT:
                    self._commit(state=SessionState.FAILED)
            op.future.set_exception(exc)
            raise
        else:
            op.future.set_result(result)
            return result
        finally:
            with self._cond:
                self._inflight = None
                self._cond.notify_all()

    def _call(
        self, default_kind: ErrorKind, fn: Callable[..., T], *args: Any
    ) -> tuple[T | None, AuthError | None]:
        """Invoke an adapter or storage call, converting anything it raises."""
        try:
            return fn(*args), None
        except AuthError as exc:
            return None, exc
        except Exception as exc:
            self._log.debug("%s raised %s", getattr(fn, "__name__", fn), type(exc).__name__)
            return None, AuthError(default_kind, f"{type(exc).__name__}: {exc}", cause=exc)

    def _establish(self, record: TokenRecord, *, failure_state: SessionState) -> AuthResult:
        """Cache *record*, fetch the identity and commit ``Authenticated``."""
        sid = self.session_id
        _, err = self._call(ErrorKind.STORAGE_FAILED, self.cache.put, sid, record)
        if err is not None:
            return self._fail(err, failure_state)
        if self._disposed:
            return self._discard_cancelled()

        identity, err = self._call(ErrorKind.IDENTITY_FETCH_FAILED, self.adapter.fetch_identity, record)
        if err is None and not isinstance(identity, Identity):
            err = AuthError(ErrorKind.IDENTITY_FETCH_FAILED, "adapter returned no identity")
        if err is not None:
            return self._fail(err, failure_state)

        with self._cond:
            if not self._disposed:
                self._commit(state=SessionState.AUTHENTICATED, identity=identity, last_error=None)
                return AuthResult.success(identity)
        return self._discard_cancelled()

    def _discard_cancelled(self) -> AuthResult:
        """Drop the tokens of an operation that outlived ``dispose()``."""
        self._discard_tokens(self.session_id)
        with self._cond:
            self._commit(state=SessionState.UNAUTHENTICATED, identity=None)
        return self._cancelled()

    def _discard_tokens(self, session_id: str) -> AuthError | None:
        """Invalidate cached tokens; a storage failure is returned, not raised."""
        try:
            self.cache.invalidate(session_id)
        except Exception as exc:
            self._log.warning("Could not remove cached token: %s", type(exc).__name__)
            return AuthError(ErrorKind.STORAGE_FAILED, f"{type(exc).__name__}: {exc}", cause=exc)
        return None

    def _fail(self, err: AuthError, state: SessionState) -> AuthResult:
        """Invalidate token material and land in the resting *state*."""
        self._discard_tokens(self.session_id)
        with self._cond:
            self._commit(state=state, identity=None, last_error=err)
            disposed = self._disposed
        self._log.info("Session moved to %s: %s", state.value, err.kind.value)
        if disposed:
            return self._cancelled()
        return AuthResult.failure(err)

    def _commit(self, **changes: Any) -> None:
        with self._cond:
            self._session = replace(self._session, **changes)

    @staticmethod
    def _cancelled() -> AuthResult:
        return AuthResult.failure(ErrorKind.CANCELLED, "session manager disposed")
