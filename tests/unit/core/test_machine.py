"""Unit tests for SessionStateMachine transitions, serialisation and disposal.

Coverage:
* login → callback → Authenticated happy path (redirect and popup flows)
* duplicate and concurrent callbacks never exchange a code twice
* expired token → single refresh, subsequent reads served from cache
* logout always ends Unauthenticated with an empty cache
* login rejected while a login is in flight
* every failure lands in Failed or Unauthenticated with the cache cleared
* dispose() settles pending work with Cancelled
"""

from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest

from auth_session.core.cache import TokenCache
from auth_session.core.clock import ManualClock
from auth_session.core.errors import AuthError, ErrorKind
from auth_session.core.machine import SessionStateMachine
from auth_session.core.models import (
    CallbackContext,
    Identity,
    LoginParams,
    NavigationRequest,
    SessionState,
    TokenRecord,
)
from auth_session.core.store import DiskAuthStore, MemoryAuthStore
from auth_session.providers.mock import MockProvider

SID = "sess-0001"
CTX = CallbackContext.from_query({"code": "abc", "state": "xyz"})


# --------------------------------------------------------------------------- #
# Helpers                                                                     #
# --------------------------------------------------------------------------- #
def _token(access: str, now: float, ttl: int = 3_600, refresh: str | None = "r") -> TokenRecord:
    return TokenRecord(
        access_token=access,
        refresh_token=refresh,
        issued_at=int(now),
        expires_at=int(now) + ttl,
    )


def _machine(clock: ManualClock, provider: MockProvider | None = None) -> SessionStateMachine:
    provider = provider or MockProvider(clock=clock)
    return SessionStateMachine(provider, TokenCache(clock=clock), session_id=SID, clock=clock)


def _authenticated(clock: ManualClock, **provider_kwargs) -> tuple[SessionStateMachine, MockProvider]:
    provider = MockProvider(clock=clock, **provider_kwargs)
    machine = _machine(clock, provider)
    assert machine.login().ok
    assert machine.handle_callback(CTX).ok
    return machine, provider


def _in_thread(fn, *args) -> tuple[threading.Thread, list]:
    out: list = []
    t = threading.Thread(target=lambda: out.append(fn(*args)))
    t.start()
    return t, out


# --------------------------------------------------------------------------- #
# Happy paths                                                                 #
# --------------------------------------------------------------------------- #
def test_initial_state(clock: ManualClock) -> None:
    machine = _machine(clock)
    assert machine.state is SessionState.UNAUTHENTICATED
    assert machine.session_id == SID
    assert machine.is_authenticated() is False
    assert machine.get_identity() is None


def test_login_then_callback_authenticates(clock: ManualClock) -> None:
    t1 = _token("T1", clock())
    identity = Identity(subject="user-1", claims={"sub": "user-1", "name": "Ada"})
    provider = MockProvider(tokens=[t1], identity=identity, clock=clock)
    machine = _machine(clock, provider)

    started = machine.login(LoginParams(scope="openid"))
    assert started.ok
    assert isinstance(started.value, NavigationRequest)
    assert provider.calls["initiate_login"] == 1
    assert machine.state is SessionState.AUTHENTICATING

    done = machine.handle_callback(CTX)
    assert done.ok
    assert done.value.subject == "user-1"
    assert machine.state is SessionState.AUTHENTICATED
    assert machine.is_authenticated()
    assert machine.get_identity().get("name") == "Ada"
    assert machine.cache.get(SID) == t1
    assert machine.get_access_token().value == "T1"


def test_popup_login_authenticates_without_callback(clock: ManualClock) -> None:
    provider = MockProvider(popup=True, clock=clock)
    machine = _machine(clock, provider)

    result = machine.login()
    assert result.ok
    assert isinstance(result.value, Identity)
    assert machine.state is SessionState.AUTHENTICATED
    assert provider.calls["complete_callback"] == 0


# --------------------------------------------------------------------------- #
# Callback de-duplication                                                     #
# --------------------------------------------------------------------------- #
def test_same_callback_twice_is_duplicate(clock: ManualClock) -> None:
    machine, provider = _authenticated(clock)
    record = machine.cache.get(SID)

    again = machine.handle_callback(CTX)
    assert again.kind is ErrorKind.DUPLICATE_CALLBACK
    assert machine.state is SessionState.AUTHENTICATED
    assert machine.cache.get(SID) == record
    assert provider.calls["complete_callback"] == 1


def test_consumed_state_is_remembered_for_the_machine_lifetime(clock: ManualClock) -> None:
    machine, provider = _authenticated(clock)

    clock.advance(86_400)
    assert machine.handle_callback(CTX).kind is ErrorKind.DUPLICATE_CALLBACK
    assert machine.state is SessionState.AUTHENTICATED

    assert machine.logout().ok
    again = machine.handle_callback(CTX)
    assert again.kind is ErrorKind.DUPLICATE_CALLBACK
    assert machine.state is SessionState.UNAUTHENTICATED
    assert provider.calls["complete_callback"] == 1


def test_concurrent_identical_callbacks_exchange_once(clock: ManualClock) -> None:
    provider = MockProvider(clock=clock)
    machine = _machine(clock, provider)
    machine.login()
    release = provider.block("complete_callback")

    leader, leader_out = _in_thread(machine.handle_callback, CTX)
    assert provider.entered["complete_callback"].wait(timeout=5)
    followers = [_in_thread(machine.handle_callback, CTX) for _ in range(5)]
    time.sleep(0.2)
    release.set()

    leader.join(timeout=5)
    for t, _ in followers:
        t.join(timeout=5)

    assert provider.calls["complete_callback"] == 1
    assert leader_out[0].ok
    for _, out in followers:
        result = out[0]
        assert result.ok or result.kind is ErrorKind.DUPLICATE_CALLBACK
        if result.ok:
            assert result.value == leader_out[0].value
    assert machine.state is SessionState.AUTHENTICATED


def test_callback_missing_parameters_is_invalid(clock: ManualClock) -> None:
    provider = MockProvider(clock=clock)
    machine = _machine(clock, provider)
    machine.login()

    result = machine.handle_callback(CallbackContext.from_query({"code": "abc"}))
    assert result.kind is ErrorKind.CALLBACK_INVALID
    assert machine.state is SessionState.AUTHENTICATING
    assert provider.calls["complete_callback"] == 0


def test_provider_error_callback_fails_without_exchange(clock: ManualClock) -> None:
    provider = MockProvider(clock=clock)
    machine = _machine(clock, provider)
    machine.login()

    ctx = CallbackContext.from_query(
        {"state": "xyz", "error": "access_denied", "error_description": "user cancelled"}
    )
    result = machine.handle_callback(ctx)
    assert result.kind is ErrorKind.CALLBACK_INVALID
    assert "access_denied" in str(result.error)
    assert machine.state is SessionState.FAILED
    assert machine.session.last_error is result.error
    assert provider.calls["complete_callback"] == 0


def test_adapter_replay_detection_restores_previous_state(clock: ManualClock) -> None:
    machine, provider = _authenticated(clock)
    machine.logout()

    # same code under a fresh state value: only the adapter can tell
    replay = CallbackContext.from_query({"code": "abc", "state": "other"})
    result = machine.handle_callback(replay)
    assert result.kind is ErrorKind.DUPLICATE_CALLBACK
    assert machine.state is SessionState.UNAUTHENTICATED


def test_new_callback_while_authenticated_is_rejected(clock: ManualClock) -> None:
    machine, provider = _authenticated(clock)
    other = CallbackContext.from_query({"code": "def", "state": "uvw"})
    result = machine.handle_callback(other)
    assert result.kind is ErrorKind.CALLBACK_INVALID
    assert machine.state is SessionState.AUTHENTICATED
    assert provider.calls["complete_callback"] == 1


# --------------------------------------------------------------------------- #
# Exchange / identity failures                                                #
# --------------------------------------------------------------------------- #
def test_exchange_failure_lands_in_failed(clock: ManualClock) -> None:
    provider = MockProvider(clock=clock)
    provider.fail_next("complete_callback", AuthError(ErrorKind.EXCHANGE_FAILED, "invalid_grant"))
    machine = _machine(clock, provider)
    machine.login()

    result = machine.handle_callback(CTX)
    assert result.kind is ErrorKind.EXCHANGE_FAILED
    assert machine.state is SessionState.FAILED
    assert machine.cache.get(SID) is None


def test_raw_adapter_exception_is_wrapped(clock: ManualClock) -> None:
    provider = MockProvider(clock=clock)
    boom = ConnectionError("network down")
    provider.fail_next("complete_callback", boom)
    machine = _machine(clock, provider)
    machine.login()

    result = machine.handle_callback(CTX)
    assert result.kind is ErrorKind.EXCHANGE_FAILED
    assert result.error.__cause__ is boom
    assert machine.state is SessionState.FAILED


def test_identity_fetch_failure_invalidates_token(clock: ManualClock) -> None:
    provider = MockProvider(clock=clock)
    provider.fail_next("fetch_identity", RuntimeError("userinfo 500"))
    machine = _machine(clock, provider)
    machine.login()

    result = machine.handle_callback(CTX)
    assert result.kind is ErrorKind.IDENTITY_FETCH_FAILED
    assert machine.state is SessionState.FAILED
    assert machine.cache.get(SID) is None
    assert machine.get_identity() is None


def test_login_failure_then_retry_from_failed(clock: ManualClock) -> None:
    provider = MockProvider(clock=clock)
    provider.fail_next("initiate_login", AuthError(ErrorKind.INITIATION_FAILED, "idp down"))
    machine = _machine(clock, provider)

    assert machine.login().kind is ErrorKind.INITIATION_FAILED
    assert machine.state is SessionState.FAILED

    assert machine.login().ok
    assert machine.state is SessionState.AUTHENTICATING


# --------------------------------------------------------------------------- #
# Login serialisation                                                         #
# --------------------------------------------------------------------------- #
def test_login_while_authenticating_is_rejected(clock: ManualClock) -> None:
    provider = MockProvider(clock=clock)
    machine = _machine(clock, provider)
    assert machine.login().ok

    second = machine.login()
    assert second.kind is ErrorKind.OPERATION_IN_PROGRESS
    assert provider.calls["initiate_login"] == 1

    # the original flow still completes
    assert machine.handle_callback(CTX).ok
    assert machine.state is SessionState.AUTHENTICATED


def test_login_while_initiation_in_flight_is_rejected(clock: ManualClock) -> None:
    provider = MockProvider(clock=clock)
    machine = _machine(clock, provider)
    release = provider.block("initiate_login")

    t, out = _in_thread(machine.login)
    assert provider.entered["initiate_login"].wait(timeout=5)

    assert machine.login().kind is ErrorKind.OPERATION_IN_PROGRESS
    release.set()
    t.join(timeout=5)
    assert out[0].ok
    assert provider.calls["initiate_login"] == 1


def test_login_when_authenticated_is_rejected(clock: ManualClock) -> None:
    machine, _ = _authenticated(clock)
    assert machine.login().kind is ErrorKind.INITIATION_FAILED
    assert machine.state is SessionState.AUTHENTICATED


def test_reads_do_not_block_on_in_flight_operation(clock: ManualClock) -> None:
    provider = MockProvider(clock=clock)
    machine = _machine(clock, provider)
    machine.login()
    release = provider.block("complete_callback")

    t, out = _in_thread(machine.handle_callback, CTX)
    assert provider.entered["complete_callback"].wait(timeout=5)
    assert machine.state is SessionState.PENDING_CALLBACK
    assert machine.is_authenticated() is False
    assert machine.get_identity() is None

    release.set()
    t.join(timeout=5)
    assert out[0].ok


# --------------------------------------------------------------------------- #
# Access tokens & refresh                                                     #
# --------------------------------------------------------------------------- #
def test_expired_token_refreshes_once(clock: ManualClock) -> None:
    now = clock()
    provider = MockProvider(
        tokens=[_token("T1", now)],
        refresh_tokens=[_token("T2", now + 3_600)],
        clock=clock,
    )
    machine = _machine(clock, provider)
    machine.login()
    machine.handle_callback(CTX)

    clock.advance(3_600)
    assert machine.get_access_token().value == "T2"
    assert provider.calls["refresh"] == 1

    assert machine.get_access_token().value == "T2"
    assert provider.calls["refresh"] == 1
    assert machine.state is SessionState.AUTHENTICATED


def test_token_inside_skew_window_is_refreshed(clock: ManualClock) -> None:
    machine, provider = _authenticated(clock)
    record = machine.cache.get(SID)
    clock.set(record.expires_at - 30)  # within the 60s tolerance

    result = machine.get_access_token()
    assert result.ok
    assert result.value != record.access_token
    assert provider.calls["refresh"] == 1
    assert not machine.cache.is_expired(machine.cache.get(SID), machine.clock_skew_tolerance)


def test_concurrent_access_token_requests_share_one_refresh(clock: ManualClock) -> None:
    machine, provider = _authenticated(clock)
    clock.advance(3_600)
    release = provider.block("refresh")

    workers = [_in_thread(machine.get_access_token) for _ in range(6)]
    assert provider.entered["refresh"].wait(timeout=5)
    time.sleep(0.2)
    release.set()
    for t, _ in workers:
        t.join(timeout=5)

    tokens = {out[0].value for _, out in workers}
    assert provider.calls["refresh"] == 1
    assert len(tokens) == 1
    assert all(out[0].ok for _, out in workers)


def test_refresh_unavailable_requires_relogin(clock: ManualClock) -> None:
    provider = MockProvider(tokens=[_token("T1", clock(), refresh=None)], clock=clock)
    machine = _machine(clock, provider)
    machine.login()
    machine.handle_callback(CTX)

    clock.advance(3_600)
    result = machine.get_access_token()
    assert result.kind is ErrorKind.REFRESH_UNAVAILABLE
    assert machine.state is SessionState.UNAUTHENTICATED
    assert machine.cache.get(SID) is None
    assert machine.get_access_token().kind is ErrorKind.NOT_AUTHENTICATED


def test_refresh_failure_is_not_retried(clock: ManualClock) -> None:
    machine, provider = _authenticated(clock)
    provider.fail_next("refresh", AuthError(ErrorKind.REFRESH_FAILED, "503"))

    result = machine.refresh()
    assert result.kind is ErrorKind.REFRESH_FAILED
    assert provider.calls["refresh"] == 1
    assert machine.state is SessionState.UNAUTHENTICATED
    assert machine.cache.get(SID) is None


def test_explicit_refresh_replaces_record_and_identity(clock: ManualClock) -> None:
    machine, provider = _authenticated(clock)
    before = machine.cache.get(SID)

    result = machine.refresh()
    assert result.ok
    assert result.value.access_token != before.access_token
    assert machine.cache.get(SID) == result.value
    assert machine.get_identity().expires_at == result.value.expires_at
    assert provider.calls["fetch_identity"] == 2


def test_refresh_requires_authenticated_session(clock: ManualClock) -> None:
    machine = _machine(clock)
    assert machine.refresh().kind is ErrorKind.NOT_AUTHENTICATED
    assert machine.get_access_token().kind is ErrorKind.NOT_AUTHENTICATED


# --------------------------------------------------------------------------- #
# Logout                                                                      #
# --------------------------------------------------------------------------- #
def test_logout_clears_session(clock: ManualClock) -> None:
    machine, provider = _authenticated(clock)
    result = machine.logout()
    assert result.ok and not result.warnings
    assert machine.state is SessionState.UNAUTHENTICATED
    assert machine.cache.get(SID) is None
    assert machine.get_identity() is None
    assert provider.calls["logout"] == 1


def test_logout_remote_failure_is_a_warning(clock: ManualClock) -> None:
    machine, provider = _authenticated(clock)
    provider.fail_next("logout", ConnectionError("revocation endpoint unreachable"))

    result = machine.logout()
    assert result.ok
    assert [w.kind for w in result.warnings] == [ErrorKind.LOGOUT_REMOTE_FAILED]
    assert machine.state is SessionState.UNAUTHENTICATED
    assert machine.cache.get(SID) is None


class _UndeletableStore(MemoryAuthStore):
    def delete_tokens(self, session_id: str) -> None:
        raise TimeoutError("token lock held by another process")


def test_logout_storage_failure_still_ends_unauthenticated(clock: ManualClock) -> None:
    provider = MockProvider(clock=clock)
    cache = TokenCache(_UndeletableStore(clock=clock), clock=clock)
    machine = SessionStateMachine(provider, cache, session_id=SID, clock=clock)
    assert machine.login().ok
    assert machine.handle_callback(CTX).ok

    result = machine.logout()
    assert result.ok
    assert [w.kind for w in result.warnings] == [ErrorKind.STORAGE_FAILED]
    assert machine.state is SessionState.UNAUTHENTICATED
    assert machine.is_authenticated() is False
    assert machine.get_access_token().kind is ErrorKind.NOT_AUTHENTICATED


def test_logout_with_stale_disk_lock(clock: ManualClock, tmp_path: Path) -> None:
    store = DiskAuthStore(base_dir=tmp_path, clock=clock)
    provider = MockProvider(clock=clock)
    machine = SessionStateMachine(provider, TokenCache(store, clock=clock), session_id=SID, clock=clock)
    assert machine.login().ok
    assert machine.handle_callback(CTX).ok
    # left behind by a crashed process
    store._token_lock(SID).touch()

    result = machine.logout()
    assert result.ok
    assert result.warnings[0].kind is ErrorKind.STORAGE_FAILED
    assert isinstance(result.warnings[0].__cause__, TimeoutError)
    assert machine.state is SessionState.UNAUTHENTICATED
    assert provider.calls["logout"] == 1


@pytest.mark.parametrize("fail_login", [False, True])
def test_logout_from_unauthenticated_or_failed(clock: ManualClock, fail_login: bool) -> None:
    provider = MockProvider(clock=clock)
    machine = _machine(clock, provider)
    if fail_login:
        provider.fail_next("initiate_login", AuthError(ErrorKind.INITIATION_FAILED))
        machine.login()
        assert machine.state is SessionState.FAILED

    result = machine.logout()
    assert result.ok
    assert machine.state is SessionState.UNAUTHENTICATED
    assert machine.session.last_error is None
    assert provider.calls["logout"] == 0


# --------------------------------------------------------------------------- #
# Restore                                                                     #
# --------------------------------------------------------------------------- #
def test_restore_from_cached_record(clock: ManualClock) -> None:
    provider = MockProvider(clock=clock)
    machine = _machine(clock, provider)
    machine.cache.put(SID, _token("stored", clock()))

    result = machine.restore()
    assert result.ok
    assert machine.state is SessionState.AUTHENTICATED
    assert machine.get_access_token().value == "stored"
    assert provider.calls["refresh"] == 0


def test_restore_refreshes_expired_record(clock: ManualClock) -> None:
    provider = MockProvider(clock=clock)
    machine = _machine(clock, provider)
    machine.cache.put(SID, _token("stale", clock() - 7_200))

    result = machine.restore()
    assert result.ok
    assert provider.calls["refresh"] == 1
    assert machine.cache.get(SID).access_token.startswith("refreshed-")


def test_restore_without_record(clock: ManualClock) -> None:
    machine = _machine(clock)
    assert machine.restore().kind is ErrorKind.NOT_AUTHENTICATED
    assert machine.state is SessionState.UNAUTHENTICATED


# --------------------------------------------------------------------------- #
# Disposal                                                                    #
# --------------------------------------------------------------------------- #
@pytest.mark.parametrize("stage", ["complete_callback", "fetch_identity"])
def test_dispose_discards_in_flight_exchange(clock: ManualClock, stage: str) -> None:
    provider = MockProvider(clock=clock)
    machine = _machine(clock, provider)
    machine.login()
    release = provider.block(stage)

    t, out = _in_thread(machine.handle_callback, CTX)
    assert provider.entered[stage].wait(timeout=5)
    machine.dispose()
    release.set()
    t.join(timeout=5)

    assert out[0].kind is ErrorKind.CANCELLED
    assert provider.calls["complete_callback"] == 1
    assert machine.cache.get(SID) is None
    assert machine.is_authenticated() is False
    assert machine.state is SessionState.UNAUTHENTICATED


def test_dispose_cancels_queued_operations(clock: ManualClock) -> None:
    machine, provider = _authenticated(clock)
    release = provider.block("logout")

    leader, _ = _in_thread(machine.logout)
    assert provider.entered["logout"].wait(timeout=5)
    queued, queued_out = _in_thread(machine.refresh)
    time.sleep(0.1)

    machine.dispose()
    queued.join(timeout=5)
    assert queued_out[0].kind is ErrorKind.CANCELLED

    release.set()
    leader.join(timeout=5)
    assert provider.calls["refresh"] == 0


def test_operations_after_dispose_are_cancelled(clock: ManualClock) -> None:
    machine, provider = _authenticated(clock)
    machine.dispose()
    machine.dispose()  # idempotent

    assert machine.disposed
    assert machine.login().kind is ErrorKind.CANCELLED
    assert machine.refresh().kind is ErrorKind.CANCELLED
    assert machine.logout().kind is ErrorKind.CANCELLED
    assert machine.get_access_token().kind is ErrorKind.CANCELLED
    assert machine.get_identity() is None
    # durable token material outlives the machine
    assert machine.cache.get(SID) is not None
