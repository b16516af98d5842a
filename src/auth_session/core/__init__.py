"""Session core package.

Reusable, **HTTP-agnostic** building blocks for one authentication session.
Nothing in here performs navigation or network I/O; provider adapters and the
hosting environment do that.

Sub-modules
-----------
clock
    Test-friendly time abstraction.
errors
    ``ErrorKind``, ``AuthError`` and the ``AuthResult`` envelope.
models
    Immutable dataclasses for tokens, identities, sessions and callbacks.
pkce
    Proof-Key for Code Exchange helpers.
state
    Signed ``state`` parameter encoding / validation.
store
    ``AuthStore`` contract with memory and disk backends.
cache
    ``TokenCache`` keyed by session id.
environment
    Boundary to the hosting environment (location, navigation).
machine
    ``SessionStateMachine`` serialising every mutating operation.
log_utils
    Structured logging helpers (thin wrapper around :pymod:`logging`).

All public objects are re-exported here for convenience.
"""

from __future__ import annotations

from .clock import Clock, ManualClock, default_clock  # noqa: F401
from .errors import AuthError, AuthResult, ErrorKind  # noqa: F401
from .models import (  # noqa: F401
    AuthTxnRecord,
    CallbackContext,
    Identity,
    LoginParams,
    NavigationRequest,
    Session,
    SessionState,
    TokenRecord,
)
from .pkce import code_challenge_s256, generate_code_verifier, new_pkce_pair  # noqa: F401
from .state import InvalidStateError, build_state, parse_state  # noqa: F401
from .store import AuthStore, DiskAuthStore, MemoryAuthStore  # noqa: F401
from .cache import TokenCache  # noqa: F401
from .environment import Environment, MemoryEnvironment  # noqa: F401
from .machine import SessionStateMachine  # noqa: F401
from .log_utils import get_auth_logger  # noqa: F401

__all__ = [
    # clock
    "Clock",
    "ManualClock",
    "default_clock",
    # errors
    "AuthError",
    "AuthResult",
    "ErrorKind",
    # models
    "AuthTxnRecord",
    "CallbackContext",
    "Identity",
    "LoginParams",
    "NavigationRequest",
    "Session",
    "SessionState",
    "TokenRecord",
    # pkce
    "generate_code_verifier",
    "code_challenge_s256",
    "new_pkce_pair",
    # state
    "build_state",
    "parse_state",
    "InvalidStateError",
    # storage
    "AuthStore",
    "DiskAuthStore",
    "MemoryAuthStore",
    "TokenCache",
    # environment
    "Environment",
    "MemoryEnvironment",
    # machine
    "SessionStateMachine",
    # logging helpers
    "get_auth_logger",
]
