"""auth_session – authentication session orchestration.

One :class:`AuthSessionManager` per session drives a pluggable identity
provider adapter through login, callback handling, silent refresh and logout,
keeps token material in a :class:`TokenCache`, and reports every outcome as an
:class:`AuthResult` instead of raising.

>>> from auth_session import AuthSessionManager, MemoryEnvironment
>>> from auth_session.providers import MockProvider
>>> manager = AuthSessionManager(MockProvider(), environment=MemoryEnvironment())
>>> manager.login().ok
True
"""

from __future__ import annotations

from .config import SessionSettings
from .core import (
    AuthError,
    AuthResult,
    CallbackContext,
    Clock,
    Environment,
    ErrorKind,
    Identity,
    LoginParams,
    ManualClock,
    MemoryEnvironment,
    NavigationRequest,
    Session,
    SessionState,
    SessionStateMachine,
    TokenCache,
    TokenRecord,
    default_clock,
)
from .manager import AuthSessionManager

__version__ = "0.1.0"

__all__ = [
    "AuthSessionManager",
    "SessionSettings",
    "SessionStateMachine",
    "TokenCache",
    "AuthError",
    "AuthResult",
    "ErrorKind",
    "CallbackContext",
    "Identity",
    "LoginParams",
    "NavigationRequest",
    "Session",
    "SessionState",
    "TokenRecord",
    "Environment",
    "MemoryEnvironment",
    "Clock",
    "ManualClock",
    "default_clock",
]
