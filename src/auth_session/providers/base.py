"""Capability contract every identity backend implements.

Adapters are plain objects satisfying :class:`ProviderAdapter`; nothing has
to inherit from a base class. They report failure by raising – preferably an
:class:`~auth_session.core.errors.AuthError` with a precise kind such as
``REFRESH_UNAVAILABLE`` – and the session state machine turns whatever they
raise into an :class:`~auth_session.core.errors.AuthResult`.
"""

from __future__ import annotations

from typing import Protocol, Union, runtime_checkable

from auth_session.core.models import (
    CallbackContext,
    Identity,
    LoginParams,
    NavigationRequest,
    TokenRecord,
)

#: What ``initiate_login`` hands back: a redirect for the environment to
#: follow, or finished token material for popup / in-process flows.
LoginOutcome = Union[NavigationRequest, TokenRecord]


@runtime_checkable
class ProviderAdapter(Protocol):
    name: str

    def initiate_login(self, params: LoginParams) -> LoginOutcome:
        """Start a login. Redirect flows return the navigation to perform."""
        ...

    def complete_callback(self, context: CallbackContext) -> TokenRecord:
        """Exchange the callback's code. Must never exchange the same code twice."""
        ...

    def refresh(self, record: TokenRecord) -> TokenRecord:
        """Silently renew *record*; raise ``REFRESH_UNAVAILABLE`` when impossible."""
        ...

    def logout(self, record: TokenRecord) -> NavigationRequest | None:
        """Best-effort remote invalidation; may ask for a logout navigation."""
        ...

    def fetch_identity(self, record: TokenRecord) -> Identity:
        ...
