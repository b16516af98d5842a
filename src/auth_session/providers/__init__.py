"""Identity-provider adapters.

Variants
--------
mock
    :class:`MockProvider` – deterministic, network-free, scriptable.
oidc
    :class:`OIDCAdapter` – any OpenID Connect issuer (code flow + PKCE).
auth0
    :func:`build_auth0_adapter` – OIDC adapter pre-wired for an Auth0 tenant.
"""

from __future__ import annotations

from auth_session.core.clock import Clock, default_clock
from auth_session.core.store import AuthStore
from auth_session.utils.environment import env_str, get_configured_providers

from .auth0 import Auth0Config, build_auth0_adapter
from .base import LoginOutcome, ProviderAdapter
from .mock import MockProvider
from .oidc import OIDCAdapter, OIDCConfig

__all__ = [
    "ProviderAdapter",
    "LoginOutcome",
    "MockProvider",
    "OIDCAdapter",
    "OIDCConfig",
    "Auth0Config",
    "build_auth0_adapter",
    "build_adapter_from_env",
]


def build_adapter_from_env(
    store: AuthStore | None = None, *, clock: Clock = default_clock
) -> ProviderAdapter:
    """Construct the adapter selected by ``AUTH_SESSION_PROVIDER`` or detected config.

    Raises
    ------
    ValueError
        If the requested variant is unknown or not fully configured.
    """
    requested = (env_str("AUTH_SESSION_PROVIDER") or "").lower()
    if requested == "mock":
        return MockProvider(clock=clock)

    configured = get_configured_providers()
    if requested:
        if requested not in configured:
            raise ValueError(f"unknown provider {requested!r}")
        if not configured[requested]:
            raise ValueError(f"provider {requested!r} is not fully configured")
        variant = requested
    elif configured["auth0"]:
        variant = "auth0"
    elif configured["oidc"]:
        variant = "oidc"
    else:
        raise ValueError("no identity provider configured")

    if variant == "auth0":
        return build_auth0_adapter(Auth0Config.from_env(), store, clock=clock)
    return OIDCAdapter(OIDCConfig.from_env(), store, clock=clock)
