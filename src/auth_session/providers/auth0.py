"""Auth0 tenants, expressed as an OIDC configuration.

Auth0 speaks standard OIDC for login, token exchange and refresh; the
differences are its endpoint paths, the ``audience`` authorize parameter and
its ``/v2/logout`` endpoint taking ``returnTo`` instead of
``post_logout_redirect_uri``. Refresh tokens are only issued when the
``offline_access`` scope is requested, hence the default scope.
"""

from __future__ import annotations

from dataclasses import dataclass

from auth_session.core.clock import Clock, default_clock
from auth_session.core.store import AuthStore
from auth_session.providers.oidc import OIDCAdapter, OIDCConfig
from auth_session.utils.environment import env_str

_DEFAULT_SCOPE = "openid profile email offline_access"


@dataclass(frozen=True)
class Auth0Config:
    domain: str
    client_id: str
    redirect_uri: str
    client_secret: str | None = None
    audience: str | None = None
    scope: str = _DEFAULT_SCOPE
    logout_redirect_uri: str | None = None
    state_secret: str | None = None

    @classmethod
    def from_env(cls) -> "Auth0Config":
        domain = env_str("AUTH0_DOMAIN")
        client_id = env_str("AUTH0_CLIENT_ID")
        redirect_uri = env_str("AUTH0_REDIRECT_URI")
        if not (domain and client_id and redirect_uri):
            raise ValueError("AUTH0_DOMAIN, AUTH0_CLIENT_ID and AUTH0_REDIRECT_URI are required")
        return cls(
            domain=domain,
            client_id=client_id,
            redirect_uri=redirect_uri,
            client_secret=env_str("AUTH0_CLIENT_SECRET"),
            audience=env_str("AUTH0_AUDIENCE"),
            scope=env_str("AUTH0_SCOPE") or _DEFAULT_SCOPE,
            logout_redirect_uri=env_str("AUTH0_LOGOUT_REDIRECT_URI"),
            state_secret=env_str("AUTH_SESSION_STATE_SECRET"),
        )

    @property
    def base_url(self) -> str:
        domain = self.domain.strip().rstrip("/")
        if "://" not in domain:
            domain = f"https://{domain}"
        return domain

    def to_oidc_config(self) -> OIDCConfig:
        base = self.base_url
        return OIDCConfig(
            client_id=self.client_id,
            client_secret=self.client_secret,
            redirect_uri=self.redirect_uri,
            authorize_url=f"{base}/authorize",
            token_url=f"{base}/oauth/token",
            userinfo_url=f"{base}/userinfo",
            revocation_url=f"{base}/oauth/revoke",
            end_session_url=f"{base}/v2/logout",
            post_logout_redirect_uri=self.logout_redirect_uri,
            post_logout_redirect_param="returnTo",
            send_id_token_hint=False,
            scope=self.scope,
            extra_authorize_params={"audience": self.audience} if self.audience else {},
            state_secret=self.state_secret,
            name="auth0",
        )


def build_auth0_adapter(
    config: Auth0Config,
    store: AuthStore | None = None,
    *,
    clock: Clock = default_clock,
) -> OIDCAdapter:
    """Return an :class:`OIDCAdapter` wired to the Auth0 tenant in *config*."""
    return OIDCAdapter(config.to_oidc_config(), store, clock=clock)
