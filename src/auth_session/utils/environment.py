"""Environment-variable helpers and provider detection."""

import logging
import os
from typing import Final, Tuple

logger = logging.getLogger("auth-session.utils.environment")

_OIDC_REQUIRED: Final[Tuple[str, ...]] = (
    "OIDC_CLIENT_ID",
    "OIDC_AUTHORIZE_URL",
    "OIDC_TOKEN_URL",
    "OIDC_REDIRECT_URI",
)
_AUTH0_REQUIRED: Final[Tuple[str, ...]] = (
    "AUTH0_DOMAIN",
    "AUTH0_CLIENT_ID",
    "AUTH0_REDIRECT_URI",
)


def env_str(key: str, default: str | None = None) -> str | None:
    """Return the stripped value of *key*, treating blank as unset."""
    value = (os.getenv(key) or "").strip()
    return value or default


def env_float(key: str, default: float) -> float:
    raw = env_str(key)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r; using %s", key, raw, default)
        return default


def env_int(key: str, default: int) -> int:
    return int(env_float(key, float(default)))


def _all_present(keys: Tuple[str, ...]) -> bool:
    return all(env_str(k) for k in keys)


def get_configured_providers() -> dict[str, bool]:
    """Report which provider variants have a complete environment configuration.

    ``AUTH_SESSION_PROVIDER`` may name the variant explicitly; otherwise the
    caller picks the first configured one (Auth0 before generic OIDC, since an
    Auth0 tenant is also a valid OIDC issuer).
    """
    auth0_ok = _all_present(_AUTH0_REQUIRED)
    oidc_ok = _all_present(_OIDC_REQUIRED)

    if auth0_ok:
        logger.info("Using Auth0 configuration for domain %s", env_str("AUTH0_DOMAIN"))
    if oidc_ok:
        logger.info("Using generic OIDC configuration (%s)", env_str("OIDC_AUTHORIZE_URL"))
    if not (auth0_ok or oidc_ok):
        logger.info("No identity provider is configured or required environment variables are missing.")

    return {"auth0": auth0_ok, "oidc": oidc_ok}
