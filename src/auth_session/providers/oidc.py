"""Generic OpenID Connect adapter (authorization-code flow with PKCE).

Flow
----
1. ``initiate_login`` prunes expired transactions, stores an :class:`~auth_session.core.models.AuthTxnRecord`
   (PKCE verifier, nonce, redirect URI) in the :class:`AuthStore` and returns
   the authorize URL carrying an HMAC-signed ``state``.
2. ``complete_callback`` validates ``state``, consumes the transaction (single
   use, so a replayed code is never exchanged) and posts the code to the token
   endpoint.
3. ``refresh`` uses the refresh-token grant; ``invalid_grant`` means the
   refresh token is gone and is reported as ``REFRESH_UNAVAILABLE``.
4. ``logout`` optionally revokes the token (RFC 7009) and returns the
   end-session navigation.
5. ``fetch_identity`` reads the userinfo endpoint, or the ID token claims when
   there is none.

ID-token signatures are **not** verified here and no discovery document is
fetched; endpoints are configured explicitly.

Secrets (codes, verifiers, tokens, client secret) are never logged.
"""

from __future__ import annotations

import base64
import json
import logging
import secrets
import uuid
from dataclasses import dataclass, field
from typing import Any, Final, Mapping
from urllib.parse import urlencode

import requests

from auth_session.core.clock import Clock, default_clock
from auth_session.core.errors import AuthError, ErrorKind
from auth_session.core.models import (
    AuthTxnRecord,
    CallbackContext,
    Identity,
    LoginParams,
    NavigationRequest,
    TokenRecord,
)
from auth_session.core.pkce import new_pkce_pair
from auth_session.core.state import InvalidStateError, build_state, parse_state
from auth_session.core.store import AuthStore, MemoryAuthStore
from auth_session.utils.environment import env_float, env_int, env_str
from auth_session.utils.logging import mask_sensitive

_LOG = logging.getLogger("auth-session.providers.oidc")

_STATE_SECRET_ENV: Final[str] = "AUTH_SESSION_STATE_SECRET"
_DEFAULT_EXPIRES_IN: Final[int] = 3600


@dataclass(frozen=True)
class OIDCConfig:
    """Endpoints and client registration for one OIDC relying party."""

    client_id: str
    authorize_url: str
    token_url: str
    redirect_uri: str
    client_secret: str | None = None
    scope: str = "openid profile email"
    userinfo_url: str | None = None
    end_session_url: str | None = None
    revocation_url: str | None = None
    post_logout_redirect_uri: str | None = None
    post_logout_redirect_param: str = "post_logout_redirect_uri"
    send_id_token_hint: bool = True
    extra_authorize_params: Mapping[str, str] = field(default_factory=dict)
    state_secret: str | None = None
    txn_ttl_seconds: int = 900
    timeout: tuple[float, float] = (5, 20)
    name: str = "oidc"

    @classmethod
    def from_env(cls, prefix: str = "OIDC") -> "OIDCConfig":
        """Build from ``{prefix}_*`` variables; raises ``ValueError`` if incomplete."""
        required = {
            key: env_str(f"{prefix}_{key}")
            for key in ("CLIENT_ID", "AUTHORIZE_URL", "TOKEN_URL", "REDIRECT_URI")
        }
        missing = [f"{prefix}_{k}" for k, v in required.items() if not v]
        if missing:
            raise ValueError(f"missing OIDC configuration: {', '.join(missing)}")
        connect = env_float(f"{prefix}_HTTP_TIMEOUT", 5.0)
        return cls(
            client_id=required["CLIENT_ID"] or "",
            authorize_url=required["AUTHORIZE_URL"] or "",
            token_url=required["TOKEN_URL"] or "",
            redirect_uri=required["REDIRECT_URI"] or "",
            client_secret=env_str(f"{prefix}_CLIENT_SECRET"),
            scope=env_str(f"{prefix}_SCOPE") or "openid profile email",
            userinfo_url=env_str(f"{prefix}_USERINFO_URL"),
            end_session_url=env_str(f"{prefix}_END_SESSION_URL"),
            revocation_url=env_str(f"{prefix}_REVOCATION_URL"),
            post_logout_redirect_uri=env_str(f"{prefix}_POST_LOGOUT_REDIRECT_URI"),
            state_secret=env_str(_STATE_SECRET_ENV),
            txn_ttl_seconds=env_int("AUTH_SESSION_CALLBACK_TTL", 900),
            timeout=(connect, connect * 4),
        )


def _b64url_decode(segment: str) -> bytes:
    return base64.urlsafe_b64decode(segment + "=" * ((-len(segment)) % 4))


def unverified_claims(id_token: str) -> dict[str, Any]:
    """Decode the payload of a JWT **without** checking its signature."""
    parts = id_token.split(".")
    if len(parts) != 3:
        raise ValueError("id_token is not a compact JWT")
    try:
        claims = json.loads(_b64url_decode(parts[1]))
    except ValueError as exc:
        raise ValueError("id_token payload cannot be decoded") from exc
    if not isinstance(claims, dict):
        raise ValueError("id_token payload is not an object")
    return claims


def _error_code(resp: Any) -> str:
    try:
        body = resp.json()
    except ValueError:
        return ""
    return str(body.get("error", "")) if isinstance(body, dict) else ""


class OIDCAdapter:
    """:class:`~auth_session.providers.base.ProviderAdapter` for OIDC issuers."""

    def __init__(
        self,
        config: OIDCConfig,
        store: AuthStore | None = None,
        *,
        clock: Clock = default_clock,
    ) -> None:
        self.config = config
        self.name = config.name
        self.clock = clock
        self.store: AuthStore = store if store is not None else MemoryAuthStore(clock=clock)
        state_secret = config.state_secret
        if not state_secret:
            state_secret = uuid.uuid4().hex
            _LOG.warning(
                "Environment variable %s not set – generated transient secret. "
                "Pending logins will not survive a process restart.",
                _STATE_SECRET_ENV,
            )
        self._state_secret: str = state_secret

    # ------------------------------------------------------------------ #
    # ProviderAdapter                                                    #
    # ------------------------------------------------------------------ #
    def initiate_login(self, params: LoginParams) -> NavigationRequest:
        cfg = self.config
        removed = self.store.cleanup_expired_txns()
        if removed:
            _LOG.debug("Removed %d abandoned login transaction(s)", removed)
        pkce = new_pkce_pair()
        txn = AuthTxnRecord(
            auth_txn_id=uuid.uuid4().hex,
            client_id=cfg.client_id,
            redirect_uri=params.redirect_uri or cfg.redirect_uri,
            code_verifier=pkce.verifier,
            code_challenge=pkce.challenge,
            scope=params.scope or cfg.scope,
            nonce=secrets.token_urlsafe(16),
            created_at=int(self.clock()),
            ttl_seconds=cfg.txn_ttl_seconds,
        )
        self.store.create_auth_txn(txn)
        state = build_state(txn.auth_txn_id, self._state_secret, clock=self.clock)

        query: dict[str, str] = {
            "client_id": cfg.client_id,
            "response_type": "code",
            "redirect_uri": txn.redirect_uri,
            "scope": txn.scope,
            "state": state,
            "nonce": txn.nonce or "",
            "code_challenge": pkce.challenge,
            "code_challenge_method": pkce.method,
        }
        query.update(cfg.extra_authorize_params)
        if params.prompt:
            query["prompt"] = params.prompt
        if params.login_hint:
            query["login_hint"] = params.login_hint
        query.update(params.extra)

        _LOG.debug(
            "Built authorize URL for txn=%s**** state=%s",
            txn.auth_txn_id[:6],
            mask_sensitive(state, 6),
        )
        return NavigationRequest(url=f"{cfg.authorize_url}?{urlencode(query)}")

    def complete_callback(self, context: CallbackContext) -> TokenRecord:
        if not context.code or not context.state:
            raise AuthError(ErrorKind.CALLBACK_INVALID, "callback is missing code or state")
        try:
            auth_txn_id, _ = parse_state(
                context.state,
                self._state_secret,
                max_age=self.config.txn_ttl_seconds,
                clock=self.clock,
            )
        except InvalidStateError as exc:
            raise AuthError(ErrorKind.CALLBACK_INVALID, str(exc), cause=exc) from exc

        txn = self.store.consume_auth_txn(auth_txn_id)
        if txn is None:
            raise AuthError(ErrorKind.CALLBACK_INVALID, "unknown or already used login transaction")
        if txn.is_expired(clock=self.clock):
            raise AuthError(ErrorKind.CALLBACK_INVALID, "login transaction expired")

        payload = {
            "grant_type": "authorization_code",
            "client_id": txn.client_id,
            "code": context.code,
            "redirect_uri": txn.redirect_uri,
            "code_verifier": txn.code_verifier,
        }
        data = self._token_request(payload, ErrorKind.EXCHANGE_FAILED)
        record = self._record_from(data)

        if record.id_token and txn.nonce:
            try:
                nonce = unverified_claims(record.id_token).get("nonce")
            except ValueError as exc:
                raise AuthError(ErrorKind.EXCHANGE_FAILED, str(exc), cause=exc) from exc
            if nonce is not None and nonce != txn.nonce:
                raise AuthError(ErrorKind.EXCHANGE_FAILED, "id_token nonce mismatch")

        _LOG.info("Exchanged authorization code for txn=%s**** (expires in %ss)", auth_txn_id[:6], record.ttl)
        return record

    def refresh(self, record: TokenRecord) -> TokenRecord:
        if not record.refresh_token:
            raise AuthError(ErrorKind.REFRESH_UNAVAILABLE, "no refresh token available")
        payload = {
            "grant_type": "refresh_token",
            "client_id": self.config.client_id,
            "refresh_token": record.refresh_token,
        }
        data = self._token_request(payload, ErrorKind.REFRESH_FAILED)
        return self._record_from(data, previous=record)

    def logout(self, record: TokenRecord) -> NavigationRequest | None:
        cfg = self.config
        if cfg.revocation_url:
            token, hint = (
                (record.refresh_token, "refresh_token")
                if record.refresh_token
                else (record.access_token, "access_token")
            )
            payload = self._with_secret(
                {"token": token, "token_type_hint": hint, "client_id": cfg.client_id}
            )
            try:
                resp = requests.post(cfg.revocation_url, data=payload, timeout=cfg.timeout)
            except requests.RequestException as exc:
                raise AuthError(
                    ErrorKind.LOGOUT_REMOTE_FAILED,
                    f"revocation request failed: {type(exc).__name__}",
                    cause=exc,
                ) from exc
            if not resp.ok:
                raise AuthError(
                    ErrorKind.LOGOUT_REMOTE_FAILED,
                    f"revocation endpoint returned {resp.status_code}",
                )
        return self._logout_navigation(record)

    def fetch_identity(self, record: TokenRecord) -> Identity:
        cfg = self.config
        if cfg.userinfo_url:
            try:
                resp = requests.get(
                    cfg.userinfo_url,
                    headers={"Authorization": f"Bearer {record.access_token}"},
                    timeout=cfg.timeout,
                )
            except requests.RequestException as exc:
                raise AuthError(
                    ErrorKind.IDENTITY_FETCH_FAILED,
                    f"userinfo request failed: {type(exc).__name__}",
                    cause=exc,
                ) from exc
            if not resp.ok:
                raise AuthError(
                    ErrorKind.IDENTITY_FETCH_FAILED,
                    f"userinfo endpoint returned {resp.status_code}",
                )
            try:
                claims = resp.json()
            except ValueError as exc:
                raise AuthError(ErrorKind.IDENTITY_FETCH_FAILED, "userinfo is not JSON", cause=exc) from exc
        elif record.id_token:
            try:
                claims = unverified_claims(record.id_token)
            except ValueError as exc:
                raise AuthError(ErrorKind.IDENTITY_FETCH_FAILED, str(exc), cause=exc) from exc
        else:
            raise AuthError(ErrorKind.IDENTITY_FETCH_FAILED, "no userinfo endpoint and no id_token")

        if not isinstance(claims, dict) or not claims.get("sub"):
            raise AuthError(ErrorKind.IDENTITY_FETCH_FAILED, "identity has no subject")
        return Identity(subject=str(claims["sub"]), claims=claims, expires_at=record.expires_at)

    # ------------------------------------------------------------------ #
    # helpers                                                            #
    # ------------------------------------------------------------------ #
    def _with_secret(self, payload: dict[str, str]) -> dict[str, str]:
        if self.config.client_secret:
            payload["client_secret"] = self.config.client_secret  # noqa: S105
        return payload

    def _token_request(self, payload: dict[str, str], kind: ErrorKind) -> dict[str, Any]:
        try:
            resp = requests.post(
                self.config.token_url,
                data=self._with_secret(payload),
                timeout=self.config.timeout,
            )
        except requests.RequestException as exc:
            raise AuthError(kind, f"token request failed: {type(exc).__name__}", cause=exc) from exc

        if not resp.ok:
            code = _error_code(resp)
            if kind is ErrorKind.REFRESH_FAILED and code == "invalid_grant":
                kind = ErrorKind.REFRESH_UNAVAILABLE
            raise AuthError(kind, f"token endpoint returned {resp.status_code} {code}".rstrip())

        try:
            data = resp.json()
        except ValueError as exc:
            raise AuthError(kind, "token endpoint returned invalid JSON", cause=exc) from exc
        if not isinstance(data, dict) or not data.get("access_token"):
            raise AuthError(kind, "token response missing access_token")
        return data

    def _record_from(self, data: Mapping[str, Any], previous: TokenRecord | None = None) -> TokenRecord:
        issued_at = int(self.clock())
        expires_in = int(data.get("expires_in") or _DEFAULT_EXPIRES_IN)
        # providers may omit tokens they did not rotate
        return TokenRecord(
            access_token=str(data["access_token"]),
            refresh_token=data.get("refresh_token") or (previous.refresh_token if previous else None),
            id_token=data.get("id_token") or (previous.id_token if previous else None),
            issued_at=issued_at,
            expires_at=issued_at + expires_in,
        )

    def _logout_navigation(self, record: TokenRecord) -> NavigationRequest | None:
        cfg = self.config
        if not cfg.end_session_url:
            return None
        query: dict[str, str] = {"client_id": cfg.client_id}
        if cfg.post_logout_redirect_uri:
            query[cfg.post_logout_redirect_param] = cfg.post_logout_redirect_uri
        if cfg.send_id_token_hint and record.id_token:
            query["id_token_hint"] = record.id_token
        return NavigationRequest(url=f"{cfg.end_session_url}?{urlencode(query)}", reason="logout")
