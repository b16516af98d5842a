"""Tests for provider detection and ``build_adapter_from_env``."""

from __future__ import annotations

import pytest

from auth_session.providers import (
    MockProvider,
    OIDCAdapter,
    ProviderAdapter,
    build_adapter_from_env,
)
from auth_session.utils.environment import get_configured_providers

_ALL_KEYS = (
    "AUTH_SESSION_PROVIDER",
    "AUTH0_DOMAIN",
    "AUTH0_CLIENT_ID",
    "AUTH0_REDIRECT_URI",
    "OIDC_CLIENT_ID",
    "OIDC_AUTHORIZE_URL",
    "OIDC_TOKEN_URL",
    "OIDC_REDIRECT_URI",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in _ALL_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("AUTH_SESSION_STATE_SECRET", "s")


def _set_oidc(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OIDC_CLIENT_ID", "cid")
    monkeypatch.setenv("OIDC_AUTHORIZE_URL", "https://idp/authorize")
    monkeypatch.setenv("OIDC_TOKEN_URL", "https://idp/token")
    monkeypatch.setenv("OIDC_REDIRECT_URI", "http://127.0.0.1/cb")


def _set_auth0(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AUTH0_DOMAIN", "tenant.auth0.com")
    monkeypatch.setenv("AUTH0_CLIENT_ID", "cid")
    monkeypatch.setenv("AUTH0_REDIRECT_URI", "http://127.0.0.1/cb")


def test_nothing_configured() -> None:
    assert get_configured_providers() == {"auth0": False, "oidc": False}
    with pytest.raises(ValueError, match="no identity provider"):
        build_adapter_from_env()


def test_blank_values_count_as_missing(monkeypatch: pytest.MonkeyPatch) -> None:
    _set_oidc(monkeypatch)
    monkeypatch.setenv("OIDC_TOKEN_URL", "   ")
    assert get_configured_providers()["oidc"] is False


def test_mock_requested_explicitly(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AUTH_SESSION_PROVIDER", "mock")
    adapter = build_adapter_from_env()
    assert isinstance(adapter, MockProvider)
    assert isinstance(adapter, ProviderAdapter)


def test_oidc_detected(monkeypatch: pytest.MonkeyPatch) -> None:
    _set_oidc(monkeypatch)
    adapter = build_adapter_from_env()
    assert isinstance(adapter, OIDCAdapter)
    assert adapter.name == "oidc"


def test_auth0_preferred_when_both_configured(monkeypatch: pytest.MonkeyPatch) -> None:
    _set_oidc(monkeypatch)
    _set_auth0(monkeypatch)
    assert build_adapter_from_env().name == "auth0"

    monkeypatch.setenv("AUTH_SESSION_PROVIDER", "OIDC")
    assert build_adapter_from_env().name == "oidc"


def test_requested_variant_must_be_configured(monkeypatch: pytest.MonkeyPatch) -> None:
    _set_oidc(monkeypatch)
    monkeypatch.setenv("AUTH_SESSION_PROVIDER", "auth0")
    with pytest.raises(ValueError, match="not fully configured"):
        build_adapter_from_env()

    monkeypatch.setenv("AUTH_SESSION_PROVIDER", "saml")
    with pytest.raises(ValueError, match="unknown provider"):
        build_adapter_from_env()
