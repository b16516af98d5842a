"""Signed ``state`` parameter for redirect-based logins.

The ``state`` value round-trips through the identity provider and comes back
on the callback. It ties the callback to the transaction that started it and
is also the key under which the session core de-duplicates callbacks.

Layout before base64url encoding::

    <auth_txn_id>:<ts>:<sig>

``sig`` is a truncated HMAC-SHA256 of ``<auth_txn_id>:<ts>``. The encoded
value contains no ``?``, ``&`` or ``/`` so it cannot smuggle extra query
parameters into the callback URL.

Only the truncated transaction id is ever logged.
"""

from __future__ import annotations

import base64
import binascii
import hmac
import logging
from hashlib import sha256
from typing import Final

from auth_session.core.clock import Clock, default_clock

_LOG = logging.getLogger("auth-session.core.state")

_SIG_LEN: Final[int] = 16


class InvalidStateError(Exception):
    """The callback ``state`` is malformed, forged or too old."""


def _b64e(data: str) -> str:
    return base64.urlsafe_b64encode(data.encode("utf-8")).rstrip(b"=").decode("ascii")


def _b64d(data: str) -> str:
    pad_len = (-len(data)) % 4
    return base64.urlsafe_b64decode(data + "=" * pad_len).decode("utf-8")


def _sign(message: str, secret: str) -> str:
    digest = hmac.new(secret.encode(), msg=message.encode(), digestmod=sha256).hexdigest()
    return digest[:_SIG_LEN]


def build_state(auth_txn_id: str, secret: str, *, clock: Clock = default_clock) -> str:
    """Return the URL-safe state value for *auth_txn_id*.

    Parameters
    ----------
    auth_txn_id:
        Identifier of the pending transaction (must not contain ``:``).
    secret:
        HMAC key shared by :func:`build_state` and :func:`parse_state`.
    clock:
        Time source for the embedded timestamp.
    """
    if not auth_txn_id or ":" in auth_txn_id:
        raise ValueError("auth_txn_id must be non-empty and free of ':'")
    payload = f"{auth_txn_id}:{int(clock())}"
    encoded = _b64e(f"{payload}:{_sign(payload, secret)}")
    _LOG.debug("Built state for auth_txn_id=%s****", auth_txn_id[:6])
    return encoded


def parse_state(
    state: str,
    secret: str,
    *,
    max_age: int | None = None,
    clock: Clock = default_clock,
) -> tuple[str, int]:
    """Validate *state* and return ``(auth_txn_id, ts)``.

    Raises
    ------
    InvalidStateError
        If the value cannot be decoded, the signature does not match, or it
        is older than *max_age* seconds.
    """
    try:
        decoded = _b64d(state)
    except (ValueError, binascii.Error):
        raise InvalidStateError("state cannot be decoded") from None

    parts = decoded.split(":")
    if len(parts) != 3:
        raise InvalidStateError("state has an unexpected format")
    auth_txn_id, ts_str, sig = parts
    if not auth_txn_id or not ts_str.isdigit():
        raise InvalidStateError("state missing fields")
    expected = _sign(f"{auth_txn_id}:{ts_str}", secret)
    if not hmac.compare_digest(sig.encode(), expected.encode()):
        raise InvalidStateError("state signature mismatch")

    ts = int(ts_str)
    if max_age is not None and clock() - ts > max_age:
        raise InvalidStateError("state expired")

    _LOG.debug("Parsed state for auth_txn_id=%s****", auth_txn_id[:6])
    return auth_txn_id, ts
