"""PKCE (Proof Key for Code Exchange, RFC 7636) for public redirect clients.

The adapter keeps the *code verifier* in its pending transaction and sends
only the derived S256 *code challenge* to the authorization endpoint; the
verifier is revealed to the token endpoint when the code is exchanged.

Verifiers and challenges are never logged.
"""

from __future__ import annotations

import base64
import secrets
from dataclasses import dataclass
from hashlib import sha256
from typing import Final

# RFC 7636 §4.1: 43..128 characters from the unreserved set.
_MIN_LEN: Final[int] = 43
_MAX_LEN: Final[int] = 128
_DEFAULT_LEN: Final[int] = 64
_UNRESERVED: Final[str] = (
    "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    "abcdefghijklmnopqrstuvwxyz"
    "0123456789"
    "-._~"
)


@dataclass(frozen=True, slots=True)
class PkcePair:
    verifier: str
    challenge: str
    method: str = "S256"

    def __repr__(self) -> str:
        return f"PkcePair(method={self.method!r})"


def generate_code_verifier(length: int = _DEFAULT_LEN) -> str:
    """Return a high-entropy verifier of *length* unreserved characters."""
    if not _MIN_LEN <= length <= _MAX_LEN:
        raise ValueError(f"code verifier length must be {_MIN_LEN}-{_MAX_LEN} characters")
    return "".join(secrets.choice(_UNRESERVED) for _ in range(length))


def code_challenge_s256(verifier: str) -> str:
    """BASE64URL(SHA256(verifier)) without padding."""
    digest = sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def new_pkce_pair(length: int = _DEFAULT_LEN) -> PkcePair:
    verifier = generate_code_verifier(length)
    return PkcePair(verifier=verifier, challenge=code_challenge_s256(verifier))
