"""Pluggable persistence for token material and pending login transactions.

:class:`AuthStore` is the narrow storage contract; the session core depends on
nothing else. Two implementations ship with the package:

* :class:`MemoryAuthStore` – process-local dictionaries behind a lock.
* :class:`DiskAuthStore` – JSON files, for desktop/CLI hosts that want the
  login to survive a restart.

Neither backend enforces token expiry; callers decide with
:meth:`~auth_session.core.cache.TokenCache.is_expired`.

Disk layout (below ``base_dir``)::

    tokens/<sha256(session_id)[:16]>.json
    txns/<auth_txn_id>.json
    txns/consumed/<auth_txn_id>.json

Writes are *temp-file + os.replace*; token updates take an advisory
``O_EXCL`` lock file; externally supplied identifiers are hashed or slugified
before they reach the filesystem.

Environment variables
---------------------
AUTH_SESSION_STORAGE_DIR
    Base directory for :class:`DiskAuthStore`. Defaults to ``~/.auth-session``.
"""

from __future__ import annotations

import json
import logging
import os
import re
import threading
import time
from contextlib import contextmanager
from dataclasses import asdict
from hashlib import sha256
from pathlib import Path
from typing import Iterator, Protocol, runtime_checkable

from auth_session.core.clock import Clock, default_clock
from auth_session.core.models import AuthTxnRecord, TokenRecord

_LOG = logging.getLogger("auth-session.core.store")

# --------------------------------------------------------------------------- #
# helpers                                                                     #
# --------------------------------------------------------------------------- #


def _hash(text: str, length: int = 16) -> str:
    return sha256(text.encode()).hexdigest()[:length]


def _slug(text: str, max_len: int = 80) -> str:
    """Filesystem-safe slug."""
    text = (text or "").strip().lower()
    text = re.sub(r"[^a-z0-9._-]+", "-", text)
    text = re.sub(r"-{2,}", "-", text).strip("-")
    return text[:max_len] or "unknown"


def _atomic_write(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with tmp.open("w", encoding="utf-8") as fh:
        json.dump(data, fh, separators=(",", ":"), sort_keys=True)
    os.replace(tmp, path)  # atomic on POSIX


@contextmanager
def _file_lock(lock_path: Path, retries: int = 25, delay: float = 0.02) -> Iterator[None]:
    """Advisory file lock using ``os.O_EXCL`` creation."""
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    for attempt in range(retries + 1):
        try:
            fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_RDWR)
            os.close(fd)
            break
        except FileExistsError:
            if attempt == retries:
                raise TimeoutError(f"Could not acquire lock {lock_path}") from None
            time.sleep(delay)
    try:
        yield
    finally:
        lock_path.unlink(missing_ok=True)


# --------------------------------------------------------------------------- #
# public interface                                                            #
# --------------------------------------------------------------------------- #


@runtime_checkable
class AuthStore(Protocol):
    """Persistence contract used by the TokenCache and redirect adapters."""

    # ----- token storage --------------------------------------------------- #
    def save_tokens(self, session_id: str, token_record: TokenRecord) -> None: ...
    def load_tokens(self, session_id: str) -> TokenRecord | None: ...
    def delete_tokens(self, session_id: str) -> None: ...

    # ----- pending login transactions ------------------------------------- #
    def create_auth_txn(self, record: AuthTxnRecord) -> None: ...
    def get_auth_txn(self, auth_txn_id: str) -> AuthTxnRecord | None: ...
    def consume_auth_txn(self, auth_txn_id: str) -> AuthTxnRecord | None: ...

    # ----- maintenance ----------------------------------------------------- #
    def cleanup_expired_txns(self) -> int: ...


# --------------------------------------------------------------------------- #
# Memory implementation                                                       #
# --------------------------------------------------------------------------- #


class MemoryAuthStore(AuthStore):
    """Dictionary-backed :class:`AuthStore`; nothing survives the process."""

    def __init__(self, *, clock: Clock = default_clock) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._tokens: dict[str, TokenRecord] = {}
        self._txns: dict[str, AuthTxnRecord] = {}

    def save_tokens(self, session_id: str, token_record: TokenRecord) -> None:
        with self._lock:
            self._tokens[session_id] = token_record

    def load_tokens(self, session_id: str) -> TokenRecord | None:
        with self._lock:
            return self._tokens.get(session_id)

    def delete_tokens(self, session_id: str) -> None:
        with self._lock:
            self._tokens.pop(session_id, None)

    def create_auth_txn(self, record: AuthTxnRecord) -> None:
        with self._lock:
            self._txns[record.auth_txn_id] = record

    def get_auth_txn(self, auth_txn_id: str) -> AuthTxnRecord | None:
        with self._lock:
            return self._txns.get(auth_txn_id)

    def consume_auth_txn(self, auth_txn_id: str) -> AuthTxnRecord | None:
        """Return the txn and forget it; a second consumer gets ``None``."""
        with self._lock:
            return self._txns.pop(auth_txn_id, None)

    def cleanup_expired_txns(self) -> int:
        with self._lock:
            stale = [k for k, v in self._txns.items() if v.is_expired(clock=self._clock)]
            for k in stale:
                del self._txns[k]
        return len(stale)


# --------------------------------------------------------------------------- #
# Disk implementation                                                         #
# --------------------------------------------------------------------------- #


class DiskAuthStore(AuthStore):
    """JSON-file implementation of :class:`AuthStore`."""

    def __init__(
        self,
        base_dir: str | os.PathLike | None = None,
        *,
        clock: Clock = default_clock,
    ) -> None:
        self.base_dir = Path(
            base_dir
            or os.getenv("AUTH_SESSION_STORAGE_DIR")
            or Path.home() / ".auth-session"
        ).expanduser()
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self._clock = clock

    # ---------------- token storage -------------------------------------- #
    def _token_path(self, session_id: str) -> Path:
        return self.base_dir / "tokens" / f"{_hash(session_id)}.json"

    def _token_lock(self, session_id: str) -> Path:
        return self._token_path(session_id).with_suffix(".lock")

    def save_tokens(self, session_id: str, token_record: TokenRecord) -> None:
        with _file_lock(self._token_lock(session_id)):
            _atomic_write(self._token_path(session_id), asdict(token_record))

    def load_tokens(self, session_id: str) -> TokenRecord | None:
        path = self._token_path(session_id)
        try:
            with path.open(encoding="utf-8") as fh:
                data = json.load(fh)
        except FileNotFoundError:
            return None
        return TokenRecord(**data)

    def delete_tokens(self, session_id: str) -> None:
        with _file_lock(self._token_lock(session_id)):
            self._token_path(session_id).unlink(missing_ok=True)

    # ---------------- pending transactions ------------------------------- #
    def _txn_path(self, auth_txn_id: str) -> Path:
        return self.base_dir / "txns" / f"{_slug(auth_txn_id)}.json"

    def _txn_consumed_path(self, auth_txn_id: str) -> Path:
        return self.base_dir / "txns" / "consumed" / f"{_slug(auth_txn_id)}.json"

    def create_auth_txn(self, record: AuthTxnRecord) -> None:
        _atomic_write(self._txn_path(record.auth_txn_id), asdict(record))

    def get_auth_txn(self, auth_txn_id: str) -> AuthTxnRecord | None:
        p = self._txn_path(auth_txn_id)
        if not p.exists():
            return None
        with p.open(encoding="utf-8") as fh:
            return AuthTxnRecord(**json.load(fh))

    def consume_auth_txn(self, auth_txn_id: str) -> AuthTxnRecord | None:
        """Atomically move the txn aside; exactly one caller wins the rename."""
        src = self._txn_path(auth_txn_id)
        dst = self._txn_consumed_path(auth_txn_id)
        dst.parent.mkdir(parents=True, exist_ok=True)
        try:
            os.replace(src, dst)
        except FileNotFoundError:
            return None
        with dst.open(encoding="utf-8") as fh:
            data = json.load(fh)
        dst.unlink(missing_ok=True)
        return AuthTxnRecord(**data)

    # ---------------- maintenance ---------------------------------------- #
    def cleanup_expired_txns(self) -> int:
        txndir = self.base_dir / "txns"
        if not txndir.exists():
            return 0
        removed = 0
        now = self._clock()
        for p in txndir.glob("*.json"):
            try:
                with p.open(encoding="utf-8") as fh:
                    data = json.load(fh)
            except (OSError, ValueError):
                _LOG.warning("Skipping unreadable transaction file %s", p.name)
                continue
            ttl = int(data.get("ttl_seconds", 900))
            created = int(data.get("created_at", 0))
            if (now - created) > ttl:
                p.unlink(missing_ok=True)
                removed += 1
        return removed
