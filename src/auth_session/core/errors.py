"""Error kinds, the data-carrying ``AuthError`` and the ``AuthResult`` envelope.

Every fallible public operation of the session core returns an
:class:`AuthResult` instead of raising, so that callers (web handlers, CLIs,
desktop shells) decide themselves whether to retry, re-login or just report.
``AuthError`` stays an exception type because provider adapters signal
failures by raising it, and because :meth:`AuthResult.unwrap` re-raises it for
callers that prefer exceptions.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class ErrorKind(str, enum.Enum):
    """Closed set of failure categories reported by the session core."""

    INITIATION_FAILED = "initiation_failed"
    CALLBACK_INVALID = "callback_invalid"
    DUPLICATE_CALLBACK = "duplicate_callback"
    EXCHANGE_FAILED = "exchange_failed"
    REFRESH_UNAVAILABLE = "refresh_unavailable"
    REFRESH_FAILED = "refresh_failed"
    LOGOUT_REMOTE_FAILED = "logout_remote_failed"
    IDENTITY_FETCH_FAILED = "identity_fetch_failed"
    OPERATION_IN_PROGRESS = "operation_in_progress"
    CANCELLED = "cancelled"
    NOT_AUTHENTICATED = "not_authenticated"
    STORAGE_FAILED = "storage_failed"


class AuthError(RuntimeError):
    """Failure of a session operation, tagged with its :class:`ErrorKind`."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str | None = None,
        *,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message or kind.value.replace("_", " "))
        self.kind: ErrorKind = kind
        if cause is not None:
            self.__cause__ = cause

    def to_payload(self) -> dict[str, str]:
        """Return a JSON-serialisable payload **without secrets**."""
        return {"error": self.kind.value, "message": str(self)}

    def __repr__(self) -> str:
        return f"AuthError({self.kind.name}, {str(self)!r})"


@dataclass(frozen=True, slots=True)
class AuthResult(Generic[T]):
    """Discriminated outcome: either ``value`` or ``error`` is meaningful.

    ``warnings`` carries non-fatal problems (a failed remote logout) that did
    not prevent the operation from succeeding locally.
    """

    value: T | None = None
    error: AuthError | None = None
    warnings: tuple[AuthError, ...] = field(default_factory=tuple)

    @classmethod
    def success(
        cls, value: T | None = None, *, warnings: tuple[AuthError, ...] = ()
    ) -> "AuthResult[T]":
        return cls(value=value, warnings=tuple(warnings))

    @classmethod
    def failure(
        cls, kind_or_error: ErrorKind | AuthError, message: str | None = None
    ) -> "AuthResult[T]":
        if isinstance(kind_or_error, AuthError):
            return cls(error=kind_or_error)
        return cls(error=AuthError(kind_or_error, message))

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> ErrorKind | None:
        return self.error.kind if self.error is not None else None

    def unwrap(self) -> T | None:
        """Return ``value`` or raise the carried :class:`AuthError`."""
        if self.error is not None:
            raise self.error
        return self.value

    def to_payload(self) -> dict[str, Any]:
        if self.error is not None:
            return self.error.to_payload()
        payload: dict[str, Any] = {"ok": True}
        if self.warnings:
            payload["warnings"] = [w.to_payload() for w in self.warnings]
        return payload
