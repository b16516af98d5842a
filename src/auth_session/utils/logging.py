"""Logging helpers shared across the package."""

from __future__ import annotations


def mask_sensitive(value: str | None, keep_chars: int = 4) -> str:
    """Keep the first *keep_chars* characters of *value* and mask the rest.

    >>> mask_sensitive("abcdefgh", 2)
    'ab******'
    """
    if not value:
        return ""
    if len(value) <= keep_chars:
        return "*" * len(value)
    return value[:keep_chars] + "*" * (len(value) - keep_chars)
