"""String helpers that treat None as an absent string."""

from __future__ import annotations


def str_len(s: str | None) -> int:
    """Length of s, or 0 when s is None."""
    if s is None:
        return 0
    return len(s)


def str_equal(s: str | None, t: str | None) -> bool:
    """True when both strings are present and equal."""
    if s is None or t is None:
        return False
    return s == t