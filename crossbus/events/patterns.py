"""
Subscription pattern matching.

A pattern is either an exact event name or a prefix terminated by the
wildcard marker, e.g. ``"graphicalContainer:*"``. A lone ``"*"`` matches
every name. The marker is only allowed in the last position.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Callable

WILDCARD = "*"

Matcher = Callable[[str], bool]


def validate_pattern(pattern: str) -> str:
    """Return ``pattern`` or raise ValueError if it is not supported."""
    if not isinstance(pattern, str) or not pattern:
        raise ValueError("pattern must be a non-empty string")
    if WILDCARD in pattern[:-1]:
        raise ValueError(f"wildcard is only supported as a suffix: {pattern!r}")
    return pattern


def is_wildcard(pattern: str) -> bool:
    return pattern.endswith(WILDCARD)


@lru_cache(maxsize=1024)
def compile_pattern(pattern: str) -> Matcher:
    """Build (and cache) a matcher for ``pattern``."""
    validate_pattern(pattern)
    if is_wildcard(pattern):
        prefix = pattern[:-1]
        return lambda name: name.startswith(prefix)
    return lambda name: name == pattern


def matches(pattern: str, name: str) -> bool:
    """Check whether event ``name`` matches ``pattern``."""
    return compile_pattern(pattern)(name)
