"""
Subscription pattern matching.

Patterns are dot-delimited like event types and may contain ``*`` segments:

    - "User.AccountCreated"  exact, case-sensitive match
    - "User.*"               trailing wildcard, one or more remaining segments
                             ("User.Created", "User.Profile.Updated")
    - "*.Ended"              inner wildcard, exactly one segment
    - "User.*.Service.*"     both kinds combined
    - "*"                    catch-all

Usage:
    from eventrelay.patterns import matches, normalize_pattern

    matches("User.Profile.Updated", "User.*")  # True
    matches("UserService.Started", "User.*")   # False
    normalize_pattern("  User..Event ")        # "User.Event"
"""

from __future__ import annotations

import re
from typing import Any

GLOBAL_WILDCARD = "*"

_INVALID_CHARS = re.compile(r"[/?\[\]{}@#]")
_CONSECUTIVE_DOTS = re.compile(r"\.{2,}")


def _is_non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and value != ""


def is_valid_pattern(pattern: Any) -> bool:
    """
    Check the syntax of a subscription pattern.

    A pattern is valid when it is a non-blank string without any of
    ``/ ? [ ] { } @ #``, without ``**``, and, if it starts with ``*``, is
    either exactly ``*`` or starts with ``*.``.

    Args:
        pattern: Pattern to check

    Returns:
        True if the pattern can be subscribed to
    """
    if not _is_non_empty_str(pattern):
        return False

    trimmed = pattern.strip()
    if not trimmed:
        return False

    if _INVALID_CHARS.search(trimmed):
        return False

    if "**" in trimmed:
        return False

    if (
        trimmed.startswith(GLOBAL_WILDCARD)
        and trimmed != GLOBAL_WILDCARD
        and not trimmed.startswith("*.")
    ):
        return False

    return True


def normalize_pattern(pattern: Any) -> str:
    """
    Trim surrounding whitespace and collapse repeated dots.

    Case is preserved. Non-string input normalizes to an empty string.
    """
    if not isinstance(pattern, str):
        return ""
    return _CONSECUTIVE_DOTS.sub(".", pattern.strip())


def is_exact_pattern(pattern: str) -> bool:
    """Return True if the pattern has no wildcard segment."""
    return GLOBAL_WILDCARD not in pattern


def matches(event_type: Any, pattern: Any) -> bool:
    """
    Check whether an event type matches a subscription pattern.

    Args:
        event_type: Event type, e.g. "Order.Payment.Completed"
        pattern: Subscription pattern (normalized before matching)

    Returns:
        True if the event type matches
    """
    if not _is_non_empty_str(event_type) or not _is_non_empty_str(pattern):
        return False

    if not is_valid_pattern(pattern):
        return False

    normalized = normalize_pattern(pattern)

    if normalized == GLOBAL_WILDCARD:
        return True

    if is_exact_pattern(normalized):
        return event_type == normalized

    return _match_segments(event_type.split("."), normalized.split("."))


def _match_segments(event_parts: list[str], pattern_parts: list[str]) -> bool:
    last = len(pattern_parts) - 1

    for index, part in enumerate(pattern_parts):
        # Every pattern segment, wildcard or literal, needs an event segment
        if index >= len(event_parts):
            return False

        if part == GLOBAL_WILDCARD:
            if index == last:
                return True
            continue

        if part != event_parts[index]:
            return False

    return len(event_parts) == len(pattern_parts)
