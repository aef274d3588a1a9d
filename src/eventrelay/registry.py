"""
Subscription storage with indexed lookups.

Per-publish cost should not grow with the number of exact or catch-all
subscriptions, so patterns are split into three indexes:

    - exact patterns ("Order.Paid"): dict lookup by event type
    - the global wildcard ("*"): always included
    - other wildcard patterns ("Order.*", "*.Ended"): one match per
      distinct pattern, not per subscription

All index entries share the bucket list of their pattern, so adding or
removing a subscription keeps every index consistent. No method awaits,
which makes each operation atomic on the event loop.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from .events import Event, EventContext, SubscriptionRef
from .patterns import GLOBAL_WILDCARD, is_exact_pattern, matches

# Handlers may be plain functions or coroutine functions
EventHandler = (
    Callable[[Event, EventContext], Any] | Callable[[Event, EventContext], Awaitable[Any]]
)


@dataclass(frozen=True, slots=True)
class Subscription:
    """
    A standing registration of a handler for a pattern.

    Attributes:
        id: Unique identifier within the owning bus ("sub_<n>")
        pattern: Normalized pattern the handler is registered for
        handler: Sync or async callable taking (event, context)
        config: Per-subscription settings (reserved)
    """

    id: str
    pattern: str
    handler: EventHandler
    config: Mapping[str, Any] = field(default_factory=dict)

    @property
    def handler_name(self) -> str:
        return getattr(self.handler, "__name__", type(self.handler).__name__)

    def ref(self) -> SubscriptionRef:
        return SubscriptionRef(id=self.id, pattern=self.pattern)


class SubscriptionRegistry:
    """
    Registry of active subscriptions for a single bus.

    Usage:
        registry = SubscriptionRegistry()
        registry.add(subscription)

        for sub in registry.find_matching("Order.Paid"):
            ...

        registry.remove(subscription)
    """

    def __init__(self) -> None:
        # Primary storage, in pattern insertion order
        self._buckets: dict[str, list[Subscription]] = {}

        self._exact: dict[str, list[Subscription]] = {}
        self._wildcards: dict[str, list[Subscription]] = {}
        self._global: list[Subscription] = []

    def add(self, subscription: Subscription) -> None:
        """Store a subscription under its pattern."""
        pattern = subscription.pattern
        bucket = self._buckets.get(pattern)
        if bucket is None:
            bucket = self._buckets[pattern] = []
            self._index(pattern, bucket)
        bucket.append(subscription)

    def remove(self, subscription: Subscription) -> bool:
        """
        Remove a subscription by ID.

        Args:
            subscription: Subscription previously passed to add()

        Returns:
            True if it was found and removed, False otherwise
        """
        pattern = subscription.pattern
        bucket = self._buckets.get(pattern)
        if bucket is None:
            return False

        for index, existing in enumerate(bucket):
            if existing.id == subscription.id:
                del bucket[index]
                break
        else:
            return False

        if not bucket:
            del self._buckets[pattern]
            self._unindex(pattern)

        return True

    def find_matching(self, event_type: str) -> list[Subscription]:
        """
        Find subscriptions whose pattern matches an event type.

        Results are ordered exact matches first, then catch-all
        subscriptions, then wildcard matches in pattern insertion order.
        The returned list is a snapshot; later registry changes do not
        affect it.
        """
        matching: list[Subscription] = []

        exact = self._exact.get(event_type)
        if exact:
            matching.extend(exact)

        matching.extend(self._global)

        for pattern, bucket in self._wildcards.items():
            if matches(event_type, pattern):
                matching.extend(bucket)

        return matching

    def get_total_count(self) -> int:
        """Get the number of stored subscriptions."""
        return sum(len(bucket) for bucket in self._buckets.values())

    def has_subscriptions(self) -> bool:
        return bool(self._buckets)

    def get_patterns(self) -> list[str]:
        """Get all patterns with at least one subscription."""
        return list(self._buckets)

    def clear(self) -> None:
        """Remove every subscription."""
        self._buckets.clear()
        self._exact.clear()
        self._wildcards.clear()
        self._global = []

    def _index(self, pattern: str, bucket: list[Subscription]) -> None:
        if pattern == GLOBAL_WILDCARD:
            self._global = bucket
        elif is_exact_pattern(pattern):
            self._exact[pattern] = bucket
        else:
            self._wildcards[pattern] = bucket

    def _unindex(self, pattern: str) -> None:
        if pattern == GLOBAL_WILDCARD:
            self._global = []
        elif is_exact_pattern(pattern):
            self._exact.pop(pattern, None)
        else:
            self._wildcards.pop(pattern, None)
