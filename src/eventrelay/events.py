"""
Event data models for the event relay.

This module defines the Event dataclass - an immutable record of something
that happened in the system - and the per-invocation EventContext that
handlers receive alongside it.

Event Naming Convention:
    Event types are dot-delimited with at least two segments, each made of
    letters, digits and hyphens:
    - User.AccountCreated
    - Order.Payment.Completed
    - user-profile.updated

    Subscription patterns use wildcards (see eventrelay.patterns):
    - "User.*" matches all User events
    - "*" matches all events (catch-all)
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

DEFAULT_VERSION = "1.0"


class Priority(str, Enum):
    """Event priority carried in metadata."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"


PRIORITY_LEVELS = tuple(p.value for p in Priority)


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True, slots=True)
class Event:
    """
    Immutable event record.

    The same instance is handed to every handler of a publish, so handlers
    must not rely on mutating ``data`` or ``metadata`` to talk to each other.

    Attributes:
        event_id: Unique identifier (UUID-v4)
        event_type: Dot-delimited event type (e.g., "User.AccountCreated")
        timestamp: ISO-8601 time the event was created
        source: Component that published the event
        version: Event schema version in major.minor form
        data: Event payload
        correlation_id: Optional ID for tracing related events
        metadata: retry_count, priority, tags and any custom keys
    """

    event_id: str
    event_type: str
    timestamp: str
    source: str
    version: str
    data: dict[str, Any]
    correlation_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def priority(self) -> str | None:
        return self.metadata.get("priority")

    @property
    def retry_count(self) -> int | None:
        return self.metadata.get("retry_count")

    @property
    def tags(self) -> list[str]:
        return list(self.metadata.get("tags") or [])

    def to_dict(self) -> dict[str, Any]:
        """
        Convert event to its document form.

        Returns:
            Dictionary with all event fields; ``correlation_id`` is omitted
            when unset
        """
        data: dict[str, Any] = {
            "event_id": self.event_id,
            "event_type": self.event_type,
            "timestamp": self.timestamp,
            "source": self.source,
            "version": self.version,
            "data": self.data,
            "metadata": self.metadata,
        }
        if self.correlation_id is not None:
            data["correlation_id"] = self.correlation_id
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Event:
        """
        Build an event from its document form.

        Missing fields are left as None; run the result through a validator
        before trusting it.
        """
        return cls(
            event_id=data.get("event_id"),
            event_type=data.get("event_type"),
            timestamp=data.get("timestamp"),
            source=data.get("source"),
            version=data.get("version"),
            data=data.get("data"),
            correlation_id=data.get("correlation_id"),
            metadata=data.get("metadata"),
        )


@dataclass(frozen=True, slots=True)
class SubscriptionRef:
    """Identity of the subscription a handler is being invoked for."""

    id: str
    pattern: str


@dataclass(frozen=True, slots=True)
class EventContext:
    """
    Context passed to a handler with each invocation attempt.

    Attributes:
        subscription: Subscription being invoked
        attempt: 1-based attempt number within the retry sequence
        timestamp: ISO-8601 time of this attempt
    """

    subscription: SubscriptionRef
    attempt: int
    timestamp: str = field(default_factory=utc_now_iso)

    @property
    def is_retry(self) -> bool:
        return self.attempt > 1
