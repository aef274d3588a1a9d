"""
Error taxonomy for the event relay.

Configuration and subscription errors are raised immediately and never
retried. Schema validation errors stop a single publish before any handler
runs. Handler errors are never raised: they are reported through
PublishResult. A publish timeout is the one systemic failure that is raised
to the caller.
"""

from __future__ import annotations

from collections.abc import Sequence


class EventRelayError(Exception):
    """Base class for all event relay errors."""


class ConfigurationError(EventRelayError, ValueError):
    """Raised when EventBus options are invalid; the bus is never created."""


class InvalidSubscriptionError(EventRelayError, ValueError):
    """Raised when subscribe() receives a bad pattern or handler."""


class SchemaValidationError(EventRelayError):
    """Raised when a published event fails validation."""

    def __init__(
        self,
        message: str,
        errors: Sequence[str] | None = None,
        event_id: str | None = None,
    ):
        self.errors = list(errors or [])
        self.event_id = event_id
        super().__init__(message)


class PublishTimeoutError(EventRelayError, TimeoutError):
    """
    Raised when the handlers of a publish do not finish within its timeout.

    Attributes:
        event_id: ID of the event being published
        timeout_ms: The timeout that expired, in milliseconds
        completed_handlers: Subscriptions whose retry loop had finished
        total_handlers: Subscriptions matched by the event
    """

    def __init__(
        self,
        event_id: str,
        timeout_ms: float,
        completed_handlers: int,
        total_handlers: int,
    ):
        self.event_id = event_id
        self.timeout_ms = timeout_ms
        self.completed_handlers = completed_handlers
        self.total_handlers = total_handlers
        super().__init__(
            f"Event {event_id} timed out after {timeout_ms}ms. "
            f"{completed_handlers}/{total_handlers} handlers completed."
        )
