"""
Event Bus - in-process publish/subscribe dispatch.

This module provides:
- Pattern subscriptions: exact ("Order.Paid"), wildcard ("Order.*",
  "*.Ended") and catch-all ("*")
- Sync and async handlers, each isolated from the others
- Per-handler retries with a fixed delay and an optional publish timeout
- Event enrichment and schema validation before any handler runs
- Correlation ID propagation, metrics and OpenTelemetry spans

Usage:
    from eventrelay import EventBus, PublishConfig

    bus = EventBus(max_retries=2, retry_delay=100)

    async def on_order(event, context):
        print(f"{event.event_type} (attempt {context.attempt}): {event.data}")

    subscription = bus.subscribe("Order.*", on_order)

    result = await bus.publish(
        {"event_type": "Order.Paid", "source": "checkout", "data": {"order_id": 42}},
        PublishConfig(timeout=5000),
    )
    if not result.success:
        print(f"Failed handlers: {result.failed_handlers}")

    bus.unsubscribe(subscription)
"""

from __future__ import annotations

import dataclasses
import itertools
import logging
import time
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from .config import EventBusConfig
from .correlation import get_correlation_id
from .enrichment import enrich
from .events import Event
from .exceptions import InvalidSubscriptionError, PublishTimeoutError, SchemaValidationError
from .logger import LoggerPlugin
from .notification import PublishConfig, PublishResult, SubscriberNotifier, maybe_await
from .patterns import is_valid_pattern, normalize_pattern
from .registry import EventHandler, Subscription, SubscriptionRegistry
from .telemetry import get_trace_correlation_id, publish_span, record_publish_result
from .validation import INVALID_INPUT_ERROR, EventValidator, ValidationResult

if TYPE_CHECKING:
    from opentelemetry.trace import TracerProvider

    from .metrics import MetricsCollector

SUBSCRIPTION_ID_PREFIX = "sub_"

logger = logging.getLogger(__name__)


class EventBus:
    """
    Asynchronous in-process event bus.

    Publishing enriches the event, validates it, snapshots the matching
    subscriptions and notifies them concurrently. Handler failures are
    reported in the returned PublishResult; only validation failures and
    publish timeouts raise.

    Usage:
        bus = EventBus()

        def on_user(event, context):
            print(event.data)

        bus.subscribe("User.*", on_user)
        await bus.publish({"event_type": "User.Created", "source": "signup", "data": {}})
    """

    def __init__(
        self,
        max_retries: int | None = None,
        retry_delay: float | None = None,
        enable_logging: bool | None = None,
        logger: LoggerPlugin | None = None,
        validator: EventValidator | None = None,
        metrics: MetricsCollector | None = None,
        tracer_provider: TracerProvider | None = None,
    ):
        """
        Initialize the Event Bus.

        Args:
            max_retries: Extra attempts per handler after the first (default 0, max 100)
            retry_delay: Pause between attempts in milliseconds (default 0, max 300000)
            enable_logging: Whether to log publishes and handler failures (default True)
            logger: Logger plugin (default ConsoleLogger)
            validator: Event validator (default EventSchemaValidator)
            metrics: Optional MetricsCollector for observability
            tracer_provider: OpenTelemetry provider (default: the global one)

        Raises:
            ConfigurationError: If any option is invalid
        """
        self._config = EventBusConfig.from_options(
            max_retries=max_retries,
            retry_delay=retry_delay,
            enable_logging=enable_logging,
            logger=logger,
            validator=validator,
        )
        self._metrics = metrics
        self._tracer_provider = tracer_provider

        self._registry = SubscriptionRegistry()
        self._subscription_ids = itertools.count(1)

        self._notifier = SubscriberNotifier(
            max_retries=self._config.max_retries,
            retry_delay=self._config.retry_delay,
            logger=self._config.logger,
            enable_logging=self._config.enable_logging,
            metrics=metrics,
        )

    def subscribe(
        self,
        pattern: str,
        handler: EventHandler,
        config: Mapping[str, Any] | None = None,
    ) -> Subscription:
        """
        Subscribe a handler to events matching a pattern.

        Args:
            pattern: Event type or wildcard pattern ("Order.*", "*")
            handler: Sync or async callable taking (event, context)
            config: Optional per-subscription settings, stored as given

        Returns:
            The new Subscription, needed to unsubscribe

        Raises:
            InvalidSubscriptionError: If the pattern or handler is invalid

        Example:
            def on_chat(event, context):
                print(event.data)

            subscription = bus.subscribe("Chat.*", on_chat)
        """
        if not isinstance(pattern, str) or not pattern.strip():
            raise InvalidSubscriptionError("Pattern must be a non-empty string")

        if not callable(handler):
            raise InvalidSubscriptionError("Handler must be a function")

        if not is_valid_pattern(pattern):
            raise InvalidSubscriptionError(f"Invalid pattern: {pattern}")

        subscription = Subscription(
            id=f"{SUBSCRIPTION_ID_PREFIX}{next(self._subscription_ids)}",
            pattern=normalize_pattern(pattern),
            handler=handler,
            config=dict(config or {}),
        )
        self._registry.add(subscription)
        self._update_subscription_gauge()

        logger.debug("Subscribed %s to %s", subscription.id, subscription.pattern)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> bool:
        """
        Remove a subscription.

        Args:
            subscription: Subscription returned by subscribe()

        Returns:
            True if it was active and is now removed
        """
        removed = self._registry.remove(subscription)
        if removed:
            self._update_subscription_gauge()
            logger.debug("Unsubscribed %s", subscription.id)
        return removed

    async def publish(
        self,
        event: Mapping[str, Any] | Event,
        config: PublishConfig | Mapping[str, Any] | None = None,
    ) -> PublishResult:
        """
        Publish an event to all matching subscribers.

        Missing event_id, timestamp, version and metadata defaults are
        filled in, and a missing correlation_id is taken from the current
        correlation context or the active trace.

        Args:
            event: Partial event (mapping) or a complete Event
            config: Optional PublishConfig, or a mapping like {"timeout": 500};
                timeouts are in milliseconds

        Returns:
            PublishResult once every handler has finished its retries

        Raises:
            SchemaValidationError: If the validator rejects the event
            ConfigurationError: If config is not a PublishConfig or valid mapping,
                or the validator returns a result of an unsupported type
            PublishTimeoutError: If handlers do not finish within the timeout
        """
        if not isinstance(event, (Mapping, Event)):
            raise SchemaValidationError(
                f"Event validation failed: {INVALID_INPUT_ERROR}", errors=[INVALID_INPUT_ERROR]
            )

        publish_config = PublishConfig.from_options(config)
        start = time.perf_counter()
        enriched = enrich(self._with_correlation(event))

        with publish_span(enriched, self._tracer_provider) as span:
            await self._validate(enriched)

            subscriptions = self._registry.find_matching(enriched.event_type)
            try:
                result = await self._notifier.notify(enriched, subscriptions, publish_config)
            except PublishTimeoutError:
                self._record_published(enriched, start, success=False)
                raise

            record_publish_result(span, result)

        self._record_published(enriched, start, success=result.success)
        return result

    def get_subscription_count(self) -> int:
        """Get the number of active subscriptions."""
        return self._registry.get_total_count()

    def has_subscriptions(self) -> bool:
        return self._registry.has_subscriptions()

    def get_logger(self) -> LoggerPlugin:
        return self._config.logger

    def get_validator(self) -> EventValidator:
        return self._config.validator

    def get_config(self) -> EventBusConfig:
        """
        Get a copy of the bus configuration.

        Changing the copy does not affect the bus.
        """
        return dataclasses.replace(self._config)

    def get_pending_count(self) -> int:
        """Get the number of handler tasks still running in the background."""
        return self._notifier.get_pending_count()

    async def wait_for_pending(self, timeout_ms: float = 30_000) -> int:
        """
        Wait for handlers left running by timed-out publishes.

        Returns:
            Number of handler tasks still running afterwards
        """
        return await self._notifier.wait_for_pending(timeout_ms)

    def _with_correlation(self, event: Mapping[str, Any] | Event) -> Mapping[str, Any] | Event:
        if isinstance(event, Event):
            if event.correlation_id:
                return event
        elif not isinstance(event, Mapping) or event.get("correlation_id"):
            return event

        correlation_id = get_correlation_id() or get_trace_correlation_id()
        if correlation_id is None:
            return event

        if isinstance(event, Event):
            return dataclasses.replace(event, correlation_id=correlation_id)
        return {**event, "correlation_id": correlation_id}

    async def _validate(self, event: Event) -> None:
        output = await maybe_await(self._config.validator.validate(event))
        result = ValidationResult.from_validator_output(output)

        if not result.is_valid:
            errors = result.errors
            raise SchemaValidationError(
                f"Event validation failed: {'; '.join(errors)}",
                errors=errors,
                event_id=event.event_id,
            )

    def _record_published(self, event: Event, start: float, success: bool) -> None:
        if self._metrics:
            latency_ms = (time.perf_counter() - start) * 1000
            self._metrics.record_event_published(
                event.event_type, event.source, latency_ms, success
            )

    def _update_subscription_gauge(self) -> None:
        if self._metrics:
            self._metrics.update_subscription_count(self._registry.get_total_count())
