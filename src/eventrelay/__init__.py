"""
eventrelay - in-process publish/subscribe event dispatch for asyncio.

Features:
- Pattern subscriptions: exact, wildcard ("Order.*", "*.Ended") and catch-all ("*")
- Sync and async handlers with per-handler error isolation
- Per-handler retries with a fixed delay, optional publish timeout
- Event enrichment (IDs, timestamps, metadata defaults) and schema validation
- Pluggable logger and validator
- Correlation ID propagation for distributed tracing
- Metrics collection with pluggable backends (in-memory, Prometheus)
- OpenTelemetry publish spans

Basic Usage:
    from eventrelay import EventBus

    bus = EventBus(max_retries=2, retry_delay=100)

    async def on_user_event(event, context):
        print(f"User event: {event.event_type}")

    bus.subscribe("User.*", on_user_event)

    result = await bus.publish(
        {"event_type": "User.LoggedIn", "source": "auth", "data": {"username": "alice"}}
    )

With Correlation Context:
    from eventrelay import EventBus, CorrelationContext

    bus = EventBus()

    with CorrelationContext("request-abc-123"):
        # Events published in this block get the correlation ID
        await bus.publish({"event_type": "User.LoggedIn", "source": "auth", "data": {}})
"""

from .bus import EventBus
from .config import MAX_RETRIES_LIMIT, MAX_RETRY_DELAY_MS, EventBusConfig
from .correlation import (
    CORRELATION_ID_HEADER,
    CorrelationContext,
    add_correlation_to_log_extra,
    clear_correlation_id,
    extract_correlation_id_from_headers,
    generate_correlation_id,
    get_correlation_id,
    restore_correlation_id,
    set_correlation_id,
)
from .enrichment import enrich
from .events import Event, EventContext, Priority, SubscriptionRef
from .exceptions import (
    ConfigurationError,
    EventRelayError,
    InvalidSubscriptionError,
    PublishTimeoutError,
    SchemaValidationError,
)
from .logger import ConsoleLogger, LoggerPlugin
from .metrics import (
    InMemoryMetrics,
    MetricsBackend,
    MetricsCollector,
    NoopMetrics,
    PrometheusMetrics,
    TimingContext,
)
from .notification import HandlerResult, PublishConfig, PublishResult, SubscriberNotifier
from .patterns import is_valid_pattern, matches, normalize_pattern
from .registry import EventHandler, Subscription, SubscriptionRegistry
from .telemetry import get_trace_correlation_id, get_tracer
from .validation import (
    EVENT_TYPE_PATTERN,
    EventSchemaValidator,
    EventValidator,
    ValidationResult,
    is_valid_event_type,
)

__version__ = "0.1.0"

__all__ = [
    # Core
    "EventBus",
    "EventBusConfig",
    "Event",
    "EventContext",
    "Priority",
    "Subscription",
    "SubscriptionRef",
    "EventHandler",
    "PublishConfig",
    "PublishResult",
    "HandlerResult",
    "MAX_RETRIES_LIMIT",
    "MAX_RETRY_DELAY_MS",
    # Building blocks
    "enrich",
    "matches",
    "normalize_pattern",
    "is_valid_pattern",
    "SubscriptionRegistry",
    "SubscriberNotifier",
    # Errors
    "EventRelayError",
    "ConfigurationError",
    "InvalidSubscriptionError",
    "SchemaValidationError",
    "PublishTimeoutError",
    # Logging
    "LoggerPlugin",
    "ConsoleLogger",
    # Correlation
    "CorrelationContext",
    "get_correlation_id",
    "set_correlation_id",
    "restore_correlation_id",
    "clear_correlation_id",
    "generate_correlation_id",
    "extract_correlation_id_from_headers",
    "add_correlation_to_log_extra",
    "CORRELATION_ID_HEADER",
    # Telemetry (OpenTelemetry integration)
    "get_tracer",
    "get_trace_correlation_id",
    # Metrics
    "MetricsBackend",
    "MetricsCollector",
    "NoopMetrics",
    "InMemoryMetrics",
    "PrometheusMetrics",
    "TimingContext",
    # Validation
    "EventValidator",
    "EventSchemaValidator",
    "ValidationResult",
    "EVENT_TYPE_PATTERN",
    "is_valid_event_type",
]
