"""
OpenTelemetry integration for the event relay.

Each publish runs inside a PRODUCER span carrying the event identity and
the delivery outcome. Without a configured SDK the OpenTelemetry API hands
out non-recording spans, so this costs next to nothing by default.

Usage:
    from opentelemetry.sdk.trace import TracerProvider
    from eventrelay import EventBus

    bus = EventBus(tracer_provider=TracerProvider())
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from opentelemetry import trace
from opentelemetry.trace import Span, SpanKind, Status, StatusCode, TracerProvider

if TYPE_CHECKING:
    from .events import Event
    from .notification import PublishResult

TRACER_NAME = "eventrelay"
PUBLISH_SPAN_NAME = "eventrelay.publish"


def get_tracer(tracer_provider: TracerProvider | None = None) -> trace.Tracer:
    """
    Get the event relay tracer.

    Args:
        tracer_provider: Provider to use instead of the global one
    """
    return trace.get_tracer(TRACER_NAME, tracer_provider=tracer_provider)


def get_trace_correlation_id() -> str | None:
    """
    Get the trace ID of the active span as a correlation ID.

    Returns:
        32-character hex trace ID if a recording span is active, None otherwise
    """
    span = trace.get_current_span()
    if span and span.is_recording():
        trace_id = span.get_span_context().trace_id
        if trace_id:
            return format(trace_id, "032x")
    return None


@contextmanager
def publish_span(
    event: Event,
    tracer_provider: TracerProvider | None = None,
) -> Iterator[Span]:
    """
    Trace a publish.

    Errors raised inside the block are recorded on the span and re-raised.

    Args:
        event: Event being published
        tracer_provider: Provider to use instead of the global one

    Yields:
        The active span
    """
    tracer = get_tracer(tracer_provider)
    with tracer.start_as_current_span(
        PUBLISH_SPAN_NAME,
        kind=SpanKind.PRODUCER,
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        _set_event_attributes(span, event)
        try:
            yield span
        except Exception as e:
            span.set_status(Status(StatusCode.ERROR, str(e)))
            span.record_exception(e)
            raise


def record_publish_result(span: Span, result: PublishResult) -> None:
    """Attach the delivery outcome of a publish to its span."""
    if not span.is_recording():
        return

    span.set_attribute("eventrelay.subscribers_notified", result.subscribers_notified)
    span.set_attribute("eventrelay.failed_handlers", len(result.failed_handlers))
    span.set_attribute("eventrelay.total_retries", result.total_retries)
    span.set_attribute("eventrelay.success", result.success)

    if result.success:
        span.set_status(Status(StatusCode.OK))
    else:
        span.set_status(Status(StatusCode.ERROR, "handlers failed"))


def _set_event_attributes(span: Span, event: Event) -> None:
    if not span.is_recording():
        return

    attributes: dict[str, Any] = {
        "eventrelay.event_id": str(event.event_id),
        "eventrelay.event_type": str(event.event_type),
        "eventrelay.source": str(event.source),
    }
    if event.correlation_id:
        attributes["eventrelay.correlation_id"] = event.correlation_id
    span.set_attributes(attributes)
