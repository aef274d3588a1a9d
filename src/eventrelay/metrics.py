"""
Metrics collection for the event relay.

Records publishes, handler attempts, retries, exhausted handlers and
publish timeouts through a pluggable backend.

Usage:
    from eventrelay import EventBus
    from eventrelay.metrics import InMemoryMetrics, MetricsCollector, PrometheusMetrics

    # In-memory, for tests and debugging
    collector = MetricsCollector(InMemoryMetrics())
    bus = EventBus(metrics=collector)

    # Prometheus
    bus = EventBus(metrics=MetricsCollector(PrometheusMetrics()))
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram


@dataclass
class MetricTags:
    """Common tags for metrics."""

    event_type: str | None = None
    source: str | None = None
    handler_name: str | None = None
    status: str | None = None  # "success", "error", "timeout"

    def to_dict(self) -> dict[str, str]:
        """Convert to dict, excluding None values."""
        return {k: v for k, v in vars(self).items() if v is not None}


class MetricsBackend(ABC):
    """Abstract base class for metrics backends."""

    @abstractmethod
    def increment(self, name: str, value: int = 1, tags: dict[str, str] | None = None) -> None:
        """Increment a counter."""

    @abstractmethod
    def gauge(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
        """Set a gauge value."""

    @abstractmethod
    def timing(self, name: str, value_ms: float, tags: dict[str, str] | None = None) -> None:
        """Record a timing in milliseconds."""


class NoopMetrics(MetricsBackend):
    """No-op metrics backend (default when no backend is given)."""

    def increment(self, name: str, value: int = 1, tags: dict[str, str] | None = None) -> None:
        pass

    def gauge(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
        pass

    def timing(self, name: str, value_ms: float, tags: dict[str, str] | None = None) -> None:
        pass


@dataclass
class InMemoryMetrics(MetricsBackend):
    """
    In-memory metrics backend for testing and debugging.

    Keys look like ``name{tag1=val1,tag2=val2}`` with tags sorted by name.
    """

    counters: dict[str, int] = field(default_factory=dict)
    gauges: dict[str, float] = field(default_factory=dict)
    timings: dict[str, list[float]] = field(default_factory=dict)

    def _key(self, name: str, tags: dict[str, str] | None) -> str:
        if not tags:
            return name
        tag_str = ",".join(f"{k}={v}" for k, v in sorted(tags.items()))
        return f"{name}{{{tag_str}}}"

    def increment(self, name: str, value: int = 1, tags: dict[str, str] | None = None) -> None:
        key = self._key(name, tags)
        self.counters[key] = self.counters.get(key, 0) + value

    def gauge(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
        self.gauges[self._key(name, tags)] = value

    def timing(self, name: str, value_ms: float, tags: dict[str, str] | None = None) -> None:
        self.timings.setdefault(self._key(name, tags), []).append(value_ms)

    def reset(self) -> None:
        """Clear all stored metrics."""
        self.counters.clear()
        self.gauges.clear()
        self.timings.clear()

    def get_counter(self, name: str, tags: dict[str, str] | None = None) -> int:
        return self.counters.get(self._key(name, tags), 0)

    def get_gauge(self, name: str, tags: dict[str, str] | None = None) -> float | None:
        return self.gauges.get(self._key(name, tags))

    def get_timing_values(self, name: str, tags: dict[str, str] | None = None) -> list[float]:
        return self.timings.get(self._key(name, tags), [])

    def total(self, name: str) -> int:
        """Sum a counter over all tag combinations."""
        return sum(
            value
            for key, value in self.counters.items()
            if key == name or key.startswith(name + "{")
        )


class PrometheusMetrics(MetricsBackend):
    """
    Prometheus metrics backend.

    Metrics are created lazily on first use. Each metric name must always be
    recorded with the same tag names.
    """

    def __init__(self, prefix: str = "", registry: CollectorRegistry | None = None):
        """
        Args:
            prefix: Extra prefix for metric names
            registry: Registry to register metrics in (defaults to the global one)
        """
        self.prefix = prefix
        self.registry = registry if registry is not None else REGISTRY
        self._counters: dict[str, Counter] = {}
        self._gauges: dict[str, Gauge] = {}
        self._histograms: dict[str, Histogram] = {}

    def _full_name(self, name: str) -> str:
        return f"{self.prefix}_{name}" if self.prefix else name

    def _get_counter(self, name: str, labels: list[str]) -> Counter:
        key = self._full_name(name)
        if key not in self._counters:
            self._counters[key] = Counter(key, f"{name} counter", labels, registry=self.registry)
        return self._counters[key]

    def _get_gauge(self, name: str, labels: list[str]) -> Gauge:
        key = self._full_name(name)
        if key not in self._gauges:
            self._gauges[key] = Gauge(key, f"{name} gauge", labels, registry=self.registry)
        return self._gauges[key]

    def _get_histogram(self, name: str, labels: list[str]) -> Histogram:
        key = self._full_name(name)
        if key not in self._histograms:
            self._histograms[key] = Histogram(
                key, f"{name} histogram", labels, registry=self.registry
            )
        return self._histograms[key]

    def increment(self, name: str, value: int = 1, tags: dict[str, str] | None = None) -> None:
        counter = self._get_counter(name, sorted(tags) if tags else [])
        if tags:
            counter.labels(**tags).inc(value)
        else:
            counter.inc(value)

    def gauge(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
        gauge = self._get_gauge(name, sorted(tags) if tags else [])
        if tags:
            gauge.labels(**tags).set(value)
        else:
            gauge.set(value)

    def timing(self, name: str, value_ms: float, tags: dict[str, str] | None = None) -> None:
        # Prometheus convention is seconds
        hist = self._get_histogram(name, sorted(tags) if tags else [])
        if tags:
            hist.labels(**tags).observe(value_ms / 1000)
        else:
            hist.observe(value_ms / 1000)


class MetricsCollector:
    """
    Named event relay metrics on top of a backend.
    """

    EVENTS_PUBLISHED = "events_published_total"
    PUBLISH_LATENCY = "publish_latency_ms"
    PUBLISH_TIMEOUTS = "publish_timeouts_total"
    HANDLER_EXECUTIONS = "handler_executions_total"
    HANDLER_LATENCY = "handler_latency_ms"
    HANDLER_RETRIES = "handler_retries_total"
    HANDLER_FAILURES = "handler_failures_total"
    SUBSCRIPTIONS = "subscriptions"

    def __init__(
        self,
        backend: MetricsBackend | None = None,
        prefix: str = "eventrelay",
    ):
        """
        Args:
            backend: Metrics backend (defaults to NoopMetrics)
            prefix: Prefix for all metric names
        """
        self.backend = backend or NoopMetrics()
        self.prefix = prefix

    def name(self, metric: str) -> str:
        """Get prefixed metric name."""
        return f"{self.prefix}_{metric}" if self.prefix else metric

    def record_event_published(
        self,
        event_type: str,
        source: str,
        latency_ms: float,
        success: bool,
    ) -> None:
        status = "success" if success else "error"
        tags = MetricTags(event_type=event_type, source=source, status=status).to_dict()
        self.backend.increment(self.name(self.EVENTS_PUBLISHED), tags=tags)
        self.backend.timing(self.name(self.PUBLISH_LATENCY), latency_ms, tags=tags)

    def record_publish_timeout(self, event_type: str) -> None:
        tags = MetricTags(event_type=event_type).to_dict()
        self.backend.increment(self.name(self.PUBLISH_TIMEOUTS), tags=tags)

    def record_handler_execution(
        self,
        event_type: str,
        handler_name: str,
        latency_ms: float,
        success: bool = True,
    ) -> None:
        """Record one handler attempt."""
        status = "success" if success else "error"
        tags = MetricTags(
            event_type=event_type,
            handler_name=handler_name,
            status=status,
        ).to_dict()
        self.backend.increment(self.name(self.HANDLER_EXECUTIONS), tags=tags)
        self.backend.timing(self.name(self.HANDLER_LATENCY), latency_ms, tags=tags)

    def record_handler_retry(self, event_type: str, handler_name: str) -> None:
        tags = MetricTags(event_type=event_type, handler_name=handler_name).to_dict()
        self.backend.increment(self.name(self.HANDLER_RETRIES), tags=tags)

    def record_handler_failure(self, event_type: str, handler_name: str) -> None:
        """Record a handler that failed every attempt."""
        tags = MetricTags(event_type=event_type, handler_name=handler_name).to_dict()
        self.backend.increment(self.name(self.HANDLER_FAILURES), tags=tags)

    def update_subscription_count(self, count: int) -> None:
        self.backend.gauge(self.name(self.SUBSCRIPTIONS), float(count))

    def get_snapshot(self) -> dict[str, Any]:
        """
        Get a summary of recorded metrics.

        Only InMemoryMetrics keeps data to summarise; other backends report
        their type.
        """
        if not isinstance(self.backend, InMemoryMetrics):
            return {"backend": type(self.backend).__name__}

        backend = self.backend
        events_published: dict[str, int] = {}
        handler_stats: dict[str, dict[str, Any]] = {}

        published_prefix = self.name(self.EVENTS_PUBLISHED)
        executions_prefix = self.name(self.HANDLER_EXECUTIONS)

        for key, value in backend.counters.items():
            if key.startswith(published_prefix):
                event_type = self._extract_tag(key, "event_type")
                if event_type:
                    events_published[event_type] = events_published.get(event_type, 0) + value
            elif key.startswith(executions_prefix):
                handler_name = self._extract_tag(key, "handler_name")
                status = self._extract_tag(key, "status")
                if handler_name:
                    stats = handler_stats.setdefault(
                        handler_name,
                        {"total_calls": 0, "success_count": 0, "failure_count": 0},
                    )
                    stats["total_calls"] += value
                    if status == "success":
                        stats["success_count"] += value
                    elif status == "error":
                        stats["failure_count"] += value

        return {
            "events_published": events_published,
            "total_events_published": sum(events_published.values()),
            "total_retries": backend.total(self.name(self.HANDLER_RETRIES)),
            "total_timeouts": backend.total(self.name(self.PUBLISH_TIMEOUTS)),
            "handler_stats": handler_stats,
        }

    def _extract_tag(self, key: str, tag_name: str) -> str | None:
        # Keys look like: prefix_metric{tag1=val1,tag2=val2}
        if "{" not in key:
            return None
        tag_part = key.split("{", 1)[1].rstrip("}")
        for pair in tag_part.split(","):
            if "=" in pair:
                name, value = pair.split("=", 1)
                if name == tag_name:
                    return value
        return None


class TimingContext:
    """Context manager for timing operations."""

    def __init__(self) -> None:
        self.start_time: float = 0
        self.elapsed_ms: float = 0

    def __enter__(self) -> TimingContext:
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, *args: Any) -> None:
        self.elapsed_ms = (time.perf_counter() - self.start_time) * 1000
