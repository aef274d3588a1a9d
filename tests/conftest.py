"""
Pytest configuration for eventrelay tests.
"""

from __future__ import annotations

from typing import Any

import pytest

from eventrelay import EventBus, InMemoryMetrics, MetricsCollector
from eventrelay.correlation import clear_correlation_id


class RecordingLogger:
    """LoggerPlugin that keeps every call for assertions."""

    def __init__(self) -> None:
        self.records: list[tuple[str, str, BaseException | None, dict[str, Any] | None]] = []

    async def info(self, message, context=None):
        self.records.append(("info", message, None, context))

    async def warn(self, message, context=None):
        self.records.append(("warn", message, None, context))

    async def error(self, message, error=None, context=None):
        self.records.append(("error", message, error, context))

    async def fatal(self, message, error=None, context=None):
        self.records.append(("fatal", message, error, context))

    async def debug(self, message, context=None):
        self.records.append(("debug", message, None, context))

    def messages(self, level: str) -> list[str]:
        return [message for lvl, message, _, _ in self.records if lvl == level]


@pytest.fixture(autouse=True)
def reset_correlation_id():
    """Keep correlation IDs from leaking between tests."""
    clear_correlation_id()
    yield
    clear_correlation_id()


@pytest.fixture
def recording_logger() -> RecordingLogger:
    return RecordingLogger()


@pytest.fixture
def event_bus(recording_logger: RecordingLogger) -> EventBus:
    """Create a fresh EventBus with a recording logger."""
    return EventBus(logger=recording_logger)


@pytest.fixture
def metrics() -> MetricsCollector:
    """Create a MetricsCollector backed by InMemoryMetrics."""
    return MetricsCollector(InMemoryMetrics())


@pytest.fixture
def make_event():
    """Factory for partial events, as a producer would pass to publish()."""

    def _make(event_type: str = "User.Created", **fields: Any) -> dict[str, Any]:
        event: dict[str, Any] = {"event_type": event_type, "source": "test-suite", "data": {}}
        event.update(fields)
        return event

    return _make
