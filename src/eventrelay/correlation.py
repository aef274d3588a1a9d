"""
Correlation IDs for chains of related events.

A correlation ID lives in a context variable. Events published without a
``correlation_id`` pick up the current one, handlers run with the
correlation ID of the event they received, and the default ConsoleLogger
stamps it on every record. An event published from inside a handler
therefore continues the chain of the event that triggered it.

Usage:
    from eventrelay.correlation import CorrelationContext

    with CorrelationContext("request-abc-123"):
        # Events published here get correlation_id="request-abc-123"
        await bus.publish({"event_type": "User.LoggedIn", "source": "auth", "data": {}})
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from contextvars import ContextVar, Token

_correlation_id: ContextVar[str | None] = ContextVar("eventrelay_correlation_id", default=None)

CORRELATION_ID_HEADER = "X-Correlation-ID"

logger = logging.getLogger(__name__)


def generate_correlation_id() -> str:
    """Generate a new UUID4 correlation ID."""
    return str(uuid.uuid4())


def get_correlation_id() -> str | None:
    """Get the correlation ID of the current context, if any."""
    return _correlation_id.get()


def set_correlation_id(correlation_id: str | None) -> Token[str | None]:
    """
    Set the correlation ID for the current context.

    Returns:
        Token for restore_correlation_id()
    """
    return _correlation_id.set(correlation_id)


def restore_correlation_id(token: Token[str | None]) -> None:
    """Restore the correlation ID that was current before set_correlation_id()."""
    _correlation_id.reset(token)


def clear_correlation_id() -> None:
    """Clear the correlation ID from the current context."""
    _correlation_id.set(None)


def extract_correlation_id_from_headers(
    headers: Mapping[str, str],
    header_name: str = CORRELATION_ID_HEADER,
) -> str:
    """
    Read the correlation ID of an incoming request.

    Args:
        headers: Request headers, matched case-insensitively
        header_name: Header carrying the ID

    Returns:
        The header value if present and non-empty, otherwise a new ID
    """
    wanted = header_name.lower()
    value = next((v for k, v in headers.items() if k.lower() == wanted), None)
    if isinstance(value, str) and value:
        return value

    correlation_id = generate_correlation_id()
    logger.debug("No %s header, generated %s", header_name, correlation_id)
    return correlation_id


class CorrelationContext:
    """
    Context manager that sets a correlation ID for a block.

    The previous value is restored on exit, including when the block
    raises, so contexts nest.

    Usage:
        with CorrelationContext("outer"):
            with CorrelationContext("inner"):
                assert get_correlation_id() == "inner"
            assert get_correlation_id() == "outer"
    """

    def __init__(self, correlation_id: str | None = None):
        """
        Args:
            correlation_id: Correlation ID to use, or None to generate a new one
        """
        self.correlation_id = correlation_id or generate_correlation_id()
        self._token: Token[str | None] | None = None

    def __enter__(self) -> str:
        self._token = set_correlation_id(self.correlation_id)
        return self.correlation_id

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        if self._token is not None:
            restore_correlation_id(self._token)
            self._token = None


def add_correlation_to_log_extra(extra: dict[str, object] | None = None) -> dict[str, object]:
    """Return a copy of a logging ``extra`` dict with the current correlation ID added."""
    result: dict[str, object] = dict(extra) if extra else {}
    correlation_id = get_correlation_id()
    if correlation_id:
        result["correlation_id"] = correlation_id
    return result
