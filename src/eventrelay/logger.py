"""
Logger contract for the event relay.

The bus reports publishes, handler retries and failures to a pluggable
logger with five async levels. Any object with these methods works; the
default ConsoleLogger forwards to the standard ``logging`` module.

Usage:
    import logging
    from eventrelay import EventBus, ConsoleLogger

    logging.basicConfig(level=logging.INFO)
    bus = EventBus(logger=ConsoleLogger("myapp.events"))
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

from .correlation import add_correlation_to_log_extra

REQUIRED_LOG_LEVELS = ("info", "warn", "error", "fatal", "debug")


@runtime_checkable
class LoggerPlugin(Protocol):
    """Pluggable logger used for publish and handler diagnostics."""

    async def info(self, message: str, context: Mapping[str, Any] | None = None) -> None:
        ...

    async def warn(self, message: str, context: Mapping[str, Any] | None = None) -> None:
        ...

    async def error(
        self,
        message: str,
        error: BaseException | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        ...

    async def fatal(
        self,
        message: str,
        error: BaseException | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        ...

    async def debug(self, message: str, context: Mapping[str, Any] | None = None) -> None:
        ...


def missing_log_levels(candidate: Any) -> list[str]:
    """Return the required log levels the candidate does not implement."""
    return [
        level for level in REQUIRED_LOG_LEVELS if not callable(getattr(candidate, level, None))
    ]


class ConsoleLogger:
    """
    Default logger backed by the standard ``logging`` module.

    Context is attached as ``record.context`` and the active correlation ID
    as ``record.correlation_id``; both also appear in the message text.
    """

    def __init__(self, name: str | logging.Logger = "eventrelay"):
        """
        Args:
            name: Logger name, or an existing logging.Logger
        """
        self._logger = name if isinstance(name, logging.Logger) else logging.getLogger(name)

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    async def info(self, message: str, context: Mapping[str, Any] | None = None) -> None:
        self._log(logging.INFO, message, context)

    async def warn(self, message: str, context: Mapping[str, Any] | None = None) -> None:
        self._log(logging.WARNING, message, context)

    async def error(
        self,
        message: str,
        error: BaseException | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        self._log(logging.ERROR, message, context, error)

    async def fatal(
        self,
        message: str,
        error: BaseException | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        self._log(logging.CRITICAL, message, context, error)

    async def debug(self, message: str, context: Mapping[str, Any] | None = None) -> None:
        self._log(logging.DEBUG, message, context)

    def _log(
        self,
        level: int,
        message: str,
        context: Mapping[str, Any] | None,
        error: BaseException | None = None,
    ) -> None:
        if not self._logger.isEnabledFor(level):
            return

        ctx = dict(context or {})
        extra = add_correlation_to_log_extra({"context": ctx})

        if ctx:
            self._logger.log(level, "%s %s", message, ctx, exc_info=error, extra=extra)
        else:
            self._logger.log(level, "%s", message, exc_info=error, extra=extra)
