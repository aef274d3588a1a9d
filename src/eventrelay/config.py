"""
EventBus configuration.

Options left unset fall back to defaults; the merged result is validated
once, at construction, so a misconfigured bus is never created.

Usage:
    from eventrelay.config import EventBusConfig

    config = EventBusConfig.from_options(max_retries=3, retry_delay=250)
    config.logger  # ConsoleLogger("eventrelay")
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any

from .exceptions import ConfigurationError
from .logger import REQUIRED_LOG_LEVELS, ConsoleLogger, LoggerPlugin, missing_log_levels
from .validation import EventSchemaValidator, EventValidator

DEFAULT_MAX_RETRIES = 0
DEFAULT_RETRY_DELAY_MS = 0
DEFAULT_ENABLE_LOGGING = True

MAX_RETRIES_LIMIT = 100
MAX_RETRY_DELAY_MS = 300_000

INIT_ERROR_PREFIX = "Failed to initialize EventBus"


@dataclass
class EventBusConfig:
    """
    Merged and validated EventBus options.

    Attributes:
        max_retries: Extra attempts per handler after the first (0-100)
        retry_delay: Fixed pause between attempts in milliseconds (0-300000)
        enable_logging: Whether publish and handler diagnostics are logged
        logger: Logger implementing info, warn, error, fatal and debug
        validator: Object with a ``validate(event)`` method
    """

    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay: float = DEFAULT_RETRY_DELAY_MS
    enable_logging: bool = DEFAULT_ENABLE_LOGGING
    logger: LoggerPlugin = field(default_factory=ConsoleLogger)
    validator: EventValidator = field(default_factory=EventSchemaValidator)

    def __post_init__(self) -> None:
        self._check_count("Max retries", self.max_retries, MAX_RETRIES_LIMIT)
        self._check_delay("Retry delay", self.retry_delay, MAX_RETRY_DELAY_MS)

        if missing_log_levels(self.logger):
            raise _init_error(
                f"Logger must implement all required methods: {', '.join(REQUIRED_LOG_LEVELS)}"
            )

        if not callable(getattr(self.validator, "validate", None)):
            raise _init_error("Validator must implement validate()")

    @classmethod
    def from_options(
        cls,
        max_retries: int | None = None,
        retry_delay: float | None = None,
        enable_logging: bool | None = None,
        logger: LoggerPlugin | None = None,
        validator: EventValidator | None = None,
    ) -> EventBusConfig:
        """
        Merge caller options with the defaults.

        None means "not given" for every option.

        Raises:
            ConfigurationError: If the merged options are invalid
        """
        return cls(
            max_retries=DEFAULT_MAX_RETRIES if max_retries is None else max_retries,
            retry_delay=DEFAULT_RETRY_DELAY_MS if retry_delay is None else retry_delay,
            enable_logging=DEFAULT_ENABLE_LOGGING if enable_logging is None else enable_logging,
            logger=logger if logger is not None else ConsoleLogger(),
            validator=validator if validator is not None else EventSchemaValidator(),
        )

    @staticmethod
    def _check_count(name: str, value: Any, limit: int) -> None:
        if isinstance(value, bool) or not isinstance(value, int):
            raise _init_error(f"{name} must be an integer, got: {value!r}")
        _check_range(name, value, limit)

    @staticmethod
    def _check_delay(name: str, value: Any, limit: int) -> None:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise _init_error(f"{name} must be a number, got: {value!r}")
        if not math.isfinite(value):
            raise _init_error(f"{name} must be finite, got: {value}")
        _check_range(name, value, limit, unit="ms")


def _check_range(name: str, value: float, limit: int, unit: str = "") -> None:
    if value < 0:
        raise _init_error(f"{name} must be non-negative, got: {value}")
    if value > limit:
        raise _init_error(
            f"{name} exceeds maximum allowed value of {limit}{unit}, got: {value}{unit}"
        )


def _init_error(message: str) -> ConfigurationError:
    return ConfigurationError(f"{INIT_ERROR_PREFIX}: {message}")
