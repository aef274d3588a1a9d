"""
Event schema validation.

Every published event is validated after enrichment and before any handler
runs. The bus accepts any object with a ``validate(event)`` method that
returns a ValidationResult (or an awaitable of one) or raises; this module
provides that contract and the default EventSchemaValidator.

Usage:
    from eventrelay.validation import EventSchemaValidator

    validator = EventSchemaValidator()
    result = await validator.validate(event)
    if not result.is_valid:
        print(result.errors)
"""

from __future__ import annotations

import re
import uuid
from collections.abc import Awaitable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from .events import PRIORITY_LEVELS, Event
from .exceptions import ConfigurationError

# Context.EventName with one or more dots: User.Created, User-Account.Profile.Updated
EVENT_TYPE_PATTERN = re.compile(r"[a-zA-Z0-9][a-zA-Z0-9-]*(?:\.[a-zA-Z0-9][a-zA-Z0-9-]*)+")

# major.minor without leading zeros: 1.0, 2.15, 10.3
VERSION_PATTERN = re.compile(r"(?:0|[1-9]\d*)\.(?:0|[1-9]\d*)")

# RFC 3339 date-time; ranges are checked by datetime.fromisoformat
DATE_TIME_PATTERN = re.compile(
    r"\d{4}-\d{2}-\d{2}[Tt ]\d{2}:\d{2}:\d{2}(?:\.\d+)?(?:[Zz]|[+-]\d{2}:\d{2})"
)

UUID_PATTERN = re.compile(
    r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}"
)

REQUIRED_FIELDS = ("event_id", "event_type", "timestamp", "source", "version", "data")

INVALID_INPUT_ERROR = "Event must be object"


@dataclass
class ValidationResult:
    """Result of event validation."""

    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.is_valid and len(self.errors) == 0

    @classmethod
    def from_validator_output(cls, output: Any) -> ValidationResult:
        """
        Normalize what a validator returned.

        None counts as valid. A mapping needs an ``is_valid`` key; any other
        object needs an ``is_valid`` attribute. ``errors`` is optional.

        Raises:
            ConfigurationError: If the output has none of these shapes
        """
        if output is None:
            return cls(is_valid=True)
        if isinstance(output, cls):
            return output

        if isinstance(output, Mapping):
            if "is_valid" not in output:
                raise ConfigurationError(
                    "Validator returned a mapping without an 'is_valid' key"
                )
            is_valid, errors = output["is_valid"], output.get("errors")
        elif hasattr(output, "is_valid"):
            is_valid, errors = output.is_valid, getattr(output, "errors", None)
        else:
            raise ConfigurationError(
                f"Validator returned an unsupported result type: {type(output).__name__}"
            )

        return cls(is_valid=bool(is_valid), errors=[str(e) for e in errors or []])


@runtime_checkable
class EventValidator(Protocol):
    """Contract for validators accepted by EventBus."""

    def validate(self, event: Any) -> ValidationResult | Awaitable[ValidationResult]:
        ...


def is_valid_event_type(event_type: Any) -> bool:
    """Quick check if an event type is well formed."""
    return isinstance(event_type, str) and EVENT_TYPE_PATTERN.fullmatch(event_type) is not None


def is_valid_date_time(value: Any) -> bool:
    """Check an RFC 3339 date-time string, e.g. "2024-05-01T12:00:00.000Z"."""
    if not isinstance(value, str) or not DATE_TIME_PATTERN.fullmatch(value):
        return False
    try:
        datetime.fromisoformat(value.upper().replace("Z", "+00:00"))
    except ValueError:
        return False
    return True


def is_valid_uuid(value: Any) -> bool:
    if not isinstance(value, str) or not UUID_PATTERN.fullmatch(value):
        return False
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


class EventSchemaValidator:
    """
    Validates events against the base event schema.

    Checks, collecting every error rather than stopping at the first:
    - required fields: event_id, event_type, timestamp, source, version, data
    - event_id is a UUID, event_type is Context.EventName, timestamp is an
      RFC 3339 date-time, version is major.minor, source is non-empty, data
      is an object
    - optional correlation_id is a string
    - optional metadata is an object whose priority, retry_count and tags
      are well typed; other metadata keys are allowed

    Usage:
        validator = EventSchemaValidator()
        result = await validator.validate({"event_type": "User.Created"})
        result.errors  # ["Missing required property 'event_id'", ...]
    """

    def __init__(self, event_type_pattern: re.Pattern[str] | None = None):
        """
        Args:
            event_type_pattern: Custom regex for event types (full match)
        """
        self.event_type_pattern = event_type_pattern or EVENT_TYPE_PATTERN

    async def validate(self, event: Any) -> ValidationResult:
        """
        Validate an event.

        Args:
            event: Event instance or its document form

        Returns:
            ValidationResult; never raises for malformed input
        """
        return self.validate_document(event)

    def validate_document(self, event: Any) -> ValidationResult:
        """Synchronous form of validate()."""
        if isinstance(event, Event):
            event = event.to_dict()

        if not isinstance(event, Mapping):
            return ValidationResult(is_valid=False, errors=[INVALID_INPUT_ERROR])

        errors: list[str] = []

        for name in REQUIRED_FIELDS:
            if event.get(name) is None:
                errors.append(f"Missing required property '{name}'")

        self._check_event_id(event.get("event_id"), errors)
        self._check_event_type(event.get("event_type"), errors)
        self._check_timestamp(event.get("timestamp"), errors)
        self._check_source(event.get("source"), errors)
        self._check_version(event.get("version"), errors)

        data = event.get("data")
        if data is not None and not isinstance(data, Mapping):
            errors.append(_type_error("data", "object"))

        correlation_id = event.get("correlation_id")
        if correlation_id is not None and not isinstance(correlation_id, str):
            errors.append(_type_error("correlation_id", "string"))

        metadata = event.get("metadata")
        if metadata is not None:
            self._check_metadata(metadata, errors)

        return ValidationResult(is_valid=not errors, errors=errors)

    def _check_event_id(self, value: Any, errors: list[str]) -> None:
        if value is None:
            return
        if not isinstance(value, str):
            errors.append(_type_error("event_id", "string"))
        elif not is_valid_uuid(value):
            errors.append(_format_error("event_id"))

    def _check_event_type(self, value: Any, errors: list[str]) -> None:
        if value is None:
            return
        if not isinstance(value, str):
            errors.append(_type_error("event_type", "string"))
        elif not self.event_type_pattern.fullmatch(value):
            errors.append(_pattern_error("event_type"))

    def _check_timestamp(self, value: Any, errors: list[str]) -> None:
        if value is None:
            return
        if not isinstance(value, str):
            errors.append(_type_error("timestamp", "string"))
        elif not is_valid_date_time(value):
            errors.append(_format_error("timestamp"))

    def _check_source(self, value: Any, errors: list[str]) -> None:
        if value is None:
            return
        if not isinstance(value, str):
            errors.append(_type_error("source", "string"))
        elif value == "":
            errors.append("Field 'source' must not be empty")

    def _check_version(self, value: Any, errors: list[str]) -> None:
        if value is None:
            return
        if not isinstance(value, str):
            errors.append(_type_error("version", "string"))
        elif not VERSION_PATTERN.fullmatch(value):
            errors.append(_pattern_error("version"))

    def _check_metadata(self, metadata: Any, errors: list[str]) -> None:
        if not isinstance(metadata, Mapping):
            errors.append(_type_error("metadata", "object"))
            return

        retry_count = metadata.get("retry_count")
        if retry_count is not None:
            if isinstance(retry_count, bool) or not isinstance(retry_count, int):
                errors.append(_type_error("metadata/retry_count", "integer"))
            elif retry_count < 0:
                errors.append("Field 'metadata/retry_count' must be >= 0")

        priority = metadata.get("priority")
        if priority is not None and priority not in PRIORITY_LEVELS:
            errors.append(
                f"Field 'metadata/priority' must be one of: {', '.join(PRIORITY_LEVELS)}"
            )

        tags = metadata.get("tags")
        if tags is not None:
            if not isinstance(tags, list):
                errors.append(_type_error("metadata/tags", "array"))
            elif not all(isinstance(tag, str) for tag in tags):
                errors.append("Field 'metadata/tags' contains invalid items")


def _type_error(name: str, expected: str) -> str:
    return f"Field '{name}' must be {expected}"


def _format_error(name: str) -> str:
    return f"Field '{name}' has invalid format"


def _pattern_error(name: str) -> str:
    return f"Field '{name}' does not match required pattern"
