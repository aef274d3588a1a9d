"""
Event enrichment.

Turns the partial event a producer hands to ``EventBus.publish`` into a full
Event by generating the fields the producer is not expected to know. Values
the producer supplied are never overwritten.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import fields as dataclass_fields
from typing import Any

from .events import DEFAULT_VERSION, Event, Priority, utc_now_iso

_GENERATED_FIELDS = ("event_id", "timestamp", "version")


def generate_event_id() -> str:
    """Generate a UUID-v4 event ID."""
    return str(uuid.uuid4())


def _is_absent(value: Any) -> bool:
    return value is None or value == ""


def _defaults() -> dict[str, Any]:
    return {
        "event_id": generate_event_id(),
        "timestamp": utc_now_iso(),
        "version": DEFAULT_VERSION,
    }


def enrich(partial: Mapping[str, Any] | Event) -> Event:
    """
    Fill in missing required fields of a partial event.

    Generates ``event_id`` (UUID-v4), ``timestamp`` (now, UTC) and
    ``version`` ("1.0") when absent, and merges ``priority="normal"`` and
    ``retry_count=0`` into the metadata the caller supplied (or into a new
    metadata dict). The caller's mapping is not modified.

    Args:
        partial: Event fields keyed like Event attributes, or an Event

    Returns:
        Enriched Event (not yet validated)
    """
    if isinstance(partial, Event):
        fields = {f.name: getattr(partial, f.name) for f in dataclass_fields(partial)}
    else:
        fields = dict(partial)

    defaults = _defaults()
    for name in _GENERATED_FIELDS:
        if _is_absent(fields.get(name)):
            fields[name] = defaults[name]

    fields["metadata"] = _enrich_metadata(fields.get("metadata"))

    return Event.from_dict(fields)


def _enrich_metadata(metadata: Any) -> Any:
    if metadata is None:
        metadata = {}
    elif isinstance(metadata, Mapping):
        metadata = dict(metadata)
    else:
        # Left for the validator to reject
        return metadata

    if not metadata.get("priority"):
        metadata["priority"] = Priority.NORMAL.value
    if metadata.get("retry_count") is None:
        metadata["retry_count"] = 0

    return metadata
