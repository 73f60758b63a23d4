"""Plainify stored values before they cross the storage boundary.

Documents read from the document store may carry store-specific timestamp
wrappers. Everything returned to callers outside the storage layer goes through
:func:`plainify` so it contains only JSON primitives, lists, dicts, and
ISO-8601 strings.
"""

from __future__ import annotations

from collections.abc import Collection, Mapping
from datetime import datetime
from typing import Any

from tracevault.utils.timestamps import format_timestamp, from_epoch


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _timestamp_like(value: Any, *, mappings: bool = True) -> str | None:
    """Return an ISO string when ``value`` quacks like a timestamp, else None."""
    if isinstance(value, datetime):
        return format_timestamp(value)

    to_datetime = getattr(value, "to_datetime", None)
    if callable(to_datetime):
        try:
            return format_timestamp(to_datetime())
        except (TypeError, ValueError, OverflowError):
            return None

    if mappings and isinstance(value, Mapping) and _is_number(value.get("seconds")):
        nanos = value.get("nanoseconds", value.get("_nanoseconds", 0))
        if not _is_number(nanos):
            nanos = 0
        try:
            return format_timestamp(from_epoch(int(value["seconds"]), int(nanos)))
        except (OverflowError, OSError, ValueError):
            return None

    return None


def plainify(value: Any, *, mappings: bool = True) -> Any:
    """Recursively convert ``value`` into primitive, serialisable form.

    Primitives are returned untouched, timestamp-like values (datetimes,
    objects exposing ``to_datetime()``, or mappings with numeric
    ``seconds``/``nanoseconds``) become ISO-8601 strings, and sequences and
    mappings are walked element by element.

    Pass ``mappings=False`` for caller-supplied payloads: only native
    timestamp objects are converted and every mapping is kept as a mapping.
    """
    if value is None:
        return None
    if isinstance(value, (str, bool, int, float)):
        return value

    converted = _timestamp_like(value, mappings=mappings)
    if converted is not None:
        return converted

    if isinstance(value, (list, tuple)):
        return [plainify(item, mappings=mappings) for item in value]
    if isinstance(value, Mapping):
        return {str(key): plainify(item, mappings=mappings) for key, item in value.items()}
    return str(value)


def plainify_document(
    document: Mapping[str, Any] | None,
    *,
    timestamp_fields: Collection[str] | None = None,
) -> dict[str, Any] | None:
    """Plainify the top-level fields of a stored document.

    When ``timestamp_fields`` is given, only those fields may be read as
    ``{seconds, nanoseconds}`` mappings; the rest keep their mappings intact.
    """
    if document is None:
        return None
    return {
        str(key): plainify(
            item, mappings=timestamp_fields is None or key in timestamp_fields
        )
        for key, item in document.items()
    }
