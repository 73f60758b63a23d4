"""UTC timestamp helpers shared by the ledger and the storage adapters."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(UTC)


def truncate_to_millis(value: datetime) -> datetime:
    """Drop sub-millisecond precision (the store's coarse clock resolution)."""
    return value.replace(microsecond=(value.microsecond // 1000) * 1000)


def format_timestamp(value: datetime) -> str:
    """Format ``value`` as a millisecond ISO-8601 string with a ``Z`` suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def format_precise(value: datetime) -> str:
    """Format ``value`` as a microsecond ISO-8601 string with a ``Z`` suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 string (``Z`` or offset suffix) into an aware UTC datetime.

    Raises:
        ValueError: If ``value`` is not ISO-8601
    """
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def from_epoch(seconds: int, nanoseconds: int = 0) -> datetime:
    """Build an aware UTC datetime from integral epoch seconds and nanoseconds."""
    base = datetime.fromtimestamp(int(seconds), UTC)
    return base + timedelta(microseconds=int(nanoseconds) // 1000)


def to_epoch(value: datetime) -> tuple[int, int]:
    """Split ``value`` into integral epoch seconds and nanoseconds."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    epoch = datetime(1970, 1, 1, tzinfo=UTC)
    delta = value - epoch
    seconds = delta.days * 86400 + delta.seconds
    return seconds, delta.microseconds * 1000
