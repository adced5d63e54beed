"""Time helpers."""

from __future__ import annotations

from datetime import datetime, timezone

# strftime("%b") follows the process locale
_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def format_rfc822(value: datetime) -> str:
    """Format a timestamp as RFC 822 (``02 Jan 06 15:04 UTC``).

    Naive timestamps are treated as UTC. Month names are always English.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return (
        f"{value.day:02d} {_MONTHS[value.month - 1]} {value.year % 100:02d} "
        f"{value.hour:02d}:{value.minute:02d} {value.tzname()}"
    )


def from_unix(seconds: int) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def to_unix(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())
