"""
UTC DateTime Utilities for Casedesk.

Evaluation instants are timezone-aware UTC datetimes. Case facts are
calendar dates. These helpers convert between the two and parse the
ISO-8601 strings used at the JSON boundary.
"""

from datetime import date, datetime, timezone
from typing import Optional, Union


def utc_now() -> datetime:
    """
    Get current UTC time as timezone-aware datetime.

    Only the HTTP adapter calls this. Engines always receive the
    evaluation instant as an argument.
    """
    return datetime.now(timezone.utc)


def to_utc(dt: datetime) -> datetime:
    """
    Convert a datetime to UTC timezone-aware datetime.

    - If naive: assumes UTC and adds timezone
    - If aware: converts to UTC
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_iso(iso_string: str) -> datetime:
    """
    Parse ISO 8601 datetime string to timezone-aware UTC datetime.

    Handles:
    - "2025-12-08T03:00:00Z"
    - "2025-12-08T03:00:00+00:00"
    - "2025-12-08T03:00:00" (assumes UTC)
    - "2025-12-08" (midnight UTC)
    """
    cleaned = iso_string.strip().replace("Z", "+00:00")
    return to_utc(datetime.fromisoformat(cleaned))


def parse_date(value: Union[str, date, datetime, None]) -> Optional[date]:
    """
    Coerce a boundary value into a calendar date.

    Accepts date objects, datetimes (converted to their UTC date) and
    ISO strings with or without a time part. Returns None for None or
    blank strings; raises ValueError for anything unparseable.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_utc(value).date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        if not value.strip():
            return None
        if len(value.strip()) == 10:
            return date.fromisoformat(value.strip())
        return parse_iso(value).date()
    raise ValueError(f"Unsupported date value: {value!r}")


def as_of_date(now: Union[date, datetime]) -> date:
    """Calendar date of an evaluation instant (UTC)."""
    if isinstance(now, datetime):
        return to_utc(now).date()
    return now


def iso_date(value: Optional[date]) -> Optional[str]:
    """Serialize a date for the boundary; None stays None."""
    return value.isoformat() if value else None


def iso_datetime(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime as ISO 8601 with Z suffix."""
    if value is None:
        return None
    return to_utc(value).isoformat().replace("+00:00", "Z")
