"""
Lenient timestamp coercion shared by the record normalizers and classifiers.

Malformed values are discarded (``None``) rather than raised: a bad timestamp
on one record must never take down a dashboard.
"""
from datetime import datetime, timezone
from typing import Any, Optional


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes, convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _to_utc_or_none(value: datetime) -> Optional[datetime]:
    try:
        return ensure_utc(value)
    except (OverflowError, ValueError):
        return None


def coerce_datetime(value: Any) -> Optional[datetime]:
    """
    Parse a datetime or ISO-8601 string into an aware UTC datetime.

    Returns None for empty, non-string or unparseable input, and for values
    that fall outside the representable range once shifted to UTC.
    """
    if isinstance(value, datetime):
        return _to_utc_or_none(value)
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return _to_utc_or_none(parsed)


def normalize_iso(value: Any) -> Optional[str]:
    """
    Normalize a timestamp to a fixed-width UTC ISO-8601 string.

    Fixed width (always microseconds, always +00:00) keeps lexical order equal
    to chronological order.
    """
    parsed = coerce_datetime(value)
    if parsed is None:
        return None
    return parsed.isoformat(timespec="microseconds")


def hours_between(earlier: datetime, later: datetime) -> float:
    return (ensure_utc(later) - ensure_utc(earlier)).total_seconds() / 3600.0


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
