"""Timestamp coercion for Firestore documents.

Firestore fields written by different clients hold datetimes as
DatetimeWithNanoseconds, ``{"seconds": ..., "nanoseconds": ...}`` maps
(JSON exports), ISO-8601 strings, or epoch milliseconds. safe_datetime()
turns any of them into an aware UTC datetime.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date, datetime, time, timezone
from typing import Any


def safe_datetime(value: Any) -> datetime | None:
    """Coerce a stored timestamp into an aware UTC datetime, or None if unparseable."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        # Epoch milliseconds (JS Date.now()) vs seconds
        seconds = value / 1000 if abs(value) > 1e11 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, Mapping):
        seconds = value.get("seconds", value.get("_seconds"))
        nanos = value.get("nanoseconds", value.get("_nanoseconds", 0)) or 0
        if isinstance(seconds, bool) or not isinstance(seconds, (int, float)):
            return None
        if isinstance(nanos, bool) or not isinstance(nanos, (int, float)):
            return None
        try:
            return datetime.fromtimestamp(seconds + nanos / 1e9, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    to_datetime = getattr(value, "to_datetime", None)
    if callable(to_datetime):
        return safe_datetime(to_datetime())
    return None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
