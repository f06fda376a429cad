"""Utility helpers for EventHub."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from urllib.parse import urlencode


def utcnow() -> datetime:
    """Return a naive UTC datetime."""

    return datetime.now(UTC).replace(tzinfo=None)


def to_naive_utc(value: datetime | None) -> datetime | None:
    """Normalize aware datetimes to naive UTC; naive values are assumed UTC."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def _calendar_stamp(value: datetime) -> str:
    return value.replace(microsecond=0).strftime("%Y%m%dT%H%M%SZ")


def google_calendar_url(
    *,
    title: str,
    start: datetime,
    location: str | None,
    details: str | None,
    duration_hours: int = 2,
) -> str:
    """Return a Google Calendar "add event" link for the given slot."""

    start_utc = to_naive_utc(start)
    end_utc = start_utc + timedelta(hours=duration_hours)
    query = urlencode(
        {
            "action": "TEMPLATE",
            "text": title,
            "dates": f"{_calendar_stamp(start_utc)}/{_calendar_stamp(end_utc)}",
            "details": details or "",
            "location": location or "",
        }
    )
    return f"https://calendar.google.com/calendar/render?{query}"

