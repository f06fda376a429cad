"""iCalendar (.ics) helpers."""

from __future__ import annotations

import html
import re
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import Event, SubEvent


_tag_pattern = re.compile(r"<[^>]+>")


def _ensure_utc(dt: datetime) -> datetime:
    """Return a timezone-aware UTC datetime."""

    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def _format_utc(dt: datetime) -> str:
    """Format a datetime as an RFC5545 UTC timestamp."""

    return _ensure_utc(dt).replace(microsecond=0).strftime("%Y%m%dT%H%M%SZ")


def _escape_text(value: str | None) -> str:
    """Escape text for ICS fields and strip any HTML tags."""

    if not value:
        return ""
    stripped = _tag_pattern.sub("", html.unescape(value))
    normalized = stripped.replace("\r\n", "\n").replace("\r", "\n")
    escaped = (
        normalized.replace("\\", "\\\\")
        .replace(";", r"\;")
        .replace(",", r"\,")
        .replace("\n", "\\n")
    )
    return escaped


def generate_ics(
    event: Event,
    *,
    sub_event: SubEvent | None = None,
    duration_hours: int = 2,
    now: datetime | None = None,
) -> str:
    """Return ICS text for an event, or for one of its sub-events."""

    dtstamp = _format_utc(now or datetime.now(UTC))
    if sub_event is not None:
        uid = f"{event.id}-{sub_event.id}@eventhub"
        start_source = sub_event.date
        summary = _escape_text(f"{event.title}: {sub_event.name}")
        description = _escape_text(sub_event.description)
        location = _escape_text(sub_event.venue)
    else:
        uid = f"{event.id}@eventhub"
        start_source = event.date
        summary = _escape_text(event.title)
        description = _escape_text(event.description)
        location = _escape_text(event.location)

    start = _format_utc(start_source)
    end = _format_utc(_ensure_utc(start_source) + timedelta(hours=duration_hours))

    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        "PRODID:-//EventHub//EN",
        "BEGIN:VEVENT",
        f"UID:{uid}",
        f"DTSTAMP:{dtstamp}",
        f"DTSTART:{start}",
        f"DTEND:{end}",
        f"SUMMARY:{summary}",
        f"DESCRIPTION:{description}",
        f"LOCATION:{location}",
        "END:VEVENT",
        "END:VCALENDAR",
    ]
    return "\r\n".join(lines) + "\r\n"
