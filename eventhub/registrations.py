"""Attendee registration for events and sub-events."""

from __future__ import annotations

import html
import logging
from dataclasses import dataclass

from sqlalchemy import update
from sqlalchemy.orm import Session

from . import config
from .errors import ForbiddenError, NotFoundError, ValidationError
from .lifecycle import ensure_event
from .mailer import queue_email
from .models import Event, EventStatus, Registration, Role, SubEvent, User
from .utils import google_calendar_url

logger = logging.getLogger("uvicorn.error")

REQUIRED_FIELDS = (
    "name",
    "email",
    "phone",
    "institute_name",
    "degree",
    "branch",
    "year",
    "transaction_id",
)


@dataclass
class RegistrationResult:
    registration: Registration
    calendar_url: str


def _clean_details(details: dict) -> dict[str, str]:
    cleaned = {}
    missing = []
    for field in REQUIRED_FIELDS:
        value = str(details.get(field) or "").strip()
        if not value:
            missing.append(field)
        cleaned[field] = value
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    if "@" not in cleaned["email"]:
        raise ValidationError("Invalid email address")
    return cleaned


def _confirmation_html(
    name: str, title: str, when: str, where: str, calendar_url: str
) -> str:
    return (
        f"<p>Hi {html.escape(name)},</p>"
        f"<p>You are registered for <strong>{html.escape(title)}</strong>.</p>"
        f"<p>When: {html.escape(when)}<br>Where: {html.escape(where)}</p>"
        f'<p><a href="{html.escape(calendar_url)}">Add to Google Calendar</a></p>'
    )


def register(
    session: Session,
    event_id: str,
    sub_event_id: str | None,
    details: dict,
) -> RegistrationResult:
    """Record a registration and bump the event's attendee counter.

    The insert and the conditional increment share one transaction; if the
    event stopped being approved in the meantime the increment matches no
    row and the whole registration is refused.
    """
    event = ensure_event(session, event_id)
    if event.status != EventStatus.APPROVED.value:
        raise ValidationError("Registration is only open for approved events")
    sub_event: SubEvent | None = None
    if sub_event_id:
        sub_event = event.find_sub_event(sub_event_id)
        if sub_event is None:
            raise NotFoundError("Sub-event not found")

    cleaned = _clean_details(details)

    result = session.execute(
        update(Event)
        .where(Event.id == event.id, Event.status == EventStatus.APPROVED.value)
        .values(attendees=Event.attendees + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ValidationError("Registration is only open for approved events")

    registration = Registration(
        event_id=event.id,
        sub_event_id=sub_event.id if sub_event else None,
        **cleaned,
    )
    session.add(registration)
    session.flush()
    session.expire(event)
    if sub_event is not None:
        session.expire(sub_event, ["registrations"])

    if sub_event is not None:
        title = f"{event.title}: {sub_event.name}"
        start, where, about = sub_event.date, sub_event.venue, sub_event.description
    else:
        title = event.title
        start, where, about = event.date, event.location, event.description
    calendar_url = google_calendar_url(
        title=title,
        start=start,
        location=where,
        details=about,
        duration_hours=config.settings.calendar_event_hours,
    )
    queue_email(
        session,
        cleaned["email"],
        f"Registration confirmed: {title}",
        _confirmation_html(
            cleaned["name"],
            title,
            start.strftime("%Y-%m-%d %H:%M UTC"),
            where,
            calendar_url,
        ),
    )
    logger.info(
        "Registration %s for event %s%s",
        registration.id,
        event.id,
        f" (sub-event {sub_event.id})" if sub_event else "",
    )
    return RegistrationResult(registration=registration, calendar_url=calendar_url)


def get_registrations(
    session: Session,
    caller: User,
    event_id: str,
    sub_event_id: str | None = None,
) -> list[Registration]:
    """Registrations for the main event, or for one sub-event."""
    event = ensure_event(session, event_id)
    if caller.id != event.creator_id and not caller.has_role(Role.SUPERADMIN):
        raise ForbiddenError("Not authorized to view registrations")
    if sub_event_id:
        sub_event = event.find_sub_event(sub_event_id)
        if sub_event is None:
            raise NotFoundError("Sub-event not found")
        return list(sub_event.registrations)
    return list(event.registrations)
