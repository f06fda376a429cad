"""Post-event reports written by communities and reviewed by superadmins."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from .errors import ForbiddenError, NotFoundError, ValidationError
from .models import Event, EventStatus, Registration, Report, ReportStatus, Role, User
from .realtime import push_to_all, push_to_user
from .serializers import serialize_report
from .utils import utcnow

logger = logging.getLogger("uvicorn.error")

EDITABLE_FIELDS = ("highlights", "feedback", "notes", "photos")


def _participant(registration: Registration, role: str) -> dict[str, Any]:
    return {
        "name": registration.name,
        "email": registration.email,
        "phone": registration.phone,
        "institute_name": registration.institute_name,
        "role": role,
        "registered_at": registration.registered_at.isoformat(),
    }


def _snapshot(event: Event) -> tuple[dict, dict]:
    """Freeze the event and its attendance at report creation time."""
    sub_events = []
    sub_participants = []
    for sub in event.sub_events:
        role = f"Sub-Event: {sub.name}"
        people = [_participant(r, role) for r in sub.registrations]
        sub_participants.extend(people)
        sub_events.append(
            {
                "name": sub.name,
                "date": sub.date.isoformat(),
                "venue": sub.venue,
                "description": sub.description,
                "fee": sub.fee,
                "prize": sub.prize,
                "total_registered": len(people),
                "participants": people,
            }
        )
    main = [_participant(r, "Main Event Participant") for r in event.registrations]

    details = {
        "title": event.title,
        "date": event.date.isoformat(),
        "location": event.location,
        "description": event.description,
        "category": event.category,
        "total_likes": len(event.liked_by),
        "sub_events": sub_events,
    }
    participants = {
        "total_registered": len(main) + len(sub_participants),
        "total_main_event_registrations": len(main),
        "total_sub_event_registrations": len(sub_participants),
        "total_attended": event.attendees,
        "participants": main + sub_participants,
    }
    return details, participants


def create_or_get_report(
    session: Session, caller: User, event_id: str
) -> tuple[Report, bool]:
    """Return the event's report, creating a draft on first call.

    The boolean is True when a new report was created.
    """
    event = session.get(Event, event_id)
    if not event or event.creator_id != caller.id:
        raise NotFoundError(
            "Event not found or you do not have permission to access it"
        )
    if not caller.has_role(Role.COMMUNITY):
        raise ForbiddenError("Only community users can write reports")
    if event.status != EventStatus.COMPLETED.value:
        raise ValidationError(
            "Cannot create a report for an event that is not completed"
        )
    if event.report is not None:
        return event.report, False

    details, participants = _snapshot(event)
    report = Report(
        event=event,
        creator_id=caller.id,
        status=ReportStatus.DRAFT.value,
        event_details=details,
        participant_data=participants,
        highlights=(
            f"{event.title} was successfully held on {event.date:%Y-%m-%d}."
        ),
        feedback="",
        notes="",
        photos=[],
    )
    session.add(report)
    session.flush()
    logger.info("Report %s created for event %s", report.id, event.id)
    return report, True


def list_my_reports(session: Session, caller: User) -> Sequence[Report]:
    stmt = (
        select(Report)
        .where(Report.creator_id == caller.id)
        .order_by(Report.created_at.desc())
    )
    return session.scalars(stmt).all()


def _load(session: Session, report_id: str) -> Report:
    report = session.get(Report, report_id)
    if not report:
        raise NotFoundError("Report not found")
    return report


def get_report(session: Session, caller: User, report_id: str) -> Report:
    report = _load(session, report_id)
    if report.creator_id != caller.id and not caller.has_role(Role.SUPERADMIN):
        raise ForbiddenError("You do not have permission to access this report")
    return report


def update_report(
    session: Session, caller: User, report_id: str, changes: dict[str, Any]
) -> Report:
    report = _load(session, report_id)
    if report.creator_id != caller.id:
        raise ForbiddenError("You do not have permission to update this report")
    for field in EDITABLE_FIELDS:
        if field not in changes or changes[field] is None:
            continue
        value = changes[field]
        if field == "photos":
            if not isinstance(value, list):
                raise ValidationError("photos must be a list of URLs")
            value = [str(url) for url in value]
        setattr(report, field, value)
    report.updated_at = utcnow()
    session.flush()
    return report


def submit_report(session: Session, caller: User, report_id: str) -> Report:
    """Mark a report submitted and alert every superadmin."""
    report = _load(session, report_id)
    if report.creator_id != caller.id:
        raise ForbiddenError("You do not have permission to submit this report")
    report.status = ReportStatus.SUBMITTED.value
    report.submitted_at = utcnow()
    session.flush()

    title = (report.event_details or {}).get("title", "Unknown Event")
    payload = serialize_report(report)
    push_to_all(session, "new_report_submitted", payload)
    superadmins = session.scalars(
        select(User.id).where(User.role == Role.SUPERADMIN.value)
    ).all()
    for admin_id in superadmins:
        push_to_user(
            session,
            admin_id,
            "new_report_notification",
            {
                "message": f"New report submitted for event: {title}",
                "report_id": report.id,
            },
        )
    logger.info("Report %s submitted by %s", report.id, caller.id)
    return report


def list_all_reports(session: Session, caller: User) -> Sequence[Report]:
    if not caller.has_role(Role.SUPERADMIN):
        raise ForbiddenError("You do not have permission to access all reports")
    return session.scalars(select(Report).order_by(Report.created_at.desc())).all()


def review_report(
    session: Session, caller: User, report_id: str, comments: str | None = None
) -> Report:
    if not caller.has_role(Role.SUPERADMIN):
        raise ForbiddenError("You do not have permission to review reports")
    report = _load(session, report_id)
    report.status = ReportStatus.REVIEWED.value
    report.reviewed_by_id = caller.id
    report.reviewed_at = utcnow()
    report.review_comments = (comments or "").strip()
    session.flush()

    title = (report.event_details or {}).get("title", "Unknown Event")
    push_to_all(session, "report_updated", serialize_report(report))
    push_to_user(
        session,
        report.creator_id,
        "report_reviewed",
        {
            "message": f"Your report for event {title} has been reviewed",
            "report_id": report.id,
        },
    )
    return report
