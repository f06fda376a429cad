"""Event lifecycle: creation, edits, approval, and the deletion workflow.

Status moves ``pending -> approved | rejected`` (superadmin only) and
``approved -> completed`` (creator only, through :func:`update_event`).
A rejected event can no longer be edited. Deletion is a separate flag: the
creator asks, a superadmin approves, and the row is removed. Every operation
checks the caller's role and ownership itself.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .errors import ForbiddenError, NotFoundError, ValidationError
from .models import Event, EventStatus, NotificationType, Role, SubEvent, User
from .notifications import fan_out_to_role, notify_one
from .realtime import push_to_all, push_to_user
from .serializers import serialize_event
from .utils import to_naive_utc, utcnow

logger = logging.getLogger("uvicorn.error")

EDITABLE_FIELDS = (
    "title",
    "description",
    "date",
    "location",
    "image_url",
    "category",
    "coordinators",
    "links",
)
REQUIRED_TEXT_FIELDS = ("title", "description", "location", "category")
REVIEW_STATUSES = {EventStatus.APPROVED.value, EventStatus.REJECTED.value}


def ensure_event(session: Session, event_id: str) -> Event:
    event = session.get(Event, event_id)
    if not event:
        raise NotFoundError("Event not found")
    return event


def _is_creator(caller: User | None, event: Event) -> bool:
    return caller is not None and caller.id == event.creator_id


def _is_superadmin(caller: User | None) -> bool:
    return caller is not None and caller.has_role(Role.SUPERADMIN)


def _clean_text(field: str, value: Any) -> str:
    cleaned = str(value or "").strip()
    if not cleaned:
        raise ValidationError(f"{field} is required")
    return cleaned


def _clean_pairs(raw: Any, keys: tuple[str, str], field: str) -> list[dict]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError(f"{field} must be a list")
    cleaned = []
    for item in raw:
        if not isinstance(item, dict):
            raise ValidationError(f"{field} entries must be objects")
        cleaned.append({key: str(item.get(key) or "").strip() for key in keys})
    return cleaned


def _clean_date(field: str, value: Any) -> datetime:
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError as exc:
            raise ValidationError(f"Invalid {field}; use ISO8601 format") from exc
    if not isinstance(value, datetime):
        raise ValidationError(f"{field} is required")
    return to_naive_utc(value)


def _build_sub_event(position: int, raw: dict) -> SubEvent:
    fee = raw.get("fee") or 0
    try:
        fee = float(fee)
    except (TypeError, ValueError) as exc:
        raise ValidationError("Sub-event fee must be a number") from exc
    if fee < 0:
        raise ValidationError("Sub-event fee cannot be negative")
    return SubEvent(
        position=position,
        name=_clean_text("Sub-event name", raw.get("name")),
        date=_clean_date("sub-event date", raw.get("date")),
        venue=_clean_text("Sub-event venue", raw.get("venue")),
        description=_clean_text("Sub-event description", raw.get("description")),
        rules=(raw.get("rules") or "").strip(),
        coordinators=_clean_pairs(
            raw.get("coordinators"), ("name", "contact"), "coordinators"
        ),
        fee=fee,
        prize=(raw.get("prize") or "").strip(),
    )


def create_event(
    session: Session,
    caller: User,
    *,
    title: str,
    description: str,
    date: datetime | str,
    location: str,
    category: str,
    image_url: str | None = None,
    coordinators: list[dict] | None = None,
    links: list[dict] | None = None,
    sub_events: list[dict] | None = None,
) -> Event:
    """Create a pending event owned by ``caller``; communities only."""
    if not caller.has_role(Role.COMMUNITY):
        raise ForbiddenError("Only community users can create events")

    event = Event(
        title=_clean_text("title", title),
        description=_clean_text("description", description),
        date=_clean_date("date", date),
        location=_clean_text("location", location),
        category=_clean_text("category", category),
        image_url=(image_url or "").strip(),
        coordinators=_clean_pairs(coordinators, ("name", "contact"), "coordinators"),
        links=_clean_pairs(links, ("title", "url"), "links"),
        status=EventStatus.PENDING.value,
        creator=caller,
        attendees=0,
        rejection_reason="",
        deletion_requested=False,
        deletion_reason="",
    )
    event.sub_events = [
        _build_sub_event(position, raw) for position, raw in enumerate(sub_events or [])
    ]
    session.add(event)
    session.flush()
    logger.info("Event %s (%s) created by %s", event.id, event.title, caller.id)
    push_to_all(session, "event_created", serialize_event(event))
    return event


def update_event(
    session: Session, caller: User, event_id: str, changes: dict[str, Any]
) -> Event:
    """Apply a partial update from the event's creator.

    ``status`` may only be moved to ``completed``, and only from ``approved``.
    """
    event = ensure_event(session, event_id)
    if not _is_creator(caller, event):
        raise ForbiddenError("Not authorized to update this event")
    if event.status == EventStatus.REJECTED.value:
        raise ValidationError(f"Cannot update event with status: {event.status}")

    if "status" in changes and changes["status"] is not None:
        target = changes["status"]
        if target != EventStatus.COMPLETED.value:
            raise ValidationError("Event status can only be changed to completed")
        if event.status != EventStatus.APPROVED.value:
            raise ValidationError("Only approved events can be marked completed")
        event.status = EventStatus.COMPLETED.value

    for field in EDITABLE_FIELDS:
        if field not in changes or changes[field] is None:
            continue
        value = changes[field]
        if field in REQUIRED_TEXT_FIELDS:
            value = _clean_text(field, value)
        elif field == "date":
            value = _clean_date(field, value)
        elif field == "coordinators":
            value = _clean_pairs(value, ("name", "contact"), field)
        elif field == "links":
            value = _clean_pairs(value, ("title", "url"), field)
        elif field == "image_url":
            value = (value or "").strip()
        setattr(event, field, value)

    event.updated_at = utcnow()
    session.add(event)
    session.flush()
    payload = serialize_event(event)
    push_to_all(session, "event_created", payload)
    push_to_user(session, event.creator_id, "event_created", payload)
    return event


def set_status(
    session: Session,
    caller: User,
    event_id: str,
    status: str,
    rejection_reason: str | None = None,
) -> Event:
    """Approve or reject a pending event and notify the people affected."""
    if not _is_superadmin(caller):
        raise ForbiddenError("Only superadmins can approve or reject events")
    if status not in REVIEW_STATUSES:
        raise ValidationError("Invalid status. Must be approved or rejected")
    reason = (rejection_reason or "").strip()
    if status == EventStatus.REJECTED.value and not reason:
        raise ValidationError("Rejection reason is required")

    event = ensure_event(session, event_id)
    if event.status != EventStatus.PENDING.value:
        raise ValidationError(
            f"Only pending events can be reviewed; this event is {event.status}"
        )

    event.status = status
    event.rejection_reason = reason if status == EventStatus.REJECTED.value else ""
    event.updated_at = utcnow()
    session.add(event)
    session.flush()

    if status == EventStatus.APPROVED.value:
        notify_one(
            session,
            recipient_id=event.creator_id,
            message=f'Your event "{event.title}" has been approved.',
            type=NotificationType.EVENT_APPROVED,
            related_event_id=event.id,
        )
        fan_out_to_role(
            session,
            role=Role.USER,
            message=f'New event coming soon: "{event.title}"',
            type=NotificationType.NEW_EVENT,
            related_event_id=event.id,
        )
    else:
        notify_one(
            session,
            recipient_id=event.creator_id,
            message=f'Your event "{event.title}" has been rejected.',
            type=NotificationType.EVENT_REJECTED,
            related_event_id=event.id,
            rejection_reason=reason,
        )

    logger.info("Event %s marked %s by %s", event.id, status, caller.id)
    payload = serialize_event(event)
    push_to_all(session, "event_status_updated", payload)
    push_to_all(session, "event_created", payload)
    return event


def request_deletion(
    session: Session, caller: User, event_id: str, reason: str | None = None
) -> Event:
    """Flag an event for deletion; its status is left as it was."""
    event = ensure_event(session, event_id)
    if not _is_creator(caller, event):
        raise ForbiddenError("Not authorized to request deletion for this event")
    event.deletion_requested = True
    event.deletion_reason = (reason or "").strip() or "No reason provided"
    event.updated_at = utcnow()
    session.add(event)
    session.flush()
    logger.info("Deletion requested for event %s by %s", event.id, caller.id)
    push_to_all(session, "deletion_requested", serialize_event(event))
    return event


def approve_deletion(session: Session, caller: User, event_id: str) -> str:
    """Hard-delete an event whose creator asked for it; returns the creator id."""
    if not _is_superadmin(caller):
        raise ForbiddenError("Not authorized to approve deletion requests")
    event = ensure_event(session, event_id)
    if not event.deletion_requested:
        raise ValidationError("No deletion request exists for this event")

    creator_id = event.creator_id
    title = event.title
    session.delete(event)
    session.flush()

    notify_one(
        session,
        recipient_id=creator_id,
        message=f'Your event "{title}" has been deleted successfully.',
        type=NotificationType.EVENT_DELETED,
        related_event_id=event_id,
    )
    logger.info("Deletion of event %s approved by %s", event_id, caller.id)
    push_to_all(session, "event_deleted", event_id)
    push_to_user(session, creator_id, "event_deleted", event_id)
    push_to_all(session, "deletion_request_resolved", {"event_id": event_id})
    return creator_id


def delete_event(session: Session, caller: User, event_id: str) -> None:
    """Superadmin hard delete, with or without a pending request."""
    if not _is_superadmin(caller):
        raise ForbiddenError(
            "Not authorized to delete this event. Community users must request deletion."
        )
    event = ensure_event(session, event_id)
    creator_id = event.creator_id
    session.delete(event)
    session.flush()
    logger.info("Event %s deleted by %s", event_id, caller.id)
    push_to_all(session, "event_deleted", event_id)
    push_to_user(session, creator_id, "event_deleted", event_id)


def can_view(caller: User | None, event: Event) -> bool:
    if event.status == EventStatus.APPROVED.value:
        return True
    return _is_superadmin(caller) or _is_creator(caller, event)


def get_event(session: Session, caller: User | None, event_id: str) -> Event:
    event = ensure_event(session, event_id)
    if not can_view(caller, event):
        raise ForbiddenError("Access denied")
    return event


def list_events(
    session: Session,
    caller: User | None,
    *,
    status: str | None = None,
    creator_id: str | None = None,
) -> Sequence[Event]:
    """List events visible to ``caller``, soonest first.

    Superadmins may filter by any status; everyone else only sees approved
    events.
    """
    stmt = select(Event).order_by(Event.date.asc())
    if status is not None and status not in {s.value for s in EventStatus}:
        raise ValidationError(f"Invalid status filter: {status}")

    if not _is_superadmin(caller):
        stmt = stmt.where(Event.status == EventStatus.APPROVED.value)
    elif status:
        stmt = stmt.where(Event.status == status)
    if creator_id:
        stmt = stmt.where(Event.creator_id == creator_id)
    return session.scalars(stmt).all()


def list_my_events(session: Session, caller: User) -> Sequence[Event]:
    if not caller.has_role(Role.COMMUNITY):
        raise ForbiddenError("Access denied")
    stmt = (
        select(Event)
        .where(Event.creator_id == caller.id)
        .order_by(Event.created_at.desc())
    )
    return session.scalars(stmt).all()


def list_deletion_requests(session: Session, caller: User) -> Sequence[Event]:
    if not _is_superadmin(caller):
        raise ForbiddenError("Not authorized to view deletion requests")
    stmt = (
        select(Event)
        .where(Event.deletion_requested.is_(True))
        .order_by(Event.updated_at.desc())
    )
    return session.scalars(stmt).all()


def event_counts(session: Session, *, now: datetime | None = None) -> dict[str, int]:
    """Bucket approved events into upcoming, ongoing (today) and completed."""
    now = now or utcnow()
    today = now.date()
    counts = {"upcoming": 0, "ongoing": 0, "completed": 0, "total": 0}
    dates = session.scalars(
        select(Event.date).where(Event.status == EventStatus.APPROVED.value)
    ).all()
    for event_date in dates:
        counts["total"] += 1
        if event_date.date() == today:
            counts["ongoing"] += 1
        elif event_date < now:
            counts["completed"] += 1
        else:
            counts["upcoming"] += 1
    return counts


def status_counts(session: Session) -> dict[str, int]:
    """Return how many events sit in each lifecycle status."""
    counts = {status.value: 0 for status in EventStatus}
    rows = session.execute(
        select(Event.status, func.count()).group_by(Event.status)
    ).all()
    for status, count in rows:
        counts[status] = count
    counts["total"] = sum(counts.values())
    return counts


def like_event(session: Session, caller: User, event_id: str) -> None:
    event = ensure_event(session, event_id)
    if event.status != EventStatus.APPROVED.value:
        raise ValidationError("Cannot like an event that is not approved")
    if event in caller.liked:
        raise ValidationError("Event already liked")
    caller.liked.append(event)
    session.flush()


def unlike_event(session: Session, caller: User, event_id: str) -> None:
    event = ensure_event(session, event_id)
    if event not in caller.liked:
        raise ValidationError("Event not liked yet")
    caller.liked.remove(event)
    session.flush()


def list_liked_events(session: Session, caller: User) -> list[Event]:
    return [e for e in caller.liked if e.status == EventStatus.APPROVED.value]
