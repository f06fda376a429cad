"""Notification records and their real-time echo."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from .errors import ForbiddenError, NotFoundError, ValidationError
from .models import Notification, NotificationType, Role, User
from .realtime import push_to_user
from .utils import utcnow

logger = logging.getLogger("uvicorn.error")

BROADCAST_ROLES = (Role.COMMUNITY, Role.SUPERADMIN)


def normalize_type(raw: str | NotificationType) -> NotificationType:
    try:
        return NotificationType(raw)
    except ValueError as exc:
        allowed = ", ".join(t.value for t in NotificationType)
        raise ValidationError(
            f"Invalid notification type {raw!r}. Must be one of: {allowed}"
        ) from exc


def serialize_notification(notification: Notification) -> dict:
    return {
        "id": notification.id,
        "recipient_id": notification.recipient_id,
        "message": notification.message,
        "type": notification.type,
        "related_event_id": notification.related_event_id,
        "is_read": notification.is_read,
        "rejection_reason": notification.rejection_reason,
        "created_at": notification.created_at.isoformat(),
    }


def notify_one(
    session: Session,
    *,
    recipient_id: str,
    message: str,
    type: str | NotificationType,
    related_event_id: str | None = None,
    rejection_reason: str | None = None,
) -> Notification:
    """Create one notification and echo it to the recipient's socket."""
    notification_type = normalize_type(type)
    notification = Notification(
        recipient_id=recipient_id,
        message=message,
        type=notification_type.value,
        related_event_id=related_event_id,
        rejection_reason=rejection_reason or "",
        is_read=False,
        created_at=utcnow(),
    )
    session.add(notification)
    session.flush()
    push_to_user(
        session,
        recipient_id,
        "new_notification",
        serialize_notification(notification),
    )
    return notification


def fan_out_to_role(
    session: Session,
    *,
    role: Role,
    message: str,
    type: str | NotificationType,
    related_event_id: str | None = None,
) -> int:
    """Create one notification per account holding ``role``.

    Each record is flushed on its own; a failure part way through leaves the
    earlier records in the session and nothing retries the rest.
    """
    recipients = session.scalars(select(User.id).where(User.role == role.value)).all()
    for recipient_id in recipients:
        notify_one(
            session,
            recipient_id=recipient_id,
            message=message,
            type=type,
            related_event_id=related_event_id,
        )
    logger.info("Fan-out of %r to %d %s account(s)", message, len(recipients), role.value)
    return len(recipients)


def notify_broadcast_to_role(
    session: Session,
    caller: User,
    *,
    message: str,
    role: Role = Role.USER,
    type: str | NotificationType = NotificationType.NEW_EVENT,
) -> int:
    """Caller-initiated broadcast; only communities and superadmins may send."""
    if not caller.has_role(*BROADCAST_ROLES):
        raise ForbiddenError("Not authorized to broadcast")
    cleaned = (message or "").strip()
    if not cleaned:
        raise ValidationError("Message is required")
    return fan_out_to_role(session, role=role, message=cleaned, type=type)


def list_notifications(session: Session, caller: User) -> Sequence[Notification]:
    stmt = (
        select(Notification)
        .where(Notification.recipient_id == caller.id)
        .order_by(Notification.created_at.desc())
    )
    return session.scalars(stmt).all()


def unread_count(session: Session, caller: User) -> int:
    stmt = select(func.count()).where(
        Notification.recipient_id == caller.id, Notification.is_read.is_(False)
    )
    return session.scalar(stmt) or 0


def _owned_notification(
    session: Session, caller: User, notification_id: str, *, action: str
) -> Notification:
    notification = session.get(Notification, notification_id)
    if not notification:
        raise NotFoundError("Notification not found")
    if notification.recipient_id != caller.id:
        raise ForbiddenError(f"Not authorized to {action} this notification")
    return notification


def mark_read(session: Session, caller: User, notification_id: str) -> Notification:
    notification = _owned_notification(
        session, caller, notification_id, action="update"
    )
    notification.is_read = True
    session.add(notification)
    session.flush()
    return notification


def mark_all_read(session: Session, caller: User) -> int:
    result = session.execute(
        update(Notification)
        .where(
            Notification.recipient_id == caller.id,
            Notification.is_read.is_(False),
        )
        .values(is_read=True)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount or 0


def delete_notification(session: Session, caller: User, notification_id: str) -> None:
    notification = _owned_notification(
        session, caller, notification_id, action="delete"
    )
    session.delete(notification)
    session.flush()
