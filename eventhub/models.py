"""SQLAlchemy models for EventHub."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
)
from sqlalchemy.orm import declarative_base, relationship

from .utils import utcnow

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return utcnow()


class Role(str, enum.Enum):
    """Authorization roles. Display labels live on ``User.role_label``."""

    USER = "user"
    COMMUNITY = "community"
    ADMIN = "admin"
    SUPERADMIN = "superadmin"


class EventStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"


class NotificationType(str, enum.Enum):
    EVENT_APPROVED = "event_approved"
    EVENT_REJECTED = "event_rejected"
    NEW_EVENT = "new_event"
    EVENT_DELETED = "event_deleted"


class ReportStatus(str, enum.Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    REVIEWED = "reviewed"


liked_events = Table(
    "liked_events",
    Base.metadata,
    Column(
        "user_id",
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "event_id",
        String(36),
        ForeignKey("events.id", ondelete="CASCADE"),
        primary_key=True,
    ),
)


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(120), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    role = Column(String(16), nullable=False, default=Role.USER.value)
    role_label = Column(String(120), nullable=False, default="")
    community_name = Column(String(255), nullable=False, default="")
    api_token = Column(String(128), nullable=False, unique=True)
    created_at = Column(DateTime, default=_now, nullable=False)

    events = relationship("Event", back_populates="creator")
    liked = relationship("Event", secondary=liked_events, back_populates="liked_by")
    notifications = relationship(
        "Notification",
        back_populates="recipient",
        cascade="all, delete-orphan",
        order_by="desc(Notification.created_at)",
    )

    def has_role(self, *roles: Role) -> bool:
        return self.role in {role.value for role in roles}


class Event(Base):
    __tablename__ = "events"

    id = Column(String(36), primary_key=True, default=_uuid)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    date = Column(DateTime, nullable=False)
    location = Column(String(255), nullable=False)
    image_url = Column(String(512), nullable=False, default="")
    category = Column(String(120), nullable=False)
    coordinators = Column(JSON, nullable=False, default=list)
    links = Column(JSON, nullable=False, default=list)
    status = Column(String(16), nullable=False, default=EventStatus.PENDING.value)
    creator_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    attendees = Column(Integer, nullable=False, default=0)
    rejection_reason = Column(Text, nullable=False, default="")
    deletion_requested = Column(Boolean, nullable=False, default=False)
    deletion_reason = Column(Text, nullable=False, default="")
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    creator = relationship("User", back_populates="events")
    sub_events = relationship(
        "SubEvent",
        back_populates="event",
        cascade="all, delete-orphan",
        order_by="SubEvent.position",
    )
    registrations = relationship(
        "Registration",
        primaryjoin="and_(Event.id == Registration.event_id, "
        "Registration.sub_event_id.is_(None))",
        order_by="Registration.registered_at",
        viewonly=True,
    )
    all_registrations = relationship(
        "Registration",
        back_populates="event",
        cascade="all, delete-orphan",
    )
    liked_by = relationship("User", secondary=liked_events, back_populates="liked")
    report = relationship(
        "Report", back_populates="event", cascade="all, delete-orphan", uselist=False
    )

    def find_sub_event(self, sub_event_id: str | None) -> SubEvent | None:
        if not sub_event_id:
            return None
        for sub_event in self.sub_events:
            if sub_event.id == sub_event_id:
                return sub_event
        return None

    @property
    def registration_total(self) -> int:
        """Count registrations across the main event and every sub-event."""
        return len(self.registrations) + sum(
            len(sub_event.registrations) for sub_event in self.sub_events
        )


class SubEvent(Base):
    __tablename__ = "sub_events"

    id = Column(String(36), primary_key=True, default=_uuid)
    event_id = Column(
        String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    position = Column(Integer, nullable=False, default=0)
    name = Column(String(255), nullable=False)
    date = Column(DateTime, nullable=False)
    venue = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    rules = Column(Text, nullable=False, default="")
    coordinators = Column(JSON, nullable=False, default=list)
    fee = Column(Float, nullable=False, default=0.0)
    prize = Column(String(255), nullable=False, default="")

    event = relationship("Event", back_populates="sub_events")
    registrations = relationship(
        "Registration",
        back_populates="sub_event",
        order_by="Registration.registered_at",
        cascade="all, delete-orphan",
    )


class Registration(Base):
    __tablename__ = "registrations"

    id = Column(String(36), primary_key=True, default=_uuid)
    event_id = Column(
        String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    sub_event_id = Column(
        String(36), ForeignKey("sub_events.id", ondelete="CASCADE"), nullable=True
    )
    name = Column(String(120), nullable=False)
    email = Column(String(255), nullable=False)
    phone = Column(String(32), nullable=False)
    institute_name = Column(String(255), nullable=False)
    degree = Column(String(120), nullable=False)
    branch = Column(String(120), nullable=False)
    year = Column(String(16), nullable=False)
    transaction_id = Column(String(120), nullable=False)
    registered_at = Column(DateTime, default=_now, nullable=False)

    event = relationship("Event", back_populates="all_registrations")
    sub_event = relationship("SubEvent", back_populates="registrations")


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=_uuid)
    recipient_id = Column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    message = Column(Text, nullable=False)
    type = Column(String(32), nullable=False)
    related_event_id = Column(String(36), nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)
    rejection_reason = Column(Text, nullable=False, default="")
    created_at = Column(DateTime, default=_now, nullable=False)

    recipient = relationship("User", back_populates="notifications")


class Report(Base):
    __tablename__ = "reports"

    id = Column(String(36), primary_key=True, default=_uuid)
    event_id = Column(
        String(36),
        ForeignKey("events.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    creator_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    status = Column(String(16), nullable=False, default=ReportStatus.DRAFT.value)
    highlights = Column(Text, nullable=False, default="")
    feedback = Column(Text, nullable=False, default="")
    notes = Column(Text, nullable=False, default="")
    photos = Column(JSON, nullable=False, default=list)
    event_details = Column(JSON, nullable=False, default=dict)
    participant_data = Column(JSON, nullable=False, default=dict)
    submitted_at = Column(DateTime, nullable=True)
    reviewed_by_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    review_comments = Column(Text, nullable=False, default="")
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    event = relationship("Event", back_populates="report")
    creator = relationship("User", foreign_keys=[creator_id])
    reviewed_by = relationship("User", foreign_keys=[reviewed_by_id])
