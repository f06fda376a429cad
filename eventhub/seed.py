"""Development helpers for populating fake communities, events and attendees."""

from __future__ import annotations

import random
import secrets
from datetime import datetime, timedelta

from faker import Faker
from sqlalchemy import select
from sqlalchemy.orm import Session

from .database import get_session
from .lifecycle import create_event, set_status
from .models import Event, EventStatus, Role, User
from .registrations import register
from .utils import utcnow

_community_suffixes = [
    "Coding Club",
    "Robotics Society",
    "Music Circle",
    "Debate Union",
    "Photography Collective",
    "Drama Guild",
]
_categories = ["Technical", "Cultural", "Sports", "Workshop", "Seminar"]
_event_types = ["Hackathon", "Fest", "Workshop", "Meetup", "Championship", "Talk"]
_degrees = ["B.Tech", "B.Sc", "BCA", "M.Tech", "MBA"]
_branches = ["CSE", "ECE", "Mechanical", "Civil", "IT"]


def seed_fake_data(
    *,
    community_count: int = 3,
    user_count: int = 10,
    max_events_per_community: int = 3,
    max_registrations_per_event: int = 5,
) -> dict:
    """Populate the database with synthetic accounts, events and registrations.

    Roughly two thirds of the events are approved so registrations can be
    attached; the rest stay pending for the review queue.
    """
    if community_count < 0:
        raise ValueError("community_count must be >= 0")
    if user_count < 0:
        raise ValueError("user_count must be >= 0")
    if max_events_per_community < 1:
        raise ValueError("max_events_per_community must be >= 1")
    if max_registrations_per_event < 0:
        raise ValueError("max_registrations_per_event must be >= 0")

    fake = Faker()
    stats = {"users": 0, "events": 0, "registrations": 0, "superadmin_token": ""}

    with get_session() as session:
        superadmin = _ensure_superadmin(session, fake)
        stats["superadmin_token"] = superadmin.api_token

        for _ in range(user_count):
            _create_user(session, fake, role=Role.USER)
            stats["users"] += 1

        for _ in range(community_count):
            community = _create_user(session, fake, role=Role.COMMUNITY)
            stats["users"] += 1
            for _ in range(random.randint(1, max_events_per_community)):
                event = _create_event(session, fake, community)
                stats["events"] += 1
                if random.random() < 0.66:
                    set_status(session, superadmin, event.id, EventStatus.APPROVED.value)
                    stats["registrations"] += _create_registrations(
                        session, fake, event, max_registrations_per_event
                    )

    return stats


def _ensure_superadmin(session: Session, fake: Faker) -> User:
    existing = session.scalar(
        select(User).where(User.role == Role.SUPERADMIN.value).limit(1)
    )
    if existing:
        return existing
    return _create_user(session, fake, role=Role.SUPERADMIN, label="Administrator")


def _create_user(
    session: Session, fake: Faker, *, role: Role, label: str = ""
) -> User:
    community_name = ""
    name = fake.name()
    if role == Role.COMMUNITY:
        community_name = f"{fake.city()} {random.choice(_community_suffixes)}"
        name = community_name
    user = User(
        name=name,
        email=fake.unique.email(),
        role=role.value,
        role_label=label or role.value.title(),
        community_name=community_name,
        api_token=secrets.token_urlsafe(32),
    )
    session.add(user)
    session.flush()
    return user


def _random_date() -> datetime:
    day_offset = random.randint(-7, 45)
    minute_offset = random.randint(9 * 60, 18 * 60)
    base = utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
    return base + timedelta(days=day_offset, minutes=minute_offset)


def _create_event(session: Session, fake: Faker, community: User) -> Event:
    date = _random_date()
    sub_events = []
    for index in range(random.randint(0, 2)):
        sub_events.append(
            {
                "name": f"{random.choice(_event_types)} Round {index + 1}",
                "date": date + timedelta(hours=index + 1),
                "venue": f"Hall {random.randint(1, 12)}",
                "description": fake.sentence(nb_words=12),
                "rules": fake.sentence(),
                "fee": float(random.choice([0, 50, 100, 250])),
                "prize": f"{random.randint(1, 20) * 500} credits",
            }
        )
    return create_event(
        session,
        community,
        title=f"{fake.city()} {random.choice(_event_types)}",
        description="\n\n".join(fake.paragraphs(nb=2)),
        date=date,
        location=fake.address().replace("\n", ", "),
        category=random.choice(_categories),
        coordinators=[{"name": fake.name(), "contact": fake.phone_number()}],
        links=[{"title": "Website", "url": fake.url()}],
        sub_events=sub_events,
    )


def _create_registrations(
    session: Session, fake: Faker, event: Event, max_registrations: int
) -> int:
    if max_registrations <= 0:
        return 0
    total = random.randint(0, max_registrations)
    targets = [None] + [sub.id for sub in event.sub_events]
    for _ in range(total):
        register(
            session,
            event.id,
            random.choice(targets),
            {
                "name": fake.name(),
                "email": fake.email(),
                "phone": fake.msisdn()[:10],
                "institute_name": f"{fake.city()} Institute of Technology",
                "degree": random.choice(_degrees),
                "branch": random.choice(_branches),
                "year": str(random.randint(1, 4)),
                "transaction_id": fake.bothify("TXN-########"),
            },
        )
    return total
