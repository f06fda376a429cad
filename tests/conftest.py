"""Shared pytest fixtures for EventHub."""

from __future__ import annotations

import secrets
import sys
from datetime import timedelta
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import scoped_session, sessionmaker
from sqlalchemy.pool import StaticPool

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from eventhub import api, database, storage
from eventhub.mailer import email_queue
from eventhub.models import Base, Event, EventStatus, Role, User
from eventhub.utils import utcnow


@pytest.fixture(scope="session", autouse=True)
def configure_in_memory_db():
    """Reuse a single in-memory SQLite database for fast, isolated tests."""

    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    session_factory = scoped_session(
        sessionmaker(
            bind=engine,
            autoflush=False,
            autocommit=False,
            future=True,
            expire_on_commit=False,
        )
    )
    database.engine = engine
    database.SessionLocal = session_factory
    storage.engine = engine
    storage.get_session = database.get_session
    api.SessionLocal = session_factory
    Base.metadata.create_all(bind=engine)
    yield
    session_factory.remove()


@pytest.fixture(autouse=True)
def clean_database():
    """Reset all tables between tests to guarantee isolation."""

    database.SessionLocal.remove()
    Base.metadata.drop_all(bind=database.engine)
    Base.metadata.create_all(bind=database.engine)
    email_queue.clear()
    yield
    database.SessionLocal.remove()
    email_queue.clear()


@pytest.fixture()
def db():
    """A session bound to the test database; commit to fire push/email hooks."""

    session = database.SessionLocal()
    yield session
    session.rollback()
    database.SessionLocal.remove()


@pytest.fixture()
def client(monkeypatch):
    """FastAPI test client with the scheduler disabled."""

    from fastapi.testclient import TestClient

    monkeypatch.setattr(api, "start_scheduler", lambda: None)
    monkeypatch.setattr(api, "stop_scheduler", lambda: None)
    with TestClient(api.app) as test_client:
        yield test_client


def make_user(session, role: Role = Role.USER, *, name: str | None = None) -> User:
    token = secrets.token_urlsafe(16)
    user = User(
        name=name or f"{role.value} {token[:6]}",
        email=f"{token[:10].lower()}@example.com",
        role=role.value,
        role_label=role.value.title(),
        community_name="Robotics Club" if role == Role.COMMUNITY else "",
        api_token=token,
    )
    session.add(user)
    session.flush()
    return user


def make_event(
    session,
    creator: User,
    *,
    status: EventStatus = EventStatus.PENDING,
    title: str = "Hack Night",
    days_ahead: int = 7,
    sub_events: int = 0,
) -> Event:
    """Insert an event directly, bypassing role checks and pushes."""
    from eventhub.models import SubEvent

    date = utcnow().replace(microsecond=0) + timedelta(days=days_ahead)
    event = Event(
        title=title,
        description="Build things overnight",
        date=date,
        location="Main Hall",
        category="Technical",
        status=status.value,
        creator=creator,
    )
    event.sub_events = [
        SubEvent(
            position=index,
            name=f"Round {index + 1}",
            date=date + timedelta(hours=index + 1),
            venue=f"Lab {index + 1}",
            description="Qualifier",
        )
        for index in range(sub_events)
    ]
    session.add(event)
    session.flush()
    return event


def auth(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {user.api_token}"}


def registration_details(**overrides) -> dict[str, str]:
    details = {
        "name": "Asha Rao",
        "email": "asha@example.com",
        "phone": "9876543210",
        "institute_name": "City Institute of Technology",
        "degree": "B.Tech",
        "branch": "CSE",
        "year": "3",
        "transaction_id": "TXN-0001",
    }
    details.update(overrides)
    return details
