from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from conftest import make_event, make_user
from eventhub import lifecycle, realtime
from eventhub.errors import ForbiddenError, NotFoundError, ValidationError
from eventhub.models import Event, EventStatus, Notification, Role


@pytest.fixture()
def pushes(monkeypatch):
    """Record every push handed to the hub instead of delivering it."""

    sent: list[tuple] = []
    monkeypatch.setattr(
        realtime.push_hub,
        "emit_to_all",
        lambda name, payload=None: sent.append(("all", name, payload)) or 0,
    )
    monkeypatch.setattr(
        realtime.push_hub,
        "emit_to_user",
        lambda user_id, name, payload=None: sent.append((user_id, name, payload))
        or 0,
    )
    return sent


def _event_fields(**overrides):
    fields = {
        "title": "Robotics Expo",
        "description": "Bots everywhere",
        "date": datetime(2030, 3, 1, 10, 0),
        "location": "Auditorium",
        "category": "Technical",
    }
    fields.update(overrides)
    return fields


def test_community_creates_pending_event_and_pushes_after_commit(db, pushes):
    community = make_user(db, Role.COMMUNITY)
    event = lifecycle.create_event(
        db,
        community,
        **_event_fields(
            sub_events=[
                {
                    "name": "Line Follower",
                    "date": "2030-03-01T12:00:00",
                    "venue": "Lab 2",
                    "description": "Fastest bot wins",
                    "fee": 50,
                }
            ]
        ),
    )
    assert event.status == EventStatus.PENDING.value
    assert event.creator_id == community.id
    assert event.attendees == 0
    assert [s.name for s in event.sub_events] == ["Line Follower"]
    assert pushes == []

    db.commit()
    assert [(target, name) for target, name, _ in pushes] == [("all", "event_created")]


@pytest.mark.parametrize("role", [Role.USER, Role.ADMIN, Role.SUPERADMIN])
def test_only_community_accounts_create_events(db, role):
    caller = make_user(db, role)
    with pytest.raises(ForbiddenError):
        lifecycle.create_event(db, caller, **_event_fields())


def test_create_event_requires_core_fields(db):
    community = make_user(db, Role.COMMUNITY)
    with pytest.raises(ValidationError):
        lifecycle.create_event(db, community, **_event_fields(title="   "))
    with pytest.raises(ValidationError):
        lifecycle.create_event(
            db,
            community,
            **_event_fields(
                sub_events=[
                    {
                        "name": "Quiz",
                        "date": "2030-03-01T12:00:00",
                        "venue": "Room 1",
                        "description": "Trivia",
                        "fee": -5,
                    }
                ]
            ),
        )


@pytest.mark.parametrize("reason", [None, "", "   "])
def test_rejection_requires_reason(db, reason):
    superadmin = make_user(db, Role.SUPERADMIN)
    event = make_event(db, make_user(db, Role.COMMUNITY))

    with pytest.raises(ValidationError):
        lifecycle.set_status(db, superadmin, event.id, "rejected", reason)
    assert event.status == EventStatus.PENDING.value


def test_rejection_stores_reason_and_notifies_creator(db, pushes):
    superadmin = make_user(db, Role.SUPERADMIN)
    community = make_user(db, Role.COMMUNITY)
    event = make_event(db, community)

    lifecycle.set_status(db, superadmin, event.id, "rejected", "Missing venue permit")
    db.commit()

    assert event.status == EventStatus.REJECTED.value
    assert event.rejection_reason == "Missing venue permit"
    notes = db.scalars(select(Notification)).all()
    assert len(notes) == 1
    assert notes[0].recipient_id == community.id
    assert notes[0].type == "event_rejected"
    assert notes[0].rejection_reason == "Missing venue permit"
    names = [name for _, name, _ in pushes]
    assert "event_status_updated" in names
    assert (community.id, "new_notification") in [(t, n) for t, n, _ in pushes]


def test_approval_notifies_creator_and_every_user_account(db):
    superadmin = make_user(db, Role.SUPERADMIN)
    community = make_user(db, Role.COMMUNITY)
    fans = [make_user(db, Role.USER) for _ in range(3)]
    make_user(db, Role.ADMIN)
    event = make_event(db, community, title="Robotics Expo")

    lifecycle.set_status(db, superadmin, event.id, "approved")

    assert event.status == EventStatus.APPROVED.value
    notes = db.scalars(select(Notification)).all()
    by_type = {}
    for note in notes:
        by_type.setdefault(note.type, []).append(note)
    assert [n.recipient_id for n in by_type["event_approved"]] == [community.id]
    assert sorted(n.recipient_id for n in by_type["new_event"]) == sorted(
        fan.id for fan in fans
    )
    assert all(
        n.message == 'New event coming soon: "Robotics Expo"'
        for n in by_type["new_event"]
    )
    assert all(n.related_event_id == event.id for n in notes)


def test_set_status_guards(db):
    superadmin = make_user(db, Role.SUPERADMIN)
    community = make_user(db, Role.COMMUNITY)
    event = make_event(db, community)

    with pytest.raises(ForbiddenError):
        lifecycle.set_status(db, community, event.id, "approved")
    with pytest.raises(ValidationError):
        lifecycle.set_status(db, superadmin, event.id, "completed")
    with pytest.raises(NotFoundError):
        lifecycle.set_status(db, superadmin, "missing", "approved")

    lifecycle.set_status(db, superadmin, event.id, "approved")
    with pytest.raises(ValidationError):
        lifecycle.set_status(db, superadmin, event.id, "rejected", "Too late")


def test_rejected_event_cannot_be_edited(db):
    superadmin = make_user(db, Role.SUPERADMIN)
    community = make_user(db, Role.COMMUNITY)
    event = make_event(db, community, title="Original")
    lifecycle.set_status(db, superadmin, event.id, "rejected", "Duplicate")

    with pytest.raises(ValidationError):
        lifecycle.update_event(db, community, event.id, {"title": "Renamed"})
    assert event.title == "Original"


@pytest.mark.parametrize("role", [Role.USER, Role.COMMUNITY, Role.SUPERADMIN])
def test_only_the_creator_may_update(db, role):
    owner = make_user(db, Role.COMMUNITY)
    event = make_event(db, owner)
    intruder = make_user(db, role)

    with pytest.raises(ForbiddenError):
        lifecycle.update_event(db, intruder, event.id, {"title": "Hijacked"})
    assert event.title == "Hack Night"


def test_creator_update_applies_patch_and_pushes(db, pushes):
    owner = make_user(db, Role.COMMUNITY)
    event = make_event(db, owner)

    lifecycle.update_event(
        db,
        owner,
        event.id,
        {"title": "Hack Night II", "links": [{"title": "Site", "url": "https://x.io"}]},
    )
    db.commit()

    assert event.title == "Hack Night II"
    assert event.links == [{"title": "Site", "url": "https://x.io"}]
    assert ("all", "event_created") in [(t, n) for t, n, _ in pushes]
    assert (owner.id, "event_created") in [(t, n) for t, n, _ in pushes]


def test_completed_only_reachable_from_approved(db):
    owner = make_user(db, Role.COMMUNITY)
    pending = make_event(db, owner)
    approved = make_event(db, owner, status=EventStatus.APPROVED)

    with pytest.raises(ValidationError):
        lifecycle.update_event(db, owner, pending.id, {"status": "completed"})
    with pytest.raises(ValidationError):
        lifecycle.update_event(db, owner, approved.id, {"status": "approved"})

    lifecycle.update_event(db, owner, approved.id, {"status": "completed"})
    assert approved.status == EventStatus.COMPLETED.value


def test_deletion_is_two_step(db, pushes):
    superadmin = make_user(db, Role.SUPERADMIN)
    owner = make_user(db, Role.COMMUNITY)
    event = make_event(db, owner, title="Old Meetup")
    event_id = event.id

    with pytest.raises(ValidationError):
        lifecycle.approve_deletion(db, superadmin, event_id)

    lifecycle.request_deletion(db, owner, event_id)
    assert event.deletion_requested is True
    assert event.deletion_reason == "No reason provided"
    assert event.status == EventStatus.PENDING.value

    with pytest.raises(ForbiddenError):
        lifecycle.approve_deletion(db, owner, event_id)

    lifecycle.approve_deletion(db, superadmin, event_id)
    db.commit()

    assert db.get(Event, event_id) is None
    notes = db.scalars(select(Notification)).all()
    assert [(n.recipient_id, n.type) for n in notes] == [(owner.id, "event_deleted")]
    names = [(t, n) for t, n, _ in pushes]
    assert ("all", "event_deleted") in names
    assert (owner.id, "event_deleted") in names
    assert ("all", "deletion_request_resolved") in names
    assert (owner.id, "new_notification") in names


def test_deletion_request_allowed_on_rejected_event(db):
    superadmin = make_user(db, Role.SUPERADMIN)
    owner = make_user(db, Role.COMMUNITY)
    event = make_event(db, owner)
    lifecycle.set_status(db, superadmin, event.id, "rejected", "Off topic")

    lifecycle.request_deletion(db, owner, event.id, "  Cancelled  ")
    assert event.deletion_reason == "Cancelled"
    assert event.status == EventStatus.REJECTED.value


def test_request_deletion_is_creator_only(db):
    owner = make_user(db, Role.COMMUNITY)
    event = make_event(db, owner)
    with pytest.raises(ForbiddenError):
        lifecycle.request_deletion(db, make_user(db, Role.COMMUNITY), event.id)
    with pytest.raises(ForbiddenError):
        lifecycle.request_deletion(db, make_user(db, Role.SUPERADMIN), event.id)


def test_direct_delete_is_superadmin_only(db):
    owner = make_user(db, Role.COMMUNITY)
    event = make_event(db, owner, sub_events=2)
    event_id = event.id

    with pytest.raises(ForbiddenError):
        lifecycle.delete_event(db, owner, event_id)
    lifecycle.delete_event(db, make_user(db, Role.SUPERADMIN), event_id)
    assert db.get(Event, event_id) is None


def test_rollback_drops_queued_pushes(db, pushes):
    community = make_user(db, Role.COMMUNITY)
    db.commit()
    lifecycle.create_event(db, community, **_event_fields())
    db.rollback()
    db.commit()
    assert pushes == []


def test_visibility_of_unapproved_events(db):
    owner = make_user(db, Role.COMMUNITY)
    event = make_event(db, owner)
    stranger = make_user(db, Role.USER)
    superadmin = make_user(db, Role.SUPERADMIN)

    assert lifecycle.get_event(db, owner, event.id) is event
    assert lifecycle.get_event(db, superadmin, event.id) is event
    with pytest.raises(ForbiddenError):
        lifecycle.get_event(db, stranger, event.id)
    with pytest.raises(ForbiddenError):
        lifecycle.get_event(db, None, event.id)
    with pytest.raises(NotFoundError):
        lifecycle.get_event(db, owner, "nope")


def test_list_events_filters_by_caller(db):
    owner = make_user(db, Role.COMMUNITY)
    later = make_event(db, owner, status=EventStatus.APPROVED, days_ahead=9)
    sooner = make_event(db, owner, status=EventStatus.APPROVED, days_ahead=2)
    pending = make_event(db, owner)
    superadmin = make_user(db, Role.SUPERADMIN)

    assert [e.id for e in lifecycle.list_events(db, None)] == [sooner.id, later.id]
    assert len(lifecycle.list_events(db, owner, creator_id=owner.id)) == 2
    assert len(lifecycle.list_events(db, superadmin)) == 3
    assert [e.id for e in lifecycle.list_events(db, superadmin, status="pending")] == [
        pending.id
    ]
    with pytest.raises(ValidationError):
        lifecycle.list_events(db, superadmin, status="archived")


def test_my_events_and_deletion_queue_are_role_gated(db):
    owner = make_user(db, Role.COMMUNITY)
    event = make_event(db, owner)
    user = make_user(db, Role.USER)
    superadmin = make_user(db, Role.SUPERADMIN)

    assert [e.id for e in lifecycle.list_my_events(db, owner)] == [event.id]
    with pytest.raises(ForbiddenError):
        lifecycle.list_my_events(db, user)

    lifecycle.request_deletion(db, owner, event.id, "Venue lost")
    assert [e.id for e in lifecycle.list_deletion_requests(db, superadmin)] == [
        event.id
    ]
    with pytest.raises(ForbiddenError):
        lifecycle.list_deletion_requests(db, owner)


def test_event_counts_bucket_by_calendar_day(db):
    owner = make_user(db, Role.COMMUNITY)
    now = datetime(2030, 5, 10, 15, 0)
    for date in (
        datetime(2030, 5, 10, 9, 0),
        datetime(2030, 5, 10, 20, 0),
        datetime(2030, 5, 9, 23, 0),
        datetime(2030, 6, 1, 10, 0),
    ):
        event = make_event(db, owner, status=EventStatus.APPROVED)
        event.date = date
    make_event(db, owner)  # pending is ignored
    db.flush()

    counts = lifecycle.event_counts(db, now=now)
    assert counts == {"upcoming": 1, "ongoing": 2, "completed": 1, "total": 4}


def test_status_counts(db):
    owner = make_user(db, Role.COMMUNITY)
    make_event(db, owner)
    make_event(db, owner, status=EventStatus.APPROVED)
    make_event(db, owner, status=EventStatus.APPROVED)

    counts = lifecycle.status_counts(db)
    assert counts["pending"] == 1
    assert counts["approved"] == 2
    assert counts["rejected"] == 0
    assert counts["total"] == 3


def test_like_and_unlike(db):
    owner = make_user(db, Role.COMMUNITY)
    fan = make_user(db, Role.USER)
    approved = make_event(db, owner, status=EventStatus.APPROVED)
    pending = make_event(db, owner)

    with pytest.raises(ValidationError):
        lifecycle.like_event(db, fan, pending.id)
    lifecycle.like_event(db, fan, approved.id)
    with pytest.raises(ValidationError):
        lifecycle.like_event(db, fan, approved.id)
    assert [e.id for e in lifecycle.list_liked_events(db, fan)] == [approved.id]

    lifecycle.unlike_event(db, fan, approved.id)
    assert lifecycle.list_liked_events(db, fan) == []
    with pytest.raises(ValidationError):
        lifecycle.unlike_event(db, fan, approved.id)


def test_event_update_without_changes_keeps_date(db):
    owner = make_user(db, Role.COMMUNITY)
    event = make_event(db, owner)
    original = event.date
    lifecycle.update_event(db, owner, event.id, {"date": None})
    assert event.date == original
    lifecycle.update_event(
        db, owner, event.id, {"date": original + timedelta(days=1)}
    )
    assert event.date == original + timedelta(days=1)
