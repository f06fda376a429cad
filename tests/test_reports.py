from __future__ import annotations

import pytest

from conftest import make_event, make_user, registration_details
from eventhub import realtime, registrations, reports
from eventhub.errors import ForbiddenError, NotFoundError, ValidationError
from eventhub.models import EventStatus, ReportStatus, Role


def _completed_event(db, owner, *, sub_events=1):
    event = make_event(db, owner, status=EventStatus.APPROVED, sub_events=sub_events)
    registrations.register(db, event.id, None, registration_details(name="Main"))
    if sub_events:
        registrations.register(
            db, event.id, event.sub_events[0].id, registration_details(name="Sub")
        )
    event.status = EventStatus.COMPLETED.value
    db.flush()
    return event


def test_report_snapshot_and_idempotent_create(db):
    owner = make_user(db, Role.COMMUNITY)
    event = _completed_event(db, owner)

    report, created = reports.create_or_get_report(db, owner, event.id)
    assert created is True
    assert report.status == ReportStatus.DRAFT.value
    assert report.event_details["title"] == event.title
    assert report.event_details["sub_events"][0]["total_registered"] == 1
    data = report.participant_data
    assert data["total_registered"] == 2
    assert data["total_main_event_registrations"] == 1
    assert data["total_sub_event_registrations"] == 1
    assert data["total_attended"] == 2
    assert [p["name"] for p in data["participants"]] == ["Main", "Sub"]

    again, created = reports.create_or_get_report(db, owner, event.id)
    assert created is False
    assert again.id == report.id


def test_report_requires_completed_own_event(db):
    owner = make_user(db, Role.COMMUNITY)
    approved = make_event(db, owner, status=EventStatus.APPROVED)
    with pytest.raises(ValidationError):
        reports.create_or_get_report(db, owner, approved.id)

    completed = _completed_event(db, owner, sub_events=0)
    with pytest.raises(NotFoundError):
        reports.create_or_get_report(db, make_user(db, Role.COMMUNITY), completed.id)


def test_update_submit_and_review(db, monkeypatch):
    owner = make_user(db, Role.COMMUNITY)
    superadmins = [make_user(db, Role.SUPERADMIN) for _ in range(2)]
    event = _completed_event(db, owner)
    report, _ = reports.create_or_get_report(db, owner, event.id)

    delivered = []
    monkeypatch.setattr(
        realtime.push_hub,
        "emit_to_user",
        lambda user_id, name, payload=None: delivered.append((user_id, name)) or 0,
    )
    monkeypatch.setattr(
        realtime.push_hub, "emit_to_all", lambda name, payload=None: 0
    )

    with pytest.raises(ForbiddenError):
        reports.update_report(db, superadmins[0], report.id, {"notes": "x"})
    reports.update_report(
        db, owner, report.id, {"notes": "Great turnout", "photos": ["a.jpg"]}
    )
    assert report.notes == "Great turnout"
    assert report.photos == ["a.jpg"]

    reports.submit_report(db, owner, report.id)
    db.commit()
    assert report.status == ReportStatus.SUBMITTED.value
    assert report.submitted_at is not None
    assert sorted(delivered) == sorted(
        (admin.id, "new_report_notification") for admin in superadmins
    )

    delivered.clear()
    with pytest.raises(ForbiddenError):
        reports.review_report(db, owner, report.id, "Self review")
    reports.review_report(db, superadmins[0], report.id, "Thanks")
    db.commit()
    assert report.status == ReportStatus.REVIEWED.value
    assert report.reviewed_by_id == superadmins[0].id
    assert delivered == [(owner.id, "report_reviewed")]


def test_report_listing_permissions(db):
    owner = make_user(db, Role.COMMUNITY)
    superadmin = make_user(db, Role.SUPERADMIN)
    report, _ = reports.create_or_get_report(
        db, owner, _completed_event(db, owner).id
    )

    assert [r.id for r in reports.list_my_reports(db, owner)] == [report.id]
    assert [r.id for r in reports.list_all_reports(db, superadmin)] == [report.id]
    assert reports.get_report(db, superadmin, report.id) is report
    with pytest.raises(ForbiddenError):
        reports.list_all_reports(db, owner)
    with pytest.raises(ForbiddenError):
        reports.get_report(db, make_user(db), report.id)
