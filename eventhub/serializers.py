"""JSON payload builders shared by the API and the push channel."""

from __future__ import annotations

from .models import Event, Registration, Report, SubEvent, User


def _iso(value) -> str | None:
    return value.isoformat() if value else None


def serialize_user(user: User) -> dict:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "role": user.role,
        "role_label": user.role_label,
        "community_name": user.community_name,
    }


def serialize_registration(registration: Registration) -> dict:
    return {
        "id": registration.id,
        "event_id": registration.event_id,
        "sub_event_id": registration.sub_event_id,
        "name": registration.name,
        "email": registration.email,
        "phone": registration.phone,
        "institute_name": registration.institute_name,
        "degree": registration.degree,
        "branch": registration.branch,
        "year": registration.year,
        "transaction_id": registration.transaction_id,
        "registered_at": _iso(registration.registered_at),
    }


def serialize_sub_event(sub_event: SubEvent, *, include_registrations: bool = False):
    payload = {
        "id": sub_event.id,
        "name": sub_event.name,
        "date": _iso(sub_event.date),
        "venue": sub_event.venue,
        "description": sub_event.description,
        "rules": sub_event.rules,
        "coordinators": list(sub_event.coordinators or []),
        "fee": sub_event.fee,
        "prize": sub_event.prize,
        "registration_count": len(sub_event.registrations),
    }
    if include_registrations:
        payload["registrations"] = [
            serialize_registration(r) for r in sub_event.registrations
        ]
    return payload


def serialize_event(event: Event, *, include_registrations: bool = False) -> dict:
    payload = {
        "id": event.id,
        "title": event.title,
        "description": event.description,
        "date": _iso(event.date),
        "location": event.location,
        "image_url": event.image_url,
        "category": event.category,
        "coordinators": list(event.coordinators or []),
        "links": list(event.links or []),
        "status": event.status,
        "creator_id": event.creator_id,
        "attendees": event.attendees,
        "rejection_reason": event.rejection_reason,
        "deletion_requested": event.deletion_requested,
        "deletion_reason": event.deletion_reason,
        "registration_count": len(event.registrations),
        "sub_events": [
            serialize_sub_event(s, include_registrations=include_registrations)
            for s in event.sub_events
        ],
        "created_at": _iso(event.created_at),
        "updated_at": _iso(event.updated_at),
    }
    if event.creator is not None:
        payload["creator"] = {
            "id": event.creator.id,
            "name": event.creator.name,
            "email": event.creator.email,
            "role": event.creator.role,
            "community_name": event.creator.community_name,
        }
    if include_registrations:
        payload["registrations"] = [
            serialize_registration(r) for r in event.registrations
        ]
    return payload


def serialize_report(report: Report) -> dict:
    return {
        "id": report.id,
        "event_id": report.event_id,
        "creator_id": report.creator_id,
        "status": report.status,
        "highlights": report.highlights,
        "feedback": report.feedback,
        "notes": report.notes,
        "photos": list(report.photos or []),
        "event_details": report.event_details,
        "participant_data": report.participant_data,
        "is_submitted": report.submitted_at is not None,
        "submitted_at": _iso(report.submitted_at),
        "reviewed_by_id": report.reviewed_by_id,
        "reviewed_at": _iso(report.reviewed_at),
        "review_comments": report.review_comments,
        "created_at": _iso(report.created_at),
        "updated_at": _iso(report.updated_at),
    }
