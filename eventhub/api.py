"""FastAPI application for EventHub."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from importlib.metadata import PackageNotFoundError, version as pkg_version
from pathlib import Path
import tomllib

from fastapi import (
    Depends,
    FastAPI,
    Query,
    Request,
    Response,
    WebSocket,
    status,
)
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from . import lifecycle, notifications, registrations, reports
from .config import settings
from .database import SessionLocal
from .errors import EventHubError, ForbiddenError, NotFoundError, UnauthorizedError
from .ics import generate_ics
from .models import NotificationType, Role, User
from .notifications import serialize_notification
from .realtime import push_hub
from .scheduler import start_scheduler, stop_scheduler
from .serializers import (
    serialize_event,
    serialize_registration,
    serialize_report,
    serialize_user,
)
from .storage import find_user_by_token, init_db

# Use uvicorn's error logger so messages get the level prefix in the default log
# format.
logger = logging.getLogger("uvicorn.error")


def _load_app_version() -> str:
    """Return the current package version, falling back to pyproject for dev runs."""
    try:
        return pkg_version("eventhub")
    except PackageNotFoundError:
        pyproject_path = Path(__file__).resolve().parent.parent / "pyproject.toml"
        if pyproject_path.exists():
            data = tomllib.loads(pyproject_path.read_text())
            project = data.get("project") or {}
            return str(project.get("version") or "dev")
    return "dev"


APP_VERSION = _load_app_version()


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_db()
    if settings.enable_scheduler:
        start_scheduler()
    try:
        yield
    finally:
        stop_scheduler()


app = FastAPI(title="EventHub", version=APP_VERSION, lifespan=lifespan)


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@app.exception_handler(EventHubError)
async def eventhub_error_handler(request: Request, exc: EventHubError):
    if exc.status_code >= 500:
        logger.error("%s on %s %s", exc.message, request.method, request.url.path)
    return JSONResponse({"detail": exc.message}, status_code=exc.status_code)


@app.exception_handler(OperationalError)
async def operational_error_handler(request: Request, exc: OperationalError):
    raw = str(exc.orig) if getattr(exc, "orig", None) else str(exc)
    if "database is locked" in raw.lower():
        logger.error(
            "SQLite database is locked while handling %s %s",
            request.method,
            request.url.path,
        )
        detail = "The database is busy at the moment. Please wait a few seconds and try again."
        status_code = 503
    else:
        logger.error(
            "Operational database error on %s %s: %s",
            request.method,
            request.url.path,
            raw,
        )
        detail = "We hit a database issue. Please try again."
        status_code = 500
    return JSONResponse({"detail": detail}, status_code=status_code)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse({"detail": exc.errors()}, status_code=422)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Gracefully handle unexpected errors."""
    logger.exception(
        "Unhandled error while processing %s %s", request.method, request.url.path
    )
    return JSONResponse({"detail": "Internal server error"}, status_code=500)


def _get_bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("authorization") or ""
    if not auth_header.lower().startswith("bearer "):
        return None
    token = auth_header.split(" ", 1)[1].strip()
    return token or None


def optional_caller(request: Request, db: Session = Depends(get_db)) -> User | None:
    token = _get_bearer_token(request)
    if not token:
        return None
    user = find_user_by_token(db, token)
    if not user:
        raise UnauthorizedError("Invalid bearer token")
    return user


def current_caller(caller: User | None = Depends(optional_caller)) -> User:
    if caller is None:
        raise UnauthorizedError("Missing bearer token")
    return caller


def _require_superadmin(caller: User) -> None:
    if not caller.has_role(Role.SUPERADMIN):
        raise ForbiddenError("Superadmin access required")


class Coordinator(BaseModel):
    name: str = ""
    contact: str = ""


class Link(BaseModel):
    title: str = ""
    url: str = ""


class SubEventPayload(BaseModel):
    name: str
    date: datetime
    venue: str
    description: str
    rules: str = ""
    coordinators: list[Coordinator] = Field(default_factory=list)
    fee: float = Field(0, ge=0)
    prize: str = ""


class EventCreatePayload(BaseModel):
    title: str
    description: str
    date: datetime = Field(..., description="ISO datetime string")
    location: str
    category: str
    image_url: str | None = None
    coordinators: list[Coordinator] = Field(default_factory=list)
    links: list[Link] = Field(default_factory=list)
    sub_events: list[SubEventPayload] = Field(default_factory=list)


class EventUpdatePayload(BaseModel):
    title: str | None = None
    description: str | None = None
    date: datetime | None = Field(None, description="ISO datetime string")
    location: str | None = None
    image_url: str | None = None
    category: str | None = None
    coordinators: list[Coordinator] | None = None
    links: list[Link] | None = None
    status: str | None = None


class StatusChangePayload(BaseModel):
    status: str
    rejection_reason: str | None = None


class DeletionRequestPayload(BaseModel):
    reason: str | None = None


class RegistrationPayload(BaseModel):
    sub_event_id: str | None = None
    name: str
    email: str
    phone: str
    institute_name: str
    degree: str
    branch: str
    year: str
    transaction_id: str


class NotificationCreatePayload(BaseModel):
    recipient_id: str
    message: str
    type: str
    related_event_id: str | None = None
    rejection_reason: str | None = None


class BroadcastPayload(BaseModel):
    message: str
    role: Role = Role.USER
    type: str = NotificationType.NEW_EVENT.value


class ReportUpdatePayload(BaseModel):
    highlights: str | None = None
    feedback: str | None = None
    notes: str | None = None
    photos: list[str] | None = None


class ReportReviewPayload(BaseModel):
    review_comments: str | None = None


# -------- JSON API (v1) --------


@app.get("/api/v1/me")
def api_me(caller: User = Depends(current_caller)):
    return {"user": serialize_user(caller)}


@app.get("/api/v1/events")
def api_list_events(
    status_filter: str | None = Query(None, alias="status"),
    creator_id: str | None = Query(None),
    caller: User | None = Depends(optional_caller),
    db: Session = Depends(get_db),
):
    events = lifecycle.list_events(
        db, caller, status=status_filter, creator_id=creator_id
    )
    return {"events": [serialize_event(e) for e in events], "count": len(events)}


@app.post("/api/v1/events", status_code=201)
def api_create_event(
    payload: EventCreatePayload,
    caller: User = Depends(current_caller),
    db: Session = Depends(get_db),
):
    event = lifecycle.create_event(db, caller, **payload.model_dump())
    return {"event": serialize_event(event)}


@app.get("/api/v1/events/counts")
def api_event_counts(db: Session = Depends(get_db)):
    return lifecycle.event_counts(db)


@app.get("/api/v1/events/status-counts")
def api_status_counts(
    caller: User = Depends(current_caller), db: Session = Depends(get_db)
):
    _require_superadmin(caller)
    return lifecycle.status_counts(db)


@app.get("/api/v1/events/mine")
def api_my_events(
    caller: User = Depends(current_caller), db: Session = Depends(get_db)
):
    events = lifecycle.list_my_events(db, caller)
    return {"events": [serialize_event(e) for e in events], "count": len(events)}


@app.get("/api/v1/events/deletion-requests")
def api_deletion_requests(
    caller: User = Depends(current_caller), db: Session = Depends(get_db)
):
    events = lifecycle.list_deletion_requests(db, caller)
    return {"events": [serialize_event(e) for e in events], "count": len(events)}


@app.get("/api/v1/events/liked")
def api_liked_events(
    caller: User = Depends(current_caller), db: Session = Depends(get_db)
):
    events = lifecycle.list_liked_events(db, caller)
    return {"events": [serialize_event(e) for e in events], "count": len(events)}


@app.get("/api/v1/events/{event_id}")
def api_get_event(
    event_id: str,
    caller: User | None = Depends(optional_caller),
    db: Session = Depends(get_db),
):
    event = lifecycle.get_event(db, caller, event_id)
    return {"event": serialize_event(event)}


@app.get("/api/v1/events/{event_id}/event.ics")
def api_get_event_ics(
    event_id: str,
    sub_event_id: str | None = Query(None),
    caller: User | None = Depends(optional_caller),
    db: Session = Depends(get_db),
):
    """Serve an event, or one of its sub-events, as a downloadable ICS file."""
    event = lifecycle.get_event(db, caller, event_id)
    sub_event = None
    if sub_event_id:
        sub_event = event.find_sub_event(sub_event_id)
        if sub_event is None:
            raise NotFoundError("Sub-event not found")
    ics_text = generate_ics(
        event, sub_event=sub_event, duration_hours=settings.calendar_event_hours
    )
    filename = f"event_{event_id}.ics"
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    return Response(content=ics_text, media_type="text/calendar", headers=headers)


@app.patch("/api/v1/events/{event_id}")
def api_update_event(
    event_id: str,
    payload: EventUpdatePayload,
    caller: User = Depends(current_caller),
    db: Session = Depends(get_db),
):
    changes = payload.model_dump(exclude_unset=True)
    event = lifecycle.update_event(db, caller, event_id, changes)
    return {"event": serialize_event(event)}


@app.put("/api/v1/events/{event_id}/status")
def api_set_event_status(
    event_id: str,
    payload: StatusChangePayload,
    caller: User = Depends(current_caller),
    db: Session = Depends(get_db),
):
    event = lifecycle.set_status(
        db, caller, event_id, payload.status, payload.rejection_reason
    )
    return {"event": serialize_event(event)}


@app.post("/api/v1/events/{event_id}/request-deletion")
def api_request_deletion(
    event_id: str,
    payload: DeletionRequestPayload | None = None,
    caller: User = Depends(current_caller),
    db: Session = Depends(get_db),
):
    reason = payload.reason if payload else None
    event = lifecycle.request_deletion(db, caller, event_id, reason)
    return {"event": serialize_event(event)}


@app.post("/api/v1/events/{event_id}/approve-deletion")
def api_approve_deletion(
    event_id: str,
    caller: User = Depends(current_caller),
    db: Session = Depends(get_db),
):
    lifecycle.approve_deletion(db, caller, event_id)
    return {"deleted": event_id}


@app.delete("/api/v1/events/{event_id}", status_code=204)
def api_delete_event(
    event_id: str,
    caller: User = Depends(current_caller),
    db: Session = Depends(get_db),
):
    lifecycle.delete_event(db, caller, event_id)
    return Response(status_code=204)


@app.post("/api/v1/events/{event_id}/like")
def api_like_event(
    event_id: str,
    caller: User = Depends(current_caller),
    db: Session = Depends(get_db),
):
    lifecycle.like_event(db, caller, event_id)
    return {"liked": True}


@app.delete("/api/v1/events/{event_id}/like")
def api_unlike_event(
    event_id: str,
    caller: User = Depends(current_caller),
    db: Session = Depends(get_db),
):
    lifecycle.unlike_event(db, caller, event_id)
    return {"liked": False}


@app.post("/api/v1/events/{event_id}/register", status_code=201)
def api_register(
    event_id: str, payload: RegistrationPayload, db: Session = Depends(get_db)
):
    details = payload.model_dump(exclude={"sub_event_id"})
    result = registrations.register(db, event_id, payload.sub_event_id, details)
    return {
        "registration": serialize_registration(result.registration),
        "calendar_url": result.calendar_url,
    }


@app.get("/api/v1/events/{event_id}/registrations")
def api_list_registrations(
    event_id: str,
    sub_event_id: str | None = Query(None),
    caller: User = Depends(current_caller),
    db: Session = Depends(get_db),
):
    rows = registrations.get_registrations(db, caller, event_id, sub_event_id)
    return {
        "registrations": [serialize_registration(r) for r in rows],
        "count": len(rows),
    }


@app.get("/api/v1/notifications")
def api_list_notifications(
    caller: User = Depends(current_caller), db: Session = Depends(get_db)
):
    rows = notifications.list_notifications(db, caller)
    return {
        "notifications": [serialize_notification(n) for n in rows],
        "unread_count": notifications.unread_count(db, caller),
    }


@app.post("/api/v1/notifications", status_code=201)
def api_create_notification(
    payload: NotificationCreatePayload,
    caller: User = Depends(current_caller),
    db: Session = Depends(get_db),
):
    _require_superadmin(caller)
    if not db.get(User, payload.recipient_id):
        raise NotFoundError("Recipient not found")
    notification = notifications.notify_one(db, **payload.model_dump())
    return {"notification": serialize_notification(notification)}


@app.post("/api/v1/notifications/broadcast", status_code=201)
def api_broadcast_notification(
    payload: BroadcastPayload,
    caller: User = Depends(current_caller),
    db: Session = Depends(get_db),
):
    sent = notifications.notify_broadcast_to_role(
        db, caller, message=payload.message, role=payload.role, type=payload.type
    )
    return {"sent": sent}


@app.put("/api/v1/notifications/read-all")
def api_mark_all_read(
    caller: User = Depends(current_caller), db: Session = Depends(get_db)
):
    return {"updated": notifications.mark_all_read(db, caller)}


@app.put("/api/v1/notifications/{notification_id}/read")
def api_mark_read(
    notification_id: str,
    caller: User = Depends(current_caller),
    db: Session = Depends(get_db),
):
    notification = notifications.mark_read(db, caller, notification_id)
    return {"notification": serialize_notification(notification)}


@app.delete("/api/v1/notifications/{notification_id}", status_code=204)
def api_delete_notification(
    notification_id: str,
    caller: User = Depends(current_caller),
    db: Session = Depends(get_db),
):
    notifications.delete_notification(db, caller, notification_id)
    return Response(status_code=204)


@app.post("/api/v1/reports/event/{event_id}")
def api_create_report(
    event_id: str,
    response: Response,
    caller: User = Depends(current_caller),
    db: Session = Depends(get_db),
):
    report, created = reports.create_or_get_report(db, caller, event_id)
    response.status_code = 201 if created else 200
    return {"report": serialize_report(report), "created": created}


@app.get("/api/v1/reports")
def api_my_reports(
    caller: User = Depends(current_caller), db: Session = Depends(get_db)
):
    rows = reports.list_my_reports(db, caller)
    return {"reports": [serialize_report(r) for r in rows], "count": len(rows)}


@app.get("/api/v1/reports/all")
def api_all_reports(
    caller: User = Depends(current_caller), db: Session = Depends(get_db)
):
    rows = reports.list_all_reports(db, caller)
    return {"reports": [serialize_report(r) for r in rows], "count": len(rows)}


@app.get("/api/v1/reports/{report_id}")
def api_get_report(
    report_id: str,
    caller: User = Depends(current_caller),
    db: Session = Depends(get_db),
):
    return {"report": serialize_report(reports.get_report(db, caller, report_id))}


@app.put("/api/v1/reports/{report_id}")
def api_update_report(
    report_id: str,
    payload: ReportUpdatePayload,
    caller: User = Depends(current_caller),
    db: Session = Depends(get_db),
):
    report = reports.update_report(
        db, caller, report_id, payload.model_dump(exclude_unset=True)
    )
    return {"report": serialize_report(report)}


@app.put("/api/v1/reports/{report_id}/submit")
def api_submit_report(
    report_id: str,
    caller: User = Depends(current_caller),
    db: Session = Depends(get_db),
):
    return {"report": serialize_report(reports.submit_report(db, caller, report_id))}


@app.put("/api/v1/reports/{report_id}/review")
def api_review_report(
    report_id: str,
    payload: ReportReviewPayload,
    caller: User = Depends(current_caller),
    db: Session = Depends(get_db),
):
    report = reports.review_report(db, caller, report_id, payload.review_comments)
    return {"report": serialize_report(report)}


@app.websocket("/ws")
async def push_socket(websocket: WebSocket, token: str | None = Query(None)):
    """Live updates. Anonymous sockets only receive global pushes."""
    user_id = None
    if token:
        db = SessionLocal()
        try:
            user = find_user_by_token(db, token)
            user_id = user.id if user else None
        finally:
            db.close()
        if user_id is None:
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

    await websocket.accept()
    connection = push_hub.connect(user_id)
    logger.info("Socket %d opened for %s", connection.id, user_id or "anonymous")
    try:
        await websocket.send_json(
            {"event": "connected", "payload": {"user_id": user_id}}
        )
        await push_hub.pump(websocket, connection)
    finally:
        push_hub.disconnect(connection)
        logger.info("Socket %d closed", connection.id)
