# Overview: Service-layer operations for calendar events; encapsulates business logic and database work.

"""
Event Service

Events belong to a user; admins see and edit everyone's events, other
users only their own. Google Calendar sync and attendee mails are side
effects of create/update/delete: their failures are logged and never
undo the primary operation.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import func, or_

from ..extensions import db
from ..models import Customer, Event, EventAttendee, EventReminder, User
from ..models.events import (
    ATTENDEE_STATUSES,
    DEFAULT_EVENT_COLOR,
    EVENT_STATUSES,
    EVENT_TYPES,
    REMINDER_CHANNELS,
)
from ..validation import (
    ModelValidationPolicy,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
    enforce_range,
    require_int,
    validate_payload,
)
from .google_calendar import CalendarSyncError
from .mailer import MailError
from .query_utils import paginate_query, parse_date_arg, parse_int_arg, parse_paging, parse_sort
from crm.time_utils import utcnow

logger = logging.getLogger(__name__)


EVENT_POLICY = ModelValidationPolicy(
    writable_fields={
        "title", "description", "type", "start_at", "end_at", "all_day",
        "location", "status", "color", "customer_id",
    },
    required_on_create={"title", "start_at", "end_at"},
    choices={"type": EVENT_TYPES, "status": EVENT_STATUSES},
)

REMINDER_POLICY = ModelValidationPolicy(
    writable_fields={"minutes_before", "channel"},
    required_on_create={"minutes_before"},
    choices={"channel": REMINDER_CHANNELS},
)

ATTENDEE_POLICY = ModelValidationPolicy(
    writable_fields={"name", "email", "status"},
    required_on_create={"email"},
    choices={"status": ATTENDEE_STATUSES},
)

SORT_FIELDS = {
    "start_at": Event.start_at,
    "end_at": Event.end_at,
    "created_at": Event.created_at,
    "title": Event.title,
    "type": Event.type,
    "status": Event.status,
}

# Request flags that steer side effects; never stored
OPTION_KEYS = ("sync_with_google", "send_notifications", "notify_changes")

# Reminder offsets are capped at one week
MAX_REMINDER_MINUTES = 7 * 24 * 60


def _split_payload(payload: dict | None) -> tuple[dict, dict, object, bool, object, bool]:
    payload = dict(payload or {})
    options = {key: bool(payload.pop(key, False)) for key in OPTION_KEYS}
    has_reminders = "reminders" in payload
    reminders = payload.pop("reminders", None)
    has_attendees = "attendees" in payload
    attendees = payload.pop("attendees", None)
    for key in ("id", "user", "user_id", "customer", "google_calendar_id", "created_at", "updated_at"):
        payload.pop(key, None)
    return payload, options, reminders, has_reminders, attendees, has_attendees


def _build_children(model, policy: ModelValidationPolicy, items, label: str) -> list:
    if items is None:
        return []
    if not isinstance(items, list):
        raise ValidationError(f"{label} must be a list")
    rows = []
    for idx, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise ValidationError(f"{label}[{idx}] must be an object")
        payload = {k: v for k, v in raw.items() if k != "id"}
        try:
            patch = validate_payload(model=model, payload=payload, policy=policy, partial=False)
        except ValidationError as exc:
            raise ValidationError(f"{label}[{idx}]: {exc}") from exc
        rows.append(model(**patch))
    return rows


def build_reminders(items) -> list[EventReminder]:
    reminders = _build_children(EventReminder, REMINDER_POLICY, items, "reminders")
    for reminder in reminders:
        enforce_range("minutes_before", reminder.minutes_before, minimum=0, maximum=MAX_REMINDER_MINUTES)
    return reminders


def build_attendees(items) -> list[EventAttendee]:
    attendees = _build_children(EventAttendee, ATTENDEE_POLICY, items, "attendees")
    for attendee in attendees:
        attendee.email = attendee.email.lower()
        if "@" not in attendee.email:
            raise ValidationError("attendee email must be a valid e-mail address")
    return attendees


def ensure_dates(start_at: datetime | None, end_at: datetime | None) -> None:
    if start_at and end_at and end_at < start_at:
        raise ValidationError("end_at cannot be before start_at")


def _ensure_owner_or_admin(event: Event, user: User) -> None:
    if event.user_id != user.id and not user.is_admin:
        raise PermissionDeniedError("You are not allowed to access this event")


def _check_customer(customer_id) -> None:
    if customer_id is None:
        return
    if not db.session.get(Customer, require_int(customer_id, "customer_id")):
        raise NotFoundError("Customer not found")


# ----------------------------------------------------------------------
# Side effects
# ----------------------------------------------------------------------

def _push_to_google(event: Event, calendar) -> None:
    owner = event.user
    if calendar is None or owner is None or not owner.google_calendar_enabled:
        return
    try:
        if event.google_calendar_id:
            calendar.update_event(owner, event)
        else:
            event.google_calendar_id = calendar.create_event(owner, event)
        db.session.commit()
    except CalendarSyncError:
        db.session.rollback()
        logger.exception("Google Calendar sync failed for event %s", event.id)


def _notify_attendees(event: Event, mailer, action: str, attendees=None) -> None:
    attendees = list(attendees if attendees is not None else event.attendees)
    if mailer is None or not attendees:
        return
    try:
        mailer.send_event_invitation(event, attendees, action=action)
    except MailError:
        logger.exception("Attendee notification (%s) failed for event %s", action, event.id)


# ----------------------------------------------------------------------
# CRUD
# ----------------------------------------------------------------------

def list_events(args, *, user: User) -> tuple[list[Event], dict]:
    page, limit = parse_paging(args)
    sort_col, _ = parse_sort(args, SORT_FIELDS, "start_at")
    order = (args.get("sort_order") or args.get("sort_direction") or "asc").lower()
    if ":" in (args.get("sort_by") or ""):
        order = args["sort_by"].split(":", 1)[1].lower()

    query = db.session.query(Event)
    if not user.is_admin:
        query = query.filter(Event.user_id == user.id)
    else:
        owner_id = parse_int_arg(args.get("user_id"), "user_id")
        if owner_id is not None:
            query = query.filter(Event.user_id == owner_id)

    if args.get("type"):
        query = query.filter(Event.type == args["type"])
    if args.get("status"):
        query = query.filter(Event.status == args["status"])
    customer_id = parse_int_arg(args.get("customer_id") or args.get("customer"), "customer_id")
    if customer_id is not None:
        query = query.filter(Event.customer_id == customer_id)
    start = parse_date_arg(args.get("start_date"), "start_date")
    if start:
        query = query.filter(Event.start_at >= start)
    end = parse_date_arg(args.get("end_date"), "end_date")
    if end:
        query = query.filter(Event.end_at <= end)
    search = (args.get("search") or "").strip()
    if search:
        like = f"%{search}%"
        query = query.filter(or_(
            Event.title.ilike(like),
            Event.description.ilike(like),
            Event.location.ilike(like),
        ))

    query = query.order_by(sort_col.desc() if order == "desc" else sort_col.asc(), Event.id.asc())
    return paginate_query(query, page, limit)


def get_event(event_id: int, *, user: User) -> Event:
    event = db.session.get(Event, event_id)
    if not event:
        raise NotFoundError("Event not found")
    _ensure_owner_or_admin(event, user)
    return event


def create_event(payload: dict, *, user: User, calendar=None, mailer=None) -> Event:
    """
    Create an event owned by `user`.

    With sync_with_google the event is pushed to the owner's Google
    Calendar; with send_notifications attendees receive an invitation.
    """
    fields, options, reminders, _, attendees, _ = _split_payload(payload)
    patch = validate_payload(model=Event, payload=fields, policy=EVENT_POLICY, partial=False)
    ensure_dates(patch["start_at"], patch["end_at"])
    _check_customer(patch.get("customer_id"))
    if not patch.get("color"):
        patch["color"] = DEFAULT_EVENT_COLOR

    event = Event(user_id=user.id, **patch)
    event.reminders = build_reminders(reminders)
    event.attendees = build_attendees(attendees)
    db.session.add(event)
    db.session.commit()
    logger.info("Event %s created by user %s", event.id, user.id)

    if options["sync_with_google"]:
        _push_to_google(event, calendar)
    if options["send_notifications"]:
        _notify_attendees(event, mailer, "created")
    return event


def update_event(event_id: int, payload: dict, *, user: User, calendar=None, mailer=None) -> Event:
    event = get_event(event_id, user=user)

    fields, options, reminders, has_reminders, attendees, has_attendees = _split_payload(payload)
    patch = validate_payload(model=Event, payload=fields, policy=EVENT_POLICY, partial=True)
    for key in ("start_at", "end_at"):
        if key in patch and patch[key] is None:
            raise ValidationError(f"{key} cannot be null")
    ensure_dates(patch.get("start_at", event.start_at), patch.get("end_at", event.end_at))
    if "customer_id" in patch:
        _check_customer(patch["customer_id"])

    new_reminders = build_reminders(reminders) if has_reminders else None
    new_attendees = build_attendees(attendees) if has_attendees else None

    for key, value in patch.items():
        setattr(event, key, value)
    if new_reminders is not None:
        event.reminders = new_reminders
    if new_attendees is not None:
        event.attendees = new_attendees
    db.session.commit()

    if event.google_calendar_id or options["sync_with_google"]:
        _push_to_google(event, calendar)
    if options["notify_changes"]:
        _notify_attendees(event, mailer, "updated")
    return event


def delete_event(event_id: int, *, user: User, calendar=None, mailer=None, notify_cancellation: bool = False) -> None:
    event = get_event(event_id, user=user)
    owner = event.user

    if event.google_calendar_id and calendar is not None and owner and owner.google_calendar_enabled:
        try:
            calendar.delete_event(owner, event.google_calendar_id)
        except CalendarSyncError:
            logger.exception("Google Calendar delete failed for event %s", event.id)
    if notify_cancellation:
        _notify_attendees(event, mailer, "cancelled")

    db.session.delete(event)
    db.session.commit()
    logger.info("Event %s deleted by user %s", event_id, user.id)


def event_stats(*, user: User, now: datetime | None = None) -> dict:
    now = now or utcnow()
    base = db.session.query(Event).filter(Event.user_id == user.id)

    by_type = dict(
        db.session.query(Event.type, func.count(Event.id))
        .filter(Event.user_id == user.id)
        .group_by(Event.type)
        .all()
    )
    by_status = dict(
        db.session.query(Event.status, func.count(Event.id))
        .filter(Event.user_id == user.id)
        .group_by(Event.status)
        .all()
    )

    by_date: dict[str, int] = {}
    for event in base.filter(Event.start_at >= now - timedelta(days=30)).all():
        key = event.start_at.strftime("%Y-%m-%d")
        by_date[key] = by_date.get(key, 0) + 1

    return {
        "total": base.count(),
        "by_type": {t: by_type.get(t, 0) for t in EVENT_TYPES},
        "by_status": {s: by_status.get(s, 0) for s in EVENT_STATUSES},
        "by_date": [{"date": d, "count": c} for d, c in sorted(by_date.items())],
    }


def sync_google_calendar(user: User, *, calendar, now: datetime | None = None, days: int = 7) -> list[dict]:
    """
    Push the user's events for the next `days` days to Google Calendar.

    Returns one {"id", "status"[, "message"]} entry per event; a failing
    event does not stop the others.
    """
    if not user.google_calendar_enabled or not (user.google_access_token or user.google_refresh_token):
        raise ValidationError("Google Calendar is not connected for this user")

    now = now or utcnow()
    events = (
        db.session.query(Event)
        .filter(
            Event.user_id == user.id,
            Event.start_at >= now,
            Event.start_at <= now + timedelta(days=days),
        )
        .order_by(Event.start_at.asc())
        .all()
    )

    results = []
    for event in events:
        try:
            if event.google_calendar_id:
                calendar.update_event(user, event)
            else:
                event.google_calendar_id = calendar.create_event(user, event)
            results.append({"id": event.id, "status": "success"})
        except CalendarSyncError as exc:
            logger.warning("Google Calendar sync failed for event %s: %s", event.id, exc)
            results.append({"id": event.id, "status": "error", "message": str(exc)})

    user.google_calendar_synced_at = now
    db.session.commit()
    return results
