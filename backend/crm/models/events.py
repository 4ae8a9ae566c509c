from __future__ import annotations

from ..extensions import db
from crm.time_utils import to_utc_z


EVENT_TYPES = ["MEETING", "VISIT", "CALL", "EMAIL", "TASK", "OTHER"]
EVENT_STATUSES = ["PLANNED", "COMPLETED", "CANCELLED", "POSTPONED"]
REMINDER_CHANNELS = ["EMAIL", "PUSH", "IN_APP"]
ATTENDEE_STATUSES = ["INVITED", "ACCEPTED", "DECLINED", "TENTATIVE"]

DEFAULT_EVENT_COLOR = "#3498db"


class Event(db.Model):
    """
    Calendar event owned by a user, optionally tied to a customer.

    end_at >= start_at is enforced by event_service on create and update.
    google_calendar_id is set once the event has been pushed to the owner's
    Google Calendar.
    """
    __tablename__ = "events"
    __table_args__ = (
        db.Index("ix_events_user_start", "user_id", "start_at"),
        db.Index("ix_events_status_start", "status", "start_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    type = db.Column(db.String(16), nullable=False, default="MEETING")
    start_at = db.Column(db.DateTime(timezone=True), nullable=False)
    end_at = db.Column(db.DateTime(timezone=True), nullable=False)
    all_day = db.Column(db.Boolean, nullable=False, default=False)
    location = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(16), nullable=False, default="PLANNED")
    color = db.Column(db.String(16), nullable=False, default=DEFAULT_EVENT_COLOR)

    google_calendar_id = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    user = db.relationship("User")
    customer = db.relationship("Customer", backref=db.backref("events", lazy=True))
    reminders = db.relationship(
        "EventReminder",
        order_by="EventReminder.minutes_before",
        back_populates="event",
        cascade="all, delete-orphan",
        lazy="select",
    )
    attendees = db.relationship(
        "EventAttendee",
        order_by="EventAttendee.id",
        cascade="all, delete-orphan",
        lazy="select",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "type": self.type,
            "start_at": to_utc_z(self.start_at),
            "end_at": to_utc_z(self.end_at),
            "all_day": self.all_day,
            "location": self.location,
            "status": self.status,
            "color": self.color,
            "user_id": self.user_id,
            "user": self.user.summary() if self.user else None,
            "customer_id": self.customer_id,
            "customer": self.customer.summary() if self.customer else None,
            "reminders": [r.to_dict() for r in self.reminders],
            "attendees": [a.to_dict() for a in self.attendees],
            "google_calendar_id": self.google_calendar_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class EventReminder(db.Model):
    """Reminder offset in minutes before the event start, with a delivery channel."""
    __tablename__ = "event_reminders"
    __table_args__ = (
        db.CheckConstraint("minutes_before >= 0", name="ck_event_reminders_minutes_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id"), nullable=False, index=True)
    minutes_before = db.Column(db.Integer, nullable=False, default=30)
    channel = db.Column(db.String(16), nullable=False, default="EMAIL")

    event = db.relationship("Event", back_populates="reminders")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "minutes_before": self.minutes_before,
            "channel": self.channel,
        }


class EventAttendee(db.Model):
    __tablename__ = "event_attendees"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=True)
    email = db.Column(db.String(255), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="INVITED")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "status": self.status,
        }
