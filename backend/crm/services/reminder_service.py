# Overview: Event reminder poller; scans upcoming events and dispatches reminders whose offset has elapsed.

"""
Event Reminder Poller

Every poll looks at events starting within the next 24 hours that are not
cancelled. A reminder fires when its fire time
(start_at - minutes_before) is within DISPATCH_WINDOW of now.

Delivery is best-effort and at-least-once: nothing is recorded on the
reminder row, and a failing reminder is logged and skipped.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from ..extensions import db
from ..models import Event
from crm.time_utils import utcnow

logger = logging.getLogger(__name__)


LOOKAHEAD = timedelta(hours=24)
DISPATCH_WINDOW = timedelta(minutes=5)

DISPATCH_SENT = "sent"
DISPATCH_SKIPPED = "skipped"


@dataclass
class PollSummary:
    events_scanned: int = 0
    dispatched: int = 0
    skipped: int = 0
    failed: int = 0
    attempts: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "events_scanned": self.events_scanned,
            "dispatched": self.dispatched,
            "skipped": self.skipped,
            "failed": self.failed,
            "attempts": list(self.attempts),
        }


class ReminderDispatcher:
    """
    Routes a due reminder to its channel.

    EMAIL goes to the event owner through the mailer. PUSH and IN_APP have
    no transport yet and are reported as skipped.
    """

    def __init__(self, mailer):
        self.mailer = mailer

    def dispatch(self, event: Event, reminder) -> str:
        if reminder.channel == "EMAIL":
            self.mailer.send_event_reminder(event, reminder)
            return DISPATCH_SENT
        logger.info(
            "No transport for %s reminder %s on event %s; skipped",
            reminder.channel, reminder.id, event.id,
        )
        return DISPATCH_SKIPPED


def is_due(start_at: datetime, minutes_before: int, now: datetime) -> bool:
    fire_at = start_at - timedelta(minutes=minutes_before)
    return abs(fire_at - now) < DISPATCH_WINDOW


def poll_event_reminders(dispatcher, now: datetime | None = None) -> PollSummary:
    """Run one scan. Per-reminder failures never abort the scan."""
    now = now or utcnow()
    summary = PollSummary()

    events = (
        db.session.query(Event)
        .filter(
            Event.start_at > now,
            Event.start_at < now + LOOKAHEAD,
            Event.status != "CANCELLED",
        )
        .order_by(Event.start_at.asc())
        .all()
    )
    summary.events_scanned = len(events)

    for event in events:
        for reminder in event.reminders:
            if not is_due(event.start_at, reminder.minutes_before, now):
                continue
            attempt = {"event_id": event.id, "reminder_id": reminder.id, "channel": reminder.channel}
            try:
                outcome = dispatcher.dispatch(event, reminder)
            except Exception as exc:
                logger.exception("Reminder %s for event %s failed", reminder.id, event.id)
                summary.failed += 1
                summary.attempts.append({**attempt, "status": "failed", "message": str(exc)})
                continue
            if outcome == DISPATCH_SKIPPED:
                summary.skipped += 1
            else:
                summary.dispatched += 1
            summary.attempts.append({**attempt, "status": outcome})

    if summary.attempts:
        logger.info(
            "Reminder poll: %s events, %s sent, %s skipped, %s failed",
            summary.events_scanned, summary.dispatched, summary.skipped, summary.failed,
        )
    return summary


class ReminderPoller:
    """
    Background thread running poll_event_reminders every `interval` seconds
    inside an application context.
    """

    def __init__(self, app, dispatcher, interval: float = 300):
        self.app = app
        self.dispatcher = dispatcher
        self.interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> PollSummary:
        with self.app.app_context():
            try:
                return poll_event_reminders(self.dispatcher)
            finally:
                db.session.remove()

    def run_forever(self) -> None:
        logger.info("Reminder poller started (interval %ss)", self.interval)
        while not self._stop.is_set():
            try:
                self.run_once()
            except Exception:
                logger.exception("Reminder poll failed")
            self._stop.wait(self.interval)
        logger.info("Reminder poller stopped")

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self.run_forever, name="reminder-poller", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 5) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
