"""
Event reminder poller.

Verifies:
- An event 58-62 minutes out with a 60 minute e-mail reminder gets exactly one dispatch
- Reminders outside the window, past events and cancelled events are ignored
- Channels without a transport are skipped
- A failing reminder does not stop the scan
"""

from datetime import timedelta

import pytest

from crm.extensions import db
from crm.models import Event, EventReminder
from crm.services.reminder_service import (
    ReminderDispatcher,
    ReminderPoller,
    is_due,
    poll_event_reminders,
)
from crm.time_utils import utcnow


def make_event(user, *, starts_in: timedelta, reminders, status="PLANNED", title="Demo call"):
    now = utcnow()
    event = Event(
        user_id=user.id,
        title=title,
        start_at=now + starts_in,
        end_at=now + starts_in + timedelta(hours=1),
        status=status,
    )
    event.reminders = [EventReminder(minutes_before=m, channel=c) for m, c in reminders]
    db.session.add(event)
    db.session.commit()
    return event


class RecordingDispatcher:
    def __init__(self, fail_for=None):
        self.calls = []
        self.fail_for = fail_for or set()

    def dispatch(self, event, reminder):
        self.calls.append((event.id, reminder.id))
        if event.id in self.fail_for:
            raise RuntimeError("transport down")
        return "sent"


class TestIsDue:

    def test_window(self):
        now = utcnow()
        start = now + timedelta(minutes=60)
        assert is_due(start, 60, now)
        assert is_due(start, 56, now)
        assert not is_due(start, 65, now)
        assert not is_due(start, 30, now)


class TestPollEventReminders:

    @pytest.mark.parametrize("minutes_out", [58, 60, 62])
    def test_single_dispatch_for_due_email_reminder(self, app, user, outbox, minutes_out):
        event = make_event(user, starts_in=timedelta(minutes=minutes_out), reminders=[(60, "EMAIL")])

        summary = poll_event_reminders(ReminderDispatcher(app.extensions["crm.mailer"]))

        assert summary.dispatched == 1
        assert [a["event_id"] for a in summary.attempts] == [event.id]
        assert summary.attempts[0]["status"] == "sent"
        assert len(outbox) == 1
        assert outbox[0].to == [user.email]
        assert "Demo call" in outbox[0].subject

    def test_only_the_due_offset_fires(self, user):
        make_event(user, starts_in=timedelta(minutes=60), reminders=[(60, "EMAIL"), (15, "EMAIL"), (1440, "EMAIL")])
        dispatcher = RecordingDispatcher()

        summary = poll_event_reminders(dispatcher)

        assert len(dispatcher.calls) == 1
        assert summary.dispatched == 1

    def test_ignores_cancelled_past_and_far_events(self, user):
        make_event(user, starts_in=timedelta(minutes=60), reminders=[(60, "EMAIL")], status="CANCELLED")
        make_event(user, starts_in=timedelta(minutes=-30), reminders=[(0, "EMAIL")])
        make_event(user, starts_in=timedelta(hours=30), reminders=[(30 * 60, "EMAIL")])
        dispatcher = RecordingDispatcher()

        summary = poll_event_reminders(dispatcher)

        assert dispatcher.calls == []
        assert summary.events_scanned == 0

    def test_channels_without_transport_are_skipped(self, app, user, outbox):
        make_event(user, starts_in=timedelta(minutes=30), reminders=[(30, "PUSH")])

        summary = poll_event_reminders(ReminderDispatcher(app.extensions["crm.mailer"]))

        assert summary.skipped == 1
        assert summary.dispatched == 0
        assert len(outbox) == 0

    def test_failure_does_not_abort_scan(self, user):
        broken = make_event(user, starts_in=timedelta(minutes=60), reminders=[(60, "EMAIL")], title="Broken")
        healthy = make_event(user, starts_in=timedelta(minutes=61), reminders=[(60, "EMAIL")], title="Healthy")
        dispatcher = RecordingDispatcher(fail_for={broken.id})

        summary = poll_event_reminders(dispatcher)

        assert summary.failed == 1
        assert summary.dispatched == 1
        assert {call[0] for call in dispatcher.calls} == {broken.id, healthy.id}
        failed = [a for a in summary.attempts if a["status"] == "failed"]
        assert failed[0]["message"] == "transport down"


class TestReminderPoller:

    def test_run_once(self, app, user):
        make_event(user, starts_in=timedelta(minutes=60), reminders=[(60, "EMAIL")])
        dispatcher = RecordingDispatcher()
        poller = ReminderPoller(app, dispatcher, interval=300)

        summary = poller.run_once()

        assert summary.dispatched == 1
        assert not poller.running

    def test_start_and_stop(self, app, db_session):
        poller = ReminderPoller(app, RecordingDispatcher(), interval=60)
        poller.start()
        try:
            assert poller.running
        finally:
            poller.stop()
        assert not poller.running
