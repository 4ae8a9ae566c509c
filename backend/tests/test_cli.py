"""
Flask CLI commands.

Verifies:
- system init creates the default admin once
- users create reports validation failures instead of raising
- reminders poll prints the scan summary
"""

from datetime import timedelta

from crm.extensions import db
from crm.models import Event, EventReminder, User
from crm.time_utils import utcnow


class TestSystemCommands:

    def test_init_is_idempotent(self, app, db_session):
        runner = app.test_cli_runner()

        first = runner.invoke(args=["system", "init"])
        second = runner.invoke(args=["system", "init"])

        assert first.exit_code == 0
        assert "Created admin: admin@crm.local" in first.output
        assert "Using existing admin" in second.output
        assert db_session.query(User).filter_by(role="admin").count() == 1


class TestUserCommands:

    def test_create_user(self, app, db_session):
        result = app.test_cli_runner().invoke(args=[
            "users", "create",
            "--email", "ada@crm.local",
            "--first-name", "Ada",
            "--last-name", "Lovelace",
            "--password", "Password123!",
            "--role", "manager",
        ])

        assert result.exit_code == 0
        assert "PASS Created user ada@crm.local" in result.output
        assert db_session.query(User).filter_by(email="ada@crm.local").one().role == "manager"

    def test_weak_password(self, app, db_session):
        result = app.test_cli_runner().invoke(args=[
            "users", "create",
            "--email", "weak@crm.local",
            "--first-name", "Weak",
            "--last-name", "Password",
            "--password", "password",
        ])

        assert "FAIL Password validation failed" in result.output
        assert db_session.query(User).filter_by(email="weak@crm.local").first() is None

    def test_duplicate_email(self, app, user):
        result = app.test_cli_runner().invoke(args=[
            "users", "create",
            "--email", user.email,
            "--first-name", "Sam",
            "--last-name", "Again",
            "--password", "Password123!",
        ])

        assert "FAIL This e-mail address is already in use" in result.output

    def test_list_users(self, app, user, admin):
        result = app.test_cli_runner().invoke(args=["users", "list"])

        assert user.email in result.output
        assert admin.email in result.output


class TestReminderCommands:

    def test_poll(self, app, user, outbox):
        now = utcnow()
        event = Event(
            user_id=user.id,
            title="Contract signing",
            start_at=now + timedelta(minutes=30),
            end_at=now + timedelta(minutes=90),
        )
        event.reminders = [EventReminder(minutes_before=30, channel="EMAIL")]
        db.session.add(event)
        db.session.commit()

        result = app.test_cli_runner().invoke(args=["reminders", "poll"])

        assert result.exit_code == 0
        assert f"event={event.id}" in result.output
        assert "DONE sent=1 skipped=0 failed=0" in result.output
        assert len(outbox) == 1
