# Overview: Flask CLI command groups for bootstrap, user inspection, and the reminder poller.

# backend/crm/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates tables and the default admin user.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/bootstrap:
# - python -m flask users list
#   List all users with role and active status.
# - python -m flask users create --email ada@crm.local --first-name Ada --last-name Lovelace --role admin
#   Create a user (prompts if options are omitted).
#
# Event reminders:
# - python -m flask reminders poll
#   Run a single reminder scan and print what was dispatched.
# - python -m flask reminders run [--interval 300]
#   Run the poller loop in the foreground until interrupted.

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import User
from .models.auth import ROLE_ADMIN, VALID_ROLES
from .services.auth_service import create_user, PasswordValidationError
from .services.reminder_service import ReminderDispatcher, ReminderPoller, poll_event_reminders
from .services.session_service import cleanup_expired_sessions
from .validation import ConflictError, ValidationError


DEFAULT_ADMIN_EMAIL = "admin@crm.local"
DEFAULT_PASSWORD = "Password123!"


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Initialize the CRM database and default admin account.

    Creates all tables that do not exist yet, then an admin user
    (admin@crm.local / "Password123!") when no admin exists.

    SECURITY: Change the password immediately in production!
    """
    click.echo("START Initializing CRM system...")
    db.create_all()
    click.echo("PASS Tables ready")

    admin = db.session.query(User).filter_by(role=ROLE_ADMIN).first()
    if admin:
        click.echo(f"PASS Using existing admin: {admin.email} (ID: {admin.id})")
    else:
        admin = create_user(
            first_name="System",
            last_name="Admin",
            email=DEFAULT_ADMIN_EMAIL,
            password=DEFAULT_PASSWORD,
            role=ROLE_ADMIN,
        )
        click.echo(f"PASS Created admin: {admin.email} (ID: {admin.id})")
        click.echo(f"WARN Default password is {DEFAULT_PASSWORD!r}; change it after first login")

    removed = cleanup_expired_sessions()
    if removed:
        click.echo(f"PASS Removed {removed} stale sessions")

    click.echo("DONE System initialized.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--email', prompt=True, help='Email address')
@click.option('--first-name', prompt=True, help='First name')
@click.option('--last-name', prompt=True, help='Last name')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(VALID_ROLES), default='user', show_default=True, help='Role')
@with_appcontext
def create_user_cli(email, first_name, last_name, password, role):
    """
    Create a new user.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character
    """
    try:
        user = create_user(
            first_name=first_name,
            last_name=last_name,
            email=email,
            password=password,
            role=role,
        )
        click.echo(f"PASS Created user {user.email} (ID: {user.id}, role: {user.role})")

    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")
        click.echo("Requirements: 8+ chars, uppercase, lowercase, digit, special char")
    except (ValidationError, ConflictError) as e:
        db.session.rollback()
        click.echo(f"FAIL {str(e)}")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with their roles."""
    users = db.session.query(User).order_by(User.id.asc()).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Email':<32} {'Name':<28} {'Role':<10} {'Active'}")
    click.echo("="*90)

    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.email:<32} {user.full_name:<28} {user.role:<10} {active_str}")

    click.echo("="*90 + "\n")


@click.group('reminders')
def reminders_group():
    """Event reminder poller commands."""


@reminders_group.command('poll')
@with_appcontext
def poll_reminders():
    """Run one reminder scan against the current time."""
    dispatcher = ReminderDispatcher(current_app.extensions["crm.mailer"])
    summary = poll_event_reminders(dispatcher)

    click.echo(f"PASS Scanned {summary.events_scanned} upcoming events")
    for attempt in summary.attempts:
        label = "FAIL" if attempt["status"] == "failed" else "PASS"
        click.echo(
            f"{label} event={attempt['event_id']} reminder={attempt['reminder_id']} "
            f"channel={attempt['channel']} status={attempt['status']}"
        )
    click.echo(
        f"DONE sent={summary.dispatched} skipped={summary.skipped} failed={summary.failed}"
    )


@reminders_group.command('run')
@click.option('--interval', type=int, default=None, help='Seconds between scans (default: config)')
@with_appcontext
def run_reminders(interval):
    """Run the reminder poller in the foreground (Ctrl+C to stop)."""
    app = current_app._get_current_object()
    poller = ReminderPoller(
        app,
        ReminderDispatcher(app.extensions["crm.mailer"]),
        interval=interval or app.config["REMINDER_POLL_INTERVAL_SECONDS"],
    )
    click.echo(f"START Reminder poller running every {poller.interval}s")
    try:
        poller.run_forever()
    except KeyboardInterrupt:
        click.echo("\nSTOP Reminder poller interrupted")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(reminders_group)
