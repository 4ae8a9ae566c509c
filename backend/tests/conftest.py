"""
Pytest fixtures for CRM backend tests.

Provides test database setup, users with session tokens, a customer,
a stubbed Google Calendar transport and the test client.
"""

from datetime import timedelta

import httpx
import pytest

from crm import create_app
from crm.extensions import db
from crm.models import Customer, User
from crm.models.auth import ROLE_ADMIN, ROLE_USER
from crm.services.auth_service import hash_password
from crm.services.google_calendar import GoogleCalendarClient
from crm.services.session_service import create_session
from crm.time_utils import utcnow


TEST_PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'MAIL_SUPPRESS_SEND': True,
        'PDF_OUTPUT_DIR': str(tmp_path_factory.mktemp("pdf")),
        'REMINDER_POLLER_ENABLED': False,
        'GOOGLE_CLIENT_ID': 'test-client-id',
        'GOOGLE_CLIENT_SECRET': 'test-client-secret',
        'GOOGLE_REDIRECT_URI': 'http://localhost:5173/google-callback',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        app.extensions["crm.mailer"].outbox.clear()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def outbox(app, db_session):
    """Messages captured by the suppressed mailer."""
    return app.extensions["crm.mailer"].outbox


def make_user(email: str, role: str = ROLE_USER, first_name: str = "Test", last_name: str = "User") -> User:
    user = User(
        first_name=first_name,
        last_name=last_name,
        email=email,
        role=role,
        password_hash=hash_password(TEST_PASSWORD),
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()
    return user


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


def headers_for(user: User) -> dict:
    _, token = create_session(user.id)
    return auth_headers(token)


@pytest.fixture(scope='function')
def user(db_session):
    """Regular sales user."""
    return make_user("sales@crm.test", first_name="Sam", last_name="Sales")


@pytest.fixture(scope='function')
def other_user(db_session):
    return make_user("other@crm.test", first_name="Olive", last_name="Other")


@pytest.fixture(scope='function')
def admin(db_session):
    return make_user("admin@crm.test", role=ROLE_ADMIN, first_name="Ada", last_name="Admin")


@pytest.fixture(scope='function')
def user_headers(user):
    return headers_for(user)


@pytest.fixture(scope='function')
def other_headers(other_user):
    return headers_for(other_user)


@pytest.fixture(scope='function')
def admin_headers(admin):
    return headers_for(admin)


@pytest.fixture(scope='function')
def customer(db_session, user):
    customer = Customer(
        first_name="Grace",
        last_name="Hopper",
        email="grace@example.com",
        company="Navy Labs",
        status="ACTIVE",
        source="REFERRAL",
        tags=["vip"],
        assigned_to_user_id=user.id,
    )
    db_session.add(customer)
    db_session.commit()
    return customer


class GoogleCalendarStub:
    """httpx transport handler standing in for the Google token and Calendar endpoints."""

    def __init__(self):
        self.requests = []
        self.fail_calendar = False

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == "oauth2.googleapis.com":
            return httpx.Response(200, json={
                "access_token": "access-token",
                "refresh_token": "refresh-token",
                "expires_in": 3600,
            })
        if self.fail_calendar:
            return httpx.Response(500, json={"error": "backend error"})
        if request.method == "POST":
            return httpx.Response(200, json={"id": f"google-{len(self.requests)}"})
        if request.method == "DELETE":
            return httpx.Response(204)
        return httpx.Response(200, json={})

    def calendar_calls(self, method: str) -> list:
        return [
            r for r in self.requests
            if r.url.host == "www.googleapis.com" and r.method == method
        ]


@pytest.fixture(scope='function')
def google_stub(app):
    """Swap the Google Calendar client for one backed by GoogleCalendarStub."""
    stub = GoogleCalendarStub()
    original = app.extensions["crm.calendar"]
    app.extensions["crm.calendar"] = GoogleCalendarClient(
        client_id="test-client-id",
        client_secret="test-client-secret",
        redirect_uri="http://localhost:5173/google-callback",
        http_client=httpx.Client(transport=httpx.MockTransport(stub)),
    )
    yield stub
    app.extensions["crm.calendar"] = original


@pytest.fixture(scope='function')
def google_user(db_session, user):
    """The regular user with Google Calendar connected."""
    user.google_access_token = "access-token"
    user.google_refresh_token = "refresh-token"
    user.google_token_expires_at = utcnow() + timedelta(hours=1)
    user.google_calendar_enabled = True
    db_session.commit()
    return user
