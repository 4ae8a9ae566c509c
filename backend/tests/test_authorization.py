"""
Authorization tests.

Verifies:
- Unauthenticated requests return 401
- Expired, revoked and unknown tokens are rejected
- Regular users are denied admin-only operations (403)
- Admins can list users and change roles
- The health endpoint is public
"""

from datetime import timedelta

import pytest

from crm.models import SessionToken
from crm.services.session_service import create_session, hash_token
from crm.time_utils import utcnow
from conftest import auth_headers


# =============================================================================
# UNAUTHENTICATED ACCESS (401)
# =============================================================================


class TestUnauthenticatedAccess:
    """All protected endpoints return 401 without a token."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/auth/me"),
            ("POST", "/api/auth/logout"),
            ("GET", "/api/auth/google-auth-url"),
            ("PUT", "/api/users/profile"),
            ("GET", "/api/users/all"),
            ("GET", "/api/customers"),
            ("POST", "/api/customers"),
            ("GET", "/api/customers/stats"),
            ("GET", "/api/interactions"),
            ("GET", "/api/interactions/follow-ups"),
            ("GET", "/api/proposals"),
            ("POST", "/api/proposals"),
            ("GET", "/api/invoices"),
            ("POST", "/api/invoices/1/payments"),
            ("GET", "/api/events"),
            ("POST", "/api/events/sync-google-calendar"),
        ],
    )
    def test_requires_auth(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_malformed_header(self, client, db_session):
        resp = client.get("/api/customers", headers={"Authorization": "Token abc"})
        assert resp.status_code == 401

    def test_unknown_token(self, client, db_session):
        resp = client.get("/api/customers", headers=auth_headers("not-a-real-token"))
        assert resp.status_code == 401


# =============================================================================
# SESSION LIFETIME
# =============================================================================


class TestSessionLifetime:

    def test_expired_session(self, client, db_session, user):
        session, token = create_session(user.id)
        session.expires_at = utcnow() - timedelta(minutes=1)
        db_session.commit()

        assert client.get("/api/auth/me", headers=auth_headers(token)).status_code == 401

    def test_idle_session_is_revoked(self, client, db_session, user):
        session, token = create_session(user.id)
        session.last_used_at = utcnow() - timedelta(days=2)
        db_session.commit()

        assert client.get("/api/auth/me", headers=auth_headers(token)).status_code == 401
        stored = db_session.query(SessionToken).filter_by(token_hash=hash_token(token)).one()
        assert stored.is_revoked is True

    def test_deactivated_user(self, client, db_session, user, user_headers):
        user.is_active = False
        db_session.commit()

        assert client.get("/api/auth/me", headers=user_headers).status_code == 401

    def test_only_token_hash_is_stored(self, db_session, user):
        _, token = create_session(user.id)
        assert db_session.query(SessionToken).filter_by(token_hash=token).first() is None


# =============================================================================
# REGULAR USER DENIED ADMIN OPERATIONS (403)
# =============================================================================


class TestUserDeniedAdminOperations:

    def test_cannot_list_users(self, client, user_headers):
        resp = client.get("/api/users/all", headers=user_headers)
        assert resp.status_code == 403

    def test_cannot_change_roles(self, client, user, user_headers):
        resp = client.put(f"/api/users/{user.id}/role", json={"role": "admin"}, headers=user_headers)
        assert resp.status_code == 403
        assert user.role == "user"


# =============================================================================
# ADMIN OPERATIONS
# =============================================================================


class TestAdminOperations:

    def test_list_users(self, client, admin_headers, user):
        resp = client.get("/api/users/all", headers=admin_headers)

        assert resp.status_code == 200
        assert {u["email"] for u in resp.get_json()["data"]} == {"admin@crm.test", user.email}

    def test_promote_user(self, client, admin_headers, user):
        resp = client.put(f"/api/users/{user.id}/role", json={"role": "admin"}, headers=admin_headers)

        assert resp.status_code == 200
        assert resp.get_json()["data"]["role"] == "admin"

    def test_invalid_role(self, client, admin_headers, user):
        resp = client.put(f"/api/users/{user.id}/role", json={"role": "owner"}, headers=admin_headers)
        assert resp.status_code == 400

    def test_cannot_demote_self(self, client, admin, admin_headers):
        resp = client.put(f"/api/users/{admin.id}/role", json={"role": "user"}, headers=admin_headers)
        assert resp.status_code == 400

    def test_unknown_user(self, client, admin_headers):
        resp = client.put("/api/users/424242/role", json={"role": "admin"}, headers=admin_headers)
        assert resp.status_code == 404


# =============================================================================
# PUBLIC ENDPOINTS
# =============================================================================


class TestHealth:

    def test_health_is_public(self, client, db_session):
        resp = client.get("/api/health")

        assert resp.status_code == 200
        body = resp.get_json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"]["status"] == "healthy"
        assert body["checks"]["integrations"]["details"]["mail_suppressed"] is True
        assert body["checks"]["integrations"]["details"]["reminder_poller_running"] is False
