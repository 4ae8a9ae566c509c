"""
Authentication and profile API.

Verifies:
- Registration, login, logout and /me
- Password reset by e-mailed link
- Password change revokes the other sessions
- Google Calendar connect/disconnect
"""

import re

import pytest

from crm.models import User
from crm.services.session_service import create_session, validate_session
from conftest import TEST_PASSWORD, auth_headers


NEW_PASSWORD = "N3w!Password"


class TestRegisterAndLogin:

    def test_register_returns_token(self, client, db_session):
        response = client.post('/api/auth/register', json={
            "first_name": "Ada",
            "last_name": "Lovelace",
            "email": "Ada@Example.com",
            "password": TEST_PASSWORD,
        })

        assert response.status_code == 201
        body = response.get_json()
        assert body["success"] is True
        assert body["token"]
        assert body["data"]["email"] == "ada@example.com"
        assert body["data"]["role"] == "user"

        me = client.get('/api/auth/me', headers=auth_headers(body["token"]))
        assert me.status_code == 200
        assert me.get_json()["data"]["full_name"] == "Ada Lovelace"

    def test_register_cannot_choose_role(self, client, db_session):
        response = client.post('/api/auth/register', json={
            "first_name": "Eve",
            "last_name": "Hacker",
            "email": "eve@example.com",
            "password": TEST_PASSWORD,
            "role": "admin",
        })

        assert response.status_code == 201
        assert response.get_json()["data"]["role"] == "user"

    def test_register_duplicate_email(self, client, user):
        response = client.post('/api/auth/register', json={
            "first_name": "Sam",
            "last_name": "Again",
            "email": user.email,
            "password": TEST_PASSWORD,
        })
        assert response.status_code == 409

    @pytest.mark.parametrize("password", ["short1!", "alllowercase1!", "NoDigits!!", "NoSpecial123"])
    def test_register_weak_password(self, client, db_session, password):
        response = client.post('/api/auth/register', json={
            "first_name": "Weak",
            "last_name": "Password",
            "email": "weak@example.com",
            "password": password,
        })
        assert response.status_code == 400
        assert db_session.query(User).filter_by(email="weak@example.com").first() is None

    def test_login(self, client, user):
        response = client.post('/api/auth/login', json={"email": user.email, "password": TEST_PASSWORD})

        assert response.status_code == 200
        body = response.get_json()
        assert body["data"]["id"] == user.id
        assert validate_session(body["token"]) is not None

    def test_login_wrong_password(self, client, user):
        response = client.post('/api/auth/login', json={"email": user.email, "password": "Wrong123!"})
        assert response.status_code == 401

    def test_login_missing_fields(self, client, db_session):
        response = client.post('/api/auth/login', json={"email": "nobody@example.com"})
        assert response.status_code == 400

    def test_inactive_user_cannot_login(self, client, db_session, user):
        user.is_active = False
        db_session.commit()

        response = client.post('/api/auth/login', json={"email": user.email, "password": TEST_PASSWORD})
        assert response.status_code == 401

    def test_logout_revokes_token(self, client, user):
        _, token = create_session(user.id)

        response = client.post('/api/auth/logout', headers=auth_headers(token))
        assert response.status_code == 200

        response = client.get('/api/auth/me', headers=auth_headers(token))
        assert response.status_code == 401


class TestPasswordReset:

    def _request_reset(self, client, email, outbox):
        response = client.post('/api/auth/forgot-password', json={"email": email})
        assert response.status_code == 200
        assert len(outbox) == 1
        match = re.search(r"/reset-password/([0-9a-f]+)", outbox[0].html)
        assert match
        return match.group(1)

    def test_reset_flow(self, client, user, outbox):
        _, old_token = create_session(user.id)
        reset_token = self._request_reset(client, user.email, outbox)

        response = client.put(f'/api/auth/reset-password/{reset_token}', json={"password": NEW_PASSWORD})
        assert response.status_code == 200
        assert response.get_json()["token"]

        assert validate_session(old_token) is None
        login = client.post('/api/auth/login', json={"email": user.email, "password": NEW_PASSWORD})
        assert login.status_code == 200

    def test_token_is_single_use(self, client, user, outbox):
        reset_token = self._request_reset(client, user.email, outbox)
        client.put(f'/api/auth/reset-password/{reset_token}', json={"password": NEW_PASSWORD})

        response = client.put(f'/api/auth/reset-password/{reset_token}', json={"password": "Another1!"})
        assert response.status_code == 400

    def test_unknown_email(self, client, db_session, outbox):
        response = client.post('/api/auth/forgot-password', json={"email": "ghost@example.com"})
        assert response.status_code == 404
        assert len(outbox) == 0

    def test_invalid_token(self, client, db_session):
        response = client.put('/api/auth/reset-password/deadbeef', json={"password": NEW_PASSWORD})
        assert response.status_code == 400


class TestProfile:

    def test_update_profile(self, client, user, user_headers):
        response = client.put('/api/users/profile', headers=user_headers, json={
            "first_name": "Samuel",
            "department": "Sales",
            "role": "admin",
        })

        assert response.status_code == 200
        data = response.get_json()["data"]
        assert data["first_name"] == "Samuel"
        assert data["department"] == "Sales"
        assert data["role"] == "user"

    def test_profile_email_conflict(self, client, user_headers, other_user):
        response = client.put('/api/users/profile', headers=user_headers, json={"email": other_user.email})
        assert response.status_code == 409

    def test_change_password_keeps_current_session(self, client, user, user_headers):
        _, other_token = create_session(user.id)

        response = client.put('/api/users/change-password', headers=user_headers, json={
            "current_password": TEST_PASSWORD,
            "new_password": NEW_PASSWORD,
        })

        assert response.status_code == 200
        assert client.get('/api/auth/me', headers=user_headers).status_code == 200
        assert client.get('/api/auth/me', headers=auth_headers(other_token)).status_code == 401

    def test_change_password_wrong_current(self, client, user_headers):
        response = client.put('/api/users/change-password', headers=user_headers, json={
            "current_password": "Wrong123!",
            "new_password": NEW_PASSWORD,
        })
        assert response.status_code == 400


class TestGoogleConnect:

    def test_auth_url(self, client, user_headers, google_stub):
        response = client.get('/api/auth/google-auth-url', headers=user_headers)

        assert response.status_code == 200
        url = response.get_json()["data"]["url"]
        assert url.startswith("https://accounts.google.com/")
        assert "client_id=test-client-id" in url

    def test_callback_and_disconnect(self, client, user, user_headers, google_stub):
        response = client.post('/api/auth/google-callback', headers=user_headers, json={"code": "auth-code"})

        assert response.status_code == 200
        assert response.get_json()["data"]["google_calendar_enabled"] is True
        assert user.google_refresh_token == "refresh-token"

        response = client.delete('/api/auth/google-disconnect', headers=user_headers)
        assert response.status_code == 200
        assert response.get_json()["data"]["google_calendar_enabled"] is False
        assert user.google_access_token is None

    def test_callback_requires_code(self, client, user_headers, google_stub):
        response = client.post('/api/auth/google-callback', headers=user_headers, json={})
        assert response.status_code == 400
