# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

# backend/crm/routes/auth.py
"""
Authentication API routes

- Public self-registration (role is always 'user')
- Login/logout with hashed, time-limited session tokens
- Password reset by e-mailed link (30 minute token)
- Google Calendar OAuth connect/disconnect for the current user
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..extensions import db
from ..services import auth_service
from ..services import session_service
from ..services.auth_service import PasswordValidationError
from ..services.google_calendar import CalendarSyncError
from ..services.mailer import MailError
from ..validation import ConflictError, NotFoundError, ValidationError
from ..decorators import require_auth


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _issue_token(user):
    session, token = session_service.create_session(
        user_id=user.id,
        user_agent=request.headers.get("User-Agent"),
        ip_address=request.remote_addr,
    )
    return session, token


@auth_bp.post("/register")
def register_route():
    """
    Register a new account and log it in.

    Request body:
    {
        "first_name": "Ada",
        "last_name": "Lovelace",
        "email": "ada@example.com",
        "password": "Str0ng!Pass",
        "department": "Sales",   (optional)
        "phone": "+90..."        (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        if not data.get("password"):
            return jsonify({"success": False, "message": "password is required"}), 400

        user = auth_service.register_user(data)
        session, token = _issue_token(user)

        return jsonify({
            "success": True,
            "token": token,
            "expires_at": session.to_dict()["expires_at"],
            "data": user.to_dict(),
        }), 201

    except ConflictError as e:
        return jsonify({"success": False, "message": str(e)}), 409
    except ValidationError as e:
        return jsonify({"success": False, "message": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to register user")
        return jsonify({"success": False, "message": "Internal server error"}), 500


@auth_bp.post("/login")
def login_route():
    """Authenticate by e-mail and password and create a session token."""
    try:
        data = request.get_json(silent=True) or {}
        email = data.get("email")
        password = data.get("password")

        if not all([email, password]):
            return jsonify({"success": False, "message": "email and password required"}), 400

        user = auth_service.authenticate(email, password)
        if not user:
            return jsonify({"success": False, "message": "Invalid credentials"}), 401

        session, token = _issue_token(user)

        return jsonify({
            "success": True,
            "token": token,
            "expires_at": session.to_dict()["expires_at"],
            "data": user.to_dict(),
        }), 200

    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to login user")
        return jsonify({"success": False, "message": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    """Revoke the session token used for this request."""
    try:
        token = request.headers["Authorization"].split(" ", 1)[1].strip()
        session_service.revoke_session(token, reason="User logout")
        return jsonify({"success": True, "message": "Logout successful"}), 200

    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to logout user")
        return jsonify({"success": False, "message": "Internal server error"}), 500


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({"success": True, "data": g.current_user.to_dict()}), 200


@auth_bp.post("/forgot-password")
def forgot_password_route():
    """
    E-mail a password reset link.

    Returns:
        200: Link sent
        400: email missing
        404: No user with that e-mail
        500: Mail could not be sent (token is discarded)
    """
    try:
        data = request.get_json(silent=True) or {}
        email = data.get("email")
        if not email:
            return jsonify({"success": False, "message": "email is required"}), 400

        auth_service.request_password_reset(
            email,
            mailer=current_app.extensions["crm.mailer"],
            frontend_url=current_app.config["FRONTEND_URL"],
        )
        return jsonify({"success": True, "message": "Password reset link sent"}), 200

    except NotFoundError as e:
        return jsonify({"success": False, "message": str(e)}), 404
    except MailError:
        current_app.logger.exception("Failed to send password reset e-mail")
        return jsonify({"success": False, "message": "E-mail could not be sent"}), 500
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to start password reset")
        return jsonify({"success": False, "message": "Internal server error"}), 500


@auth_bp.put("/reset-password/<token>")
def reset_password_route(token: str):
    """Set a new password from a reset token; all existing sessions are revoked."""
    try:
        data = request.get_json(silent=True) or {}
        password = data.get("password")
        if not password:
            return jsonify({"success": False, "message": "password is required"}), 400

        user = auth_service.reset_password(token, password)
        session_service.revoke_all_user_sessions(user.id, reason="Password reset")
        session, new_token = _issue_token(user)

        return jsonify({
            "success": True,
            "token": new_token,
            "expires_at": session.to_dict()["expires_at"],
            "data": user.to_dict(),
        }), 200

    except PasswordValidationError as e:
        return jsonify({"success": False, "message": str(e)}), 400
    except ValidationError as e:
        return jsonify({"success": False, "message": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to reset password")
        return jsonify({"success": False, "message": "Internal server error"}), 500


# =============================================================================
# GOOGLE CALENDAR OAUTH
# =============================================================================

@auth_bp.get("/google-auth-url")
@require_auth
def google_auth_url_route():
    try:
        calendar = current_app.extensions["crm.calendar"]
        url = calendar.authorization_url(state=str(g.current_user.id))
        return jsonify({"success": True, "data": {"url": url}}), 200

    except CalendarSyncError as e:
        return jsonify({"success": False, "message": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to build Google authorization URL")
        return jsonify({"success": False, "message": "Internal server error"}), 500


@auth_bp.post("/google-callback")
@require_auth
def google_callback_route():
    """
    Exchange the OAuth code for tokens and store them on the current user.

    Request body:
    {
        "code": "4/0AX4XfW..."
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        code = data.get("code")
        if not code:
            return jsonify({"success": False, "message": "code is required"}), 400

        calendar = current_app.extensions["crm.calendar"]
        calendar.store_tokens(g.current_user, calendar.exchange_code(code))
        db.session.commit()

        return jsonify({"success": True, "data": g.current_user.to_dict()}), 200

    except CalendarSyncError as e:
        db.session.rollback()
        current_app.logger.warning("Google Calendar connect failed: %s", e)
        return jsonify({"success": False, "message": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to connect Google Calendar")
        return jsonify({"success": False, "message": "Internal server error"}), 500


@auth_bp.delete("/google-disconnect")
@require_auth
def google_disconnect_route():
    try:
        user = g.current_user
        user.google_access_token = None
        user.google_refresh_token = None
        user.google_token_expires_at = None
        user.google_calendar_enabled = False
        db.session.commit()
        return jsonify({"success": True, "data": user.to_dict()}), 200

    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to disconnect Google Calendar")
        return jsonify({"success": False, "message": "Internal server error"}), 500
