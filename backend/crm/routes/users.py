# Overview: Flask API routes for user profile and role management; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app, g

from ..extensions import db
from ..models.auth import ROLE_ADMIN
from ..services import auth_service, session_service, user_service
from ..services.auth_service import PasswordValidationError
from ..validation import ConflictError, NotFoundError, ValidationError
from ..decorators import require_auth, require_role


users_bp = Blueprint("users", __name__, url_prefix="/api/users")


@users_bp.put("/profile")
@require_auth
def update_profile_route():
    try:
        user = user_service.update_profile(g.current_user, request.get_json(silent=True) or {})
        return jsonify({"success": True, "data": user.to_dict()}), 200

    except ConflictError as e:
        db.session.rollback()
        return jsonify({"success": False, "message": str(e)}), 409
    except ValidationError as e:
        db.session.rollback()
        return jsonify({"success": False, "message": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update profile")
        return jsonify({"success": False, "message": "Internal server error"}), 500


@users_bp.put("/change-password")
@require_auth
def change_password_route():
    """
    Change the caller's password. Other sessions of the user are revoked.

    Request body:
    {
        "current_password": "...",
        "new_password": "..."
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        auth_service.change_password(g.current_user, data.get("current_password"), data.get("new_password"))
        session_service.revoke_all_user_sessions(
            g.current_user.id,
            reason="Password changed",
            keep_session_id=g.session_context.session.id,
        )
        return jsonify({"success": True, "message": "Password updated"}), 200

    except PasswordValidationError as e:
        db.session.rollback()
        return jsonify({"success": False, "message": str(e)}), 400
    except ValidationError as e:
        db.session.rollback()
        return jsonify({"success": False, "message": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to change password")
        return jsonify({"success": False, "message": "Internal server error"}), 500


@users_bp.get("/all")
@require_auth
@require_role(ROLE_ADMIN)
def list_users_route():
    try:
        users = user_service.list_users()
        return jsonify({"success": True, "count": len(users), "data": [u.to_dict() for u in users]}), 200

    except Exception:
        current_app.logger.exception("Failed to list users")
        return jsonify({"success": False, "message": "Internal server error"}), 500


@users_bp.put("/<int:user_id>/role")
@require_auth
@require_role(ROLE_ADMIN)
def set_role_route(user_id: int):
    try:
        data = request.get_json(silent=True) or {}
        user = user_service.set_role(user_id, data.get("role"), acting_user=g.current_user)
        return jsonify({"success": True, "data": user.to_dict()}), 200

    except NotFoundError as e:
        return jsonify({"success": False, "message": str(e)}), 404
    except ValidationError as e:
        db.session.rollback()
        return jsonify({"success": False, "message": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to change user role")
        return jsonify({"success": False, "message": "Internal server error"}), 500
