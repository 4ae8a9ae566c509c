# Overview: Flask API routes for interactions operations; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app, g

from ..extensions import db
from ..services import interaction_service
from ..validation import NotFoundError, PermissionDeniedError, ValidationError
from ..decorators import require_auth


interactions_bp = Blueprint("interactions", __name__, url_prefix="/api/interactions")


@interactions_bp.get("")
@require_auth
def list_interactions_route():
    """
    Query params:
        customer_id, user_id, type, status, start_date, end_date, search, page, limit
    """
    try:
        interactions, meta = interaction_service.list_interactions(request.args)
        return jsonify({
            "success": True,
            "count": len(interactions),
            **meta,
            "data": [i.to_dict() for i in interactions],
        }), 200

    except ValidationError as e:
        return jsonify({"success": False, "message": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to list interactions")
        return jsonify({"success": False, "message": "Internal server error"}), 500


@interactions_bp.get("/follow-ups")
@require_auth
def follow_ups_route():
    """Open interactions whose follow-up is due today."""
    try:
        interactions = interaction_service.todays_follow_ups()
        return jsonify({
            "success": True,
            "count": len(interactions),
            "data": [i.to_dict() for i in interactions],
        }), 200

    except Exception:
        current_app.logger.exception("Failed to list follow-ups")
        return jsonify({"success": False, "message": "Internal server error"}), 500


@interactions_bp.get("/customer/<int:customer_id>")
@require_auth
def customer_interactions_route(customer_id: int):
    try:
        interactions = interaction_service.list_customer_interactions(customer_id)
        return jsonify({
            "success": True,
            "count": len(interactions),
            "data": [i.to_dict() for i in interactions],
        }), 200

    except NotFoundError as e:
        return jsonify({"success": False, "message": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to list customer interactions")
        return jsonify({"success": False, "message": "Internal server error"}), 500


@interactions_bp.get("/<int:interaction_id>")
@require_auth
def get_interaction_route(interaction_id: int):
    try:
        interaction = interaction_service.get_interaction(interaction_id)
        return jsonify({"success": True, "data": interaction.to_dict()}), 200

    except NotFoundError as e:
        return jsonify({"success": False, "message": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to load interaction")
        return jsonify({"success": False, "message": "Internal server error"}), 500


@interactions_bp.post("")
@require_auth
def create_interaction_route():
    try:
        interaction = interaction_service.create_interaction(
            request.get_json(silent=True) or {}, user=g.current_user
        )
        return jsonify({"success": True, "data": interaction.to_dict()}), 201

    except NotFoundError as e:
        db.session.rollback()
        return jsonify({"success": False, "message": str(e)}), 404
    except ValidationError as e:
        db.session.rollback()
        return jsonify({"success": False, "message": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create interaction")
        return jsonify({"success": False, "message": "Internal server error"}), 500


@interactions_bp.put("/<int:interaction_id>")
@require_auth
def update_interaction_route(interaction_id: int):
    """Only the author or an admin may edit."""
    try:
        interaction = interaction_service.update_interaction(
            interaction_id, request.get_json(silent=True) or {}, user=g.current_user
        )
        return jsonify({"success": True, "data": interaction.to_dict()}), 200

    except NotFoundError as e:
        db.session.rollback()
        return jsonify({"success": False, "message": str(e)}), 404
    except PermissionDeniedError as e:
        return jsonify({"success": False, "message": str(e)}), 403
    except ValidationError as e:
        db.session.rollback()
        return jsonify({"success": False, "message": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update interaction")
        return jsonify({"success": False, "message": "Internal server error"}), 500


@interactions_bp.delete("/<int:interaction_id>")
@require_auth
def delete_interaction_route(interaction_id: int):
    try:
        interaction_service.delete_interaction(interaction_id, user=g.current_user)
        return jsonify({"success": True, "message": "Interaction deleted"}), 200

    except NotFoundError as e:
        return jsonify({"success": False, "message": str(e)}), 404
    except PermissionDeniedError as e:
        return jsonify({"success": False, "message": str(e)}), 403
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to delete interaction")
        return jsonify({"success": False, "message": "Internal server error"}), 500
