# Overview: Flask API routes for customers operations; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app, g

from ..extensions import db
from ..services import customer_service
from ..validation import ConflictError, NotFoundError, ValidationError
from ..decorators import require_auth


customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("")
@require_auth
def list_customers_route():
    """
    List customers.

    Query params:
        status, source, assigned_to, customer_value, tags (comma separated),
        search, sort_by (field or field:asc|desc), sort_order, page, limit
    """
    try:
        customers, meta = customer_service.list_customers(request.args)
        return jsonify({
            "success": True,
            "count": len(customers),
            **meta,
            "data": [c.to_dict() for c in customers],
        }), 200

    except ValidationError as e:
        return jsonify({"success": False, "message": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to list customers")
        return jsonify({"success": False, "message": "Internal server error"}), 500


@customers_bp.get("/stats")
@require_auth
def customer_stats_route():
    try:
        return jsonify({"success": True, "data": customer_service.customer_stats()}), 200
    except Exception:
        current_app.logger.exception("Failed to compute customer stats")
        return jsonify({"success": False, "message": "Internal server error"}), 500


@customers_bp.get("/<int:customer_id>")
@require_auth
def get_customer_route(customer_id: int):
    """Customer with its interactions, newest first."""
    try:
        customer = customer_service.get_customer(customer_id)
        return jsonify({"success": True, "data": customer_service.customer_detail(customer)}), 200

    except NotFoundError as e:
        return jsonify({"success": False, "message": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to load customer")
        return jsonify({"success": False, "message": "Internal server error"}), 500


@customers_bp.post("")
@require_auth
def create_customer_route():
    try:
        customer = customer_service.create_customer(request.get_json(silent=True) or {}, user=g.current_user)
        return jsonify({"success": True, "data": customer.to_dict()}), 201

    except ConflictError as e:
        db.session.rollback()
        return jsonify({"success": False, "message": str(e)}), 409
    except ValidationError as e:
        db.session.rollback()
        return jsonify({"success": False, "message": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create customer")
        return jsonify({"success": False, "message": "Internal server error"}), 500


@customers_bp.put("/<int:customer_id>")
@require_auth
def update_customer_route(customer_id: int):
    try:
        customer = customer_service.update_customer(customer_id, request.get_json(silent=True) or {})
        return jsonify({"success": True, "data": customer.to_dict()}), 200

    except NotFoundError as e:
        return jsonify({"success": False, "message": str(e)}), 404
    except ConflictError as e:
        db.session.rollback()
        return jsonify({"success": False, "message": str(e)}), 409
    except ValidationError as e:
        db.session.rollback()
        return jsonify({"success": False, "message": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update customer")
        return jsonify({"success": False, "message": "Internal server error"}), 500


@customers_bp.delete("/<int:customer_id>")
@require_auth
def delete_customer_route(customer_id: int):
    """Delete a customer together with its interactions."""
    try:
        removed = customer_service.delete_customer(customer_id)
        return jsonify({
            "success": True,
            "message": "Customer deleted",
            "data": {"interactions_deleted": removed},
        }), 200

    except NotFoundError as e:
        return jsonify({"success": False, "message": str(e)}), 404
    except ValidationError as e:
        db.session.rollback()
        return jsonify({"success": False, "message": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to delete customer")
        return jsonify({"success": False, "message": "Internal server error"}), 500
