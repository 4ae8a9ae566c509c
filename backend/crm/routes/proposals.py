# Overview: Flask API routes for proposals operations; parses input and returns JSON responses.

# backend/crm/routes/proposals.py
"""
Proposal API Routes

- CRUD with line items; totals are computed on read
- Status edits follow the proposal lifecycle
- Converted proposals are read-only
- PDF generation, e-mailing and conversion to an invoice
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..extensions import db
from ..services import proposal_service
from ..services.mailer import MailError
from ..services.pdf_service import PdfRenderError
from ..validation import NotFoundError, ValidationError
from ..decorators import require_auth


proposals_bp = Blueprint("proposals", __name__, url_prefix="/api/proposals")


@proposals_bp.get("")
@require_auth
def list_proposals_route():
    """
    Query params:
        customer_id, status, start_date, end_date, search,
        min_amount, max_amount, sort_by, sort_order, page, limit
    """
    try:
        proposals, meta = proposal_service.list_proposals(request.args)
        return jsonify({
            "success": True,
            "count": len(proposals),
            **meta,
            "data": [p.to_dict() for p in proposals],
        }), 200

    except ValidationError as e:
        return jsonify({"success": False, "message": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to list proposals")
        return jsonify({"success": False, "message": "Internal server error"}), 500


@proposals_bp.get("/stats")
@require_auth
def proposal_stats_route():
    try:
        return jsonify({"success": True, "data": proposal_service.proposal_stats()}), 200
    except Exception:
        current_app.logger.exception("Failed to compute proposal stats")
        return jsonify({"success": False, "message": "Internal server error"}), 500


@proposals_bp.get("/<int:proposal_id>")
@require_auth
def get_proposal_route(proposal_id: int):
    try:
        proposal = proposal_service.get_proposal(proposal_id)
        return jsonify({"success": True, "data": proposal.to_dict()}), 200

    except NotFoundError as e:
        return jsonify({"success": False, "message": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to load proposal")
        return jsonify({"success": False, "message": "Internal server error"}), 500


@proposals_bp.post("")
@require_auth
def create_proposal_route():
    """
    Request body:
    {
        "customer_id": 1,
        "title": "Website redesign",
        "valid_until": "2026-03-01",
        "discount": 5,
        "currency": "TRY",
        "items": [
            {"name": "Design", "quantity": 1, "unit_price": 100, "tax_rate": 18, "discount": 0}
        ]
    }
    """
    try:
        proposal = proposal_service.create_proposal(request.get_json(silent=True) or {}, user=g.current_user)
        return jsonify({"success": True, "data": proposal.to_dict()}), 201

    except NotFoundError as e:
        db.session.rollback()
        return jsonify({"success": False, "message": str(e)}), 404
    except ValidationError as e:
        db.session.rollback()
        return jsonify({"success": False, "message": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create proposal")
        return jsonify({"success": False, "message": "Internal server error"}), 500


@proposals_bp.put("/<int:proposal_id>")
@require_auth
def update_proposal_route(proposal_id: int):
    try:
        proposal = proposal_service.update_proposal(proposal_id, request.get_json(silent=True) or {})
        return jsonify({"success": True, "data": proposal.to_dict()}), 200

    except NotFoundError as e:
        db.session.rollback()
        return jsonify({"success": False, "message": str(e)}), 404
    except ValidationError as e:
        db.session.rollback()
        return jsonify({"success": False, "message": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update proposal")
        return jsonify({"success": False, "message": "Internal server error"}), 500


@proposals_bp.delete("/<int:proposal_id>")
@require_auth
def delete_proposal_route(proposal_id: int):
    try:
        proposal_service.delete_proposal(proposal_id)
        return jsonify({"success": True, "message": "Proposal deleted"}), 200

    except NotFoundError as e:
        return jsonify({"success": False, "message": str(e)}), 404
    except ValidationError as e:
        return jsonify({"success": False, "message": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to delete proposal")
        return jsonify({"success": False, "message": "Internal server error"}), 500


@proposals_bp.get("/<int:proposal_id>/generate-pdf")
@require_auth
def proposal_pdf_route(proposal_id: int):
    try:
        path = proposal_service.generate_pdf(proposal_id, renderer=current_app.extensions["crm.pdf"])
        return jsonify({"success": True, "data": {"pdf_path": path.replace("\\", "/")}}), 200

    except NotFoundError as e:
        return jsonify({"success": False, "message": str(e)}), 404
    except PdfRenderError:
        current_app.logger.exception("Failed to render proposal PDF")
        return jsonify({"success": False, "message": "PDF could not be generated"}), 500
    except Exception:
        current_app.logger.exception("Failed to generate proposal PDF")
        return jsonify({"success": False, "message": "Internal server error"}), 500


@proposals_bp.post("/<int:proposal_id>/send-email")
@require_auth
def send_proposal_email_route(proposal_id: int):
    """
    E-mail the proposal PDF to the customer; DRAFT proposals become SENT.

    Request body (optional):
    {
        "custom_message": "Looking forward to working with you.",
        "to": "someone@example.com"
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        proposal = proposal_service.send_proposal_email(
            proposal_id,
            mailer=current_app.extensions["crm.mailer"],
            renderer=current_app.extensions["crm.pdf"],
            message=data.get("custom_message") or "",
            to=data.get("to"),
        )
        return jsonify({"success": True, "message": "Proposal sent", "data": proposal.to_dict()}), 200

    except NotFoundError as e:
        return jsonify({"success": False, "message": str(e)}), 404
    except (MailError, PdfRenderError):
        db.session.rollback()
        current_app.logger.exception("Failed to send proposal %s", proposal_id)
        return jsonify({"success": False, "message": "Proposal could not be sent"}), 500
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to send proposal e-mail")
        return jsonify({"success": False, "message": "Internal server error"}), 500


@proposals_bp.post("/<int:proposal_id>/convert-to-invoice")
@require_auth
def convert_to_invoice_route(proposal_id: int):
    """
    Create an invoice from an ACCEPTED proposal.

    Request body (optional):
    {
        "due_date": "2026-03-15"
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        invoice = proposal_service.convert_to_invoice(
            proposal_id, user=g.current_user, due_date=data.get("due_date")
        )
        return jsonify({"success": True, "data": invoice.to_dict()}), 201

    except NotFoundError as e:
        return jsonify({"success": False, "message": str(e)}), 404
    except ValidationError as e:
        db.session.rollback()
        return jsonify({"success": False, "message": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to convert proposal to invoice")
        return jsonify({"success": False, "message": "Internal server error"}), 500
