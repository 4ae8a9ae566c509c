# Overview: Flask API routes for invoices and payments; parses input and returns JSON responses.

# backend/crm/routes/invoices.py
"""
Invoice API Routes

- CRUD with line items; status, totals and balances are derived on read
- Payment ledger appends (over-payment is rejected with the amount due)
- PDF generation, e-mailing and overdue payment reminders
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..extensions import db
from ..services import invoice_service, payment_service
from ..services.mailer import MailError
from ..services.payment_service import PaymentError
from ..services.pdf_service import PdfRenderError
from ..validation import NotFoundError, ValidationError
from ..decorators import require_auth
from crm.time_utils import parse_iso_datetime


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


@invoices_bp.get("")
@require_auth
def list_invoices_route():
    """
    Query params:
        customer_id, status (derived), is_paid, is_overdue, min_amount, max_amount,
        start_date, end_date, search, sort_by, sort_order, page, limit
    """
    try:
        invoices, meta = invoice_service.list_invoices(request.args)
        return jsonify({
            "success": True,
            "count": len(invoices),
            **meta,
            "data": [i.to_dict() for i in invoices],
        }), 200

    except ValidationError as e:
        return jsonify({"success": False, "message": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to list invoices")
        return jsonify({"success": False, "message": "Internal server error"}), 500


@invoices_bp.get("/stats")
@require_auth
def invoice_stats_route():
    try:
        return jsonify({"success": True, "data": invoice_service.invoice_stats()}), 200
    except Exception:
        current_app.logger.exception("Failed to compute invoice stats")
        return jsonify({"success": False, "message": "Internal server error"}), 500


@invoices_bp.get("/<int:invoice_id>")
@require_auth
def get_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.get_invoice(invoice_id)
        return jsonify({"success": True, "data": invoice.to_dict()}), 200

    except NotFoundError as e:
        return jsonify({"success": False, "message": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to load invoice")
        return jsonify({"success": False, "message": "Internal server error"}), 500


@invoices_bp.post("")
@require_auth
def create_invoice_route():
    """
    Request body:
    {
        "customer_id": 1,
        "due_date": "2026-03-15",
        "discount": 0,
        "currency": "TRY",
        "items": [
            {"name": "Consulting", "quantity": 1, "unit_price": 100, "tax_rate": 18}
        ]
    }
    """
    try:
        invoice = invoice_service.create_invoice(request.get_json(silent=True) or {}, user=g.current_user)
        return jsonify({"success": True, "data": invoice.to_dict()}), 201

    except NotFoundError as e:
        db.session.rollback()
        return jsonify({"success": False, "message": str(e)}), 404
    except ValidationError as e:
        db.session.rollback()
        return jsonify({"success": False, "message": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create invoice")
        return jsonify({"success": False, "message": "Internal server error"}), 500


@invoices_bp.put("/<int:invoice_id>")
@require_auth
def update_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.update_invoice(invoice_id, request.get_json(silent=True) or {})
        return jsonify({"success": True, "data": invoice.to_dict()}), 200

    except NotFoundError as e:
        db.session.rollback()
        return jsonify({"success": False, "message": str(e)}), 404
    except ValidationError as e:
        db.session.rollback()
        return jsonify({"success": False, "message": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update invoice")
        return jsonify({"success": False, "message": "Internal server error"}), 500


@invoices_bp.delete("/<int:invoice_id>")
@require_auth
def delete_invoice_route(invoice_id: int):
    try:
        invoice_service.delete_invoice(invoice_id)
        return jsonify({"success": True, "message": "Invoice deleted"}), 200

    except NotFoundError as e:
        return jsonify({"success": False, "message": str(e)}), 404
    except ValidationError as e:
        return jsonify({"success": False, "message": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to delete invoice")
        return jsonify({"success": False, "message": "Internal server error"}), 500


@invoices_bp.post("/<int:invoice_id>/payments")
@require_auth
def add_payment_route(invoice_id: int):
    """
    Append a payment to the invoice ledger.

    Request body:
    {
        "amount": 50,
        "method": "BANK_TRANSFER",
        "paid_at": "2026-02-10",   (optional, defaults to now)
        "notes": "First instalment" (optional)
    }

    Returns:
        201: Updated invoice
        400: Invalid amount/method, cancelled invoice, or amount above due_amount
        404: Invoice not found
    """
    try:
        data = request.get_json(silent=True) or {}
        if data.get("amount") in (None, "") or not data.get("method"):
            return jsonify({"success": False, "message": "amount and method are required"}), 400

        try:
            paid_at = parse_iso_datetime(data.get("paid_at")) if data.get("paid_at") else None
        except (TypeError, ValueError):
            return jsonify({"success": False, "message": "paid_at must be an ISO-8601 datetime"}), 400

        invoice = payment_service.add_payment(
            invoice_id,
            amount=data.get("amount"),
            method=data.get("method"),
            paid_at=paid_at,
            notes=data.get("notes"),
            recorded_by_user_id=g.current_user.id,
        )
        return jsonify({"success": True, "data": invoice.to_dict()}), 201

    except NotFoundError as e:
        return jsonify({"success": False, "message": str(e)}), 404
    except PaymentError as e:
        body = {"success": False, "message": str(e)}
        if e.due_amount is not None:
            body["due_amount"] = float(e.due_amount)
        return jsonify(body), 400
    except ValidationError as e:
        return jsonify({"success": False, "message": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to add payment")
        return jsonify({"success": False, "message": "Internal server error"}), 500


@invoices_bp.get("/<int:invoice_id>/generate-pdf")
@require_auth
def invoice_pdf_route(invoice_id: int):
    try:
        path = invoice_service.generate_pdf(invoice_id, renderer=current_app.extensions["crm.pdf"])
        return jsonify({"success": True, "data": {"pdf_path": path.replace("\\", "/")}}), 200

    except NotFoundError as e:
        return jsonify({"success": False, "message": str(e)}), 404
    except PdfRenderError:
        current_app.logger.exception("Failed to render invoice PDF")
        return jsonify({"success": False, "message": "PDF could not be generated"}), 500
    except Exception:
        current_app.logger.exception("Failed to generate invoice PDF")
        return jsonify({"success": False, "message": "Internal server error"}), 500


@invoices_bp.post("/<int:invoice_id>/send-email")
@require_auth
def send_invoice_email_route(invoice_id: int):
    """E-mail the invoice PDF to the customer; DRAFT invoices become SENT."""
    try:
        data = request.get_json(silent=True) or {}
        invoice = invoice_service.send_invoice_email(
            invoice_id,
            mailer=current_app.extensions["crm.mailer"],
            renderer=current_app.extensions["crm.pdf"],
            message=data.get("custom_message") or "",
            to=data.get("to"),
        )
        return jsonify({"success": True, "message": "Invoice sent", "data": invoice.to_dict()}), 200

    except NotFoundError as e:
        return jsonify({"success": False, "message": str(e)}), 404
    except ValidationError as e:
        return jsonify({"success": False, "message": str(e)}), 400
    except (MailError, PdfRenderError):
        db.session.rollback()
        current_app.logger.exception("Failed to send invoice %s", invoice_id)
        return jsonify({"success": False, "message": "Invoice could not be sent"}), 500
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to send invoice e-mail")
        return jsonify({"success": False, "message": "Internal server error"}), 500


@invoices_bp.post("/<int:invoice_id>/send-reminder")
@require_auth
def send_reminder_route(invoice_id: int):
    """Payment reminder for unpaid, overdue invoices only."""
    try:
        invoice = invoice_service.send_payment_reminder(
            invoice_id,
            mailer=current_app.extensions["crm.mailer"],
            renderer=current_app.extensions["crm.pdf"],
        )
        return jsonify({"success": True, "message": "Payment reminder sent", "data": invoice.to_dict()}), 200

    except NotFoundError as e:
        return jsonify({"success": False, "message": str(e)}), 404
    except ValidationError as e:
        return jsonify({"success": False, "message": str(e)}), 400
    except (MailError, PdfRenderError):
        db.session.rollback()
        current_app.logger.exception("Failed to send payment reminder for invoice %s", invoice_id)
        return jsonify({"success": False, "message": "Payment reminder could not be sent"}), 500
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to send payment reminder")
        return jsonify({"success": False, "message": "Internal server error"}), 500
