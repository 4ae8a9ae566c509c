# Overview: Service-layer operations for invoice payments; encapsulates business logic and database work.

"""
Invoice Payment Ledger

Payments are append-only rows under an invoice. paid_total, due_amount,
is_paid and is_overdue are never stored; they are recomputed from the
ledger on every read.

The invoice row is locked for the append and its version_id is bumped, so
two concurrent appends against one invoice cannot both pass the
over-payment check.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from ..extensions import db
from ..models import Invoice, InvoicePayment
from ..models.documents import PAYMENT_METHODS
from ..validation import NotFoundError, ValidationError, enforce_choice, to_decimal
from . import lifecycle_service
from .concurrency import lock_for_update, run_with_retry
from .pricing import quantize_money
from crm.time_utils import utcnow

logger = logging.getLogger(__name__)


class PaymentError(ValidationError):
    """Raised for payment operation errors. due_amount is the remaining balance."""

    def __init__(self, message: str, *, due_amount: Decimal | None = None):
        super().__init__(message)
        self.due_amount = due_amount


def add_payment(
    invoice_id: int,
    *,
    amount,
    method: str,
    paid_at: datetime | None = None,
    notes: str | None = None,
    recorded_by_user_id: int | None = None,
) -> Invoice:
    """
    Append a payment to an invoice.

    Args:
        invoice_id: Invoice being paid
        amount: Positive amount, at most the remaining due amount
        method: One of PAYMENT_METHODS
        paid_at: Payment date (defaults to now)
        notes: Free text
        recorded_by_user_id: User recording the payment

    Returns:
        The invoice with the new payment in its ledger

    Raises:
        NotFoundError: invoice does not exist
        PaymentError: amount invalid or exceeds the due amount
        LifecycleError: invoice is cancelled
    """
    amount = quantize_money(to_decimal(amount, "amount"))
    if amount <= 0:
        raise PaymentError("Payment amount must be greater than zero")
    enforce_choice("method", method, PAYMENT_METHODS)

    def _op() -> Invoice:
        invoice = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
        if not invoice:
            raise NotFoundError("Invoice not found")

        lifecycle_service.ensure_invoice_payable(invoice.status)

        due_amount = invoice.due_amount
        if amount > due_amount:
            raise PaymentError(
                f"Payment exceeds the amount due ({due_amount:.2f} {invoice.currency})",
                due_amount=due_amount,
            )

        payment = InvoicePayment(
            invoice_id=invoice.id,
            amount=amount,
            method=method,
            paid_at=paid_at or utcnow(),
            notes=notes,
            recorded_by_user_id=recorded_by_user_id,
        )
        invoice.payments.append(payment)
        # Dirty the invoice so the version_id check covers this append
        invoice.updated_at = utcnow()

        db.session.commit()
        logger.info("Payment of %s recorded on invoice %s", amount, invoice.number)
        return invoice

    try:
        return run_with_retry(_op)
    except (ValidationError, NotFoundError):
        db.session.rollback()
        raise


def list_payments(invoice_id: int) -> list[InvoicePayment]:
    return (
        db.session.query(InvoicePayment)
        .filter_by(invoice_id=invoice_id)
        .order_by(InvoicePayment.paid_at.asc(), InvoicePayment.id.asc())
        .all()
    )
