# Overview: Service-layer operations for invoices; encapsulates business logic and database work.

"""
Invoice Service

Only the base status (DRAFT, SENT, CANCELLED) is stored on the row. Status,
paid/overdue flags and amounts are derived on read, so list filters on
those values run over loaded rows rather than in SQL.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta

from sqlalchemy import or_

from ..extensions import db
from ..models import Customer, Invoice, InvoiceLine, User
from ..models.documents import CURRENCIES
from ..validation import (
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    enforce_rules_document,
    require_int,
    validate_payload,
)
from . import lifecycle_service
from .document_service import DOCUMENT_TYPE_INVOICE, next_document_number
from .line_items import build_lines
from .pricing import ZERO, document_totals, quantize_money
from .query_utils import (
    paginate_list,
    parse_bool_arg,
    parse_date_arg,
    parse_decimal_arg,
    parse_int_arg,
    parse_paging,
)
from crm.time_utils import utcnow

logger = logging.getLogger(__name__)


INVOICE_POLICY = ModelValidationPolicy(
    writable_fields={
        "customer_id", "issue_date", "due_date", "discount",
        "currency", "notes", "terms",
    },
    required_on_create={"customer_id", "due_date"},
    choices={"currency": CURRENCIES},
)

SORT_KEYS = {
    "created_at": lambda inv: inv.created_at,
    "issue_date": lambda inv: inv.issue_date,
    "due_date": lambda inv: inv.due_date,
    "number": lambda inv: inv.number,
    "grand_total": lambda inv: inv.grand_total,
}


class InvoiceError(ValidationError):
    """Raised when an invoice action is not allowed in its current state."""


def _split_payload(payload: dict | None) -> tuple[dict, object, bool, str | None]:
    payload = dict(payload or {})
    has_items = "items" in payload
    items = payload.pop("items", None)
    status = payload.pop("status", None)
    for key in (
        "id", "number", "customer", "created_by", "payments", "paid_total", "due_amount",
        "is_paid", "is_overdue", "base_status", "proposal_id", "version_id",
    ):
        payload.pop(key, None)
    return payload, items, has_items, status


def _require_customer(customer_id) -> Customer:
    customer = db.session.get(Customer, require_int(customer_id, "customer_id"))
    if not customer:
        raise NotFoundError("Customer not found")
    return customer


def _check_dates(invoice_like: dict) -> None:
    issue = invoice_like.get("issue_date")
    due = invoice_like.get("due_date")
    if issue and due and due < issue:
        raise ValidationError("due_date cannot be before issue_date")


def _sort_key(args):
    raw = (args.get("sort_by") or "").strip()
    order = (args.get("sort_order") or "").strip().lower()
    if ":" in raw:
        raw, order = raw.split(":", 1)
        order = order.lower()
    field = raw or "created_at"
    if field not in SORT_KEYS:
        raise ValidationError(f"Cannot sort by '{field}'. Allowed: {', '.join(sorted(SORT_KEYS))}")
    return SORT_KEYS[field], order != "asc"


def list_invoices(args, now: datetime | None = None) -> tuple[list[Invoice], dict]:
    """
    Filter, sort and page invoices.

    customer_id, date range and search narrow the SQL query; status,
    is_paid, is_overdue and amount filters apply to the derived values.
    """
    now = now or utcnow()
    page, limit = parse_paging(args)
    key, descending = _sort_key(args)

    query = db.session.query(Invoice)
    customer_id = parse_int_arg(args.get("customer_id") or args.get("customer"), "customer_id")
    if customer_id is not None:
        query = query.filter(Invoice.customer_id == customer_id)
    start = parse_date_arg(args.get("start_date"), "start_date")
    if start:
        query = query.filter(Invoice.issue_date >= start)
    end = parse_date_arg(args.get("end_date"), "end_date")
    if end:
        query = query.filter(Invoice.issue_date <= end)
    search = (args.get("search") or "").strip()
    if search:
        like = f"%{search}%"
        query = query.filter(or_(Invoice.number.ilike(like), Invoice.notes.ilike(like)))

    status = args.get("status")
    if status and status not in lifecycle_service.INVOICE_STATUSES:
        raise ValidationError(
            f"Invalid status '{status}'. Must be one of: {', '.join(lifecycle_service.INVOICE_STATUSES)}"
        )
    is_paid = parse_bool_arg(args.get("is_paid"))
    is_overdue = parse_bool_arg(args.get("is_overdue"))
    min_amount = parse_decimal_arg(args.get("min_amount"), "min_amount")
    max_amount = parse_decimal_arg(args.get("max_amount"), "max_amount")

    result = []
    for invoice in query.all():
        if status and invoice.derived_status(now) != status:
            continue
        if is_paid is not None and invoice.is_paid() != is_paid:
            continue
        if is_overdue is not None and invoice.is_overdue(now) != is_overdue:
            continue
        total = invoice.grand_total
        if min_amount is not None and total < min_amount:
            continue
        if max_amount is not None and total > max_amount:
            continue
        result.append(invoice)

    result.sort(key=lambda inv: inv.id, reverse=True)
    result.sort(key=key, reverse=descending)
    return paginate_list(result, page, limit)


def get_invoice(invoice_id: int) -> Invoice:
    invoice = db.session.get(Invoice, invoice_id)
    if not invoice:
        raise NotFoundError("Invoice not found")
    return invoice


def create_invoice(payload: dict, *, user: User) -> Invoice:
    fields, items, _, status = _split_payload(payload)
    patch = validate_payload(model=Invoice, payload=fields, policy=INVOICE_POLICY, partial=False)
    enforce_rules_document(patch)
    _require_customer(patch["customer_id"])

    base_status = lifecycle_service.INVOICE_DRAFT
    if status:
        base_status = lifecycle_service.resolve_invoice_status_change(
            base_status=base_status, derived_status=base_status, requested=status
        )

    now = utcnow()
    if patch.get("issue_date") is None:
        patch["issue_date"] = now
    if patch.get("discount") is None:
        patch["discount"] = ZERO
    _check_dates(patch)

    invoice = Invoice(
        number=next_document_number(document_type=DOCUMENT_TYPE_INVOICE, now=now),
        status=base_status,
        created_by_user_id=user.id,
        **patch,
    )
    invoice.lines = build_lines(InvoiceLine, items)
    db.session.add(invoice)
    db.session.commit()
    logger.info("Invoice %s created by user %s", invoice.number, user.id)
    return invoice


def update_invoice(invoice_id: int, payload: dict, now: datetime | None = None) -> Invoice:
    """
    Patch an invoice. A status in the payload moves the base status only.

    Raises:
        LifecycleError: disallowed status change
    """
    now = now or utcnow()
    invoice = get_invoice(invoice_id)

    fields, items, has_items, status = _split_payload(payload)
    patch = validate_payload(model=Invoice, payload=fields, policy=INVOICE_POLICY, partial=True)
    enforce_rules_document(patch)
    if "customer_id" in patch:
        _require_customer(patch["customer_id"])
    for key in ("issue_date", "due_date", "discount"):
        if key in patch and patch[key] is None:
            raise ValidationError(f"{key} cannot be null")
    _check_dates({
        "issue_date": patch.get("issue_date", invoice.issue_date),
        "due_date": patch.get("due_date", invoice.due_date),
    })

    base_status = invoice.status
    if status:
        base_status = lifecycle_service.resolve_invoice_status_change(
            base_status=invoice.status,
            derived_status=invoice.derived_status(now),
            requested=status,
        )

    new_lines = build_lines(InvoiceLine, items) if has_items else None
    if new_lines is not None or "discount" in patch:
        new_total = document_totals(
            new_lines if new_lines is not None else invoice.lines,
            patch.get("discount", invoice.discount),
        ).grand_total
        if new_total < invoice.paid_total:
            raise InvoiceError("Invoice total cannot drop below the amount already paid")

    invoice.status = base_status
    for key, value in patch.items():
        setattr(invoice, key, value)
    if new_lines is not None:
        invoice.lines = new_lines

    db.session.commit()
    return invoice


def delete_invoice(invoice_id: int) -> None:
    invoice = get_invoice(invoice_id)
    lifecycle_service.ensure_invoice_deletable(invoice.derived_status())
    db.session.delete(invoice)
    db.session.commit()
    logger.info("Invoice %s deleted", invoice.number)


def generate_pdf(invoice_id: int, *, renderer) -> str:
    return renderer.render_invoice(get_invoice(invoice_id))


def send_invoice_email(invoice_id: int, *, mailer, renderer, message: str = "", to: str | None = None) -> Invoice:
    """Mail the invoice PDF to the customer. A DRAFT invoice becomes SENT."""
    invoice = get_invoice(invoice_id)
    if invoice.status == lifecycle_service.INVOICE_CANCELLED:
        raise InvoiceError("Cancelled invoices cannot be sent")
    pdf_path = renderer.render_invoice(invoice)
    mailer.send_invoice(invoice, to=to, pdf_path=pdf_path, message=message or "")

    if invoice.status == lifecycle_service.INVOICE_DRAFT:
        invoice.status = lifecycle_service.INVOICE_SENT
        db.session.commit()
    return invoice


def days_overdue(invoice: Invoice, now: datetime) -> int:
    return math.ceil((now - invoice.due_date).total_seconds() / 86400)


def send_payment_reminder(invoice_id: int, *, mailer, renderer, now: datetime | None = None) -> Invoice:
    """
    Mail a payment reminder for an unpaid, overdue invoice.

    Raises:
        InvoiceError: the invoice is paid, cancelled or not yet due
    """
    now = now or utcnow()
    invoice = get_invoice(invoice_id)
    if invoice.derived_status(now) != lifecycle_service.INVOICE_OVERDUE:
        raise InvoiceError("Reminders can only be sent for unpaid, overdue invoices")

    pdf_path = renderer.render_invoice(invoice)
    mailer.send_payment_reminder(invoice, days_overdue=days_overdue(invoice, now), pdf_path=pdf_path)

    invoice.last_reminder_at = now
    db.session.commit()
    return invoice


def invoice_stats(now: datetime | None = None) -> dict:
    now = now or utcnow()
    invoices = db.session.query(Invoice).all()

    by_status = {s: 0 for s in lifecycle_service.INVOICE_STATUSES}
    monthly: dict[str, dict] = {}
    total_amount = ZERO
    payment_days = []
    six_months_ago = now - timedelta(days=183)

    for invoice in invoices:
        status = invoice.derived_status(now)
        by_status[status] += 1
        grand_total = invoice.grand_total
        total_amount += grand_total

        if invoice.created_at is not None and invoice.created_at >= six_months_ago:
            key = invoice.created_at.strftime("%Y-%m")
            bucket = monthly.setdefault(key, {"month": key, "count": 0, "total_amount": ZERO})
            bucket["count"] += 1
            bucket["total_amount"] += grand_total

        if status == lifecycle_service.INVOICE_PAID and invoice.payments:
            last_paid = max(p.paid_at for p in invoice.payments)
            payment_days.append(math.ceil(abs((last_paid - invoice.issue_date).total_seconds()) / 86400))

    count = len(invoices)

    def _pct(n: int) -> float:
        return round(n / count * 100, 2) if count else 0.0

    return {
        "by_status": by_status,
        "monthly": [
            {**bucket, "total_amount": float(bucket["total_amount"])}
            for _, bucket in sorted(monthly.items())
        ],
        "paid_percentage": _pct(by_status[lifecycle_service.INVOICE_PAID]),
        "partial_percentage": _pct(by_status[lifecycle_service.INVOICE_PARTIALLY_PAID]),
        "overdue_percentage": _pct(by_status[lifecycle_service.INVOICE_OVERDUE]),
        "total_amount": float(total_amount),
        "average_amount": float(quantize_money(total_amount / count)) if count else 0.0,
        "average_payment_days": round(sum(payment_days) / len(payment_days)) if payment_days else 0,
    }

