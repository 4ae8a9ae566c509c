# Overview: Service-layer operations for proposals; encapsulates business logic and database work.

"""
Proposal Service

Proposals carry line items and a general discount; totals are derived by
pricing.document_totals on every read. Numbers are assigned once at
creation by the document sequencer. Status edits follow
lifecycle_service.PROPOSAL_TRANSITIONS, and a proposal converted to an
invoice can no longer be edited or deleted.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal

from flask import current_app
from sqlalchemy import func, or_

from ..extensions import db
from ..models import Customer, Invoice, InvoiceLine, Proposal, ProposalLine, User
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
from .customer_service import touch_last_contact
from .document_service import DOCUMENT_TYPE_INVOICE, DOCUMENT_TYPE_PROPOSAL, next_document_number
from .line_items import build_lines, copy_lines
from .pricing import ZERO, quantize_money
from .query_utils import (
    paginate_list,
    paginate_query,
    parse_date_arg,
    parse_decimal_arg,
    parse_int_arg,
    parse_paging,
    parse_sort,
)
from crm.time_utils import parse_iso_datetime, utcnow

logger = logging.getLogger(__name__)


PROPOSAL_POLICY = ModelValidationPolicy(
    writable_fields={
        "customer_id", "title", "issue_date", "valid_until", "discount",
        "currency", "notes", "terms", "status",
    },
    required_on_create={"customer_id", "valid_until"},
    choices={"currency": CURRENCIES, "status": lifecycle_service.PROPOSAL_STATUSES},
)

SORT_FIELDS = {
    "created_at": Proposal.created_at,
    "issue_date": Proposal.issue_date,
    "valid_until": Proposal.valid_until,
    "number": Proposal.number,
    "status": Proposal.status,
}

# Statuses counted in the acceptance rate denominator
DECIDED_OR_OPEN_STATUSES = {
    lifecycle_service.PROPOSAL_SENT,
    lifecycle_service.PROPOSAL_NEGOTIATING,
    lifecycle_service.PROPOSAL_ACCEPTED,
    lifecycle_service.PROPOSAL_REJECTED,
}


def _split_payload(payload: dict | None) -> tuple[dict, object, bool]:
    payload = dict(payload or {})
    has_items = "items" in payload
    items = payload.pop("items", None)
    for key in ("id", "number", "customer", "created_by", "converted_to_invoice", "invoice_id", "version_id"):
        payload.pop(key, None)
    return payload, items, has_items


def _require_customer(customer_id) -> Customer:
    customer = db.session.get(Customer, require_int(customer_id, "customer_id"))
    if not customer:
        raise NotFoundError("Customer not found")
    return customer


def _amount_filter(items: list, min_amount: Decimal | None, max_amount: Decimal | None) -> list:
    result = []
    for item in items:
        total = item.grand_total
        if min_amount is not None and total < min_amount:
            continue
        if max_amount is not None and total > max_amount:
            continue
        result.append(item)
    return result


def list_proposals(args) -> tuple[list[Proposal], dict]:
    page, limit = parse_paging(args)
    sort_col, descending = parse_sort(args, SORT_FIELDS, "created_at")

    query = db.session.query(Proposal)

    customer_id = parse_int_arg(args.get("customer_id") or args.get("customer"), "customer_id")
    if customer_id is not None:
        query = query.filter(Proposal.customer_id == customer_id)
    if args.get("status"):
        query = query.filter(Proposal.status == args["status"])
    start = parse_date_arg(args.get("start_date"), "start_date")
    if start:
        query = query.filter(Proposal.issue_date >= start)
    end = parse_date_arg(args.get("end_date"), "end_date")
    if end:
        query = query.filter(Proposal.issue_date <= end)
    search = (args.get("search") or "").strip()
    if search:
        like = f"%{search}%"
        query = query.filter(or_(
            Proposal.number.ilike(like),
            Proposal.title.ilike(like),
            Proposal.notes.ilike(like),
        ))

    query = query.order_by(sort_col.desc() if descending else sort_col.asc(), Proposal.id.desc())

    min_amount = parse_decimal_arg(args.get("min_amount"), "min_amount")
    max_amount = parse_decimal_arg(args.get("max_amount"), "max_amount")
    if min_amount is None and max_amount is None:
        return paginate_query(query, page, limit)

    # Totals are derived from lines, so amount filters run in Python
    return paginate_list(_amount_filter(query.all(), min_amount, max_amount), page, limit)


def get_proposal(proposal_id: int) -> Proposal:
    proposal = db.session.get(Proposal, proposal_id)
    if not proposal:
        raise NotFoundError("Proposal not found")
    return proposal


def create_proposal(payload: dict, *, user: User) -> Proposal:
    """
    Create a proposal with its line items and allocate its PRO number.

    New proposals start as DRAFT unless a status reachable from DRAFT is
    supplied.
    """
    fields, items, _ = _split_payload(payload)
    patch = validate_payload(model=Proposal, payload=fields, policy=PROPOSAL_POLICY, partial=False)
    enforce_rules_document(patch)
    _require_customer(patch["customer_id"])

    status = patch.pop("status", None) or lifecycle_service.PROPOSAL_DRAFT
    lifecycle_service.validate_proposal_transition(lifecycle_service.PROPOSAL_DRAFT, status)

    now = utcnow()
    if patch.get("issue_date") is None:
        patch["issue_date"] = now
    if patch.get("discount") is None:
        patch["discount"] = ZERO

    proposal = Proposal(
        number=next_document_number(document_type=DOCUMENT_TYPE_PROPOSAL, now=now),
        status=status,
        created_by_user_id=user.id,
        **patch,
    )
    proposal.lines = build_lines(ProposalLine, items)
    db.session.add(proposal)
    db.session.commit()
    logger.info("Proposal %s created by user %s", proposal.number, user.id)
    return proposal


def update_proposal(proposal_id: int, payload: dict) -> Proposal:
    """
    Patch a proposal. Line items are replaced as a whole when supplied.

    Raises:
        LifecycleError: the proposal is converted or the status change is not allowed
    """
    proposal = get_proposal(proposal_id)
    lifecycle_service.ensure_proposal_mutable(proposal.converted_to_invoice)

    fields, items, has_items = _split_payload(payload)
    patch = validate_payload(model=Proposal, payload=fields, policy=PROPOSAL_POLICY, partial=True)
    enforce_rules_document(patch)
    if "customer_id" in patch:
        _require_customer(patch["customer_id"])
    for key in ("valid_until", "issue_date", "discount"):
        if key in patch and patch[key] is None:
            raise ValidationError(f"{key} cannot be null")

    new_status = patch.pop("status", None)
    if new_status and new_status != proposal.status:
        lifecycle_service.validate_proposal_transition(proposal.status, new_status)
        if new_status == lifecycle_service.PROPOSAL_ACCEPTED:
            touch_last_contact(proposal.customer_id)
        proposal.status = new_status

    for key, value in patch.items():
        setattr(proposal, key, value)
    if has_items:
        proposal.lines = build_lines(ProposalLine, items)

    db.session.commit()
    return proposal


def delete_proposal(proposal_id: int) -> None:
    proposal = get_proposal(proposal_id)
    lifecycle_service.ensure_proposal_mutable(proposal.converted_to_invoice)
    db.session.delete(proposal)
    db.session.commit()
    logger.info("Proposal %s deleted", proposal.number)


def generate_pdf(proposal_id: int, *, renderer) -> str:
    return renderer.render_proposal(get_proposal(proposal_id))


def send_proposal_email(proposal_id: int, *, mailer, renderer, message: str = "", to: str | None = None) -> Proposal:
    """
    Mail the proposal PDF to the customer. A DRAFT proposal becomes SENT.

    Mail failures propagate; the status is only changed after delivery.
    """
    proposal = get_proposal(proposal_id)
    pdf_path = renderer.render_proposal(proposal)
    mailer.send_proposal(proposal, to=to, pdf_path=pdf_path, message=message or "")

    if proposal.status == lifecycle_service.PROPOSAL_DRAFT and not proposal.converted_to_invoice:
        proposal.status = lifecycle_service.PROPOSAL_SENT
        db.session.commit()
    return proposal


def convert_to_invoice(proposal_id: int, *, user: User, due_date=None) -> Invoice:
    """
    Create an invoice from an ACCEPTED proposal.

    Lines, notes, terms, discount and currency are copied. The due date
    defaults to INVOICE_DEFAULT_DUE_DAYS from now. The proposal is marked
    converted and linked to the new invoice.
    """
    proposal = get_proposal(proposal_id)
    lifecycle_service.ensure_proposal_convertible(proposal.status, proposal.converted_to_invoice)

    now = utcnow()
    if isinstance(due_date, str):
        try:
            due_date = parse_iso_datetime(due_date)
        except ValueError:
            raise ValidationError("due_date must be an ISO-8601 datetime")
    elif due_date is not None and not isinstance(due_date, datetime):
        raise ValidationError("due_date must be an ISO-8601 datetime")
    if due_date is None:
        due_date = now + timedelta(days=current_app.config.get("INVOICE_DEFAULT_DUE_DAYS", 15))

    invoice = Invoice(
        number=next_document_number(document_type=DOCUMENT_TYPE_INVOICE, now=now),
        customer_id=proposal.customer_id,
        created_by_user_id=user.id,
        proposal_id=proposal.id,
        issue_date=now,
        due_date=due_date,
        status=lifecycle_service.INVOICE_DRAFT,
        discount=proposal.discount,
        currency=proposal.currency,
        notes=proposal.notes,
        terms=proposal.terms,
    )
    invoice.lines = copy_lines(proposal.lines, InvoiceLine)
    db.session.add(invoice)
    db.session.flush()

    proposal.converted_to_invoice = True
    proposal.invoice_id = invoice.id
    db.session.commit()
    logger.info("Proposal %s converted to invoice %s", proposal.number, invoice.number)
    return invoice


def proposal_stats(now: datetime | None = None) -> dict:
    now = now or utcnow()

    status_counts = dict(
        db.session.query(Proposal.status, func.count(Proposal.id)).group_by(Proposal.status).all()
    )

    proposals = db.session.query(Proposal).all()
    totals = [p.grand_total for p in proposals]
    total_amount = sum(totals, ZERO)
    average_amount = quantize_money(total_amount / len(totals)) if totals else ZERO

    six_months_ago = now - timedelta(days=183)
    monthly: dict[str, dict] = {}
    for proposal in proposals:
        if proposal.created_at is None or proposal.created_at < six_months_ago:
            continue
        key = proposal.created_at.strftime("%Y-%m")
        bucket = monthly.setdefault(key, {"month": key, "count": 0, "total_amount": ZERO})
        bucket["count"] += 1
        bucket["total_amount"] += proposal.grand_total

    considered = sum(status_counts.get(s, 0) for s in DECIDED_OR_OPEN_STATUSES)
    accepted = status_counts.get(lifecycle_service.PROPOSAL_ACCEPTED, 0)
    acceptance_rate = round(accepted / considered * 100, 2) if considered else 0.0

    return {
        "by_status": {s: status_counts.get(s, 0) for s in lifecycle_service.PROPOSAL_STATUSES},
        "monthly": [
            {**bucket, "total_amount": float(bucket["total_amount"])}
            for _, bucket in sorted(monthly.items())
        ],
        "acceptance_rate": acceptance_rate,
        "total_amount": float(total_amount),
        "average_amount": float(average_amount),
    }
