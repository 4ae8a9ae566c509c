from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from ..extensions import db
from crm.time_utils import to_utc_z, utcnow
from crm.services import pricing
from crm.services import lifecycle_service


CURRENCIES = ["TRY", "USD", "EUR", "GBP"]
PAYMENT_METHODS = ["CASH", "BANK_TRANSFER", "CREDIT_CARD", "CHECK", "OTHER"]


def _money(value) -> float:
    return float(value) if value is not None else 0.0


class LineItemMixin:
    """Shared columns and math for proposal/invoice lines."""
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0"))
    tax_rate = db.Column(db.Numeric(5, 2), nullable=False, default=pricing.DEFAULT_TAX_RATE)
    discount = db.Column(db.Numeric(5, 2), nullable=False, default=pricing.DEFAULT_DISCOUNT)
    position = db.Column(db.Integer, nullable=False, default=0)

    @property
    def line_total(self) -> Decimal:
        return pricing.line_total(self.quantity, self.unit_price, self.discount, self.tax_rate)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "quantity": self.quantity,
            "unit_price": _money(self.unit_price),
            "tax_rate": _money(self.tax_rate),
            "discount": _money(self.discount),
            "position": self.position,
            "line_total": float(self.line_total),
        }


class CommercialDocumentMixin:
    """
    Shared shape of proposals and invoices.

    number is assigned once at creation and never changes. Totals are
    recomputed from the lines on every access.
    """
    number = db.Column(db.String(32), nullable=False, unique=True)
    issue_date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    discount = db.Column(db.Numeric(5, 2), nullable=False, default=Decimal("0"))
    currency = db.Column(db.String(3), nullable=False, default="TRY")
    notes = db.Column(db.Text, nullable=True)
    terms = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def totals(self) -> pricing.DocumentTotals:
        return pricing.document_totals(self.lines, self.discount)

    @property
    def grand_total(self) -> Decimal:
        return self.totals().grand_total

    def _base_dict(self) -> dict:
        return {
            "id": self.id,
            "number": self.number,
            "customer_id": self.customer_id,
            "customer": self.customer.summary() if self.customer else None,
            "issue_date": to_utc_z(self.issue_date),
            "items": [line.to_dict() for line in self.lines],
            "discount": _money(self.discount),
            "currency": self.currency,
            "notes": self.notes,
            "terms": self.terms,
            "created_by_user_id": self.created_by_user_id,
            "created_by": self.created_by.summary() if self.created_by else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
            **self.totals().to_dict(),
        }


class Proposal(CommercialDocumentMixin, db.Model):
    """
    Sales proposal.

    Once converted_to_invoice is set the proposal is immutable and cannot be
    deleted; invoice_id points at the generated invoice.
    """
    __tablename__ = "proposals"
    __table_args__ = (
        db.Index("ix_proposals_customer_status", "customer_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    title = db.Column(db.String(255), nullable=True)
    valid_until = db.Column(db.DateTime(timezone=True), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=lifecycle_service.PROPOSAL_DRAFT, index=True)

    converted_to_invoice = db.Column(db.Boolean, nullable=False, default=False)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id", use_alter=True, name="fk_proposals_invoice_id"), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("proposals", lazy=True))
    created_by = db.relationship("User", foreign_keys=[created_by_user_id])
    lines = db.relationship(
        "ProposalLine",
        order_by="ProposalLine.position",
        cascade="all, delete-orphan",
        lazy="select",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        data = self._base_dict()
        data.update({
            "title": self.title,
            "valid_until": to_utc_z(self.valid_until),
            "status": self.status,
            "converted_to_invoice": self.converted_to_invoice,
            "invoice_id": self.invoice_id,
        })
        return data


class ProposalLine(LineItemMixin, db.Model):
    __tablename__ = "proposal_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    proposal_id = db.Column(db.Integer, db.ForeignKey("proposals.id"), nullable=False, index=True)


class Invoice(CommercialDocumentMixin, db.Model):
    """
    Customer invoice with a payment ledger.

    status holds only the explicit base status (DRAFT, SENT, CANCELLED).
    The reported status is derived from the base status, the ledger and
    due_date by lifecycle_service.derive_invoice_status.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.Index("ix_invoices_customer_status", "customer_id", "status"),
        db.Index("ix_invoices_due_date", "due_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    proposal_id = db.Column(db.Integer, db.ForeignKey("proposals.id"), nullable=True, index=True)

    due_date = db.Column(db.DateTime(timezone=True), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=lifecycle_service.INVOICE_DRAFT)
    last_reminder_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("invoices", lazy=True))
    created_by = db.relationship("User", foreign_keys=[created_by_user_id])
    proposal = db.relationship("Proposal", foreign_keys=[proposal_id])
    lines = db.relationship(
        "InvoiceLine",
        order_by="InvoiceLine.position",
        cascade="all, delete-orphan",
        lazy="select",
    )
    payments = db.relationship(
        "InvoicePayment",
        order_by="InvoicePayment.id",
        cascade="all, delete-orphan",
        lazy="select",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def paid_total(self) -> Decimal:
        return sum((Decimal(p.amount) for p in self.payments), Decimal("0"))

    @property
    def due_amount(self) -> Decimal:
        return self.grand_total - self.paid_total

    def is_paid(self) -> bool:
        return lifecycle_service.is_paid(self.paid_total, self.grand_total)

    def is_overdue(self, now: datetime | None = None) -> bool:
        return lifecycle_service.is_overdue(
            self.paid_total, self.grand_total, self.due_date, now or utcnow()
        )

    def derived_status(self, now: datetime | None = None) -> str:
        return lifecycle_service.derive_invoice_status(
            base_status=self.status,
            paid_total=self.paid_total,
            grand_total=self.grand_total,
            due_date=self.due_date,
            now=now or utcnow(),
        )

    def to_dict(self, now: datetime | None = None) -> dict:
        now = now or utcnow()
        data = self._base_dict()
        grand_total = self.grand_total
        paid_total = self.paid_total
        data.update({
            "due_date": to_utc_z(self.due_date),
            "status": self.derived_status(now),
            "base_status": self.status,
            "proposal_id": self.proposal_id,
            "payments": [p.to_dict() for p in self.payments],
            "paid_total": float(paid_total),
            "due_amount": float(grand_total - paid_total),
            "is_paid": self.is_paid(),
            "is_overdue": self.is_overdue(now),
            "last_reminder_at": to_utc_z(self.last_reminder_at),
        })
        return data


class InvoiceLine(LineItemMixin, db.Model):
    __tablename__ = "invoice_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)


class InvoicePayment(db.Model):
    """
    Append-only payment ledger entry.

    Rows are never updated; the sum of amounts never exceeds the invoice
    grand total at insertion time.
    """
    __tablename__ = "invoice_payments"
    __table_args__ = (
        db.CheckConstraint("amount > 0", name="ck_invoice_payments_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)

    amount = db.Column(db.Numeric(12, 2), nullable=False)
    method = db.Column(db.String(16), nullable=False)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=False)
    notes = db.Column(db.Text, nullable=True)

    recorded_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    recorded_by = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "amount": _money(self.amount),
            "method": self.method,
            "paid_at": to_utc_z(self.paid_at),
            "notes": self.notes,
            "recorded_by_user_id": self.recorded_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class DocumentSequence(db.Model):
    """
    Per-type, per-month counters for human-readable document numbers.

    period is YYYYMM; next_number is the number the next allocation returns.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", "period", name="uq_document_sequences_type_period"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False)
    period = db.Column(db.String(6), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
