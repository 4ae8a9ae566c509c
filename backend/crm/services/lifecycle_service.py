# Overview: Status lifecycle rules for invoices and proposals.

"""
Document Lifecycle Rules

================================================================================
INVOICES
================================================================================

Only a base status is persisted: DRAFT, SENT or CANCELLED. The reported
status is derived on every read from the base status, the payment ledger
and the clock:

    1. base CANCELLED              -> CANCELLED
    2. paid_total > 0 and paid_total >= grand_total -> PAID
    3. not paid and now > due_date -> OVERDUE
    4. paid_total > 0              -> PARTIALLY_PAID
    5. otherwise                   -> base (DRAFT / SENT)

is_paid is paid_total >= grand_total, so a zero-value invoice counts as
paid and is never overdue while its reported status stays the base status.

Explicit status edits move the base status only:

    DRAFT -> SENT | CANCELLED
    SENT  -> CANCELLED
    CANCELLED is terminal.

A PAID invoice accepts only CANCELLED. Derived states (PARTIALLY_PAID,
PAID, OVERDUE) are accepted only when they equal the current derived
status, in which case the edit is a no-op.

================================================================================
PROPOSALS
================================================================================

    DRAFT       -> SENT | CANCELLED
    SENT        -> NEGOTIATING | ACCEPTED | REJECTED | CANCELLED
    NEGOTIATING -> ACCEPTED | REJECTED | CANCELLED
    ACCEPTED    -> CANCELLED (until converted)
    REJECTED, CANCELLED are terminal.

A proposal converted to an invoice is immutable and cannot be deleted.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal

from ..validation import ValidationError


class LifecycleError(ValidationError):
    """
    Raised when an invalid lifecycle transition is attempted.

    This is a domain error, not a technical error. It indicates
    that the user attempted an operation that violates business rules.
    """
    pass


# =============================================================================
# INVOICE STATES
# =============================================================================

INVOICE_DRAFT = "DRAFT"
INVOICE_SENT = "SENT"
INVOICE_PARTIALLY_PAID = "PARTIALLY_PAID"
INVOICE_PAID = "PAID"
INVOICE_OVERDUE = "OVERDUE"
INVOICE_CANCELLED = "CANCELLED"

INVOICE_STATUSES = [
    INVOICE_DRAFT,
    INVOICE_SENT,
    INVOICE_PARTIALLY_PAID,
    INVOICE_PAID,
    INVOICE_OVERDUE,
    INVOICE_CANCELLED,
]
InvoiceStatus = Literal["DRAFT", "SENT", "PARTIALLY_PAID", "PAID", "OVERDUE", "CANCELLED"]

# Persisted base statuses
INVOICE_BASE_STATUSES = {INVOICE_DRAFT, INVOICE_SENT, INVOICE_CANCELLED}
INVOICE_DERIVED_STATUSES = {INVOICE_PARTIALLY_PAID, INVOICE_PAID, INVOICE_OVERDUE}

INVOICE_BASE_TRANSITIONS = {
    INVOICE_DRAFT: {INVOICE_SENT, INVOICE_CANCELLED},
    INVOICE_SENT: {INVOICE_CANCELLED},
    INVOICE_CANCELLED: set(),
}


# =============================================================================
# PROPOSAL STATES
# =============================================================================

PROPOSAL_DRAFT = "DRAFT"
PROPOSAL_SENT = "SENT"
PROPOSAL_NEGOTIATING = "NEGOTIATING"
PROPOSAL_ACCEPTED = "ACCEPTED"
PROPOSAL_REJECTED = "REJECTED"
PROPOSAL_CANCELLED = "CANCELLED"

PROPOSAL_STATUSES = [
    PROPOSAL_DRAFT,
    PROPOSAL_SENT,
    PROPOSAL_NEGOTIATING,
    PROPOSAL_ACCEPTED,
    PROPOSAL_REJECTED,
    PROPOSAL_CANCELLED,
]

PROPOSAL_TRANSITIONS = {
    PROPOSAL_DRAFT: {PROPOSAL_SENT, PROPOSAL_CANCELLED},
    PROPOSAL_SENT: {PROPOSAL_NEGOTIATING, PROPOSAL_ACCEPTED, PROPOSAL_REJECTED, PROPOSAL_CANCELLED},
    PROPOSAL_NEGOTIATING: {PROPOSAL_ACCEPTED, PROPOSAL_REJECTED, PROPOSAL_CANCELLED},
    PROPOSAL_ACCEPTED: {PROPOSAL_CANCELLED},
    PROPOSAL_REJECTED: set(),
    PROPOSAL_CANCELLED: set(),
}


# =============================================================================
# INVOICE RULES
# =============================================================================

def is_paid(paid_total: Decimal, grand_total: Decimal) -> bool:
    return paid_total >= grand_total


def is_overdue(paid_total: Decimal, grand_total: Decimal, due_date: datetime | None, now: datetime) -> bool:
    if due_date is None:
        return False
    return not is_paid(paid_total, grand_total) and now > due_date


def derive_invoice_status(
    *,
    base_status: str,
    paid_total: Decimal,
    grand_total: Decimal,
    due_date: datetime | None,
    now: datetime,
) -> str:
    """Pure function of base status, ledger and clock."""
    if base_status == INVOICE_CANCELLED:
        return INVOICE_CANCELLED

    if paid_total > 0 and is_paid(paid_total, grand_total):
        return INVOICE_PAID

    if is_overdue(paid_total, grand_total, due_date, now):
        return INVOICE_OVERDUE

    return INVOICE_PARTIALLY_PAID if paid_total > 0 else base_status


def resolve_invoice_status_change(*, base_status: str, derived_status: str, requested: str) -> str:
    """
    Validate an explicit status edit and return the new base status.

    Raises:
        LifecycleError: for unknown statuses and disallowed transitions
    """
    if requested not in INVOICE_STATUSES:
        raise LifecycleError(
            f"Invalid status '{requested}'. Must be one of: {', '.join(INVOICE_STATUSES)}"
        )

    if derived_status == INVOICE_PAID:
        if requested == INVOICE_PAID:
            return base_status
        if requested != INVOICE_CANCELLED:
            raise LifecycleError("A paid invoice can only be cancelled")

    if requested == derived_status or requested == base_status:
        return base_status

    if derived_status == INVOICE_CANCELLED:
        raise LifecycleError("Cancelled invoices cannot change status")

    if requested in INVOICE_DERIVED_STATUSES:
        raise LifecycleError(
            f"Status {requested} is derived from payments and due date and cannot be set directly"
        )

    if requested not in INVOICE_BASE_TRANSITIONS.get(base_status, set()):
        raise LifecycleError(f"Cannot change invoice status from {base_status} to {requested}")

    return requested


def ensure_invoice_deletable(derived_status: str) -> None:
    if derived_status == INVOICE_PAID:
        raise LifecycleError("Paid invoices cannot be deleted")


def ensure_invoice_payable(base_status: str) -> None:
    if base_status == INVOICE_CANCELLED:
        raise LifecycleError("Cannot add payment to a cancelled invoice")


# =============================================================================
# PROPOSAL RULES
# =============================================================================

def can_transition_proposal(current: str, target: str) -> bool:
    if current == target:
        return True
    return target in PROPOSAL_TRANSITIONS.get(current, set())


def validate_proposal_transition(current: str, target: str) -> None:
    if target not in PROPOSAL_STATUSES:
        raise LifecycleError(
            f"Invalid status '{target}'. Must be one of: {', '.join(PROPOSAL_STATUSES)}"
        )
    if not can_transition_proposal(current, target):
        raise LifecycleError(f"Cannot change proposal status from {current} to {target}")


def ensure_proposal_mutable(converted_to_invoice: bool) -> None:
    if converted_to_invoice:
        raise LifecycleError("Proposal has been converted to an invoice and can no longer be changed")


def ensure_proposal_convertible(status: str, converted_to_invoice: bool) -> None:
    if converted_to_invoice:
        raise LifecycleError("Proposal has already been converted to an invoice")
    if status != PROPOSAL_ACCEPTED:
        raise LifecycleError("Only accepted proposals can be converted to an invoice")
