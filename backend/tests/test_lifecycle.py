"""
Invoice and proposal lifecycle rules.

Verifies:
- Invoice status derivation from base status, ledger and due date
- Explicit invoice status edits only move the base status
- Proposal transition table
- Converted proposals are immutable
"""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from crm.services import lifecycle_service as lc
from crm.services.lifecycle_service import LifecycleError


NOW = datetime(2026, 3, 10, 12, 0, 0)
FUTURE = NOW + timedelta(days=10)
PAST = NOW - timedelta(days=1)


def derive(base=lc.INVOICE_SENT, paid="0", total="118", due=FUTURE):
    return lc.derive_invoice_status(
        base_status=base,
        paid_total=Decimal(paid),
        grand_total=Decimal(total),
        due_date=due,
        now=NOW,
    )


class TestInvoiceDerivation:

    def test_unpaid_keeps_base_status(self):
        assert derive(base=lc.INVOICE_DRAFT) == lc.INVOICE_DRAFT
        assert derive(base=lc.INVOICE_SENT) == lc.INVOICE_SENT

    def test_partial_payment(self):
        assert derive(paid="50") == lc.INVOICE_PARTIALLY_PAID

    def test_fully_paid(self):
        assert derive(paid="118") == lc.INVOICE_PAID

    def test_paid_wins_over_due_date(self):
        assert derive(paid="118", due=PAST) == lc.INVOICE_PAID

    def test_unpaid_past_due_is_overdue(self):
        assert derive(due=PAST) == lc.INVOICE_OVERDUE
        assert derive(paid="50", due=PAST) == lc.INVOICE_OVERDUE
        assert lc.is_overdue(Decimal("0"), Decimal("118"), PAST, NOW)

    def test_cancelled_is_terminal(self):
        assert derive(base=lc.INVOICE_CANCELLED, paid="118", due=PAST) == lc.INVOICE_CANCELLED

    def test_zero_total_counts_as_paid(self):
        assert lc.is_paid(Decimal("0"), Decimal("0")) is True
        assert lc.is_overdue(Decimal("0"), Decimal("0"), PAST, NOW) is False

    def test_zero_total_keeps_base_status(self):
        assert derive(base=lc.INVOICE_DRAFT, total="0") == lc.INVOICE_DRAFT
        assert derive(total="0", due=PAST) == lc.INVOICE_SENT


class TestInvoiceStatusChange:

    def test_draft_to_sent(self):
        assert lc.resolve_invoice_status_change(
            base_status=lc.INVOICE_DRAFT, derived_status=lc.INVOICE_DRAFT, requested=lc.INVOICE_SENT
        ) == lc.INVOICE_SENT

    def test_requesting_current_derived_status_is_noop(self):
        assert lc.resolve_invoice_status_change(
            base_status=lc.INVOICE_SENT,
            derived_status=lc.INVOICE_PARTIALLY_PAID,
            requested=lc.INVOICE_PARTIALLY_PAID,
        ) == lc.INVOICE_SENT

    def test_derived_status_cannot_be_forced(self):
        with pytest.raises(LifecycleError):
            lc.resolve_invoice_status_change(
                base_status=lc.INVOICE_SENT, derived_status=lc.INVOICE_SENT, requested=lc.INVOICE_PAID
            )

    def test_paid_invoice_only_cancels(self):
        with pytest.raises(LifecycleError):
            lc.resolve_invoice_status_change(
                base_status=lc.INVOICE_SENT, derived_status=lc.INVOICE_PAID, requested=lc.INVOICE_DRAFT
            )
        assert lc.resolve_invoice_status_change(
            base_status=lc.INVOICE_SENT, derived_status=lc.INVOICE_PAID, requested=lc.INVOICE_CANCELLED
        ) == lc.INVOICE_CANCELLED

    @pytest.mark.parametrize("base", [lc.INVOICE_DRAFT, lc.INVOICE_SENT])
    def test_paid_invoice_rejects_its_base_status(self, base):
        with pytest.raises(LifecycleError):
            lc.resolve_invoice_status_change(
                base_status=base, derived_status=lc.INVOICE_PAID, requested=base
            )

    def test_paid_invoice_accepts_paid_as_noop(self):
        assert lc.resolve_invoice_status_change(
            base_status=lc.INVOICE_SENT, derived_status=lc.INVOICE_PAID, requested=lc.INVOICE_PAID
        ) == lc.INVOICE_SENT

    def test_cancelled_cannot_reopen(self):
        with pytest.raises(LifecycleError):
            lc.resolve_invoice_status_change(
                base_status=lc.INVOICE_CANCELLED, derived_status=lc.INVOICE_CANCELLED, requested=lc.INVOICE_SENT
            )

    def test_sent_cannot_go_back_to_draft(self):
        with pytest.raises(LifecycleError):
            lc.resolve_invoice_status_change(
                base_status=lc.INVOICE_SENT, derived_status=lc.INVOICE_SENT, requested=lc.INVOICE_DRAFT
            )

    def test_unknown_status(self):
        with pytest.raises(LifecycleError):
            lc.resolve_invoice_status_change(
                base_status=lc.INVOICE_DRAFT, derived_status=lc.INVOICE_DRAFT, requested="ARCHIVED"
            )

    def test_paid_invoice_not_deletable(self):
        with pytest.raises(LifecycleError):
            lc.ensure_invoice_deletable(lc.INVOICE_PAID)
        lc.ensure_invoice_deletable(lc.INVOICE_PARTIALLY_PAID)

    def test_cancelled_invoice_not_payable(self):
        with pytest.raises(LifecycleError):
            lc.ensure_invoice_payable(lc.INVOICE_CANCELLED)


class TestProposalTransitions:

    @pytest.mark.parametrize(
        "current,target",
        [
            (lc.PROPOSAL_DRAFT, lc.PROPOSAL_SENT),
            (lc.PROPOSAL_SENT, lc.PROPOSAL_NEGOTIATING),
            (lc.PROPOSAL_SENT, lc.PROPOSAL_ACCEPTED),
            (lc.PROPOSAL_NEGOTIATING, lc.PROPOSAL_REJECTED),
            (lc.PROPOSAL_ACCEPTED, lc.PROPOSAL_CANCELLED),
            (lc.PROPOSAL_SENT, lc.PROPOSAL_SENT),
        ],
    )
    def test_allowed(self, current, target):
        lc.validate_proposal_transition(current, target)

    @pytest.mark.parametrize(
        "current,target",
        [
            (lc.PROPOSAL_DRAFT, lc.PROPOSAL_ACCEPTED),
            (lc.PROPOSAL_REJECTED, lc.PROPOSAL_SENT),
            (lc.PROPOSAL_CANCELLED, lc.PROPOSAL_DRAFT),
            (lc.PROPOSAL_ACCEPTED, lc.PROPOSAL_NEGOTIATING),
            (lc.PROPOSAL_DRAFT, "WON"),
        ],
    )
    def test_rejected(self, current, target):
        with pytest.raises(LifecycleError):
            lc.validate_proposal_transition(current, target)

    def test_converted_is_immutable(self):
        with pytest.raises(LifecycleError):
            lc.ensure_proposal_mutable(True)
        lc.ensure_proposal_mutable(False)

    def test_only_accepted_converts_once(self):
        with pytest.raises(LifecycleError):
            lc.ensure_proposal_convertible(lc.PROPOSAL_SENT, False)
        with pytest.raises(LifecycleError):
            lc.ensure_proposal_convertible(lc.PROPOSAL_ACCEPTED, True)
        lc.ensure_proposal_convertible(lc.PROPOSAL_ACCEPTED, False)
