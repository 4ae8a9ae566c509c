# Overview: Numbering sequencer for proposals and invoices.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from crm.time_utils import month_period, utcnow
from .concurrency import run_with_retry


DOCUMENT_TYPE_INVOICE = "INVOICE"
DOCUMENT_TYPE_PROPOSAL = "PROPOSAL"

PREFIXES = {
    DOCUMENT_TYPE_INVOICE: "INV",
    DOCUMENT_TYPE_PROPOSAL: "PRO",
}


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def format_document_number(prefix: str, period: str, number: int, pad: int = 4) -> str:
    return f"{prefix}-{period}-{number:0{pad}d}"


def next_document_number(
    *,
    document_type: str,
    now: datetime | None = None,
    pad: int = 4,
) -> str:
    """
    Atomically allocate the next PREFIX-YYYYMM-NNNN number for a document type.

    The counter is scoped to (document_type, YYYYMM) and restarts at 0001
    every month. The increment is a single UPDATE so concurrent callers never
    receive the same number; first use of a period inserts the row and falls
    back to the UPDATE if another writer inserted it first.
    """
    if document_type not in PREFIXES:
        raise DocumentSequenceError(f"Unknown document type: {document_type}")

    prefix = PREFIXES[document_type]
    period = month_period(now or utcnow())

    def _current() -> int:
        return (
            db.session.query(DocumentSequence.next_number)
            .filter_by(document_type=document_type, period=period)
            .scalar()
        )

    def _op() -> str:
        stmt = (
            update(DocumentSequence)
            .where(
                DocumentSequence.document_type == document_type,
                DocumentSequence.period == period,
            )
            .values(next_number=DocumentSequence.next_number + 1)
        )

        result = db.session.execute(stmt)
        if result.rowcount:
            db.session.flush()
            next_num = _current() - 1
        else:
            seq = DocumentSequence(document_type=document_type, period=period, next_number=2)
            try:
                with db.session.begin_nested():
                    db.session.add(seq)
                next_num = 1
            except IntegrityError:
                result = db.session.execute(stmt)
                if not result.rowcount:
                    raise DocumentSequenceError(
                        f"Could not allocate number for {document_type} {period}"
                    )
                db.session.flush()
                next_num = _current() - 1

        return format_document_number(prefix, period, next_num, pad)

    return run_with_retry(_op)
