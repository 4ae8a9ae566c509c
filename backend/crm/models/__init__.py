from .auth import User, SessionToken
from .customers import Customer, Interaction
from .documents import (
    Proposal,
    ProposalLine,
    Invoice,
    InvoiceLine,
    InvoicePayment,
    DocumentSequence,
)
from .events import Event, EventReminder, EventAttendee

__all__ = [
    'User', 'SessionToken',
    'Customer', 'Interaction',
    'Proposal', 'ProposalLine', 'Invoice', 'InvoiceLine', 'InvoicePayment', 'DocumentSequence',
    'Event', 'EventReminder', 'EventAttendee',
]
