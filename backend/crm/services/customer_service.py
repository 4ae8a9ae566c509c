# Overview: Service-layer operations for customers; encapsulates business logic and database work.

from __future__ import annotations

import logging
from datetime import timedelta

from sqlalchemy import String, func, or_

from ..extensions import db
from ..models import Customer, Event, Interaction, Invoice, Proposal, User
from ..models.customers import CUSTOMER_SOURCES, CUSTOMER_STATUSES
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    enforce_range,
    validate_payload,
)
from .query_utils import paginate_query, parse_int_arg, parse_paging, parse_sort
from crm.time_utils import utcnow

logger = logging.getLogger(__name__)


CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={
        "first_name", "last_name", "email", "phone", "company", "position",
        "street", "city", "state", "zip_code", "country",
        "status", "source", "tags", "notes", "customer_value",
        "assigned_to_user_id", "last_contact_at",
    },
    required_on_create={"first_name", "last_name", "email"},
    choices={"status": CUSTOMER_STATUSES, "source": CUSTOMER_SOURCES},
)

ADDRESS_FIELDS = ("street", "city", "state", "zip_code", "country")

SORT_FIELDS = {
    "created_at": Customer.created_at,
    "first_name": Customer.first_name,
    "last_name": Customer.last_name,
    "email": Customer.email,
    "company": Customer.company,
    "status": Customer.status,
    "customer_value": Customer.customer_value,
    "last_contact_at": Customer.last_contact_at,
}


def _flatten_address(payload: dict) -> dict:
    """Accept the nested address object the dashboard sends."""
    payload = dict(payload or {})
    address = payload.pop("address", None)
    if isinstance(address, dict):
        for key in ADDRESS_FIELDS:
            if key in address and key not in payload:
                payload[key] = address[key]
    payload.pop("id", None)
    return payload


def _normalize_tags(tags) -> list[str]:
    if tags is None:
        return []
    if isinstance(tags, str):
        tags = tags.split(",")
    if not isinstance(tags, list):
        raise ValidationError("tags must be a list of strings")
    cleaned = []
    for tag in tags:
        tag = str(tag).strip()
        if tag and tag not in cleaned:
            cleaned.append(tag)
    return cleaned


def _apply_rules(patch: dict, *, customer_id: int | None = None) -> None:
    if "email" in patch:
        patch["email"] = patch["email"].lower()
        if "@" not in patch["email"]:
            raise ValidationError("email must be a valid e-mail address")
        clash = db.session.query(Customer).filter(Customer.email == patch["email"])
        if customer_id is not None:
            clash = clash.filter(Customer.id != customer_id)
        if clash.first():
            raise ConflictError("A customer with this e-mail address already exists")
    if "tags" in patch:
        patch["tags"] = _normalize_tags(patch["tags"])
    enforce_range("customer_value", patch.get("customer_value"), minimum=0, maximum=5)
    if patch.get("assigned_to_user_id") is not None:
        if not db.session.get(User, patch["assigned_to_user_id"]):
            raise ValidationError("assigned_to_user_id does not reference an existing user")


def list_customers(args) -> tuple[list[Customer], dict]:
    page, limit = parse_paging(args)
    sort_col, descending = parse_sort(args, SORT_FIELDS, "created_at")

    query = db.session.query(Customer)

    if args.get("status"):
        query = query.filter(Customer.status == args["status"])
    if args.get("source"):
        query = query.filter(Customer.source == args["source"])
    assigned_to = parse_int_arg(args.get("assigned_to"), "assigned_to")
    if assigned_to is not None:
        query = query.filter(Customer.assigned_to_user_id == assigned_to)
    customer_value = parse_int_arg(args.get("customer_value"), "customer_value")
    if customer_value is not None:
        query = query.filter(Customer.customer_value == customer_value)
    if args.get("tags"):
        tags = _normalize_tags(args["tags"])
        tags_text = Customer.tags.cast(String)
        query = query.filter(or_(*[tags_text.like(f'%"{tag}"%') for tag in tags]))
    search = (args.get("search") or "").strip()
    if search:
        like = f"%{search}%"
        query = query.filter(or_(
            Customer.first_name.ilike(like),
            Customer.last_name.ilike(like),
            Customer.email.ilike(like),
            Customer.company.ilike(like),
            Customer.city.ilike(like),
            Customer.phone.ilike(like),
        ))

    query = query.order_by(sort_col.desc() if descending else sort_col.asc(), Customer.id.desc())
    return paginate_query(query, page, limit)


def get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if not customer:
        raise NotFoundError("Customer not found")
    return customer


def customer_detail(customer: Customer) -> dict:
    data = customer.to_dict()
    interactions = (
        db.session.query(Interaction)
        .filter_by(customer_id=customer.id)
        .order_by(Interaction.occurred_at.desc(), Interaction.id.desc())
        .all()
    )
    data["interactions"] = [i.to_dict() for i in interactions]
    return data


def create_customer(payload: dict, *, user: User) -> Customer:
    patch = validate_payload(
        model=Customer, payload=_flatten_address(payload), policy=CUSTOMER_POLICY, partial=False
    )
    _apply_rules(patch)
    patch.setdefault("assigned_to_user_id", user.id)

    customer = Customer(**patch)
    db.session.add(customer)
    db.session.commit()
    logger.info("Customer %s created by user %s", customer.id, user.id)
    return customer


def update_customer(customer_id: int, payload: dict) -> Customer:
    """Patch a customer. last_contact_at defaults to now when not supplied."""
    customer = get_customer(customer_id)
    patch = validate_payload(
        model=Customer, payload=_flatten_address(payload), policy=CUSTOMER_POLICY, partial=True
    )
    _apply_rules(patch, customer_id=customer.id)
    if "last_contact_at" not in patch:
        patch["last_contact_at"] = utcnow()

    for key, value in patch.items():
        setattr(customer, key, value)
    db.session.commit()
    return customer


def delete_customer(customer_id: int) -> int:
    """
    Delete a customer and its interactions.

    Interactions are deleted explicitly. Events keep existing with the
    customer link cleared. Customers with proposals or invoices cannot be
    deleted. Returns the number of interactions removed.
    """
    customer = get_customer(customer_id)

    has_documents = (
        db.session.query(Proposal.id).filter_by(customer_id=customer.id).first()
        or db.session.query(Invoice.id).filter_by(customer_id=customer.id).first()
    )
    if has_documents:
        raise ValidationError("Customer has proposals or invoices and cannot be deleted")

    removed = (
        db.session.query(Interaction)
        .filter_by(customer_id=customer.id)
        .delete(synchronize_session=False)
    )
    db.session.query(Event).filter_by(customer_id=customer.id).update(
        {Event.customer_id: None}, synchronize_session=False
    )
    db.session.delete(customer)
    db.session.commit()
    logger.info("Customer %s deleted with %s interactions", customer_id, removed)
    return removed


def touch_last_contact(customer_id: int | None, when=None) -> None:
    """Set last_contact_at without committing."""
    if customer_id is None:
        return
    customer = db.session.get(Customer, customer_id)
    if customer:
        customer.last_contact_at = when or utcnow()


def customer_stats(now=None) -> dict:
    now = now or utcnow()
    total = db.session.query(func.count(Customer.id)).scalar()
    new_this_week = (
        db.session.query(func.count(Customer.id))
        .filter(Customer.created_at >= now - timedelta(days=7))
        .scalar()
    )
    by_status = dict(
        db.session.query(Customer.status, func.count(Customer.id)).group_by(Customer.status).all()
    )
    by_source = dict(
        db.session.query(Customer.source, func.count(Customer.id)).group_by(Customer.source).all()
    )
    return {
        "total": total,
        "new_this_week": new_this_week,
        "by_status": {status: by_status.get(status, 0) for status in CUSTOMER_STATUSES},
        "by_source": {source: by_source.get(source, 0) for source in CUSTOMER_SOURCES},
    }
