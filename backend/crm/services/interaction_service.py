# Overview: Service-layer operations for interactions; encapsulates business logic and database work.

from __future__ import annotations

from datetime import datetime, time, timedelta

from ..extensions import db
from ..models import Customer, Interaction, User
from ..models.customers import INTERACTION_STATUSES, INTERACTION_TYPES
from ..validation import (
    ModelValidationPolicy,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
    require_int,
    validate_payload,
)
from .query_utils import paginate_query, parse_date_arg, parse_int_arg, parse_paging
from crm.time_utils import utcnow


INTERACTION_POLICY = ModelValidationPolicy(
    writable_fields={"customer_id", "type", "description", "occurred_at", "next_follow_up", "status"},
    required_on_create={"customer_id", "type", "description"},
    choices={"type": INTERACTION_TYPES, "status": INTERACTION_STATUSES},
)


def _require_customer(customer_id) -> Customer:
    customer = db.session.get(Customer, require_int(customer_id, "customer_id"))
    if not customer:
        raise NotFoundError("Customer not found")
    return customer


def _ensure_author_or_admin(interaction: Interaction, user: User, action: str) -> None:
    if interaction.user_id != user.id and not user.is_admin:
        raise PermissionDeniedError(f"You are not allowed to {action} this interaction")


def list_interactions(args) -> tuple[list[Interaction], dict]:
    page, limit = parse_paging(args)
    query = db.session.query(Interaction)

    customer_id = parse_int_arg(args.get("customer_id"), "customer_id")
    if customer_id is not None:
        query = query.filter(Interaction.customer_id == customer_id)
    user_id = parse_int_arg(args.get("user_id"), "user_id")
    if user_id is not None:
        query = query.filter(Interaction.user_id == user_id)
    if args.get("type"):
        query = query.filter(Interaction.type == args["type"])
    if args.get("status"):
        query = query.filter(Interaction.status == args["status"])
    start = parse_date_arg(args.get("start_date"), "start_date")
    if start:
        query = query.filter(Interaction.occurred_at >= start)
    end = parse_date_arg(args.get("end_date"), "end_date")
    if end:
        query = query.filter(Interaction.occurred_at <= end)
    search = (args.get("search") or "").strip()
    if search:
        query = query.filter(Interaction.description.ilike(f"%{search}%"))

    query = query.order_by(Interaction.occurred_at.desc(), Interaction.id.desc())
    return paginate_query(query, page, limit)


def list_customer_interactions(customer_id: int) -> list[Interaction]:
    _require_customer(customer_id)
    return (
        db.session.query(Interaction)
        .filter_by(customer_id=customer_id)
        .order_by(Interaction.occurred_at.desc(), Interaction.id.desc())
        .all()
    )


def get_interaction(interaction_id: int) -> Interaction:
    interaction = db.session.get(Interaction, interaction_id)
    if not interaction:
        raise NotFoundError("Interaction not found")
    return interaction


def create_interaction(payload: dict, *, user: User) -> Interaction:
    """Log an interaction and stamp the customer's last contact time."""
    patch = validate_payload(model=Interaction, payload=payload, policy=INTERACTION_POLICY, partial=False)
    customer = _require_customer(patch["customer_id"])

    now = utcnow()
    patch.setdefault("occurred_at", now)
    if patch["occurred_at"] is None:
        patch["occurred_at"] = now

    interaction = Interaction(user_id=user.id, **patch)
    db.session.add(interaction)
    customer.last_contact_at = now
    db.session.commit()
    return interaction


def update_interaction(interaction_id: int, payload: dict, *, user: User) -> Interaction:
    interaction = get_interaction(interaction_id)
    _ensure_author_or_admin(interaction, user, "update")

    patch = validate_payload(model=Interaction, payload=payload, policy=INTERACTION_POLICY, partial=True)
    if "customer_id" in patch:
        _require_customer(patch["customer_id"])
    if "occurred_at" in patch and patch["occurred_at"] is None:
        raise ValidationError("occurred_at cannot be null")

    for key, value in patch.items():
        setattr(interaction, key, value)
    db.session.commit()
    return interaction


def delete_interaction(interaction_id: int, *, user: User) -> None:
    interaction = get_interaction(interaction_id)
    _ensure_author_or_admin(interaction, user, "delete")
    db.session.delete(interaction)
    db.session.commit()


def todays_follow_ups(now: datetime | None = None) -> list[Interaction]:
    """Interactions whose next follow-up falls on today (UTC) and are not completed."""
    now = now or utcnow()
    day_start = datetime.combine(now.date(), time.min)
    day_end = day_start + timedelta(days=1)
    return (
        db.session.query(Interaction)
        .filter(
            Interaction.next_follow_up >= day_start,
            Interaction.next_follow_up < day_end,
            Interaction.status != "COMPLETED",
        )
        .order_by(Interaction.next_follow_up.asc())
        .all()
    )
