from __future__ import annotations

from ..extensions import db
from crm.time_utils import to_utc_z


CUSTOMER_STATUSES = ["ACTIVE", "LEAD", "INACTIVE", "LOST"]
CUSTOMER_SOURCES = ["WEBSITE", "REFERRAL", "SOCIAL_MEDIA", "ADVERTISEMENT", "OTHER"]

INTERACTION_TYPES = ["PHONE", "EMAIL", "MEETING", "NOTE", "OTHER"]
INTERACTION_STATUSES = ["PENDING", "COMPLETED", "SCHEDULED"]


class Customer(db.Model):
    """
    Customer master record.

    Owns Interactions. Deleting a customer deletes its interactions through
    customer_service.delete_customer, not through a database cascade.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("email", name="uq_customers_email"),
        db.Index("ix_customers_status_source", "status", "source"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    first_name = db.Column(db.String(128), nullable=False)
    last_name = db.Column(db.String(128), nullable=False)
    email = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=True)
    company = db.Column(db.String(255), nullable=True)
    position = db.Column(db.String(128), nullable=True)

    street = db.Column(db.String(255), nullable=True)
    city = db.Column(db.String(128), nullable=True)
    state = db.Column(db.String(128), nullable=True)
    zip_code = db.Column(db.String(32), nullable=True)
    country = db.Column(db.String(128), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="LEAD", index=True)
    source = db.Column(db.String(32), nullable=False, default="OTHER", index=True)
    tags = db.Column(db.JSON, nullable=False, default=list)
    notes = db.Column(db.Text, nullable=True)

    # 0-5 rating of the customer's value to the business
    customer_value = db.Column(db.Integer, nullable=False, default=0)

    assigned_to_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    last_contact_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    assigned_to = db.relationship("User", foreign_keys=[assigned_to_user_id])
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def summary(self) -> dict:
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "company": self.company,
            "phone": self.phone,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "full_name": self.full_name,
            "email": self.email,
            "phone": self.phone,
            "company": self.company,
            "position": self.position,
            "address": {
                "street": self.street,
                "city": self.city,
                "state": self.state,
                "zip_code": self.zip_code,
                "country": self.country,
            },
            "status": self.status,
            "source": self.source,
            "tags": list(self.tags or []),
            "notes": self.notes,
            "customer_value": self.customer_value,
            "assigned_to_user_id": self.assigned_to_user_id,
            "assigned_to": self.assigned_to.summary() if self.assigned_to else None,
            "last_contact_at": to_utc_z(self.last_contact_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class Interaction(db.Model):
    """Logged contact with a customer (call, e-mail, meeting, note)."""
    __tablename__ = "interactions"
    __table_args__ = (
        db.Index("ix_interactions_customer_occurred", "customer_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False)
    description = db.Column(db.Text, nullable=False)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False)
    next_follow_up = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    status = db.Column(db.String(16), nullable=False, default="COMPLETED")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("interactions", lazy=True))
    user = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "customer": self.customer.summary() if self.customer else None,
            "user_id": self.user_id,
            "user": self.user.summary() if self.user else None,
            "type": self.type,
            "description": self.description,
            "occurred_at": to_utc_z(self.occurred_at),
            "next_follow_up": to_utc_z(self.next_follow_up),
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
