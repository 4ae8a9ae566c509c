# Overview: Profile and role management for CRM users.

from __future__ import annotations

from ..extensions import db
from ..models import User
from ..models.auth import VALID_ROLES
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    enforce_choice,
    validate_payload,
)
from .auth_service import normalize_email


PROFILE_POLICY = ModelValidationPolicy(
    writable_fields={"first_name", "last_name", "email", "phone", "department", "avatar"},
)


def update_profile(user: User, payload: dict) -> User:
    """Update the caller's own profile. Unknown fields are ignored."""
    payload = {k: v for k, v in (payload or {}).items() if k in PROFILE_POLICY.writable_fields}
    patch = validate_payload(model=User, payload=payload, policy=PROFILE_POLICY, partial=True)

    if "email" in patch:
        patch["email"] = normalize_email(patch["email"])
        taken = db.session.query(User).filter(User.email == patch["email"], User.id != user.id).first()
        if taken:
            raise ConflictError("This e-mail address is already in use")

    for key, value in patch.items():
        setattr(user, key, value)
    db.session.commit()
    return user


def list_users() -> list[User]:
    return db.session.query(User).order_by(User.first_name, User.last_name, User.id).all()


def set_role(user_id: int, role: str, *, acting_user: User) -> User:
    if not role:
        raise ValidationError("role is required")
    enforce_choice("role", role, VALID_ROLES)

    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")
    if user.id == acting_user.id and role != user.role:
        raise ValidationError("You cannot change your own role")

    user.role = role
    db.session.commit()
    return user
