# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Authentication Service

Uses bcrypt for password hashing and validates password strength.

- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters, upper/lower case, digit and special character
- Session tokens managed separately (see session_service.py)
- Password reset tokens are random, stored as SHA-256 hashes and expire
  after RESET_TOKEN_TTL
"""

import logging
import re
import secrets
from datetime import timedelta

import bcrypt

from ..extensions import db
from ..models import User
from ..models.auth import ROLE_USER, VALID_ROLES
from ..validation import ConflictError, NotFoundError, ValidationError
from .session_service import hash_token
from crm.time_utils import utcnow

logger = logging.getLogger(__name__)

RESET_TOKEN_TTL = timedelta(minutes=30)


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""
    pass


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Raises PasswordValidationError if requirements not met.
    """
    if not password or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>?_\-]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """Validate strength, then hash with bcrypt (cost factor 12)."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe bcrypt comparison. Malformed hashes never match."""
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def create_user(
    *,
    first_name: str,
    last_name: str,
    email: str,
    password: str,
    role: str = ROLE_USER,
    department: str | None = None,
    phone: str | None = None,
) -> User:
    """
    Create a user with a bcrypt password hash.

    Raises:
        ValidationError: missing fields or unknown role
        PasswordValidationError: weak password
        ConflictError: email already registered
    """
    email = normalize_email(email)
    first_name = (first_name or "").strip()
    last_name = (last_name or "").strip()
    if not all([first_name, last_name, email]):
        raise ValidationError("first_name, last_name, email and password are required")
    if "@" not in email:
        raise ValidationError("email must be a valid e-mail address")
    if role not in VALID_ROLES:
        raise ValidationError(f"Invalid role '{role}'. Must be one of: {', '.join(VALID_ROLES)}")

    if db.session.query(User).filter_by(email=email).first():
        raise ConflictError("This e-mail address is already in use")

    user = User(
        first_name=first_name,
        last_name=last_name,
        email=email,
        password_hash=hash_password(password),
        role=role,
        department=department,
        phone=phone,
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()
    return user


def register_user(payload: dict) -> User:
    """Public self-registration. The role is always 'user'."""
    return create_user(
        first_name=payload.get("first_name"),
        last_name=payload.get("last_name"),
        email=payload.get("email"),
        password=payload.get("password"),
        role=ROLE_USER,
        department=payload.get("department"),
        phone=payload.get("phone"),
    )


def authenticate(email: str, password: str) -> User | None:
    """
    Return the active user matching email + password, or None.

    Updates last_login_at on success.
    """
    user = db.session.query(User).filter_by(email=normalize_email(email)).first()
    if not user or not user.is_active:
        return None
    if not verify_password(password, user.password_hash):
        return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user


def create_password_reset_token(email: str) -> tuple[User, str]:
    """
    Issue a password reset token for the user with this e-mail.

    Returns (user, plaintext_token); only the hash is stored.
    """
    user = db.session.query(User).filter_by(email=normalize_email(email)).first()
    if not user:
        raise NotFoundError("No user found with that e-mail address")

    token = secrets.token_hex(20)
    user.reset_password_token_hash = hash_token(token)
    user.reset_password_expires_at = utcnow() + RESET_TOKEN_TTL
    db.session.commit()
    return user, token


def clear_password_reset_token(user: User) -> None:
    user.reset_password_token_hash = None
    user.reset_password_expires_at = None
    db.session.commit()


def request_password_reset(email: str, *, mailer, frontend_url: str) -> User:
    """
    Create a reset token and e-mail the reset link.

    If the e-mail cannot be sent the token is cleared again and the
    mail error propagates.
    """
    user, token = create_password_reset_token(email)
    reset_url = f"{frontend_url.rstrip('/')}/reset-password/{token}"
    try:
        mailer.send_password_reset(user, reset_url)
    except Exception:
        clear_password_reset_token(user)
        raise
    return user


def reset_password(token: str, new_password: str) -> User:
    """Set a new password from a valid, unexpired reset token."""
    user = db.session.query(User).filter(
        User.reset_password_token_hash == hash_token(token or ""),
        User.reset_password_expires_at > utcnow(),
    ).first()
    if not user:
        raise ValidationError("Invalid or expired token")

    user.password_hash = hash_password(new_password)
    user.reset_password_token_hash = None
    user.reset_password_expires_at = None
    db.session.commit()
    return user


def change_password(user: User, current_password: str, new_password: str) -> None:
    if not current_password or not new_password:
        raise ValidationError("current_password and new_password are required")
    if not verify_password(current_password, user.password_hash):
        raise ValidationError("Current password is incorrect")
    user.password_hash = hash_password(new_password)
    db.session.commit()
