# Overview: Operator accounts and password verification.

"""
Authentication Service

WHY: Every sale, credit note and cash session is attributable to the
operator who was signed in. Passwords are hashed with bcrypt.

SECURITY NOTES:
- Cost factor from BCRYPT_ROUNDS (12 by default)
- Minimum 8 characters, at least one letter and one digit
- Session tokens managed separately (see session_service.py)
"""

import re

import bcrypt
from flask import current_app

from ..extensions import db
from ..models import User
from fiscalpos.time_utils import utcnow


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


class UserError(Exception):
    """Raised when a user account cannot be created."""
    pass


def validate_password_strength(password: str) -> None:
    if len(password or "") < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")
    if not re.search(r"[A-Za-z]", password):
        raise PasswordValidationError("Password must contain at least one letter")
    if not re.search(r"\d", password):
        raise PasswordValidationError("Password must contain at least one digit")


def hash_password(password: str) -> str:
    """Validate strength, then hash with bcrypt."""
    validate_password_strength(password)
    rounds = int(current_app.config.get("BCRYPT_ROUNDS", 12))
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds))
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    bcrypt.checkpw() is timing-safe. A malformed stored hash counts as a
    mismatch.
    """
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def create_user(username: str, password: str, display_name: str | None = None, *, is_admin: bool = False) -> User:
    """
    Create an operator account.

    Raises:
        UserError: username missing or already taken
        PasswordValidationError: weak password
    """
    username = (username or "").strip()
    if not username:
        raise UserError("username is required")

    if db.session.query(User).filter_by(username=username).first():
        raise UserError("Username already exists")

    user = User(
        username=username,
        display_name=(display_name or username).strip(),
        password_hash=hash_password(password),
        is_admin=is_admin,
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(username: str, password: str) -> User | None:
    """
    Return the active user matching the credentials, or None.

    Updates last_login_at on success.
    """
    user = db.session.query(User).filter(
        User.username == (username or "").strip(),
        User.is_active.is_(True),
    ).first()
    if not user:
        return None

    if verify_password(password or "", user.password_hash):
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    return None
