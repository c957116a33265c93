# Overview: Service-layer operations for staff accounts; password and PIN hashing with bcrypt.

"""
Staff Authentication Service

WHY: Shifts, handovers and credit payments are attributed to a person.
Passwords and PINs are hashed with bcrypt; the plaintext is never stored.

PIN login exists for the register: waiters switch users on a shared device
with a short numeric PIN instead of a full password.
"""

import re

import bcrypt
from flask import current_app

from ..extensions import db
from ..models import User
from ..models.auth import ROLES
from ..time_utils import utcnow


class PasswordValidationError(Exception):
    """Raised when a password or PIN doesn't meet requirements."""
    pass


class UserError(Exception):
    pass


def validate_password_strength(password: str) -> None:
    """
    Minimum 8 characters with at least one letter and one digit.
    """
    if not password or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")
    if not re.search(r"[A-Za-z]", password):
        raise PasswordValidationError("Password must contain at least one letter")
    if not re.search(r"\d", password):
        raise PasswordValidationError("Password must contain at least one digit")


def validate_pin(pin: str) -> None:
    if not re.fullmatch(r"\d{4,6}", pin or ""):
        raise PasswordValidationError("PIN must be 4 to 6 digits")


def _bcrypt_hash(secret: str) -> str:
    rounds = current_app.config.get("BCRYPT_ROUNDS", 12)
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(secret.encode("utf-8"), salt).decode("utf-8")


def hash_password(password: str) -> str:
    validate_password_strength(password)
    return _bcrypt_hash(password)


def hash_pin(pin: str) -> str:
    validate_pin(pin)
    return _bcrypt_hash(pin)


def verify_secret(secret: str, secret_hash: str | None) -> bool:
    if not secret or not secret_hash:
        return False
    try:
        return bcrypt.checkpw(secret.encode("utf-8"), secret_hash.encode("utf-8"))
    except ValueError:
        # Malformed hash in the database
        return False


def create_user(
    username: str,
    password: str,
    name: str,
    role: str = "waiter",
    pin: str | None = None,
) -> User:
    """
    Create a staff account.

    Raises PasswordValidationError for a weak password or malformed PIN and
    UserError for an unknown role or a taken username.
    """
    if role not in ROLES:
        raise UserError(f"Unknown role: {role}")

    username = (username or "").strip()
    if not username:
        raise UserError("Username is required")

    if db.session.query(User).filter_by(username=username).first():
        raise UserError(f"Username already exists: {username}")

    user = User(
        username=username,
        name=(name or username).strip(),
        password_hash=hash_password(password),
        pin_hash=hash_pin(pin) if pin else None,
        role=role,
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(username: str, password: str | None = None, pin: str | None = None) -> User | None:
    """
    Check credentials; returns the user or None.

    Exactly one of password / PIN is used, password first.
    """
    user = db.session.query(User).filter_by(username=(username or "").strip()).first()
    if not user or not user.is_active:
        return None

    if password:
        ok = verify_secret(password, user.password_hash)
    elif pin:
        ok = verify_secret(pin, user.pin_hash)
    else:
        ok = False

    if not ok:
        return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user
