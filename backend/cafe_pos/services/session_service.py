# Overview: Service-layer operations for bearer sessions; token issue, validation and revocation.

"""
Session Token Management Service

WHY: Secure session management with absolute timeout and revocation.
Tokens are cryptographically secure, hashed in the database, and
time-limited (SESSION_TTL_HOURS).
"""

import hashlib
import secrets
from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import SessionToken, User
from ..time_utils import utcnow


def generate_token() -> str:
    """
    Generate cryptographically secure random token.

    Returns 64-character hex string (32 bytes of entropy).
    This is the plaintext token sent to the client (never stored).
    """
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """
    SHA-256 of the token. Tokens are high-entropy, so a fast hash suffices.
    """
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_session(user_id: int, device_id: str | None = None) -> tuple[SessionToken, str]:
    """
    Create a new session for the user.

    Returns (session_record, plaintext_token).
    """
    user = db.session.get(User, user_id)
    if not user:
        raise ValueError("User not found")

    plaintext_token = generate_token()
    now = utcnow()
    ttl = timedelta(hours=current_app.config.get("SESSION_TTL_HOURS", 24))

    session = SessionToken(
        user_id=user_id,
        token_hash=hash_token(plaintext_token),
        device_id=device_id,
        created_at=now,
        expires_at=now + ttl,
        revoked=False,
    )
    db.session.add(session)
    db.session.commit()

    return session, plaintext_token


def validate_session(token: str) -> User | None:
    """
    Return the session's user if the token is valid.

    Returns None if the token is unknown, expired or revoked, or if the user
    has been deactivated.
    """
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        revoked=False,
    ).first()

    if not session:
        return None

    if session.expires_at < utcnow():
        return None

    user = session.user
    if not user or not user.is_active:
        return None

    return user


def revoke_session(token: str) -> bool:
    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
    if not session or session.revoked:
        return False

    session.revoked = True
    session.revoked_at = utcnow()
    db.session.commit()
    return True
