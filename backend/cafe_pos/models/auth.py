from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


ROLES = ("admin", "cashier", "waiter")


class User(db.Model):
    """
    Staff account.

    WHY: Shifts and handovers are attributed to a person, and transit sales
    are addressed to one.
    """
    __tablename__ = "users"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    username = db.Column(db.String(64), nullable=False, unique=True, index=True)

    # Bcrypt hashes
    password_hash = db.Column(db.String(255), nullable=False)
    pin_hash = db.Column(db.String(255), nullable=True)

    role = db.Column(db.String(16), nullable=False, default="waiter")
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "username": self.username,
            "role": self.role,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "last_login_at": to_utc_z(self.last_login_at),
        }

    def to_device_dict(self) -> dict:
        """Offline PIN login: devices compare against the bcrypt hash, never a PIN."""
        return {
            "id": self.id,
            "name": self.name,
            "username": self.username,
            "role": self.role,
            "is_active": self.is_active,
            "pin_hash": self.pin_hash,
        }


class SessionToken(db.Model):
    """
    Bearer session; only the SHA-256 hash of the token is stored.
    """
    __tablename__ = "session_tokens"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)
    device_id = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    revoked = db.Column(db.Boolean, nullable=False, default=False)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    user = db.relationship("User", backref=db.backref("sessions", lazy=True))
