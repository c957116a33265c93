from __future__ import annotations

import uuid

from ..extensions import db
from ..money import as_number
from ..time_utils import to_utc_z, utcnow


def _new_id() -> str:
    return str(uuid.uuid4())


SHIFT_STATUSES = ("waiting_initial_cash", "open", "closed")
MOVEMENT_TYPES = ("gasto", "abono", "ingreso")


class Shift(db.Model):
    """
    Cash-register shift.

    WHY: Cash accountability. Every sale and drawer movement belongs to a
    shift, and the shift's closing count is reconciled against them.

    INVARIANT: At most one shift is open at any time. The partial unique
    index below makes the database refuse a second one even when two devices
    race past the application-level check.
    """
    __tablename__ = "shifts"
    __table_args__ = (
        db.Index(
            "uq_shifts_single_open",
            "status",
            unique=True,
            sqlite_where=db.text("status = 'open'"),
            postgresql_where=db.text("status = 'open'"),
        ),
        db.Index("ix_shifts_opened_by_status", "opened_by_id", "status"),
    )

    id = db.Column(db.String(64), primary_key=True, default=_new_id)

    opened_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    opened_by_name = db.Column(db.String(120), nullable=True)
    closed_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    closed_by_name = db.Column(db.String(120), nullable=True)

    start_time = db.Column(db.DateTime(timezone=True), nullable=True)
    end_time = db.Column(db.DateTime(timezone=True), nullable=True)

    initial_cash = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    final_cash_reported = db.Column(db.Numeric(12, 2), nullable=True)
    expected_cash = db.Column(db.Numeric(12, 2), nullable=True)
    cash_difference = db.Column(db.Numeric(12, 2), nullable=True)

    status = db.Column(db.String(24), nullable=False, default="waiting_initial_cash")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "opened_by_id": self.opened_by_id,
            "opened_by_name": self.opened_by_name,
            "closed_by_id": self.closed_by_id,
            "closed_by_name": self.closed_by_name,
            "start_time": to_utc_z(self.start_time),
            "end_time": to_utc_z(self.end_time),
            "initial_cash": as_number(self.initial_cash),
            "final_cash_reported": as_number(self.final_cash_reported),
            "expected_cash": as_number(self.expected_cash),
            "cash_difference": as_number(self.cash_difference),
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
        }


class Movement(db.Model):
    """Cash-drawer ledger entry (expense "gasto", credit payment "abono", or "ingreso")."""
    __tablename__ = "movements"
    __table_args__ = (
        db.Index("ix_movements_shift_type", "shift_id", "type"),
    )

    id = db.Column(db.String(64), primary_key=True, default=_new_id)
    type = db.Column(db.String(16), nullable=False)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    description = db.Column(db.String(255), nullable=True)
    shift_id = db.Column(db.String(64), db.ForeignKey("shifts.id"), nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "amount": as_number(self.amount),
            "description": self.description,
            "shift_id": self.shift_id,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }
