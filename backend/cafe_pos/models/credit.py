from __future__ import annotations

from ..extensions import db
from ..money import as_number
from ..time_utils import to_utc_z, utcnow


CREDIT_TRANSACTION_TYPES = ("opening_balance", "charge", "payment")
CHARGE_TYPES = ("opening_balance", "charge")


class Customer(db.Model):
    """
    Customer with a running credit account.

    current_debt is signed: a negative value is credit in the customer's favor.
    """
    __tablename__ = "customers"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    phone = db.Column(db.String(32), nullable=True)
    document_id = db.Column(db.String(32), nullable=True, unique=True)
    notes = db.Column(db.String(500), nullable=True)

    credit_limit = db.Column(db.Numeric(12, 2), nullable=True)
    current_debt = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "document_id": self.document_id,
            "notes": self.notes,
            "credit_limit": as_number(self.credit_limit),
            "current_debt": as_number(self.current_debt),
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class CreditTransaction(db.Model):
    """
    Credit ledger entry (append-only).

    Charges and opening balances carry `remaining`, which payments draw down
    oldest first. Each payment row settles exactly one charge
    (related_charge_id); one customer payment may produce several rows.
    """
    __tablename__ = "credit_transactions"
    __table_args__ = (
        db.Index("ix_credit_tx_customer_type_created", "customer_id", "type", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False)
    type = db.Column(db.String(16), nullable=False)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    remaining = db.Column(db.Numeric(12, 2), nullable=True)
    description = db.Column(db.String(255), nullable=True)

    related_charge_id = db.Column(db.Integer, db.ForeignKey("credit_transactions.id"), nullable=True)
    movement_id = db.Column(db.String(64), db.ForeignKey("movements.id"), nullable=True)
    shift_id = db.Column(db.String(64), db.ForeignKey("shifts.id"), nullable=True)
    sale_id = db.Column(db.String(64), db.ForeignKey("sales.id"), nullable=True)
    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    customer = db.relationship("Customer", backref=db.backref("transactions", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "type": self.type,
            "amount": as_number(self.amount),
            "remaining": as_number(self.remaining),
            "description": self.description,
            "related_charge_id": self.related_charge_id,
            "movement_id": self.movement_id,
            "shift_id": self.shift_id,
            "sale_id": self.sale_id,
            "created_by_id": self.created_by_id,
            "created_at": to_utc_z(self.created_at),
        }
