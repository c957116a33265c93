from __future__ import annotations

import uuid

from ..extensions import db
from ..money import as_number
from ..time_utils import to_utc_z, utcnow


def _new_id() -> str:
    return str(uuid.uuid4())


SALE_STATUSES = ("pending", "completed", "cancelled", "unpaid_debt")
PAYMENT_METHODS = ("cash", "transfer", "mixed", "credit")
PREPARATION_STATUSES = ("pending", "preparing", "ready", "delivered")


class Sale(db.Model):
    """
    Order / sale document, keyed by the id the device generated offline.

    WHY: Devices create sales while disconnected and re-upload them any
    number of times. A client-side id makes every upload an idempotent
    upsert instead of a duplicate.

    TRANSIT: A pending sale handed to a user with no shift yet has
    shift_id NULL and pending_receiver_user_id set. It is linked to that
    user's next open shift.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_shift_status", "shift_id", "status"),
        db.Index("ix_sales_table_status", "table_id", "status"),
        db.Index("ix_sales_pending_receiver", "pending_receiver_user_id"),
    )

    id = db.Column(db.String(64), primary_key=True, default=_new_id)

    # Authoritative totals, always recomputed server-side
    total = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    cost_total = db.Column(db.Numeric(12, 2), nullable=True)

    payment_method = db.Column(db.String(16), nullable=False, default="cash")
    # Split of a mixed payment
    cash_amount = db.Column(db.Numeric(12, 2), nullable=True)
    transfer_amount = db.Column(db.Numeric(12, 2), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    observation = db.Column(db.String(500), nullable=True)

    table_id = db.Column(db.Integer, db.ForeignKey("cafe_tables.id"), nullable=True)
    shift_id = db.Column(db.String(64), db.ForeignKey("shifts.id"), nullable=True)
    pending_receiver_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    unpaid_authorized_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    print_count = db.Column(db.Integer, nullable=False, default=0)
    is_synced = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    items = db.relationship(
        "SaleItem",
        back_populates="sale",
        cascade="all, delete-orphan",
        order_by="SaleItem.position",
        lazy="selectin",
    )

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "total": as_number(self.total),
            "cost_total": as_number(self.cost_total),
            "payment_method": self.payment_method,
            "cash_amount": as_number(self.cash_amount),
            "transfer_amount": as_number(self.transfer_amount),
            "status": self.status,
            "observation": self.observation,
            "table_id": self.table_id,
            "shift_id": self.shift_id,
            "pending_receiver_user_id": self.pending_receiver_user_id,
            "user_id": self.user_id,
            "customer_id": self.customer_id,
            "unpaid_authorized_by_id": self.unpaid_authorized_by_id,
            "print_count": self.print_count,
            "is_synced": self.is_synced,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "completed_at": to_utc_z(self.completed_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class SaleItem(db.Model):
    """
    Line item with product name and price snapshots.

    Items are replaced as a set on every upload touching their sale; they
    are never merged.
    """
    __tablename__ = "sale_items"

    id = db.Column(db.String(64), primary_key=True, default=_new_id)
    sale_id = db.Column(db.String(64), db.ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    product_name = db.Column(db.String(200), nullable=True)

    quantity = db.Column(db.Numeric(12, 3), nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)

    # Raw modifier list as uploaded: [{"ingredient_id", "type", "extra_count"}]
    modifiers = db.Column(db.JSON, nullable=True)
    notes = db.Column(db.String(255), nullable=True)

    preparation_status = db.Column(db.String(16), nullable=False, default="pending")
    # Order within the uploaded cart
    position = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    sale = db.relationship("Sale", back_populates="items")

    @property
    def subtotal(self):
        return self.quantity * self.unit_price

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": as_number(self.quantity),
            "unit_price": as_number(self.unit_price),
            "subtotal": as_number(self.subtotal),
            "modifiers": self.modifiers or [],
            "notes": self.notes,
            "preparation_status": self.preparation_status,
            "position": self.position,
            "created_at": to_utc_z(self.created_at),
        }
