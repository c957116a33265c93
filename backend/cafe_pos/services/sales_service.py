# Overview: Service-layer operations for sales; idempotent upsert, item replacement and completion.

"""
Sale Reconciliation

WHY: Devices work offline and re-upload the same sale many times, in any
order. The server must end up with one sale, one authoritative total, and
exactly one stock deduction.

DESIGN PRINCIPLES:
- Upsert by the device-generated id. A resend overwrites, never duplicates.
- Items are replaced as a set on every upload that carries them; they are
  never merged. The total is recomputed from persisted items and the
  device-reported total is ignored.
- Stock is deducted once, on the transition into "completed". Completed and
  cancelled are terminal; a stale upload cannot move a sale out of them.
  Cancelling wipes the items and zeroes the total.
- Shift placement (shift_id, pending_receiver_user_id) is taken from the
  first upload only. Afterwards handovers own it, so a resend from the
  previous operator's device cannot pull a sale back to its old shift.
- upsert_sale() and replace_sale_items() run inside the caller's
  transaction (sync batch savepoint, single-sale upload); the standalone
  operations below own their commit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..extensions import db
from ..models import Product, Sale, SaleItem
from ..models.sales import PAYMENT_METHODS, PREPARATION_STATUSES, SALE_STATUSES
from ..money import ZERO, quantize_money, to_decimal
from ..time_utils import utcnow
from ..validation import ValidationError, optional_datetime, optional_decimal, optional_int, require_fields
from . import credit_service, stock_service
from .concurrency import begin_write, lock_for_update, run_with_retry
from .realtime_service import emit_kitchen_update, emit_order_update, emit_sale_complete
from .table_service import mark_table

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = ("completed", "cancelled")

# Owned by the server once the sale exists; handovers move them, resends do not
PLACEMENT_FIELDS = ("shift_id", "pending_receiver_user_id")


class SaleError(Exception):
    def __init__(self, message: str, status_code: int = 400, details=None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details


@dataclass
class SaleOutcome:
    sale: Sale
    created: bool
    previous_status: str | None
    stock_changes: list = field(default_factory=list)

    @property
    def deducted(self) -> bool:
        return self.previous_status != "completed" and self.sale.status == "completed"


# =============================================================================
# PARSING
# =============================================================================

def parse_sale_record(data: dict) -> dict:
    """
    Normalize an uploaded sale into column values.

    Raises ValidationError for a missing id, an unknown status or payment
    method, or a completed credit sale without a customer.
    """
    if not isinstance(data, dict):
        raise ValidationError("sale must be an object")
    require_fields(data, "id")

    status = data.get("status") or "pending"
    if status not in SALE_STATUSES:
        raise ValidationError(f"Invalid sale status: {status}", {"status": "invalid value"})

    payment_method = data.get("payment_method") or "cash"
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(
            f"Invalid payment method: {payment_method}", {"payment_method": "invalid value"}
        )

    fields = {
        "id": str(data["id"]),
        "status": status,
        "payment_method": payment_method,
        "cash_amount": optional_decimal(data, "cash_amount"),
        "transfer_amount": optional_decimal(data, "transfer_amount"),
        "observation": data.get("observation"),
        "table_id": optional_int(data, "table_id"),
        "shift_id": str(data["shift_id"]) if data.get("shift_id") else None,
        "pending_receiver_user_id": optional_int(data, "pending_receiver_user_id"),
        "user_id": optional_int(data, "user_id"),
        "customer_id": optional_int(data, "customer_id"),
        "unpaid_authorized_by_id": optional_int(data, "unpaid_authorized_by_id"),
        "print_count": optional_int(data, "print_count") or 0,
        "created_at": optional_datetime(data, "created_at"),
    }

    # A sale belongs to a shift or is in transit, never both
    if fields["shift_id"]:
        fields["pending_receiver_user_id"] = None

    if payment_method == "credit" and status == "completed" and not fields["customer_id"]:
        raise ValidationError("Credit sales require customer_id", {"customer_id": "required"})

    return fields


def parse_item_record(data: dict, position: int = 0) -> dict:
    if not isinstance(data, dict):
        raise ValidationError("sale item must be an object")
    require_fields(data, "product_id", "quantity")

    product_id = optional_int(data, "product_id")
    quantity = to_decimal(data.get("quantity"))
    if quantity is None or quantity <= 0:
        raise ValidationError("quantity must be greater than 0", {"quantity": "must be greater than 0"})

    unit_price = optional_decimal(data, "unit_price")
    if unit_price is not None and unit_price < 0:
        raise ValidationError("unit_price must not be negative", {"unit_price": "must not be negative"})

    preparation_status = data.get("preparation_status") or "pending"
    if preparation_status not in PREPARATION_STATUSES:
        preparation_status = "pending"

    modifiers = data.get("modifiers")
    if modifiers is not None and not isinstance(modifiers, (list, str)):
        raise ValidationError("modifiers must be a list", {"modifiers": "must be a list"})

    return {
        "id": str(data["id"]) if data.get("id") else None,
        "product_id": product_id,
        "product_name": data.get("product_name"),
        "quantity": quantity,
        "unit_price": unit_price,
        "modifiers": modifiers,
        "notes": data.get("notes"),
        "preparation_status": preparation_status,
        "position": position,
    }


# =============================================================================
# RECONCILIATION (caller's transaction)
# =============================================================================

def _recompute_total(sale: Sale) -> None:
    total = sum((item.quantity * item.unit_price for item in sale.items), ZERO)
    sale.total = quantize_money(total)


def _replace_items(sale: Sale, items: list[dict]) -> None:
    sale.items.clear()
    db.session.flush()

    for fields in items:
        product = db.session.get(Product, fields["product_id"])
        unit_price = fields["unit_price"]
        if unit_price is None:
            if product is None:
                raise ValidationError(
                    f"Product {fields['product_id']} not found and no unit_price given",
                    {"unit_price": "required"},
                )
            unit_price = to_decimal(product.price, ZERO)

        item = SaleItem(
            product_id=fields["product_id"],
            product_name=fields["product_name"] or (product.name if product else None),
            quantity=fields["quantity"],
            unit_price=unit_price,
            modifiers=fields["modifiers"],
            notes=fields["notes"],
            preparation_status=fields["preparation_status"],
            position=fields["position"],
        )
        if fields["id"]:
            item.id = fields["id"]
        sale.items.append(item)

    db.session.flush()


def _wipe(sale: Sale) -> None:
    sale.items.clear()
    db.session.flush()
    sale.total = ZERO


def _release_table(sale: Sale) -> None:
    if sale.table_id:
        mark_table(sale.table_id, "free", sale.id)


def _complete(sale: Sale) -> list:
    """Deduct stock, cost the sale, charge credit and free the table."""
    changes = stock_service.validate_and_deduct(sale.items)
    sale.cost_total = quantize_money(stock_service.calculate_sale_cost(sale.items))
    sale.completed_at = sale.completed_at or utcnow()
    credit_service.record_sale_charge(sale)

    emit_sale_complete(sale)
    _release_table(sale)
    return changes


def upsert_sale(data: dict, items: list | None = None) -> SaleOutcome:
    """
    Insert or update one uploaded sale, optionally replacing its items.

    `items` None leaves persisted items alone; a list (even empty) replaces
    them. Raises ValidationError for malformed input and
    stock_service.InsufficientStockError when completing would overdraw
    stock; the caller rolls back.
    """
    fields = parse_sale_record(data)
    parsed_items = None
    if items is not None:
        parsed_items = [parse_item_record(item, position) for position, item in enumerate(items)]

    sale = lock_for_update(db.session.query(Sale).filter_by(id=fields["id"])).first()
    created = sale is None
    previous_status = None if created else sale.status

    if created:
        sale = Sale(id=fields["id"], total=ZERO, created_at=fields["created_at"] or utcnow())
        db.session.add(sale)

    new_status = fields["status"]
    if previous_status in TERMINAL_STATUSES and new_status != previous_status:
        logger.warning(
            "Sale %s is %s; ignoring uploaded status %s", sale.id, previous_status, new_status
        )
        new_status = previous_status

    if previous_status == "cancelled" and parsed_items is not None:
        logger.warning("Sale %s is cancelled; ignoring %d uploaded items", sale.id, len(parsed_items))
        parsed_items = None

    # An unplaced sale may still be given a shift by a later upload
    placed = not created and (sale.shift_id is not None or sale.pending_receiver_user_id is not None)
    if placed and any(fields[key] != getattr(sale, key) for key in PLACEMENT_FIELDS):
        logger.info(
            "Sale %s stays on shift %s (receiver %s); ignoring uploaded placement",
            sale.id, sale.shift_id, sale.pending_receiver_user_id,
        )

    for key, value in fields.items():
        if key in ("id", "status", "created_at"):
            continue
        if placed and key in PLACEMENT_FIELDS:
            continue
        setattr(sale, key, value)
    sale.status = new_status
    sale.is_synced = True

    if parsed_items is not None:
        _replace_items(sale, parsed_items)
    _recompute_total(sale)
    db.session.flush()

    outcome = SaleOutcome(sale=sale, created=created, previous_status=previous_status)

    if new_status == "completed" and previous_status != "completed":
        outcome.stock_changes = _complete(sale)
    elif new_status == "cancelled" and previous_status in (None, "pending"):
        _wipe(sale)
        emit_order_update(sale, items=[])
        _release_table(sale)
        return outcome
    elif new_status != "pending" and previous_status in (None, "pending"):
        _release_table(sale)
    elif created and new_status == "pending" and sale.table_id:
        mark_table(sale.table_id, "occupied", sale.id)

    # Items exist by now, so devices render a non-empty order
    if created or parsed_items is not None:
        emit_order_update(sale)

    return outcome


def replace_sale_items(sale_id: str, items: list) -> Sale:
    """
    Replace the item set of a sale uploaded in an earlier batch.

    Raises SaleError(404) when the sale does not exist.
    """
    parsed_items = [parse_item_record(item, position) for position, item in enumerate(items)]

    sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
    if sale is None:
        raise SaleError(f"Sale {sale_id} not found", 404)
    if sale.status == "cancelled":
        raise SaleError(f"Sale {sale_id} is cancelled", 409)

    _replace_items(sale, parsed_items)
    _recompute_total(sale)
    emit_order_update(sale)
    return sale


# =============================================================================
# STANDALONE OPERATIONS
# =============================================================================

def get_sale(sale_id: str) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if not sale:
        raise SaleError("Sale not found", 404)
    return sale


def save_sale(data: dict, items: list | None) -> SaleOutcome:
    """Upsert one sale in its own transaction (single-sale upload)."""
    def _do():
        begin_write()
        outcome = upsert_sale(data, items)
        db.session.commit()
        return outcome

    return run_with_retry(_do)


def delete_sale_item(sale_id: str, item_id: str) -> Sale:
    def _do():
        begin_write()
        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if not sale:
            raise SaleError("Sale not found", 404)
        if sale.status != "pending":
            raise SaleError(f"Cannot edit a {sale.status} sale")

        item = next((i for i in sale.items if i.id == item_id), None)
        if item is None:
            raise SaleError("Item not found", 404)

        sale.items.remove(item)
        db.session.flush()
        _recompute_total(sale)
        emit_order_update(sale)
        db.session.commit()
        return sale

    return run_with_retry(_do)


def update_item_status(sale_id: str, item_id: str, status: str):
    if status not in PREPARATION_STATUSES:
        raise SaleError(f"status must be one of: {', '.join(PREPARATION_STATUSES)}")

    def _do():
        sale = db.session.get(Sale, sale_id)
        if not sale:
            raise SaleError("Sale not found", 404)
        item = next((i for i in sale.items if i.id == item_id), None)
        if item is None:
            raise SaleError("Item not found", 404)

        item.preparation_status = status
        emit_kitchen_update(sale, item)
        db.session.commit()
        return item

    return run_with_retry(_do)


def cancel_sale(sale_id: str) -> Sale:
    """
    Cancel a pending sale: wipe its items, zero the total, free the table.

    No stock moves; nothing was deducted for a pending sale.
    """
    def _do():
        begin_write()
        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if not sale:
            raise SaleError("Sale not found", 404)
        if sale.status != "pending":
            raise SaleError(f"Only pending sales can be cancelled (sale is {sale.status})")

        _wipe(sale)
        sale.status = "cancelled"
        emit_order_update(sale, items=[])
        _release_table(sale)
        db.session.commit()
        logger.info("Sale %s cancelled", sale.id)
        return sale

    return run_with_retry(_do)


def pending_sales_for_shift(shift_id: str) -> list[Sale]:
    return (
        db.session.query(Sale)
        .filter(Sale.shift_id == shift_id, Sale.status == "pending")
        .order_by(Sale.created_at)
        .all()
    )
