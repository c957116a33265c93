# Overview: Service-layer operations for customer credit; FIFO payment allocation and charges.

"""
Credit Ledger

WHY: Regulars run a tab. Every charge is settled oldest first so the
statement a customer sees always matches which purchases are still open.

INVARIANTS (per customer):
- current_debt == sum(charge amounts) - sum(payment amounts)
- while no overpayment exists, sum(charge.remaining) == current_debt
- a payment row settles exactly one charge (related_charge_id); an
  overpayment is one extra payment row with no related charge

CONCURRENCY: register_payment() locks the customer row before reading
charges so two cashiers cannot allocate the same remaining balance twice.
Overpayment is accepted; current_debt goes negative (credit in favor).
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import func

from ..extensions import db
from ..models import Customer, CreditTransaction, Movement, Shift
from ..models.credit import CHARGE_TYPES
from ..money import ZERO, as_number, quantize_money, to_decimal
from .concurrency import begin_write, lock_for_update, run_with_retry
from .realtime_service import (
    emit_credit_customer_update,
    emit_credit_payment,
    emit_movement_create,
)

logger = logging.getLogger(__name__)


class CreditError(Exception):
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class PaymentResult:
    customer: Customer
    movement: Movement
    payments: list[CreditTransaction]
    unallocated: Decimal

    def to_dict(self) -> dict:
        return {
            "customer": self.customer.to_dict(),
            "movement": self.movement.to_dict(),
            "payments": [p.to_dict() for p in self.payments],
            "unallocated": as_number(self.unallocated),
        }


def _positive_amount(amount) -> Decimal:
    value = to_decimal(amount)
    if value is None or value <= 0:
        raise CreditError("amount must be greater than 0")
    return quantize_money(value)


def _locked_customer(customer_id: int) -> Customer:
    customer = lock_for_update(db.session.query(Customer).filter_by(id=customer_id)).first()
    if not customer:
        raise CreditError("Customer not found", 404)
    return customer


# =============================================================================
# CUSTOMERS
# =============================================================================

CUSTOMER_FIELDS = ("name", "phone", "document_id", "notes", "credit_limit", "is_active")


def list_customers(search: str | None = None, only_debtors: bool = False) -> list[Customer]:
    query = db.session.query(Customer).filter(Customer.is_active.is_(True))
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(
            (Customer.name.ilike(like)) | (Customer.phone.ilike(like)) | (Customer.document_id.ilike(like))
        )
    if only_debtors:
        query = query.filter(Customer.current_debt > 0)
    return query.order_by(Customer.name).all()


def get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if not customer:
        raise CreditError("Customer not found", 404)
    return customer


def customer_transactions(customer_id: int) -> list[CreditTransaction]:
    return (
        db.session.query(CreditTransaction)
        .filter_by(customer_id=customer_id)
        .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
        .all()
    )


def _apply_customer_fields(customer: Customer, data: dict) -> None:
    for key in CUSTOMER_FIELDS:
        if key not in data:
            continue
        value = data[key]
        if key == "credit_limit":
            if value is not None and to_decimal(value) is None:
                raise CreditError("credit_limit must be a number")
            value = to_decimal(value)
        elif key == "is_active":
            value = bool(value)
        elif isinstance(value, str):
            value = value.strip() or None
        setattr(customer, key, value)
    if not customer.name:
        raise CreditError("name is required")


def create_customer(data: dict) -> Customer:
    customer = Customer(current_debt=ZERO)
    _apply_customer_fields(customer, data)
    db.session.add(customer)
    db.session.commit()
    return customer


def update_customer(customer_id: int, data: dict) -> Customer:
    def _do():
        customer = get_customer(customer_id)
        _apply_customer_fields(customer, data)
        emit_credit_customer_update(customer)
        db.session.commit()
        return customer

    return run_with_retry(_do)


# =============================================================================
# LEDGER
# =============================================================================

def create_opening_balance(customer_id: int, amount, description: str | None = None,
                           created_by_id: int | None = None) -> CreditTransaction:
    """Record debt carried over from before the system; it is settled like any charge."""
    value = _positive_amount(amount)

    def _do():
        begin_write()
        customer = _locked_customer(customer_id)

        txn = CreditTransaction(
            customer_id=customer.id,
            type="opening_balance",
            amount=value,
            remaining=value,
            description=description or "Opening balance",
            created_by_id=created_by_id,
        )
        db.session.add(txn)
        customer.current_debt = to_decimal(customer.current_debt, ZERO) + value

        emit_credit_customer_update(customer)
        db.session.commit()
        logger.info("Opening balance %s for customer %s", value, customer.id)
        return txn

    return run_with_retry(_do)


def record_sale_charge(sale) -> CreditTransaction | None:
    """
    Charge a completed credit sale to its customer, in the caller's transaction.
    """
    if sale.payment_method != "credit" or not sale.customer_id:
        return None

    customer = _locked_customer(sale.customer_id)
    amount = quantize_money(to_decimal(sale.total, ZERO))

    txn = CreditTransaction(
        customer_id=customer.id,
        type="charge",
        amount=amount,
        remaining=amount,
        description=f"Sale {sale.id}",
        sale_id=sale.id,
        shift_id=sale.shift_id,
        created_by_id=sale.user_id,
    )
    db.session.add(txn)
    customer.current_debt = to_decimal(customer.current_debt, ZERO) + amount
    emit_credit_customer_update(customer)
    return txn


def register_payment(customer_id: int, amount, shift_id: str, created_by_id: int | None = None,
                     description: str | None = None) -> PaymentResult:
    """
    Apply a customer payment to outstanding charges, oldest first.

    Creates one "abono" cash movement in the shift and one payment row per
    charge touched. Whatever exceeds the outstanding charges stays
    unallocated and drives current_debt below zero.
    """
    value = _positive_amount(amount)
    if not shift_id:
        raise CreditError("shift_id is required")

    def _do():
        begin_write()
        customer = _locked_customer(customer_id)
        if db.session.get(Shift, shift_id) is None:
            raise CreditError("Shift not found", 404)

        charges = (
            db.session.query(CreditTransaction)
            .filter(
                CreditTransaction.customer_id == customer.id,
                CreditTransaction.type.in_(CHARGE_TYPES),
                CreditTransaction.remaining > 0,
            )
            .order_by(CreditTransaction.created_at.asc(), CreditTransaction.id.asc())
            .all()
        )

        movement = Movement(
            id=str(uuid.uuid4()),
            type="abono",
            amount=value,
            description=description or f"Credit payment - {customer.name}",
            shift_id=shift_id,
            user_id=created_by_id,
        )
        db.session.add(movement)

        left = value
        payments = []
        allocations = []
        for charge in charges:
            if left <= 0:
                break
            portion = min(left, to_decimal(charge.remaining, ZERO))
            charge.remaining = to_decimal(charge.remaining, ZERO) - portion
            left -= portion

            payment = CreditTransaction(
                customer_id=customer.id,
                type="payment",
                amount=portion,
                related_charge_id=charge.id,
                movement_id=movement.id,
                shift_id=shift_id,
                created_by_id=created_by_id,
                description=description,
            )
            db.session.add(payment)
            payments.append(payment)
            allocations.append({"chargeId": charge.id, "amount": as_number(portion)})

        if left > 0:
            # Credit in favor
            payment = CreditTransaction(
                customer_id=customer.id,
                type="payment",
                amount=left,
                movement_id=movement.id,
                shift_id=shift_id,
                created_by_id=created_by_id,
                description=description or "Unallocated payment",
            )
            db.session.add(payment)
            payments.append(payment)

        customer.current_debt = to_decimal(customer.current_debt, ZERO) - value

        emit_movement_create(movement)
        emit_credit_payment(customer, value, movement.id, allocations)
        emit_credit_customer_update(customer)
        db.session.commit()

        if left > 0:
            logger.info("Customer %s overpaid by %s", customer.id, left)
        return PaymentResult(customer=customer, movement=movement, payments=payments, unallocated=left)

    return run_with_retry(_do)


def portfolio_summary() -> dict:
    """Receivables overview: totals plus the ten largest debtors."""
    active = db.session.query(Customer).filter(Customer.is_active.is_(True))
    total_debt = (
        db.session.query(func.coalesce(func.sum(Customer.current_debt), 0))
        .filter(Customer.is_active.is_(True), Customer.current_debt > 0)
        .scalar()
    )
    top = active.filter(Customer.current_debt > 0).order_by(Customer.current_debt.desc()).limit(10).all()

    return {
        "customer_count": active.count(),
        "debtor_count": active.filter(Customer.current_debt > 0).count(),
        "total_debt": as_number(to_decimal(total_debt, ZERO)),
        "top_debtors": [c.to_dict() for c in top],
    }
