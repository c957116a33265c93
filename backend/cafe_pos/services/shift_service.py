# Overview: Service-layer operations for shifts; single-open-shift rule, activation and handover.

"""
Shift Lifecycle & Handover

WHY: Cash accountability. Exactly one register shift is open at a time, and
in-flight orders must survive a change of operator without being lost or
counted twice.

STATES: waiting_initial_cash -> open -> closed (terminal)

DESIGN PRINCIPLES:
- Single open shift: a locking existence check before insert, backed by a
  partial unique index (uq_shifts_single_open). A lost race surfaces as
  ShiftConflictError, never as a second open shift.
- Every handover variant is one transaction: either the new shift exists,
  the old one is closed and the pending sales moved, or nothing changed.
- TRANSIT: sales handed to a user with no shift yet are detached
  (shift_id NULL, pending_receiver_user_id set) and linked automatically
  when that user's shift opens (link_orphan_sales), in the same transaction.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Movement, Sale, Shift, User
from ..models.shifts import SHIFT_STATUSES
from ..money import ZERO, quantize_money, to_decimal
from ..time_utils import utcnow
from ..validation import ValidationError, optional_datetime, optional_decimal, optional_int, require_fields
from .concurrency import begin_write, lock_for_update, run_with_retry
from .realtime_service import (
    emit_sales_handover,
    emit_sales_linked,
    emit_sales_transfer,
    emit_shift_change,
)

logger = logging.getLogger(__name__)


class ShiftError(Exception):
    def __init__(self, message: str, status_code: int = 400, details=None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details


class ShiftConflictError(ShiftError):
    """
    A second open shift would be created.

    `existing_shift` is the open shift the client must adopt. It may be None
    when the conflict was detected by the database constraint; callers look
    it up again after rolling back.
    """

    def __init__(self, existing_shift: Shift | None = None):
        super().__init__("Another shift is already open", 409)
        self.existing_shift = existing_shift


@dataclass
class ShiftOutcome:
    shift: Shift
    created: bool
    linked_sale_ids: list[str] = field(default_factory=list)
    moved_sale_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "shift": self.shift.to_dict(),
            "created": self.created,
            "linked_sale_ids": self.linked_sale_ids,
            "moved_sale_ids": self.moved_sale_ids,
        }


# =============================================================================
# QUERIES
# =============================================================================

def get_shift(shift_id: str) -> Shift:
    shift = db.session.get(Shift, shift_id)
    if not shift:
        raise ShiftError("Shift not found", 404)
    return shift


def get_open_shift() -> Shift | None:
    return db.session.query(Shift).filter_by(status="open").first()


def get_open_shifts(exclude_shift_id: str | None = None) -> list[Shift]:
    query = db.session.query(Shift).filter_by(status="open")
    if exclude_shift_id:
        query = query.filter(Shift.id != exclude_shift_id)
    return query.order_by(Shift.start_time.desc()).all()


def get_active_shift(user_id: int) -> Shift | None:
    """
    The shift a user's device should show.

    The user's own shift awaiting a cash count comes first (they must
    activate it), then the global open shift.
    """
    waiting = (
        db.session.query(Shift)
        .filter_by(opened_by_id=user_id, status="waiting_initial_cash")
        .order_by(Shift.created_at.desc())
        .first()
    )
    if waiting:
        return waiting
    return get_open_shift()


def expected_cash(shift: Shift) -> Decimal:
    """
    Cash that should be in the drawer.

    initial_cash + completed cash sales + cash part of completed mixed sales
    + "abono" and "ingreso" movements - "gasto" movements. Credit and
    transfer sales bring no cash.
    """
    def _sum(column, *criteria):
        value = db.session.query(func.coalesce(func.sum(column), 0)).filter(*criteria).scalar()
        return to_decimal(value, ZERO)

    cash_sales = _sum(Sale.total, Sale.shift_id == shift.id, Sale.status == "completed",
                      Sale.payment_method == "cash")
    mixed_cash = _sum(Sale.cash_amount, Sale.shift_id == shift.id, Sale.status == "completed",
                      Sale.payment_method == "mixed")
    cash_in = _sum(Movement.amount, Movement.shift_id == shift.id, Movement.type.in_(("abono", "ingreso")))
    cash_out = _sum(Movement.amount, Movement.shift_id == shift.id, Movement.type == "gasto")

    initial = to_decimal(shift.initial_cash, ZERO)
    return quantize_money(initial + cash_sales + mixed_cash + cash_in - cash_out)


# =============================================================================
# INVARIANT HELPERS (caller's transaction)
# =============================================================================

def ensure_no_open_shift(exclude_shift_id: str | None = None) -> None:
    query = db.session.query(Shift).filter_by(status="open")
    if exclude_shift_id:
        query = query.filter(Shift.id != exclude_shift_id)
    existing = lock_for_update(query).first()
    if existing:
        raise ShiftConflictError(existing)


def _flush_open_shift() -> None:
    try:
        db.session.flush()
    except IntegrityError as exc:
        logger.warning("Open shift rejected by constraint: %s", exc.orig)
        raise ShiftConflictError() from exc


def link_orphan_sales(user_id: int | None, shift_id: str) -> list[str]:
    """
    Attach every transit sale addressed to `user_id` to `shift_id`.

    Returns the linked sale ids and queues sales:linked when there are any.
    """
    if not user_id:
        return []

    orphans = lock_for_update(
        db.session.query(Sale).filter(
            Sale.shift_id.is_(None),
            Sale.pending_receiver_user_id == user_id,
            Sale.status == "pending",
        )
    ).all()

    for sale in orphans:
        sale.shift_id = shift_id
        sale.pending_receiver_user_id = None

    sale_ids = [sale.id for sale in orphans]
    if sale_ids:
        logger.info("Linked %d transit sale(s) to shift %s for user %s", len(sale_ids), shift_id, user_id)
        emit_sales_linked(shift_id, user_id, sale_ids)
    return sale_ids


def _move_pending_sales(from_shift_id: str, to_shift_id: str) -> list[str]:
    sales = lock_for_update(
        db.session.query(Sale).filter(Sale.shift_id == from_shift_id, Sale.status == "pending")
    ).all()
    for sale in sales:
        sale.shift_id = to_shift_id
        sale.pending_receiver_user_id = None
    return [sale.id for sale in sales]


def _close(shift: Shift, closed_by: User | None, final_cash_reported: Decimal | None) -> None:
    shift.status = "closed"
    shift.end_time = utcnow()
    if closed_by is not None:
        shift.closed_by_id = closed_by.id
        shift.closed_by_name = closed_by.name
    if final_cash_reported is not None:
        shift.final_cash_reported = final_cash_reported
        shift.expected_cash = expected_cash(shift)
        shift.cash_difference = quantize_money(final_cash_reported - shift.expected_cash)
    db.session.flush()


def _require_receiver(receiver_user_id) -> User:
    receiver = db.session.get(User, receiver_user_id) if receiver_user_id else None
    if receiver is None or not receiver.is_active:
        raise ShiftError("Receiver user not found", 404)
    return receiver


def _locked_shift(shift_id: str) -> Shift:
    shift = lock_for_update(db.session.query(Shift).filter_by(id=shift_id)).first()
    if not shift:
        raise ShiftError("Shift not found", 404)
    return shift


# =============================================================================
# SYNC UPSERT (caller's transaction)
# =============================================================================

def parse_shift_record(data: dict) -> dict:
    if not isinstance(data, dict):
        raise ValidationError("shift must be an object")
    require_fields(data, "id")

    status = data.get("status") or "open"
    if status not in SHIFT_STATUSES:
        raise ValidationError(f"Invalid shift status: {status}", {"status": "invalid value"})

    return {
        "id": str(data["id"]),
        "status": status,
        "opened_by_id": optional_int(data, "opened_by_id"),
        "opened_by_name": data.get("opened_by_name"),
        "closed_by_id": optional_int(data, "closed_by_id"),
        "closed_by_name": data.get("closed_by_name"),
        "start_time": optional_datetime(data, "start_time"),
        "end_time": optional_datetime(data, "end_time"),
        "initial_cash": optional_decimal(data, "initial_cash"),
        "final_cash_reported": optional_decimal(data, "final_cash_reported"),
        "cash_difference": optional_decimal(data, "cash_difference"),
    }


def upsert_shift(data: dict) -> ShiftOutcome:
    """
    Insert or update one uploaded shift.

    A shift becoming open (new, or an existing waiting one) must be the only
    open shift; otherwise ShiftConflictError carries the one that is. Closed
    is terminal. Opening links the opener's transit sales.
    """
    fields = parse_shift_record(data)
    shift = lock_for_update(db.session.query(Shift).filter_by(id=fields["id"])).first()
    created = shift is None
    previous_status = None if created else shift.status
    new_status = fields["status"]

    if previous_status == "closed" and new_status != "closed":
        logger.warning("Shift %s is closed; ignoring uploaded status %s", shift.id, new_status)
        new_status = "closed"

    opening = new_status == "open" and previous_status != "open"
    if opening:
        ensure_no_open_shift(exclude_shift_id=fields["id"])

    if created:
        shift = Shift(
            id=fields["id"],
            opened_by_id=fields["opened_by_id"],
            opened_by_name=fields["opened_by_name"],
            start_time=fields["start_time"] or (utcnow() if new_status == "open" else None),
            initial_cash=fields["initial_cash"] if fields["initial_cash"] is not None else ZERO,
        )
        db.session.add(shift)
    else:
        if fields["initial_cash"] is not None and previous_status == "waiting_initial_cash":
            shift.initial_cash = fields["initial_cash"]
        if opening and shift.start_time is None:
            shift.start_time = fields["start_time"] or utcnow()

    for key in ("closed_by_id", "closed_by_name", "end_time", "final_cash_reported", "cash_difference"):
        if fields[key] is not None:
            setattr(shift, key, fields[key])
    shift.status = new_status

    if opening:
        _flush_open_shift()
    else:
        db.session.flush()

    outcome = ShiftOutcome(shift=shift, created=created)
    if opening:
        outcome.linked_sale_ids = link_orphan_sales(shift.opened_by_id, shift.id)

    if created or previous_status != new_status:
        emit_shift_change(shift, "opened" if opening else ("created" if created else "updated"))

    return outcome


# =============================================================================
# LIFECYCLE OPERATIONS
# =============================================================================

def open_shift(user: User, initial_cash, shift_id: str | None = None) -> ShiftOutcome:
    """Open a shift directly for `user` (no cash-count step)."""
    cash = to_decimal(initial_cash)
    if cash is None or cash < 0:
        raise ShiftError("initial_cash must be a non-negative number")

    def _do():
        begin_write()
        ensure_no_open_shift()

        shift = Shift(
            id=shift_id or str(uuid.uuid4()),
            opened_by_id=user.id,
            opened_by_name=user.name,
            start_time=utcnow(),
            initial_cash=quantize_money(cash),
            status="open",
        )
        db.session.add(shift)
        _flush_open_shift()

        linked = link_orphan_sales(user.id, shift.id)
        emit_shift_change(shift, "opened")
        db.session.commit()
        logger.info("Shift %s opened by user %s", shift.id, user.id)
        return ShiftOutcome(shift=shift, created=True, linked_sale_ids=linked)

    return _with_conflict_lookup(_do)


def activate_shift(shift_id: str, user: User, initial_cash) -> ShiftOutcome:
    """
    waiting_initial_cash -> open, by the designated opener only.
    """
    cash = to_decimal(initial_cash)
    if cash is None or cash < 0:
        raise ShiftError("initial_cash must be a non-negative number")

    def _do():
        begin_write()
        shift = _locked_shift(shift_id)
        if shift.status != "waiting_initial_cash":
            raise ShiftError(f"Shift is {shift.status}, not waiting for initial cash")
        if shift.opened_by_id != user.id:
            raise ShiftError("Only the designated user can activate this shift", 403)

        ensure_no_open_shift(exclude_shift_id=shift.id)

        shift.status = "open"
        shift.initial_cash = quantize_money(cash)
        shift.start_time = shift.start_time or utcnow()
        _flush_open_shift()

        linked = link_orphan_sales(shift.opened_by_id, shift.id)
        emit_shift_change(shift, "activated")
        db.session.commit()
        return ShiftOutcome(shift=shift, created=False, linked_sale_ids=linked)

    return _with_conflict_lookup(_do)


def close_shift(shift_id: str, user: User, final_cash_reported) -> Shift:
    """Close an open shift; cash_difference = reported - expected."""
    reported = to_decimal(final_cash_reported)
    if reported is None or reported < 0:
        raise ShiftError("final_cash_reported must be a non-negative number")

    def _do():
        begin_write()
        shift = _locked_shift(shift_id)
        if shift.status != "open":
            raise ShiftError(f"Shift is {shift.status}, not open")

        pending = db.session.query(Sale.id).filter_by(shift_id=shift.id, status="pending").count()
        if pending:
            logger.warning("Closing shift %s with %d pending sale(s)", shift.id, pending)

        _close(shift, user, quantize_money(reported))
        emit_shift_change(shift, "closed")
        db.session.commit()
        return shift

    return run_with_retry(_do)


def handover_pending_sales(sale_ids: list[str], target_shift_id: str) -> list[str]:
    """
    Move named pending sales to an already-open shift.

    All or nothing: an unknown or non-pending sale rejects the whole request.
    """
    if not sale_ids:
        raise ShiftError("sale_ids must not be empty")

    def _do():
        begin_write()
        target = _locked_shift(target_shift_id)
        if target.status != "open":
            raise ShiftError("Target shift is not open", 409)

        sales = lock_for_update(db.session.query(Sale).filter(Sale.id.in_(sale_ids))).all()
        found = {sale.id: sale for sale in sales}
        missing = [sale_id for sale_id in sale_ids if sale_id not in found]
        if missing:
            raise ShiftError("Sales not found", 404, {"sale_ids": missing})
        not_pending = [sale.id for sale in sales if sale.status != "pending"]
        if not_pending:
            raise ShiftError("Only pending sales can be handed over", 409, {"sale_ids": not_pending})

        by_origin: dict = {}
        for sale in sales:
            by_origin.setdefault(sale.shift_id, []).append(sale.id)
            sale.shift_id = target.id
            sale.pending_receiver_user_id = None

        for from_shift_id, moved in by_origin.items():
            emit_sales_handover(from_shift_id, target.id, moved)
        db.session.commit()
        return [sale.id for sale in sales]

    return run_with_retry(_do)


def handover_and_close(current_shift_id: str, receiver_user_id: int, initial_cash,
                       closed_by: User, final_cash_reported=None) -> ShiftOutcome:
    """
    Close the current shift and open one for the receiver, moving every
    pending sale across, in one transaction.
    """
    cash = to_decimal(initial_cash)
    if cash is None or cash < 0:
        raise ShiftError("initial_cash must be a non-negative number")
    reported = to_decimal(final_cash_reported)

    def _do():
        begin_write()
        current = _locked_shift(current_shift_id)
        if current.status != "open":
            raise ShiftError("Current shift is not open", 409)
        receiver = _require_receiver(receiver_user_id)

        # Close first so the new shift is the only open one
        _close(current, closed_by, quantize_money(reported) if reported is not None else None)

        successor = Shift(
            id=str(uuid.uuid4()),
            opened_by_id=receiver.id,
            opened_by_name=receiver.name,
            start_time=utcnow(),
            initial_cash=quantize_money(cash),
            status="open",
        )
        db.session.add(successor)
        _flush_open_shift()

        moved = _move_pending_sales(current.id, successor.id)
        linked = link_orphan_sales(receiver.id, successor.id)

        emit_shift_change(current, "closed")
        emit_shift_change(successor, "opened")
        if moved:
            emit_sales_handover(current.id, successor.id, moved)
        db.session.commit()
        logger.info("Shift %s handed over to %s as %s (%d sales)", current.id, receiver.id, successor.id, len(moved))
        return ShiftOutcome(shift=successor, created=True, linked_sale_ids=linked, moved_sale_ids=moved)

    return _with_conflict_lookup(_do)


def atomic_shift_handover(current_shift_id: str, receiver_user_id: int, final_cash_reported,
                          closed_by: User) -> ShiftOutcome:
    """
    Close the current shift with its cash count and create the receiver's
    shift in waiting_initial_cash, moving pending sales to it.

    The receiver activates it later with their own cash count.
    """
    reported = to_decimal(final_cash_reported)
    if reported is None or reported < 0:
        raise ShiftError("final_cash_reported must be a non-negative number")

    def _do():
        begin_write()
        current = _locked_shift(current_shift_id)
        if current.status != "open":
            raise ShiftError("Current shift is not open", 409)
        receiver = _require_receiver(receiver_user_id)

        _close(current, closed_by, quantize_money(reported))

        successor = Shift(
            id=str(uuid.uuid4()),
            opened_by_id=receiver.id,
            opened_by_name=receiver.name,
            initial_cash=ZERO,
            status="waiting_initial_cash",
        )
        db.session.add(successor)
        db.session.flush()

        moved = _move_pending_sales(current.id, successor.id)

        emit_shift_change(current, "closed")
        emit_shift_change(successor, "created")
        if moved:
            emit_sales_handover(current.id, successor.id, moved)
        db.session.commit()
        return ShiftOutcome(shift=successor, created=True, moved_sale_ids=moved)

    return run_with_retry(_do)


def transfer_tables_to_user(receiver_user_id: int, sale_ids: list[str] | None = None,
                            table_ids: list[int] | None = None) -> list[str]:
    """
    Hand pending sales to a user who has no shift yet (transit).

    Sales are named directly or by the tables they occupy. If the receiver
    already runs the open shift, the sales are linked to it immediately.
    """
    if not sale_ids and not table_ids:
        raise ShiftError("sale_ids or table_ids required")

    def _do():
        begin_write()
        receiver = _require_receiver(receiver_user_id)

        query = db.session.query(Sale)
        if sale_ids:
            query = query.filter(Sale.id.in_(sale_ids))
        else:
            query = query.filter(Sale.table_id.in_(table_ids), Sale.status == "pending")
        sales = lock_for_update(query).all()

        if sale_ids:
            missing = sorted(set(sale_ids) - {sale.id for sale in sales})
            if missing:
                raise ShiftError("Sales not found", 404, {"sale_ids": missing})
        if not sales:
            raise ShiftError("No pending sales to transfer", 404)
        not_pending = [sale.id for sale in sales if sale.status != "pending"]
        if not_pending:
            raise ShiftError("Only pending sales can be transferred", 409, {"sale_ids": not_pending})

        open_shift_row = get_open_shift()
        moved = [sale.id for sale in sales]
        from_shift_ids = {sale.shift_id for sale in sales}

        if open_shift_row is not None and open_shift_row.opened_by_id == receiver.id:
            for sale in sales:
                sale.shift_id = open_shift_row.id
                sale.pending_receiver_user_id = None
            emit_sales_linked(open_shift_row.id, receiver.id, moved)
        else:
            for sale in sales:
                sale.shift_id = None
                sale.pending_receiver_user_id = receiver.id
            from_shift = from_shift_ids.pop() if len(from_shift_ids) == 1 else None
            emit_sales_transfer(moved, receiver.id, from_shift)

        db.session.commit()
        return moved

    return run_with_retry(_do)


def _with_conflict_lookup(func):
    """run_with_retry, filling in the existing open shift on a constraint conflict."""
    try:
        return run_with_retry(func)
    except ShiftConflictError as exc:
        if exc.existing_shift is None:
            exc.existing_shift = get_open_shift()
        raise
