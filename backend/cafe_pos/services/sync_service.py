# Overview: Service-layer operations for device synchronization; batch reconciliation and sync log.

"""
Device Synchronization

WHY: Point-of-sale devices keep working offline and upload what they did
when the connection returns, possibly several times and in any order.

DESIGN PRINCIPLES:
- One transaction per upload, one savepoint per record. A bad record is
  reported in the results and rolled back alone; the rest of the batch
  still commits.
- Order within a batch: shifts, then sales each with its items, then item
  sets for sales uploaded earlier, then movements.
- Two failures are systemic and abort the whole upload with zero effect:
  completing a sale that would overdraw stock (InsufficientStockError) and
  opening a second shift (ShiftConflictError).
- Every upload writes a SyncLog row: success, partial or failed.
- The device id is for the log only; it never authorizes anything.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import Movement, Sale, Shift, SyncLog
from ..time_utils import server_timestamp, to_utc_z
from ..validation import ValidationError, require_list, require_object
from . import movement_service, sales_service, shift_service, stock_service
from .concurrency import begin_write, run_with_retry, savepoint
from .realtime_service import emit_shift_change
from .shift_service import ShiftConflictError
from .stock_service import InsufficientStockError

logger = logging.getLogger(__name__)

# Systemic failures abort the batch; concurrency failures go back to run_with_retry
ABORTING_ERRORS = (InsufficientStockError, ShiftConflictError, OperationalError, StaleDataError)


@dataclass
class EntityResult:
    synced: int = 0
    errors: list = field(default_factory=list)

    def fail(self, record_id, error) -> None:
        self.errors.append({"id": record_id, "error": str(error)})

    def to_dict(self) -> dict:
        return {"synced": self.synced, "errors": self.errors}


@dataclass
class InventoryResult:
    processed: int = 0
    errors: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"processed": self.processed, "errors": self.errors}


@dataclass
class SyncResult:
    shifts: EntityResult = field(default_factory=EntityResult)
    sales: EntityResult = field(default_factory=EntityResult)
    sale_items: EntityResult = field(default_factory=EntityResult)
    movements: EntityResult = field(default_factory=EntityResult)
    inventory: InventoryResult = field(default_factory=InventoryResult)

    def _entities(self):
        return (self.shifts, self.sales, self.sale_items, self.movements)

    @property
    def synced_count(self) -> int:
        return sum(entity.synced for entity in self._entities())

    @property
    def error_count(self) -> int:
        return sum(len(entity.errors) for entity in self._entities())

    @property
    def status(self) -> str:
        if not self.error_count:
            return "success"
        return "partial" if self.synced_count else "failed"

    def errors_by_entity(self) -> dict:
        return {
            name: entity.errors
            for name, entity in zip(("shifts", "sales", "sale_items", "movements"), self._entities())
            if entity.errors
        }

    def to_dict(self) -> dict:
        return {
            "shifts": self.shifts.to_dict(),
            "sales": self.sales.to_dict(),
            "sale_items": self.sale_items.to_dict(),
            "movements": self.movements.to_dict(),
            "inventory": self.inventory.to_dict(),
        }


# =============================================================================
# HELPERS
# =============================================================================

def _record_id(record):
    return record.get("id") if isinstance(record, dict) else None


def _isolated(func):
    """Run func in a savepoint; returns (result, error) for non-systemic failures."""
    try:
        with savepoint():
            return func(), None
    except ABORTING_ERRORS:
        raise
    except Exception as exc:
        return None, exc


def _group_items(items: list) -> "OrderedDict[str, list]":
    grouped: OrderedDict = OrderedDict()
    for item in items:
        sale_id = item.get("sale_id") if isinstance(item, dict) else None
        grouped.setdefault(str(sale_id) if sale_id is not None else None, []).append(item)
    return grouped


def _check_batch_size(collections: dict) -> None:
    limit = current_app.config.get("SYNC_MAX_BATCH", 500)
    too_large = {name: f"at most {limit} records" for name, records in collections.items() if len(records) > limit}
    if too_large:
        raise ValidationError("Sync batch too large", too_large)


def _write_log(device_id, sync_type, records_count, status, errors) -> None:
    db.session.add(SyncLog(
        device_id=device_id,
        sync_type=sync_type,
        records_count=records_count,
        status=status,
        error_message=errors or None,
    ))


def _log_failure(device_id, sync_type, records_count, error: dict, existing_shift=None) -> None:
    """Record an aborted upload in its own transaction (the batch was rolled back)."""
    def _do():
        _write_log(device_id, sync_type, records_count, "failed", error)
        if existing_shift is not None:
            emit_shift_change(existing_shift, "existing")
        db.session.commit()

    run_with_retry(_do)


# =============================================================================
# BATCH SYNC
# =============================================================================

def _apply_batch(collections: dict, result: SyncResult) -> None:
    for record in collections.get("shifts", []):
        _, error = _isolated(lambda: shift_service.upsert_shift(record))
        if error:
            logger.warning("Shift %s failed to sync: %s", _record_id(record), error)
            result.shifts.fail(_record_id(record), error)
        else:
            result.shifts.synced += 1

    items_by_sale = _group_items(collections.get("sale_items", []))

    for record in collections.get("sales", []):
        sale_id = _record_id(record)
        items = items_by_sale.pop(str(sale_id), None) if sale_id is not None else None
        outcome, error = _isolated(lambda: sales_service.upsert_sale(record, items))
        if error:
            logger.warning("Sale %s failed to sync: %s", sale_id, error)
            result.sales.fail(sale_id, error)
            for item in items or []:
                result.sale_items.fail(_record_id(item), f"Sale {sale_id} failed: {error}")
            continue

        result.sales.synced += 1
        result.sale_items.synced += len(items or [])
        if outcome.deducted:
            result.inventory.processed += 1

    for sale_id, items in items_by_sale.items():
        if sale_id is None:
            for item in items:
                result.sale_items.fail(_record_id(item), "sale_id is required")
            continue
        _, error = _isolated(lambda: sales_service.replace_sale_items(sale_id, items))
        if error:
            logger.warning("Items for sale %s failed to sync: %s", sale_id, error)
            for item in items:
                result.sale_items.fail(_record_id(item), error)
        else:
            result.sale_items.synced += len(items)

    for record in collections.get("movements", []):
        _, error = _isolated(lambda: movement_service.upsert_movement(record))
        if error:
            logger.warning("Movement %s failed to sync: %s", _record_id(record), error)
            result.movements.fail(_record_id(record), error)
        else:
            result.movements.synced += 1


def sync_batch(payload, device_id: str | None = None, sync_type: str = "upload",
               include=("shifts", "sales", "sale_items", "movements")) -> SyncResult:
    """
    Apply a device upload.

    Returns the per-entity results. Raises ValidationError for a malformed
    envelope, InsufficientStockError or ShiftConflictError (with the open
    shift filled in) when the upload must be refused as a whole.
    """
    payload = require_object(payload)
    collections = {name: require_list(payload, name) for name in include}
    _check_batch_size(collections)
    records_count = sum(len(records) for records in collections.values())

    def _do():
        result = SyncResult()
        begin_write()
        _apply_batch(collections, result)
        _write_log(device_id, sync_type, records_count, result.status, result.errors_by_entity())
        db.session.commit()
        return result

    try:
        result = run_with_retry(_do)
    except InsufficientStockError as exc:
        logger.warning("Sync from %s refused: %s", device_id, exc)
        _log_failure(device_id, sync_type, records_count, {"stock": exc.shortfalls})
        raise
    except ShiftConflictError as exc:
        if exc.existing_shift is None:
            exc.existing_shift = shift_service.get_open_shift()
        logger.warning("Sync from %s refused: shift %s already open", device_id,
                       exc.existing_shift.id if exc.existing_shift else None)
        _log_failure(device_id, sync_type, records_count, {"shift": str(exc)}, exc.existing_shift)
        raise

    logger.info(
        "Sync %s from device %s: %d synced, %d errors, %d sale(s) deducted",
        sync_type, device_id, result.synced_count, result.error_count, result.inventory.processed,
    )
    return result


def sync_single_sale(payload, device_id: str | None = None) -> sales_service.SaleOutcome:
    """
    Upload one sale with its items, stock-validated.

    The sale's items ride in payload["items"]. A shortfall raises
    InsufficientStockError and nothing is written.
    """
    payload = require_object(payload)
    items = payload.get("items")
    if items is not None and not isinstance(items, list):
        raise ValidationError("items must be a list", {"items": "must be a list"})

    if payload.get("status") == "completed" and items:
        existing = db.session.get(Sale, str(payload.get("id")))
        if existing is None or existing.status != "completed":
            # Pre-check only; save_sale re-validates under lock
            check = stock_service.validate_stock_for_items(items)
            if not check.is_valid:
                _log_failure(device_id, "single_sale", 1, {"stock": check.errors})
                raise InsufficientStockError(check.errors)

    try:
        outcome = sales_service.save_sale(payload, items)
    except InsufficientStockError as exc:
        _log_failure(device_id, "single_sale", 1, {"stock": exc.shortfalls})
        raise

    def _log_success():
        _write_log(device_id, "single_sale", 1, "success", None)
        db.session.commit()

    run_with_retry(_log_success)
    return outcome


def get_sync_status(device_id: str | None) -> dict:
    query = db.session.query(SyncLog).filter(SyncLog.status.in_(("success", "partial")))
    if device_id:
        query = query.filter(SyncLog.device_id == device_id)
    last = query.order_by(SyncLog.created_at.desc(), SyncLog.id.desc()).first()

    return {
        "device_id": device_id,
        "last_sync": to_utc_z(last.created_at) if last else None,
        "last_status": last.status if last else None,
        "server_time": server_timestamp(),
        "counts": {
            "sales": db.session.query(Sale).filter(Sale.is_synced.is_(True)).count(),
            "shifts": db.session.query(Shift).count(),
            "movements": db.session.query(Movement).count(),
        },
    }
