# Overview: Service-layer operations for dining tables; occupancy follows pending sales.

import logging

from ..extensions import db
from ..models import CafeTable, Sale
from .concurrency import run_with_retry
from .realtime_service import emit_table_status

logger = logging.getLogger(__name__)

TABLE_STATUSES = ("free", "occupied")


class TableError(Exception):
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


def list_tables() -> list[CafeTable]:
    return db.session.query(CafeTable).order_by(CafeTable.id).all()


def mark_table(table_id: int | None, status: str, sale_id: str | None = None) -> bool:
    """
    Set occupancy inside the caller's transaction and queue table:status_change.

    Unknown tables are logged and skipped; returns whether a row changed.
    A table stays occupied while another pending sale still sits on it.
    """
    if table_id is None:
        return False

    table = db.session.get(CafeTable, table_id)
    if table is None:
        logger.warning("Table %s not found; occupancy not updated", table_id)
        return False

    if status == "free":
        remaining = db.session.query(Sale.id).filter(Sale.table_id == table_id, Sale.status == "pending")
        if sale_id is not None:
            remaining = remaining.filter(Sale.id != sale_id)
        other = remaining.first()
        if other is not None:
            logger.info("Table %s keeps sale %s; not freed", table_id, other.id)
            return False

    table.status = status
    emit_table_status(table.id, status, sale_id)
    return True


def update_table_status(table_id: int, status: str) -> CafeTable:
    """Manual status change from the floor plan."""
    if status not in TABLE_STATUSES:
        raise TableError(f"status must be one of: {', '.join(TABLE_STATUSES)}")

    def _do():
        table = db.session.get(CafeTable, table_id)
        if table is None:
            raise TableError("Table not found", 404)
        table.status = status
        emit_table_status(table.id, status)
        db.session.commit()
        return table

    return run_with_retry(_do)


def current_order(table_id: int) -> Sale | None:
    """The pending sale occupying the table, newest first."""
    if db.session.get(CafeTable, table_id) is None:
        raise TableError("Table not found", 404)

    return (
        db.session.query(Sale)
        .filter(Sale.table_id == table_id, Sale.status == "pending")
        .order_by(Sale.created_at.desc())
        .first()
    )
