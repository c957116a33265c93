# Overview: Flask API routes for device synchronization; parses input and returns JSON responses.

"""
Synchronization API Routes

WHY: Devices upload what they did offline. Uploads are idempotent, so a
device simply re-sends anything that was not acknowledged.

RESPONSES:
- 200 with per-entity {synced, errors} even when some records failed
- 400 on a malformed envelope or when a completed sale would overdraw stock
- 409 when the upload would open a second shift; the body carries the
  shift that is open
"""

from flask import Blueprint, request, jsonify, current_app

from ..decorators import require_auth, device_id
from ..extensions import db
from ..models import User
from ..services import sync_service
from ..services.shift_service import ShiftConflictError
from ..services.stock_service import InsufficientStockError
from ..validation import ValidationError


sync_bp = Blueprint("sync", __name__, url_prefix="/api/sync")


def _refusal(e: Exception):
    if isinstance(e, ValidationError):
        return jsonify({"error": str(e), "details": e.fields}), 400
    if isinstance(e, InsufficientStockError):
        return jsonify({
            "error": "Insufficient stock",
            "message": str(e),
            "details": e.shortfalls,
        }), 400
    if isinstance(e, ShiftConflictError):
        existing = e.existing_shift
        return jsonify({
            "error": str(e),
            "existing_shift": existing.to_dict() if existing else None,
        }), 409
    raise e


def _run_batch(sync_type: str, include: tuple):
    try:
        result = sync_service.sync_batch(
            request.get_json(silent=True),
            device_id=device_id(),
            sync_type=sync_type,
            include=include,
        )
        return jsonify({
            "success": True,
            "status": result.status,
            "message": "Sync completed",
            "data": result.to_dict(),
        }), 200

    except (ValidationError, InsufficientStockError, ShiftConflictError) as e:
        return _refusal(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Sync %s from device %s failed", sync_type, device_id())
        return jsonify({"error": "Internal server error"}), 500


@sync_bp.post("")
@sync_bp.post("/")
@require_auth
def sync_route():
    """
    Full device upload.

    Request body:
    {
        "shifts": [...], "sales": [...], "sale_items": [...], "movements": [...]
    }
    Any subset may be empty or absent.
    """
    return _run_batch("upload", ("shifts", "sales", "sale_items", "movements"))


@sync_bp.post("/sales")
@require_auth
def sync_sales_route():
    return _run_batch("sales", ("sales", "sale_items"))


@sync_bp.post("/movements")
@require_auth
def sync_movements_route():
    return _run_batch("movements", ("movements",))


@sync_bp.post("/sale")
@require_auth
def sync_single_sale_route():
    """
    One sale with its items, stock-validated.

    Request body: a sale record with an "items" list.
    """
    try:
        outcome = sync_service.sync_single_sale(request.get_json(silent=True), device_id=device_id())
        return jsonify({
            "success": True,
            "created": outcome.created,
            "sale": outcome.sale.to_dict(include_items=True),
        }), 201 if outcome.created else 200

    except (ValidationError, InsufficientStockError) as e:
        return _refusal(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Single sale sync failed")
        return jsonify({"error": "Internal server error"}), 500


@sync_bp.get("/status")
@require_auth
def sync_status_route():
    return jsonify(sync_service.get_sync_status(device_id())), 200


@sync_bp.get("/users")
@require_auth
def sync_users_route():
    """Active staff for offline PIN login on the device."""
    users = db.session.query(User).filter(User.is_active.is_(True)).order_by(User.name).all()
    return jsonify({
        "success": True,
        "data": [u.to_device_dict() for u in users],
        "count": len(users),
    }), 200
