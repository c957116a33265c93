# Overview: Flask API routes for shift operations; parses input and returns JSON responses.

"""
Shift API Routes

Lifecycle: waiting_initial_cash -> open -> closed. One shift is open at a
time; handovers move pending orders between operators atomically.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth
from ..extensions import db
from ..money import as_number
from ..services import shift_service
from ..services.shift_service import ShiftConflictError, ShiftError


shifts_bp = Blueprint("shifts", __name__, url_prefix="/api/shifts")


def _shift_error(e: ShiftError):
    if isinstance(e, ShiftConflictError):
        existing = e.existing_shift
        return jsonify({
            "error": str(e),
            "existing_shift": existing.to_dict() if existing else None,
        }), 409
    body = {"error": str(e)}
    if e.details:
        body["details"] = e.details
    return jsonify(body), e.status_code


def _internal_error(message: str):
    db.session.rollback()
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# QUERIES
# =============================================================================

@shifts_bp.get("/active")
@require_auth
def active_shift_route():
    shift = shift_service.get_active_shift(g.current_user.id)
    return jsonify({"shift": shift.to_dict() if shift else None}), 200


@shifts_bp.get("/open")
@require_auth
def open_shifts_route():
    shifts = shift_service.get_open_shifts(request.args.get("exclude_shift_id"))
    return jsonify({"shifts": [s.to_dict() for s in shifts]}), 200


@shifts_bp.get("/<shift_id>")
@require_auth
def get_shift_route(shift_id):
    try:
        shift = shift_service.get_shift(shift_id)
        data = shift.to_dict()
        data["expected_cash_now"] = as_number(shift_service.expected_cash(shift))
        return jsonify({"shift": data}), 200
    except ShiftError as e:
        return _shift_error(e)


# =============================================================================
# LIFECYCLE
# =============================================================================

@shifts_bp.post("")
@shifts_bp.post("/")
@require_auth
def open_shift_route():
    """
    Open a shift for the caller.

    Request body: {"initial_cash": 50000, "id": "optional-client-id"}
    """
    try:
        data = request.get_json(silent=True) or {}
        outcome = shift_service.open_shift(g.current_user, data.get("initial_cash"), data.get("id"))
        return jsonify(outcome.to_dict()), 201
    except ShiftError as e:
        return _shift_error(e)
    except Exception:
        return _internal_error("Failed to open shift")


@shifts_bp.patch("/<shift_id>/activate")
@require_auth
def activate_shift_route(shift_id):
    """
    Activate a waiting shift with the counted starting cash.

    Request body: {"initial_cash": 50000}
    """
    try:
        data = request.get_json(silent=True) or {}
        if data.get("initial_cash") is None:
            return jsonify({"error": "initial_cash is required"}), 400
        outcome = shift_service.activate_shift(shift_id, g.current_user, data["initial_cash"])
        return jsonify(outcome.to_dict()), 200
    except ShiftError as e:
        return _shift_error(e)
    except Exception:
        return _internal_error("Failed to activate shift")


@shifts_bp.post("/<shift_id>/close")
@require_auth
def close_shift_route(shift_id):
    """
    Request body: {"final_cash_reported": 182500}
    """
    try:
        data = request.get_json(silent=True) or {}
        shift = shift_service.close_shift(shift_id, g.current_user, data.get("final_cash_reported"))
        return jsonify({"shift": shift.to_dict()}), 200
    except ShiftError as e:
        return _shift_error(e)
    except Exception:
        return _internal_error("Failed to close shift")


# =============================================================================
# HANDOVER
# =============================================================================

@shifts_bp.patch("/handover")
@require_auth
def handover_route():
    """
    Move pending sales to an open shift.

    Request body: {"sale_ids": ["..."], "target_shift_id": "..."}
    """
    try:
        data = request.get_json(silent=True) or {}
        if not data.get("target_shift_id"):
            return jsonify({"error": "target_shift_id is required"}), 400
        moved = shift_service.handover_pending_sales(data.get("sale_ids") or [], data["target_shift_id"])
        return jsonify({"sale_ids": moved, "target_shift_id": data["target_shift_id"]}), 200
    except ShiftError as e:
        return _shift_error(e)
    except Exception:
        return _internal_error("Failed to hand over sales")


@shifts_bp.post("/<shift_id>/handover-and-close")
@require_auth
def handover_and_close_route(shift_id):
    """
    Close this shift and open one for the receiver with its pending sales.

    Request body: {"receiver_user_id": 7, "initial_cash": 50000, "final_cash_reported": 182500}
    """
    try:
        data = request.get_json(silent=True) or {}
        outcome = shift_service.handover_and_close(
            shift_id,
            data.get("receiver_user_id"),
            data.get("initial_cash"),
            closed_by=g.current_user,
            final_cash_reported=data.get("final_cash_reported"),
        )
        return jsonify(outcome.to_dict()), 200
    except ShiftError as e:
        return _shift_error(e)
    except Exception:
        return _internal_error("Failed to hand over shift")


@shifts_bp.post("/<shift_id>/atomic-handover")
@require_auth
def atomic_handover_route(shift_id):
    """
    Close this shift with its cash count; the receiver's shift waits for theirs.

    Request body: {"receiver_user_id": 7, "final_cash_reported": 182500}
    """
    try:
        data = request.get_json(silent=True) or {}
        outcome = shift_service.atomic_shift_handover(
            shift_id,
            data.get("receiver_user_id"),
            data.get("final_cash_reported"),
            closed_by=g.current_user,
        )
        return jsonify(outcome.to_dict()), 200
    except ShiftError as e:
        return _shift_error(e)
    except Exception:
        return _internal_error("Failed to hand over shift")


@shifts_bp.post("/transfer-tables")
@require_auth
def transfer_tables_route():
    """
    Hand pending orders to a user who has no shift yet.

    Request body: {"receiver_user_id": 7, "sale_ids": [...]} or {"receiver_user_id": 7, "table_ids": [...]}
    """
    try:
        data = request.get_json(silent=True) or {}
        moved = shift_service.transfer_tables_to_user(
            data.get("receiver_user_id"),
            sale_ids=data.get("sale_ids"),
            table_ids=data.get("table_ids"),
        )
        return jsonify({"sale_ids": moved, "receiver_user_id": data.get("receiver_user_id")}), 200
    except ShiftError as e:
        return _shift_error(e)
    except Exception:
        return _internal_error("Failed to transfer tables")
