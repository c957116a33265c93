# Overview: Flask API routes for dining tables; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app

from ..decorators import require_auth
from ..extensions import db
from ..services import table_service
from ..services.table_service import TableError


tables_bp = Blueprint("tables", __name__, url_prefix="/api/tables")


@tables_bp.get("")
@tables_bp.get("/")
@require_auth
def list_tables_route():
    return jsonify({"tables": [t.to_dict() for t in table_service.list_tables()]}), 200


@tables_bp.put("/<int:table_id>/status")
@require_auth
def update_table_status_route(table_id):
    """
    Request body: {"status": "free" | "occupied"}
    """
    try:
        data = request.get_json(silent=True) or {}
        table = table_service.update_table_status(table_id, data.get("status"))
        return jsonify({"table": table.to_dict()}), 200
    except TableError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update table %s", table_id)
        return jsonify({"error": "Internal server error"}), 500


@tables_bp.get("/<int:table_id>/current-order")
@require_auth
def current_order_route(table_id):
    try:
        sale = table_service.current_order(table_id)
        return jsonify({"sale": sale.to_dict(include_items=True) if sale else None}), 200
    except TableError as e:
        return jsonify({"error": str(e)}), e.status_code
