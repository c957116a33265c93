# Overview: Flask API routes for sale operations; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app

from ..decorators import require_auth
from ..extensions import db
from ..services import sales_service
from ..services.sales_service import SaleError


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _sale_error(e: SaleError):
    body = {"error": str(e)}
    if e.details:
        body["details"] = e.details
    return jsonify(body), e.status_code


@sales_bp.get("/<sale_id>")
@require_auth
def get_sale_route(sale_id):
    try:
        sale = sales_service.get_sale(sale_id)
        return jsonify({"sale": sale.to_dict(include_items=True)}), 200
    except SaleError as e:
        return _sale_error(e)


@sales_bp.delete("/<sale_id>/items/<item_id>")
@require_auth
def delete_sale_item_route(sale_id, item_id):
    try:
        sale = sales_service.delete_sale_item(sale_id, item_id)
        return jsonify({"sale": sale.to_dict(include_items=True)}), 200
    except SaleError as e:
        return _sale_error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to delete item %s of sale %s", item_id, sale_id)
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.patch("/<sale_id>/items/<item_id>/status")
@require_auth
def update_item_status_route(sale_id, item_id):
    """
    Kitchen workflow: pending -> preparing -> ready -> delivered.

    Request body: {"status": "preparing"}
    """
    try:
        data = request.get_json(silent=True) or {}
        item = sales_service.update_item_status(sale_id, item_id, data.get("status"))
        return jsonify({"item": item.to_dict()}), 200
    except SaleError as e:
        return _sale_error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update item %s status", item_id)
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<sale_id>/cancel")
@require_auth
def cancel_sale_route(sale_id):
    try:
        sale = sales_service.cancel_sale(sale_id)
        return jsonify({"sale": sale.to_dict(include_items=True)}), 200
    except SaleError as e:
        return _sale_error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to cancel sale %s", sale_id)
        return jsonify({"error": "Internal server error"}), 500
