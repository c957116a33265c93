# Overview: Flask API routes for stock checks and adjustments; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app

from ..decorators import require_auth, require_role
from ..extensions import db
from ..models import Product
from ..services import stock_service
from ..services.stock_service import StockError
from ..validation import ValidationError


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.get("/products")
@require_auth
def list_stock_route():
    products = (
        db.session.query(Product)
        .filter(Product.manage_stock.is_(True), Product.is_active.is_(True))
        .order_by(Product.name)
        .all()
    )
    return jsonify({"products": [p.to_dict() for p in products]}), 200


@inventory_bp.post("/validate")
@require_auth
def validate_stock_route():
    """
    Dry-run stock check for a cart; writes nothing.

    Request body: {"items": [{"product_id": 1, "quantity": 2, "modifiers": [...]}]}
    """
    try:
        data = request.get_json(silent=True) or {}
        items = data.get("items")
        if not isinstance(items, list):
            raise ValidationError("items must be a list", {"items": "must be a list"})
        for item in items:
            if not isinstance(item, dict) or item.get("product_id") is None:
                raise ValidationError("every item needs a product_id", {"items": "product_id required"})

        check = stock_service.validate_stock_for_items(items)
        return jsonify(check.to_dict()), 200
    except (ValidationError, ValueError, TypeError) as e:
        details = getattr(e, "fields", None)
        return jsonify({"error": str(e), "details": details}), 400


@inventory_bp.patch("/products/<int:product_id>/stock")
@require_auth
@require_role("admin")
def set_stock_route(product_id):
    """
    Request body: {"stock_current": 12, "reason": "admin_update" | "initial_stock"}
    """
    try:
        data = request.get_json(silent=True) or {}
        product = stock_service.set_stock(
            product_id,
            data.get("stock_current"),
            reason=data.get("reason") or "admin_update",
        )
        return jsonify({"product": product.to_dict()}), 200
    except StockError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to set stock for product %s", product_id)
        return jsonify({"error": "Internal server error"}), 500
