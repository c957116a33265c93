# Overview: Flask API routes for the device catalog download; read-only JSON responses.

"""
Catalog Download

WHY: Devices sell offline. Before going offline they need everything the
stock engine uses locally: products with their yield data, recipe edges
and the table layout.
"""

from flask import Blueprint, jsonify

from ..decorators import require_auth
from ..extensions import db
from ..models import CafeTable, Category, Product, Recipe


catalog_bp = Blueprint("catalog", __name__, url_prefix="/api/catalog")


@catalog_bp.get("/full")
@require_auth
def full_catalog_route():
    categories = db.session.query(Category).order_by(Category.name).all()
    products = db.session.query(Product).order_by(Product.name).all()
    recipes = db.session.query(Recipe).order_by(Recipe.product_id, Recipe.id).all()
    tables = db.session.query(CafeTable).order_by(CafeTable.name).all()

    return jsonify({
        "success": True,
        "data": {
            "categories": [c.to_dict() for c in categories],
            "products": [p.to_dict() for p in products],
            "recipes": [r.to_dict() for r in recipes],
            "tables": [t.to_dict() for t in tables],
        },
    }), 200
