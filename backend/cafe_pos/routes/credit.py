# Overview: Flask API routes for customer credit; parses input and returns JSON responses.

"""
Credit API Routes

Customers, opening balances, payments (allocated oldest charge first) and
the receivables portfolio.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_role
from ..extensions import db
from ..services import credit_service
from ..services.credit_service import CreditError


credit_bp = Blueprint("credit", __name__, url_prefix="/api/credit")


def _internal_error(message: str):
    db.session.rollback()
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error"}), 500


@credit_bp.get("/customers")
@require_auth
def list_customers_route():
    customers = credit_service.list_customers(
        search=request.args.get("search"),
        only_debtors=request.args.get("only_debtors", "").lower() in ("1", "true", "yes"),
    )
    return jsonify({"customers": [c.to_dict() for c in customers]}), 200


@credit_bp.get("/customers/<int:customer_id>")
@require_auth
def get_customer_route(customer_id):
    try:
        customer = credit_service.get_customer(customer_id)
        transactions = credit_service.customer_transactions(customer_id)
        return jsonify({
            "customer": customer.to_dict(),
            "transactions": [t.to_dict() for t in transactions],
        }), 200
    except CreditError as e:
        return jsonify({"error": str(e)}), e.status_code


@credit_bp.post("/customers")
@require_auth
@require_role("admin")
def create_customer_route():
    try:
        customer = credit_service.create_customer(request.get_json(silent=True) or {})
        return jsonify({"customer": customer.to_dict()}), 201
    except CreditError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        return _internal_error("Failed to create customer")


@credit_bp.put("/customers/<int:customer_id>")
@require_auth
@require_role("admin")
def update_customer_route(customer_id):
    try:
        customer = credit_service.update_customer(customer_id, request.get_json(silent=True) or {})
        return jsonify({"customer": customer.to_dict()}), 200
    except CreditError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        return _internal_error("Failed to update customer")


@credit_bp.post("/payment")
@require_auth
def register_payment_route():
    """
    Request body: {"customer_id": 3, "amount": 120, "shift_id": "...", "description": "optional"}
    """
    try:
        data = request.get_json(silent=True) or {}
        if not data.get("customer_id"):
            return jsonify({"error": "customer_id is required"}), 400

        result = credit_service.register_payment(
            data["customer_id"],
            data.get("amount"),
            data.get("shift_id"),
            created_by_id=g.current_user.id,
            description=data.get("description"),
        )
        return jsonify(result.to_dict()), 201
    except CreditError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        return _internal_error("Failed to register credit payment")


@credit_bp.post("/opening-balance")
@require_auth
@require_role("admin")
def opening_balance_route():
    """
    Request body: {"customer_id": 3, "amount": 250, "description": "optional"}
    """
    try:
        data = request.get_json(silent=True) or {}
        if not data.get("customer_id"):
            return jsonify({"error": "customer_id is required"}), 400

        txn = credit_service.create_opening_balance(
            data["customer_id"],
            data.get("amount"),
            description=data.get("description"),
            created_by_id=g.current_user.id,
        )
        return jsonify({"transaction": txn.to_dict()}), 201
    except CreditError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        return _internal_error("Failed to create opening balance")


@credit_bp.get("/portfolio")
@require_auth
def portfolio_route():
    return jsonify(credit_service.portfolio_summary()), 200
