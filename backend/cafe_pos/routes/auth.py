# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

"""
Authentication API routes

Login with username + password, or username + PIN on a shared register.
The returned bearer token goes in the Authorization header.
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..decorators import require_auth, device_id
from ..services import auth_service, session_service
from ..time_utils import to_utc_z


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    try:
        data = request.get_json(silent=True) or {}
        username = data.get("username")
        password = data.get("password")
        pin = data.get("pin")

        if not username or not (password or pin):
            return jsonify({"error": "username and password or pin required"}), 400

        user = auth_service.authenticate(username, password=password, pin=pin)
        if not user:
            return jsonify({"error": "Invalid credentials"}), 401

        session, token = session_service.create_session(user.id, device_id=device_id())

        return jsonify({
            "user": user.to_dict(),
            "token": token,
            "expires_at": to_utc_z(session.expires_at),
        }), 200

    except Exception:
        current_app.logger.exception("Login failed")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    session_service.revoke_session(g.session_token)
    return jsonify({"message": "Logged out"}), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    user = g.current_user
    return jsonify({"user": {"id": user.id, "name": user.name, "role": user.role}}), 200
