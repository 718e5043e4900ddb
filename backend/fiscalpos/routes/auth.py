# Overview: Flask API routes for operator login and logout.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth
from ..services import auth_service, session_service
from ..services.register_service import get_open_session


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate and issue a bearer token.

    Request body: {"username": "...", "password": "..."}
    """
    try:
        data = request.get_json() or {}
        username = data.get("username")
        password = data.get("password")
        if not all([username, password]):
            return jsonify({"error": "username and password required"}), 400

        user = auth_service.authenticate(username, password)
        if not user:
            return jsonify({"error": "Invalid credentials"}), 401

        session, token = session_service.create_session(
            user.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )
        open_session = get_open_session(user.id)
        return jsonify({
            "user": user.to_dict(),
            "token": token,
            "expires_at": session.to_dict()["expires_at"],
            "cash_session": open_session.to_dict() if open_session else None,
        }), 200
    except Exception:
        current_app.logger.exception("Failed to log in")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    try:
        session_service.revoke_session(g.token, reason="User logout")
        return jsonify({"message": "Logged out"}), 200
    except Exception:
        current_app.logger.exception("Failed to log out")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.get("/me")
@require_auth
def me_route():
    open_session = get_open_session(g.current_user.id)
    return jsonify({
        "user": g.current_user.to_dict(),
        "cash_session": open_session.to_dict() if open_session else None,
    }), 200
