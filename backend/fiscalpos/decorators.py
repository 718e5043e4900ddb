# Overview: Request decorators for API routes.

from functools import wraps

from flask import g, jsonify, request

from .services import session_service


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def require_auth(f):
    """
    Require a live session token.

    Sets g.current_user, g.session_context and g.token.
    Returns 401 for a missing, expired or revoked token (including tokens
    revoked by closing the cash session).
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if not token:
            return jsonify({"error": "Authentication required"}), 401

        context = session_service.validate_session(token)
        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = context.user
        g.session_context = context
        g.token = token
        return f(*args, **kwargs)

    return decorated_function


def require_admin(f):
    """Use after require_auth."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not getattr(g, "current_user", None) or not g.current_user.is_admin:
            return jsonify({"error": "Administrator access required"}), 403
        return f(*args, **kwargs)

    return decorated_function
