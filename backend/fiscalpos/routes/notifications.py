# Overview: Flask API routes for the deferred e-mail queue.

from flask import Blueprint, current_app, jsonify, request

from ..decorators import require_auth
from ..services import notification_service


notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/notifications")


@notifications_bp.post("/sweep")
@require_auth
def sweep_route():
    """Run one sweep now. 409 when a sweep is already running."""
    try:
        result = notification_service.sweep()
        if result is None:
            return jsonify({"error": "A sweep is already running"}), 409
        return jsonify(result), 200
    except Exception:
        current_app.logger.exception("Failed to sweep notifications")
        return jsonify({"error": "Internal server error"}), 500


@notifications_bp.get("/pending")
@require_auth
def pending_route():
    include_failed = request.args.get("include_failed", "true").lower() == "true"
    rows = notification_service.list_queue(include_failed=include_failed)
    return jsonify({
        "pending": notification_service.pending_count(),
        "queue": [row.to_dict() for row in rows],
    }), 200
