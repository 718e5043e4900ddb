# Overview: Flask API routes for cash sessions and expenses.

"""
Cash Session API Routes

- open: one OPEN session per operator
- close: computes expected vs counted and signs the operator out
  (the token used for the call stops working)
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth
from ..services import register_service
from ..services.register_service import CashSessionError


cash_sessions_bp = Blueprint("cash_sessions", __name__, url_prefix="/api/cash-sessions")


def _cents(data: dict, key: str):
    value = data.get(key)
    if value is None:
        return None
    return int(value)


@cash_sessions_bp.post("/open")
@require_auth
def open_route():
    """Request body: {"opening_cents": 5000, "note": "..."}"""
    try:
        data = request.get_json() or {}
        opening = _cents(data, "opening_cents")
        if opening is None:
            return jsonify({"error": "opening_cents required"}), 400
        session = register_service.open_session(g.current_user.id, opening, note=data.get("note"))
        return jsonify({"cash_session": session.to_dict()}), 201
    except (TypeError, ValueError):
        return jsonify({"error": "opening_cents must be an integer"}), 400
    except CashSessionError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except Exception:
        current_app.logger.exception("Failed to open cash session")
        return jsonify({"error": "Internal server error"}), 500


@cash_sessions_bp.post("/close")
@require_auth
def close_route():
    """Request body: {"counted_cents": 12500, "note": "..."}"""
    try:
        data = request.get_json() or {}
        counted = _cents(data, "counted_cents")
        if counted is None:
            return jsonify({"error": "counted_cents required"}), 400
        summary = register_service.close_session(g.current_user.id, counted, note=data.get("note"))
        return jsonify(summary.to_dict()), 200
    except (TypeError, ValueError):
        return jsonify({"error": "counted_cents must be an integer"}), 400
    except CashSessionError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except Exception:
        current_app.logger.exception("Failed to close cash session")
        return jsonify({"error": "Internal server error"}), 500


@cash_sessions_bp.get("/current")
@require_auth
def current_route():
    session = register_service.get_open_session(g.current_user.id)
    return jsonify({"cash_session": session.to_dict() if session else None}), 200


@cash_sessions_bp.post("/expenses")
@require_auth
def expense_route():
    """Request body: {"description": "...", "amount_cents": 1500, "category": "..."}"""
    try:
        data = request.get_json() or {}
        amount = _cents(data, "amount_cents")
        expense = register_service.record_expense(
            g.current_user.id,
            data.get("description"),
            amount,
            category=data.get("category"),
        )
        return jsonify({"expense": expense.to_dict()}), 201
    except (TypeError, ValueError):
        return jsonify({"error": "amount_cents must be an integer"}), 400
    except CashSessionError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except Exception:
        current_app.logger.exception("Failed to record expense")
        return jsonify({"error": "Internal server error"}), 500
