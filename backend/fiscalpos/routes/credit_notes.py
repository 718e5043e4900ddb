# Overview: Flask API routes for credit notes.

"""
Credit Note API Routes

POST / builds the credit note and immediately sends it for authorization.
A failed emission does not undo the credit note: it stays UNSUBMITTED,
PENDING or REJECTED and can be re-sent through /<id>/emit.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth
from ..services import credit_note_service, emission_service
from ..services.credit_note_service import CreditNoteError, DuplicateCreditNoteError
from .responses import emission_response


credit_notes_bp = Blueprint("credit_notes", __name__, url_prefix="/api/credit-notes")


@credit_notes_bp.post("/")
@credit_notes_bp.post("")
@require_auth
def create_credit_note_route():
    """
    Request body:
    {
        "sale_id": 12,
        "reason": "Damaged item returned",
        "items": [{"sale_line_id": 40, "quantity": 1}]
    }
    """
    try:
        data = request.get_json() or {}
        sale_id = data.get("sale_id")
        if sale_id is None:
            return jsonify({"error": "sale_id required"}), 400

        credit_note = credit_note_service.create_credit_note(
            g.current_user.id,
            int(sale_id),
            data.get("items") or [],
            data.get("reason"),
        )
    except DuplicateCreditNoteError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except CreditNoteError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except (TypeError, ValueError):
        return jsonify({"error": "sale_id must be an integer"}), 400
    except Exception:
        current_app.logger.exception("Failed to create credit note")
        return jsonify({"error": "Internal server error"}), 500

    credit_note_id = credit_note.id
    emission, status = emission_response(emission_service.emit_credit_note, credit_note_id)
    credit_note = credit_note_service.get_credit_note(credit_note_id)
    body = {"credit_note": credit_note.to_dict(), "emission": emission.get_json()}
    return jsonify(body), 201 if status < 500 else status


@credit_notes_bp.get("/<int:credit_note_id>")
@require_auth
def get_credit_note_route(credit_note_id: int):
    credit_note = credit_note_service.get_credit_note(credit_note_id)
    if not credit_note:
        return jsonify({"error": "Credit note not found"}), 404
    return jsonify({
        "credit_note": credit_note.to_dict(),
        "lines": [line.to_dict() for line in credit_note.lines],
    }), 200


@credit_notes_bp.post("/<int:credit_note_id>/emit")
@require_auth
def emit_credit_note_route(credit_note_id: int):
    return emission_response(emission_service.emit_credit_note, credit_note_id)


@credit_notes_bp.get("/eligibility/<int:sale_id>")
@require_auth
def eligibility_route(sale_id: int):
    return jsonify(credit_note_service.check_eligibility(sale_id)), 200
