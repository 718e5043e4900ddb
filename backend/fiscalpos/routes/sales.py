# Overview: Flask API routes for cart pricing, checkout, invoice emission and e-mail.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth
from ..models.notifications import DOC_SALE
from ..services import cart_service, emission_service, notification_service, sales_service
from ..services.cart_service import CartError
from ..services.notification_service import NotificationError
from ..services.sales_service import SaleError
from .responses import emission_response


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _cart_from(data: dict):
    return cart_service.build_cart(
        data.get("items") or [],
        customer_id=data.get("customer_id"),
        document_kind=data.get("document_kind") or "RECEIPT",
    )


@sales_bp.post("/quote")
@require_auth
def quote_route():
    """
    Price a cart without storing anything.

    Request body:
    {
        "customer_id": 3,              (optional; selects the price list)
        "document_kind": "INVOICE",
        "items": [{"product_id": 1, "quantity": 2, "discount_cents": 0}]
    }
    """
    try:
        cart = _cart_from(request.get_json() or {})
        return jsonify({"cart": cart.to_dict()}), 200
    except CartError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except Exception:
        current_app.logger.exception("Failed to quote cart")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/")
@sales_bp.post("")
@require_auth
def create_sale_route():
    """
    Check out a cart.

    Same body as /quote plus payment_method, amount_tendered_cents, note.
    """
    try:
        data = request.get_json() or {}
        cart = _cart_from(data)
        tendered = data.get("amount_tendered_cents")
        sale = sales_service.create_sale(
            g.current_user.id,
            cart,
            payment_method=data.get("payment_method") or "CASH",
            amount_tendered_cents=int(tendered) if tendered is not None else None,
            note=data.get("note"),
        )
        return jsonify({"sale": sale.to_dict(), "lines": [line.to_dict() for line in sale.lines]}), 201
    except (CartError, SaleError) as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except (TypeError, ValueError):
        return jsonify({"error": "amount_tendered_cents must be an integer"}), 400
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
@require_auth
def get_sale_route(sale_id: int):
    sale = sales_service.get_sale(sale_id)
    if not sale:
        return jsonify({"error": "Sale not found"}), 404
    return jsonify({"sale": sale.to_dict(), "lines": [line.to_dict() for line in sale.lines]}), 200


@sales_bp.post("/<int:sale_id>/emit")
@require_auth
def emit_sale_route(sale_id: int):
    """Send an invoice for authorization (or resend a PENDING/REJECTED one)."""
    return emission_response(emission_service.emit_invoice, sale_id)


@sales_bp.post("/<int:sale_id>/notify")
@require_auth
def notify_sale_route(sale_id: int):
    """
    E-mail an authorized invoice.

    Request body: {"address": "buyer@example.com"} (optional; defaults to the customer's e-mail)
    """
    try:
        data = request.get_json(silent=True) or {}
        outcome = notification_service.send_or_queue(DOC_SALE, sale_id, data.get("address"))
        return jsonify({
            "result": outcome,
            "deferred": notification_service.is_deferred(outcome),
        }), 200
    except NotificationError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except Exception:
        current_app.logger.exception("Failed to send sale notification")
        return jsonify({"error": "Internal server error"}), 500
