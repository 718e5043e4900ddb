# Overview: Flask API routes for price lists and per-product overrides.

from flask import Blueprint, current_app, jsonify, request

from ..decorators import require_admin, require_auth
from ..extensions import db
from ..models import Customer, Product
from ..services import price_service
from ..services.price_service import PriceListError


price_lists_bp = Blueprint("price_lists", __name__, url_prefix="/api/price-lists")


@price_lists_bp.get("/")
@price_lists_bp.get("")
@require_auth
def list_price_lists_route():
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    lists = price_service.list_price_lists(include_inactive=include_inactive)
    return jsonify({"price_lists": [pl.to_dict() for pl in lists]}), 200


@price_lists_bp.post("/")
@price_lists_bp.post("")
@require_auth
@require_admin
def create_price_list_route():
    """Request body: {"name": "Wholesale", "description": "...", "is_default": false}"""
    try:
        data = request.get_json() or {}
        price_list = price_service.create_price_list(
            data.get("name"),
            data.get("description"),
            is_default=bool(data.get("is_default", False)),
        )
        return jsonify({"price_list": price_list.to_dict()}), 201
    except PriceListError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except Exception:
        current_app.logger.exception("Failed to create price list")
        return jsonify({"error": "Internal server error"}), 500


@price_lists_bp.post("/<int:price_list_id>/default")
@require_auth
@require_admin
def set_default_route(price_list_id: int):
    try:
        price_list = price_service.set_default_price_list(price_list_id)
        return jsonify({"price_list": price_list.to_dict()}), 200
    except PriceListError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except Exception:
        current_app.logger.exception("Failed to set default price list")
        return jsonify({"error": "Internal server error"}), 500


@price_lists_bp.get("/products/<int:product_id>")
@require_auth
def get_product_prices_route(product_id: int):
    prices = price_service.get_product_prices(product_id)
    return jsonify({"product_id": product_id, "prices": [p.to_dict() for p in prices]}), 200


@price_lists_bp.put("/products/<int:product_id>")
@require_auth
@require_admin
def save_product_prices_route(product_id: int):
    """
    Replace all overrides of a product.

    Request body: {"prices": [{"price_list_id": 1, "price_cents": 950}]}
    """
    try:
        data = request.get_json() or {}
        prices = price_service.save_product_prices(product_id, data.get("prices") or [])
        return jsonify({"product_id": product_id, "prices": [p.to_dict() for p in prices]}), 200
    except PriceListError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except Exception:
        current_app.logger.exception("Failed to save product prices")
        return jsonify({"error": "Internal server error"}), 500


@price_lists_bp.put("/customers/<int:customer_id>")
@require_auth
@require_admin
def assign_customer_route(customer_id: int):
    """Request body: {"price_list_id": 2} (null detaches the customer)"""
    try:
        data = request.get_json() or {}
        price_list_id = data.get("price_list_id")
        customer = price_service.assign_customer_price_list(
            customer_id, int(price_list_id) if price_list_id is not None else None
        )
        return jsonify({"customer": customer.to_dict()}), 200
    except PriceListError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except (TypeError, ValueError):
        return jsonify({"error": "price_list_id must be an integer"}), 400
    except Exception:
        current_app.logger.exception("Failed to assign price list")
        return jsonify({"error": "Internal server error"}), 500


@price_lists_bp.get("/resolve")
@require_auth
def resolve_route():
    """Query: ?product_id=1&customer_id=3"""
    product_id = request.args.get("product_id", type=int)
    customer_id = request.args.get("customer_id", type=int)
    if product_id is None:
        return jsonify({"error": "product_id required"}), 400

    product = db.session.get(Product, product_id)
    if not product:
        return jsonify({"error": "Product not found"}), 404
    customer = db.session.get(Customer, customer_id) if customer_id is not None else None

    price_cents, source = price_service.resolve_price_with_source(product, customer)
    return jsonify({
        "product_id": product.id,
        "customer_id": customer.id if customer else None,
        "price_cents": price_cents,
        "source": source,
    }), 200
