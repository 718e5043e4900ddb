# Overview: Flask API routes for the tax environment, certificate and subscription quota.

"""
Fiscal Settings API Routes

Changing the environment always clears the operator's confirmation;
emission answers 409 until POST /environment/confirm echoes the active
environment back.
"""

import base64
import binascii

from flask import Blueprint, current_app, jsonify, request

from ..decorators import require_admin, require_auth
from ..services import fiscal_context, quota_service
from ..services.fiscal_context import FiscalContextError


fiscal_bp = Blueprint("fiscal", __name__, url_prefix="/api/fiscal")


@fiscal_bp.get("/status")
@require_auth
def status_route():
    ctx = fiscal_context.load_context()
    certificate = fiscal_context.get_active_certificate()
    return jsonify({
        "context": ctx.to_dict(),
        "settings": fiscal_context.get_fiscal_settings().to_dict(),
        "certificate": certificate.to_dict() if certificate else None,
    }), 200


@fiscal_bp.put("/settings")
@require_auth
@require_admin
def update_settings_route():
    try:
        settings = fiscal_context.update_business_settings(request.get_json() or {})
        return jsonify({"settings": settings.to_dict()}), 200
    except FiscalContextError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except Exception:
        current_app.logger.exception("Failed to update fiscal settings")
        return jsonify({"error": "Internal server error"}), 500


@fiscal_bp.post("/environment")
@require_auth
@require_admin
def change_environment_route():
    """Request body: {"environment": "production"}"""
    try:
        data = request.get_json() or {}
        settings = fiscal_context.change_environment(data.get("environment"))
        current_app.logger.info("Fiscal environment set to %s", settings.environment)
        return jsonify({"settings": settings.to_dict()}), 200
    except FiscalContextError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except Exception:
        current_app.logger.exception("Failed to change fiscal environment")
        return jsonify({"error": "Internal server error"}), 500


@fiscal_bp.post("/environment/confirm")
@require_auth
def confirm_environment_route():
    """Request body: {"environment": "<the environment shown to the operator>"}"""
    try:
        data = request.get_json() or {}
        settings = fiscal_context.confirm_environment(data.get("environment"))
        return jsonify({"settings": settings.to_dict()}), 200
    except FiscalContextError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except Exception:
        current_app.logger.exception("Failed to confirm fiscal environment")
        return jsonify({"error": "Internal server error"}), 500


@fiscal_bp.post("/certificate")
@require_auth
@require_admin
def load_certificate_route():
    """
    Load the signing certificate.

    Either multipart (file=<.p12>, password=...) or JSON
    {"filename": "...", "content_base64": "...", "password": "..."}.
    """
    try:
        upload = request.files.get("file")
        if upload is not None:
            content = upload.read()
            filename = upload.filename
            password = request.form.get("password")
        else:
            data = request.get_json() or {}
            try:
                content = base64.b64decode(data.get("content_base64") or "", validate=True)
            except (binascii.Error, ValueError):
                return jsonify({"error": "content_base64 is not valid base64"}), 400
            filename = data.get("filename")
            password = data.get("password")

        certificate = fiscal_context.load_certificate(content, password, filename)
        return jsonify({"certificate": certificate.to_dict()}), 201
    except FiscalContextError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except Exception:
        current_app.logger.exception("Failed to load certificate")
        return jsonify({"error": "Internal server error"}), 500


@fiscal_bp.get("/quota")
@require_auth
def quota_route():
    return jsonify(quota_service.subscription_status()), 200


@fiscal_bp.post("/subscription/refresh")
@require_auth
def refresh_subscription_route():
    try:
        return jsonify(quota_service.refresh_subscription()), 200
    except Exception:
        current_app.logger.exception("Failed to refresh subscription")
        return jsonify({"error": "Internal server error"}), 500
