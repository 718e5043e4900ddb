# backend/fiscalpos/routes/system.py
"""System health endpoint."""

import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy import text

from ..extensions import db
from ..services.notification_service import pending_count
from ..services.fiscal_context import load_context

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        return {"status": "healthy", "latency_ms": round((time.time() - start_time) * 1000, 2)}
    except Exception:
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
            "error": "Database error",
        }


@system_bp.get("/health")
def health():
    database = check_database_health()
    body = {"status": database["status"], "database": database}
    if database["status"] == "healthy":
        try:
            ctx = load_context()
            body["fiscal"] = {
                "environment": ctx.environment,
                "environment_confirmed": ctx.confirmed,
                "certificate_loaded": ctx.certificate_loaded,
            }
            body["notifications_pending"] = pending_count()
        except Exception:
            current_app.logger.exception("Fiscal health check failed")
            body["status"] = "degraded"
    return jsonify(body), 200 if body["status"] != "unhealthy" else 503
