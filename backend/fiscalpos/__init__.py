# backend/fiscalpos/__init__.py
from flask import Flask, jsonify, request

from .config import Config
from .extensions import db, migrate


def create_app(test_config: dict | None = None, *, collaborators: dict | None = None) -> Flask:
    """
    Application factory.

    collaborators may replace the outbound clients by extension key
    (see services.collaborators), e.g. {"fiscalpos.authority": FakeGateway()}.
    """
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    for key, value in (collaborators or {}).items():
        app.extensions[key] = value

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.cash_sessions import cash_sessions_bp
    from .routes.sales import sales_bp
    from .routes.credit_notes import credit_notes_bp
    from .routes.price_lists import price_lists_bp
    from .routes.fiscal import fiscal_bp
    from .routes.notifications import notifications_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(cash_sessions_bp)
    app.register_blueprint(sales_bp)
    app.register_blueprint(credit_notes_bp)
    app.register_blueprint(price_lists_bp)
    app.register_blueprint(fiscal_bp)
    app.register_blueprint(notifications_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = {
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        }
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,OPTIONS"
        return response

    @app.errorhandler(404)
    def not_found(_error):
        return jsonify({"error": "Not found"}), 404

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    if app.config.get("NOTIFICATION_SWEEP_ENABLED") and not app.config.get("TESTING"):
        from .services.notification_service import NotificationSweeper
        sweeper = NotificationSweeper(app, app.config["NOTIFICATION_SWEEP_INTERVAL_SECONDS"])
        app.extensions["fiscalpos.sweeper"] = sweeper
        sweeper.start()

    return app
