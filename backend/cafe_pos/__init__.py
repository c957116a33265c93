# backend/cafe_pos/__init__.py
import logging

from flask import Flask, request

from .config import Config
from .extensions import db, migrate, broadcaster


def create_app(test_config=None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    logging.getLogger("cafe_pos").setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Queued real-time events go out after commit and are dropped on rollback
    from .services.event_service import install_transaction_hooks
    install_transaction_hooks(broadcaster)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.sync import sync_bp
    from .routes.shifts import shifts_bp
    from .routes.sales import sales_bp
    from .routes.tables import tables_bp
    from .routes.credit import credit_bp
    from .routes.inventory import inventory_bp
    from .routes.catalog import catalog_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(sync_bp)
    app.register_blueprint(shifts_bp)
    app.register_blueprint(sales_bp)
    app.register_blueprint(tables_bp)
    app.register_blueprint(credit_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(catalog_bp)

    allowed_origins = set(app.config.get("CORS_ORIGINS", []))

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type, X-Device-ID"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
