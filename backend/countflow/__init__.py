# backend/countflow/__init__.py
import logging

from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(test_config: dict | None = None, catalog_client=None) -> Flask:
    """
    Build the countflow application.

    `test_config` overrides Config values. `catalog_client` injects an
    already-built CatalogClient; otherwise one is opened when
    CATALOG_DATABASE_URL is set.
    """
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    level = logging.getLevelName(str(app.config.get("LOG_LEVEL", "INFO")).upper())
    if isinstance(level, int):
        app.logger.setLevel(level)
        logging.getLogger("countflow").setLevel(level)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    from .catalog import EXTENSION_KEY, CatalogClient
    if catalog_client is None and app.config.get("CATALOG_DATABASE_URL"):
        catalog_client = CatalogClient(
            app.config["CATALOG_DATABASE_URL"],
            max_products=int(app.config["CATALOG_MAX_PRODUCTS"]),
            chunk_size=int(app.config["CATALOG_CHUNK_SIZE"]),
        ).open()
    if catalog_client is None:
        app.logger.warning("CATALOG_DATABASE_URL is not set; request creation is unavailable")
    app.extensions[EXTENSION_KEY] = catalog_client

    # Register blueprints
    from .routes.system import system_bp
    from .routes.requests import requests_bp
    from .routes.items import items_bp
    from .routes.audits import audits_bp
    from .routes.adjustments import adjustments_bp
    from .routes.reports import reports_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(requests_bp)
    app.register_blueprint(items_bp)
    app.register_blueprint(audits_bp)
    app.register_blueprint(adjustments_bp)
    app.register_blueprint(reports_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
