# backend/stationledger/__init__.py
from flask import Flask

from .config import Config
from .extensions import db


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)

    # Import models so create_all() sees every table
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.inventory import inventory_bp
    from .routes.anomalies import anomalies_bp
    from .routes.invoices import invoices_bp
    from .routes.owners import owners_bp
    from .routes.transactions import transactions_bp
    from .routes.shifts import shifts_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(anomalies_bp)
    app.register_blueprint(invoices_bp)
    app.register_blueprint(owners_bp)
    app.register_blueprint(transactions_bp)
    app.register_blueprint(shifts_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
