# backend/inventory_engine/__init__.py
from flask import Flask

from .config import Config
from .extensions import db, migrate



def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.allocations import allocations_bp  # Allocation Store
    from .routes.rates import rates_bp  # Rate Plan Registry
    from .routes.availability import availability_bp  # Generator, bulk mutator, stats
    from .routes.selection import selection_bp  # Waterfall supplier selection

    app.register_blueprint(system_bp)
    app.register_blueprint(allocations_bp)
    app.register_blueprint(rates_bp)
    app.register_blueprint(availability_bp)
    app.register_blueprint(selection_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
