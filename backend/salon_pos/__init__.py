# Overview: Application factory for the salon POS transaction core.
from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(config_object=None) -> Flask:
    """Build the app; tests pass TestingConfig to bind an in-memory database."""
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_object or Config)

    db.init_app(app)
    migrate.init_app(app, db)

    # Models must be imported before create_all / autogenerate see the metadata
    from . import models  # noqa: F401

    from .routes.audit import audit_bp
    from .routes.bills import bills_bp
    from .routes.inventory import inventory_bp
    from .routes.loyalty import loyalty_bp
    from .routes.referrals import referrals_bp
    from .routes.system import system_bp

    for blueprint in (system_bp, bills_bp, inventory_bp, loyalty_bp, referrals_bp, audit_bp):
        app.register_blueprint(blueprint)

    from .cli import register_commands
    register_commands(app)

    return app
