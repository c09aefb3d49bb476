# backend/storefront/__init__.py
from __future__ import annotations

from typing import Mapping

from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(overrides: Mapping | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401
    from .integrity import install_sqlite_pragmas

    with app.app_context():
        install_sqlite_pragmas(db.engine, app.config["LOCK_TIMEOUT_SECONDS"])

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
